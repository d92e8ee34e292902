from __future__ import annotations

import json

import pytest
from fastapi import HTTPException

from tenantgate.apps.api.routes.webhooks import parse_callback


def test_parse_callback_maps_provider_model_names() -> None:
    tenant, event = parse_callback(
        {
            "metadata": {"request_id": "proj.r1", "duration": 12.01, "models": ["2024-whisper-large"]},
            "callback_metadata": {"tenantId": "acme"},
        }
    )
    assert tenant == "acme"
    assert event.duration_seconds == 13
    assert event.model == "whisper-large"
    assert event.operation_id is None


@pytest.mark.parametrize(
    "payload",
    [
        {
            "metadata": {"request_id": "proj.r2", "duration": 30},
            "callback_metadata": json.dumps({"tenantId": 10, "transcriptionId": "op-9"}),
        },
        {
            "metadata": {
                "request_id": "proj.r2",
                "duration": 30,
                "callback_metadata": {"tenantId": 10, "transcriptionId": "op-9"},
            }
        },
        {
            "metadata": {
                "request_id": "proj.r2",
                "duration": 30,
                "callback_metadata": json.dumps({"tenantId": 10, "transcriptionId": "op-9"}),
            }
        },
    ],
)
def test_parse_callback_accepts_nested_and_encoded_metadata(payload) -> None:
    tenant, event = parse_callback(payload)
    assert tenant == "10"
    assert event.provider_request_id == "proj.r2"
    assert event.duration_seconds == 30
    assert event.operation_id == "op-9"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"metadata": {"request_id": "r"}, "callback_metadata": {}},
        {"metadata": {"duration": 3}, "callback_metadata": {"tenantId": 10}},
        {"metadata": {"request_id": "r", "duration": "soon"}, "callback_metadata": {"tenantId": 10}},
        {"metadata": {"request_id": "r", "duration": -1}, "callback_metadata": {"tenantId": 10}},
        {"metadata": {"request_id": "r"}, "callback_metadata": "{not json"},
        {"metadata": {"request_id": "r", "callback_metadata": "[1, 2]"}},
    ],
)
def test_parse_callback_rejects_incomplete_payloads(payload) -> None:
    with pytest.raises(HTTPException) as exc_info:
        parse_callback(payload)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail["code"] == "WEBHOOK_PAYLOAD_INVALID"
