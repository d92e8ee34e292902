from __future__ import annotations

from tenantgate.domain.context import Capability


# Application hosting metered transcription; its license also honors trial expiry.
METERED_APPLICATION = "tq"

TRANSCRIPTION_CREATE = Capability("tq.transcription.create", METERED_APPLICATION, "operations")
TRANSCRIPTION_READ = Capability("tq.transcription.read", METERED_APPLICATION, "operations")
USAGE_READ = Capability("tq.usage.read", METERED_APPLICATION, "manager")
SETTINGS_MANAGE = Capability("tq.settings.manage", METERED_APPLICATION, "admin")
SEAT_GRANT = Capability("tq.seat.grant", METERED_APPLICATION, "admin", grants_seat=True)
HUB_USERS_MANAGE = Capability("hub.users.manage", "hub", "admin")
HUB_ACCESS = Capability("hub.access", "hub", "operations")

CAPABILITIES: dict[str, Capability] = {
    capability.name: capability
    for capability in (
        TRANSCRIPTION_CREATE,
        TRANSCRIPTION_READ,
        USAGE_READ,
        SETTINGS_MANAGE,
        SEAT_GRANT,
        HUB_USERS_MANAGE,
        HUB_ACCESS,
    )
}


def get_capability(name: str) -> Capability | None:
    return CAPABILITIES.get(name)
