from __future__ import annotations

import argparse
import asyncio
from datetime import timedelta
import sys

from tenantgate.persistence.db import SessionLocal
from tenantgate.persistence.repos import licensing as licensing_repo
from tenantgate.persistence.repos import users as users_repo
from tenantgate.services.auth.tokens import issue_token


def _build_parser() -> argparse.ArgumentParser:
    # Mint bearer tokens for existing users only; the user row stays the source of truth.
    parser = argparse.ArgumentParser(description="Issue a bearer token for a tenant user or platform admin")
    parser.add_argument("--user-id", required=True, type=int, help="Existing user id")
    parser.add_argument("--tenant-id", type=int, default=None, help="Tenant id; omit for platform admins")
    parser.add_argument("--ttl-hours", type=int, default=None, help="Override token lifetime")
    return parser


async def _issue(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        if args.tenant_id is None:
            user = await users_repo.get_platform_user(session, user_id=args.user_id)
            allowed_apps: list[str] = []
        else:
            user = await users_repo.get_tenant_user(session, tenant_id=args.tenant_id, user_id=args.user_id)
            allowed_apps = await licensing_repo.list_licensed_application_slugs(session, tenant_id=args.tenant_id)
    if user is None:
        print("issue_token failed: user not found for the given scope", file=sys.stderr)
        return 1
    if user.status != "active":
        print(f"issue_token failed: user status is {user.status}", file=sys.stderr)
        return 1
    token = issue_token(
        user_id=user.id,
        tenant_id=args.tenant_id,
        email=user.email,
        role=user.role,
        allowed_apps=allowed_apps,
        user_type=user.user_type,
        platform_role=user.platform_role,
        ttl=timedelta(hours=args.ttl_hours) if args.ttl_hours else None,
    )
    print(token)
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_issue(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"issue_token failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
