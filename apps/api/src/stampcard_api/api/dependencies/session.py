"""Caller context forwarded by the platform auth gateway."""

from __future__ import annotations

from fastapi import Header

from stampcard_api.services.loyalty import CallerContext


async def get_caller_context(
    session_user: str | None = Header(None, alias="X-Session-User"),
    session_role: str | None = Header(None, alias="X-Session-Role"),
) -> CallerContext:
    """Resolve the caller from session headers; absence is reported by the services."""

    uid = session_user.strip() if session_user else None
    role = session_role.strip().lower() if session_role else None
    return CallerContext(uid=uid or None, role=role or None)
