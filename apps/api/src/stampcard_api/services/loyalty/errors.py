"""Structured errors surfaced by callable loyalty operations."""

from __future__ import annotations

from enum import Enum


class LoyaltyErrorCode(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    INVALID_ARGUMENT = "invalid-argument"
    NOT_FOUND = "not-found"
    FAILED_PRECONDITION = "failed-precondition"
    PERMISSION_DENIED = "permission-denied"
    INTERNAL = "internal"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    LoyaltyErrorCode.UNAUTHENTICATED: 401,
    LoyaltyErrorCode.INVALID_ARGUMENT: 400,
    LoyaltyErrorCode.NOT_FOUND: 404,
    LoyaltyErrorCode.FAILED_PRECONDITION: 409,
    LoyaltyErrorCode.PERMISSION_DENIED: 403,
    LoyaltyErrorCode.INTERNAL: 500,
}


class LoyaltyError(Exception):
    """Domain failure carrying a callable error code and a machine reason."""

    def __init__(self, code: LoyaltyErrorCode, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.reason = reason

    def as_dict(self) -> dict[str, str | None]:
        return {"code": self.code.value, "message": self.message, "reason": self.reason}

    def __repr__(self) -> str:
        return f"LoyaltyError(code={self.code.value!r}, message={self.message!r}, reason={self.reason!r})"


__all__ = ["LoyaltyError", "LoyaltyErrorCode"]
