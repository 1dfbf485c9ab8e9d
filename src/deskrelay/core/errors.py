"""Error taxonomy shared by the token cache, gateway, and job controller."""

from __future__ import annotations

from typing import Any


class DeskRelayError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.payload = payload

    def to_payload(self) -> Any:
        """Raw provider payload when present, otherwise a minimal error object."""
        if self.payload is not None:
            return self.payload
        return {"error": self.message, "code": self.code}


class AuthError(DeskRelayError):
    """Token refresh failed; the operation that needed the token cannot proceed."""

    def __init__(self, *, message: str, code: str = "auth_failed", payload: Any = None) -> None:
        super().__init__(code=code, message=message, payload=payload)


class RemoteError(DeskRelayError):
    """The help-desk API answered with a non-success status (or not at all)."""

    def __init__(
        self,
        *,
        message: str,
        status: int | None,
        payload: Any = None,
        code: str = "remote_error",
    ) -> None:
        super().__init__(code=code, message=message, payload=payload)
        self.status = status


class ValidationError(DeskRelayError):
    def __init__(self, *, message: str, code: str = "invalid_request") -> None:
        super().__init__(code=code, message=message)


class CriticalError(DeskRelayError):
    """Unexpected failure inside a job loop; aborts the rest of the job."""

    def __init__(self, *, message: str = "A critical server error occurred.", cause: BaseException | None = None) -> None:
        super().__init__(code="critical_error", message=message)
        self.cause = cause
