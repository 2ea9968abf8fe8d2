"""
Error hierarchy for the relay.

Every error carries a machine-readable code and the HTTP status it is
reported with, so the API layer can map them through a single handler.
"""

from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base class for all errors raised by the relay core."""
    code = "server_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Render the error as a JSON-serializable response body."""
        body: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details is not None:
            body["details"] = self.details
        return body


class InvalidRequest(RelayError):
    """Missing or malformed input. Always raised before any store mutation."""
    code = "invalid_request"
    status_code = 400


class Forbidden(RelayError):
    """Privileged operation attempted without a matching admin credential."""
    code = "forbidden"
    status_code = 403


class UserNotFound(RelayError):
    """Quota lookup for a user that was never ensured."""
    code = "user_not_found"
    status_code = 404

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}", {"userId": user_id})
        self.user_id = user_id


class QuotaExceeded(RelayError):
    """Daily allowance and bonus balance are both exhausted."""
    code = "quota_exceeded"
    status_code = 429

    def __init__(self, reason: str, remaining: int = 0):
        super().__init__(
            "Quota exhausted",
            {"reason": reason, "remaining": remaining},
        )
        self.reason = reason
        self.remaining = remaining


class UpstreamFailure(RelayError):
    """The completion provider errored, timed out or returned garbage.

    ``detail`` holds whatever diagnostic payload the provider returned.
    Its shape is not guaranteed.
    """
    code = "upstream_failure"
    status_code = 502

    def __init__(self, message: str, detail: Any = None):
        super().__init__(message, {"upstream": detail} if detail is not None else None)
        self.detail = detail
