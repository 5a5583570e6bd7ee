"""
Error taxonomy shared by services and the HTTP layer.

Every error carries a stable machine-readable ``kind`` and a message that is
safe to show to the caller. Storage driver details never end up in messages.
"""


class HiveMonitorError(Exception):
    """Base class for errors surfaced to API callers."""

    kind = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        body = {"status": "error", "kind": self.kind, "message": self.message}
        if self.field:
            body["field"] = self.field
        if self.retryable:
            body["retryable"] = True
        return body


class Unauthorized(HiveMonitorError):
    """Missing or unknown credential / operator token."""

    kind = "unauthorized"
    status_code = 401


class NotFound(HiveMonitorError):
    kind = "not_found"
    status_code = 404


class InvalidPayload(HiveMonitorError):
    """Missing mandatory field or malformed body."""

    kind = "invalid_payload"
    status_code = 400


class OutOfRange(HiveMonitorError):
    """Numeric field failed its plausibility check."""

    kind = "out_of_range"
    status_code = 400


class PolicyInvariantViolation(HiveMonitorError):
    """Threshold update would break disconnect < reconnect or the voltage range."""

    kind = "policy_invariant_violation"
    status_code = 400


class Transient(HiveMonitorError):
    """Storage timeout or connection failure; the caller may retry."""

    kind = "transient"
    status_code = 503
    retryable = True
