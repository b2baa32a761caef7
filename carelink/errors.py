"""
Error taxonomy for linking and access checks.

Every error carries a stable machine `code` and an HTTP status; the API layer
renders them as ``{"error": code, "detail": message}``.
"""
from typing import Optional


class LinkError(Exception):
    code = "error"
    status_code = 400
    message = "request failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.detail = message or self.message


class NotFound(LinkError):
    code = "not_found"
    status_code = 404
    message = "no matching record"


class AlreadyLinked(LinkError):
    code = "already_linked"
    status_code = 409
    message = "this user is already linked to your account"


class NotLinkable(LinkError):
    code = "not_linkable"
    status_code = 403
    message = "this record cannot be linked remotely"


class RateLimited(LinkError):
    code = "rate_limited"
    status_code = 429
    message = "too many verification codes requested"

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message or f"{self.message}; try again in {max(1, retry_after // 60)} minutes")
        self.retry_after = retry_after


class InvalidCode(LinkError):
    # one message for wrong, expired, used and never-issued codes
    code = "invalid_code"
    status_code = 400
    message = "the code is invalid or has expired"

    def __init__(self):
        super().__init__(self.message)


class NoDeliveryChannel(LinkError):
    code = "no_delivery_channel"
    status_code = 422
    message = "no email address on file to deliver a verification code; use another workflow"


class Forbidden(LinkError):
    code = "forbidden"
    status_code = 403
    message = "not allowed"


class Unavailable(LinkError):
    """Transient failure; safe to retry."""
    code = "unavailable"
    status_code = 503
    message = "service temporarily unavailable, please retry"


class DeliveryFailed(Unavailable):
    message = "verification code could not be delivered, please retry"


class InvalidDuration(LinkError):
    code = "invalid_duration"
    status_code = 422
    message = "grant duration is out of range"
