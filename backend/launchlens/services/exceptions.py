"""
Domain Exceptions
=================

Error types raised by the attribution, launch and metrics services.

WHY THIS FILE EXISTS
--------------------
Callers need to tell business failures apart from infrastructure failures:
- NotFoundError / ValidationError go back to the caller with a message and
  are never retried.
- The share gate raises distinct signals (password required, wrong password,
  expired link) so the public recap page can prompt correctly.
- Storage errors (sqlalchemy.exc.*) are NOT wrapped here; they propagate
  unchanged and the caller decides on retry.

An attribution that finds no visitor is not an error: it is recorded as
`unmatched`.

RELATED FILES
-------------
- launchlens/services/launch_service.py: raises most of these
- launchlens/routers/errors.py: maps them to HTTP responses
"""

from typing import Optional


class LaunchlensError(Exception):
    """
    Base exception for all domain errors.

    USAGE:
        try:
            service.update(account_id, launch_id, fields)
        except LaunchlensError as e:
            return {"error": e.message}
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LaunchlensError):
    """Entity absent or not owned by the requesting account."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ValidationError(LaunchlensError):
    """Input rejected before touching storage (bad date range, empty update, ...)."""


class ShareAccessError(LaunchlensError):
    """
    Base for public share-link denials.

    ATTRIBUTES:
        share_token: Token the caller presented (for logging only)
    """

    def __init__(self, message: str, share_token: Optional[str] = None):
        super().__init__(message)
        self.share_token = share_token


class ShareNotFoundError(ShareAccessError):
    """Unknown token or sharing disabled."""

    def __init__(self, share_token: Optional[str] = None):
        super().__init__("Launch not found or sharing disabled", share_token)


class ShareExpiredError(ShareAccessError):
    def __init__(self, share_token: Optional[str] = None):
        super().__init__("Share link has expired", share_token)


class SharePasswordRequiredError(ShareAccessError):
    def __init__(self, share_token: Optional[str] = None):
        super().__init__("Password required", share_token)


class InvalidSharePasswordError(ShareAccessError):
    def __init__(self, share_token: Optional[str] = None):
        super().__init__("Invalid password", share_token)
