"""Errors raised by storage adaptors.

Every adaptor operation surfaces failures as one of these classes so that
callers never need to know which backend is active.
"""


class AdaptorError(Exception):
    """Base class for storage failures."""

    detail: str = "Storage operation failed"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.__class__.detail
        super().__init__(self.detail)


class NotFound(AdaptorError):
    detail = "Record not found"


class Conflict(AdaptorError):
    detail = "Record already exists"


class Unauthorized(AdaptorError):
    detail = "Password does not match"


class Backend(AdaptorError):
    detail = "Storage backend unavailable"
