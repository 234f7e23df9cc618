"""Custom exceptions for the CSU portal clients."""


class PortalError(Exception):
    """Base exception for portal errors."""

    pass


class NetworkError(PortalError):
    """Transport failure or non-success HTTP status."""

    def __init__(self, message: str, status_code: int | None = None, url: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class MissingSaltError(PortalError, ValueError):
    """Password encryption was requested without a salt."""

    pass


class AuthenticationError(PortalError):
    """Failed to authenticate with the CAS server."""

    pass


class AuthParseError(AuthenticationError):
    """Login page is missing required hidden form fields."""

    pass


class AuthRejected(AuthenticationError):
    """Login did not redirect to the expected portal.

    Bad credentials and an unreachable portal look the same from here.
    """

    pass


class PageMarkerMissing(PortalError):
    """Page lacks the marker text or table the extractor needs.

    Usually means the session expired mid-sequence or the page layout changed.
    """

    pass


class EmptyField(UserWarning):
    """Extracted row is missing values; they default to empty strings."""

    pass
