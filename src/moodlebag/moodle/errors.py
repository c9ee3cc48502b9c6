"""Exceptions raised by the Moodle web-service client."""

from pathlib import Path


class MoodleError(Exception):
    """Base class for all Moodle client errors."""


class TransportError(MoodleError):
    """The request could not be completed (connection, DNS, TLS, timeout)."""


class ProtocolError(MoodleError):
    """The response body did not have the expected shape."""


class AuthenticationError(MoodleError):
    """Moodle refused to issue a web-service token.

    The backend's message and error code are kept verbatim so that operators
    can tell apart bad credentials, disabled web services, IP restrictions, etc.
    """

    def __init__(self, message: str, errorcode: str = ""):
        self.message = message
        self.errorcode = errorcode
        if errorcode:
            super().__init__(f"{message} ({errorcode})")
        else:
            super().__init__(message)


class NotAuthenticatedError(AuthenticationError):
    """A call was attempted before any successful authentication."""

    def __init__(self, message: str = "Not authenticated. Call authenticate() first."):
        super().__init__(message)


class HTTPStatusError(MoodleError):
    """The server answered with a non-success HTTP status."""

    def __init__(self, status_code: int, url: str, message: str | None = None):
        self.status_code = status_code
        self.url = url
        super().__init__(message or f"HTTP {status_code} from {url}")


class DownloadError(HTTPStatusError):
    """A file download answered with a non-success HTTP status."""

    def __init__(self, status_code: int, url: str):
        super().__init__(status_code, url, f"failed to download file: status code {status_code}")


class FilesystemError(MoodleError):
    """A local directory or file could not be created or written."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(f"{message}: {path}")
