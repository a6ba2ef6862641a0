"""
Custom exceptions for httptask.

This module defines the exception hierarchy surfaced to callers.
Every error carries a stable ``domain`` string and a numeric ``code``;
for HTTP status failures the code is the status itself.
"""

from typing import Any, Optional


HTTP_ERROR_DOMAIN = "HttpDomain"
SERIALIZER_ERROR_DOMAIN = "HttpResponseSerializerDomain"

# Reserved codes (negative, so they never clash with HTTP statuses)
TRANSPORT_ERROR_CODE = -1
CANCELLED_ERROR_CODE = -999
PARSE_ERROR_CODE = -1011
CLIENT_CLOSED_ERROR_CODE = -1012
AUTHORIZATION_ERROR_CODE = -1013
FILESYSTEM_ERROR_CODE = -3000


class HTTPClientError(Exception):
    """Base exception for all httptask errors."""

    domain = HTTP_ERROR_DOMAIN
    code = TRANSPORT_ERROR_CODE

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class TransportError(HTTPClientError):
    """Raised when the transport fails (connectivity, timeout, protocol)."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Transport error: {message}", cause)


class StreamError(HTTPClientError):
    """Raised when an upload body stream fails."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Stream error: {message}", cause)


class HttpStatusError(HTTPClientError):
    """Raised when a response status is outside [200, 300)."""

    domain = SERIALIZER_ERROR_DOMAIN

    def __init__(
        self,
        status_code: int,
        message: str,
        response: Any = None,
        body: bytes = b"",
    ) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.code = status_code
        self.status_code = status_code
        self.response = response
        self.body = body


class ParseError(HTTPClientError):
    """Raised when a successful response body cannot be decoded."""

    domain = SERIALIZER_ERROR_DOMAIN
    code = PARSE_ERROR_CODE

    def __init__(
        self,
        message: str,
        response: Any = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(f"Parse error: {message}", cause)
        self.response = response


class AuthorizationError(HTTPClientError):
    """Raised when the pre-flight authorization step fails."""

    code = AUTHORIZATION_ERROR_CODE

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Authorization error: {message}", cause)


class FilesystemError(HTTPClientError):
    """Raised when a downloaded file cannot be moved to its destination."""

    code = FILESYSTEM_ERROR_CODE

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        destination: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(f"Filesystem error: {message}", cause)
        self.source = source
        self.destination = destination


class RequestCancelledError(HTTPClientError):
    """Raised when a request is cancelled before it completes."""

    code = CANCELLED_ERROR_CODE

    def __init__(self, message: str = "Request was cancelled") -> None:
        super().__init__(message)


class ClientClosedError(HTTPClientError):
    """Raised when the client is used after (or closed during) a request."""

    code = CLIENT_CLOSED_ERROR_CODE

    def __init__(self, message: str = "Client is closed") -> None:
        super().__init__(message)
