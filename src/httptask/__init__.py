"""
httptask - asynchronous HTTP client engine

Verb requests, uploads and downloads dispatched as transport tasks,
with pluggable request encoding and response decoding, a single
retry on authorization failure, and progress reporting.
"""

__version__ = "0.1.0"
__author__ = "Developer"
__email__ = "dev@example.com"

# Import main components for easy access
from .authorization import AuthzModule
from .client import HttpClient, RequestHandle
from .delegates import DataDelegate, DownloadDelegate, TaskKind, TaskState, UploadDelegate
from .dispatcher import TaskDispatcher, TaskRegistry
from .exceptions import (
    AuthorizationError,
    ClientClosedError,
    FilesystemError,
    HTTPClientError,
    HttpStatusError,
    ParseError,
    RequestCancelledError,
    StreamError,
    TransportError,
)
from .http_primitives import (
    UNKNOWN_LENGTH,
    CachePolicy,
    Credential,
    HttpMethod,
    Request,
    Response,
)
from .parameters import FilePayload
from .request_builder import JsonRequestBuilder, RequestBuilder
from .serializers import JsonResponseSerializer, ResponseSerializer, StringResponseSerializer
from .streams import UploadSource, UploadType
from .transport import H11Transport, MockTransport, Transport

__all__ = [
    "AuthzModule",
    "HttpClient",
    "RequestHandle",
    "DataDelegate",
    "DownloadDelegate",
    "UploadDelegate",
    "TaskKind",
    "TaskState",
    "TaskDispatcher",
    "TaskRegistry",
    "HTTPClientError",
    "TransportError",
    "HttpStatusError",
    "ParseError",
    "AuthorizationError",
    "FilesystemError",
    "RequestCancelledError",
    "ClientClosedError",
    "StreamError",
    "UNKNOWN_LENGTH",
    "CachePolicy",
    "Credential",
    "HttpMethod",
    "Request",
    "Response",
    "FilePayload",
    "RequestBuilder",
    "JsonRequestBuilder",
    "ResponseSerializer",
    "StringResponseSerializer",
    "JsonResponseSerializer",
    "UploadSource",
    "UploadType",
    "Transport",
    "H11Transport",
    "MockTransport",
]
