"""
HTTP primitives for httptask.

This module defines the core data structures exchanged between the
request builder, the dispatcher and the transport. Requests and
responses are immutable; "modifying" one creates a new instance.
"""

import base64
import posixpath
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional
from urllib.parse import unquote, urlparse


# Sentinel for "total byte count not known" in progress callbacks
UNKNOWN_LENGTH = -1

Headers = Dict[str, str]

_FILENAME_RE = re.compile(r'filename\*?=(?:UTF-8\'\')?"?([^";]+)"?', re.IGNORECASE)


class HttpMethod(str, Enum):
    """The HTTP method verbs supported by the client."""
    GET = "GET"
    HEAD = "HEAD"
    DELETE = "DELETE"
    POST = "POST"
    PUT = "PUT"

    @property
    def has_query_parameters(self) -> bool:
        """True for verbs whose parameters travel in the URL query."""
        return self in (HttpMethod.GET, HttpMethod.HEAD, HttpMethod.DELETE)


class CachePolicy(Enum):
    """Cache policy hint carried on every request."""
    USE_PROTOCOL_CACHE_POLICY = "use_protocol_cache_policy"
    RELOAD_IGNORING_CACHE = "reload_ignoring_cache"
    RETURN_CACHE_ELSE_LOAD = "return_cache_else_load"


class ChallengeDisposition(Enum):
    """Answer given to an authentication challenge."""
    USE_CREDENTIAL = "use_credential"
    PERFORM_DEFAULT_HANDLING = "perform_default_handling"
    CANCEL = "cancel"
    REJECT_PROTECTION_SPACE = "reject_protection_space"


class AuthenticationMethod(Enum):
    """Kind of challenge raised by the transport."""
    HTTP_BASIC = "basic"
    HTTP_DIGEST = "digest"
    SERVER_TRUST = "server_trust"


def merge_header(headers: Mapping[str, str], name: str, value: str) -> Headers:
    """
    Return a copy of ``headers`` with ``name`` set to ``value``.

    Header keys are unique case-insensitively but keep the casing of
    the most recent writer.
    """
    lowered = name.lower()
    merged = {key: val for key, val in headers.items() if key.lower() != lowered}
    merged[name] = value
    return merged


def find_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Get a header value by name (case-insensitive)."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


@dataclass(frozen=True)
class Credential:
    """
    Client credential attached to a task for challenge responses.

    A credential either carries a user/password pair (HTTP Basic) or a
    server trust object accepted for a server-trust challenge.
    """

    username: Optional[str] = None
    password: Optional[str] = None
    trust: Any = None

    @classmethod
    def for_trust(cls, trust: Any) -> "Credential":
        """Create a credential accepting the given server trust."""
        return cls(trust=trust)

    @property
    def has_password(self) -> bool:
        return self.username is not None

    def basic_authorization(self) -> str:
        """Build the value of an ``Authorization: Basic`` header."""
        if not self.has_password:
            raise ValueError("credential has no username")
        token = f"{self.username}:{self.password or ''}".encode("utf-8")
        return "Basic " + base64.b64encode(token).decode("ascii")


@dataclass(frozen=True)
class AuthenticationChallenge:
    """An authentication challenge raised by the transport for one task."""

    host: str
    port: int
    method: AuthenticationMethod
    realm: Optional[str] = None
    previous_failure_count: int = 0
    server_trust: Any = None


@dataclass(frozen=True)
class Request:
    """
    Immutable wire-level HTTP request.

    Built once per attempt by a request builder. Header keys are unique
    (case-insensitive) and case-preserving.
    """

    method: HttpMethod
    url: str
    headers: Headers = field(default_factory=dict)
    body: Optional[bytes] = None
    cache_policy: CachePolicy = CachePolicy.USE_PROTOCOL_CACHE_POLICY
    timeout: float = 60.0

    def __post_init__(self) -> None:
        """Validate request data after initialization."""
        if not isinstance(self.method, HttpMethod):
            raise ValueError("method must be an HttpMethod")

        parsed = urlparse(self.url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"url must be absolute: {self.url!r}")

        if not isinstance(self.headers, dict):
            raise ValueError("headers must be a dict")

        if self.body is not None and not isinstance(self.body, bytes):
            raise ValueError("body must be bytes")

        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @classmethod
    def create(
        cls,
        method: Any,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
        cache_policy: CachePolicy = CachePolicy.USE_PROTOCOL_CACHE_POLICY,
        timeout: float = 60.0,
    ) -> "Request":
        """
        Create a Request with proper type conversion.

        Args:
            method: HTTP method (HttpMethod or its name)
            url: Absolute URL string
            headers: Optional mapping of header names to values
            body: Optional request body
            cache_policy: Cache policy hint
            timeout: Timeout in seconds for connecting and for each read or write

        Returns:
            New Request instance
        """
        if not isinstance(method, HttpMethod):
            method = HttpMethod(str(method).upper())

        merged: Headers = {}
        for name, value in (headers or {}).items():
            merged = merge_header(merged, name, value)

        return cls(
            method=method,
            url=url,
            headers=merged,
            body=body,
            cache_policy=cache_policy,
            timeout=timeout,
        )

    def with_url(self, url: str) -> "Request":
        """Create a new request with a different URL."""
        return replace(self, url=url)

    def with_method(self, method: HttpMethod) -> "Request":
        """Create a new request with a different method."""
        return replace(self, method=method)

    def with_body(self, body: Optional[bytes]) -> "Request":
        """Create a new request with a different body."""
        return replace(self, body=body)

    def with_header(self, name: str, value: str) -> "Request":
        """Create a new request with ``name`` set, replacing any existing value."""
        return replace(self, headers=merge_header(self.headers, name, value))

    def without_header(self, name: str) -> "Request":
        """Create a new request without the header ``name``."""
        lowered = name.lower()
        headers = {k: v for k, v in self.headers.items() if k.lower() != lowered}
        return replace(self, headers=headers)

    def get_header(self, name: str) -> Optional[str]:
        """Get a header value by name (case-insensitive)."""
        return find_header(self.headers, name)

    @property
    def scheme(self) -> str:
        return urlparse(self.url).scheme

    @property
    def host(self) -> str:
        return urlparse(self.url).hostname or ""

    @property
    def port(self) -> int:
        parsed = urlparse(self.url)
        return parsed.port or (443 if parsed.scheme == "https" else 80)

    @property
    def target(self) -> str:
        """The request target (path plus query) sent on the request line."""
        parsed = urlparse(self.url)
        target = parsed.path or "/"
        if parsed.query:
            target += "?" + parsed.query
        return target


@dataclass(frozen=True)
class Response:
    """
    Immutable HTTP response head.

    The body is not part of the response; it is streamed to the task
    delegate while the transport reads it.
    """

    status_code: int
    url: str
    headers: Headers = field(default_factory=dict)
    reason: str = ""
    extensions: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate response data after initialization."""
        if not isinstance(self.status_code, int):
            raise ValueError("status_code must be int")

        if not isinstance(self.headers, dict):
            raise ValueError("headers must be a dict")

        if not isinstance(self.extensions, dict):
            raise ValueError("extensions must be a dict")

    def with_extensions(self, extensions: Dict[str, Any]) -> "Response":
        """Create a new response with different extensions."""
        return replace(self, extensions=extensions)

    def get_header(self, name: str) -> Optional[str]:
        """Get a header value by name (case-insensitive)."""
        return find_header(self.headers, name)

    def has_header(self, name: str) -> bool:
        """Check if a header exists (case-insensitive)."""
        return self.get_header(name) is not None

    @property
    def content_length(self) -> int:
        """Declared body length, or ``UNKNOWN_LENGTH``."""
        value = self.get_header("Content-Length")
        if value is None:
            return UNKNOWN_LENGTH
        try:
            return int(value)
        except ValueError:
            return UNKNOWN_LENGTH

    @property
    def suggested_filename(self) -> str:
        """
        Filename suggested by the server.

        Taken from ``Content-Disposition`` when present, otherwise the
        last segment of the URL path, otherwise ``"download"``.
        """
        disposition = self.get_header("Content-Disposition")
        if disposition:
            match = _FILENAME_RE.search(disposition)
            if match:
                name = posixpath.basename(unquote(match.group(1)).strip())
                if name:
                    return name

        name = posixpath.basename(unquote(urlparse(self.url).path))
        return name or "download"

    @property
    def is_redirect(self) -> bool:
        return self.status_code in (301, 302, 303, 307, 308) and self.has_header("Location")
