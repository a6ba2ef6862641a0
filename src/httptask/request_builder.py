"""
Request builders for httptask.

A request builder turns a base URL, a path, a method, parameters and
extra headers into a wire-level Request. Two builders ship with the
library:

- RequestBuilder: form bodies (url-encoded, or multipart when a file
  payload is present)
- JsonRequestBuilder: JSON bodies for POST/PUT, multipart for files
"""

import json
import logging
import re
from typing import Mapping, Optional

from .http_primitives import CachePolicy, Headers, HttpMethod, Request, merge_header
from .parameters import (
    FORM_URLENCODED,
    MULTIPART_FORM_DATA,
    Parameters,
    build_multipart_body,
    build_url_encoded_body,
    encode_query,
    generate_boundary,
    is_multipart,
    validate_parameters,
)

logger = logging.getLogger(__name__)

_ABSOLUTE_URL_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")

OCTET_STREAM = "application/octet-stream"


def calculate_url(base_url: Optional[str], path: str) -> str:
    """
    Compose the final URL of a request.

    ``path`` is used verbatim when it is already absolute or when there
    is no base URL; otherwise it is joined to ``base_url`` as a path
    component.
    """
    if base_url is None or _ABSOLUTE_URL_RE.match(path):
        return path

    if not path:
        return base_url

    return base_url.rstrip("/") + "/" + path.lstrip("/")


def append_query(url: str, query: str) -> str:
    """Append an encoded query, using ``&`` when the URL has one already."""
    if not query:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


class RequestBuilder:
    """
    Builds form-encoded requests, including multipart.

    Parameters of GET/HEAD/DELETE go to the URL query; parameters of
    POST/PUT become the body. Extra headers are applied last so they can
    override anything the builder set.
    """

    DEFAULT_TIMEOUT = 60.0
    DEFAULT_ENCODING = "utf-8"

    def __init__(
        self,
        timeout: Optional[float] = None,
        cache_policy: CachePolicy = CachePolicy.USE_PROTOCOL_CACHE_POLICY,
        headers: Optional[Mapping[str, str]] = None,
        encoding: Optional[str] = None,
    ):
        """
        Initialize the builder.

        Args:
            timeout: Timeout applied to every built request in seconds
            cache_policy: Cache policy applied to every built request
            headers: Headers added to every built request
            encoding: Text encoding for url-encoded bodies
        """
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.cache_policy = cache_policy
        self.headers: Headers = dict(headers or {})
        self.encoding = encoding or self.DEFAULT_ENCODING

    def build(
        self,
        base_url: Optional[str],
        path: str,
        method: HttpMethod,
        parameters: Optional[Parameters] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Request:
        """
        Build a request.

        Args:
            base_url: Optional base URL the path is resolved against
            path: Path or absolute URL of the resource
            method: HTTP method
            parameters: Optional parameter tree
            headers: Extra headers, applied after everything else

        Returns:
            The immutable Request
        """
        if parameters is not None:
            validate_parameters(parameters)

        url = calculate_url(base_url, path)
        request_headers: Headers = dict(self.headers)
        body: Optional[bytes] = None

        if method.has_query_parameters:
            if parameters:
                url = append_query(url, encode_query(parameters))
        elif is_multipart(parameters):
            boundary = generate_boundary()
            body = build_multipart_body(parameters, boundary)  # type: ignore[arg-type]
            request_headers = merge_header(
                request_headers, "Content-Type", f"{MULTIPART_FORM_DATA}; boundary={boundary}"
            )
        else:
            request_headers, body = self.encode_body(request_headers, parameters)

        if body is not None:
            request_headers = merge_header(request_headers, "Content-Length", str(len(body)))

        for name, value in (headers or {}).items():
            request_headers = merge_header(request_headers, name, value)

        logger.debug(f"Built request: {method.value} {url}")
        return Request.create(
            method,
            url,
            headers=request_headers,
            body=body,
            cache_policy=self.cache_policy,
            timeout=self.timeout,
        )

    def build_upload(
        self,
        base_url: Optional[str],
        path: str,
        method: HttpMethod,
        parameters: Optional[Parameters] = None,
        headers: Optional[Mapping[str, str]] = None,
        content_length: Optional[int] = None,
    ) -> Request:
        """
        Build the head of an upload request.

        The body is supplied separately by the transport, so parameters
        are encoded into the URL query for every method.
        """
        if parameters:
            validate_parameters(parameters)
            if is_multipart(parameters):
                raise ValueError("file payloads cannot be combined with an upload body")

        url = calculate_url(base_url, path)
        if parameters:
            url = append_query(url, encode_query(parameters))

        request_headers = merge_header(self.headers, "Content-Type", OCTET_STREAM)
        if content_length is not None:
            request_headers = merge_header(request_headers, "Content-Length", str(content_length))

        for name, value in (headers or {}).items():
            request_headers = merge_header(request_headers, name, value)

        return Request.create(
            method,
            url,
            headers=request_headers,
            cache_policy=self.cache_policy,
            timeout=self.timeout,
        )

    def encode_body(self, headers: Headers, parameters: Optional[Parameters]):
        """Encode a non-multipart POST/PUT body; returns (headers, body)."""
        headers = merge_header(headers, "Content-Type", FORM_URLENCODED)
        if parameters is None:
            return headers, None
        return headers, build_url_encoded_body(parameters, self.encoding)


class JsonRequestBuilder(RequestBuilder):
    """Builds requests whose POST/PUT bodies are JSON documents."""

    def encode_body(self, headers: Headers, parameters: Optional[Parameters]):
        headers = merge_header(headers, "Content-Type", "application/json")
        if parameters is None:
            return headers, None
        return headers, json.dumps(parameters).encode("utf-8")
