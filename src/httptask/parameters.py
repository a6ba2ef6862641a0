"""
Parameter encoding for httptask.

Request parameters form a tree: scalars, sequences, mappings with
string keys, and file payloads. This module flattens the tree into
``(key, value)`` pairs and encodes those pairs either as an
``application/x-www-form-urlencoded`` body/query or as a
``multipart/form-data`` body.

Flattening rules, for a value found under key ``k``:

- scalar      -> ``(k, str(value))``
- sequence    -> every element is flattened under ``k[]``
- mapping     -> every ``(name, v)`` is flattened under ``k[name]``
                 (or ``name`` at the top level)

Sibling keys keep the insertion order of their mapping, so encoding
the same parameters always yields the same bytes.
"""

import logging
import os
import secrets
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import quote

from typing_extensions import TypeAlias

logger = logging.getLogger(__name__)

CRLF = b"\r\n"

FORM_URLENCODED = "application/x-www-form-urlencoded"
MULTIPART_FORM_DATA = "multipart/form-data"
DEFAULT_FILE_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class FilePayload:
    """
    A file value inside a parameter tree.

    Exactly one of ``data`` and ``path`` is set. ``filename`` defaults
    to the basename of ``path``.
    """

    data: Optional[bytes] = None
    path: Optional[Union[str, "os.PathLike[str]"]] = None
    mime_type: str = DEFAULT_FILE_MIME_TYPE
    filename: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.data is None) == (self.path is None):
            raise ValueError("FilePayload needs exactly one of data or path")
        if self.data is not None and not isinstance(self.data, bytes):
            raise ValueError("FilePayload data must be bytes")

    @property
    def name(self) -> str:
        """The filename sent in the Content-Disposition line."""
        if self.filename:
            return self.filename
        if self.path is not None:
            return os.path.basename(os.fspath(self.path))
        return "file"

    def read(self) -> bytes:
        """Return the payload bytes, reading the file if needed."""
        if self.data is not None:
            return self.data
        with open(os.fspath(self.path), "rb") as f:  # type: ignore[arg-type]
            return f.read()


Scalar: TypeAlias = Union[str, int, float, bool, bytes, None]
ParameterValue: TypeAlias = Union[
    Scalar, FilePayload, Sequence[Any], Mapping[str, Any]
]
Parameters: TypeAlias = Mapping[str, ParameterValue]


@dataclass(frozen=True)
class MultipartSegment:
    """One encoded part of a multipart body."""

    name: str
    data: bytes
    filename: Optional[str] = None
    content_type: Optional[str] = None

    def encode(self, boundary: str) -> bytes:
        """Frame this part with the opening boundary line."""
        disposition = f'Content-Disposition: form-data; name="{_quote_header_param(self.name)}"'
        if self.filename is not None:
            disposition += f'; filename="{_quote_header_param(self.filename)}"'

        lines = [f"--{boundary}".encode("utf-8"), disposition.encode("utf-8")]
        if self.content_type is not None:
            lines.append(f"Content-Type: {self.content_type}".encode("utf-8"))

        return CRLF.join(lines) + CRLF + CRLF + self.data + CRLF


def _quote_header_param(value: str) -> str:
    return value.replace("\r", "%0D").replace("\n", "%0A").replace('"', "%22")


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def validate_parameters(parameters: Any) -> None:
    """
    Check that a parameter tree is well-formed.

    Raises:
        ValueError: If the tree contains a cycle, a non-string mapping
                    key, or the top level is not a mapping
    """
    if not isinstance(parameters, Mapping):
        raise ValueError("parameters must be a mapping")
    _check_node(parameters, [])


def _check_node(value: Any, ancestors: List[int]) -> None:
    if isinstance(value, Mapping):
        children = list(value.values())
        for key in value:
            if not isinstance(key, str):
                raise ValueError(f"parameter keys must be strings, got {key!r}")
    elif _is_sequence(value):
        children = list(value)
    else:
        return

    if id(value) in ancestors:
        raise ValueError("parameters contain a cycle")

    ancestors.append(id(value))
    for child in children:
        _check_node(child, ancestors)
    ancestors.pop()


def flatten_parameters(parameters: Parameters) -> List[Tuple[str, Any]]:
    """
    Flatten a parameter tree into ordered ``(key, leaf)`` pairs.

    Leaves are scalars or FilePayload instances, left unconverted.
    """
    validate_parameters(parameters)
    return _flatten(None, parameters)


def _flatten(key: Optional[str], value: Any) -> List[Tuple[str, Any]]:
    pairs: List[Tuple[str, Any]] = []

    if isinstance(value, Mapping):
        for nested_key, nested_value in value.items():
            new_key = f"{key}[{nested_key}]" if key is not None else nested_key
            pairs.extend(_flatten(new_key, nested_value))
    elif _is_sequence(value):
        if key is None:
            raise ValueError("a sequence needs a key")
        for element in value:
            pairs.extend(_flatten(f"{key}[]", element))
    else:
        pairs.append((key, value))

    return pairs


def string_value(value: Any) -> str:
    """Convert a scalar leaf to its string form."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, FilePayload):
        raise ValueError("file payloads can only be sent as multipart")
    return str(value)


def percent_encode(value: str) -> str:
    """Percent-encode everything outside the unreserved set."""
    return quote(value, safe="")


def is_multipart(parameters: Optional[Parameters]) -> bool:
    """True iff any value in the tree, at any depth, is a FilePayload."""
    if not parameters:
        return False
    return _contains_file(parameters)


def _contains_file(value: Any) -> bool:
    if isinstance(value, FilePayload):
        return True
    if isinstance(value, Mapping):
        return any(_contains_file(v) for v in value.values())
    if _is_sequence(value):
        return any(_contains_file(v) for v in value)
    return False


def encode_query(parameters: Parameters) -> str:
    """Encode parameters as ``k=v`` pairs joined by ``&``."""
    return "&".join(
        f"{percent_encode(key)}={percent_encode(string_value(value))}"
        for key, value in flatten_parameters(parameters)
    )


def build_url_encoded_body(parameters: Parameters, encoding: str = "utf-8") -> bytes:
    """Build an ``application/x-www-form-urlencoded`` body."""
    return encode_query(parameters).encode(encoding)


def generate_boundary() -> str:
    """Create a boundary token, unique per request."""
    return f"httptask-boundary-{secrets.token_hex(16)}"


def multipart_segments(parameters: Parameters) -> List[MultipartSegment]:
    """Build one segment per flattened parameter pair."""
    segments = []
    for key, value in flatten_parameters(parameters):
        if isinstance(value, FilePayload):
            segments.append(
                MultipartSegment(
                    name=key,
                    data=value.read(),
                    filename=value.name,
                    content_type=value.mime_type,
                )
            )
        else:
            segments.append(MultipartSegment(name=key, data=string_value(value).encode("utf-8")))
    return segments


def build_multipart_body(parameters: Parameters, boundary: str) -> bytes:
    """
    Build a ``multipart/form-data`` body.

    Args:
        parameters: The parameter tree
        boundary: Boundary token separating the parts

    Returns:
        The encoded body, terminated by the closing boundary line
    """
    segments = multipart_segments(parameters)
    body = b"".join(segment.encode(boundary) for segment in segments)
    body += f"--{boundary}--".encode("utf-8") + CRLF

    logger.debug(f"Built multipart body: {len(segments)} parts, {len(body)} bytes")
    return body
