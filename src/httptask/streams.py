"""
Upload body sources for httptask.

An upload body comes from raw bytes, a local file or an async stream.
UploadSource wraps all three behind one async iteration interface so
the transport can send the body chunk by chunk and report progress.
"""

import asyncio
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Optional, Union

from .exceptions import StreamError
from .http_primitives import UNKNOWN_LENGTH

DEFAULT_CHUNK_SIZE = 65536


class UploadType(Enum):
    """The kinds of upload body."""
    DATA = "data"
    FILE = "file"
    STREAM = "stream"


@dataclass(frozen=True)
class UploadSource:
    """
    Where an upload body comes from.

    For STREAM uploads the stream is handed to the task delegate, which
    supplies it when the transport asks for a body stream.
    """

    type: UploadType
    data: Optional[bytes] = None
    path: Optional[Union[str, "os.PathLike[str]"]] = None
    stream: Optional[AsyncIterable[bytes]] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "UploadSource":
        """
        Infer the upload kind from a payload.

        bytes -> DATA, str or path-like -> FILE, async iterable -> STREAM.
        """
        if isinstance(payload, UploadSource):
            return payload
        if isinstance(payload, (bytes, bytearray, memoryview)):
            return cls(type=UploadType.DATA, data=bytes(payload))
        if isinstance(payload, (str, os.PathLike)):
            return cls(type=UploadType.FILE, path=payload)
        if hasattr(payload, "__aiter__"):
            return cls(type=UploadType.STREAM, stream=payload)
        raise ValueError(f"unsupported upload payload: {type(payload).__name__}")

    @property
    def content_length(self) -> int:
        """Body size in bytes, or ``UNKNOWN_LENGTH`` for streams."""
        if self.type is UploadType.DATA:
            return len(self.data or b"")
        if self.type is UploadType.FILE:
            return os.path.getsize(os.fspath(self.path))  # type: ignore[arg-type]
        return UNKNOWN_LENGTH


async def iter_bytes(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Iterate over bytes in chunks."""
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]


async def iter_file(path: Union[str, "os.PathLike[str]"], chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Iterate over a local file in chunks, reading off the event loop."""
    loop = asyncio.get_running_loop()
    with open(os.fspath(path), "rb") as f:
        while True:
            chunk = await loop.run_in_executor(None, f.read, chunk_size)
            if not chunk:
                break
            yield chunk


async def iter_stream(stream: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Iterate over a caller supplied stream, skipping empty chunks."""
    try:
        async for chunk in stream:
            if not isinstance(chunk, (bytes, bytearray)):
                raise StreamError(f"stream yielded {type(chunk).__name__}, expected bytes")
            if chunk:
                yield bytes(chunk)
    except StreamError:
        raise
    except Exception as e:
        raise StreamError(f"Error reading from stream: {e}", cause=e) from e


async def read_stream_to_bytes(stream: AsyncIterable[bytes]) -> bytes:
    """
    Read entire stream and return as bytes.

    Args:
        stream: Async iterable of bytes

    Returns:
        All bytes from the stream concatenated
    """
    chunks = []
    async for chunk in stream:
        chunks.append(chunk)
    return b"".join(chunks)
