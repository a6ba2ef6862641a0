"""
Per-task delegates for httptask.

A delegate holds the state of one transport task: the bytes received
so far, progress hooks, download placement, and the completion logic
that validates and decodes the response exactly once.

The dispatcher routes transport callbacks to delegates by task
identifier and matches on the delegate type for the kind-specific
hooks (data, upload progress, download progress).
"""

import logging
import os
import shutil
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterable, Callable, Optional, Tuple, Union

from .exceptions import FilesystemError, HTTPClientError
from .http_primitives import (
    AuthenticationChallenge,
    AuthenticationMethod,
    ChallengeDisposition,
    Credential,
    Request,
    Response,
)
from .serializers import JsonResponseSerializer, ResponseSerializer

logger = logging.getLogger(__name__)

CompletionHandler = Callable[[Any, Optional[BaseException]], None]
ProgressCallback = Callable[[int, int, int], None]

DOWNLOAD_PATH_EXTENSION = "download_path"


class TaskKind(Enum):
    """Kinds of transport task."""
    DATA = "data"
    UPLOAD = "upload"
    DOWNLOAD = "download"


class TaskState(Enum):
    """Lifecycle of a registry entry."""
    CREATED = "created"          # Registered, transport not started
    RUNNING = "running"          # Transport reported activity
    REDIRECTING = "redirecting"  # Following a redirect
    COMPLETING = "completing"    # Completion routine running
    REMOVED = "removed"          # Evicted from the registry, terminal


class TaskDelegate:
    """
    Base delegate: redirect, challenge and completion handling.

    Completion with a transport error surfaces that error as-is. A
    completion without error runs the response serializer over the
    accumulated bytes.
    """

    kind = TaskKind.DATA

    def __init__(
        self,
        completion_handler: Optional[CompletionHandler] = None,
        response_serializer: Optional[ResponseSerializer] = None,
        credential: Optional[Credential] = None,
    ):
        self.completion_handler = completion_handler
        self.response_serializer = response_serializer or JsonResponseSerializer()
        self.credential = credential
        self.state = TaskState.CREATED
        self._delivered = False

    @property
    def data(self) -> Optional[bytes]:
        return None

    @property
    def delivered(self) -> bool:
        """True once the completion handler has been called."""
        return self._delivered

    def will_perform_redirect(self, response: Response, new_request: Request) -> Optional[Request]:
        """Return the request to follow, or None to stop at the redirect."""
        return new_request

    def handle_challenge(
        self, challenge: AuthenticationChallenge
    ) -> Tuple[ChallengeDisposition, Optional[Credential]]:
        """Answer a credential challenge for this task."""
        if challenge.method is AuthenticationMethod.SERVER_TRUST:
            return ChallengeDisposition.PERFORM_DEFAULT_HANDLING, None

        if challenge.previous_failure_count > 0:
            return ChallengeDisposition.CANCEL, None

        if self.credential is not None:
            return ChallengeDisposition.USE_CREDENTIAL, self.credential

        return ChallengeDisposition.PERFORM_DEFAULT_HANDLING, None

    def body_stream(self) -> Optional[AsyncIterable[bytes]]:
        """Supply a body stream for streamed uploads."""
        return None

    def did_complete(self, response: Optional[Response], error: Optional[BaseException]) -> None:
        if error is not None:
            self.deliver(None, error)
            return

        if response is None:
            self.deliver(None, HTTPClientError("Task completed without a response"))
            return

        body = self.data or b""
        try:
            self.response_serializer.validate(response.status_code, body, response)
            value = self.response_serializer.decode(body)
        except HTTPClientError as e:
            self.deliver(None, e)
            return
        except Exception as e:
            logger.error(f"Response serializer failed: {e!r}")
            self.deliver(None, e)
            return

        self.deliver(value, None)

    def deliver(self, value: Any, error: Optional[BaseException]) -> None:
        """Call the completion handler, at most once."""
        if self._delivered:
            logger.warning("Ignoring second completion for an already delivered task")
            return
        self._delivered = True

        if self.completion_handler is not None:
            self.completion_handler(value, error)


class DataDelegate(TaskDelegate):
    """Accumulates every received chunk, in order, into one buffer."""

    kind = TaskKind.DATA

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._buffer = bytearray()

    @property
    def data(self) -> bytes:
        return bytes(self._buffer)

    def did_receive_data(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)


class UploadDelegate(DataDelegate):
    """Data delegate that also reports upload progress."""

    kind = TaskKind.UPLOAD

    def __init__(
        self,
        *args: Any,
        upload_progress: Optional[ProgressCallback] = None,
        stream: Optional[AsyncIterable[bytes]] = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.upload_progress = upload_progress
        self.stream = stream

    def body_stream(self) -> Optional[AsyncIterable[bytes]]:
        return self.stream

    def did_send_body_data(self, bytes_sent: int, total_bytes_sent: int, total_bytes_expected: int) -> None:
        if self.upload_progress is not None:
            self.upload_progress(bytes_sent, total_bytes_sent, total_bytes_expected)


class DownloadDelegate(TaskDelegate):
    """
    Places a finished download and reports download progress.

    The transport downloads to a temporary file; once finished, the file
    is moved to ``<destination_directory>/<suggested filename>``, falling
    back to ``default_directory`` when no destination was given.
    """

    kind = TaskKind.DOWNLOAD

    def __init__(
        self,
        *args: Any,
        destination_directory: Optional[Union[str, "os.PathLike[str]"]] = None,
        default_directory: Optional[Union[str, "os.PathLike[str]"]] = None,
        download_progress: Optional[ProgressCallback] = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.destination_directory = destination_directory
        self.default_directory = default_directory
        self.download_progress = download_progress
        self.final_location: Optional[Path] = None
        self.move_error: Optional[FilesystemError] = None

    def did_write_data(self, bytes_written: int, total_bytes_written: int, total_bytes_expected: int) -> None:
        if self.download_progress is not None:
            self.download_progress(bytes_written, total_bytes_written, total_bytes_expected)

    def destination_for(self, response: Response) -> Path:
        """Compute the final destination of a finished download."""
        directory = self.destination_directory or self.default_directory or Path.cwd()
        return Path(directory) / response.suggested_filename

    def did_finish_downloading(self, response: Response, location: Union[str, "os.PathLike[str]"]) -> None:
        destination = self.destination_for(response)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(os.fspath(location), os.fspath(destination))
        except OSError as e:
            logger.error(f"Failed to move download {location} to {destination}: {e}")
            self.move_error = FilesystemError(
                f"could not move download to {destination}",
                source=os.fspath(location),
                destination=os.fspath(destination),
                cause=e,
            )
            return

        self.final_location = destination
        logger.debug(f"Download moved to {destination}")

    def did_complete(self, response: Optional[Response], error: Optional[BaseException]) -> None:
        if error is not None:
            self.deliver(None, error)
            return

        if self.move_error is not None:
            self.deliver(None, self.move_error)
            return

        if response is not None and self.final_location is not None:
            extensions = dict(response.extensions)
            extensions[DOWNLOAD_PATH_EXTENSION] = str(self.final_location)
            response = response.with_extensions(extensions)

        self.deliver(response, None)
