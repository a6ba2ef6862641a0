"""
Mock transport for testing.

MockTransport plays scripted responses (or failures) back through the
dispatcher callbacks, without any network I/O, and records every
request it was asked to perform.
"""

import asyncio
import json
import os
import tempfile
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from ..delegates import TaskKind
from ..exceptions import RequestCancelledError, StreamError, TransportError
from ..http_primitives import UNKNOWN_LENGTH, Request, Response
from ..streams import UploadSource, UploadType, iter_stream, read_stream_to_bytes
from .base import Transport


@dataclass
class MockResponse:
    """A scripted outcome for one task."""

    status_code: int = 200
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    chunks: Optional[List[bytes]] = None
    error: Optional[BaseException] = None
    delay: float = 0.0
    omit_content_length: bool = False

    def body_chunks(self) -> List[bytes]:
        if self.chunks is not None:
            return list(self.chunks)
        return [self.body] if self.body else []


class MockTransport(Transport):
    """
    Mock transport for testing.

    Outcomes are consumed in FIFO order; when none is queued the default
    (an empty 200 response) is used.
    """

    def __init__(self, default: Optional[MockResponse] = None):
        """
        Initialize the mock transport.

        Args:
            default: Outcome used when no scripted outcome is queued
        """
        super().__init__()
        self.default = default or MockResponse()
        self._outcomes: Deque[MockResponse] = deque()
        self._runners: Dict[int, "asyncio.Task[None]"] = {}
        self._kinds: Dict[int, TaskKind] = {}
        self._uploads: Dict[int, Optional[UploadSource]] = {}
        self._task_requests: Dict[int, Request] = {}
        self.requests: List[Request] = []
        self.uploaded: Dict[int, bytes] = {}
        self.cancelled: List[int] = []
        self.closed = False

    def add_response(
        self,
        status_code: int = 200,
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> None:
        """Queue a response."""
        self._outcomes.append(
            MockResponse(status_code=status_code, body=body, headers=dict(headers or {}), **kwargs)
        )

    def add_json(self, payload: Any, status_code: int = 200, **kwargs: Any) -> None:
        """Queue a JSON response."""
        self.add_response(
            status_code,
            json.dumps(payload).encode("utf-8"),
            {"Content-Type": "application/json"},
            **kwargs,
        )

    def add_error(self, error: BaseException, delay: float = 0.0) -> None:
        """Queue a transport failure."""
        self._outcomes.append(MockResponse(error=error, delay=delay))

    @property
    def pending(self) -> int:
        """Number of tasks created but not yet completed."""
        return len(self._kinds)

    def create_task(
        self,
        kind: TaskKind,
        request: Request,
        upload: Optional[UploadSource] = None,
    ) -> int:
        task_id = self.next_task_id()
        self._kinds[task_id] = kind
        self._uploads[task_id] = upload
        self._task_requests[task_id] = request
        self.requests.append(request)
        return task_id

    def resume(self, task_id: int) -> None:
        if task_id not in self._kinds or task_id in self._runners:
            return
        outcome = self._outcomes.popleft() if self._outcomes else self.default
        request = self._task_requests[task_id]
        self._runners[task_id] = asyncio.get_running_loop().create_task(
            self._run(task_id, request, outcome)
        )

    def cancel(self, task_id: int) -> None:
        self.cancelled.append(task_id)
        runner = self._runners.get(task_id)
        if runner is not None:
            runner.cancel()
        elif task_id in self._kinds:
            self._finish(task_id, None, RequestCancelledError())

    async def aclose(self) -> None:
        self.closed = True
        runners = list(self._runners.values())
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)

    def _finish(self, task_id: int, response: Optional[Response], error: Optional[BaseException]) -> None:
        self._kinds.pop(task_id, None)
        self._uploads.pop(task_id, None)
        self._runners.pop(task_id, None)
        self._task_requests.pop(task_id, None)
        self.dispatcher.did_complete(task_id, response, error)

    async def _run(self, task_id: int, request: Request, outcome: MockResponse) -> None:
        try:
            # Always deliver asynchronously, after the caller registered
            await asyncio.sleep(outcome.delay)

            if outcome.error is not None:
                self._finish(task_id, None, outcome.error)
                return

            kind = self._kinds[task_id]
            if kind is TaskKind.UPLOAD:
                await self._send_upload(task_id, self._uploads.get(task_id))

            chunks = outcome.body_chunks()
            total = sum(len(chunk) for chunk in chunks)
            headers = dict(outcome.headers)
            if not outcome.omit_content_length:
                headers.setdefault("Content-Length", str(total))
            response = Response(status_code=outcome.status_code, url=request.url, headers=headers)

            if kind is TaskKind.DOWNLOAD:
                self._write_download(task_id, response, chunks)
            else:
                for chunk in chunks:
                    self.dispatcher.did_receive_data(task_id, chunk)
        except asyncio.CancelledError:
            self._finish(task_id, None, RequestCancelledError())
            return
        except (OSError, StreamError) as e:
            self._finish(task_id, None, TransportError(str(e), cause=e))
            return

        self._finish(task_id, response, None)

    async def _send_upload(self, task_id: int, upload: Optional[UploadSource]) -> None:
        if upload is None:
            return

        if upload.type is UploadType.DATA:
            body = upload.data or b""
        elif upload.type is UploadType.FILE:
            with open(os.fspath(upload.path), "rb") as f:  # type: ignore[arg-type]
                body = f.read()
        else:
            stream = self.dispatcher.need_new_body_stream(task_id)
            body = await read_stream_to_bytes(iter_stream(stream)) if stream is not None else b""

        expected = UNKNOWN_LENGTH if upload.type is UploadType.STREAM else len(body)
        if body:
            self.dispatcher.did_send_body_data(task_id, len(body), len(body), expected)
        self.uploaded[task_id] = body

    def _write_download(self, task_id: int, response: Response, chunks: List[bytes]) -> None:
        expected = response.content_length
        fd, temp_path = tempfile.mkstemp(prefix="httptask-mock-", suffix=".download")
        try:
            with os.fdopen(fd, "wb") as f:
                total = 0
                for chunk in chunks:
                    f.write(chunk)
                    total += len(chunk)
                    self.dispatcher.did_write_data(task_id, len(chunk), total, expected)
            self.dispatcher.did_finish_downloading(task_id, response, temp_path)
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)
