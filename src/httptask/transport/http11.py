"""
HTTP/1.1 transport for httptask.

H11Transport runs every task on its own connection using asyncio
streams and the h11 protocol state machine. It follows redirects and
answers HTTP Basic challenges through the dispatcher, streams request
bodies with upload progress, and spools downloads to a temporary file.
"""

import asyncio
import logging
import os
import re
import ssl
import tempfile
import time
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import h11

from ..delegates import TaskKind
from ..exceptions import HTTPClientError, RequestCancelledError, StreamError, TransportError
from ..http_primitives import (
    UNKNOWN_LENGTH,
    AuthenticationChallenge,
    AuthenticationMethod,
    ChallengeDisposition,
    HttpMethod,
    Request,
    Response,
)
from ..streams import UploadSource, UploadType, iter_bytes, iter_file, iter_stream
from .base import Transport

logger = logging.getLogger(__name__)

_REALM_RE = re.compile(r'realm="([^"]*)"', re.IGNORECASE)


def format_host_header(host: str, port: int, scheme: str) -> str:
    """Format the Host header, omitting default ports."""
    if (scheme == "https" and port == 443) or (scheme == "http" and port == 80):
        return host
    return f"{host}:{port}"


@dataclass
class _TransportTask:
    id: int
    kind: TaskKind
    request: Request
    upload: Optional[UploadSource] = None
    runner: Optional["asyncio.Task[None]"] = None


class _Exchange:
    """One request/response cycle over a fresh connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        read_timeout: float,
        chunk_size: int,
    ):
        self._conn = h11.Connection(h11.CLIENT)
        self._reader = reader
        self._writer = writer
        self._read_timeout = read_timeout
        self._chunk_size = chunk_size
        self.bytes_sent = 0
        self.bytes_received = 0

    async def send(self, event: h11.Event) -> None:
        data = self._conn.send(event)
        if data:
            self._writer.write(data)
            await asyncio.wait_for(self._writer.drain(), timeout=self._read_timeout)
            self.bytes_sent += len(data)

    async def _next_event(self, eof_ok: bool) -> h11.Event:
        while True:
            event = self._conn.next_event()

            if event is h11.NEED_DATA:
                data = await asyncio.wait_for(
                    self._reader.read(self._chunk_size),
                    timeout=self._read_timeout,
                )
                if not data and not eof_ok:
                    raise TransportError("Connection closed unexpectedly")
                self._conn.receive_data(data)
                self.bytes_received += len(data)
                continue

            return event

    async def receive_head(self, url: str) -> Response:
        while True:
            event = await self._next_event(eof_ok=False)

            if isinstance(event, h11.InformationalResponse):
                continue

            if isinstance(event, h11.Response):
                return Response(
                    status_code=event.status_code,
                    url=url,
                    headers=_decode_headers(event.headers),
                    reason=event.reason.decode("latin-1"),
                )

            if isinstance(event, h11.ConnectionClosed):
                raise TransportError("Connection closed by server")

    async def iter_body(self) -> AsyncIterator[bytes]:
        while True:
            event = await self._next_event(eof_ok=True)

            if isinstance(event, h11.Data):
                yield bytes(event.data)
            elif isinstance(event, h11.EndOfMessage):
                return
            elif isinstance(event, h11.ConnectionClosed):
                raise TransportError("Connection closed before the body was complete")

    async def aclose(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error closing connection: {e}")


def _decode_headers(raw_headers: List[Tuple[bytes, bytes]]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    names: Dict[str, str] = {}
    for raw_name, raw_value in raw_headers:
        name = raw_name.decode("latin-1")
        value = raw_value.decode("latin-1")
        existing = names.get(name.lower())
        if existing is None:
            names[name.lower()] = name
            headers[name] = value
        else:
            headers[existing] = f"{headers[existing]}, {value}"
    return headers


class H11Transport(Transport):
    """
    HTTP/1.1 transport, one connection per task.

    Connections are not pooled; every exchange sends ``Connection: close``.
    """

    DEFAULT_MAX_REDIRECTS = 10
    DEFAULT_READ_CHUNK_SIZE = 65536
    USER_AGENT = "httptask/0.1.0"

    def __init__(
        self,
        ssl_context: Optional[ssl.SSLContext] = None,
        max_redirects: Optional[int] = None,
        read_chunk_size: Optional[int] = None,
        connect_timeout: Optional[float] = None,
    ):
        """
        Initialize the transport.

        Args:
            ssl_context: TLS context for https URLs (system defaults if None)
            max_redirects: Maximum redirects followed per task
            read_chunk_size: Bytes read from the socket at a time
            connect_timeout: Connect timeout in seconds (request timeout if None)
        """
        super().__init__()
        self._ssl_context = ssl_context
        self._max_redirects = max_redirects if max_redirects is not None else self.DEFAULT_MAX_REDIRECTS
        self._read_chunk_size = read_chunk_size or self.DEFAULT_READ_CHUNK_SIZE
        self._connect_timeout = connect_timeout
        self._tasks: Dict[int, _TransportTask] = {}
        self._closed = False

    def create_task(
        self,
        kind: TaskKind,
        request: Request,
        upload: Optional[UploadSource] = None,
    ) -> int:
        if self._closed:
            raise TransportError("Transport is closed")
        if kind is TaskKind.UPLOAD and upload is None:
            raise ValueError("upload tasks need an upload source")

        task_id = self.next_task_id()
        self._tasks[task_id] = _TransportTask(id=task_id, kind=kind, request=request, upload=upload)
        return task_id

    def resume(self, task_id: int) -> None:
        task = self._tasks.get(task_id)
        if task is None or task.runner is not None:
            return
        task.runner = asyncio.get_running_loop().create_task(self._run(task))

    def cancel(self, task_id: int) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return

        if task.runner is not None:
            task.runner.cancel()
        else:
            # Never started: complete it right away
            self._tasks.pop(task_id, None)
            asyncio.get_running_loop().call_soon(
                self.dispatcher.did_complete, task_id, None, RequestCancelledError()
            )

    async def aclose(self) -> None:
        self._closed = True
        runners = [task.runner for task in self._tasks.values() if task.runner is not None]
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
        self._tasks.clear()
        logger.debug(f"Transport closed, cancelled {len(runners)} tasks")

    async def _run(self, task: _TransportTask) -> None:
        start_time = time.time()
        response: Optional[Response] = None
        error: Optional[BaseException] = None

        try:
            response = await self._perform(task)
        except asyncio.CancelledError:
            error = RequestCancelledError()
        except HTTPClientError as e:
            error = e
        except asyncio.TimeoutError as e:
            error = TransportError(f"Request timed out (timeout: {task.request.timeout}s)", cause=e)
        except (OSError, h11.ProtocolError) as e:
            error = TransportError(str(e) or type(e).__name__, cause=e)
        finally:
            self._tasks.pop(task.id, None)

        duration = time.time() - start_time
        if error is None:
            logger.debug(
                f"Task {task.id}: {task.request.method.value} {task.request.url} "
                f"-> {response.status_code if response else '-'} ({duration:.3f}s)"
            )
        else:
            logger.error(f"Task {task.id} failed: {error} ({duration:.3f}s)")

        self.dispatcher.did_complete(task.id, response, error)

    async def _perform(self, task: _TransportTask) -> Response:
        request = task.request
        redirects = 0
        failures = 0

        while True:
            exchange = await self._open_exchange(task, request)
            try:
                response = await exchange.receive_head(request.url)

                if response.is_redirect:
                    if redirects >= self._max_redirects:
                        raise TransportError(f"Too many redirects ({self._max_redirects})")
                    new_request = self.dispatcher.will_perform_redirect(
                        task.id, response, self._redirect_request(request, response)
                    )
                    if new_request is not None:
                        self._check_replayable(task)
                        redirects += 1
                        request = new_request
                        continue

                elif response.status_code == 401:
                    challenge = self._basic_challenge(request, response, failures)
                    if challenge is not None:
                        disposition, credential = self.dispatcher.did_receive_challenge(task.id, challenge)
                        if disposition is ChallengeDisposition.CANCEL:
                            raise TransportError("Authentication challenge was cancelled")
                        if (
                            disposition is ChallengeDisposition.USE_CREDENTIAL
                            and credential is not None
                            and credential.has_password
                        ):
                            self._check_replayable(task)
                            failures += 1
                            request = request.with_header("Authorization", credential.basic_authorization())
                            continue

                await self._receive_body(task, exchange, response)
                return response
            finally:
                await exchange.aclose()

    async def _connect(
        self, task: _TransportTask, request: Request
    ) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        timeout = self._connect_timeout or request.timeout

        if request.scheme != "https":
            return await asyncio.wait_for(
                asyncio.open_connection(request.host, request.port),
                timeout=timeout,
            )

        context = self._ssl_context or ssl.create_default_context()
        try:
            return await asyncio.wait_for(
                asyncio.open_connection(request.host, request.port, ssl=context, server_hostname=request.host),
                timeout=timeout,
            )
        except ssl.SSLCertVerificationError as e:
            challenge = AuthenticationChallenge(
                host=request.host,
                port=request.port,
                method=AuthenticationMethod.SERVER_TRUST,
                server_trust=e,
            )
            disposition, credential = self.dispatcher.did_receive_challenge(task.id, challenge)
            if disposition is not ChallengeDisposition.USE_CREDENTIAL or credential is None or credential.trust is None:
                raise

        unverified = ssl.create_default_context()
        unverified.check_hostname = False
        unverified.verify_mode = ssl.CERT_NONE
        return await asyncio.wait_for(
            asyncio.open_connection(request.host, request.port, ssl=unverified, server_hostname=request.host),
            timeout=timeout,
        )

    async def _open_exchange(self, task: _TransportTask, request: Request) -> _Exchange:
        reader, writer = await self._connect(task, request)
        exchange = _Exchange(reader, writer, request.timeout, self._read_chunk_size)

        try:
            body, expected = self._body_source(task, request)
            await exchange.send(
                h11.Request(
                    method=request.method.value,
                    target=request.target,
                    headers=self._wire_headers(request, body is not None, expected),
                )
            )

            if body is not None:
                total = 0
                async for chunk in body:
                    await exchange.send(h11.Data(data=chunk))
                    total += len(chunk)
                    if task.kind is TaskKind.UPLOAD:
                        self.dispatcher.did_send_body_data(task.id, len(chunk), total, expected)

            await exchange.send(h11.EndOfMessage())
        except BaseException:
            await exchange.aclose()
            raise

        return exchange

    def _check_replayable(self, task: _TransportTask) -> None:
        # A caller stream is consumed by the first attempt
        upload = task.upload
        if task.kind is TaskKind.UPLOAD and upload is not None and upload.type is UploadType.STREAM:
            raise StreamError("stream upload bodies cannot be resent after a redirect or challenge")

    def _body_source(
        self, task: _TransportTask, request: Request
    ) -> Tuple[Optional[AsyncIterator[bytes]], int]:
        upload = task.upload
        if task.kind is TaskKind.UPLOAD and upload is not None:
            if upload.type is UploadType.DATA:
                return iter_bytes(upload.data or b"", self._read_chunk_size), upload.content_length
            if upload.type is UploadType.FILE:
                return iter_file(upload.path, self._read_chunk_size), upload.content_length  # type: ignore[arg-type]

            stream = self.dispatcher.need_new_body_stream(task.id)
            if stream is None:
                return None, 0
            return iter_stream(stream), UNKNOWN_LENGTH

        if request.body is not None:
            return iter_bytes(request.body, self._read_chunk_size), len(request.body)
        return None, 0

    def _wire_headers(self, request: Request, has_body: bool, expected: int) -> List[Tuple[str, str]]:
        headers = dict(request.headers)
        lowered = {name.lower() for name in headers}

        if "host" not in lowered:
            headers["Host"] = format_host_header(request.host, request.port, request.scheme)
        if "user-agent" not in lowered:
            headers["User-Agent"] = self.USER_AGENT
        headers = {k: v for k, v in headers.items() if k.lower() not in ("connection", "transfer-encoding")}
        headers["Connection"] = "close"

        headers = {k: v for k, v in headers.items() if k.lower() != "content-length"}
        if has_body:
            if expected == UNKNOWN_LENGTH:
                headers["Transfer-Encoding"] = "chunked"
            else:
                headers["Content-Length"] = str(expected)
        elif request.method in (HttpMethod.POST, HttpMethod.PUT):
            headers["Content-Length"] = "0"

        return list(headers.items())

    def _redirect_request(self, request: Request, response: Response) -> Request:
        location = urljoin(request.url, response.get_header("Location") or "")
        new_request = request.with_url(location)

        if response.status_code == 303 or (
            response.status_code in (301, 302) and request.method is HttpMethod.POST
        ):
            new_request = (
                new_request.with_method(HttpMethod.GET)
                .with_body(None)
                .without_header("Content-Length")
                .without_header("Content-Type")
            )

        if urlparse(location).netloc != urlparse(request.url).netloc:
            new_request = new_request.without_header("Authorization")

        return new_request

    def _basic_challenge(
        self, request: Request, response: Response, failures: int
    ) -> Optional[AuthenticationChallenge]:
        header = response.get_header("WWW-Authenticate")
        if not header or not header.lower().startswith("basic"):
            return None

        realm = _REALM_RE.search(header)
        return AuthenticationChallenge(
            host=request.host,
            port=request.port,
            method=AuthenticationMethod.HTTP_BASIC,
            realm=realm.group(1) if realm else None,
            previous_failure_count=failures,
        )

    async def _receive_body(self, task: _TransportTask, exchange: _Exchange, response: Response) -> None:
        expected = response.content_length

        if task.kind is not TaskKind.DOWNLOAD:
            async for chunk in exchange.iter_body():
                self.dispatcher.did_receive_data(task.id, chunk)
            return

        fd, temp_path = tempfile.mkstemp(prefix="httptask-", suffix=".download")
        try:
            loop = asyncio.get_running_loop()
            with os.fdopen(fd, "wb") as f:
                total = 0
                async for chunk in exchange.iter_body():
                    await loop.run_in_executor(None, f.write, chunk)
                    total += len(chunk)
                    self.dispatcher.did_write_data(task.id, len(chunk), total, expected)

            self.dispatcher.did_finish_downloading(task.id, response, temp_path)
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)
