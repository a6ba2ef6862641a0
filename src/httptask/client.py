"""
HTTP client facade for httptask.

HttpClient offers the verb methods (get, post, put, delete, head),
file downloads and uploads. Every call returns a RequestHandle right
away; the outcome arrives later through the handle and, when given,
through a ``completion_handler(value, error)`` called exactly once.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Generator, Optional, Set, Tuple, Union

from .authorization import AuthzModule
from .delegates import (
    CompletionHandler,
    DataDelegate,
    DownloadDelegate,
    ProgressCallback,
    TaskDelegate,
    TaskKind,
    UploadDelegate,
)
from .dispatcher import TaskDispatcher
from .exceptions import ClientClosedError, RequestCancelledError
from .http_primitives import UNKNOWN_LENGTH, Credential, HttpMethod, Request
from .orchestrator import LogicalRequest, Outcome, RequestOrchestrator
from .parameters import Parameters, validate_parameters
from .request_builder import RequestBuilder, calculate_url
from .serializers import JsonResponseSerializer, ResponseSerializer
from .streams import UploadSource
from .transport import H11Transport, Transport

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


class RequestHandle:
    """
    Asynchronous handle on one logical request.

    Awaiting the handle returns the decoded value or raises the error;
    ``outcome()`` returns the ``(value, error)`` pair instead.
    """

    def __init__(
        self,
        task: "asyncio.Task[Outcome]",
        completion_handler: Optional[CompletionHandler] = None,
    ):
        self._task = task
        self._completion_handler = completion_handler
        task.add_done_callback(self._on_done)

    @staticmethod
    def _outcome_of(task: "asyncio.Task[Outcome]") -> Outcome:
        if task.cancelled():
            return None, RequestCancelledError()
        exception = task.exception()
        if exception is not None:
            return None, exception
        return task.result()

    def _on_done(self, task: "asyncio.Task[Outcome]") -> None:
        if self._completion_handler is not None:
            value, error = self._outcome_of(task)
            self._completion_handler(value, error)

    def cancel(self) -> bool:
        """Cancel the request, including any transport task in flight."""
        return self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    async def outcome(self) -> Tuple[Any, Optional[BaseException]]:
        """Wait for the request and return ``(value, error)``."""
        await asyncio.wait({self._task})
        return self._outcome_of(self._task)

    async def result(self) -> Any:
        """Wait for the request and return its value, raising its error."""
        value, error = await self.outcome()
        if error is not None:
            raise error
        return value

    def __await__(self) -> Generator[Any, None, Any]:
        return self.result().__await__()


class HttpClient:
    """
    Client for performing HTTP operations across RESTful resources.

    The client owns a TaskDispatcher (and its task registry) for its
    whole lifetime; closing the client cancels outstanding requests.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[Transport] = None,
        request_builder: Optional[RequestBuilder] = None,
        response_serializer: Optional[ResponseSerializer] = None,
        authz_module: Optional[AuthzModule] = None,
        default_download_directory: Optional[PathLike] = None,
        accept_untrusted_server_trust: bool = False,
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL relative paths are resolved against
            transport: Transport executing the tasks (H11Transport if None)
            request_builder: Request encoder (form encoding if None)
            response_serializer: Response decoder (JSON if None)
            authz_module: Optional authorization module
            default_download_directory: Where downloads go when the call
                names no destination (``~/Downloads`` if None)
            accept_untrusted_server_trust: Accept any server trust for
                tasks without a delegate
        """
        self.base_url = base_url
        self.request_builder = request_builder or RequestBuilder()
        self.response_serializer = response_serializer or JsonResponseSerializer()
        self.default_download_directory = Path(
            default_download_directory or Path.home() / "Downloads"
        )

        self.dispatcher = TaskDispatcher(accept_untrusted_server_trust=accept_untrusted_server_trust)
        self.transport = transport or H11Transport()
        self.transport.bind(self.dispatcher)

        self.orchestrator = RequestOrchestrator(self._submit, authz_module)
        self._handles: Set[RequestHandle] = set()
        self._closed = False

        logger.debug(f"HTTP client initialized (base_url={base_url})")

    @property
    def authz_module(self) -> Optional[AuthzModule]:
        return self.orchestrator.authz_module

    @authz_module.setter
    def authz_module(self, module: Optional[AuthzModule]) -> None:
        self.orchestrator.authz_module = module

    @property
    def closed(self) -> bool:
        return self._closed

    def calculate_url(self, url: str) -> str:
        """Resolve ``url`` against the client's base URL."""
        return calculate_url(self.base_url, url)

    # Verb methods

    def request(
        self,
        method: HttpMethod,
        url: str,
        parameters: Optional[Parameters] = None,
        credential: Optional[Credential] = None,
        completion_handler: Optional[CompletionHandler] = None,
    ) -> RequestHandle:
        """
        Perform a request with authorization retry.

        Args:
            method: HTTP method
            url: Path (resolved against base_url) or absolute URL
            parameters: Optional parameter tree
            credential: Credential for basic auth challenges
            completion_handler: Called once with ``(value, error)``

        Returns:
            The request handle
        """
        return self._start(
            LogicalRequest(path=url, method=method, parameters=parameters, credential=credential),
            completion_handler,
        )

    def get(self, url: str, parameters: Optional[Parameters] = None, credential: Optional[Credential] = None,
            completion_handler: Optional[CompletionHandler] = None) -> RequestHandle:
        """Perform an HTTP GET request."""
        return self.request(HttpMethod.GET, url, parameters, credential, completion_handler)

    def post(self, url: str, parameters: Optional[Parameters] = None, credential: Optional[Credential] = None,
             completion_handler: Optional[CompletionHandler] = None) -> RequestHandle:
        """Perform an HTTP POST request."""
        return self.request(HttpMethod.POST, url, parameters, credential, completion_handler)

    def put(self, url: str, parameters: Optional[Parameters] = None, credential: Optional[Credential] = None,
            completion_handler: Optional[CompletionHandler] = None) -> RequestHandle:
        """Perform an HTTP PUT request."""
        return self.request(HttpMethod.PUT, url, parameters, credential, completion_handler)

    def delete(self, url: str, parameters: Optional[Parameters] = None, credential: Optional[Credential] = None,
               completion_handler: Optional[CompletionHandler] = None) -> RequestHandle:
        """Perform an HTTP DELETE request."""
        return self.request(HttpMethod.DELETE, url, parameters, credential, completion_handler)

    def head(self, url: str, parameters: Optional[Parameters] = None, credential: Optional[Credential] = None,
             completion_handler: Optional[CompletionHandler] = None) -> RequestHandle:
        """Perform an HTTP HEAD request."""
        return self.request(HttpMethod.HEAD, url, parameters, credential, completion_handler)

    # File transfers

    def download(
        self,
        url: str,
        destination_directory: Optional[PathLike] = None,
        parameters: Optional[Parameters] = None,
        credential: Optional[Credential] = None,
        method: HttpMethod = HttpMethod.GET,
        progress: Optional[ProgressCallback] = None,
        completion_handler: Optional[CompletionHandler] = None,
    ) -> RequestHandle:
        """
        Download a file.

        The file is stored as ``<destination_directory>/<suggested
        filename>``. The outcome value is the Response; its
        ``extensions["download_path"]`` holds the final location.

        Args:
            url: URL of the downloadable resource
            destination_directory: Target directory (client default if None)
            parameters: Optional parameter tree
            credential: Credential for basic auth challenges
            method: HTTP method, GET by default
            progress: Called with (bytes_written, total_written, total_expected)
            completion_handler: Called once with ``(value, error)``
        """
        call = LogicalRequest(
            path=url,
            method=method,
            parameters=parameters,
            credential=credential,
            kind=TaskKind.DOWNLOAD,
            destination_directory=destination_directory,
            progress=progress,
            retry=False,
        )
        return self._start(call, completion_handler)

    def upload(
        self,
        url: str,
        payload: Any,
        parameters: Optional[Parameters] = None,
        credential: Optional[Credential] = None,
        method: HttpMethod = HttpMethod.POST,
        progress: Optional[ProgressCallback] = None,
        completion_handler: Optional[CompletionHandler] = None,
    ) -> RequestHandle:
        """
        Upload raw bytes, a local file or an async stream.

        Args:
            url: URL to upload into
            payload: bytes, a file path, an async iterable of bytes, or
                     an UploadSource
            parameters: Optional parameters, sent in the URL query
            credential: Credential for basic auth challenges
            method: HTTP method, POST by default
            progress: Called with (bytes_sent, total_sent, total_expected)
            completion_handler: Called once with ``(value, error)``
        """
        call = LogicalRequest(
            path=url,
            method=method,
            parameters=parameters,
            credential=credential,
            kind=TaskKind.UPLOAD,
            upload=UploadSource.from_payload(payload),
            progress=progress,
            retry=False,
        )
        return self._start(call, completion_handler)

    # Internals

    def _start(self, call: LogicalRequest, completion_handler: Optional[CompletionHandler]) -> RequestHandle:
        if self._closed:
            raise ClientClosedError()
        if call.parameters is not None:
            validate_parameters(call.parameters)

        task = asyncio.get_running_loop().create_task(self.orchestrator.execute(call))
        handle = RequestHandle(task, completion_handler)
        self._handles.add(handle)
        task.add_done_callback(lambda _: self._handles.discard(handle))
        return handle

    def _build_request(self, call: LogicalRequest) -> Request:
        headers = self.authz_module.authorization_fields() if self.authz_module is not None else None

        if call.kind is TaskKind.UPLOAD:
            if call.upload is None:
                raise ValueError("Upload requests need an upload source")
            length = call.upload.content_length
            return self.request_builder.build_upload(
                self.base_url,
                call.path,
                call.method,
                call.parameters,
                headers,
                content_length=None if length == UNKNOWN_LENGTH else length,
            )

        return self.request_builder.build(self.base_url, call.path, call.method, call.parameters, headers)

    def _create_delegate(self, call: LogicalRequest, complete: CompletionHandler) -> TaskDelegate:
        if call.kind is TaskKind.DOWNLOAD:
            return DownloadDelegate(
                complete,
                self.response_serializer,
                call.credential,
                destination_directory=call.destination_directory,
                default_directory=self.default_download_directory,
                download_progress=call.progress,
            )

        if call.kind is TaskKind.UPLOAD:
            return UploadDelegate(
                complete,
                self.response_serializer,
                call.credential,
                upload_progress=call.progress,
                stream=call.upload.stream if call.upload is not None else None,
            )

        return DataDelegate(complete, self.response_serializer, call.credential)

    async def _submit(self, call: LogicalRequest) -> Outcome:
        """Perform one network attempt of a logical request."""
        if self._closed:
            return None, ClientClosedError()

        loop = asyncio.get_running_loop()
        future: "asyncio.Future[Outcome]" = loop.create_future()

        def complete(value: Any, error: Optional[BaseException]) -> None:
            if not future.done():
                future.set_result((value, error))

        request = self._build_request(call)
        delegate = self._create_delegate(call, complete)

        task_id = self.transport.create_task(call.kind, request, call.upload)
        try:
            self.dispatcher.register(task_id, delegate)
        except BaseException:
            self.transport.cancel(task_id)
            raise
        self.transport.resume(task_id)

        try:
            return await future
        except asyncio.CancelledError:
            self.transport.cancel(task_id)
            raise

    # Lifetime

    async def aclose(self) -> None:
        """Cancel outstanding requests and close the transport."""
        if self._closed:
            return
        self._closed = True

        handles = list(self._handles)
        for handle in handles:
            handle.cancel()
        if handles:
            await asyncio.gather(*(handle.outcome() for handle in handles))

        await self.transport.aclose()
        self.dispatcher.close()
        logger.debug(f"HTTP client closed, cancelled {len(handles)} requests")

    async def __aenter__(self) -> "HttpClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.aclose()
