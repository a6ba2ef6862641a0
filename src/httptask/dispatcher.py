"""
Task registry and callback dispatcher for httptask.

The TaskDispatcher is the single receiver of transport callbacks. It
owns the registry mapping transport task identifiers to delegates and
re-dispatches every callback to the delegate registered for that task.
Completion is the only place an entry is evicted.

Transports deliver callbacks on the event loop thread, which
serializes them; the registry lock additionally keeps mutation safe
for transports that call in from worker threads.
"""

import logging
import threading
from typing import Any, AsyncIterable, Dict, List, Optional, Tuple

from .delegates import (
    DataDelegate,
    DownloadDelegate,
    TaskDelegate,
    TaskState,
    UploadDelegate,
)
from .exceptions import ClientClosedError
from .http_primitives import (
    AuthenticationChallenge,
    AuthenticationMethod,
    ChallengeDisposition,
    Credential,
    Request,
    Response,
)

logger = logging.getLogger(__name__)


class TaskRegistry:
    """
    Mapping from task identifier to delegate.

    At most one delegate is registered per live identifier.
    """

    def __init__(self) -> None:
        self._delegates: Dict[int, TaskDelegate] = {}
        self._lock = threading.Lock()

    def register(self, task_id: int, delegate: TaskDelegate) -> None:
        with self._lock:
            if task_id in self._delegates:
                raise ValueError(f"Task {task_id} already has a delegate")
            self._delegates[task_id] = delegate

    def get(self, task_id: int) -> Optional[TaskDelegate]:
        with self._lock:
            return self._delegates.get(task_id)

    def remove(self, task_id: int) -> Optional[TaskDelegate]:
        with self._lock:
            return self._delegates.pop(task_id, None)

    def drain(self) -> List[Tuple[int, TaskDelegate]]:
        """Remove and return every entry."""
        with self._lock:
            entries = list(self._delegates.items())
            self._delegates.clear()
            return entries

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._delegates

    def __len__(self) -> int:
        with self._lock:
            return len(self._delegates)


class TaskDispatcher:
    """
    Routes transport callbacks to per-task delegates.

    A task without a delegate gets default handling everywhere. For a
    server trust challenge on such a task, the trust is accepted only
    when ``accept_untrusted_server_trust`` is enabled.
    """

    def __init__(self, accept_untrusted_server_trust: bool = False):
        """
        Initialize the dispatcher.

        Args:
            accept_untrusted_server_trust: Accept any server trust for
                tasks that have no delegate
        """
        self.registry = TaskRegistry()
        self.accept_untrusted_server_trust = accept_untrusted_server_trust
        self._closed = False

    def register(self, task_id: int, delegate: TaskDelegate) -> None:
        """Attach a delegate to a freshly created task."""
        if self._closed:
            raise ClientClosedError()
        delegate.state = TaskState.CREATED
        self.registry.register(task_id, delegate)
        logger.debug(f"Task {task_id} registered ({delegate.kind.value})")

    def _delegate(self, task_id: int) -> Optional[TaskDelegate]:
        delegate = self.registry.get(task_id)
        if delegate is not None and delegate.state is TaskState.CREATED:
            delegate.state = TaskState.RUNNING
        return delegate

    # Task callbacks

    def will_perform_redirect(self, task_id: int, response: Response, new_request: Request) -> Optional[Request]:
        """Return the request to follow, or None to stop redirecting."""
        delegate = self._delegate(task_id)
        if delegate is None:
            return new_request

        delegate.state = TaskState.REDIRECTING
        logger.debug(f"Task {task_id} redirected to {new_request.url}")
        return delegate.will_perform_redirect(response, new_request)

    def did_receive_challenge(
        self, task_id: int, challenge: AuthenticationChallenge
    ) -> Tuple[ChallengeDisposition, Optional[Credential]]:
        delegate = self._delegate(task_id)
        if delegate is not None:
            return delegate.handle_challenge(challenge)
        return self.did_receive_session_challenge(challenge)

    def did_receive_session_challenge(
        self, challenge: AuthenticationChallenge
    ) -> Tuple[ChallengeDisposition, Optional[Credential]]:
        """Answer a challenge that no delegate handles."""
        if challenge.method is AuthenticationMethod.SERVER_TRUST and self.accept_untrusted_server_trust:
            logger.warning(f"Accepting unverified server trust for {challenge.host}:{challenge.port}")
            return ChallengeDisposition.USE_CREDENTIAL, Credential.for_trust(challenge.server_trust)
        return ChallengeDisposition.PERFORM_DEFAULT_HANDLING, None

    def need_new_body_stream(self, task_id: int) -> Optional[AsyncIterable[bytes]]:
        delegate = self._delegate(task_id)
        if delegate is None:
            logger.warning(f"Task {task_id} asked for a body stream but has no delegate")
            return None
        return delegate.body_stream()

    def did_send_body_data(
        self, task_id: int, bytes_sent: int, total_bytes_sent: int, total_bytes_expected: int
    ) -> None:
        delegate = self._delegate(task_id)
        if isinstance(delegate, UploadDelegate):
            delegate.did_send_body_data(bytes_sent, total_bytes_sent, total_bytes_expected)

    def did_complete(
        self, task_id: int, response: Optional[Response], error: Optional[BaseException]
    ) -> None:
        """Run the delegate's completion routine, then evict the entry."""
        delegate = self.registry.get(task_id)
        if delegate is None:
            logger.debug(f"Completion for unknown task {task_id} ignored")
            return

        delegate.state = TaskState.COMPLETING
        try:
            delegate.did_complete(response, error)
        finally:
            self.registry.remove(task_id)
            delegate.state = TaskState.REMOVED
            logger.debug(f"Task {task_id} removed, {len(self.registry)} still registered")

    # Data callbacks

    def did_receive_data(self, task_id: int, data: bytes) -> None:
        delegate = self._delegate(task_id)
        if isinstance(delegate, DataDelegate):
            delegate.did_receive_data(data)

    # Download callbacks

    def did_finish_downloading(self, task_id: int, response: Response, location: Any) -> None:
        delegate = self._delegate(task_id)
        if isinstance(delegate, DownloadDelegate):
            delegate.did_finish_downloading(response, location)

    def did_write_data(
        self, task_id: int, bytes_written: int, total_bytes_written: int, total_bytes_expected: int
    ) -> None:
        delegate = self._delegate(task_id)
        if isinstance(delegate, DownloadDelegate):
            delegate.did_write_data(bytes_written, total_bytes_written, total_bytes_expected)

    # Lifetime

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Fail every delegate still registered with ClientClosedError."""
        self._closed = True
        entries = self.registry.drain()
        for task_id, delegate in entries:
            delegate.state = TaskState.REMOVED
            if not delegate.delivered:
                delegate.deliver(None, ClientClosedError("Client closed before the task completed"))
        if entries:
            logger.debug(f"Dispatcher closed, abandoned {len(entries)} tasks")
