"""
Transport interface for httptask.

A transport executes tasks on the network and reports everything that
happens to a task (redirects, challenges, body data, progress,
completion) to the TaskDispatcher it is bound to. Task identifiers are
assigned by the transport.
"""

import itertools
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from ..delegates import TaskKind
from ..http_primitives import Request
from ..streams import UploadSource

if TYPE_CHECKING:
    from ..dispatcher import TaskDispatcher  # Forward reference


class Transport(ABC):
    """
    Interface for transport implementations.

    Callbacks must be delivered on the event loop thread the client runs
    on, one at a time, and ``did_complete`` exactly once per task.
    """

    def __init__(self) -> None:
        self._dispatcher: Optional["TaskDispatcher"] = None
        self._task_ids = itertools.count(1)

    def bind(self, dispatcher: "TaskDispatcher") -> None:
        """Set the dispatcher receiving this transport's callbacks."""
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> "TaskDispatcher":
        if self._dispatcher is None:
            raise RuntimeError("Transport is not bound to a dispatcher")
        return self._dispatcher

    def next_task_id(self) -> int:
        return next(self._task_ids)

    @abstractmethod
    def create_task(
        self,
        kind: TaskKind,
        request: Request,
        upload: Optional[UploadSource] = None,
    ) -> int:
        """
        Create a suspended task.

        Args:
            kind: Data, upload or download task
            request: The request to perform
            upload: Body source, for upload tasks

        Returns:
            The task identifier
        """
        pass

    @abstractmethod
    def resume(self, task_id: int) -> None:
        """Start a created task."""
        pass

    @abstractmethod
    def cancel(self, task_id: int) -> None:
        """
        Cancel a task.

        The task still completes through ``did_complete``, with a
        RequestCancelledError.
        """
        pass

    @abstractmethod
    async def aclose(self) -> None:
        """Cancel outstanding tasks and release resources."""
        pass
