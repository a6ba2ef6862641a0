"""
Authorization and retry orchestration for httptask.

A logical request may take two network attempts: when an authorization
module is configured and the first attempt is rejected with 400, 401
or 403, the module's cached token is revoked and the request is sent
once more. The caller sees one outcome either way.
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

from .authorization import AuthzModule
from .delegates import ProgressCallback, TaskKind
from .exceptions import AuthorizationError, HttpStatusError
from .http_primitives import Credential, HttpMethod
from .parameters import Parameters
from .streams import UploadSource

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = frozenset({400, 401, 403})

Outcome = Tuple[Any, Optional[BaseException]]


@dataclass(frozen=True)
class LogicalRequest:
    """Everything needed to (re)build and submit one request."""

    path: str
    method: HttpMethod
    parameters: Optional[Parameters] = None
    credential: Optional[Credential] = None
    kind: TaskKind = TaskKind.DATA
    upload: Optional[UploadSource] = None
    destination_directory: Optional[Union[str, "os.PathLike[str]"]] = None
    progress: Optional[ProgressCallback] = None
    retry: bool = True


class RequestOrchestrator:
    """
    Runs a logical request through authorization and the single retry.

    ``submit`` performs one network attempt and returns its outcome.
    """

    def __init__(
        self,
        submit: Callable[[LogicalRequest], Awaitable[Outcome]],
        authz_module: Optional[AuthzModule] = None,
    ):
        self._submit = submit
        self.authz_module = authz_module

    async def execute(self, call: LogicalRequest) -> Outcome:
        """
        Perform the logical request.

        Returns:
            ``(value, error)``, exactly one per call
        """
        error = await self._authorize()
        if error is not None:
            return None, error

        value, error = await self._submit(call)

        authz_module = self.authz_module
        if (
            call.retry
            and authz_module is not None
            and isinstance(error, HttpStatusError)
            and self.should_retry(error)
        ):
            logger.debug(
                f"{call.method.value} {call.path} rejected with {error.code}, "
                f"revoking access token and retrying once"
            )
            authz_module.revoke_local_access_token()
            return await self.execute(replace(call, retry=False))

        return value, error

    def should_retry(self, error: Optional[BaseException]) -> bool:
        return (
            self.authz_module is not None
            and isinstance(error, HttpStatusError)
            and error.code in RETRY_STATUS_CODES
        )

    async def _authorize(self) -> Optional[AuthorizationError]:
        if self.authz_module is None:
            return None

        try:
            granted = await self.authz_module.request_access()
        except Exception as e:
            logger.debug(f"Authorization failed: {e}")
            return AuthorizationError(str(e) or type(e).__name__, cause=e)

        if granted is False:
            return AuthorizationError("access was not granted")
        return None

