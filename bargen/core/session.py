"""Backend session bootstrap.

One session id per process, created lazily on the first submit and cached
in the task store's session slot::

    idle ──ensure_session()──▶ creating ──ok──▶ ready
                                   │
                                   └──fail──▶ error ──ensure_session()──▶ creating

Concurrent ``ensure_session()`` calls while a creation is in flight await
the same request instead of starting another one.  A failed creation is not
cached; the next call retries.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from bargen.core.task_store import TaskStore
from bargen.errors import ApiError, SessionError
from bargen.models.tasks import SessionState, SessionStatus

if TYPE_CHECKING:
    from bargen.services.api_client import ApiClient

logger = logging.getLogger(__name__)


class SessionManager:
    """Creates and caches the backend session id."""

    def __init__(self, api: ApiClient, store: TaskStore) -> None:
        self._api = api
        self._store = store
        self._inflight: asyncio.Task[str] | None = None

    @property
    def session_id(self) -> str | None:
        state = self._store.session
        return state.id if state.status == SessionStatus.READY else None

    async def ensure_session(self) -> str:
        """Return the cached session id, creating one if needed.

        Raises:
            SessionError: The backend refused or could not be reached.
        """
        state = self._store.session
        if state.status == SessionStatus.READY and state.id:
            return state.id

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._create())
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Future[str]) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _create(self) -> str:
        self._store.set_session(SessionState(status=SessionStatus.CREATING))
        try:
            response = await self._api.create_session()
        except ApiError as exc:
            message = str(exc)
            logger.error(f"❌ Session creation failed: {message}")
            self._store.set_session(SessionState(status=SessionStatus.ERROR, error=message))
            raise SessionError(f"Could not create session: {message}") from exc

        session_id = response["session_id"]
        self._store.set_session(SessionState(id=session_id, status=SessionStatus.READY))
        logger.info(f"✅ Session ready: {session_id}")
        return session_id
