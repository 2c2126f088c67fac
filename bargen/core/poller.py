"""Per-task status polling with jittered rescheduling.

Each task id owns at most one outstanding scheduled check.  The first check
runs shortly after submit (``poll_initial_delay_ms``); every later one after a
uniformly random delay in ``[poll_jitter_min_ms, poll_jitter_max_ms)`` so
concurrent tasks do not poll in lockstep.

Lifecycle per task id::

    start_polling ──▶ scheduled ──fires──▶ in flight ──▶ response applied
                          ▲                                   │
                          └──────── not terminal ─────────────┤
                                                              └── terminal → stopped

Rules:
    - A failed status request (network or HTTP error) is transient: it is
      logged at WARNING and the check is rescheduled.  The task is never
      marked failed because of it, and there is no attempt cap.
    - ``stop_polling`` cancels the pending check immediately.  A request
      already in flight cannot be aborted; its response is discarded if
      polling was stopped meanwhile, so a stopped task is never resurrected.
    - On ``succeeded``, the task becomes the active task for its instrument
      (from the response ``inst`` or the record's own tag).
    - On ``failed``, the user is notified with the backend's error string.
"""
from __future__ import annotations

import itertools
import json
import logging
import math
import random
from typing import TYPE_CHECKING

from bargen.config import Settings, settings as default_settings
from bargen.contracts.json_types import TaskStatusResponse
from bargen.core.scheduler import ScheduledCall, Scheduler
from bargen.core.task_store import TaskStore, artifacts_from_wire
from bargen.daw.ports import Notifier
from bargen.errors import ApiError
from bargen.models.tasks import Instrument, Task, TaskStatus

if TYPE_CHECKING:
    from bargen.services.api_client import ApiClient

logger = logging.getLogger(__name__)

_DEFAULT_FAILURE_MESSAGE = "Task failed"


def _error_text(value: object) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def _changes_from(response: TaskStatusResponse) -> dict[str, object]:
    """Decode a status payload into task-store changes.

    Raises AttributeError, KeyError, TypeError or ValueError on payloads
    that do not have the expected shape.
    """
    changes: dict[str, object] = {
        "status": TaskStatus.parse(str(response.get("status", ""))),
        "error": _error_text(response.get("error")),
        "artifacts": artifacts_from_wire(response.get("artifacts")),  # type: ignore[arg-type]
    }
    if response.get("session_id"):
        changes["session_id"] = response["session_id"]
    if response.get("kind"):
        changes["kind"] = response["kind"]
    inst = Instrument.coerce(response.get("inst"))
    if inst is not None:
        changes["instrument"] = inst
    return changes


class Poller:
    """Owns the poll timers for every tracked task id."""

    def __init__(
        self,
        api: ApiClient,
        store: TaskStore,
        scheduler: Scheduler,
        notifier: Notifier,
        rng: random.Random | None = None,
        config: Settings | None = None,
    ) -> None:
        self._api = api
        self._store = store
        self._scheduler = scheduler
        self._notifier = notifier
        self._rng = rng or random.Random()
        self._config = config or default_settings
        # task id -> polling generation; a restart gets a new one
        self._active: dict[str, int] = {}
        self._timers: dict[str, ScheduledCall] = {}
        self._generations = itertools.count(1)

    # ── Bookkeeping ──────────────────────────────────────────────────────

    def is_polling(self, task_id: str) -> bool:
        return task_id in self._active

    @property
    def active_ids(self) -> list[str]:
        return sorted(self._active)

    def next_delay_ms(self) -> int:
        """Jittered delay before the next check, in ``[min, max)``."""
        lo = self._config.poll_jitter_min_ms
        hi = self._config.poll_jitter_max_ms
        if hi <= lo:
            return lo
        return min(hi - 1, math.floor(lo + self._rng.random() * (hi - lo)))

    def _schedule(self, task_id: str, delay_ms: float) -> None:
        async def _fire() -> None:
            await self.poll_once_and_schedule(task_id)

        self._timers[task_id] = self._scheduler.call_later(delay_ms, _fire)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start_polling(self, task_id: str) -> None:
        """Begin polling *task_id*. No-op if it is already being polled."""
        if task_id in self._active:
            logger.debug(f"Already polling {task_id[:8]}")
            return
        self._active[task_id] = next(self._generations)
        self._schedule(task_id, self._config.poll_initial_delay_ms)
        logger.debug(f"⏱️ Polling started for {task_id[:8]}")

    def stop_polling(self, task_id: str) -> None:
        """Cancel the pending check and forget *task_id*. Idempotent."""
        timer = self._timers.pop(task_id, None)
        if timer is not None:
            timer.cancel()
        if self._active.pop(task_id, None) is not None:
            logger.debug(f"⏹️ Polling stopped for {task_id[:8]}")

    def stop_all_polling(self) -> None:
        for task_id in list(set(self._active) | set(self._timers)):
            self.stop_polling(task_id)

    # ── One check ────────────────────────────────────────────────────────

    async def poll_once_and_schedule(self, task_id: str) -> None:
        """Fetch status once, apply it, and reschedule unless terminal.

        Transport errors, HTTP errors and status payloads that cannot be
        decoded are all transient: the task is polled again later.
        """
        generation = self._active.get(task_id)
        if generation is None:
            return
        pending = self._timers.pop(task_id, None)
        if pending is not None:
            pending.cancel()

        try:
            response = await self._api.get_task(task_id)
            changes = _changes_from(response)
        except ApiError as exc:
            logger.warning(f"⚠️ Poll failed for {task_id[:8]} (will retry): {exc}")
            self._retry(task_id, generation)
            return
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning(f"⚠️ Malformed status for {task_id[:8]} (will retry): {exc!r}")
            self._retry(task_id, generation)
            return

        if self._active.get(task_id) != generation:
            logger.debug(f"Discarding late poll response for stopped task {task_id[:8]}")
            return

        task = self._store.upsert(task_id, **changes)
        if task.is_terminal:
            self._on_terminal(task, response)
            self.stop_polling(task_id)
            return

        self._schedule(task_id, self.next_delay_ms())

    def _retry(self, task_id: str, generation: int) -> None:
        if self._active.get(task_id) == generation:
            self._schedule(task_id, self.next_delay_ms())

    def _on_terminal(self, task: Task, response: TaskStatusResponse) -> None:
        if task.status == TaskStatus.SUCCEEDED:
            logger.info(
                f"✅ Task {task.task_id[:8]} succeeded with {len(task.artifacts)} artifact(s)"
            )
            inst = Instrument.coerce(response.get("inst")) or task.instrument
            if inst is not None:
                self._store.set_active_task_for_instrument(inst, task.task_id)
        elif task.status == TaskStatus.FAILED:
            message = task.error or _DEFAULT_FAILURE_MESSAGE
            logger.warning(f"❌ Task {task.task_id[:8]} failed: {message}")
            self._notifier.error(message)
        else:
            logger.info(f"Task {task.task_id[:8]} {task.status.value}")
