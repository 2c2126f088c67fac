"""In-memory task/artifact store with subscribe/notify.

Holds everything the orchestration layer publishes for readers:

    TaskStore
        ├── tasks by id + insertion order (most recent first)
        ├── global active (most recently submitted) task id
        ├── per-instrument active task id
        ├── per-instrument selected artifact id
        ├── per-artifact transient op flags (downloading / importing / error)
        └── backend session state

Every mutation swaps in a new immutable-by-convention record, then
publishes a ``StoreEvent`` to subscribers synchronously, so a reader never
sees a half-applied update.  Subscriber exceptions are logged and do not
abort the mutation.

For v1 the store lives in process memory; ``get_task_store()`` returns the
process-wide instance and ``reset_task_store()`` swaps in a fresh one (tests).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, fields, replace
from enum import Enum

from bargen.models.tasks import (
    Artifact,
    ArtifactOpState,
    Instrument,
    SessionState,
    Task,
    TaskStatus,
    utc_now,
)

logger = logging.getLogger(__name__)


class StoreEventKind(str, Enum):
    """Kinds of published store mutations."""

    TASK_UPSERTED = "task.upserted"
    ACTIVE_TASK = "task.active"
    INSTRUMENT_TASK = "instrument.active_task"
    INSTRUMENT_ARTIFACT = "instrument.selected_artifact"
    ARTIFACT_OP = "artifact.op"
    SESSION = "session"


@dataclass(frozen=True)
class StoreEvent:
    """A single published mutation. ``key`` is the affected id, if any."""

    kind: StoreEventKind
    key: str | None = None


Subscriber = Callable[[StoreEvent], None]

_TASK_FIELDS: frozenset[str] = frozenset(f.name for f in fields(Task)) - {"task_id"}


def _coerce_changes(changes: dict[str, object]) -> dict[str, object]:
    """Validate field names and normalize wire-ish values onto Task types."""
    unknown = set(changes) - _TASK_FIELDS
    if unknown:
        raise TypeError(f"Unknown task field(s): {', '.join(sorted(unknown))}")

    out = dict(changes)
    if "status" in out and not isinstance(out["status"], TaskStatus):
        out["status"] = TaskStatus.parse(str(out["status"]))
    if "artifacts" in out:
        out["artifacts"] = tuple(out["artifacts"] or ())  # type: ignore[arg-type]
    if "instrument" in out:
        out["instrument"] = Instrument.coerce(out["instrument"])  # type: ignore[arg-type]
    if "input_chords" in out and out["input_chords"] is not None:
        out["input_chords"] = tuple(out["input_chords"])  # type: ignore[arg-type]
    return out


class TaskStore:
    """Registry of tasks, per-instrument pointers and artifact op flags.

    Thread-safety is not needed — everything runs on one event loop and no
    method awaits.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._order: list[str] = []
        self._active_task_id: str | None = None
        self._active_task_by_instrument: dict[Instrument, str] = {}
        self._selected_artifact_by_instrument: dict[Instrument, str] = {}
        self._artifact_ops: dict[str, ArtifactOpState] = {}
        self._session = SessionState()
        self._subscribers: list[Subscriber] = []

    # ── Observer ─────────────────────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for every future mutation; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self, kind: StoreEventKind, key: str | None = None) -> None:
        event = StoreEvent(kind, key)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Store subscriber failed on {kind.value}")

    # ── Tasks ────────────────────────────────────────────────────────────

    def upsert(self, task_id: str, **changes: object) -> Task:
        """Insert a new task or shallow-merge *changes* into an existing one.

        ``artifacts`` is always replaced as a whole, never merged element by
        element.  ``updated_at`` is refreshed on every call.  A new id is
        placed at the front of the order list; an existing id keeps its place.
        """
        values = _coerce_changes(changes)
        now = utc_now()
        existing = self._tasks.get(task_id)

        if existing is None:
            values.setdefault("created_at", now)
            values["updated_at"] = now
            task = Task(task_id=task_id, **values)  # type: ignore[arg-type]
            self._order.insert(0, task_id)
            logger.debug(f"Registered task {task_id[:8]} ({task.kind}, {task.status.value})")
        else:
            values.pop("created_at", None)
            values["updated_at"] = now
            task = replace(existing, **values)  # type: ignore[arg-type]
            if task.status != existing.status:
                logger.info(
                    f"Task {task_id[:8]}: {existing.status.value} → {task.status.value}"
                )

        self._tasks[task_id] = task
        self._publish(StoreEventKind.TASK_UPSERTED, task_id)
        return task

    def get(self, task_id: str) -> Task | None:
        """Get a task by ID. Returns None if not found."""
        return self._tasks.get(task_id)

    def get_or_raise(self, task_id: str) -> Task:
        """Get a task by ID. Raises KeyError if not found."""
        task = self._tasks.get(task_id)
        if task is None:
            raise KeyError(f"Task {task_id} not found")
        return task

    def list_tasks(self) -> list[Task]:
        """All tasks, most recently registered first."""
        return [self._tasks[tid] for tid in self._order]

    @property
    def order(self) -> list[str]:
        return list(self._order)

    @property
    def active_task_id(self) -> str | None:
        return self._active_task_id

    @property
    def active_task(self) -> Task | None:
        return self._tasks.get(self._active_task_id) if self._active_task_id else None

    def set_active_task(self, task_id: str | None) -> None:
        self._active_task_id = task_id
        self._publish(StoreEventKind.ACTIVE_TASK, task_id)

    # ── Per-instrument pointers ──────────────────────────────────────────

    def set_active_task_for_instrument(self, instrument: Instrument | str, task_id: str) -> None:
        inst = Instrument(instrument)
        self._active_task_by_instrument[inst] = task_id
        self._publish(StoreEventKind.INSTRUMENT_TASK, inst.value)

    def active_task_id_for_instrument(self, instrument: Instrument | str) -> str | None:
        return self._active_task_by_instrument.get(Instrument(instrument))

    def active_task_for_instrument(self, instrument: Instrument | str) -> Task | None:
        task_id = self.active_task_id_for_instrument(instrument)
        return self._tasks.get(task_id) if task_id else None

    def set_selected_artifact_for_instrument(
        self, instrument: Instrument | str, artifact_id: str
    ) -> None:
        inst = Instrument(instrument)
        self._selected_artifact_by_instrument[inst] = artifact_id
        self._publish(StoreEventKind.INSTRUMENT_ARTIFACT, inst.value)

    def clear_selected_artifact_for_instrument(self, instrument: Instrument | str) -> None:
        inst = Instrument(instrument)
        if self._selected_artifact_by_instrument.pop(inst, None) is not None:
            self._publish(StoreEventKind.INSTRUMENT_ARTIFACT, inst.value)

    def selected_artifact_for_instrument(self, instrument: Instrument | str) -> str | None:
        return self._selected_artifact_by_instrument.get(Instrument(instrument))

    # ── Artifact op flags ────────────────────────────────────────────────

    def set_artifact_op(self, artifact_id: str, **flags: object) -> ArtifactOpState:
        """Merge *flags* (``downloading``, ``importing``, ``error``) into the op state."""
        current = self._artifact_ops.get(artifact_id, ArtifactOpState())
        state = replace(current, **flags)  # type: ignore[arg-type]
        self._artifact_ops[artifact_id] = state
        self._publish(StoreEventKind.ARTIFACT_OP, artifact_id)
        return state

    def clear_artifact_op(self, artifact_id: str) -> None:
        if self._artifact_ops.pop(artifact_id, None) is not None:
            self._publish(StoreEventKind.ARTIFACT_OP, artifact_id)

    def artifact_op(self, artifact_id: str) -> ArtifactOpState:
        return self._artifact_ops.get(artifact_id, ArtifactOpState())

    def find_artifact(self, artifact_id: str) -> tuple[Task, Artifact] | None:
        """Locate an artifact and its owning task, newest task first."""
        for task in self.list_tasks():
            artifact = task.get_artifact(artifact_id)
            if artifact is not None:
                return task, artifact
        return None

    # ── Session ──────────────────────────────────────────────────────────

    @property
    def session(self) -> SessionState:
        return self._session

    def set_session(self, state: SessionState) -> None:
        self._session = state
        self._publish(StoreEventKind.SESSION)

    # ── Housekeeping ─────────────────────────────────────────────────────

    def clear(self) -> None:
        """Clear all records (for testing). Subscribers are kept."""
        self._tasks.clear()
        self._order.clear()
        self._active_task_id = None
        self._active_task_by_instrument.clear()
        self._selected_artifact_by_instrument.clear()
        self._artifact_ops.clear()
        self._session = SessionState()

    @property
    def count(self) -> int:
        """Total number of tasks."""
        return len(self._tasks)


def artifacts_from_wire(items: Sequence[dict[str, object]] | None) -> tuple[Artifact, ...]:
    """Build Artifact records from a status response's ``artifacts`` list."""
    return tuple(
        Artifact(
            artifact_id=str(a.get("artifact_id", "")),
            kind=str(a.get("kind", "")),
            filename=str(a.get("filename", "")),
            url=str(a.get("url", "")),
        )
        for a in (items or [])
    )


# Singleton instance
_store: TaskStore | None = None


def get_task_store() -> TaskStore:
    """Get the singleton TaskStore instance."""
    global _store
    if _store is None:
        _store = TaskStore()
    return _store


def reset_task_store() -> None:
    """Reset the singleton (for testing)."""
    global _store
    if _store is not None:
        _store.clear()
    _store = None
