"""Task orchestrator: session → submit → register → poll.

``TaskOrchestrator`` is the single entry point for starting generation jobs.
It wires the session manager, the backend client, the task store and the
poller together:

    submit_task(kind, job, instrument)
        1. validate locally (no network on failure)
        2. ensure_session()
        3. POST /tasks/<kind>
        4. store.upsert(task_id, status=queued, ...)
        5. per-instrument + global active pointers
        6. poller.start_polling(task_id)

Session and submit failures are reported through the notifier and then
re-raised so the caller's flow aborts.  Everything after submit is owned by
the poller.
"""
from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Sequence
from dataclasses import replace

from bargen.config import settings
from bargen.contracts.json_types import TaskSubmitResponse
from bargen.core.poller import Poller
from bargen.core.requests import (
    JobInput,
    JobRequest,
    build_request,
    validate_job_input,
)
from bargen.core.scheduler import AsyncioScheduler, Scheduler
from bargen.core.session import SessionManager
from bargen.core.task_store import StoreEvent, TaskStore, get_task_store
from bargen.daw.midi_project import LoggingNotifier
from bargen.daw.ports import Notifier
from bargen.errors import BargenError, PreconditionError
from bargen.models.tasks import Instrument, Task, TaskKind, TaskStatus
from bargen.services.api_client import ApiClient, get_api_client

logger = logging.getLogger(__name__)


class TaskOrchestrator:
    """Starts generation jobs and owns their polling lifecycle."""

    def __init__(
        self,
        api: ApiClient | None = None,
        store: TaskStore | None = None,
        notifier: Notifier | None = None,
        scheduler: Scheduler | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.api = api or get_api_client()
        self.store = store or get_task_store()
        self.notifier = notifier or LoggingNotifier()
        self.sessions = SessionManager(self.api, self.store)
        self.poller = Poller(
            self.api,
            self.store,
            scheduler or AsyncioScheduler(),
            self.notifier,
            rng=rng,
        )

    # ── Submit ───────────────────────────────────────────────────────────

    async def submit_task(
        self,
        kind: TaskKind,
        job: JobInput,
        instrument: Instrument | str | None = None,
    ) -> str:
        """Submit one job and start polling it. Returns the new task id.

        Raises:
            PreconditionError: Local validation failed; nothing was sent.
            SessionError: No session could be created.
            ApiError: The submit request failed.
        """
        kind = TaskKind(kind)
        inst = Instrument.coerce(instrument) or job.instrument
        if inst is not job.instrument:
            job = replace(job, instrument=inst)
        try:
            validate_job_input(kind, job)
        except PreconditionError as exc:
            self.notifier.error(str(exc))
            raise

        try:
            session_id = await self.sessions.ensure_session()
            request = build_request(kind, session_id, job)
            response = await self._submit(kind, request)
        except BargenError as exc:
            logger.error(f"❌ Submit {kind.value} failed: {exc}")
            self.notifier.error(str(exc))
            raise

        task_id = response["task_id"]
        self.store.upsert(
            task_id,
            session_id=session_id,
            kind=kind.value,
            status=TaskStatus.QUEUED,
            artifacts=(),
            instrument=inst,
            input_bars=job.resolved_bars,
            input_chords=tuple(request["chords"]),
        )
        if inst is not None:
            self.store.set_active_task_for_instrument(inst, task_id)
        self.store.set_active_task(task_id)

        logger.info(f"🚀 Submitted {kind.value} → task {task_id}")
        self.poller.start_polling(task_id)
        return task_id

    async def _submit(self, kind: TaskKind, request: JobRequest) -> TaskSubmitResponse:
        if kind == TaskKind.CHORDS_TO_MIDIS:
            return await self.api.submit_chords_to_midis(request)  # type: ignore[arg-type]
        if kind == TaskKind.REF_MIDI_TO_MIDI:
            return await self.api.submit_ref_midi_to_midi(request)  # type: ignore[arg-type]
        return await self.api.submit_ref_midis_mix_set(request)  # type: ignore[arg-type]

    # ── Convenience submitters ───────────────────────────────────────────

    async def submit_chords_to_midis(
        self,
        chords: Sequence[str],
        bars: int | None = None,
        bpm: float | None = None,
        instrument: Instrument | str | None = None,
        n_midi: int | None = None,
    ) -> str:
        """Chords job; one bar per chord unless *bars* is given."""
        inst = Instrument.coerce(instrument or settings.default_instrument)
        job = JobInput(
            chords=tuple(c.strip() for c in chords),
            bars=bars,
            bpm=bpm,
            instrument=inst,
            n_midi=n_midi,
        )
        return await self.submit_task(TaskKind.CHORDS_TO_MIDIS, job, inst)

    async def submit_ref_midi_to_midi(
        self,
        ref_midi: bytes,
        chords: Sequence[str],
        bars: int,
        bpm: float | None = None,
        instrument: Instrument | str | None = None,
        filename: str = "ref.mid",
    ) -> str:
        inst = Instrument.coerce(instrument)
        job = JobInput(
            chords=tuple(chords),
            bars=bars,
            bpm=bpm,
            instrument=inst,
            ref_midi=ref_midi,
            ref_filename=filename,
        )
        return await self.submit_task(TaskKind.REF_MIDI_TO_MIDI, job, inst)

    async def submit_ref_midis_mix_set(
        self,
        midi_a: bytes,
        midi_b: bytes,
        chords: Sequence[str],
        bars: int,
        bpm: float | None = None,
        alphas: Sequence[float] | None = None,
    ) -> str:
        job = JobInput(
            chords=tuple(chords),
            bars=bars,
            bpm=bpm,
            midi_a=midi_a,
            midi_b=midi_b,
            alphas=tuple(alphas) if alphas else None,
        )
        return await self.submit_task(TaskKind.REF_MIDIS_MIX_SET, job)

    # ── Waiting ──────────────────────────────────────────────────────────

    async def wait_for_task(self, task_id: str, timeout: float | None = None) -> Task:
        """Resolve with the task once it reaches a terminal status.

        Raises:
            KeyError: *task_id* is not in the store.
            TimeoutError: *timeout* seconds passed first.
        """
        task = self.store.get_or_raise(task_id)
        if task.is_terminal:
            return task

        done = asyncio.Event()

        def _on_event(event: StoreEvent) -> None:
            if event.key != task_id:
                return
            current = self.store.get(task_id)
            if current is not None and current.is_terminal:
                done.set()

        unsubscribe = self.store.subscribe(_on_event)
        try:
            await asyncio.wait_for(done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Task {task_id} still running after {timeout}s") from None
        finally:
            unsubscribe()
        return self.store.get_or_raise(task_id)

    # ── Teardown ─────────────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Stop every poll. The shared API client is closed separately."""
        self.poller.stop_all_polling()
        logger.debug("Orchestrator closed")
