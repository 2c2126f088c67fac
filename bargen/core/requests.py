"""Request building for the three generation job kinds.

Local validation runs here, before any network call, and raises
:class:`~bargen.errors.PreconditionError` with a message fit for the user.

Segmentation strings
--------------------
The backend receives the bar count as a run-length string: runs of at most
four bars, lettered ``A``, ``B``, ``C``...  Runs past the 26th all reuse
``Z``.  ``4 → "A4"``, ``5 → "A4B1"``, ``9 → "A4B4C1"``, ``0 → "A0"``.
"""
from __future__ import annotations

import logging
import string
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Union

from bargen.config import DEFAULT_MIX_ALPHAS, settings
from bargen.contracts.json_types import (
    ChordsToMidisRequest,
    RefMidisMixSetRequest,
    RefMidiToMidiRequest,
)
from bargen.errors import PreconditionError
from bargen.models.notes import BarRange
from bargen.models.tasks import Instrument, TaskKind

logger = logging.getLogger(__name__)

_MAX_RUN: int = 4
_LETTERS: str = string.ascii_uppercase


def build_segmentation_from_bars(n: int) -> str:
    """Run-length encode a bar count into lettered chunks of at most four bars."""
    if n <= 0:
        return "A0"
    parts: list[str] = []
    remaining = n
    index = 0
    while remaining > 0:
        run = min(_MAX_RUN, remaining)
        letter = _LETTERS[index] if index < len(_LETTERS) else "Z"
        parts.append(f"{letter}{run}")
        remaining -= run
        index += 1
    return "".join(parts)


def format_bpm(bpm: float) -> str:
    """Tempo as sent on the wire: two decimals."""
    return f"{float(bpm):.2f}"


def chord_beats_for(chords: Sequence[str], beats_per_chord: int | None = None) -> list[int]:
    """One bar's worth of beats per chord."""
    beats = beats_per_chord or settings.chord_beats_per_bar
    return [beats] * len(chords)


def clean_chords(chords: Sequence[str]) -> list[str]:
    return [c.strip() for c in chords]


def validate_chords(chords: Sequence[str], bars: int) -> None:
    """Check a chord list against the number of bars it must fill.

    Raises:
        PreconditionError: On no bars, a count mismatch, or a blank chord.
    """
    if bars <= 0:
        raise PreconditionError("Bars must be at least 1.")
    if not chords:
        raise PreconditionError("Enter at least one chord.")
    if len(chords) != bars:
        raise PreconditionError(
            f"Chord count ({len(chords)}) must match bar count ({bars})."
        )
    for i, chord in enumerate(chords):
        if not chord.strip():
            raise PreconditionError(f"Chord {i + 1} is empty.")


def validate_selection(selection: BarRange | None) -> BarRange:
    """Return *selection* if it holds at least one bar."""
    if selection is None:
        raise PreconditionError("Select a bar range first.")
    if selection.to_tick <= selection.from_tick or selection.bars <= 0:
        raise PreconditionError("Selected range is empty.")
    return selection


def _require_midi(data: bytes | None, label: str) -> bytes:
    if not data:
        raise PreconditionError(f"{label} is empty.")
    return data


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_chords_to_midis_request(
    session_id: str,
    chords: Sequence[str],
    bars: int | None = None,
    bpm: float | None = None,
    instrument: Instrument | str | None = None,
    n_midi: int | None = None,
) -> ChordsToMidisRequest:
    """JSON body for a chords job. *bars* defaults to one bar per chord."""
    cleaned = clean_chords(chords)
    if bars is None:
        bars = len(cleaned)
    validate_chords(cleaned, bars)

    req: ChordsToMidisRequest = {
        "session_id": session_id,
        "chords": cleaned,
        "chord_beats": chord_beats_for(cleaned),
        "segmentation": build_segmentation_from_bars(bars),
        "bpm": format_bpm(bpm if bpm is not None else settings.default_bpm),
        "n_midi": n_midi if n_midi is not None else settings.default_n_midi,
    }
    inst = Instrument.coerce(instrument)
    if inst is not None:
        req["inst"] = inst.value
    return req


def build_ref_midi_to_midi_request(
    session_id: str,
    ref_midi: bytes,
    chords: Sequence[str],
    bars: int,
    bpm: float | None = None,
    instrument: Instrument | str | None = None,
    filename: str = "ref.mid",
) -> RefMidiToMidiRequest:
    cleaned = clean_chords(chords)
    validate_chords(cleaned, bars)
    req: RefMidiToMidiRequest = {
        "session_id": session_id,
        "chords": cleaned,
        "chord_beats": chord_beats_for(cleaned),
        "segmentation": build_segmentation_from_bars(bars),
        "bpm": format_bpm(bpm if bpm is not None else settings.default_bpm),
        "ref_midi": _require_midi(ref_midi, "Reference MIDI"),
        "ref_filename": filename,
    }
    inst = Instrument.coerce(instrument)
    if inst is not None:
        req["inst"] = inst.value
    return req


def build_ref_midis_mix_set_request(
    session_id: str,
    midi_a: bytes,
    midi_b: bytes,
    chords: Sequence[str],
    bars: int,
    bpm: float | None = None,
    alphas: Sequence[float] | None = None,
) -> RefMidisMixSetRequest:
    cleaned = clean_chords(chords)
    validate_chords(cleaned, bars)
    chosen = list(alphas) if alphas else list(DEFAULT_MIX_ALPHAS)
    bad = [a for a in chosen if not 0.0 <= a <= 1.0]
    if bad:
        raise PreconditionError(f"Mix weights must be within [0, 1]; got {bad}.")
    return {
        "session_id": session_id,
        "chords": cleaned,
        "chord_beats": chord_beats_for(cleaned),
        "segmentation": build_segmentation_from_bars(bars),
        "bpm": format_bpm(bpm if bpm is not None else settings.default_bpm),
        "alphas": chosen,
        "midi_a": _require_midi(midi_a, "MIDI A"),
        "midi_b": _require_midi(midi_b, "MIDI B"),
    }


# ---------------------------------------------------------------------------
# Kind-agnostic job input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JobInput:
    """Everything a caller supplies for one job, minus the session id.

    Only the fields relevant to the job kind are read.
    """

    chords: tuple[str, ...]
    bars: int | None = None
    bpm: float | None = None
    instrument: Instrument | None = None
    n_midi: int | None = None
    ref_midi: bytes | None = None
    ref_filename: str = "ref.mid"
    midi_a: bytes | None = None
    midi_b: bytes | None = None
    alphas: tuple[float, ...] | None = None

    @property
    def resolved_bars(self) -> int:
        return self.bars if self.bars is not None else len(self.chords)


JobRequest = Union[ChordsToMidisRequest, RefMidiToMidiRequest, RefMidisMixSetRequest]


def build_request(kind: TaskKind, session_id: str, job: JobInput) -> JobRequest:
    """Validate *job* and shape it into the request body for *kind*."""
    if kind == TaskKind.CHORDS_TO_MIDIS:
        return build_chords_to_midis_request(
            session_id, job.chords, job.bars, job.bpm, job.instrument, job.n_midi,
        )
    if kind == TaskKind.REF_MIDI_TO_MIDI:
        return build_ref_midi_to_midi_request(
            session_id, job.ref_midi or b"", job.chords, job.resolved_bars,
            job.bpm, job.instrument, job.ref_filename,
        )
    if kind == TaskKind.REF_MIDIS_MIX_SET:
        return build_ref_midis_mix_set_request(
            session_id, job.midi_a or b"", job.midi_b or b"", job.chords,
            job.resolved_bars, job.bpm, job.alphas,
        )
    raise ValueError(f"Unknown task kind: {kind}")


def validate_job_input(kind: TaskKind, job: JobInput) -> None:
    """Run every local check for *kind* without a session id."""
    build_request(kind, "", job)
