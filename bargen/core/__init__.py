"""
bargen Core - bar math, note transforms and task lifecycle.

Modules:

1. BAR MATH (bar_math.py)
   - Measure list from time signatures
   - Tick ↔ bar-aligned ranges and selection info

2. NOTE RANGE (note_range.py)
   - clamp / normalize / tile / scale-and-shift on note payloads
   - replace_in_range and write_notes_at against a Track port

3. TASK STORE (task_store.py)
   - In-memory tasks, per-instrument pointers, artifact op flags
   - subscribe/notify on every mutation

4. SESSION + POLLER (session.py, poller.py, scheduler.py)
   - Lazily created backend session, coalesced across callers
   - Jittered per-task status polling on a pluggable scheduler

5. REQUESTS + MIDI I/O (requests.py, midi_io.py)
   - Segmentation strings, chord validation, request bodies
   - mido-backed MIDI parsing and serialization
"""
