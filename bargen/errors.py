"""Exit-code contract and exception types for bargen."""
from __future__ import annotations

import enum


class ExitCode(enum.IntEnum):
    """Standardised CLI exit codes.

    0 — success
    1 — user error (bad arguments, failed local precondition)
    3 — backend / internal error
    """

    SUCCESS = 0
    USER_ERROR = 1
    INTERNAL_ERROR = 3


class BargenError(Exception):
    """Base exception for bargen errors."""

    def __init__(self, message: str, exit_code: ExitCode = ExitCode.INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ApiError(BargenError):
    """The generation backend answered with a non-2xx status.

    ``status_code`` is ``None`` for transport-level failures (see
    :class:`ApiTransportError`).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, exit_code=ExitCode.INTERNAL_ERROR)
        self.status_code = status_code


class ApiTransportError(ApiError):
    """The request never produced an HTTP response (DNS, connect, timeout)."""


class SessionError(BargenError):
    """Creating a backend session failed."""


class PreconditionError(BargenError):
    """A local check failed before any network call or project mutation."""

    def __init__(self, message: str) -> None:
        super().__init__(message, exit_code=ExitCode.USER_ERROR)


class MidiParseError(PreconditionError):
    """MIDI bytes could not be decoded into usable notes."""
