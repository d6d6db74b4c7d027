"""Session state and tempo candidate types."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional


class SessionStatus(str, enum.Enum):
    """What the caller may do next with a detection session."""

    IDLE = "idle"
    LISTENING = "listening"
    DETECTED = "detected"
    ERROR = "error"


@dataclass(frozen=True)
class SessionState:
    """Read-only snapshot handed to the presentation layer.

    ``bpm`` is only set while ``status`` is :attr:`SessionStatus.DETECTED`
    and ``error`` only while it is :attr:`SessionStatus.ERROR`.
    """

    status: SessionStatus = SessionStatus.IDLE
    bpm: Optional[int] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.bpm is not None and self.status is not SessionStatus.DETECTED:
            raise ValueError("bpm is only valid in the detected state")
        if self.error is not None and self.status is not SessionStatus.ERROR:
            raise ValueError("error is only valid in the error state")
        if self.status is SessionStatus.DETECTED and self.bpm is None:
            raise ValueError("detected state requires a bpm")
        if self.status is SessionStatus.ERROR and self.error is None:
            raise ValueError("error state requires a message")

    @classmethod
    def idle(cls) -> "SessionState":
        return cls(SessionStatus.IDLE)

    @classmethod
    def listening(cls) -> "SessionState":
        return cls(SessionStatus.LISTENING)

    @classmethod
    def detected(cls, bpm: int) -> "SessionState":
        return cls(SessionStatus.DETECTED, bpm=int(bpm))

    @classmethod
    def failed(cls, message: str) -> "SessionState":
        return cls(SessionStatus.ERROR, error=message)


@dataclass(frozen=True)
class TempoCandidate:
    """One tempo estimate and the number of beat intervals supporting it."""

    tempo: float
    count: int


@dataclass(frozen=True)
class BpmCandidates:
    """Payload of the analyser's ``bpm`` and ``bpmStable`` signals.

    Candidates are ordered by the analyser's ranking, best first.
    """

    bpm: list[TempoCandidate] = field(default_factory=list)


__all__ = ["SessionStatus", "SessionState", "TempoCandidate", "BpmCandidates"]
