"""Routing of analyser events into session messages.

The analyser reports tempo two ways: a stream of low-confidence running
candidates and a single high-confidence stable event.  Both are turned into
:class:`SessionMessage` objects for the controller, which runs them through
:meth:`DetectionEventRouter.accept`, the confidence gate shared by both
paths.  Whichever message is accepted first ends the session; later ones
find the session no longer running and are dropped.

Analyser signals are emitted on the PortAudio callback thread and arrive as
queued calls, so some may still be pending when a session is stopped.  Each
subscription therefore has its own receiver; once unsubscribed it drops
whatever is still queued for it, and a following session never sees events
from the analyser before it.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Any, Optional

from PySide6 import QtCore

from .constants import CONFIDENCE_THRESHOLD
from .logging_utils import log_event
from .validation import candidate_list, candidate_support, candidate_tempo, is_valid_bpm_data


class MessageKind(enum.Enum):
    RUNNING_CANDIDATES = "running-candidates"
    STABLE = "stable"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class SessionMessage:
    kind: MessageKind
    payload: Any = None


def round_bpm(tempo: float) -> int:
    """Round half up, so 128.5 BPM reads as 129."""
    return int(math.floor(tempo + 0.5))


class _Subscription(QtCore.QObject):
    """Receiver for one analyser's signals, live until :meth:`close`."""

    def __init__(self, router: "DetectionEventRouter", engine) -> None:
        super().__init__(router)
        self.engine = engine
        self.active = True
        self.stable_seen = False
        self._router = router
        engine.bpm.connect(self._on_running)
        engine.bpmStable.connect(self._on_stable)
        engine.error.connect(self._on_error)

    def close(self) -> None:
        self.active = False
        engine, self.engine = self.engine, None
        engine.bpm.disconnect(self._on_running)
        engine.bpmStable.disconnect(self._on_stable)
        engine.error.disconnect(self._on_error)
        # calls already queued for this receiver are discarded with it
        self.deleteLater()

    def _on_running(self, data: Any) -> None:
        if not self.active:
            log_event("DEBUG", "Router", "Dropping event from a closed subscription")
            return
        self._router.message.emit(SessionMessage(MessageKind.RUNNING_CANDIDATES, data))

    def _on_stable(self, data: Any) -> None:
        if not self.active:
            log_event("DEBUG", "Router", "Dropping event from a closed subscription")
            return
        if self.stable_seen:
            return
        self.stable_seen = True
        self._router.message.emit(SessionMessage(MessageKind.STABLE, data))

    def _on_error(self, text: str) -> None:
        if self.active:
            log_event("ERROR", "Router", "Analyzer error", error=text)


class DetectionEventRouter(QtCore.QObject):
    """Subscribe to an analyser and forward its events as messages.

    Args:
        confidence_threshold: Support count a running candidate needs to be
            accepted before the analyser declares its tempo stable.
        parent: Optional Qt parent.

    Signals:
        message(SessionMessage): Emitted for every running-candidate and
            stable event received while subscribed.
    """

    message = QtCore.Signal(object)

    def __init__(
        self,
        confidence_threshold: int = CONFIDENCE_THRESHOLD,
        parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.confidence_threshold = confidence_threshold
        self._subscription: Optional[_Subscription] = None

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    def subscribe(self, engine) -> None:
        """Listen to ``engine``'s ``bpm``, ``bpmStable`` and ``error`` signals."""
        self.unsubscribe()
        self._subscription = _Subscription(self, engine)

    def unsubscribe(self) -> None:
        """Stop listening.  Does nothing when not subscribed."""
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.close()

    # -----------------------------------------------------------------
    def accept(self, message: SessionMessage) -> Optional[int]:
        """Return the BPM to report for ``message`` or ``None`` to ignore it.

        Malformed payloads are ignored.  Stable events pass on validity
        alone; running candidates also need the top candidate's support
        count to reach :attr:`confidence_threshold`.
        """
        if message.kind is MessageKind.TIMEOUT:
            return None
        if not is_valid_bpm_data(message.payload):
            log_event("DEBUG", "Router", "Invalid BPM data, ignoring", kind=message.kind.value)
            return None
        top = candidate_list(message.payload)[0]
        tempo = float(candidate_tempo(top))
        if message.kind is MessageKind.RUNNING_CANDIDATES:
            support = candidate_support(top)
            if support < self.confidence_threshold:
                log_event("DEBUG", "Router", "Candidate below threshold", tempo=f"{tempo:.1f}", count=support)
                return None
            log_event("INFO", "Router", "Confident BPM detected", tempo=f"{tempo:.1f}", count=support)
        else:
            log_event("INFO", "Router", "Stable BPM detected", tempo=f"{tempo:.1f}")
        return round_bpm(tempo)


__all__ = ["MessageKind", "SessionMessage", "DetectionEventRouter", "round_bpm"]
