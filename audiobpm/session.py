"""
BpmSessionController: one microphone tempo detection at a time.

The controller is the only object the presentation layer talks to.  It
exposes a read-only :class:`~audiobpm.state.SessionState` snapshot, a
``stateChanged`` signal and four commands: :meth:`start`, :meth:`stop`,
:meth:`reset` and :meth:`dispose`.

Transitions::

    idle      --start()-------------------> listening
    listening --accepted detection--------> detected
    listening --timeout-------------------> error
    listening --acquisition failure-------> error
    any       --stop()--------------------> idle
    detected  --reset()-------------------> idle
    error     --reset()-------------------> idle

Analyser events and the detection deadline reach the controller as
:class:`~audiobpm.router.SessionMessage` objects on the Qt event loop and
are handled by :meth:`BpmSessionController._dispatch`.  A session is
running strictly between a successful ``start`` and the first terminal
message; messages arriving after that are dropped.  Every terminal path
cancels the deadline first, then releases resources, then publishes the new
state, so a caller reacting to ``stateChanged`` may immediately start again.

A QCoreApplication (or QApplication) must exist for the detection deadline
and cross-thread analyser events to be delivered.
"""

from __future__ import annotations

from typing import Callable, Optional

from PySide6 import QtCore

from .acquirer import ResourceAcquirer
from .constants import (
    CONFIDENCE_THRESHOLD,
    DETECTION_TIMEOUT_MS,
    SAMPLE_RATE,
    STABILIZATION_TIME_S,
)
from .cleanup import CleanupSequencer
from .errors import DetectionTimeout, error_message
from .logging_utils import log_event
from .media import DeviceSpec, MediaDevices
from .preprocessing import PreprocessingChain, SignalChain
from .resources import AudioSession
from .router import DetectionEventRouter, MessageKind, SessionMessage
from .state import SessionState, SessionStatus
from .timeout_guard import TimeoutGuard


class _SessionEnded(Exception):
    """The session was stopped while ``start`` was still acquiring."""


def _default_engine_factory(context, **options):
    from .engine import create_realtime_bpm_analyzer

    return create_realtime_bpm_analyzer(context, **options)


class BpmSessionController(QtCore.QObject):
    """Drive a single tempo detection session from microphone input.

    Args:
        detection_timeout_ms: Milliseconds to wait for an accepted tempo
            before failing the session.
        confidence_threshold: Support count a running candidate needs to be
            accepted early.
        stabilization_time: Seconds of audio the analyser needs before its
            stable event may fire.
        chain_factory: Builds the signal chain for each session.
            :class:`~audiobpm.preprocessing.PreprocessingChain` by default,
            :class:`~audiobpm.preprocessing.DirectChain` to skip conditioning.
        engine_factory: Builds the analyser for each session; called with the
            audio context and ``continuous_analysis``/``stabilization_time``
            keyword arguments.
        acquirer: Source of the audio context and capture stream.
        device: Input device index or name when no ``acquirer`` is given.
        sample_rate: Sampling frequency when no ``acquirer`` is given.
        parent: Optional Qt parent.

    Signals:
        stateChanged(SessionState): Emitted after every transition.
    """

    stateChanged = QtCore.Signal(object)

    def __init__(
        self,
        detection_timeout_ms: int = DETECTION_TIMEOUT_MS,
        confidence_threshold: int = CONFIDENCE_THRESHOLD,
        stabilization_time: float = STABILIZATION_TIME_S,
        chain_factory: Callable[[], SignalChain] = PreprocessingChain,
        engine_factory: Optional[Callable[..., object]] = None,
        acquirer: Optional[ResourceAcquirer] = None,
        device: DeviceSpec = None,
        sample_rate: int = SAMPLE_RATE,
        parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.detection_timeout_ms = int(detection_timeout_ms)
        self.stabilization_time = stabilization_time
        self._chain_factory = chain_factory
        self._engine_factory = engine_factory or _default_engine_factory
        self._acquirer = acquirer or ResourceAcquirer(
            MediaDevices(device=device, sample_rate=sample_rate), sample_rate=sample_rate
        )
        self._state = SessionState.idle()
        self._disposed = False

        self._session = AudioSession(timeout=TimeoutGuard(self))
        self._session.timeout.expired.connect(self._on_timeout_expired)
        self._router = DetectionEventRouter(confidence_threshold, self)
        self._router.message.connect(self._dispatch)
        self._cleanup = CleanupSequencer(self._router)

    # ─── Read-only view ─────────────────────────────────────────────────
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def bpm(self) -> Optional[int]:
        return self._state.bpm

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    @property
    def is_running(self) -> bool:
        return self._session.running

    @property
    def confidence_threshold(self) -> int:
        return self._router.confidence_threshold

    @property
    def session(self) -> AudioSession:
        return self._session

    # ─── Commands ───────────────────────────────────────────────────────
    def start(self) -> None:
        """Start listening.  Ignored while a session is already running."""
        if self._disposed:
            log_event("WARNING", "Session", "start() after dispose, ignoring")
            return
        if self._session.running:
            log_event("DEBUG", "Session", "Already running, ignoring start")
            return

        self._session.running = True
        self._set_state(SessionState.listening())
        try:
            self._open_session()
        except _SessionEnded:
            log_event("INFO", "Session", "Session ended while starting")
            self._cleanup.teardown(self._session)
        except Exception as exc:
            message = error_message(exc)
            log_event("ERROR", "Session", "Error in start", error=exc)
            still_ours = self._session.running
            self._session.running = False
            self._cleanup.teardown(self._session)
            if still_ours:
                self._set_state(SessionState.failed(message))

    def stop(self) -> None:
        """End any session and return to idle.  Safe to call in any state."""
        log_event("DEBUG", "Session", "stop() called", status=self.status.value)
        self._end_session()
        self._set_state(SessionState.idle())

    def reset(self) -> None:
        """Stop, clear the analyser's accumulated state and return to idle."""
        self._end_session()
        engine, self._session.retired_engine = self._session.retired_engine, None
        if engine is not None:
            try:
                engine.reset()
            except Exception as exc:
                log_event("ERROR", "Session", "Error resetting analyzer", error=exc)
        self._set_state(SessionState.idle())

    def dispose(self) -> None:
        """Stop and close the audio context for good."""
        self._disposed = True
        self._end_session(close_context=True)
        self._session.retired_engine = None
        self._set_state(SessionState.idle())

    # ─── Session lifecycle ──────────────────────────────────────────────
    def _ensure_running(self) -> None:
        if not self._session.running:
            raise _SessionEnded()

    def _open_session(self) -> None:
        session = self._session
        self._ensure_running()
        session.context = self._acquirer.acquire_context(session.context)
        self._ensure_running()
        session.stream = self._acquirer.acquire_stream()
        self._ensure_running()

        context = session.context
        session.source = context.create_media_stream_source(session.stream)
        chain = self._chain_factory()
        session.chain = chain
        chain.build(context, session.source)

        engine = self._engine_factory(
            context,
            continuous_analysis=True,
            stabilization_time=self.stabilization_time,
        )
        session.engine = engine
        chain.connect(engine.node)
        self._router.subscribe(engine)
        self._ensure_running()

        session.timeout.arm(self.detection_timeout_ms)
        log_event(
            "INFO",
            "Session",
            "Detection started",
            chain=chain.name,
            timeout_ms=self.detection_timeout_ms,
            threshold=self.confidence_threshold,
        )

    def _end_session(self, close_context: bool = False) -> None:
        self._session.running = False
        self._cleanup.teardown(self._session, close_context=close_context)

    def _finish(self, state: SessionState) -> None:
        self._session.timeout.cancel()
        self._end_session()
        self._set_state(state)

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        self._state = state
        log_event("INFO", "Session", "State changed", status=state.status.value, bpm=state.bpm, error=state.error)
        self.stateChanged.emit(state)

    # ─── Messages ───────────────────────────────────────────────────────
    def _on_timeout_expired(self, duration_ms: int) -> None:
        self._dispatch(SessionMessage(MessageKind.TIMEOUT, DetectionTimeout(duration_ms)))

    def _dispatch(self, message: SessionMessage) -> None:
        """Apply ``message`` to a running session."""
        if not self._session.running:
            log_event("DEBUG", "Session", "Session not running, dropping message", kind=message.kind.value)
            return
        if message.kind is MessageKind.TIMEOUT:
            self._finish(SessionState.failed(error_message(message.payload)))
            return
        bpm = self._router.accept(message)
        if bpm is None:
            return
        self._finish(SessionState.detected(bpm))


__all__ = ["BpmSessionController"]
