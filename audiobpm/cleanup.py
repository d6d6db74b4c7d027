"""Best-effort release of session resources.

Teardown is a fixed sequence of independent release steps:

1. cancel the pending detection timeout
2. unsubscribe from, stop and disconnect the analyser
3. disconnect the chain's nodes, last connected first, then the source
4. stop every capture track
5. suspend the audio context, or close it for good on disposal

A resource is detached from the session before it is released, so a fault
in one step is logged and the remaining steps still run, and running the
sequence again finds nothing left to release.
"""

from __future__ import annotations

from typing import Callable, Optional

from .audio_graph import CLOSED, RUNNING
from .logging_utils import log_event
from .resources import AudioSession


class CleanupSequencer:
    """Tear down an :class:`AudioSession`.

    Args:
        router: Event router to unsubscribe from the analyser, if any.
    """

    def __init__(self, router=None) -> None:
        self.router = router

    def _release(self, name: str, action: Callable[[], object], failures: list[str]) -> None:
        try:
            action()
        except Exception as exc:
            log_event("ERROR", "Cleanup", f"Error releasing {name}", error=exc)
            failures.append(name)

    def teardown(self, session: AudioSession, close_context: bool = False) -> list[str]:
        """Release everything ``session`` holds.

        Returns:
            Names of the steps that failed.  Failures are already logged and
            are reported for diagnostics only.
        """
        failures: list[str] = []

        if session.timeout is not None:
            self._release("timeout", session.timeout.cancel, failures)

        engine, session.engine = session.engine, None
        if engine is not None:
            if self.router is not None:
                self._release("analyzer subscription", self.router.unsubscribe, failures)
            self._release("analyzer", engine.stop, failures)
            self._release("analyzer node", engine.disconnect, failures)
            session.retired_engine = engine

        chain, session.chain = session.chain, None
        if chain is not None:
            for node in reversed(chain.nodes):
                self._release(type(node).__name__, node.disconnect, failures)
            chain.clear()

        source, session.source = session.source, None
        if source is not None:
            self._release("source", source.disconnect, failures)

        stream, session.stream = session.stream, None
        if stream is not None:
            for track in stream.get_tracks():
                self._release(f"track {track.label}".strip(), track.stop, failures)

        context = session.context
        if context is not None:
            if close_context:
                session.context = None
                self._release("audio context", context.close, failures)
            elif context.state == RUNNING:
                self._release("audio context", context.suspend, failures)
            elif context.state == CLOSED:
                session.context = None

        if failures:
            log_event("WARNING", "Cleanup", "Teardown finished with errors", failed=",".join(failures))
        else:
            log_event("DEBUG", "Cleanup", "Teardown complete", closed=close_context)
        return failures


__all__ = ["CleanupSequencer"]
