"""Resources owned by a session controller."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .audio_graph import AudioContext, AudioNode
from .media import MediaStream
from .preprocessing import SignalChain
from .timeout_guard import TimeoutGuard


@dataclass
class AudioSession:
    """Everything acquired for one detection session.

    ``context`` and ``timeout`` outlive individual sessions: the context is
    suspended between sessions and only closed on disposal, and the guard is
    re-armed by each ``start``.  ``retired_engine`` keeps the last stopped
    analyser around so that ``reset`` can clear its accumulated state.
    """

    context: Optional[AudioContext] = None
    stream: Optional[MediaStream] = None
    source: Optional[AudioNode] = None
    chain: Optional[SignalChain] = None
    engine: Optional[Any] = None
    retired_engine: Optional[Any] = None
    timeout: Optional[TimeoutGuard] = None
    running: bool = False

    @property
    def holds_capture(self) -> bool:
        return any(
            resource is not None
            for resource in (self.stream, self.source, self.chain, self.engine)
        )


__all__ = ["AudioSession"]
