"""
Realtime tempo analyser built on ``aubio.tempo``.

The analyser exposes an input node for the processing graph and reports its
findings through three Qt signals:

``bpm``
    emitted after every detected beat with the current candidate list,
    best supported tempo first.
``bpmStable``
    emitted at most once per session, when enough audio has been analysed
    and the leading candidate has gathered enough support.
``error``
    advisory; emitted when analysis of a block fails.

Signals are emitted on the PortAudio callback thread.  Receivers living on
the controller's thread get them queued onto its event loop.
"""

from __future__ import annotations

import math
from collections import deque
from typing import Callable, Optional

import aubio
import numpy as np
from PySide6 import QtCore

from .audio_graph import AudioContext, AudioNode
from .constants import (
    ANALYSIS_HOP_SIZE,
    ANALYSIS_WINDOW_SIZE,
    MAX_TEMPO,
    MAX_TRACKED_INTERVALS,
    MIN_TEMPO,
    STABILIZATION_TIME_S,
    STABLE_MIN_SUPPORT,
    TEMPO_BIN_WIDTH,
)
from .logging_utils import log_event
from .state import BpmCandidates, TempoCandidate


def fold_tempo(tempo: float, min_tempo: float = MIN_TEMPO, max_tempo: float = MAX_TEMPO) -> float:
    """Fold ``tempo`` by octaves into ``[min_tempo, max_tempo]``."""
    if not math.isfinite(tempo) or tempo <= 0:
        raise ValueError(f"tempo must be finite and positive, got {tempo}")
    while tempo < min_tempo:
        tempo *= 2.0
    while tempo > max_tempo:
        tempo /= 2.0
    return tempo


class TempoCandidateTracker:
    """Accumulate per-beat tempo votes into ranked candidates.

    Every beat contributes one vote: the beat tracker's own estimate when it
    has one, otherwise the tempo implied by the interval since the previous
    beat.  Votes are folded into ``[min_tempo, max_tempo]`` and binned; a
    candidate's ``count`` is the number of votes in its bin and its
    ``tempo`` the mean of those votes.

    Args:
        min_tempo: Lower bound of the folding range in BPM.
        max_tempo: Upper bound of the folding range in BPM.
        bin_width: Histogram bin width in BPM.
        max_votes: Keep only the most recent votes; ``None`` keeps all.
    """

    def __init__(
        self,
        min_tempo: float = MIN_TEMPO,
        max_tempo: float = MAX_TEMPO,
        bin_width: float = TEMPO_BIN_WIDTH,
        max_votes: Optional[int] = MAX_TRACKED_INTERVALS,
    ) -> None:
        if max_tempo < 2 * min_tempo - 1e-9:
            raise ValueError("tempo range must span at least one octave")
        self.min_tempo = min_tempo
        self.max_tempo = max_tempo
        self.bin_width = bin_width
        self._votes: deque[float] = deque(maxlen=max_votes)
        self._last_beat: Optional[float] = None

    @property
    def vote_count(self) -> int:
        return len(self._votes)

    def add_beat(self, time_s: float, reported_bpm: float = 0.0) -> None:
        """Record a beat at ``time_s`` seconds."""
        previous = self._last_beat
        self._last_beat = time_s
        if reported_bpm and math.isfinite(reported_bpm) and reported_bpm > 0:
            tempo = reported_bpm
        elif previous is not None and time_s > previous:
            tempo = 60.0 / (time_s - previous)
        else:
            return
        self._votes.append(fold_tempo(tempo, self.min_tempo, self.max_tempo))

    def candidates(self, limit: int = 5) -> list[TempoCandidate]:
        """Return up to ``limit`` candidates, most supported first."""
        if not self._votes:
            return []
        votes = np.asarray(self._votes, dtype=np.float64)
        bins = np.round(votes / self.bin_width).astype(np.int64)
        keys, counts = np.unique(bins, return_counts=True)
        ranked = []
        for key, count in zip(keys, counts):
            members = votes[bins == key]
            ranked.append(TempoCandidate(tempo=float(members.mean()), count=int(count)))
        ranked.sort(key=lambda c: (-c.count, c.tempo))
        return ranked[:limit]

    def reset(self) -> None:
        self._votes.clear()
        self._last_beat = None


class AnalyserInputNode(AudioNode):
    """Terminal graph node handing blocks to the analyser."""

    def __init__(self, context: AudioContext, analyser: "RealtimeBpmAnalyzer") -> None:
        super().__init__(context)
        self._analyser = analyser

    def process(self, block: np.ndarray) -> np.ndarray:
        self._analyser.analyse(block)
        return block

    def disconnect(self) -> None:
        super().disconnect()
        self.context._forget(self)


TempoFactory = Callable[[str, int, int, int], object]


class RealtimeBpmAnalyzer(QtCore.QObject):
    """Beat tracking and tempo candidate reporting for a live stream.

    Args:
        context: Graph the input node belongs to; its sample rate is used
            for analysis.
        continuous_analysis: Let old votes age out so the estimate follows
            tempo changes.  When ``False`` every vote since the last reset
            counts.
        stabilization_time: Seconds of analysed audio before ``bpmStable``
            may fire.
        window_size: Beat tracker analysis window in samples.
        hop_size: Beat tracker hop in samples.
        method: Onset detection method passed to :func:`aubio.tempo`.
        tempo_factory: Builds the beat tracker; defaults to
            :func:`aubio.tempo`.
    """

    bpm = QtCore.Signal(object)
    bpmStable = QtCore.Signal(object)
    error = QtCore.Signal(str)

    def __init__(
        self,
        context: AudioContext,
        continuous_analysis: bool = True,
        stabilization_time: float = STABILIZATION_TIME_S,
        window_size: int = ANALYSIS_WINDOW_SIZE,
        hop_size: int = ANALYSIS_HOP_SIZE,
        method: str = "default",
        tempo_factory: Optional[TempoFactory] = None,
        parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        if window_size < hop_size:
            raise ValueError("window_size must be >= hop_size")
        self.sample_rate = context.sample_rate
        self.continuous_analysis = continuous_analysis
        self.stabilization_time = stabilization_time
        self.window_size = window_size
        self.hop_size = hop_size
        self.method = method
        self._tempo_factory = tempo_factory or aubio.tempo
        self._tempo = self._new_tracker()
        self.tracker = TempoCandidateTracker(
            max_votes=MAX_TRACKED_INTERVALS if continuous_analysis else None
        )
        self._buffer = np.zeros(0, dtype=np.float32)
        self._samples_analysed = 0
        self._stable_emitted = False
        self._stopped = False
        self.node = AnalyserInputNode(context, self)

    def _new_tracker(self):
        return self._tempo_factory(self.method, self.window_size, self.hop_size, self.sample_rate)

    @property
    def analysed_seconds(self) -> float:
        return self._samples_analysed / float(self.sample_rate)

    @property
    def stopped(self) -> bool:
        return self._stopped

    # -----------------------------------------------------------------
    def analyse(self, block: np.ndarray) -> None:
        """Feed a block of any length; complete hops are analysed."""
        if self._stopped:
            return
        try:
            self._buffer = np.concatenate([self._buffer, block.astype(np.float32)])
            offset = 0
            while self._buffer.size - offset >= self.hop_size:
                frame = self._buffer[offset:offset + self.hop_size]
                offset += self.hop_size
                self._samples_analysed += self.hop_size
                if self._tempo(frame):
                    self._on_beat()
                if self._stopped:
                    break
            self._buffer = self._buffer[offset:]
        except Exception as exc:
            self._buffer = np.zeros(0, dtype=np.float32)
            log_event("WARNING", "Engine", "Analysis failed", error=exc)
            self.error.emit(str(exc))

    def _on_beat(self) -> None:
        self.tracker.add_beat(
            float(self._tempo.get_last_s()), float(self._tempo.get_bpm())
        )
        candidates = self.tracker.candidates()
        if not candidates:
            return
        payload = BpmCandidates(bpm=candidates)
        self.bpm.emit(payload)
        if (
            not self._stable_emitted
            and self.analysed_seconds >= self.stabilization_time
            and candidates[0].count >= STABLE_MIN_SUPPORT
        ):
            self._stable_emitted = True
            log_event("INFO", "Engine", "Tempo stable", tempo=f"{candidates[0].tempo:.1f}")
            self.bpmStable.emit(payload)

    # -----------------------------------------------------------------
    def stop(self) -> None:
        """Stop analysing; further blocks are ignored."""
        self._stopped = True

    def disconnect(self) -> None:
        """Remove the input node from the graph."""
        self.node.disconnect()

    def reset(self) -> None:
        """Discard accumulated votes and beat tracker state."""
        self.tracker.reset()
        self._tempo = self._new_tracker()
        self._buffer = np.zeros(0, dtype=np.float32)
        self._samples_analysed = 0
        self._stable_emitted = False


def create_realtime_bpm_analyzer(
    context: AudioContext,
    continuous_analysis: bool = True,
    stabilization_time: float = STABILIZATION_TIME_S,
    **kwargs,
) -> RealtimeBpmAnalyzer:
    """Build an analyser whose input node belongs to ``context``."""
    return RealtimeBpmAnalyzer(
        context,
        continuous_analysis=continuous_analysis,
        stabilization_time=stabilization_time,
        **kwargs,
    )


__all__ = [
    "fold_tempo",
    "TempoCandidateTracker",
    "AnalyserInputNode",
    "RealtimeBpmAnalyzer",
    "create_realtime_bpm_analyzer",
]
