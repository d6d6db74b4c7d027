import math

import numpy as np
import pytest

from audiobpm.audio_graph import AudioContext
from audiobpm.engine import RealtimeBpmAnalyzer, TempoCandidateTracker, fold_tempo
from audiobpm.state import BpmCandidates


def test_fold_tempo_into_range() -> None:
    assert fold_tempo(60.0) == pytest.approx(120.0)
    assert fold_tempo(240.0) == pytest.approx(120.0)
    assert fold_tempo(128.0) == pytest.approx(128.0)
    with pytest.raises(ValueError):
        fold_tempo(0.0)
    with pytest.raises(ValueError):
        fold_tempo(math.nan)


def test_tracker_counts_interval_votes() -> None:
    tracker = TempoCandidateTracker()
    for i in range(9):
        tracker.add_beat(i * 0.5)
    top = tracker.candidates()[0]
    assert top.tempo == pytest.approx(120.0)
    assert top.count == 8


def test_tracker_prefers_reported_bpm() -> None:
    tracker = TempoCandidateTracker()
    tracker.add_beat(0.0, reported_bpm=128.2)
    tracker.add_beat(0.3, reported_bpm=127.9)
    tracker.add_beat(0.9, reported_bpm=100.0)
    candidates = tracker.candidates()
    assert candidates[0].count == 2
    assert candidates[0].tempo == pytest.approx(128.05)
    assert candidates[1].tempo == pytest.approx(100.0)


def test_tracker_forgets_old_votes() -> None:
    tracker = TempoCandidateTracker(max_votes=4)
    for _ in range(10):
        tracker.add_beat(0.0, reported_bpm=100.0)
    for _ in range(4):
        tracker.add_beat(0.0, reported_bpm=150.0)
    candidates = tracker.candidates()
    assert len(candidates) == 1
    assert candidates[0].tempo == pytest.approx(150.0)


def test_tracker_reset() -> None:
    tracker = TempoCandidateTracker()
    tracker.add_beat(0.0, reported_bpm=120.0)
    tracker.reset()
    assert tracker.candidates() == []


def test_tracker_rejects_narrow_range() -> None:
    with pytest.raises(ValueError):
        TempoCandidateTracker(min_tempo=100.0, max_tempo=150.0)


class ScriptedTempo:
    """Beat tracker double: a beat every ``every`` hops at ``bpm``."""

    def __init__(self, method, win_s, hop_s, samplerate, every=4, bpm=120.0):
        self.hop_s = hop_s
        self.samplerate = samplerate
        self.every = every
        self.bpm = bpm
        self.frames = 0
        self.last_s = 0.0

    def __call__(self, frame):
        assert frame.size == self.hop_s
        assert frame.dtype == np.float32
        self.frames += 1
        if self.frames % self.every == 0:
            self.last_s = self.frames * self.hop_s / self.samplerate
            return np.array([1.0], dtype=np.float32)
        return np.array([0.0], dtype=np.float32)

    def get_last_s(self):
        return self.last_s

    def get_bpm(self):
        return self.bpm


def _analyser(**kwargs) -> RealtimeBpmAnalyzer:
    ctx = AudioContext(sample_rate=1000)
    kwargs.setdefault("window_size", 100)
    kwargs.setdefault("hop_size", 50)
    return RealtimeBpmAnalyzer(ctx, tempo_factory=ScriptedTempo, **kwargs)


def test_analyser_emits_running_candidates_per_beat() -> None:
    analyser = _analyser(stabilization_time=100.0)
    events = []
    analyser.bpm.connect(events.append)
    # 70 samples at a time: hops are buffered across blocks
    for _ in range(10):
        analyser.node.receive(np.zeros(70, dtype=np.float32))

    assert analyser.analysed_seconds == pytest.approx(0.7)
    assert len(events) == 3
    assert isinstance(events[-1], BpmCandidates)
    assert events[-1].bpm[0].tempo == pytest.approx(120.0)
    assert events[-1].bpm[0].count == 3


def test_analyser_emits_stable_once() -> None:
    analyser = _analyser(stabilization_time=1.0)
    stable = []
    analyser.bpmStable.connect(stable.append)
    for _ in range(20):
        analyser.analyse(np.zeros(200, dtype=np.float32))

    assert len(stable) == 1
    assert stable[0].bpm[0].count >= 4


def test_analyser_stop_and_reset() -> None:
    analyser = _analyser(stabilization_time=1.0)
    events, stable = [], []
    analyser.bpm.connect(events.append)
    analyser.bpmStable.connect(stable.append)
    analyser.analyse(np.zeros(2000, dtype=np.float32))
    assert stable

    analyser.reset()
    assert analyser.tracker.candidates() == []
    assert analyser.analysed_seconds == 0.0
    analyser.analyse(np.zeros(2000, dtype=np.float32))
    assert len(stable) == 2

    analyser.stop()
    count = len(events)
    analyser.analyse(np.zeros(2000, dtype=np.float32))
    assert len(events) == count


def test_analyser_reports_failures_as_error_signal() -> None:
    def broken(method, win_s, hop_s, samplerate):
        def detect(frame):
            raise RuntimeError("bad frame")

        return detect

    ctx = AudioContext(sample_rate=1000)
    analyser = RealtimeBpmAnalyzer(ctx, window_size=100, hop_size=50, tempo_factory=broken)
    errors = []
    analyser.error.connect(errors.append)
    analyser.analyse(np.zeros(100, dtype=np.float32))
    assert errors == ["bad frame"]


def test_analyser_disconnect_detaches_node() -> None:
    analyser = _analyser()
    ctx = analyser.node.context
    gain = ctx.create_gain()
    gain.connect(analyser.node)
    analyser.disconnect()
    assert analyser.node not in ctx._nodes


def test_aubio_tempo_runs_on_silence() -> None:
    ctx = AudioContext()
    analyser = RealtimeBpmAnalyzer(ctx)
    events = []
    analyser.bpm.connect(events.append)
    analyser.analyse(np.zeros(44_100, dtype=np.float32))
    assert events == []
    assert analyser.analysed_seconds > 0.9
