"""Signal chains placed between the microphone and the tempo analyser.

Two interchangeable chains are provided:

``PreprocessingChain``
    low-pass filter → compressor → makeup gain → level meter.  The filter
    keeps kick and bass energy, the compressor evens out quiet and loud
    beats and the gain stage restores the level the compressor took away.
    The meter only reports levels for diagnostics.

``DirectChain``
    connects the source straight to the analyser, leaving all conditioning
    to the analyser itself.

A chain is built once per session, owns nothing but its nodes and is torn
down by :class:`~audiobpm.cleanup.CleanupSequencer` in reverse connection
order.
"""

from __future__ import annotations

from typing import Optional

from .audio_graph import AudioContext, AudioNode, LevelMeterNode
from .constants import (
    COMPRESSOR_ATTACK_S,
    COMPRESSOR_KNEE_DB,
    COMPRESSOR_RATIO,
    COMPRESSOR_RELEASE_S,
    COMPRESSOR_THRESHOLD_DB,
    LEVEL_METER_INTERVAL_S,
    LOWPASS_CUTOFF_HZ,
    LOWPASS_Q,
    MAKEUP_GAIN,
)
from .logging_utils import log_event


class SignalChain:
    """Base chain: no processing nodes, output is the source itself."""

    name = "direct"

    def __init__(self) -> None:
        self.nodes: list[AudioNode] = []
        self.output: Optional[AudioNode] = None

    def build(self, context: AudioContext, source: AudioNode) -> AudioNode:
        """Wire the chain behind ``source`` and return its final node."""
        self.output = source
        return source

    def connect(self, destination: AudioNode) -> AudioNode:
        if self.output is None:
            raise RuntimeError("chain has not been built")
        return self.output.connect(destination)

    def clear(self) -> None:
        self.nodes = []
        self.output = None


class DirectChain(SignalChain):
    """Source connected straight to the analyser input."""


class PreprocessingChain(SignalChain):
    """Low-pass → compressor → makeup gain → level meter.

    Parameters
    ----------
    cutoff:
        Low-pass cutoff frequency in hertz.
    q:
        Resonance of the low-pass filter.
    threshold, knee, ratio, attack, release:
        Compressor settings (dB, dB, ratio, seconds, seconds).
    makeup_gain:
        Linear gain applied after compression.
    meter_interval:
        Seconds between level meter reports.
    """

    name = "preprocessing"

    def __init__(
        self,
        cutoff: float = LOWPASS_CUTOFF_HZ,
        q: float = LOWPASS_Q,
        threshold: float = COMPRESSOR_THRESHOLD_DB,
        knee: float = COMPRESSOR_KNEE_DB,
        ratio: float = COMPRESSOR_RATIO,
        attack: float = COMPRESSOR_ATTACK_S,
        release: float = COMPRESSOR_RELEASE_S,
        makeup_gain: float = MAKEUP_GAIN,
        meter_interval: float = LEVEL_METER_INTERVAL_S,
    ) -> None:
        super().__init__()
        self.cutoff = cutoff
        self.q = q
        self.compressor_settings = {
            "threshold": threshold,
            "knee": knee,
            "ratio": ratio,
            "attack": attack,
            "release": release,
        }
        self.makeup_gain = makeup_gain
        self.meter_interval = meter_interval

    @property
    def meter(self) -> Optional[LevelMeterNode]:
        for node in self.nodes:
            if isinstance(node, LevelMeterNode):
                return node
        return None

    def build(self, context: AudioContext, source: AudioNode) -> AudioNode:
        lowpass = context.create_biquad_filter("lowpass", self.cutoff, self.q)
        compressor = context.create_dynamics_compressor(**self.compressor_settings)
        makeup = context.create_gain(self.makeup_gain)
        meter = context.create_level_meter(self.meter_interval)
        self.nodes = [lowpass, compressor, makeup, meter]

        node = source
        for stage in self.nodes:
            node = node.connect(stage)
        self.output = meter
        log_event(
            "INFO",
            "Chain",
            "Audio graph: source -> lowpass -> compressor -> gain -> meter",
            cutoff=self.cutoff,
            gain=self.makeup_gain,
        )
        return meter


__all__ = ["SignalChain", "DirectChain", "PreprocessingChain"]
