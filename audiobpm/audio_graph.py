"""
Processing graph for live capture: context, nodes and their wiring.

An :class:`AudioContext` is the root of a small push-based processing graph.
Capture blocks enter through a :class:`MediaStreamSourceNode`, travel through
whichever nodes have been connected downstream and end in the tempo
analyser's input node.  Blocks are one-dimensional ``float32`` numpy arrays.

Blocks are pushed from the PortAudio callback thread while topology changes
(``connect``/``disconnect``) and state changes (``resume``/``suspend``/
``close``) come from the controller's thread.  Both sides take the
context's re-entrant lock, so a node is never disconnected half way through
a block.

A suspended context keeps its nodes but drops incoming blocks; a closed
context disconnects everything and refuses further use.
"""

from __future__ import annotations

import math
import threading
from typing import TYPE_CHECKING, Optional

import numpy as np
from scipy.signal import sosfilt

from .constants import (
    COMPRESSOR_ATTACK_S,
    COMPRESSOR_KNEE_DB,
    COMPRESSOR_RATIO,
    COMPRESSOR_RELEASE_S,
    COMPRESSOR_THRESHOLD_DB,
    LEVEL_METER_INTERVAL_S,
    LOWPASS_CUTOFF_HZ,
    LOWPASS_Q,
    SAMPLE_RATE,
)
from .logging_utils import log_event

if TYPE_CHECKING:
    from .media import MediaStream

RUNNING = "running"
SUSPENDED = "suspended"
CLOSED = "closed"


class AudioContextClosedError(RuntimeError):
    """Raised when a closed context is resumed or given new nodes."""


class AudioContext:
    """Root of the processing graph.

    Args:
        sample_rate: Sampling frequency of every node in the graph.

    Attributes:
        lock: Re-entrant lock serialising block processing against topology
            and state changes.
    """

    def __init__(self, sample_rate: int = SAMPLE_RATE) -> None:
        self.sample_rate = sample_rate
        self.lock = threading.RLock()
        self._state = RUNNING
        self._nodes: list[AudioNode] = []

    @property
    def state(self) -> str:
        return self._state

    def resume(self) -> None:
        with self.lock:
            if self._state == CLOSED:
                raise AudioContextClosedError("cannot resume a closed AudioContext")
            self._state = RUNNING

    def suspend(self) -> None:
        with self.lock:
            if self._state == CLOSED:
                raise AudioContextClosedError("cannot suspend a closed AudioContext")
            self._state = SUSPENDED

    def close(self) -> None:
        """Disconnect every node and mark the context unusable.

        Closing an already closed context does nothing.
        """
        with self.lock:
            if self._state == CLOSED:
                return
            for node in list(self._nodes):
                node.disconnect()
            self._nodes.clear()
            self._state = CLOSED

    # -----------------------------------------------------------------
    def _register(self, node: "AudioNode") -> None:
        with self.lock:
            if self._state == CLOSED:
                raise AudioContextClosedError("AudioContext is closed")
            self._nodes.append(node)

    def _forget(self, node: "AudioNode") -> None:
        with self.lock:
            if node in self._nodes:
                self._nodes.remove(node)

    # -----------------------------------------------------------------
    def create_media_stream_source(self, stream: "MediaStream") -> "MediaStreamSourceNode":
        return MediaStreamSourceNode(self, stream)

    def create_biquad_filter(
        self,
        filter_type: str = "lowpass",
        frequency: float = LOWPASS_CUTOFF_HZ,
        q: float = LOWPASS_Q,
    ) -> "BiquadFilterNode":
        return BiquadFilterNode(self, filter_type=filter_type, frequency=frequency, q=q)

    def create_dynamics_compressor(self, **kwargs) -> "DynamicsCompressorNode":
        return DynamicsCompressorNode(self, **kwargs)

    def create_gain(self, gain: float = 1.0) -> "GainNode":
        return GainNode(self, gain=gain)

    def create_level_meter(
        self, interval_s: float = LEVEL_METER_INTERVAL_S
    ) -> "LevelMeterNode":
        return LevelMeterNode(self, interval_s=interval_s)


class AudioNode:
    """A processing stage that forwards its output to connected nodes."""

    def __init__(self, context: AudioContext) -> None:
        self.context = context
        self._outputs: list[AudioNode] = []
        context._register(self)

    @property
    def outputs(self) -> tuple["AudioNode", ...]:
        return tuple(self._outputs)

    def connect(self, destination: "AudioNode") -> "AudioNode":
        """Route this node's output into ``destination`` and return it."""
        if destination.context is not self.context:
            raise ValueError("cannot connect nodes from different contexts")
        with self.context.lock:
            if self.context.state == CLOSED:
                raise AudioContextClosedError("AudioContext is closed")
            if destination not in self._outputs:
                self._outputs.append(destination)
        return destination

    def disconnect(self) -> None:
        """Detach every output.  Safe to call repeatedly."""
        with self.context.lock:
            self._outputs.clear()

    def process(self, block: np.ndarray) -> np.ndarray:
        return block

    def receive(self, block: np.ndarray) -> None:
        out = self.process(block)
        for node in list(self._outputs):
            node.receive(out)


class MediaStreamSourceNode(AudioNode):
    """Entry point of captured audio into the graph.

    Blocks are down-mixed to mono and only forwarded while the context is
    running.
    """

    def __init__(self, context: AudioContext, stream: "MediaStream") -> None:
        super().__init__(context)
        self.stream = stream
        stream.add_listener(self._on_block)

    def _on_block(self, indata: np.ndarray) -> None:
        if indata.ndim == 2 and indata.shape[1] > 1:
            samples = indata.mean(axis=1).astype(np.float32)
        else:
            samples = indata.reshape(-1).astype(np.float32)
        with self.context.lock:
            if self.context.state != RUNNING:
                return
            self.receive(samples)

    def disconnect(self) -> None:
        super().disconnect()
        self.stream.remove_listener(self._on_block)
        self.context._forget(self)


def biquad_sos(
    filter_type: str, frequency: float, q: float, sample_rate: int
) -> np.ndarray:
    """Return one second-order section for a low-pass biquad.

    Coefficients follow the RBJ audio EQ cookbook, normalised by ``a0``.
    """
    if filter_type != "lowpass":
        raise ValueError(f"Unsupported filter type: {filter_type}")
    nyquist = sample_rate / 2.0
    frequency = min(max(frequency, 1.0), nyquist * 0.99)
    w0 = 2.0 * math.pi * frequency / sample_rate
    cos_w0 = math.cos(w0)
    alpha = math.sin(w0) / (2.0 * max(q, 1e-4))
    b0 = (1.0 - cos_w0) / 2.0
    b1 = 1.0 - cos_w0
    b2 = b0
    a0 = 1.0 + alpha
    a1 = -2.0 * cos_w0
    a2 = 1.0 - alpha
    return np.array([[b0 / a0, b1 / a0, b2 / a0, 1.0, a1 / a0, a2 / a0]])


class BiquadFilterNode(AudioNode):
    """Streaming biquad filter with state carried across blocks."""

    def __init__(
        self,
        context: AudioContext,
        filter_type: str = "lowpass",
        frequency: float = LOWPASS_CUTOFF_HZ,
        q: float = LOWPASS_Q,
    ) -> None:
        super().__init__(context)
        self.filter_type = filter_type
        self.frequency = frequency
        self.q = q
        self.sos = biquad_sos(filter_type, frequency, q, context.sample_rate)
        self._zi = np.zeros((self.sos.shape[0], 2))

    def process(self, block: np.ndarray) -> np.ndarray:
        out, self._zi = sosfilt(self.sos, block, zi=self._zi)
        return out.astype(np.float32)


def compressor_gain_db(
    level_db: float, threshold_db: float, knee_db: float, ratio: float
) -> float:
    """Static gain (<= 0 dB) of a soft-knee compressor for ``level_db``."""
    overshoot = level_db - threshold_db
    if knee_db > 0 and 2.0 * abs(overshoot) <= knee_db:
        compressed = level_db + (1.0 / ratio - 1.0) * (
            overshoot + knee_db / 2.0
        ) ** 2 / (2.0 * knee_db)
    elif 2.0 * overshoot > knee_db:
        compressed = threshold_db + overshoot / ratio
    else:
        compressed = level_db
    return compressed - level_db


class DynamicsCompressorNode(AudioNode):
    """Feed-forward compressor working at block rate.

    The peak level of each block drives a soft-knee gain computer.  The
    resulting gain reduction is smoothed with separate attack and release
    time constants and applied as a linear ramp across the block so that
    gain changes do not click.

    Attributes:
        reduction: Current gain reduction in decibels (zero or negative).
    """

    def __init__(
        self,
        context: AudioContext,
        threshold: float = COMPRESSOR_THRESHOLD_DB,
        knee: float = COMPRESSOR_KNEE_DB,
        ratio: float = COMPRESSOR_RATIO,
        attack: float = COMPRESSOR_ATTACK_S,
        release: float = COMPRESSOR_RELEASE_S,
    ) -> None:
        super().__init__(context)
        if ratio < 1.0:
            raise ValueError("compressor ratio must be >= 1")
        self.threshold = threshold
        self.knee = knee
        self.ratio = ratio
        self.attack = attack
        self.release = release
        self.reduction: float = 0.0

    def _coefficient(self, time_constant: float, block_duration: float) -> float:
        if time_constant <= 0:
            return 0.0
        return math.exp(-block_duration / time_constant)

    def process(self, block: np.ndarray) -> np.ndarray:
        if block.size == 0:
            return block
        peak = float(np.max(np.abs(block)))
        level_db = 20.0 * math.log10(max(peak, 1e-9))
        target = compressor_gain_db(level_db, self.threshold, self.knee, self.ratio)

        block_duration = block.size / self.context.sample_rate
        if target < self.reduction:
            coeff = self._coefficient(self.attack, block_duration)
        else:
            coeff = self._coefficient(self.release, block_duration)
        previous = self.reduction
        self.reduction = coeff * previous + (1.0 - coeff) * target

        ramp = np.linspace(
            10.0 ** (previous / 20.0),
            10.0 ** (self.reduction / 20.0),
            block.size,
            dtype=np.float32,
        )
        return (block * ramp).astype(np.float32)


class GainNode(AudioNode):
    """Multiply every sample by a linear ``gain``."""

    def __init__(self, context: AudioContext, gain: float = 1.0) -> None:
        super().__init__(context)
        self.gain = gain

    def process(self, block: np.ndarray) -> np.ndarray:
        return (block * self.gain).astype(np.float32)


class LevelMeterNode(AudioNode):
    """Pass-through meter reporting peak and RMS levels for diagnostics.

    Readings are aggregated over ``interval_s`` seconds of audio, logged at
    debug level and kept on :attr:`peak` and :attr:`rms`.  They play no part
    in detection.
    """

    def __init__(
        self, context: AudioContext, interval_s: float = LEVEL_METER_INTERVAL_S
    ) -> None:
        super().__init__(context)
        self.interval_samples = max(int(interval_s * context.sample_rate), 1)
        self.peak: Optional[float] = None
        self.rms: Optional[float] = None
        self._peak_acc = 0.0
        self._square_acc = 0.0
        self._count = 0

    def process(self, block: np.ndarray) -> np.ndarray:
        if block.size:
            self._peak_acc = max(self._peak_acc, float(np.max(np.abs(block))))
            self._square_acc += float(np.sum(block.astype(np.float64) ** 2))
            self._count += block.size
        if self._count >= self.interval_samples:
            self.peak = self._peak_acc
            self.rms = math.sqrt(self._square_acc / self._count)
            log_event("DEBUG", "Meter", "Input level", peak=f"{self.peak:.4f}", rms=f"{self.rms:.4f}")
            self._peak_acc = 0.0
            self._square_acc = 0.0
            self._count = 0
        return block


__all__ = [
    "RUNNING",
    "SUSPENDED",
    "CLOSED",
    "AudioContextClosedError",
    "AudioContext",
    "AudioNode",
    "MediaStreamSourceNode",
    "BiquadFilterNode",
    "DynamicsCompressorNode",
    "GainNode",
    "LevelMeterNode",
    "biquad_sos",
    "compressor_gain_db",
]
