"""Microphone capture streams backed by ``sounddevice``.

:class:`MediaDevices` opens a PortAudio input stream and wraps it in a
:class:`MediaStream` whose listeners receive every captured block on the
PortAudio callback thread.  ``sounddevice`` is imported when a stream is
requested rather than at module import, so a machine without the PortAudio
library can still import the package and report the failure as an
unsupported microphone.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import numpy as np

from .constants import BLOCK_SIZE, SAMPLE_RATE
from .errors import AcquisitionError, AcquisitionReason
from .logging_utils import log_event

BlockListener = Callable[[np.ndarray], None]
DeviceSpec = Union[int, str, None]


@dataclass(frozen=True)
class CaptureConstraints:
    """Signal conditioning requested from the platform.

    All three default to off: automatic gain control, echo cancellation and
    noise suppression flatten the transient spikes that carry beat energy.
    """

    auto_gain_control: bool = False
    echo_cancellation: bool = False
    noise_suppression: bool = False

    @property
    def raw(self) -> bool:
        return not (
            self.auto_gain_control or self.echo_cancellation or self.noise_suppression
        )


class MediaStreamTrack:
    """One capture track, owning a PortAudio input stream."""

    kind = "audio"

    def __init__(self, handle: Any, label: str = "") -> None:
        self._handle = handle
        self.label = label
        self.ready_state = "live"

    def stop(self) -> None:
        """Abort and close the underlying stream.  Safe to call repeatedly."""
        if self.ready_state == "ended":
            return
        self.ready_state = "ended"
        try:
            self._handle.abort()
        finally:
            self._handle.close()


class MediaStream:
    """A set of capture tracks plus the listeners fed by their callbacks."""

    def __init__(self, constraints: Optional[CaptureConstraints] = None) -> None:
        self.constraints = constraints or CaptureConstraints()
        self._tracks: list[MediaStreamTrack] = []
        self._listeners: list[BlockListener] = []
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return any(track.ready_state == "live" for track in self._tracks)

    def get_tracks(self) -> list[MediaStreamTrack]:
        return list(self._tracks)

    def add_track(self, track: MediaStreamTrack) -> None:
        self._tracks.append(track)

    def add_listener(self, listener: BlockListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: BlockListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def dispatch(self, block: np.ndarray) -> None:
        """Hand ``block`` to every listener."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(block)

    # -----------------------------------------------------------------
    def _callback(self, indata: np.ndarray, frames: int, _time, status) -> None:
        """PortAudio callback.

        Exceptions are logged and suppressed so that PortAudio does not shut
        the stream down underneath the session.
        """
        if status:
            log_event("WARNING", "Acquirer", "Input status", status=status)
        try:
            self.dispatch(indata.copy())
        except Exception as exc:
            log_event("ERROR", "Acquirer", "Capture listener failed", error=exc)


class MediaDevices:
    """Factory for microphone capture streams.

    Args:
        device: PortAudio input device index or name, ``None`` for the system
            default input.
        sample_rate: Capture sampling frequency in hertz.
        block_size: Samples per capture block.
        channels: Number of channels to capture; blocks are down-mixed to
            mono by the graph's source node.
    """

    def __init__(
        self,
        device: DeviceSpec = None,
        sample_rate: int = SAMPLE_RATE,
        block_size: int = BLOCK_SIZE,
        channels: int = 1,
    ) -> None:
        self.device = device
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.channels = channels

    def _extra_settings(self, sd, info, constraints: CaptureConstraints):
        # PortAudio exposes no per-stream AGC/AEC/NS switches.  WASAPI shared
        # mode runs the system effects chain, exclusive mode bypasses it.
        if not constraints.raw:
            return None
        hostapi = sd.query_hostapis(info["hostapi"])["name"]
        if "WASAPI" in hostapi:
            return sd.WasapiSettings(exclusive=True)
        return None

    def _open(self, sd, stream: MediaStream, extra_settings):
        return sd.InputStream(
            device=self.device,
            channels=self.channels,
            samplerate=self.sample_rate,
            blocksize=self.block_size,
            dtype="float32",
            callback=stream._callback,
            extra_settings=extra_settings,
        )

    def get_user_media(
        self, constraints: Optional[CaptureConstraints] = None
    ) -> MediaStream:
        """Open and start a capture stream honouring ``constraints``.

        Raises:
            AcquisitionError: The device has no input channels.
            Exception: Platform errors from ``sounddevice`` are raised as-is
                and classified by the caller.
        """
        import sounddevice as sd

        constraints = constraints or CaptureConstraints()
        info = sd.query_devices(self.device, kind="input")
        if info["max_input_channels"] < 1:
            raise AcquisitionError(
                AcquisitionReason.NO_DEVICE, f"{info['name']} has no input channels"
            )

        stream = MediaStream(constraints)
        extra = self._extra_settings(sd, info, constraints)
        try:
            handle = self._open(sd, stream, extra)
        except sd.PortAudioError as exc:
            if extra is None:
                raise
            log_event("WARNING", "Acquirer", "Exclusive capture refused, using shared mode", error=exc)
            handle = self._open(sd, stream, None)

        try:
            handle.start()
        except Exception:
            handle.close()
            raise
        stream.add_track(MediaStreamTrack(handle, label=info["name"]))
        log_event("INFO", "Acquirer", "Microphone opened", device=info["name"], raw=constraints.raw)
        return stream


def list_input_devices() -> list[tuple[int, str]]:
    """Return ``[(index, name), ...]`` for every device with input channels."""
    import sounddevice as sd

    return [
        (idx, dev["name"])
        for idx, dev in enumerate(sd.query_devices())
        if dev["max_input_channels"] > 0
    ]


__all__ = [
    "CaptureConstraints",
    "MediaStreamTrack",
    "MediaStream",
    "MediaDevices",
    "list_input_devices",
]
