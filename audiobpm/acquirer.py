"""Acquisition of the audio context and the raw microphone stream."""

from __future__ import annotations

from typing import Optional

from .audio_graph import CLOSED, SUSPENDED, AudioContext
from .constants import SAMPLE_RATE
from .errors import AcquisitionError, classify_acquisition_error
from .logging_utils import log_event
from .media import CaptureConstraints, MediaDevices, MediaStream


class ResourceAcquirer:
    """Obtain the resources a detection session needs.

    The audio context is reused between sessions: a live context is resumed
    if suspended, and a new one is built only when none exists or the
    previous one was closed.  The capture stream is always new and is
    requested with gain control, echo cancellation and noise suppression
    disabled.

    Args:
        media_devices: Source of capture streams.
        sample_rate: Sampling frequency for newly built contexts.
        constraints: Capture constraints; raw capture by default.
    """

    def __init__(
        self,
        media_devices: Optional[MediaDevices] = None,
        sample_rate: int = SAMPLE_RATE,
        constraints: Optional[CaptureConstraints] = None,
    ) -> None:
        self.media_devices = media_devices or MediaDevices(sample_rate=sample_rate)
        self.sample_rate = sample_rate
        self.constraints = constraints or CaptureConstraints()

    def acquire_context(self, context: Optional[AudioContext]) -> AudioContext:
        """Return a running context, reusing ``context`` when possible.

        Raises:
            AcquisitionError: The context could not be built or resumed.
        """
        try:
            if context is None or context.state == CLOSED:
                context = AudioContext(sample_rate=self.sample_rate)
                log_event("INFO", "Acquirer", "AudioContext created", sample_rate=self.sample_rate)
            elif context.state == SUSPENDED:
                context.resume()
                log_event("INFO", "Acquirer", "AudioContext resumed")
        except AcquisitionError:
            raise
        except Exception as exc:
            raise AcquisitionError(classify_acquisition_error(exc), str(exc)) from exc
        return context

    def acquire_stream(self) -> MediaStream:
        """Open the microphone.

        Raises:
            AcquisitionError: Permission was denied, no capture device is
                present, or capture is unsupported on this system.
        """
        try:
            return self.media_devices.get_user_media(self.constraints)
        except AcquisitionError:
            raise
        except Exception as exc:
            reason = classify_acquisition_error(exc)
            log_event("WARNING", "Acquirer", "Microphone unavailable", reason=reason.value, error=exc)
            raise AcquisitionError(reason, str(exc)) from exc


__all__ = ["ResourceAcquirer"]
