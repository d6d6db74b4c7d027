"""Error taxonomy for detection sessions.

Only acquisition failures and detection timeouts reach the caller, as a
user-facing message on the session state.  Teardown faults and analyser
errors are logged where they happen and never propagate.
"""

from __future__ import annotations

import enum
from typing import Optional


class AcquisitionReason(str, enum.Enum):
    """Why the microphone could not be opened."""

    PERMISSION_DENIED = "permission-denied"
    NO_DEVICE = "no-device"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


ACQUISITION_MESSAGES: dict[AcquisitionReason, str] = {
    AcquisitionReason.PERMISSION_DENIED: (
        "Microphone access denied. Please allow microphone access."
    ),
    AcquisitionReason.NO_DEVICE: "No microphone found. Please connect a microphone.",
    AcquisitionReason.UNSUPPORTED: "Microphone not supported on this system.",
}

GENERIC_ERROR_MESSAGE = "An error occurred"

DETECTION_TIMEOUT_MESSAGE = (
    "Could not detect BPM. Try with clearer rhythm or louder volume."
)

# PortAudio error codes (see portaudio.h, ``PaErrorCode``).
_PA_NO_DEVICE_CODES = frozenset(
    {
        -9996,  # paInvalidDevice
        -9985,  # paDeviceUnavailable
        -9998,  # paInvalidChannelCount: device has no input channels
    }
)
_PA_UNSUPPORTED_CODES = frozenset(
    {
        -9997,  # paInvalidSampleRate
        -9994,  # paSampleFormatNotSupported
        -9993,  # paBadIODeviceCombination
        -9984,  # paIncompatibleHostApiSpecificStreamInfo
        -9979,  # paHostApiNotFound
    }
)
_PERMISSION_TEXT = ("permission denied", "access denied", "not permitted")
_NO_DEVICE_TEXT = (
    "no input device",
    "no default input device",
    "error querying device -1",
    "no such device",
    "device unavailable",
)
_UNSUPPORTED_TEXT = ("portaudio library not found", "not supported")


class AcquisitionError(Exception):
    """Opening the capture stream or the audio context failed.

    Attributes:
        reason: Category used to pick the user-facing message.
        detail: Platform error text, kept for logs.
    """

    def __init__(self, reason: AcquisitionReason, detail: str = "") -> None:
        super().__init__(detail or reason.value)
        self.reason = reason
        self.detail = detail

    @property
    def message(self) -> str:
        return ACQUISITION_MESSAGES.get(self.reason, GENERIC_ERROR_MESSAGE)


class DetectionTimeout(Exception):
    """No candidate passed the confidence gate before the deadline."""

    def __init__(self, duration_ms: int) -> None:
        super().__init__(DETECTION_TIMEOUT_MESSAGE)
        self.duration_ms = duration_ms

    @property
    def message(self) -> str:
        return DETECTION_TIMEOUT_MESSAGE


def _error_code(exc: BaseException) -> Optional[int]:
    # ``sounddevice.PortAudioError`` carries ``(text, code, host_info)``.
    if len(exc.args) >= 2 and isinstance(exc.args[1], int):
        return exc.args[1]
    return None


def classify_acquisition_error(exc: BaseException) -> AcquisitionReason:
    """Map a platform exception raised while opening the microphone."""
    if isinstance(exc, AcquisitionError):
        return exc.reason
    if isinstance(exc, PermissionError):
        return AcquisitionReason.PERMISSION_DENIED

    text = " ".join(str(arg) for arg in exc.args).lower()
    if any(marker in text for marker in _PERMISSION_TEXT):
        return AcquisitionReason.PERMISSION_DENIED

    code = _error_code(exc)
    if code in _PA_NO_DEVICE_CODES:
        return AcquisitionReason.NO_DEVICE
    if code in _PA_UNSUPPORTED_CODES:
        return AcquisitionReason.UNSUPPORTED

    if any(marker in text for marker in _NO_DEVICE_TEXT):
        return AcquisitionReason.NO_DEVICE
    if isinstance(exc, (ImportError, NotImplementedError)):
        return AcquisitionReason.UNSUPPORTED
    if any(marker in text for marker in _UNSUPPORTED_TEXT):
        return AcquisitionReason.UNSUPPORTED
    return AcquisitionReason.UNKNOWN


def error_message(exc: BaseException) -> str:
    """Return the user-facing message for an exception leaving ``start``."""
    if isinstance(exc, (AcquisitionError, DetectionTimeout)):
        return exc.message
    return GENERIC_ERROR_MESSAGE


__all__ = [
    "AcquisitionReason",
    "AcquisitionError",
    "DetectionTimeout",
    "ACQUISITION_MESSAGES",
    "GENERIC_ERROR_MESSAGE",
    "DETECTION_TIMEOUT_MESSAGE",
    "classify_acquisition_error",
    "error_message",
]
