import pytest

from audiobpm.errors import (
    AcquisitionError,
    AcquisitionReason,
    DETECTION_TIMEOUT_MESSAGE,
    DetectionTimeout,
    classify_acquisition_error,
    error_message,
)


class PortAudioError(Exception):
    """Mirrors ``sounddevice.PortAudioError``'s argument layout."""


@pytest.mark.parametrize(
    "exc, reason",
    [
        (PermissionError("denied"), AcquisitionReason.PERMISSION_DENIED),
        (
            PortAudioError("Unanticipated host error", -9999, (-1, "Permission denied")),
            AcquisitionReason.PERMISSION_DENIED,
        ),
        (PortAudioError("Invalid device", -9996), AcquisitionReason.NO_DEVICE),
        (PortAudioError("Device unavailable", -9985), AcquisitionReason.NO_DEVICE),
        (PortAudioError("Error querying device -1"), AcquisitionReason.NO_DEVICE),
        (ValueError("No input device matching 'usb'"), AcquisitionReason.NO_DEVICE),
        (PortAudioError("Invalid sample rate", -9997), AcquisitionReason.UNSUPPORTED),
        (OSError("PortAudio library not found"), AcquisitionReason.UNSUPPORTED),
        (ImportError("No module named 'sounddevice'"), AcquisitionReason.UNSUPPORTED),
        (RuntimeError("boom"), AcquisitionReason.UNKNOWN),
    ],
)
def test_classify_acquisition_error(exc, reason) -> None:
    assert classify_acquisition_error(exc) is reason


def test_messages_per_reason() -> None:
    assert error_message(AcquisitionError(AcquisitionReason.PERMISSION_DENIED)) == (
        "Microphone access denied. Please allow microphone access."
    )
    assert error_message(AcquisitionError(AcquisitionReason.NO_DEVICE)) == (
        "No microphone found. Please connect a microphone."
    )
    assert error_message(AcquisitionError(AcquisitionReason.UNSUPPORTED)).startswith(
        "Microphone not supported"
    )
    assert error_message(AcquisitionError(AcquisitionReason.UNKNOWN)) == "An error occurred"
    assert error_message(RuntimeError("x")) == "An error occurred"


def test_timeout_message() -> None:
    assert error_message(DetectionTimeout(15000)) == DETECTION_TIMEOUT_MESSAGE
    assert DETECTION_TIMEOUT_MESSAGE.startswith("Could not detect BPM")
