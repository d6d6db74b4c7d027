"""Audiobpm package."""

from .errors import AcquisitionError, AcquisitionReason, DetectionTimeout
from .preprocessing import DirectChain, PreprocessingChain
from .session import BpmSessionController
from .state import BpmCandidates, SessionState, SessionStatus, TempoCandidate
from .validation import is_valid_bpm_data

__all__ = [
    "AcquisitionError",
    "AcquisitionReason",
    "DetectionTimeout",
    "DirectChain",
    "PreprocessingChain",
    "BpmSessionController",
    "BpmCandidates",
    "SessionState",
    "SessionStatus",
    "TempoCandidate",
    "is_valid_bpm_data",
]
