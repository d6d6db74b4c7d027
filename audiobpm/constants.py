"""Application-wide constants used for tempo detection.

The values in this module configure the capture stream, the preprocessing
chain that sits in front of the tempo analyser and the gates applied to the
analyser's output.  Centralising the configuration avoids magic numbers
spread throughout the code base and makes it easy to tune detection latency
against false positives in one place.
"""

from __future__ import annotations

# ─── Audio configuration ────────────────────────────────────────────────────

# Sampling frequency used for capture and for the processing graph.
SAMPLE_RATE: int = 44_100

# Number of samples delivered per capture block.  The tempo analyser works
# on its own hop size and buffers whatever block size it is given.
BLOCK_SIZE: int = 512

# Window and hop used by the beat tracker.
ANALYSIS_WINDOW_SIZE: int = 1024
ANALYSIS_HOP_SIZE: int = ANALYSIS_WINDOW_SIZE // 2

# ─── Preprocessing chain ────────────────────────────────────────────────────

# Low-pass filter isolating kick and bass energy.  A Q slightly above the
# Butterworth value gives a mild resonant bump at the cutoff.
LOWPASS_CUTOFF_HZ: float = 150.0
LOWPASS_Q: float = 1.0

# Dynamic range compressor bringing quiet and loud beats to comparable
# amplitude before onset detection.
COMPRESSOR_THRESHOLD_DB: float = -30.0
COMPRESSOR_KNEE_DB: float = 10.0
COMPRESSOR_RATIO: float = 6.0
COMPRESSOR_ATTACK_S: float = 0.003
COMPRESSOR_RELEASE_S: float = 0.25

# Makeup gain compensating for compressor attenuation (linear).
MAKEUP_GAIN: float = 2.0

# Seconds between diagnostic level meter reports.
LEVEL_METER_INTERVAL_S: float = 1.0

# ─── Detection gates ────────────────────────────────────────────────────────

# Minimum number of supporting beat intervals before a running candidate is
# accepted without waiting for the analyser's stable event.
CONFIDENCE_THRESHOLD: int = 8

# Seconds of analysed audio before the analyser may declare its tempo stable.
STABILIZATION_TIME_S: float = 5.0

# Support required by the analyser itself before emitting the stable event.
STABLE_MIN_SUPPORT: int = 4

# Tempo candidates are folded into this range (octave errors are common).
MIN_TEMPO: float = 90.0
MAX_TEMPO: float = 180.0

# Width of a tempo histogram bin in BPM.
TEMPO_BIN_WIDTH: float = 1.0

# Number of most recent intervals kept when continuous analysis is enabled.
MAX_TRACKED_INTERVALS: int = 64

# ─── Session ────────────────────────────────────────────────────────────────

# Milliseconds to wait for an accepted tempo before giving up.
DETECTION_TIMEOUT_MS: int = 15_000

__all__ = [
    "SAMPLE_RATE",
    "BLOCK_SIZE",
    "ANALYSIS_WINDOW_SIZE",
    "ANALYSIS_HOP_SIZE",
    "LOWPASS_CUTOFF_HZ",
    "LOWPASS_Q",
    "COMPRESSOR_THRESHOLD_DB",
    "COMPRESSOR_KNEE_DB",
    "COMPRESSOR_RATIO",
    "COMPRESSOR_ATTACK_S",
    "COMPRESSOR_RELEASE_S",
    "MAKEUP_GAIN",
    "LEVEL_METER_INTERVAL_S",
    "CONFIDENCE_THRESHOLD",
    "STABILIZATION_TIME_S",
    "STABLE_MIN_SUPPORT",
    "MIN_TEMPO",
    "MAX_TEMPO",
    "TEMPO_BIN_WIDTH",
    "MAX_TRACKED_INTERVALS",
    "DETECTION_TIMEOUT_MS",
]
