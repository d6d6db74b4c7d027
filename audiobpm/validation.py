"""Well-formedness checks for tempo candidate payloads.

The analyser occasionally emits empty or degenerate candidate lists while it
warms up.  Those payloads are treated as noise: callers drop them without
changing session state.
"""

from __future__ import annotations

import math
import numbers
from collections.abc import Mapping, Sequence
from typing import Any, Optional

_COUNT_KEYS = ("count", "support_count", "supportCount")


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def candidate_list(data: Any) -> Optional[Sequence[Any]]:
    """Return the candidate sequence carried by ``data`` or ``None``.

    ``data`` may be a :class:`~audiobpm.state.BpmCandidates` instance or a
    mapping with a ``"bpm"`` key.
    """
    if data is None:
        return None
    candidates = _field(data, "bpm")
    if isinstance(candidates, (str, bytes)) or not isinstance(candidates, Sequence):
        return None
    return candidates


def candidate_tempo(candidate: Any) -> Any:
    """Return the raw ``tempo`` field of ``candidate``."""
    return _field(candidate, "tempo")


def candidate_support(candidate: Any) -> int:
    """Return the support count of ``candidate`` or ``0`` when absent."""
    for key in _COUNT_KEYS:
        value = _field(candidate, key)
        if isinstance(value, numbers.Real) and not isinstance(value, bool):
            if math.isfinite(value):
                return int(value)
    return 0


def is_valid_bpm_data(data: Any) -> bool:
    """Return ``True`` if ``data`` carries a usable top candidate.

    The candidate list must be non-empty and the first candidate's tempo must
    be a finite number strictly greater than zero.
    """
    candidates = candidate_list(data)
    if not candidates:
        return False
    tempo = candidate_tempo(candidates[0])
    if isinstance(tempo, bool) or not isinstance(tempo, numbers.Real):
        return False
    return math.isfinite(tempo) and tempo > 0


__all__ = [
    "candidate_list",
    "candidate_tempo",
    "candidate_support",
    "is_valid_bpm_data",
]
