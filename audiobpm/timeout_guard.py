"""Single-shot failure deadline for a listening session."""

from __future__ import annotations

from typing import Optional

from PySide6 import QtCore

from .logging_utils import log_event


class TimeoutGuard(QtCore.QObject):
    """Wrap a single-shot :class:`QtCore.QTimer`.

    ``expired`` is emitted with the armed duration when the deadline passes
    without :meth:`cancel` having been called.  Re-arming replaces any
    pending deadline.
    """

    expired = QtCore.Signal(int)

    def __init__(self, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self._timer = QtCore.QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._on_timeout)
        self.duration_ms = 0

    @property
    def armed(self) -> bool:
        return self._timer.isActive()

    def arm(self, duration_ms: int) -> None:
        self.duration_ms = int(duration_ms)
        self._timer.start(self.duration_ms)
        log_event("INFO", "Timeout", "Detection timeout armed", ms=self.duration_ms)

    def cancel(self) -> None:
        """Drop the pending deadline, if any."""
        if self._timer.isActive():
            self._timer.stop()
            log_event("DEBUG", "Timeout", "Detection timeout cancelled")

    def _on_timeout(self) -> None:
        log_event("INFO", "Timeout", "Detection timeout triggered", ms=self.duration_ms)
        self.expired.emit(self.duration_ms)


__all__ = ["TimeoutGuard"]
