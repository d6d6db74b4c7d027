#!/usr/bin/env python3
"""Detect the tempo of whatever the microphone hears and print it."""

from __future__ import annotations

import argparse
import signal
import sys
from typing import Optional, Sequence

from PySide6 import QtCore

from .constants import CONFIDENCE_THRESHOLD, DETECTION_TIMEOUT_MS
from .logging_utils import configure_logging
from .media import list_input_devices
from .preprocessing import DirectChain, PreprocessingChain
from .session import BpmSessionController
from .state import SessionState, SessionStatus


def _device(value: str):
    return int(value) if value.isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="audiobpm", description=__doc__)
    parser.add_argument("--device", type=_device, default=None, help="input device index or name")
    parser.add_argument(
        "--timeout",
        type=float,
        default=DETECTION_TIMEOUT_MS / 1000.0,
        help="seconds to listen before giving up",
    )
    parser.add_argument(
        "--threshold",
        type=int,
        default=CONFIDENCE_THRESHOLD,
        help="support count needed to accept an early tempo candidate",
    )
    parser.add_argument("--direct", action="store_true", help="skip the preprocessing chain")
    parser.add_argument("--list-devices", action="store_true", help="list input devices and exit")
    parser.add_argument("--verbose", action="store_true", help="debug logging")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "INFO")

    if args.list_devices:
        for idx, name in list_input_devices():
            print(f"{idx:3d}  {name}")
        return 0

    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication(sys.argv[:1])
    # Let Ctrl+C terminate the Qt event loop
    signal.signal(signal.SIGINT, signal.SIG_DFL)

    controller = BpmSessionController(
        detection_timeout_ms=int(args.timeout * 1000),
        confidence_threshold=args.threshold,
        chain_factory=DirectChain if args.direct else PreprocessingChain,
        device=args.device,
    )
    outcome: dict[str, SessionState] = {}

    def on_state(state: SessionState) -> None:
        if state.status in (SessionStatus.DETECTED, SessionStatus.ERROR):
            outcome["state"] = state
            app.quit()

    controller.stateChanged.connect(on_state)
    print("Listening... play some music near the microphone.", flush=True)
    QtCore.QTimer.singleShot(0, controller.start)
    app.exec()
    controller.dispose()

    state = outcome.get("state")
    if state is not None and state.status is SessionStatus.DETECTED:
        print(f"{state.bpm} BPM")
        return 0
    print(state.error if state is not None else "Stopped", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
