"""Shared fixtures: a Qt application plus fake capture devices and analysers."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import pytest
from PySide6 import QtCore

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from audiobpm.acquirer import ResourceAcquirer  # noqa: E402
from audiobpm.audio_graph import AudioNode  # noqa: E402
from audiobpm.media import CaptureConstraints, MediaStream, MediaStreamTrack  # noqa: E402
from audiobpm.session import BpmSessionController  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])
    yield app


def wait_ms(ms: int) -> None:
    """Run the Qt event loop for ``ms`` milliseconds."""
    loop = QtCore.QEventLoop()
    QtCore.QTimer.singleShot(ms, loop.quit)
    loop.exec()


class DummyHandle:
    """Stand-in for a ``sounddevice.InputStream``."""

    def __init__(self, fail_abort: bool = False) -> None:
        self.fail_abort = fail_abort
        self.aborted = 0
        self.closed = 0

    def abort(self) -> None:
        self.aborted += 1
        if self.fail_abort:
            raise RuntimeError("abort failed")

    def close(self) -> None:
        self.closed += 1


class FakeMediaDevices:
    """Hands out streams with dummy tracks, or raises ``error``."""

    def __init__(self, error: Optional[BaseException] = None, fail_abort: bool = False) -> None:
        self.error = error
        self.fail_abort = fail_abort
        self.requests: list[Optional[CaptureConstraints]] = []
        self.streams: list[MediaStream] = []
        self.handles: list[DummyHandle] = []

    def get_user_media(self, constraints: Optional[CaptureConstraints] = None) -> MediaStream:
        self.requests.append(constraints)
        if self.error is not None:
            raise self.error
        stream = MediaStream(constraints)
        handle = DummyHandle(fail_abort=self.fail_abort)
        stream.add_track(MediaStreamTrack(handle, label="Fake Mic"))
        self.handles.append(handle)
        self.streams.append(stream)
        return stream


class FakeEngine(QtCore.QObject):
    """Analyser double whose signals the tests emit directly."""

    bpm = QtCore.Signal(object)
    bpmStable = QtCore.Signal(object)
    error = QtCore.Signal(str)

    def __init__(self, context, **options) -> None:
        super().__init__()
        self.options = options
        self.node = AudioNode(context)
        self.stop_calls = 0
        self.disconnect_calls = 0
        self.reset_calls = 0
        self.fail_reset = False

    def stop(self) -> None:
        self.stop_calls += 1

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.node.disconnect()

    def reset(self) -> None:
        self.reset_calls += 1
        if self.fail_reset:
            raise RuntimeError("reset failed")


class EngineFactory:
    def __init__(self) -> None:
        self.engines: list[FakeEngine] = []

    def __call__(self, context, **options) -> FakeEngine:
        engine = FakeEngine(context, **options)
        self.engines.append(engine)
        return engine

    @property
    def last(self) -> FakeEngine:
        return self.engines[-1]


@pytest.fixture
def devices() -> FakeMediaDevices:
    return FakeMediaDevices()


@pytest.fixture
def engines() -> EngineFactory:
    return EngineFactory()


@pytest.fixture
def make_controller(devices, engines):
    created: list[BpmSessionController] = []

    def factory(**kwargs) -> BpmSessionController:
        kwargs.setdefault("acquirer", ResourceAcquirer(devices))
        kwargs.setdefault("engine_factory", engines)
        kwargs.setdefault("confidence_threshold", 5)
        controller = BpmSessionController(**kwargs)
        created.append(controller)
        return controller

    yield factory
    for controller in created:
        controller.dispose()
