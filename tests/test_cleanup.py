import pytest

from audiobpm.audio_graph import CLOSED, SUSPENDED, AudioContext
from audiobpm.cleanup import CleanupSequencer
from audiobpm.media import MediaStream, MediaStreamTrack
from audiobpm.preprocessing import PreprocessingChain
from audiobpm.resources import AudioSession
from audiobpm.router import DetectionEventRouter
from audiobpm.timeout_guard import TimeoutGuard

from conftest import DummyHandle, FakeEngine


def _session(fail_abort: bool = False):
    ctx = AudioContext()
    stream = MediaStream()
    handle = DummyHandle(fail_abort=fail_abort)
    stream.add_track(MediaStreamTrack(handle, label="mic"))
    source = ctx.create_media_stream_source(stream)
    chain = PreprocessingChain()
    chain.build(ctx, source)
    engine = FakeEngine(ctx)
    chain.connect(engine.node)
    timeout = TimeoutGuard()
    timeout.arm(10_000)
    session = AudioSession(
        context=ctx,
        stream=stream,
        source=source,
        chain=chain,
        engine=engine,
        timeout=timeout,
        running=False,
    )
    return session, handle, engine


def test_teardown_releases_everything() -> None:
    session, handle, engine = _session()
    router = DetectionEventRouter()
    router.subscribe(engine)
    nodes = list(session.chain.nodes)
    context = session.context

    failures = CleanupSequencer(router).teardown(session)

    assert failures == []
    assert not session.timeout.armed
    assert not router.subscribed
    assert engine.stop_calls == 1
    assert engine.disconnect_calls == 1
    assert session.retired_engine is engine
    assert all(node.outputs == () for node in nodes)
    assert (handle.aborted, handle.closed) == (1, 1)
    assert not session.holds_capture
    assert session.context is context
    assert context.state == SUSPENDED


def test_teardown_twice_is_harmless() -> None:
    session, handle, engine = _session()
    sequencer = CleanupSequencer()
    sequencer.teardown(session)
    assert sequencer.teardown(session) == []
    assert handle.closed == 1
    assert engine.stop_calls == 1


def test_fault_in_one_step_does_not_stop_the_rest() -> None:
    session, handle, engine = _session(fail_abort=True)

    def broken_stop():
        raise RuntimeError("stop failed")

    engine.stop = broken_stop
    failures = CleanupSequencer().teardown(session)

    assert failures == ["analyzer", "track mic"]
    assert engine.disconnect_calls == 1
    assert handle.closed == 1
    assert session.context.state == SUSPENDED


def test_close_context_on_dispose() -> None:
    session, _, _ = _session()
    context = session.context
    CleanupSequencer().teardown(session, close_context=True)

    assert context.state == CLOSED
    assert session.context is None


def test_closed_context_is_dropped() -> None:
    session, _, _ = _session()
    session.context.close()
    CleanupSequencer().teardown(session)
    assert session.context is None


@pytest.mark.parametrize("close_context", [False, True])
def test_empty_session(close_context) -> None:
    assert CleanupSequencer().teardown(AudioSession(), close_context=close_context) == []
