import threading
import time

import pytest
from redis import Redis
from rq import Queue

from oasisnotes.errors import AlreadyProcessing
from oasisnotes.extensions import PipelineDispatcher
from oasisnotes.jobs import process_note as process_note_mod
from oasisnotes.jobs.progress import ProgressBus, ProgressEvent

# services log through the Flask app logger
pytestmark = pytest.mark.usefixtures("app")


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def blocking_job(monkeypatch):
    started = threading.Event()
    release = threading.Event()

    def fake_process_note(note_id):
        started.set()
        release.wait(5)
        return note_id

    monkeypatch.setattr(process_note_mod, "process_note", fake_process_note)
    return started, release


def test_thread_executor_single_flight(app, blocking_job):
    started, release = blocking_job
    app.config["PIPELINE_EXECUTOR"] = "thread"
    dispatcher = PipelineDispatcher()
    dispatcher.init_app(app)
    try:
        handle = dispatcher.submit(1)
        assert started.wait(5)
        assert dispatcher.is_in_flight(1)
        with pytest.raises(AlreadyProcessing):
            dispatcher.submit(1)
        other = dispatcher.submit(2)

        release.set()
        assert handle.wait(timeout=5) == 1
        assert other.wait(timeout=5) == 2
        assert handle.status == "finished"
        assert _wait_until(lambda: not dispatcher.is_in_flight(1))
        assert dispatcher.submit(1).wait(timeout=5) == 1
    finally:
        release.set()
        dispatcher.executor.shutdown(wait=True)


def test_sync_executor_reports_failure_through_handle(app, monkeypatch):
    def failing(note_id):
        raise RuntimeError("no audio")

    monkeypatch.setattr(process_note_mod, "process_note", failing)
    dispatcher = PipelineDispatcher()
    dispatcher.init_app(app)
    handle = dispatcher.submit(3)
    assert handle.done()
    assert handle.status == "failed"
    with pytest.raises(RuntimeError):
        handle.wait()
    assert not dispatcher.is_in_flight(3)


def test_unreachable_redis_falls_back_to_threads(app):
    app.config["PIPELINE_EXECUTOR"] = "rq"
    app.config["REDIS_URL"] = "redis://127.0.0.1:1/0"
    dispatcher = PipelineDispatcher()
    dispatcher.init_app(app)
    try:
        assert dispatcher.mode == "thread"
        assert dispatcher.queue is None
    finally:
        dispatcher.executor.shutdown(wait=True)


def test_progress_bus_fans_out_and_keeps_history():
    bus = ProgressBus(history=3)
    seen = []
    unsubscribe = bus.subscribe(seen.append)
    for pct in (10, 30, 60, 80):
        bus.publish(ProgressEvent(note_id=5, step="transcription", message="m", percent=pct))
    unsubscribe()
    bus.publish(ProgressEvent(note_id=5, step="completed", message="done", percent=100))

    assert [e.percent for e in seen] == [10, 30, 60, 80]
    assert [e.percent for e in bus.events(5)] == [60, 80, 100]
    assert bus.latest(5).step == "completed"
    assert bus.events(6) == []
    bus.clear(5)
    assert bus.latest(5) is None


def test_failing_subscriber_does_not_break_publish():
    bus = ProgressBus()

    def bad(event):
        raise ValueError("subscriber bug")

    bus.subscribe(bad)
    bus.publish(ProgressEvent(note_id=1, step="saving", message="Saving results...", percent=80))
    assert bus.latest(1).percent == 80


def test_enqueue_failure_falls_back_to_threads(app, blocking_job):
    started, release = blocking_job
    dispatcher = PipelineDispatcher()
    dispatcher.init_app(app)
    dispatcher.mode = "rq"
    dispatcher.redis = Redis.from_url("redis://127.0.0.1:1/0")
    dispatcher.queue = Queue("default", connection=dispatcher.redis)
    calls = []
    try:
        handle = dispatcher.submit(8, before_run=lambda: calls.append("reset"))
        assert dispatcher.executor is not None
        assert started.wait(5)
        assert dispatcher.is_in_flight(8)
        release.set()
        assert handle.wait(timeout=5) == 8
        assert calls == ["reset"]
    finally:
        release.set()
        if dispatcher.executor is not None:
            dispatcher.executor.shutdown(wait=True)


def test_rejected_submit_does_not_run_before_run_hook(app, monkeypatch):
    monkeypatch.setattr(process_note_mod, "process_note", lambda note_id: note_id)
    dispatcher = PipelineDispatcher()
    dispatcher.init_app(app)
    dispatcher._in_flight.add(4)
    calls = []
    with pytest.raises(AlreadyProcessing):
        dispatcher.submit(4, before_run=lambda: calls.append("reset"))
    assert calls == []


def test_failing_before_run_hook_releases_the_note(app, monkeypatch):
    monkeypatch.setattr(process_note_mod, "process_note", lambda note_id: note_id)
    dispatcher = PipelineDispatcher()
    dispatcher.init_app(app)

    def broken():
        raise RuntimeError("commit failed")

    with pytest.raises(RuntimeError):
        dispatcher.submit(5, before_run=broken)
    assert not dispatcher.is_in_flight(5)
    assert dispatcher.submit(5).wait() == 5


def test_progress_bus_forgets_least_recently_active_notes():
    bus = ProgressBus(max_notes=2)
    for note_id in (1, 2):
        bus.publish(ProgressEvent(note_id=note_id, step="transcription", message="m", percent=10))
    # note 1 becomes the most recent, so note 2 is the one dropped
    bus.publish(ProgressEvent(note_id=1, step="saving", message="m", percent=80))
    bus.publish(ProgressEvent(note_id=3, step="transcription", message="m", percent=10))

    assert bus.events(2) == []
    assert [e.percent for e in bus.events(1)] == [10, 80]
    assert bus.latest(3).percent == 10
