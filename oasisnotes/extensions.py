import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor

from flask import current_app
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job

from .errors import AlreadyProcessing
from .jobs.progress import ProgressBus

# RQ states that mean a run for the note is still pending or in flight
_ACTIVE_JOB_STATES = {"queued", "started", "deferred", "scheduled"}

# redis went away after start-up
_REDIS_DOWN = (RedisConnectionError, RedisTimeoutError)


class PipelineHandle:
    """Handle on one dispatched pipeline run.

    Wraps either an RQ job (worker mode) or a ``Future`` (thread and sync
    mode) so callers and tests can wait for completion the same way.
    """

    def __init__(self, note_id, job=None, future=None):
        self.note_id = note_id
        self.job = job
        self.future = future

    @property
    def status(self):
        if self.future is not None:
            if not self.future.done():
                return "started"
            return "failed" if self.future.exception() is not None else "finished"
        return self.job.get_status(refresh=True)

    def done(self):
        return self.status in ("finished", "failed", "stopped", "canceled")

    def wait(self, timeout=None, poll_interval=0.5):
        """Block until the run ends; re-raise its failure if it failed."""
        if self.future is not None:
            return self.future.result(timeout=timeout)
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.done():
            if deadline is not None and time.monotonic() > deadline:
                raise TimeoutError(f"pipeline for note {self.note_id} still running")
            time.sleep(poll_interval)
        if self.job.get_status() == "failed":
            raise RuntimeError(f"pipeline for note {self.note_id} failed: {self.job.exc_info}")
        return self.job.return_value()

    def __repr__(self):
        return f"<PipelineHandle note_id={self.note_id} status={self.status}>"


class PipelineDispatcher:
    """Schedules note pipeline runs without blocking the caller.

    ``PIPELINE_EXECUTOR`` picks the backend: ``rq`` (Redis queue, falls back
    to ``thread`` when Redis is unreachable), ``thread`` (in-process pool) or
    ``sync`` (run inline, used by tests). At most one run per note id is
    admitted at a time; a second submit raises ``AlreadyProcessing``.
    """

    def __init__(self):
        self.redis = None
        self.queue = None
        self.executor = None
        self.mode = None
        self.job_timeout = None
        self.queue_name = "default"
        self._max_workers = 2
        self.progress = ProgressBus()
        self._lock = threading.Lock()
        self._in_flight = set()

    def init_app(self, app):
        self.mode = app.config.get("PIPELINE_EXECUTOR", "rq")
        self.job_timeout = app.config.get("PIPELINE_JOB_TIMEOUT", 900)
        self.queue_name = app.config.get("PIPELINE_QUEUE", "default")
        self.redis = None
        self.queue = None
        self.executor = None
        self._max_workers = int(app.config.get("PIPELINE_WORKERS", 2))
        if self.mode == "rq":
            try:
                self.redis = Redis.from_url(app.config.get("REDIS_URL"))
                self.redis.ping()
                self.queue = Queue(self.queue_name, connection=self.redis)
            except Exception:
                # no redis server (dev machine): keep the pipeline asynchronous in-process
                app.logger.exception("Redis/RQ init failed, falling back to thread execution")
                self.redis = None
                self.queue = None
                self.mode = "thread"
        if self.mode == "thread":
            self._thread_executor()
        app.extensions["pipeline"] = self

    def _thread_executor(self):
        if self.executor is None:
            self.executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="note-pipeline")
        return self.executor

    @staticmethod
    def job_id(note_id):
        return f"process-note-{note_id}"

    def is_in_flight(self, note_id):
        with self._lock:
            if note_id in self._in_flight:
                return True
        if self.queue is not None:
            try:
                return self._active_job(note_id) is not None
            except _REDIS_DOWN:
                current_app.logger.warning("Redis unreachable; in-flight check for note %s is local only", note_id)
        return False

    def submit(self, note_id, before_run=None):
        """Dispatch the full pipeline for ``note_id`` and return a handle.

        ``before_run`` is called once the run has been admitted (no other run
        for the note is in flight) and before it is scheduled; a rejected
        submit never calls it. If Redis stopped answering since start-up the
        run goes to the in-process executor instead of failing.
        """
        from .jobs.process_note import process_note

        if self.queue is not None:
            try:
                return self._submit_rq(process_note, note_id, before_run)
            except _REDIS_DOWN:
                current_app.logger.exception("RQ enqueue failed for note %s, running in-process", note_id)

        with self._lock:
            if note_id in self._in_flight:
                raise AlreadyProcessing(note_id)
            self._in_flight.add(note_id)

        try:
            if before_run is not None:
                before_run()
        except Exception:
            self._release(note_id)
            raise

        if self.mode == "sync":
            future = Future()
            try:
                future.set_result(process_note(note_id))
            except Exception as e:
                current_app.logger.exception("Synchronous pipeline run failed for note %s", note_id)
                future.set_exception(e)
            finally:
                self._release(note_id)
            return PipelineHandle(note_id, future=future)

        app = current_app._get_current_object()

        def run():
            with app.app_context():
                return process_note(note_id)

        future = self._thread_executor().submit(run)
        future.add_done_callback(lambda f: self._on_thread_done(app, note_id, f))
        return PipelineHandle(note_id, future=future)

    def _submit_rq(self, func, note_id, before_run=None):
        with self._lock:
            if note_id in self._in_flight or self._active_job(note_id) is not None:
                raise AlreadyProcessing(note_id)
            if before_run is not None:
                before_run()
            job = self.queue.enqueue(
                func, note_id,
                job_id=self.job_id(note_id),
                job_timeout=self.job_timeout,
                description=f"process note {note_id}",
            )
        return PipelineHandle(note_id, job=job)

    def _active_job(self, note_id):
        try:
            job = Job.fetch(self.job_id(note_id), connection=self.redis)
        except NoSuchJobError:
            return None
        if job.get_status() in _ACTIVE_JOB_STATES:
            return job
        # finished/failed runs keep their id around; drop it so it can be reused
        job.delete()
        return None

    def job_progress(self, note_id):
        """Latest progress event mirrored into the RQ job meta, if any."""
        if self.queue is None:
            return None
        try:
            job = Job.fetch(self.job_id(note_id), connection=self.redis)
        except (NoSuchJobError,) + _REDIS_DOWN:
            return None
        return job.meta.get("progress")

    def _on_thread_done(self, app, note_id, future):
        self._release(note_id)
        exc = future.exception()
        if exc is not None:
            app.logger.error("Pipeline run failed for note %s: %s", note_id, exc)

    def _release(self, note_id):
        with self._lock:
            self._in_flight.discard(note_id)


db = SQLAlchemy()
migrate = Migrate()
pipeline = PipelineDispatcher()
