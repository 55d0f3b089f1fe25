import threading
from collections import OrderedDict, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from flask import current_app
from rq import get_current_job

PROGRESS_STEPS = ("transcription", "oasis_analysis", "saving", "completed", "error")


@dataclass(frozen=True)
class ProgressEvent:
    note_id: int
    step: str
    message: str
    percent: int
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        d = asdict(self)
        d["at"] = self.at.isoformat()
        return d


class ProgressBus:
    """In-process stream of pipeline progress events.

    Keeps the most recent events of the ``max_notes`` most recently active
    notes and fans every event out to the subscribed callbacks. When the run executes inside an RQ worker the
    latest event is also written to the job's ``meta`` so the web process can
    read it back.
    """

    def __init__(self, history=20, max_notes=500):
        self._lock = threading.Lock()
        self._history = history
        self._max_notes = max_notes
        # note_id -> recent events, least recently updated note first
        self._events = OrderedDict()
        self._subscribers = []

    def publish(self, event):
        with self._lock:
            events = self._events.get(event.note_id)
            if events is None:
                events = self._events[event.note_id] = deque(maxlen=self._history)
            else:
                self._events.move_to_end(event.note_id)
            events.append(event)
            while len(self._events) > self._max_notes:
                self._events.popitem(last=False)
            subscribers = list(self._subscribers)
        current_app.logger.info("Note %s processing: %s - %s (%s%%)", event.note_id, event.step, event.message, event.percent)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                current_app.logger.exception("Progress subscriber failed for note %s", event.note_id)
        _mirror_to_rq_job(event)

    def subscribe(self, callback):
        """Register ``callback(event)``; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
        return unsubscribe

    def events(self, note_id):
        with self._lock:
            return list(self._events.get(note_id, ()))

    def latest(self, note_id):
        events = self.events(note_id)
        return events[-1] if events else None

    def clear(self, note_id):
        with self._lock:
            self._events.pop(note_id, None)


def _mirror_to_rq_job(event):
    job = get_current_job()
    if job is None:
        return
    job.meta["progress"] = event.to_dict()
    job.save_meta()
