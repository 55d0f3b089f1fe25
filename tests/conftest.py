import json
import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from config import Config
from oasisnotes import create_app
from oasisnotes.extensions import db, pipeline
from oasisnotes.jobs.process_note import NoteProcessor
from oasisnotes.jobs.progress import ProgressBus
from oasisnotes.models import LocalAudio, Note, Patient
from oasisnotes.services.extraction import SectionGExtractor
from oasisnotes.services.storage import ObjectStorage, StorageSettings
from oasisnotes.services.transcription import Transcriber, TranscriptionSettings


class UnitTestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    PIPELINE_EXECUTOR = "sync"
    STORAGE_BACKEND = "local"


class FakeEngine:
    """Speech-to-text stand-in returning fixed segments (or raising)."""

    name = "fake"

    def __init__(self, segments=None, error=None):
        self.segments = segments if segments is not None else [
            {"start": 0.0, "end": 2.5, "text": " patient dresses"},
            {"start": 2.5, "end": 4.0, "text": "independently "},
        ]
        self.error = error
        self.calls = []

    def transcribe(self, path, options=None):
        self.calls.append(path)
        assert os.path.exists(path)
        if self.error is not None:
            raise self.error
        return {"language": "en", "segments": self.segments}


class FakeLLM:
    """Language-model endpoint stand-in with a canned response."""

    def __init__(self, response=None, available=True):
        self.response = response if response is not None else json.dumps(scores_payload())
        self.available = available
        self.prompts = []

    def is_available(self):
        return self.available

    def generate(self, prompt, options=None):
        self.prompts.append(prompt)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


class RemoteStorage(ObjectStorage):
    """Local storage whose ``download`` serves bytes from a dict."""

    def __init__(self, settings, objects=None):
        super().__init__(settings)
        self.objects = objects or {}
        self.downloads = []

    def download(self, key):
        self.downloads.append(key)
        if key not in self.objects:
            raise KeyError(key)
        return self.objects[key]


def scores_payload(value=0, confidence=90, reasoning="Independent in all ADLs"):
    keys = ["m1800Grooming", "m1810DressUpper", "m1820DressLower", "m1830Bathing",
            "m1840ToiletTransfer", "m1845ToiletingHygiene", "m1850Transferring", "m1860Ambulation"]
    out = {k: value for k in keys}
    out["confidence"] = confidence
    out["reasoning"] = reasoning
    return out


@pytest.fixture
def app(tmp_path):
    class _Config(UnitTestConfig):
        LOCAL_STORAGE_DIR = str(tmp_path / "storage")
        AUDIO_TMP_DIR = str(tmp_path / "tmp")

    os.makedirs(_Config.LOCAL_STORAGE_DIR, exist_ok=True)
    os.makedirs(_Config.AUDIO_TMP_DIR, exist_ok=True)
    app = create_app(_Config)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def storage(app):
    return RemoteStorage(StorageSettings.from_config(app.config))


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def processor(app, storage, engine, llm):
    return NoteProcessor(
        storage=storage,
        transcriber=Transcriber(TranscriptionSettings(), engine=engine),
        extractor=SectionGExtractor(llm),
        progress=ProgressBus(),
        tmp_dir=app.config["AUDIO_TMP_DIR"],
    )


@pytest.fixture
def use_processor(monkeypatch, processor):
    """Route ``NoteProcessor.from_app`` (jobs and HTTP handlers) to the fakes."""
    monkeypatch.setattr(NoteProcessor, "from_app", classmethod(lambda cls, app=None: processor))
    return processor


@pytest.fixture
def patient(app):
    from datetime import date
    p = Patient(name="Mary Jones", date_of_birth=date(1940, 6, 1), diagnosis="CHF")
    db.session.add(p)
    db.session.commit()
    return p


@pytest.fixture
def local_wav(app):
    rel = os.path.join("audio", "a.wav")
    path = os.path.join(app.config["LOCAL_STORAGE_DIR"], rel)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(b"RIFF....WAVE")
    return rel


@pytest.fixture
def make_note(app, patient):
    def _make(ref=None, transcription=None, status="processing", patient_id=None):
        note = Note(patient_id=patient_id or patient.id, status=status, transcription=transcription)
        note.audio_ref = ref
        db.session.add(note)
        db.session.commit()
        return note
    return _make


@pytest.fixture(autouse=True)
def _reset_pipeline():
    yield
    pipeline._in_flight.clear()
    pipeline.progress = ProgressBus()
    pipeline.redis = None
    pipeline.queue = None
