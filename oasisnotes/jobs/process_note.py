from flask import current_app, has_app_context

from ..errors import NoAudioAvailable, NoTranscriptionAvailable, NoteNotFound
from ..extensions import db
from ..models.note import Note
from ..models.patient import Patient
from ..models.section_g import SectionG
from ..services.audio_source import resolve_audio
from ..services.extraction import SectionGExtractor
from ..services.section_g import TOTAL_FIELDS
from ..services.storage import ObjectStorage
from ..services.transcription import Transcriber
from .progress import ProgressEvent


def generate_summary(result):
    return (
        f"OASIS Section G processed with real AI. {result.filled_fields}/{TOTAL_FIELDS} fields completed "
        f"({result.completion_percentage}%). Confidence: {result.confidence}%. {result.reasoning}"
    )


class NoteProcessor:
    """Runs a note through audio -> transcript -> Section G -> database.

    ``run_pipeline`` is the full state machine (``processing`` ->
    ``completed`` | ``error``). ``transcribe_only`` and ``extract_only`` re-run
    a single step without touching the note status.
    """

    def __init__(self, storage, transcriber, extractor, progress=None, tmp_dir=None):
        self.storage = storage
        self.transcriber = transcriber
        self.extractor = extractor
        self.progress = progress
        self.tmp_dir = tmp_dir

    @classmethod
    def from_app(cls, app=None):
        app = app or current_app
        config = app.config
        pipeline = app.extensions.get("pipeline")
        return cls(
            storage=ObjectStorage.from_config(config),
            transcriber=Transcriber.from_config(config),
            extractor=SectionGExtractor.from_config(config),
            progress=pipeline.progress if pipeline else None,
            tmp_dir=config.get("AUDIO_TMP_DIR"),
        )

    def _emit(self, on_progress, note_id, step, message, percent):
        event = ProgressEvent(note_id=note_id, step=step, message=message, percent=percent)
        if self.progress is not None:
            self.progress.publish(event)
        if on_progress is not None:
            on_progress(event)

    def _load_note(self, note_id):
        note = db.session.get(Note, note_id)
        if note is None:
            raise NoteNotFound(note_id)
        return note

    def _patient_context(self, note):
        # best-effort: a missing patient only weakens the prompt
        patient = db.session.get(Patient, note.patient_id) if note.patient_id else None
        if patient is None:
            current_app.logger.warning("Patient %s not found for note %s; extracting without context",
                                       note.patient_id, note.id)
            return None
        return patient.context_line()

    def _transcribe(self, note):
        with resolve_audio(note.audio_ref, self.storage, tmp_dir=self.tmp_dir, note_id=note.id) as path:
            return self.transcriber.transcribe(path)

    def run_pipeline(self, note_id, on_progress=None):
        note = self._load_note(note_id)
        if note.audio_ref is None:
            raise NoAudioAvailable(note_id)

        try:
            self._emit(on_progress, note_id, "transcription", "Starting audio transcription...", 10)
            patient_context = self._patient_context(note)

            self._emit(on_progress, note_id, "transcription", "Transcribing audio...", 30)
            transcription = self._transcribe(note)

            self._emit(on_progress, note_id, "oasis_analysis",
                       "Analyzing transcription for OASIS data extraction...", 60)
            result = self.extractor.extract(transcription.text, patient_context)

            self._emit(on_progress, note_id, "saving", "Saving results...", 80)
            note.transcription = transcription.text
            note.summary = generate_summary(result)
            note.status = "completed"
            SectionG.upsert_for_note(note_id, result.scores)
            db.session.commit()
        except Exception as e:
            current_app.logger.exception("Error processing note %s", note_id)
            db.session.rollback()
            self._mark_error(note_id)
            self._emit(on_progress, note_id, "error", f"Processing error: {e}", 0)
            raise

        self._emit(on_progress, note_id, "completed", "Processing completed successfully!", 100)
        return result

    def _mark_error(self, note_id):
        note = db.session.get(Note, note_id)
        if note is None:
            return
        note.status = "error"
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to persist error state for note %s", note_id)

    def transcribe_only(self, note_id):
        note = self._load_note(note_id)
        if note.audio_ref is None:
            raise NoAudioAvailable(note_id)
        result = self._transcribe(note)
        note.transcription = result.text
        db.session.commit()
        return result

    def extract_only(self, note_id):
        note = self._load_note(note_id)
        if not note.transcription:
            raise NoTranscriptionAvailable(note_id)
        result = self.extractor.extract(note.transcription, self._patient_context(note))
        note.summary = generate_summary(result)
        SectionG.upsert_for_note(note_id, result.scores)
        db.session.commit()
        return result

    def get_note_with_section_g(self, note_id):
        note = db.session.get(Note, note_id)
        if note is None:
            return None
        return {
            "note": note,
            "patient_name": note.patient.name if note.patient else None,
            "section_g": SectionG.query.filter_by(note_id=note_id).one_or_none(),
        }


def _run_process_note(note_id):
    processor = NoteProcessor.from_app()
    processor.run_pipeline(note_id)
    return note_id


def process_note(note_id):
    """Job entrypoint: runs inside the caller's app context, or builds one
    (RQ workers import and call this without a Flask context)."""
    if has_app_context():
        return _run_process_note(note_id)
    from oasisnotes import create_app
    app = create_app()
    with app.app_context():
        return _run_process_note(note_id)
