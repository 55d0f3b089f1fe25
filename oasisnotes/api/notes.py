# oasisnotes/api/notes.py
from flask import Blueprint, current_app, jsonify, request
from werkzeug.utils import secure_filename

from ..errors import AlreadyProcessing, NoteProcessingError, NoteNotFound, PreconditionFailed
from ..extensions import db, pipeline
from ..jobs.process_note import NoteProcessor
from ..models.note import Note
from ..models.patient import Patient
from ..services.storage import ObjectStorage

bp = Blueprint("notes", __name__, url_prefix="/api/notes")

ALLOWED = {"mp3", "mp4", "m4a", "wav", "webm", "ogg", "flac"}


def allowed(name): return "." in name and name.rsplit(".", 1)[1].lower() in ALLOWED


@bp.errorhandler(PreconditionFailed)
def _precondition_failed(e):
    status = 404 if isinstance(e, NoteNotFound) else 400
    return jsonify({"error": e.message, "note_id": e.note_id}), status


@bp.errorhandler(AlreadyProcessing)
def _already_processing(e):
    return jsonify({"error": e.message, "note_id": e.note_id}), 409


@bp.errorhandler(NoteProcessingError)
def _processing_failed(e):
    return jsonify({"error": str(e), "type": type(e).__name__, "note_id": e.note_id}), 502


def _dispatch(note):
    handle = pipeline.submit(note.id)
    current_app.logger.info("Dispatched pipeline for note %s (%s)", note.id, pipeline.mode)
    return handle


@bp.post("")
def create_note():
    patient_id = request.form.get("patient_id", type=int)
    if patient_id is None:
        return jsonify({"error": "patient_id is required"}), 400
    patient = db.session.get(Patient, patient_id)
    if patient is None:
        return jsonify({"error": "Patient not found"}), 404

    f = request.files.get("audio_file")
    if f is None or f.filename == "" or not allowed(f.filename):
        return jsonify({"error": "audio_file is required (mp3, wav, m4a, webm, ogg, mp4, flac)"}), 400

    storage = ObjectStorage.from_config(current_app.config)
    stored = storage.upload(f.stream, secure_filename(f.filename), f.mimetype)
    current_app.logger.info("Stored audio for patient %s at %s", patient_id, stored.url)

    note = Note(patient_id=patient_id, status="processing")
    note.audio_ref = stored.ref
    db.session.add(note)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Could not save note for patient %s; removing stored audio", patient_id)
        storage.delete(stored.ref)
        raise

    _dispatch(note)
    return jsonify({
        "message": "Note created successfully. Processing audio...",
        "note": note.to_dict(),
    }), 201


@bp.get("/<int:note_id>")
def get_note(note_id):
    res = NoteProcessor.from_app().get_note_with_section_g(note_id)
    if res is None:
        raise NoteNotFound(note_id)
    sg = res["section_g"]
    return jsonify({
        "note": res["note"].to_dict(),
        "patient_name": res["patient_name"],
        "section_g": sg.to_dict() if sg else None,
    })


@bp.post("/<int:note_id>/reprocess")
def reprocess_note(note_id):
    note = db.session.get(Note, note_id)
    if note is None:
        raise NoteNotFound(note_id)
    if note.audio_ref is None:
        return jsonify({"error": "No audio file available for processing"}), 400

    def reset():
        note.status = "processing"
        db.session.commit()
        pipeline.progress.clear(note_id)

    # raises AlreadyProcessing (409) before reset() when a run is in flight
    handle = pipeline.submit(note_id, before_run=reset)
    current_app.logger.info("Reprocessing note %s (%s)", note_id, pipeline.mode)
    db.session.refresh(note)
    return jsonify({"message": "Reprocessing started", "status": handle.status, "note": note.to_dict()}), 202


@bp.post("/<int:note_id>/transcribe")
def transcribe_note(note_id):
    result = NoteProcessor.from_app().transcribe_only(note_id)
    return jsonify(result.to_dict())


@bp.post("/<int:note_id>/extract")
def extract_note(note_id):
    result = NoteProcessor.from_app().extract_only(note_id)
    return jsonify(result.to_dict())


@bp.get("/<int:note_id>/progress")
def note_progress(note_id):
    events = [e.to_dict() for e in pipeline.progress.events(note_id)]
    if not events:
        # run happened in a worker process; read the mirrored latest event
        latest = pipeline.job_progress(note_id)
        if latest:
            events = [latest]
    return jsonify({"note_id": note_id, "in_flight": pipeline.is_in_flight(note_id), "events": events})
