"""Run the full note pipeline synchronously against a real audio file.

Usage:
  python scripts/smoke_test_process_note.py path/to/visit.m4a

Needs Ollama running with OLLAMA_MODEL pulled and a working speech-to-text
engine (local Whisper by default). Creates a demo patient if none exists.
"""
import os
import sys
import shutil
from datetime import date

# ensure project root is on sys.path so `import oasisnotes` works when running this script
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from oasisnotes import create_app
from oasisnotes.extensions import db
from oasisnotes.jobs.process_note import NoteProcessor
from oasisnotes.models import LocalAudio, Note, Patient


def main(audio_path):
    app = create_app()
    with app.app_context():
        db.create_all()
        patient = Patient.query.order_by(Patient.id).first()
        if not patient:
            patient = Patient(name="Smoke Test Patient", date_of_birth=date(1945, 3, 2),
                              diagnosis="CHF, s/p left hip replacement")
            db.session.add(patient)
            db.session.commit()
            print("Created Patient id:", patient.id)

        local_dir = app.config.get('LOCAL_STORAGE_DIR', './storage')
        os.makedirs(os.path.join(local_dir, 'smoke'), exist_ok=True)
        rel = os.path.join('smoke', os.path.basename(audio_path))
        shutil.copyfile(audio_path, os.path.join(local_dir, rel))

        note = Note(patient_id=patient.id, status='processing')
        note.audio_ref = LocalAudio(rel)
        db.session.add(note)
        db.session.commit()
        print("Created Note id:", note.id)

        def show(event):
            print(f"  [{event.percent:3d}%] {event.step}: {event.message}")

        try:
            NoteProcessor.from_app().run_pipeline(note.id, on_progress=show)
        except Exception as e:
            print("Pipeline failed:", e)
        note = db.session.get(Note, note.id)
        print("Status:", note.status)
        if note.has_error():
            return 1
        print("Summary:", note.summary)
        for code, field in note.section_g.fields_with_descriptions().items():
            print(f"  {code} {field['label']}: {field['value']} {field['description'] or ''}")
        return 0


if __name__ == '__main__':
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)
    sys.exit(main(sys.argv[1]))
