import os
from collections import namedtuple

from ..extensions import db
from .base import TimestampMixin

NOTE_STATUSES = ("processing", "completed", "error")

AUDIO_LOCAL = "local"
AUDIO_S3 = "s3"

# Where a note's audio lives, decided once at upload time.
LocalAudio = namedtuple("LocalAudio", "path")
RemoteAudio = namedtuple("RemoteAudio", "key")


class Note(db.Model, TimestampMixin):
    __tablename__ = "notes"

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("patients.id"), nullable=False, index=True)
    # local: path relative to LOCAL_STORAGE_DIR (or absolute); s3: object key
    audio_storage = db.Column(db.String(10))
    audio_key = db.Column(db.String(512))
    transcription = db.Column(db.Text)
    summary = db.Column(db.Text)
    # processing -> completed | error
    status = db.Column(db.String(20), nullable=False, default="processing", index=True)

    patient = db.relationship("Patient", back_populates="notes")
    section_g = db.relationship("SectionG", back_populates="note", uselist=False,
                                cascade="all, delete-orphan")

    @property
    def audio_ref(self):
        if not self.audio_key:
            return None
        if self.audio_storage == AUDIO_S3:
            return RemoteAudio(self.audio_key)
        return LocalAudio(self.audio_key)

    @audio_ref.setter
    def audio_ref(self, ref):
        if ref is None:
            self.audio_storage = None
            self.audio_key = None
        elif isinstance(ref, RemoteAudio):
            self.audio_storage = AUDIO_S3
            self.audio_key = ref.key
        elif isinstance(ref, LocalAudio):
            self.audio_storage = AUDIO_LOCAL
            self.audio_key = ref.path
        else:
            raise TypeError(f"unsupported audio reference: {ref!r}")

    @property
    def audio_file_name(self):
        if not self.audio_key:
            return None
        return os.path.basename(self.audio_key) or None

    @property
    def transcription_preview(self):
        if not self.transcription:
            return None
        if len(self.transcription) > 100:
            return self.transcription[:100] + "..."
        return self.transcription

    def is_completed(self):
        return self.status == "completed"

    def has_error(self):
        return self.status == "error"

    def is_processing(self):
        return self.status == "processing"

    def to_dict(self):
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "patient_name": self.patient.name if self.patient else None,
            "audio_file_name": self.audio_file_name,
            "audio_storage": self.audio_storage,
            "transcription": self.transcription,
            "transcription_preview": self.transcription_preview,
            "summary": self.summary,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Note id={self.id} patient_id={self.patient_id} status={self.status}>"
