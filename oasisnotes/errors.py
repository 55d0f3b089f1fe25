"""Failure conditions raised by the note processing pipeline.

Precondition failures are reported before any state is touched. Step
failures (audio, transcription, extraction) are terminal for a run: the
orchestrator marks the note as ``error`` and re-raises them.
"""


class NoteProcessingError(Exception):
    """Base class for every pipeline failure."""

    def __init__(self, message, note_id=None, cause=None):
        super().__init__(message)
        self.message = message
        self.note_id = note_id
        self.cause = cause

    def __str__(self):
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class ResourceUnavailable(NoteProcessingError):
    """Audio reference resolved to nothing (missing file, failed download)."""


class TranscriptionFailed(NoteProcessingError):
    """Speech-to-text engine or transcoding error."""


class ExtractionError(NoteProcessingError):
    """Base for language-model extraction failures."""


class ExtractionUnavailable(ExtractionError):
    """Model endpoint unreachable or the configured model is not loaded."""


class ExtractionTimeout(ExtractionError):
    pass


class MalformedResponse(ExtractionError):
    """No JSON object could be located or parsed in the model output."""


class PreconditionFailed(NoteProcessingError):
    pass


class NoteNotFound(PreconditionFailed):
    def __init__(self, note_id):
        super().__init__("Note not found", note_id=note_id)


class NoAudioAvailable(PreconditionFailed):
    def __init__(self, note_id):
        super().__init__("No audio file available for processing", note_id=note_id)


class NoTranscriptionAvailable(PreconditionFailed):
    def __init__(self, note_id):
        super().__init__("No transcription available for OASIS processing", note_id=note_id)


class AlreadyProcessing(NoteProcessingError):
    """A pipeline run for the same note id is still in flight."""

    def __init__(self, note_id):
        super().__init__("Note is already being processed", note_id=note_id)
