import os
import secrets
import tempfile
import time
from contextlib import contextmanager

from flask import current_app

from ..errors import ResourceUnavailable
from ..models.note import LocalAudio, RemoteAudio

DEFAULT_EXTENSION = ".mp3"


def temp_audio_path(key, tmp_dir=None):
    """Collision-free temp path that keeps the key's extension (format sniffing)."""
    ext = os.path.splitext(key)[1] or DEFAULT_EXTENSION
    name = f"oasis_audio_{int(time.time() * 1000)}_{secrets.token_hex(6)}{ext}"
    return os.path.join(tmp_dir or tempfile.gettempdir(), name)


@contextmanager
def resolve_audio(ref, storage, tmp_dir=None, note_id=None):
    """Yield a readable local path for ``ref`` for the duration of the block.

    Local references are used in place and never removed. Remote references
    are downloaded into a temp file which is deleted on every exit path.
    """
    if isinstance(ref, LocalAudio):
        path = storage.local_path(ref.path)
        if not os.path.isfile(path):
            raise ResourceUnavailable(f"Audio file not found: {path}", note_id=note_id)
        yield path
        return

    if not isinstance(ref, RemoteAudio):
        raise ResourceUnavailable(f"Unsupported audio reference: {ref!r}", note_id=note_id)

    try:
        audio = storage.download(ref.key)
    except Exception as e:
        current_app.logger.exception("Audio download failed for %s", ref.key)
        raise ResourceUnavailable(f"Failed to download audio {ref.key}", note_id=note_id, cause=e) from e

    path = temp_audio_path(ref.key, tmp_dir)
    try:
        with open(path, "wb") as fh:
            fh.write(audio)
        yield path
    finally:
        if os.path.exists(path):
            try:
                os.remove(path)
            except OSError:
                current_app.logger.warning("Could not clean up temp audio file %s", path)
