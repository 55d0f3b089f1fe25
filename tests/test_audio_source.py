import os

import pytest

from oasisnotes.errors import ResourceUnavailable
from oasisnotes.models import LocalAudio, RemoteAudio
from oasisnotes.services.audio_source import resolve_audio, temp_audio_path


def test_local_reference_resolves_in_place(storage, local_wav):
    expected = storage.local_path(local_wav)
    with resolve_audio(LocalAudio(local_wav), storage) as path:
        assert path == expected
        assert os.path.isabs(path)
    assert os.path.exists(expected)


def test_absolute_local_path_is_used_as_is(storage, tmp_path):
    p = tmp_path / "elsewhere.wav"
    p.write_bytes(b"RIFF")
    with resolve_audio(LocalAudio(str(p)), storage) as path:
        assert path == str(p)
    assert p.exists()


def test_missing_local_file(storage):
    with pytest.raises(ResourceUnavailable):
        with resolve_audio(LocalAudio("audio/missing.wav"), storage):
            pass


def test_remote_download_is_removed_after_block(storage, tmp_path):
    storage.objects["audio/2026/10/abc.m4a"] = b"m4a-bytes"
    with resolve_audio(RemoteAudio("audio/2026/10/abc.m4a"), storage, tmp_dir=str(tmp_path)) as path:
        assert path.endswith(".m4a")
        assert os.path.dirname(path) == str(tmp_path)
        with open(path, "rb") as f:
            assert f.read() == b"m4a-bytes"
    assert not os.path.exists(path)


def test_remote_temp_removed_when_block_raises(storage, tmp_path):
    storage.objects["k.wav"] = b"RIFF"
    seen = {}
    with pytest.raises(RuntimeError):
        with resolve_audio(RemoteAudio("k.wav"), storage, tmp_dir=str(tmp_path)) as path:
            seen["path"] = path
            raise RuntimeError("transcription blew up")
    assert not os.path.exists(seen["path"])


def test_failed_download(storage):
    with pytest.raises(ResourceUnavailable) as exc:
        with resolve_audio(RemoteAudio("nope.mp3"), storage, note_id=7):
            pass
    assert exc.value.note_id == 7
    assert isinstance(exc.value.cause, KeyError)


def test_temp_names_are_unique_and_keep_extension(tmp_path):
    names = {temp_audio_path("a/b/c.webm", str(tmp_path)) for _ in range(50)}
    assert len(names) == 50
    assert all(n.endswith(".webm") for n in names)
    assert temp_audio_path("no-extension").endswith(".mp3")


def test_delete_removes_local_audio(storage, local_wav):
    path = storage.local_path(local_wav)
    storage.delete(LocalAudio(local_wav))
    assert not os.path.exists(path)
    # already gone is fine
    storage.delete(LocalAudio(local_wav))
