"""Speech-to-text for recorded visit notes.

Two engines are supported: a local Whisper model (``openai-whisper``, loaded
lazily and cached per model name) and Deepgram's REST API. Both return
timestamped segments; ``Transcriber`` normalises the audio container first and
assembles the final text.
"""

import mimetypes
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as EngineTimeout
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from flask import current_app
from pydub import AudioSegment

from ..errors import TranscriptionFailed

NATIVE_EXTENSION = ".wav"

_LOCAL_MODELS: Dict[str, Any] = {}


@dataclass
class Segment:
    start: float
    end: float
    text: str


@dataclass
class TranscriptionResult:
    text: str
    duration: Optional[float] = None
    language: Optional[str] = None
    segments: List[Segment] = field(default_factory=list)

    def to_dict(self):
        return {
            "text": self.text,
            "duration": self.duration,
            "language": self.language,
            "segments": [{"start": s.start, "end": s.end, "text": s.text} for s in self.segments],
        }


@dataclass
class TranscriptionSettings:
    engine: str = "whisper"
    whisper_model: str = "base.en"
    deepgram_api_key: Optional[str] = None
    deepgram_options: Dict[str, Any] = field(default_factory=dict)
    timeout_sec: float = 300.0
    sample_rate: int = 16000

    @classmethod
    def from_config(cls, config):
        return cls(
            engine=config.get("TRANSCRIBE_ENGINE", "whisper"),
            whisper_model=config.get("WHISPER_MODEL", "base.en"),
            deepgram_api_key=config.get("DEEPGRAM_API_KEY"),
            deepgram_options=config.get("DEEPGRAM_OPTIONS") or {},
            timeout_sec=float(config.get("TRANSCRIBE_TIMEOUT_SEC", 300)),
            sample_rate=int(config.get("TRANSCODE_SAMPLE_RATE", 16000)),
        )


class WhisperEngine:
    name = "whisper"

    def __init__(self, model_name="base.en"):
        self.model_name = model_name

    def _load_model(self):  # pragma: no cover - heavy optional dependency
        model = _LOCAL_MODELS.get(self.model_name)
        if model is None:
            import whisper  # type: ignore

            model = whisper.load_model(self.model_name)
            _LOCAL_MODELS[self.model_name] = model
        return model

    def transcribe(self, path, options=None):
        options = dict(options or {})
        # english-only checkpoints reject a language hint other than "en"
        if self.model_name.endswith(".en"):
            options.setdefault("language", "en")
        res = self._load_model().transcribe(path, word_timestamps=True, **options)
        return {
            "language": res.get("language"),
            "segments": [
                {"start": s.get("start"), "end": s.get("end"), "text": s.get("text", "")}
                for s in res.get("segments") or []
            ],
        }


class DeepgramEngine:
    name = "deepgram"
    url = "https://api.deepgram.com/v1/listen"

    def __init__(self, api_key, options=None, timeout=300.0):
        self.api_key = api_key
        self.options = options or {}
        self.timeout = timeout

    def _params(self, language=None):
        opts = self.options
        params = {}
        if opts.get("punctuate", True):
            params["punctuate"] = "true"
        if opts.get("diarize") or opts.get("diarization"):
            params["diarize"] = "true"
        # utterances give us timestamped segments
        params["utterances"] = "true"
        if "utt_split" in opts:
            params["utt_split"] = str(float(opts["utt_split"]))
        if language or opts.get("language"):
            params["language"] = language or opts.get("language")
        else:
            params["detect_language"] = "true"
        return params

    def transcribe(self, path, options=None):
        if not self.api_key:
            raise RuntimeError("DEEPGRAM_API_KEY is not configured")
        options = options or {}
        content_type = mimetypes.guess_type(path)[0] or "audio/wav"
        headers = {"Authorization": f"Token {self.api_key}", "Content-Type": content_type}
        with open(path, "rb") as fh:
            r = requests.post(self.url, params=self._params(options.get("language")),
                              headers=headers, data=fh, timeout=self.timeout)
        r.raise_for_status()
        jr = r.json()

        segments = [
            {"start": u.get("start"), "end": u.get("end"), "text": u.get("transcript") or u.get("text") or ""}
            for u in (jr.get("results", {}).get("utterances") or jr.get("utterances") or [])
        ]
        channel = (jr.get("results", {}).get("channels") or [{}])[0]
        if not segments:
            # no utterances: one segment spanning the whole recording
            alt = (channel.get("alternatives") or [{}])[0]
            if alt.get("transcript"):
                segments = [{"start": 0.0, "end": jr.get("metadata", {}).get("duration"), "text": alt["transcript"]}]
        return {"language": channel.get("detected_language"), "segments": segments}


def build_engine(settings):
    if settings.engine == "deepgram":
        return DeepgramEngine(settings.deepgram_api_key, settings.deepgram_options, settings.timeout_sec)
    if settings.engine == "whisper":
        return WhisperEngine(settings.whisper_model)
    raise ValueError(f"unknown transcription engine: {settings.engine}")


def _seconds(value):
    """Segment timestamps arrive as seconds or as ``HH:MM:SS.mmm`` strings."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    parts = str(value).split(":")
    try:
        if len(parts) == 3:
            return int(parts[0]) * 3600 + int(parts[1]) * 60 + float(parts[2])
        return float(value)
    except ValueError:
        return None


class Transcriber:
    def __init__(self, settings, engine=None):
        self.settings = settings
        self.engine = engine or build_engine(settings)

    @classmethod
    def from_config(cls, config, engine=None):
        return cls(TranscriptionSettings.from_config(config), engine=engine)

    def to_native_format(self, path):
        """Return a 16-bit mono WAV at the engine sample rate for ``path``.

        WAV input is used as is; anything else is transcoded into a sibling
        ``<name>_converted.wav`` which the caller must remove.
        """
        root, ext = os.path.splitext(path)
        if ext.lower() == NATIVE_EXTENSION:
            return path
        out = f"{root}_converted{NATIVE_EXTENSION}"
        audio = AudioSegment.from_file(path)
        audio = audio.set_frame_rate(self.settings.sample_rate).set_channels(1).set_sample_width(2)
        audio.export(out, format="wav")
        return out

    def transcribe(self, path, options=None):
        if not os.path.isfile(path):
            raise TranscriptionFailed(f"Audio file not found: {path}")

        converted = None
        try:
            try:
                converted = self.to_native_format(path)
            except Exception as e:
                current_app.logger.exception("Audio conversion failed for %s", path)
                raise TranscriptionFailed("Audio conversion failed", cause=e) from e

            current_app.logger.info("Transcribing %s with %s", converted, self.engine.name)
            try:
                raw = self._call_engine(converted, options)
            except TranscriptionFailed:
                raise
            except Exception as e:
                current_app.logger.exception("Speech-to-text engine failed for %s", converted)
                raise TranscriptionFailed("Transcription failed", cause=e) from e
        finally:
            if converted and converted != path and os.path.exists(converted):
                try:
                    os.remove(converted)
                except OSError:
                    current_app.logger.warning("Could not clean up converted file %s", converted)

        return self._assemble(raw)

    def _call_engine(self, path, options):
        """Run the engine with a deadline of ``settings.timeout_sec`` seconds.

        On timeout the engine call is abandoned, not interrupted: it keeps
        running in its worker thread.
        """
        timeout = self.settings.timeout_sec
        if not timeout:
            return self.engine.transcribe(path, options)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stt-engine")
        future = executor.submit(self.engine.transcribe, path, options)
        try:
            return future.result(timeout=timeout)
        except EngineTimeout as e:
            current_app.logger.error("Speech-to-text engine exceeded %ss for %s", timeout, path)
            raise TranscriptionFailed(f"Transcription timed out after {timeout:g} seconds", cause=e) from e
        finally:
            executor.shutdown(wait=False)

    @staticmethod
    def _assemble(raw):
        raw_segments = (raw or {}).get("segments") or []
        if not raw_segments:
            raise TranscriptionFailed("No transcription result received")

        segments = [
            Segment(start=_seconds(s.get("start")), end=_seconds(s.get("end")), text=(s.get("text") or "").strip())
            for s in raw_segments
        ]
        text = " ".join(s.text for s in segments if s.text)
        if not text:
            raise TranscriptionFailed("No transcription result received")
        return TranscriptionResult(
            text=text,
            duration=segments[-1].end,
            language=raw.get("language"),
            segments=segments,
        )
