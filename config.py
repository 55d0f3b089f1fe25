import os
from dotenv import load_dotenv
load_dotenv()


def _json_env(name, default=None):
    import json
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///oasis_notes.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = 50 * 1024 * 1024

    # background execution: rq / thread / sync
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    PIPELINE_EXECUTOR = os.getenv("PIPELINE_EXECUTOR", "rq")
    PIPELINE_JOB_TIMEOUT = int(os.getenv("PIPELINE_JOB_TIMEOUT", "900"))
    PIPELINE_QUEUE = os.getenv("PIPELINE_QUEUE", "default")
    PIPELINE_WORKERS = int(os.getenv("PIPELINE_WORKERS", "2"))

    # audio storage
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")
    LOCAL_STORAGE_DIR = os.getenv("LOCAL_STORAGE_DIR", "./storage")
    S3_ENDPOINT = os.getenv("S3_ENDPOINT")
    S3_REGION = os.getenv("S3_REGION", "us-east-1")
    S3_BUCKET = os.getenv("S3_BUCKET")
    S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
    S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")
    DOWNLOAD_TIMEOUT_SEC = float(os.getenv("DOWNLOAD_TIMEOUT_SEC", "60"))

    # speech-to-text
    TRANSCRIBE_ENGINE = os.getenv("TRANSCRIBE_ENGINE", "whisper")
    WHISPER_MODEL = os.getenv("WHISPER_MODEL", "base.en")
    DEEPGRAM_API_KEY = os.getenv("DEEPGRAM_API_KEY")
    DEEPGRAM_OPTIONS = _json_env("DEEPGRAM_OPTIONS", {"punctuate": True, "utterances": True})
    TRANSCRIBE_TIMEOUT_SEC = float(os.getenv("TRANSCRIBE_TIMEOUT_SEC", "300"))
    TRANSCODE_SAMPLE_RATE = int(os.getenv("TRANSCODE_SAMPLE_RATE", "16000"))

    # language model (Ollama)
    OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434")
    OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.2")
    OLLAMA_TIMEOUT_MS = int(os.getenv("OLLAMA_TIMEOUT_MS", "120000"))
    OLLAMA_TEMPERATURE = float(os.getenv("OLLAMA_TEMPERATURE", "0.1"))
    OLLAMA_NUM_PREDICT = int(os.getenv("OLLAMA_NUM_PREDICT", "500"))
