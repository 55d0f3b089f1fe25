import mimetypes
import os
import uuid
from collections import namedtuple
from dataclasses import dataclass
from datetime import datetime, timezone

import boto3
from botocore.client import Config
from flask import current_app
from werkzeug.utils import secure_filename

from ..models.note import LocalAudio, RemoteAudio

StoredObject = namedtuple("StoredObject", "key url ref")


@dataclass
class StorageSettings:
    backend: str = "local"
    local_dir: str = "./storage"
    endpoint: str = None
    region: str = None
    bucket: str = None
    access_key: str = None
    secret_key: str = None
    timeout_sec: float = 60.0

    @classmethod
    def from_config(cls, config):
        return cls(
            backend=config.get("STORAGE_BACKEND", "local"),
            local_dir=config.get("LOCAL_STORAGE_DIR", "./storage"),
            endpoint=config.get("S3_ENDPOINT"),
            region=config.get("S3_REGION"),
            bucket=config.get("S3_BUCKET"),
            access_key=config.get("S3_ACCESS_KEY"),
            secret_key=config.get("S3_SECRET_KEY"),
            timeout_sec=float(config.get("DOWNLOAD_TIMEOUT_SEC", 60)),
        )


class ObjectStorage:
    """Audio storage: S3 (or an S3-compatible endpoint) with local disk fallback."""

    def __init__(self, settings):
        self.settings = settings
        self._client = None

    @classmethod
    def from_config(cls, config):
        return cls(StorageSettings.from_config(config))

    def is_configured(self):
        s = self.settings
        return s.backend == "s3" and bool(s.bucket and s.access_key and s.secret_key)

    @property
    def client(self):
        if self._client is None:
            s3_kwargs = {}
            if self.settings.endpoint:
                s3_kwargs["endpoint_url"] = self.settings.endpoint
            if self.settings.region:
                s3_kwargs["region_name"] = self.settings.region
            # sigv4 + virtual-hosted addressing; bounded network waits
            s3_config = Config(
                signature_version="s3v4",
                s3={"addressing_style": "virtual"},
                connect_timeout=self.settings.timeout_sec,
                read_timeout=self.settings.timeout_sec,
                retries={"max_attempts": 3},
            )
            self._client = boto3.client(
                "s3",
                aws_access_key_id=self.settings.access_key,
                aws_secret_access_key=self.settings.secret_key,
                config=s3_config,
                **s3_kwargs,
            )
        return self._client

    def local_path(self, path):
        """Absolute path for a local reference (relative to the storage dir)."""
        if os.path.isabs(path):
            return path
        return os.path.abspath(os.path.join(self.settings.local_dir, path))

    @staticmethod
    def new_key(filename, now=None):
        now = now or datetime.now(timezone.utc)
        ext = os.path.splitext(secure_filename(filename or ""))[1].lower()
        return f"audio/{now.year}/{now.month}/{uuid.uuid4().hex}{ext}"

    def upload(self, stream, filename, content_type=None):
        """Store an uploaded audio stream and return where it went.

        Uses S3 when configured; otherwise, or if the S3 upload fails, the
        file is written under ``local_dir`` so the upload still succeeds.
        """
        key = self.new_key(filename)
        content_type = content_type or mimetypes.guess_type(filename or "")[0] or "application/octet-stream"

        if self.is_configured():
            try:
                self.client.upload_fileobj(
                    stream, self.settings.bucket, key,
                    ExtraArgs={
                        "ContentType": content_type,
                        "Metadata": {
                            "original-name": secure_filename(filename or "") or "audio",
                            "uploaded-at": datetime.now(timezone.utc).isoformat(),
                        },
                    },
                )
                return StoredObject(key, self.public_url(key), RemoteAudio(key))
            except Exception as e:
                current_app.logger.exception("S3 upload failed, falling back to local storage: %s", e)
                try:
                    stream.seek(0)
                except (AttributeError, OSError):
                    pass

        path = self.local_path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as fh:
            while True:
                chunk = stream.read(1024 * 1024)
                if not chunk:
                    break
                fh.write(chunk)
        return StoredObject(key, f"file://{path}", LocalAudio(key))

    def download(self, key) -> bytes:
        obj = self.client.get_object(Bucket=self.settings.bucket, Key=key)
        body = obj["Body"].read()
        if not body:
            raise ValueError(f"empty object: {key}")
        return body

    def delete(self, ref):
        if isinstance(ref, RemoteAudio):
            self.client.delete_object(Bucket=self.settings.bucket, Key=ref.key)
        elif isinstance(ref, LocalAudio):
            path = self.local_path(ref.path)
            if os.path.exists(path):
                os.remove(path)

    def public_url(self, key):
        if self.settings.endpoint:
            return f"{self.settings.endpoint.rstrip('/')}/{self.settings.bucket}/{key}"
        return f"https://{self.settings.bucket}.s3.{self.settings.region or 'us-east-1'}.amazonaws.com/{key}"
