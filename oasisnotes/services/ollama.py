"""Minimal Ollama REST client (``/api/tags`` and ``/api/generate``).

Called directly with ``requests`` so the only contract is the HTTP API.
"""

from dataclasses import dataclass

import requests
from flask import current_app

from ..errors import ExtractionTimeout, ExtractionUnavailable, MalformedResponse


@dataclass
class OllamaSettings:
    endpoint_url: str = "http://localhost:11434"
    model_name: str = "llama3.2"
    # first call on a cold model includes model load, hence the long default
    timeout_ms: int = 120000
    sampling_temperature: float = 0.1
    top_p: float = 0.9
    num_predict: int = 500
    num_ctx: int = 4096
    availability_timeout_sec: float = 5.0

    @classmethod
    def from_config(cls, config):
        return cls(
            endpoint_url=config.get("OLLAMA_URL", cls.endpoint_url),
            model_name=config.get("OLLAMA_MODEL", cls.model_name),
            timeout_ms=int(config.get("OLLAMA_TIMEOUT_MS", cls.timeout_ms)),
            sampling_temperature=float(config.get("OLLAMA_TEMPERATURE", cls.sampling_temperature)),
            num_predict=int(config.get("OLLAMA_NUM_PREDICT", cls.num_predict)),
        )

    def sampling_options(self):
        return {
            "temperature": self.sampling_temperature,
            "top_p": self.top_p,
            "num_predict": self.num_predict,
            "num_ctx": self.num_ctx,
        }


class OllamaClient:
    def __init__(self, settings, session=None):
        self.settings = settings
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config):
        return cls(OllamaSettings.from_config(config))

    def _url(self, path):
        return self.settings.endpoint_url.rstrip("/") + path

    def list_models(self):
        r = self.session.get(self._url("/api/tags"), timeout=self.settings.availability_timeout_sec)
        r.raise_for_status()
        return [m.get("name", "") for m in r.json().get("models") or []]

    def is_available(self):
        """True when the endpoint answers and the configured model is pulled."""
        try:
            names = self.list_models()
        except (requests.RequestException, ValueError):
            current_app.logger.warning("Ollama not reachable at %s", self.settings.endpoint_url)
            return False
        base = self.settings.model_name.split(":")[0]
        if not any(base in name for name in names):
            current_app.logger.warning("Model %s not found. Available models: %s", self.settings.model_name, names)
            return False
        return True

    def generate(self, prompt, options=None):
        """Run one non-streaming completion and return the raw response text."""
        body = {
            "model": self.settings.model_name,
            "prompt": prompt,
            "stream": False,
            "options": options or self.settings.sampling_options(),
        }
        try:
            r = self.session.post(self._url("/api/generate"), json=body,
                                  timeout=self.settings.timeout_ms / 1000.0)
            r.raise_for_status()
        except requests.Timeout as e:
            raise ExtractionTimeout(
                f"Ollama did not answer within {self.settings.timeout_ms} ms", cause=e) from e
        except requests.RequestException as e:
            raise ExtractionUnavailable("Ollama request failed", cause=e) from e

        try:
            payload = r.json()
        except ValueError as e:
            raise MalformedResponse("Ollama returned a non-JSON body", cause=e) from e
        text = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(text, str) or not text:
            raise MalformedResponse("Invalid response from Ollama")
        return text
