import pytest
import requests

from oasisnotes.errors import ExtractionTimeout, ExtractionUnavailable, MalformedResponse
from oasisnotes.services.ollama import OllamaClient, OllamaSettings

# services log through the Flask app logger
pytestmark = pytest.mark.usefixtures("app")


class FakeResponse:
    def __init__(self, payload=None, status=200, body_error=None):
        self.payload = payload
        self.status = status
        self.body_error = body_error

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        if self.body_error is not None:
            raise self.body_error
        return self.payload


class FakeSession:
    def __init__(self, get=None, post=None):
        self._get = get
        self._post = post
        self.posted = []

    def get(self, url, timeout=None):
        if isinstance(self._get, Exception):
            raise self._get
        return self._get

    def post(self, url, json=None, timeout=None):
        self.posted.append((url, json, timeout))
        if isinstance(self._post, Exception):
            raise self._post
        return self._post


def _client(**session):
    settings = OllamaSettings(endpoint_url="http://ollama:11434/", model_name="llama3.2", timeout_ms=2500)
    return OllamaClient(settings, session=FakeSession(**session))


def test_available_when_model_is_pulled():
    tags = FakeResponse({"models": [{"name": "mistral:latest"}, {"name": "llama3.2:latest"}]})
    assert _client(get=tags).is_available() is True


@pytest.mark.parametrize("get", [
    FakeResponse({"models": [{"name": "mistral:latest"}]}),
    FakeResponse({"models": []}),
    FakeResponse(status=500),
    requests.ConnectionError("refused"),
])
def test_unavailable(get):
    assert _client(get=get).is_available() is False


def test_generate_posts_non_streaming_request():
    client = _client(post=FakeResponse({"response": '{"m1800Grooming": 1}'}))
    assert client.generate("score this") == '{"m1800Grooming": 1}'

    url, body, timeout = client.session.posted[0]
    assert url == "http://ollama:11434/api/generate"
    assert body["model"] == "llama3.2"
    assert body["stream"] is False
    assert body["options"]["temperature"] == 0.1
    assert body["options"]["num_predict"] == 500
    assert timeout == 2.5


def test_generate_timeout():
    with pytest.raises(ExtractionTimeout) as exc:
        _client(post=requests.Timeout("read timed out")).generate("p")
    assert "2500 ms" in str(exc.value)


@pytest.mark.parametrize("post", [requests.ConnectionError("refused"), FakeResponse(status=404)])
def test_generate_transport_failure(post):
    with pytest.raises(ExtractionUnavailable):
        _client(post=post).generate("p")


@pytest.mark.parametrize("resp", [
    FakeResponse(body_error=ValueError("not json")),
    FakeResponse(["not", "an", "object"]),
    FakeResponse({"response": ""}),
    FakeResponse({"done": True}),
])
def test_generate_malformed_body(resp):
    with pytest.raises(MalformedResponse):
        _client(post=resp).generate("p")


def test_settings_from_config():
    s = OllamaSettings.from_config({"OLLAMA_URL": "http://gpu:11434", "OLLAMA_TIMEOUT_MS": "60000"})
    assert s.endpoint_url == "http://gpu:11434"
    assert s.timeout_ms == 60000
    assert s.model_name == "llama3.2"
