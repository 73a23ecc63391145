import asyncio
import json

import aiohttp
import pytest

from halo.backends.base import GenerationOptions
from halo.backends.ollama import OllamaBackend, _strip_think
from halo.backends.selector import BackendSelector
from halo.core.models import BackendStatus, ModelCandidate
from halo.errors import BackendNetworkError, BackendTimeout, ModelError


class _FakeResponse:
    def __init__(self, payload=None, status: int = 200, body: str = None, raises: Exception = None):
        self._payload = payload
        self._body = body
        self._raises = raises
        self.status = status

    async def __aenter__(self):
        if self._raises is not None:
            raise self._raises
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self):
        if self._body is not None:
            return json.loads(self._body)
        return self._payload

    async def text(self):
        return self._body if self._body is not None else json.dumps(self._payload)


class _FakeSession:
    def __init__(self, response: _FakeResponse):
        self._response = response
        self.requests = []
        self.closed = False

    def get(self, url, timeout=None):
        self.requests.append({"method": "GET", "url": url, "timeout": timeout})
        return self._response

    def post(self, url, json=None, timeout=None):
        self.requests.append({"method": "POST", "url": url, "json": json, "timeout": timeout})
        return self._response

    async def close(self):
        self.closed = True


def _backend(response: _FakeResponse, base_url: str = "http://ollama:11434/"):
    backend = OllamaBackend(base_url=base_url)
    session = _FakeSession(response)
    backend._session = session
    return backend, session


@pytest.mark.asyncio
async def test_list_models_returns_names():
    payload = {"models": [{"name": "tinyllama:latest"}, {"name": "phi3:mini"}, {"size": 12}]}
    backend, session = _backend(_FakeResponse(payload))

    models = await backend.list_models()

    assert models == {"tinyllama:latest", "phi3:mini"}
    assert session.requests[0]["url"] == "http://ollama:11434/api/tags"


@pytest.mark.asyncio
async def test_list_models_empty_payload():
    backend, _ = _backend(_FakeResponse({}))
    assert await backend.list_models() == set()


@pytest.mark.asyncio
async def test_list_models_http_error():
    backend, _ = _backend(_FakeResponse(status=500, body="internal error"))

    with pytest.raises(ModelError) as excinfo:
        await backend.list_models()
    assert excinfo.value.status == 500


@pytest.mark.asyncio
async def test_list_models_unreachable():
    backend, _ = _backend(_FakeResponse(raises=aiohttp.ClientConnectionError("refused")))

    with pytest.raises(BackendNetworkError):
        await backend.list_models()


@pytest.mark.asyncio
async def test_generate_payload_and_response():
    backend, session = _backend(_FakeResponse({"response": '  {"danger": false, "confidence": 0.1}  '}))
    options = GenerationOptions(temperature=0.1, max_output_tokens=100, timeout_sec=60)

    text = await backend.generate("phi3:mini", "Input: hi\nOutput:", options)

    assert text == '{"danger": false, "confidence": 0.1}'
    request = session.requests[0]
    assert request["url"] == "http://ollama:11434/api/generate"
    assert request["json"] == {
        "model": "phi3:mini",
        "prompt": "Input: hi\nOutput:",
        "stream": False,
        "options": {"temperature": 0.1, "num_predict": 100},
    }
    assert request["timeout"].total == 60


@pytest.mark.asyncio
async def test_generate_http_error_is_model_error():
    backend, _ = _backend(_FakeResponse(status=404, body='{"error": "model not found"}'))

    with pytest.raises(ModelError) as excinfo:
        await backend.generate("llama3:latest", "hi", GenerationOptions())
    assert excinfo.value.model == "llama3:latest"
    assert excinfo.value.status == 404


@pytest.mark.asyncio
async def test_generate_timeout():
    backend, _ = _backend(_FakeResponse(raises=asyncio.TimeoutError()))

    with pytest.raises(BackendTimeout):
        await backend.generate("phi3:mini", "hi", GenerationOptions(timeout_sec=1))


@pytest.mark.asyncio
async def test_generate_invalid_json():
    backend, _ = _backend(_FakeResponse(body="<html>not json</html>"))

    with pytest.raises(ModelError):
        await backend.generate("phi3:mini", "hi", GenerationOptions())


@pytest.mark.asyncio
async def test_stop_closes_session():
    backend, session = _backend(_FakeResponse({}))

    await backend.stop()

    assert session.closed is True
    assert backend._session is None


def test_strip_think():
    assert _strip_think('<think>hmm</think>{"danger": true}') == '{"danger": true}'
    assert _strip_think('plain') == 'plain'
    assert _strip_think('answer <think>unterminated') == 'answer'


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", ["not-an-object", [1, 2], {"models": "phi3:mini"}])
async def test_list_models_rejects_malformed_payload(payload):
    backend, _ = _backend(_FakeResponse(payload))

    with pytest.raises(ModelError):
        await backend.list_models()


@pytest.mark.asyncio
async def test_list_models_skips_non_string_names():
    backend, _ = _backend(_FakeResponse({"models": [{"name": 42}, {"name": None}, {"name": "phi3:mini"}]}))

    assert await backend.list_models() == {"phi3:mini"}


@pytest.mark.asyncio
async def test_generate_rejects_non_object_payload():
    backend, _ = _backend(_FakeResponse("just text"))

    with pytest.raises(ModelError):
        await backend.generate("phi3:mini", "hi", GenerationOptions())


@pytest.mark.asyncio
async def test_select_survives_malformed_tags():
    backend, _ = _backend(_FakeResponse("not-an-object"))

    state = await BackendSelector(backend).select(ModelCandidate.from_ids(["phi3:mini"]))

    assert state.status is BackendStatus.UNAVAILABLE
