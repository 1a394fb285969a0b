from typing import List

import httpx
import pytest

from summary_cadence.config import get_settings
from summary_cadence.errors import GeneratorFailure
from summary_cadence.generator_client import (
    GENERATE_PATH,
    HttpSummaryGenerator,
    LocalSummaryGenerator,
    build_generator,
)
from summary_cadence.models import ChatMessage


class _FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class _FakeAsyncClient:
    def __init__(self, *args, **kwargs):
        self._captures = kwargs.get("captures")
        self._response = kwargs.get("response")
        self._error = kwargs.get("error")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, headers=None, json=None):
        if self._captures is not None:
            self._captures.append({"url": url, "headers": headers, "json": json})
        if self._error is not None:
            raise self._error
        return self._response


def _patch_client(monkeypatch, **kwargs):
    def _client_factory(*_args, **_kwargs):
        return _FakeAsyncClient(**kwargs)

    monkeypatch.setattr("summary_cadence.generator_client.httpx.AsyncClient", _client_factory)


@pytest.mark.asyncio
async def test_generate_posts_expected_payload(monkeypatch):
    captures: List[dict] = []
    _patch_client(
        monkeypatch,
        captures=captures,
        response=_FakeResponse(body={"text": "new summary", "provider": "openrouter", "modelId": "m-1"}),
    )
    generator = HttpSummaryGenerator(base_url="http://summarizer:8000/")

    result = await generator.generate(
        "s1",
        "Summary so far:\nA",
        [ChatMessage(role="user", content="hi")],
        token_budget=600,
        request_id="req-9",
    )

    assert result.text == "new summary"
    assert result.provider == "openrouter"
    assert result.modelId == "m-1"
    sent = captures[0]
    assert sent["url"] == f"http://summarizer:8000{GENERATE_PATH}"
    assert sent["headers"]["x-request-id"] == "req-9"
    assert sent["json"] == {
        "sessionId": "s1",
        "prevSummary": "Summary so far:\nA",
        "messages": [{"role": "user", "content": "hi"}],
        "tokenBudget": 600,
    }


@pytest.mark.asyncio
async def test_missing_text_is_reported_as_empty(monkeypatch):
    _patch_client(monkeypatch, response=_FakeResponse(body={"provider": "x"}))
    result = await HttpSummaryGenerator(base_url="http://summarizer").generate("s1", "", [])
    assert result.text == ""


@pytest.mark.asyncio
async def test_non_2xx_raises_generator_failure(monkeypatch):
    _patch_client(monkeypatch, response=_FakeResponse(status_code=503, text="unavailable"))

    with pytest.raises(GeneratorFailure) as excinfo:
        await HttpSummaryGenerator(base_url="http://summarizer").generate("s1", "", [])
    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_invalid_json_raises_generator_failure(monkeypatch):
    _patch_client(monkeypatch, response=_FakeResponse(body=ValueError("no json")))
    with pytest.raises(GeneratorFailure):
        await HttpSummaryGenerator(base_url="http://summarizer").generate("s1", "", [])


@pytest.mark.asyncio
async def test_non_object_body_raises_generator_failure(monkeypatch):
    _patch_client(monkeypatch, response=_FakeResponse(body=["not", "an", "object"]))
    with pytest.raises(GeneratorFailure):
        await HttpSummaryGenerator(base_url="http://summarizer").generate("s1", "", [])


@pytest.mark.asyncio
async def test_timeout_raises_generator_failure(monkeypatch):
    _patch_client(monkeypatch, error=httpx.ReadTimeout("timed out"))
    with pytest.raises(GeneratorFailure):
        await HttpSummaryGenerator(base_url="http://summarizer", timeout=0.5).generate("s1", "", [])


@pytest.mark.asyncio
async def test_transport_error_raises_generator_failure(monkeypatch):
    _patch_client(monkeypatch, error=httpx.ConnectError("refused"))
    with pytest.raises(GeneratorFailure):
        await HttpSummaryGenerator(base_url="http://summarizer").generate("s1", "", [])


@pytest.mark.asyncio
async def test_unconfigured_url_raises_generator_failure():
    with pytest.raises(GeneratorFailure):
        await HttpSummaryGenerator().generate("s1", "", [])


@pytest.mark.asyncio
async def test_local_generator_merges_text():
    result = await LocalSummaryGenerator().generate(
        "s1",
        "Summary so far:\nA",
        [ChatMessage(role="assistant", content="ok")],
        token_budget=600,
    )
    assert result.text == "Summary so far:\nA\n\nRecent messages:\nassistant: ok"
    assert result.provider == "local"


def test_build_generator_follows_configuration(monkeypatch):
    assert isinstance(build_generator(), LocalSummaryGenerator)

    monkeypatch.setenv("SUMMARY_GENERATOR_URL", "http://summarizer:8000")
    get_settings.cache_clear()
    generator = build_generator()
    assert isinstance(generator, HttpSummaryGenerator)
    assert generator.base_url == "http://summarizer:8000"
