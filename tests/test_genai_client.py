from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from config import Settings
from genai_client import GenAIClient, GenerationOptions
from utils import UpstreamError


def make_client(handler, **overrides) -> GenAIClient:
    settings = Settings(api_key="secret", api_url="https://genai.test/generate", **overrides)
    return GenAIClient(settings, transport=httpx.MockTransport(handler))


def run(client: GenAIClient, prompt: str = "hello", **kwargs):
    async def call():
        try:
            return await client.generate(prompt, **kwargs)
        finally:
            await client.aclose()

    return asyncio.run(call())


def test_generate_posts_prompt_and_options():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "hi there"}}]})

    assert run(make_client(handler, model="gemini-test")) == "hi there"
    assert seen["url"] == "https://genai.test/generate"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {
        "model": "gemini-test",
        "prompt": "hello",
        "temperature": 0.2,
        "max_output_tokens": 512,
    }


def test_generate_accepts_explicit_options():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"text": "ok"}]})

    run(make_client(handler), options=GenerationOptions(temperature=0.0, max_output_tokens=64))
    assert seen["temperature"] == 0.0
    assert seen["max_output_tokens"] == 64


def test_generate_non_success_raises_upstream_error():
    client = make_client(lambda _: httpx.Response(429, text="rate limited"))
    with pytest.raises(UpstreamError) as info:
        run(client)
    assert info.value.upstream_status == 429
    assert info.value.body == "rate limited"
    assert info.value.to_payload() == {"error": "genai_error", "detail": "rate limited"}


def test_generate_does_not_retry():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    with pytest.raises(UpstreamError):
        run(make_client(handler))
    assert len(calls) == 1


def test_generate_timeout_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpstreamError) as info:
        run(make_client(handler, timeout=0.5))
    assert info.value.upstream_status is None
    assert info.value.body == "timed out"


def test_generate_invalid_json_propagates():
    client = make_client(lambda _: httpx.Response(200, text="not json"))
    with pytest.raises(ValueError):
        run(client)
