"""Unit tests for the LLM provider client, served by httpx.MockTransport."""

import json

import httpx
import pytest

from sentra.api.llm import LLMClient
from sentra.core.exceptions import LLMConnectionError, LLMResponseError, LLMStreamError


def sse(*events):
    return "".join(f"event: {e['type']}\ndata: {json.dumps(e)}\n\n" for e in events).encode()


def delta(text):
    return {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}


def make_client(handler, **kwargs):
    return LLMClient(
        api_url="https://llm.test/",
        api_key="k-test",
        model="main-model",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def collect(client, prompt="Prompt", max_tokens=512):
    return [chunk async for chunk in client.stream(prompt, max_tokens)]


def test_payload_sends_prompt_as_system_and_user_block():
    client = LLMClient(model="main-model", temperature=0.5)

    payload = client.build_payload("The prompt", 256, stream=True)

    assert payload["system"] == "The prompt"
    assert payload["messages"] == [{"role": "user", "content": [{"type": "text", "text": "The prompt"}]}]
    assert payload["max_tokens"] == 256
    assert payload["temperature"] == 0.5
    assert payload["stream"] is True
    assert client.build_payload("x", 256, stream=False, model="other")["model"] == "other"


async def test_stream_yields_text_deltas():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        body = sse(
            {"type": "message_start", "message": {}},
            delta("Hel"),
            {"type": "ping"},
            delta("lo"),
            {"type": "message_stop"},
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    chunks = await collect(make_client(handler))

    assert chunks == ["Hel", "lo"]
    assert seen["url"] == "https://llm.test/v1/messages"
    assert seen["headers"]["x-api-key"] == "k-test"
    assert seen["body"]["max_tokens"] == 512
    assert seen["body"]["stream"] is True


async def test_stream_error_event():
    def handler(request):
        body = sse(delta("Par"), {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
        return httpx.Response(200, content=body)

    client = make_client(handler)
    received = []
    with pytest.raises(LLMStreamError) as exc_info:
        async for chunk in client.stream("Prompt", 256):
            received.append(chunk)

    assert received == ["Par"]
    assert "Overloaded" in exc_info.value.message
    assert exc_info.value.partial_response == "Par"


async def test_stream_http_error():
    client = make_client(lambda request: httpx.Response(529, text="overloaded"))

    with pytest.raises(LLMResponseError) as exc_info:
        await collect(client)

    assert exc_info.value.upstream_status == 529


async def test_stream_connection_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(LLMConnectionError):
        await collect(make_client(handler))


async def test_complete_joins_text_blocks():
    def handler(request):
        assert json.loads(request.content)["model"] == "summary-model"
        return httpx.Response(200, json={"content": [{"type": "text", "text": "One. "}, {"type": "text", "text": "Two."}]})

    text = await make_client(handler).complete("Prompt", 300, model="summary-model")

    assert text == "One. Two."


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"content": []}),
        httpx.Response(200, json={"unexpected": True}),
        httpx.Response(200, text="not json"),
    ],
)
async def test_complete_failures(response):
    with pytest.raises(LLMResponseError):
        await make_client(lambda request: response).complete("Prompt", 256)
