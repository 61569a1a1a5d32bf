import os
import sys
import json
import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from unittest.mock import patch

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../backend")))
from main import app
from services.completion import CompletionClient


def _upstream(handler):
    """Swap the router's client for one that talks to a fake upstream."""
    return patch("routers.chat.completion_client", CompletionClient(transport=httpx.MockTransport(handler)))


def _sse_upstream(*fragments, done=True):
    body = "".join(
        f'data: {json.dumps({"choices": [{"delta": {"content": f}}]})}\n\n' for f in fragments
    )
    if done:
        body += "data: [DONE]\n\n"
    return lambda request: httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})


@pytest.fixture(autouse=True)
def api_key():
    with patch("services.credentials.get_api_key", return_value="test-key"):
        yield


@pytest.mark.asyncio
async def test_chat_returns_message():
    """A batched request relays history upstream and answers with {message}."""
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "Pong"}}]})

    with _upstream(handler):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/chat", json={
                "messages": [{"role": "user", "content": "Ping!"}],
                "temperature": 0.2,
                "max_tokens": 50,
            })

    assert res.status_code == 200
    assert res.json() == {"message": "Pong"}
    assert seen["body"]["messages"] == [{"role": "user", "content": "Ping!"}]
    assert seen["body"]["temperature"] == 0.2
    assert seen["body"]["max_tokens"] == 50


@pytest.mark.asyncio
async def test_chat_relays_multimodal_content():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "Red"}}]})

    image = "data:image/png;base64,iVBORw0KGgo="
    with _upstream(handler):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/chat", json={"messages": [{"role": "user", "content": [
                {"type": "text", "text": "Colour?"},
                {"type": "image", "image": image},
            ]}]})

    assert res.status_code == 200
    assert seen["body"]["messages"][0]["content"] == [
        {"type": "text", "text": "Colour?"},
        {"type": "image_url", "image_url": {"url": image}},
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"messages": "hi"}, {"messages": []}])
async def test_chat_requires_messages(body):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        res = await client.post("/chat", json=body)
    assert res.status_code == 400
    assert res.json() == {"error": "Messages array is required"}


@pytest.mark.asyncio
async def test_chat_rejects_malformed_content():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        bad_role = await client.post("/chat", json={"messages": [{"role": "robot", "content": "hi"}]})
        bad_image = await client.post("/chat", json={"messages": [
            {"role": "user", "content": [{"type": "image", "image": "https://example.com/cat.png"}]}
        ]})
    assert bad_role.status_code == 400
    assert "error" in bad_role.json()
    assert bad_image.status_code == 400
    assert bad_image.json() == {"error": "Image parts must be base64 data URIs"}


@pytest.mark.asyncio
@pytest.mark.parametrize("part", [
    {"type": "image_url", "image_url": "data:image/png;base64,AAAA"},
    {"type": "image_url"},
    {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
    {"type": "audio", "audio": "AAAA"},
])
async def test_chat_rejects_malformed_parts(part):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        res = await client.post("/chat", json={"messages": [{"role": "user", "content": [part]}]})
    assert res.status_code == 400
    assert "error" in res.json()


@pytest.mark.asyncio
async def test_chat_without_credential():
    with patch("services.credentials.get_api_key", return_value=""):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/chat", json={"messages": [{"role": "user", "content": "Hi"}]})
    assert res.status_code == 500
    assert res.json() == {"error": "OpenAI API key not configured"}


@pytest.mark.asyncio
async def test_chat_upstream_failure():
    with _upstream(lambda request: httpx.Response(503, text="overloaded")):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/chat", json={"messages": [{"role": "user", "content": "Hi"}]})
    assert res.status_code == 500
    assert res.json() == {"error": "Failed to get response from OpenAI"}


@pytest.mark.asyncio
async def test_stream_emits_content_frames_then_done():
    with _upstream(_sse_upstream("Hel", "lo", " world")):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/chat/stream", json={"messages": [{"role": "user", "content": "Hi"}]})

            assert res.status_code == 200
            assert "text/event-stream" in res.headers["content-type"]
            lines = [line async for line in res.aiter_lines() if line]

    assert lines == [
        'data: {"content": "Hel"}',
        'data: {"content": "lo"}',
        'data: {"content": " world"}',
        "data: [DONE]",
    ]


@pytest.mark.asyncio
async def test_stream_interruption_emits_error_frame():
    with _upstream(_sse_upstream("Hel", done=False)):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/chat/stream", json={"messages": [{"role": "user", "content": "Hi"}]})
            lines = [line async for line in res.aiter_lines() if line]

    assert lines[0] == 'data: {"content": "Hel"}'
    assert lines[-1] == 'data: {"error": "Failed to get response from OpenAI"}'
    assert "data: [DONE]" not in lines


@pytest.mark.asyncio
async def test_stream_without_credential_fails_before_streaming():
    with patch("services.credentials.get_api_key", return_value=""):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/chat/stream", json={"messages": [{"role": "user", "content": "Hi"}]})
    assert res.status_code == 500
    assert res.json() == {"error": "OpenAI API key not configured"}
