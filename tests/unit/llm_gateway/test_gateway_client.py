"""
Unit tests for GatewayClient.

Covers request building, retry/backoff on 429 and 5xx, terminal errors,
timeouts and the missing-configuration short circuit.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from llm_gateway import (
    EMPTY_RESPONSE,
    ConfigurationMissingError,
    GatewayConnectionError,
    GatewaySettings,
    GatewayTimeoutError,
    ImagePart,
    Message,
    ResponseFormatError,
    RetriesExhaustedError,
    RetryPolicy,
    TextPart,
    UnexpectedStatusError,
    retry_delay,
)
from llm_gateway.client import is_retryable_status


class TestRetryDelay:
    """Test cases for the retry delay policy."""

    def test_missing_header_uses_base_delay(self) -> None:
        policy = RetryPolicy(base_delay=1.5)
        assert retry_delay(policy, None) == 1.5
        assert retry_delay(policy, "") == 1.5

    def test_numeric_header_is_seconds(self) -> None:
        policy = RetryPolicy(base_delay=1.0)
        assert retry_delay(policy, "3") == 3.0
        assert retry_delay(policy, " 0.25 ") == 0.25

    def test_header_is_clamped_to_max_delay(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=10.0)
        assert retry_delay(policy, "3600") == 10.0

    def test_negative_header_is_clamped_to_zero(self) -> None:
        assert retry_delay(RetryPolicy(), "-5") == 0.0

    def test_http_date_header(self) -> None:
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now + timedelta(seconds=4), usegmt=True)
        assert retry_delay(RetryPolicy(), header, now=now) == pytest.approx(4.0)

    def test_garbage_header_uses_base_delay(self) -> None:
        policy = RetryPolicy(base_delay=2.0)
        assert retry_delay(policy, "soon") == 2.0
        assert retry_delay(policy, "nan") == 2.0

    def test_retryable_statuses(self) -> None:
        assert is_retryable_status(429)
        assert is_retryable_status(500)
        assert is_retryable_status(503)
        assert not is_retryable_status(400)
        assert not is_retryable_status(401)
        assert not is_retryable_status(404)


class TestChatRequests:
    """Test cases for the chat endpoint."""

    @pytest.mark.asyncio
    async def test_chat_sends_expected_request(self, make_gateway, chat_reply) -> None:
        captured = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return chat_reply("hello")

        gateway = make_gateway(handler)
        reply = await gateway.chat(
            [Message(role="system", content="sys"), Message(role="user", content="hi")],
            model="gemini-2.5-flash",
            temperature=0,
        )

        assert reply == "hello"
        assert len(captured) == 1
        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == "https://gateway.test/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        assert request.headers["content-type"] == "application/json"

        body = json.loads(request.content)
        assert body["model"] == "gemini-2.5-flash"
        assert body["temperature"] == 0
        assert "max_tokens" not in body
        assert body["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]

    @pytest.mark.asyncio
    async def test_multimodal_message_parts(self, make_gateway, chat_reply) -> None:
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return chat_reply("ok")

        gateway = make_gateway(handler)
        await gateway.chat(
            [
                Message(
                    role="user",
                    content=[
                        ImagePart.from_url("data:image/jpeg;base64,AAAA"),
                        TextPart(text="what is this"),
                    ],
                )
            ],
            max_tokens=100,
        )

        body = bodies[0]
        assert body["max_tokens"] == 100
        assert body["model"] == "claude"
        assert body["messages"][0]["content"] == [
            {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,AAAA"}},
            {"type": "text", "text": "what is this"},
        ]

    @pytest.mark.asyncio
    async def test_empty_choices_returns_sentinel(self, make_gateway) -> None:
        gateway = make_gateway(lambda request: httpx.Response(200, json={"choices": []}))
        assert await gateway.chat([Message(role="user", content="hi")]) == EMPTY_RESPONSE

    @pytest.mark.asyncio
    async def test_extra_headers_are_sent(self, make_gateway, chat_reply) -> None:
        captured = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return chat_reply("pong")

        gateway = make_gateway(handler)
        await gateway.chat([Message(role="user", content="hi")], extra_headers={"X-Trace": "abc"})

        assert captured[0].headers["x-trace"] == "abc"

    @pytest.mark.asyncio
    async def test_run_model_and_ping(self, make_gateway, chat_reply) -> None:
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return chat_reply("pong")

        gateway = make_gateway(handler)

        assert await gateway.run_model("qwen-plus", "question", system="be brief") == "pong"
        assert bodies[0]["model"] == "qwen-plus"
        assert [m["role"] for m in bodies[0]["messages"]] == ["system", "user"]

        assert await gateway.ping() == "pong"
        assert bodies[1]["messages"] == [{"role": "user", "content": "ping"}]
        assert bodies[1]["temperature"] == 0


class TestRetries:
    """Test cases for retry and backoff behaviour."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, make_gateway, chat_reply, sleep_recorder) -> None:
        responses = [
            httpx.Response(429, headers={"Retry-After": "2"}, text="slow down"),
            httpx.Response(503, text="unavailable"),
            chat_reply("finally"),
        ]
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return responses.pop(0)

        gateway = make_gateway(handler)
        reply = await gateway.chat([Message(role="user", content="hi")])

        assert reply == "finally"
        assert len(calls) == 3
        # Retry-After honoured first, base delay second
        assert sleep_recorder.delays == [2.0, 0.5]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_after_exact_attempts(self, make_gateway, sleep_recorder) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="boom")

        gateway = make_gateway(handler)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await gateway.chat([Message(role="user", content="hi")])

        # max_retries=2 -> 1 initial attempt + 2 retries
        assert len(calls) == 3
        assert len(sleep_recorder.delays) == 2
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "boom"
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_zero_retries_makes_single_attempt(self, make_gateway, sleep_recorder) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(429, text="rate limited")

        no_retry = GatewaySettings(
            base_url="https://gateway.test/v1",
            api_key="sk-test",
            chat_policy=RetryPolicy(max_retries=0),
        )
        gateway = make_gateway(handler, no_retry)

        with pytest.raises(RetriesExhaustedError):
            await gateway.chat([Message(role="user", content="hi")])

        assert len(calls) == 1
        assert sleep_recorder.delays == []

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, make_gateway, sleep_recorder) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(401, text="bad key")

        gateway = make_gateway(handler)

        with pytest.raises(UnexpectedStatusError) as exc_info:
            await gateway.chat([Message(role="user", content="hi")])

        assert len(calls) == 1
        assert sleep_recorder.delays == []
        assert exc_info.value.status_code == 401
        assert "bad key" in str(exc_info.value)


class TestTerminalConditions:
    """Test cases for configuration, timeout and transport failures."""

    @pytest.mark.asyncio
    async def test_missing_configuration_makes_no_call(self, make_gateway) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={})

        gateway = make_gateway(handler, GatewaySettings(base_url="", api_key="sk-test"))
        with pytest.raises(ConfigurationMissingError) as exc_info:
            await gateway.chat([Message(role="user", content="hi")])
        assert exc_info.value.missing == "PLATO_BASE_URL"

        gateway = make_gateway(handler, GatewaySettings(base_url="https://gateway.test", api_key=""))
        with pytest.raises(ConfigurationMissingError):
            await gateway.generate_image("a cat")

        assert calls == []

    @pytest.mark.asyncio
    async def test_hung_request_times_out(self, make_gateway) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200, json={})

        fast_timeout = GatewaySettings(
            base_url="https://gateway.test",
            api_key="sk-test",
            chat_policy=RetryPolicy(timeout=0.05),
        )
        gateway = make_gateway(handler, fast_timeout)

        with pytest.raises(GatewayTimeoutError) as exc_info:
            await gateway.chat([Message(role="user", content="hi")])
        assert exc_info.value.timeout == 0.05

    @pytest.mark.asyncio
    async def test_connection_error(self, make_gateway) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway = make_gateway(handler)
        with pytest.raises(GatewayConnectionError):
            await gateway.chat([Message(role="user", content="hi")])

    @pytest.mark.asyncio
    async def test_non_json_body(self, make_gateway) -> None:
        gateway = make_gateway(lambda request: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(ResponseFormatError):
            await gateway.chat([Message(role="user", content="hi")])


class TestImages:
    """Test cases for the image endpoint."""

    @pytest.mark.asyncio
    async def test_generate_image_request_and_url(self, make_gateway, image_reply) -> None:
        captured = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return image_reply("https://x/cat.png")

        gateway = make_gateway(handler)
        url = await gateway.generate_image("a cat", size="1024x576")

        assert url == "https://x/cat.png"
        assert str(captured[0].url) == "https://gateway.test/v1/images/generations"
        assert json.loads(captured[0].content) == {
            "model": "nano-banana-2-2k",
            "prompt": "a cat",
            "size": "1024x576",
            "response_format": "url",
        }

    @pytest.mark.asyncio
    async def test_generate_image_without_url_returns_none(self, make_gateway) -> None:
        gateway = make_gateway(lambda request: httpx.Response(200, json={"data": []}))
        assert await gateway.generate_image("a cat") is None

    @pytest.mark.asyncio
    async def test_image_retries_share_policy(self, make_gateway, image_reply, sleep_recorder) -> None:
        responses = [httpx.Response(502, text="bad gateway"), image_reply("https://x/dog.png")]

        gateway = make_gateway(lambda request: responses.pop(0))

        assert await gateway.generate_image("a dog") == "https://x/dog.png"
        assert sleep_recorder.delays == [0.5]


class TestClientLifecycle:
    """Test cases for owning and closing the HTTP client."""

    @pytest.mark.asyncio
    async def test_shared_client_is_not_closed(self, settings) -> None:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))

        from llm_gateway import GatewayClient

        async with GatewayClient(settings, client=http_client):
            pass

        assert not http_client.is_closed
        await http_client.aclose()
