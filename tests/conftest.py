"""
Pytest configuration and fixtures for the test suite.

The gateway is exercised against httpx.MockTransport; retries use a
recording sleep so no test actually waits.
"""

from typing import Callable, List

import httpx
import pytest

from llm_gateway import GatewayClient, GatewaySettings, RetryPolicy
from nodes.context import NodeContext


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def settings() -> GatewaySettings:
    return GatewaySettings(
        base_url="https://gateway.test/v1/",
        api_key="sk-test",
        chat_policy=RetryPolicy(max_retries=2, base_delay=0.5, timeout=5.0),
        image_policy=RetryPolicy(max_retries=2, base_delay=0.5, timeout=5.0),
    )


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_gateway(settings, sleep_recorder) -> Callable[..., GatewayClient]:
    """Factory building a GatewayClient whose network is the given handler."""

    def _make(handler, gateway_settings: GatewaySettings = None) -> GatewayClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return GatewayClient(gateway_settings or settings, client=http_client, sleep=sleep_recorder)

    return _make


@pytest.fixture
def make_ctx(make_gateway) -> Callable[..., NodeContext]:
    """Factory building a NodeContext wired to a mock gateway."""

    def _make(handler, config: dict = None, gateway_settings: GatewaySettings = None) -> NodeContext:
        return NodeContext(
            config=config,
            gateway=make_gateway(handler, gateway_settings),
            use_env=False,
        )

    return _make


@pytest.fixture
def chat_reply() -> Callable[[str], httpx.Response]:
    def _reply(content: str) -> httpx.Response:
        return httpx.Response(
            200,
            json={"choices": [{"message": {"role": "assistant", "content": content}}]},
        )

    return _reply


@pytest.fixture
def image_reply() -> Callable[[str], httpx.Response]:
    def _reply(url: str) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"url": url}]})

    return _reply
