"""
Async client for an OpenAI-compatible chat/image gateway.

Both endpoints share the request envelope and retry behaviour:
- Bearer auth, JSON bodies
- Per-attempt timeout; an expired attempt is cancelled and reported as a timeout
- 429 and 5xx are retried up to RetryPolicy.max_retries times, waiting for the
  server's Retry-After when present, otherwise the policy's base delay
- Everything else is terminal

The client performs no caching: one network call per attempt.
"""
import asyncio
import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog

from .config import GatewaySettings, RetryPolicy
from .decoder import extract_image_url, extract_text
from .errors import (
    ConfigurationMissingError,
    GatewayConnectionError,
    GatewayError,
    GatewayTimeoutError,
    ResponseFormatError,
    RetriesExhaustedError,
    UnexpectedStatusError,
)
from .models import ChatRequest, ImageRequest, Message

logger = structlog.get_logger()

CHAT_PATH = "/chat/completions"
IMAGES_PATH = "/images/generations"


# =============================================================================
# RETRY POLICY HELPERS
# =============================================================================

def is_retryable_status(status_code: int) -> bool:
    """Rate limiting and server errors are worth another attempt."""
    return status_code == 429 or 500 <= status_code < 600


def retry_delay(
    policy: RetryPolicy,
    retry_after: Optional[str],
    now: Optional[datetime] = None,
) -> float:
    """
    Seconds to wait before the next attempt.

    Retry-After may be delta-seconds or an HTTP-date. The parsed value is
    clamped to [0, policy.max_delay]; an absent or unparseable header falls
    back to policy.base_delay.
    """
    if not retry_after:
        return policy.base_delay

    value = retry_after.strip()
    seconds: Optional[float]
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            when = None
        if when is None:
            seconds = None
        else:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            seconds = (when - (now or datetime.now(timezone.utc))).total_seconds()

    if seconds is None or math.isnan(seconds):
        return policy.base_delay
    return min(max(seconds, 0.0), policy.max_delay)


# =============================================================================
# CLIENT
# =============================================================================

class GatewayClient:
    """
    Client for the chat completion and image generation endpoints.

    Pass an existing httpx.AsyncClient to share a connection pool (or a test
    transport); otherwise the client owns one and closes it in close().
    """

    def __init__(
        self,
        settings: GatewaySettings,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Endpoint, credential, models and retry policies
            client: Optional httpx client to reuse
            sleep: Coroutine used to wait between retries (defaults to asyncio.sleep)
            extra_headers: Headers added to every request
        """
        self.settings = settings
        self._sleep = sleep or asyncio.sleep
        self._extra_headers = dict(extra_headers or {})
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def is_configured(self) -> bool:
        return self.settings.is_configured

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
            self._owns_client = True
        return self._client

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _require_configuration(self) -> None:
        if not self.settings.base_url:
            raise ConfigurationMissingError("PLATO_BASE_URL")
        if not self.settings.api_key:
            raise ConfigurationMissingError("PLATO_API_KEY")

    def _headers(self, extra_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(self._extra_headers)
        if extra_headers:
            headers.update(extra_headers)
        return headers

    async def _send_once(
        self,
        url: str,
        payload: dict,
        headers: Dict[str, str],
        policy: RetryPolicy,
    ) -> httpx.Response:
        """One attempt, bounded by the policy timeout."""
        client = await self._get_client()
        try:
            return await asyncio.wait_for(
                client.post(url, json=payload, headers=headers, timeout=policy.timeout),
                timeout=policy.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning("gateway_timeout", url=url, timeout=policy.timeout)
            raise GatewayTimeoutError(url, policy.timeout) from e
        except httpx.TransportError as e:
            logger.warning("gateway_connection_failed", url=url, error=str(e))
            raise GatewayConnectionError(f"Could not reach {url}: {e}") from e

    async def post_json(
        self,
        path: str,
        payload: dict,
        policy: RetryPolicy,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> dict:
        """
        POST a JSON body with timeout and retry handling.

        Args:
            path: Endpoint path appended to the base URL (e.g. "/chat/completions")
            payload: JSON request body
            policy: Retry/timeout policy for this endpoint
            extra_headers: Optional per-call headers

        Returns:
            Decoded JSON body of the successful response

        Raises:
            ConfigurationMissingError: base URL or key missing (no call made)
            GatewayTimeoutError: an attempt exceeded policy.timeout
            GatewayConnectionError: the gateway could not be reached
            RetriesExhaustedError: 429/5xx persisted past max_retries
            UnexpectedStatusError: any other non-2xx status
            ResponseFormatError: 2xx body that is not JSON
        """
        self._require_configuration()

        url = f"{self.settings.base_url}{path}"
        headers = self._headers(extra_headers)

        for attempt in range(policy.max_retries + 1):
            response = await self._send_once(url, payload, headers, policy)
            status = response.status_code

            if 200 <= status < 300:
                try:
                    data = response.json()
                except ValueError as e:
                    logger.error("gateway_invalid_json", url=url, body_preview=response.text[:200])
                    raise ResponseFormatError(f"Non-JSON response from {url}") from e
                logger.debug("gateway_response", path=path, status=status, attempts=attempt + 1)
                return data

            if not is_retryable_status(status):
                logger.error("gateway_http_error", path=path, status=status, body_preview=response.text[:200])
                raise UnexpectedStatusError(status, response.text, response.reason_phrase)

            if attempt < policy.max_retries:
                delay = retry_delay(policy, response.headers.get("retry-after"))
                logger.warning(
                    "gateway_retrying",
                    path=path,
                    status=status,
                    attempt=attempt + 1,
                    max_retries=policy.max_retries,
                    wait_time=delay,
                )
                await self._sleep(delay)
                continue

            logger.error(
                "gateway_retries_exhausted",
                path=path,
                status=status,
                attempts=attempt + 1,
            )
            raise RetriesExhaustedError(status, response.text, attempt + 1, response.reason_phrase)

        # Should never reach here, but just in case
        raise GatewayError(f"Request to {url} failed after all retries")

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    async def chat_completion(
        self,
        request: ChatRequest,
        policy: Optional[RetryPolicy] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> dict:
        """Send a chat request and return the raw response envelope."""
        logger.info(
            "calling_gateway_chat",
            model=request.model,
            message_count=len(request.messages),
            temperature=request.temperature,
        )
        return await self.post_json(
            CHAT_PATH,
            request.to_payload(),
            policy or self.settings.chat_policy,
            extra_headers,
        )

    async def chat(
        self,
        messages: List[Message],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        policy: Optional[RetryPolicy] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Send messages and return the assistant text.

        Returns EMPTY_RESPONSE when the reply has no content. Transport
        failures raise GatewayError subclasses.
        """
        request = ChatRequest(
            model=model or self.settings.default_model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        envelope = await self.chat_completion(request, policy, extra_headers)
        text = extract_text(envelope)
        logger.info("gateway_chat_response", model=request.model, content_len=len(text), content_preview=text[:200])
        return text

    async def run_model(
        self,
        model: str,
        content: str,
        system: Optional[str] = None,
        **options,
    ) -> str:
        """Convenience: call a specific model with an optional system prompt."""
        messages: List[Message] = []
        if system:
            messages.append(Message(role="system", content=system))
        messages.append(Message(role="user", content=content))
        return await self.chat(messages, model=model, **options)

    async def ping(self) -> str:
        """Health check: one-word chat at temperature 0."""
        return await self.chat([Message(role="user", content="ping")], temperature=0)

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    async def generate_image(
        self,
        prompt: str,
        model: Optional[str] = None,
        size: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> Optional[str]:
        """
        Generate one image and return its URL.

        Returns None when the gateway answers without a URL. Transport
        failures raise GatewayError subclasses.
        """
        request = ImageRequest(
            model=model or self.settings.image_model,
            prompt=prompt,
            size=size or self.settings.image_size,
        )
        logger.info("calling_gateway_image", model=request.model, size=request.size, prompt=prompt[:50])
        envelope = await self.post_json(
            IMAGES_PATH,
            request.to_payload(),
            policy or self.settings.image_policy,
        )
        url = extract_image_url(envelope)
        if not url:
            logger.warning("gateway_image_missing_url", model=request.model, prompt=prompt[:50])
        return url


def create_client(
    settings: Optional[GatewaySettings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> GatewayClient:
    """Create a GatewayClient from explicit settings or the environment."""
    return GatewayClient(settings or GatewaySettings.from_env(), client=client)
