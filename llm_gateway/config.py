"""
Gateway configuration.

Connection settings for the OpenAI-compatible gateway plus the retry
policies applied to each endpoint. Values come from the environment or from
a workflow context's secret store.
"""
import math
import os
from typing import Dict, Optional

import structlog
from pydantic import BaseModel, Field, field_validator

logger = structlog.get_logger()


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_CHAT_MODEL = "claude"
DEFAULT_IMAGE_MODEL = "nano-banana-2-2k"
DEFAULT_IMAGE_SIZE = "1024x1024"

DEFAULT_CHAT_TIMEOUT = 30.0
DEFAULT_IMAGE_TIMEOUT = 60.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 30.0

# Per use-case model ids (overridable via PLATO_MODEL_<USE_CASE>)
USE_CASE_MODELS: Dict[str, str] = {
    "analyze": "gemini-2.5-flash",
    "title": "gemini-2.5-flash",
    "category": "gemini-2.5-flash",
    "social_prompt": "gemini-2.5-flash",
    "insights": "gemini-3-pro-preview",
    "image": DEFAULT_IMAGE_MODEL,
}


class RetryPolicy(BaseModel):
    """
    Retry/backoff policy for one endpoint.

    max_retries counts additional attempts after the first one, so a policy
    with max_retries=2 makes at most 3 network calls.
    """
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    base_delay: float = Field(
        default=DEFAULT_RETRY_DELAY,
        ge=0,
        description="Seconds to wait before a retry when the server sends no Retry-After",
    )
    timeout: float = Field(
        default=DEFAULT_CHAT_TIMEOUT,
        gt=0,
        description="Seconds allowed for a single attempt",
    )
    max_delay: float = Field(
        default=MAX_RETRY_DELAY,
        ge=0,
        description="Upper bound applied to server-provided Retry-After values",
    )

    model_config = {"frozen": True}


class GatewaySettings(BaseModel):
    """Connection settings for the chat and image endpoints."""
    base_url: str = ""
    api_key: str = ""
    default_model: str = DEFAULT_CHAT_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    image_size: str = DEFAULT_IMAGE_SIZE
    chat_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    image_policy: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(timeout=DEFAULT_IMAGE_TIMEOUT)
    )
    models: Dict[str, str] = Field(default_factory=lambda: dict(USE_CASE_MODELS))

    @field_validator("base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v):
        """Normalize base URL so paths can be appended with a single slash."""
        if v is None:
            return ""
        return str(v).strip().rstrip("/")

    @field_validator("api_key", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else str(v).strip()

    @property
    def is_configured(self) -> bool:
        """True when both the endpoint and the credential are present."""
        return bool(self.base_url and self.api_key)

    def model_for(self, use_case: str) -> str:
        """Model id for a use case, falling back to the default chat model."""
        return self.models.get(use_case) or self.default_model

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        """Load settings from environment variables."""
        return load_settings(os.environ.get)


def _float_or(value: Optional[str], default: float, positive: bool = False) -> float:
    """Parse a numeric secret. Non-finite values (and <= 0 when positive) use default."""
    if not value:
        return default
    try:
        number = float(value)
    except ValueError:
        number = None
    if number is None or not math.isfinite(number) or (positive and number <= 0):
        logger.warning("gateway_config_invalid_number", value=value, default=default)
        return default
    return number


def load_settings(get_secret) -> GatewaySettings:
    """
    Build GatewaySettings from a secret lookup function.

    Args:
        get_secret: Callable returning the value for a name, or None.
            os.environ.get and a workflow ctx.get_secret both fit.

    Returns:
        GatewaySettings. Missing URL or key is logged, never raised.
    """
    max_retries = max(0, int(_float_or(get_secret("PLATO_MAX_RETRIES"), DEFAULT_MAX_RETRIES)))

    models = dict(USE_CASE_MODELS)
    for use_case in models:
        override = get_secret(f"PLATO_MODEL_{use_case.upper()}")
        if override:
            models[use_case] = override

    image_model = get_secret("PLATO_IMAGE_MODEL") or models["image"]
    models["image"] = image_model

    settings = GatewaySettings(
        base_url=get_secret("PLATO_BASE_URL") or "",
        api_key=get_secret("PLATO_API_KEY") or "",
        default_model=get_secret("PLATO_DEFAULT_MODEL") or DEFAULT_CHAT_MODEL,
        image_model=image_model,
        image_size=get_secret("PLATO_IMAGE_SIZE") or DEFAULT_IMAGE_SIZE,
        chat_policy=RetryPolicy(
            max_retries=max_retries,
            timeout=_float_or(get_secret("PLATO_TIMEOUT_SECONDS"), DEFAULT_CHAT_TIMEOUT, positive=True),
        ),
        image_policy=RetryPolicy(
            max_retries=max_retries,
            timeout=_float_or(get_secret("PLATO_IMAGE_TIMEOUT_SECONDS"), DEFAULT_IMAGE_TIMEOUT, positive=True),
        ),
        models=models,
    )

    if not settings.base_url:
        logger.warning("gateway_base_url_missing", env="PLATO_BASE_URL")
    if not settings.api_key:
        logger.warning("gateway_api_key_missing", env="PLATO_API_KEY")

    return settings
