"""
Gateway client, decoding and configuration shared by the workflow nodes.
"""
from .client import GatewayClient, create_client, is_retryable_status, retry_delay
from .config import GatewaySettings, RetryPolicy, load_settings
from .decoder import EMPTY_RESPONSE, decode_model, extract_image_url, extract_json, extract_text
from .errors import (
    ConfigurationMissingError,
    GatewayConnectionError,
    GatewayError,
    GatewayTimeoutError,
    ResponseFormatError,
    RetriesExhaustedError,
    UnexpectedStatusError,
)
from .models import ChatRequest, ImagePart, ImageRequest, Message, TextPart

__all__ = [
    "GatewayClient",
    "create_client",
    "is_retryable_status",
    "retry_delay",
    "GatewaySettings",
    "RetryPolicy",
    "load_settings",
    "EMPTY_RESPONSE",
    "decode_model",
    "extract_image_url",
    "extract_json",
    "extract_text",
    "ConfigurationMissingError",
    "GatewayConnectionError",
    "GatewayError",
    "GatewayTimeoutError",
    "ResponseFormatError",
    "RetriesExhaustedError",
    "UnexpectedStatusError",
    "ChatRequest",
    "ImagePart",
    "ImageRequest",
    "Message",
    "TextPart",
]
