"""
Response decoding for gateway replies.

Model replies are untyped text. Everything here is best-effort and never
raises: failures surface as the EMPTY_RESPONSE sentinel, None, or the
caller-supplied fallback.
"""
import json
import re
from typing import Any, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

logger = structlog.get_logger()

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

EMPTY_RESPONSE = "（空响应）"

_MISSING = object()

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


# =============================================================================
# ENVELOPE EXTRACTION
# =============================================================================

def extract_text(envelope: Any) -> str:
    """
    Return the first choice's message content from a chat completion envelope.

    Returns EMPTY_RESPONSE when choices are missing, the content is empty,
    or the envelope only carries an error object.
    """
    if not isinstance(envelope, dict):
        return EMPTY_RESPONSE

    error = envelope.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        logger.warning("chat_envelope_error", message=str(message)[:200])

    choices = envelope.get("choices")
    if not isinstance(choices, list) or not choices:
        return EMPTY_RESPONSE

    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None

    # Some providers return multimodal replies as a list of parts
    if isinstance(content, list):
        content = "".join(
            part["text"]
            for part in content
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str)
        )

    if not isinstance(content, str) or not content:
        return EMPTY_RESPONSE
    return content


def extract_image_url(envelope: Any) -> Optional[str]:
    """Return data[0].url from an image generation envelope, or None."""
    if not isinstance(envelope, dict):
        return None
    data = envelope.get("data")
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return None
    url = data[0].get("url")
    return url if isinstance(url, str) and url else None


# =============================================================================
# JSON EXTRACTION
# =============================================================================

def _first_balanced_object(text: str) -> Optional[str]:
    """Find the first balanced {...} span, ignoring braces inside JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this opening brace; try the next one
        start = text.find("{", start + 1)
    return None


def _try_parse(candidate: Optional[str]) -> Any:
    if candidate is None:
        return _MISSING
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, TypeError, ValueError):
        return _MISSING


def extract_json(text: Any, fallback: T = None) -> Any:
    """
    Best-effort JSON extraction from free-form model text.

    Strategies, first success wins:
    1. Content of the first fenced code block (```json or bare ```)
    2. The trimmed whole string, if it starts with { or [
    3. The first balanced {...} span anywhere in the string

    Returns:
        Parsed JSON value, or fallback unchanged if nothing parses.
    """
    if not isinstance(text, str) or not text:
        return fallback

    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        parsed = _try_parse(fenced.group(1).strip())
        if parsed is not _MISSING:
            return parsed

    trimmed = text.strip()
    if trimmed.startswith("{") or trimmed.startswith("["):
        parsed = _try_parse(trimmed)
        if parsed is not _MISSING:
            return parsed

    parsed = _try_parse(_first_balanced_object(text))
    if parsed is not _MISSING:
        return parsed

    logger.debug("json_extraction_fell_back", text_preview=text[:200])
    return fallback


def decode_model(text: Any, response_model: Type[M], fallback: M) -> M:
    """
    Extract JSON from text and validate it against a Pydantic model.

    Any extraction or validation failure returns fallback.
    """
    data = extract_json(text, None)
    if data is None:
        return fallback
    try:
        return response_model.model_validate(data)
    except ValidationError as e:
        logger.info(
            "json_validation_fell_back",
            model=response_model.__name__,
            error=str(e)[:200],
        )
        return fallback
