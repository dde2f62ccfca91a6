"""
Wire models for the OpenAI-compatible chat and image endpoints.
"""
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class TextPart(BaseModel):
    """Plain text content part."""
    type: Literal["text"] = "text"
    text: str


class ImageURL(BaseModel):
    url: str = Field(description="http(s) URL or data URI")


class ImagePart(BaseModel):
    """Image content part (URL or data URI)."""
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL

    @classmethod
    def from_url(cls, url: str) -> "ImagePart":
        return cls(image_url=ImageURL(url=url))


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


class Message(BaseModel):
    """Single chat message. Content is a string or a list of parts (multimodal)."""
    role: Literal["system", "user", "assistant"]
    content: Union[str, List[ContentPart]]

    model_config = {"frozen": True}


class ChatRequest(BaseModel):
    """Chat completion request. Immutable once built."""
    model: str
    messages: List[Message]
    temperature: float = 0.7
    max_tokens: Optional[int] = None

    model_config = {"frozen": True}

    def to_payload(self) -> dict:
        """Request body; max_tokens is omitted when unset."""
        return self.model_dump(exclude_none=True)


class ImageRequest(BaseModel):
    """Image generation request. Always asks for a URL response."""
    model: str
    prompt: str
    size: str = "1024x1024"
    response_format: Literal["url"] = "url"

    model_config = {"frozen": True}

    def to_payload(self) -> dict:
        return self.model_dump()
