"""
Pydantic schemas for workflow node inputs and outputs.

These provide type safety and validation for all node functions,
similar to LangGraph's typed state approach.
"""
import enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# DOMAIN ENUMS
# =============================================================================

class NoteType(str, enum.Enum):
    """Kind of captured note."""
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    MIXED = "MIXED"
    STACK = "STACK"


class StackCategory(str, enum.Enum):
    """Closed set of stack categories. GENERAL is the catch-all."""
    TECH = "TECH"
    LIFE = "LIFE"
    WISDOM = "WISDOM"
    GENERAL = "GENERAL"


class InsightPlatform(str, enum.Enum):
    """Target surface for generated copy."""
    NEWSLETTER = "NEWSLETTER"
    SOCIAL_MEDIA = "SOCIAL_MEDIA"


class PlaceholderStatus(str, enum.Enum):
    """Resolution state of one placeholder prompt."""
    PENDING = "pending"
    LOADING = "loading"
    RESOLVED = "resolved"
    FAILED = "failed"


# =============================================================================
# LLM CONFIGURATION (Shared across all LLM nodes)
# =============================================================================

class LLMConfig(BaseModel):
    """
    Per-node model override.

    Resolution order (first non-None wins):
    1. Node params (this object)
    2. Secrets (PLATO_MODEL_<USE_CASE>)
    3. Built-in per use-case defaults

    Example workflow usage:
        params:
          llm_config:
            model: "gemini-2.5-flash"
            temperature: 0
    """
    model: Optional[str] = Field(
        default=None,
        description="Gateway model id (e.g., 'gemini-2.5-flash', 'claude')"
    )
    temperature: Optional[float] = Field(
        default=None,
        ge=0,
        le=2,
        description="Temperature for LLM sampling (0=deterministic, 1=default, 2=max creativity)"
    )


class ImageConfig(BaseModel):
    """Image generation override."""
    model: Optional[str] = Field(default=None, description="Gateway image model id")
    size: Optional[str] = Field(default=None, description="e.g. '1024x1024', '1024x576'")


# =============================================================================
# NOTE MODELS
# =============================================================================

class AnalysisResult(BaseModel):
    """Tags extracted from a single note."""
    category: str
    tags: List[str] = Field(default_factory=list)
    sentiment: str

    @field_validator("tags", mode="before")
    @classmethod
    def ensure_list(cls, v):
        """Models sometimes return a comma separated string instead of a list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.replace("，", ",").split(",") if t.strip()]
        return v


class Note(BaseModel):
    """A captured note, or a stack of notes when type is STACK."""
    id: str = ""
    content: str = ""
    image_base64: Optional[str] = None
    type: NoteType = NoteType.TEXT
    analysis: Optional[AnalysisResult] = None
    title: Optional[str] = None
    stack_items: List["Note"] = Field(default_factory=list)
    stack_category: Optional[StackCategory] = None


# =============================================================================
# ANALYSIS SCHEMAS
# =============================================================================

class AnalyzeNoteInput(BaseModel):
    """Input for analyze_note_content node."""
    text: str = ""
    image_base64: Optional[str] = Field(
        default=None,
        description="Raw base64 or a data URI; re-wrapped as image/jpeg"
    )
    llm_config: Optional[LLMConfig] = None


class AnalyzeNoteOutput(BaseModel):
    """Output from analyze_note_content node."""
    analysis: AnalysisResult
    status: str = "success"
    reason: Optional[str] = None


# =============================================================================
# STACK SCHEMAS
# =============================================================================

class StackNotesInput(BaseModel):
    """Input for nodes that work on a list of notes (title, category)."""
    notes: List[Note] = Field(default_factory=list)
    llm_config: Optional[LLMConfig] = None


class StackTitleOutput(BaseModel):
    """Output from generate_stack_title node."""
    title: str
    status: str = "success"
    reason: Optional[str] = None


class StackCategoryOutput(BaseModel):
    """Output from determine_stack_category node."""
    category: StackCategory = StackCategory.GENERAL
    status: str = "success"
    reason: Optional[str] = None


# =============================================================================
# INSIGHT SCHEMAS
# =============================================================================

class GenerateInsightsInput(BaseModel):
    """Input for generate_insights node."""
    notes: List[Note] = Field(default_factory=list)
    platform: InsightPlatform = InsightPlatform.NEWSLETTER
    category: StackCategory = StackCategory.GENERAL
    llm_config: Optional[LLMConfig] = None
    max_tokens: Optional[int] = None


class GenerateInsightsOutput(BaseModel):
    """Output from generate_insights node."""
    content: str = ""
    platform: InsightPlatform = InsightPlatform.NEWSLETTER
    category: StackCategory = StackCategory.GENERAL
    status: str = "success"
    reason: Optional[str] = None


# =============================================================================
# IMAGE SCHEMAS
# =============================================================================

class InContextImageInput(BaseModel):
    """Input for generate_in_context_image node."""
    prompt: str = ""
    image_config: Optional[ImageConfig] = None


class SocialImageInput(BaseModel):
    """Input for generate_social_image node."""
    context_text: str = ""
    llm_config: Optional[LLMConfig] = None
    image_config: Optional[ImageConfig] = None


class CoverImageInput(BaseModel):
    """Input for generate_cover_image node."""
    title: str = ""
    image_config: Optional[ImageConfig] = None


class GenerateImageOutput(BaseModel):
    """Output from image nodes."""
    image_url: Optional[str] = None
    prompt_used: str = ""
    status: str = "success"
    reason: Optional[str] = None


# =============================================================================
# PLACEHOLDER SCHEMAS
# =============================================================================

class PlaceholderState(BaseModel):
    """
    State of one placeholder prompt.

    Entries are replaced, never mutated: each transition produces a new
    instance.
    """
    status: PlaceholderStatus = PlaceholderStatus.PENDING
    url: Optional[str] = None
    error: Optional[str] = None

    model_config = {"frozen": True}


class ResolveDocumentImagesInput(BaseModel):
    """Input for resolve_document_images node."""
    document: str = ""
    image_config: Optional[ImageConfig] = None


class ResolveDocumentImagesOutput(BaseModel):
    """Output from resolve_document_images node."""
    materialized: str = ""
    placeholders: Dict[str, PlaceholderState] = Field(default_factory=dict)
    total_resolved: int = 0
    total_failed: int = 0
    status: str = "success"
    reason: Optional[str] = None


class IllustratedInsightsOutput(BaseModel):
    """Output from generate_illustrated_insights node."""
    content: str = Field(default="", description="Raw document with placeholder tokens")
    materialized: str = Field(default="", description="Document with placeholders replaced")
    placeholders: Dict[str, PlaceholderState] = Field(default_factory=dict)
    status: str = "success"
    reason: Optional[str] = None
