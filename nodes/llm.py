"""
LLM node functions for note insights.

These workflow nodes sequence gateway calls for one user-facing operation:
- analyze_note_content: category/tags/sentiment for a single note (text and/or image)
- generate_stack_title: short title for a stack of notes
- determine_stack_category: TECH / LIFE / WISDOM / GENERAL classification
- generate_insights: long-form or social copy from a stack
- generate_in_context_image / generate_social_image / generate_cover_image
- resolve_document_images: replace {{GEN_IMG: ...}} placeholders with images
- generate_illustrated_insights: generate_insights + resolve_document_images

Nodes never raise. Missing configuration, transport errors and undecodable
replies all produce the node's documented fallback value.
"""
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Tuple

import structlog

from llm_gateway import (
    EMPTY_RESPONSE,
    ConfigurationMissingError,
    GatewayClient,
    ImagePart,
    Message,
    TextPart,
    decode_model,
    load_settings,
)

from .placeholders import PlaceholderResolver, find_placeholder_prompts, materialize
from .prompts import (
    ANALYZE_SYSTEM_PROMPT,
    TITLE_SYSTEM_PROMPT,
    CATEGORY_SYSTEM_PROMPT,
    INSIGHT_LAYOUT_RULES,
    INSIGHT_STYLES,
    SOCIAL_SYSTEM_PROMPT,
    INSIGHT_USER_TEMPLATE,
    INLINE_IMAGE_STYLE,
    SOCIAL_IMAGE_PROMPT_SYSTEM,
    SOCIAL_IMAGE_PROMPT_TEMPLATE,
    SOCIAL_IMAGE_DEFAULT_PROMPT,
    COVER_IMAGE_PROMPT_TEMPLATE,
)
from .schemas import (
    LLMConfig, ImageConfig,
    AnalysisResult, Note, NoteType, StackCategory, InsightPlatform, PlaceholderState, PlaceholderStatus,
    AnalyzeNoteInput, AnalyzeNoteOutput,
    StackNotesInput, StackTitleOutput, StackCategoryOutput,
    GenerateInsightsInput, GenerateInsightsOutput,
    InContextImageInput, SocialImageInput, CoverImageInput, GenerateImageOutput,
    ResolveDocumentImagesInput, ResolveDocumentImagesOutput,
    IllustratedInsightsOutput,
)

logger = structlog.get_logger()


# =============================================================================
# FALLBACK VALUES
# =============================================================================

EMPTY_NOTE_ANALYSIS = {"category": "未分类", "tags": ["待处理"], "sentiment": "中性"}
FALLBACK_ANALYSIS = {"category": "常规", "tags": ["人工复核"], "sentiment": "中性"}

EMPTY_STACK_TITLE = "未命名卡片组"
FALLBACK_STACK_TITLE = "新的笔记组"
MAX_TITLE_LENGTH = 20
TITLE_NOTE_LIMIT = 5

NO_NOTES_INSIGHT = "没有可用的笔记进行分析。"
FALLBACK_INSIGHT = "无法生成洞察。"

# Checked in order; first keyword found in the reply wins
CATEGORY_KEYWORDS = (
    ("TECH", StackCategory.TECH),
    ("LIFE", StackCategory.LIFE),
    ("WISDOM", StackCategory.WISDOM),
)

# Per use-case default temperatures
TEMPERATURES = {
    "analyze": 0.0,
    "title": 0.5,
    "category": 0.0,
    "insights": 0.7,
    "social_prompt": 0.7,
}

IN_CONTEXT_IMAGE_SIZE = "1024x576"
COVER_IMAGE_SIZE = "1024x576"
SOCIAL_IMAGE_SIZE = "1024x1024"
SOCIAL_CONTEXT_CHARS = 500


# =============================================================================
# CONTEXT HELPERS
# =============================================================================

@asynccontextmanager
async def _gateway(ctx) -> AsyncIterator[GatewayClient]:
    """
    Yield the gateway client for this node call.

    Uses ctx.gateway when the context provides one, otherwise builds a client
    from ctx secrets and closes it afterwards.
    """
    shared = getattr(ctx, "gateway", None)
    if shared is not None:
        yield shared
        return

    client = GatewayClient(load_settings(ctx.get_secret))
    try:
        yield client
    finally:
        await client.close()


def _get_config_text(ctx, key: str, default: str) -> str:
    """
    Read a text config value. Dict values use their "text" field.

    None means "not configured" and returns default; an empty string is kept.
    """
    value = ctx.get_config(key)
    if value is None:
        return default
    if isinstance(value, dict):
        return str(value.get("text", default))
    return str(value)


def _resolve_model(gateway: GatewayClient, use_case: str, llm_config: Optional[LLMConfig]) -> str:
    if llm_config and llm_config.model:
        return llm_config.model
    return gateway.settings.model_for(use_case)


def _resolve_temperature(use_case: str, llm_config: Optional[LLMConfig]) -> float:
    # Temperature can be 0, so check for None explicitly
    if llm_config and llm_config.temperature is not None:
        return llm_config.temperature
    return TEMPERATURES.get(use_case, 0.7)


async def _safe_chat(
    gateway: GatewayClient,
    node_name: str,
    messages: List[Message],
    model: str,
    temperature: float,
    max_tokens: Optional[int] = None,
) -> Tuple[Optional[str], str, Optional[str]]:
    """
    Call the chat endpoint without raising.

    Returns:
        (reply, status, reason). reply is None when the call failed or the
        model returned nothing; status is "success", "skipped" or "fallback".
    """
    try:
        reply = await gateway.chat(messages, model=model, temperature=temperature, max_tokens=max_tokens)
    except ConfigurationMissingError as e:
        logger.warning("node_chat_skipped", node=node_name, reason="not_configured", missing=e.missing)
        return None, "skipped", "not_configured"
    except Exception as e:
        logger.error("node_chat_failed", node=node_name, model=model, error=str(e))
        return None, "fallback", str(e)

    if not reply or reply == EMPTY_RESPONSE:
        logger.warning("node_chat_empty_response", node=node_name, model=model)
        return None, "fallback", "empty_response"
    return reply, "success", None


async def _safe_image(
    gateway: GatewayClient,
    node_name: str,
    prompt: str,
    image_config: Optional[ImageConfig],
    default_size: str,
) -> GenerateImageOutput:
    """Call the image endpoint without raising."""
    model = (image_config.model if image_config else None) or gateway.settings.model_for("image")
    size = (image_config.size if image_config else None) or default_size

    try:
        image_url = await gateway.generate_image(prompt, model=model, size=size)
    except ConfigurationMissingError:
        logger.warning("node_image_skipped", node=node_name, reason="not_configured")
        return GenerateImageOutput(prompt_used=prompt, status="skipped", reason="not_configured")
    except Exception as e:
        logger.error("node_image_failed", node=node_name, model=model, error=str(e))
        return GenerateImageOutput(prompt_used=prompt, status="error", reason=str(e))

    if not image_url:
        return GenerateImageOutput(prompt_used=prompt, status="error", reason="empty_result")

    logger.info("node_image_generated", node=node_name, model=model, size=size, prompt=prompt[:50])
    return GenerateImageOutput(image_url=image_url, prompt_used=prompt, status="success")


def _image_report(result: GenerateImageOutput) -> dict:
    url = result.image_url
    return {
        "image_url": url[:100] + "..." if url and len(url) > 100 else url,
        "status": result.status,
        "reason": result.reason,
    }


# =============================================================================
# NOTE HELPERS
# =============================================================================

def to_jpeg_data_uri(image_base64: str) -> str:
    """Strip any data URI prefix and re-wrap the payload as image/jpeg."""
    payload = image_base64.split(",", 1)[1] if "," in image_base64 else image_base64
    return f"data:image/jpeg;base64,{payload}"


def flatten_notes(notes: List[Note]) -> List[Note]:
    """Expand STACK notes into their items (one level, like the UI)."""
    flat: List[Note] = []
    for note in notes:
        if note.type == NoteType.STACK and note.stack_items:
            flat.extend(note.stack_items)
        else:
            flat.append(note)
    return flat


def build_notes_context(notes: List[Note]) -> str:
    """Render notes with their tags as the user message body."""
    blocks = []
    for note in notes:
        tags = note.analysis.tags if note.analysis else []
        blocks.append(f"---\n内容: {note.content}\n标签: {', '.join(tags)}\n---")
    return "\n".join(blocks)


def clean_title(reply: str) -> str:
    """Remove all whitespace and cap the title length."""
    return re.sub(r"\s+", "", reply)[:MAX_TITLE_LENGTH]


def match_category(reply: str) -> StackCategory:
    """Substring match of the reply against the category keywords."""
    upper = (reply or "").upper()
    for keyword, category in CATEGORY_KEYWORDS:
        if keyword in upper:
            return category
    return StackCategory.GENERAL


def insight_system_prompt(ctx, platform: InsightPlatform, category: StackCategory) -> str:
    """System instructions for insight generation, taken from style config."""
    if platform == InsightPlatform.SOCIAL_MEDIA:
        return _get_config_text(ctx, "social_style", SOCIAL_SYSTEM_PROMPT)

    layout_rules = _get_config_text(ctx, "insight_layout_rules", INSIGHT_LAYOUT_RULES)
    style = _get_config_text(
        ctx,
        f"insight_style_{category.value.lower()}",
        INSIGHT_STYLES.get(category.value, INSIGHT_STYLES["GENERAL"]),
    )
    return f"{layout_rules}\n{style}"


def compose_inline_prompt(ctx, prompt: str) -> str:
    """Append the configured inline image style to a placeholder prompt."""
    return prompt + _get_config_text(ctx, "inline_image_style", INLINE_IMAGE_STYLE)


# =============================================================================
# NOTE ANALYSIS
# =============================================================================

async def analyze_note_content(
    ctx,
    params: AnalyzeNoteInput,
) -> AnalyzeNoteOutput:
    """
    Extract category, tags and sentiment from a note.

    The image (if any) is sent as an image_url part before the text part.
    A note with neither text nor image returns the empty-note analysis
    without calling the gateway.
    """
    text = params.text or ""
    image_base64 = params.image_base64

    ctx.report_input({
        "text_length": len(text),
        "has_image": bool(image_base64),
    })

    if not text and not image_base64:
        analysis = AnalysisResult(**EMPTY_NOTE_ANALYSIS)
        ctx.report_output({"status": "skipped", "reason": "empty_note"})
        return AnalyzeNoteOutput(analysis=analysis, status="skipped", reason="empty_note")

    fallback = AnalysisResult(**FALLBACK_ANALYSIS)

    parts = []
    if image_base64:
        parts.append(ImagePart.from_url(to_jpeg_data_uri(image_base64)))
    if text:
        parts.append(TextPart(text=text))

    messages = [
        Message(role="system", content=_get_config_text(ctx, "analyze_system_prompt", ANALYZE_SYSTEM_PROMPT)),
        Message(role="user", content=parts),
    ]

    async with _gateway(ctx) as gateway:
        reply, status, reason = await _safe_chat(
            gateway,
            "analyze_note",
            messages,
            model=_resolve_model(gateway, "analyze", params.llm_config),
            temperature=_resolve_temperature("analyze", params.llm_config),
        )

    analysis = fallback
    if reply is not None:
        analysis = decode_model(reply, AnalysisResult, fallback)
        if analysis is fallback:
            status, reason = "fallback", "undecodable_reply"

    logger.info(
        "note_analyzed",
        category=analysis.category,
        tag_count=len(analysis.tags),
        status=status,
    )
    ctx.report_output({
        "category": analysis.category,
        "tags": analysis.tags,
        "sentiment": analysis.sentiment,
        "status": status,
        "reason": reason,
    })

    return AnalyzeNoteOutput(analysis=analysis, status=status, reason=reason)


# =============================================================================
# STACK NODES
# =============================================================================

async def generate_stack_title(
    ctx,
    params: StackNotesInput,
) -> StackTitleOutput:
    """Generate a short title from the first few notes of a stack."""
    notes = params.notes

    ctx.report_input({"note_count": len(notes)})

    if not notes:
        ctx.report_output({"title": EMPTY_STACK_TITLE, "status": "skipped", "reason": "no_notes"})
        return StackTitleOutput(title=EMPTY_STACK_TITLE, status="skipped", reason="no_notes")

    content_summary = "\n".join(n.content for n in notes[:TITLE_NOTE_LIMIT])
    messages = [
        Message(role="system", content=_get_config_text(ctx, "title_system_prompt", TITLE_SYSTEM_PROMPT)),
        Message(role="user", content=content_summary),
    ]

    async with _gateway(ctx) as gateway:
        reply, status, reason = await _safe_chat(
            gateway,
            "stack_title",
            messages,
            model=_resolve_model(gateway, "title", params.llm_config),
            temperature=_resolve_temperature("title", params.llm_config),
        )

    title = clean_title(reply) if reply else ""
    if not title:
        title = FALLBACK_STACK_TITLE
        if status == "success":
            status, reason = "fallback", "empty_title"

    ctx.report_output({"title": title, "status": status, "reason": reason})
    return StackTitleOutput(title=title, status=status, reason=reason)


async def determine_stack_category(
    ctx,
    params: StackNotesInput,
) -> StackCategoryOutput:
    """Classify a stack into one of the fixed categories."""
    notes = params.notes

    ctx.report_input({"note_count": len(notes)})

    if not notes:
        ctx.report_output({"category": StackCategory.GENERAL.value, "status": "skipped", "reason": "no_notes"})
        return StackCategoryOutput(category=StackCategory.GENERAL, status="skipped", reason="no_notes")

    content_summary = "\n---\n".join(n.content for n in notes)
    messages = [
        Message(role="system", content=_get_config_text(ctx, "category_system_prompt", CATEGORY_SYSTEM_PROMPT)),
        Message(role="user", content=content_summary),
    ]

    async with _gateway(ctx) as gateway:
        reply, status, reason = await _safe_chat(
            gateway,
            "stack_category",
            messages,
            model=_resolve_model(gateway, "category", params.llm_config),
            temperature=_resolve_temperature("category", params.llm_config),
        )

    category = match_category(reply) if reply else StackCategory.GENERAL

    logger.info("stack_categorized", category=category.value, status=status)
    ctx.report_output({"category": category.value, "status": status, "reason": reason})
    return StackCategoryOutput(category=category, status=status, reason=reason)


# =============================================================================
# INSIGHT GENERATION
# =============================================================================

async def generate_insights(
    ctx,
    params: GenerateInsightsInput,
) -> GenerateInsightsOutput:
    """
    Generate long-form (newsletter) or social copy from notes.

    Stacks are flattened into their notes. The system instructions are
    style configuration; newsletter styles may ask the model to emit
    {{GEN_IMG: ...}} placeholders, which resolve_document_images handles.
    """
    platform = params.platform
    category = params.category
    all_notes = flatten_notes(params.notes)

    ctx.report_input({
        "note_count": len(all_notes),
        "platform": platform.value,
        "category": category.value,
    })

    if not all_notes:
        ctx.report_output({"status": "skipped", "reason": "no_notes"})
        return GenerateInsightsOutput(
            content=NO_NOTES_INSIGHT,
            platform=platform,
            category=category,
            status="skipped",
            reason="no_notes",
        )

    messages = [
        Message(role="system", content=insight_system_prompt(ctx, platform, category)),
        Message(role="user", content=INSIGHT_USER_TEMPLATE.format(notes_context=build_notes_context(all_notes))),
    ]

    async with _gateway(ctx) as gateway:
        reply, status, reason = await _safe_chat(
            gateway,
            "generate_insights",
            messages,
            model=_resolve_model(gateway, "insights", params.llm_config),
            temperature=_resolve_temperature("insights", params.llm_config),
            max_tokens=params.max_tokens,
        )

    content = reply or FALLBACK_INSIGHT

    logger.info(
        "insights_generated",
        platform=platform.value,
        category=category.value,
        content_len=len(content),
        placeholder_count=len(find_placeholder_prompts(content)),
        status=status,
    )
    ctx.report_output({
        "content_preview": content[:500] + "..." if len(content) > 500 else content,
        "status": status,
        "reason": reason,
    })

    return GenerateInsightsOutput(
        content=content,
        platform=platform,
        category=category,
        status=status,
        reason=reason,
    )


# =============================================================================
# IMAGE NODES
# =============================================================================

async def generate_in_context_image(
    ctx,
    params: InContextImageInput,
) -> GenerateImageOutput:
    """Generate an inline illustration; the configured style suffix is appended."""
    prompt = (params.prompt or "").strip()

    ctx.report_input({"prompt": prompt[:200]})

    if not prompt:
        ctx.report_output({"status": "skipped", "reason": "empty_prompt"})
        return GenerateImageOutput(status="skipped", reason="empty_prompt")

    async with _gateway(ctx) as gateway:
        result = await _safe_image(
            gateway,
            "in_context_image",
            compose_inline_prompt(ctx, prompt),
            params.image_config,
            IN_CONTEXT_IMAGE_SIZE,
        )

    ctx.report_output(_image_report(result))
    return result


async def generate_social_image(
    ctx,
    params: SocialImageInput,
) -> GenerateImageOutput:
    """
    Illustration for social copy.

    Two steps: the chat model writes an English image prompt from the
    content, then the image model draws it. If the prompt step fails a
    generic abstract prompt is used instead.
    """
    context_text = params.context_text or ""

    ctx.report_input({"context_length": len(context_text)})

    if not context_text.strip():
        ctx.report_output({"status": "skipped", "reason": "empty_content"})
        return GenerateImageOutput(status="skipped", reason="empty_content")

    messages = [
        Message(role="system", content=SOCIAL_IMAGE_PROMPT_SYSTEM),
        Message(
            role="user",
            content=SOCIAL_IMAGE_PROMPT_TEMPLATE.format(context=context_text[:SOCIAL_CONTEXT_CHARS]),
        ),
    ]

    async with _gateway(ctx) as gateway:
        reply, status, _ = await _safe_chat(
            gateway,
            "social_image_prompt",
            messages,
            model=_resolve_model(gateway, "social_prompt", params.llm_config),
            temperature=_resolve_temperature("social_prompt", params.llm_config),
        )
        if status == "skipped":
            result = GenerateImageOutput(status="skipped", reason="not_configured")
        else:
            image_prompt = reply.strip() if reply else SOCIAL_IMAGE_DEFAULT_PROMPT
            result = await _safe_image(
                gateway,
                "social_image",
                image_prompt,
                params.image_config,
                SOCIAL_IMAGE_SIZE,
            )

    ctx.report_output(_image_report(result))
    return result


async def generate_cover_image(
    ctx,
    params: CoverImageInput,
) -> GenerateImageOutput:
    """Cover image for a post title."""
    title = (params.title or "").strip()

    ctx.report_input({"title": title})

    if not title:
        ctx.report_output({"status": "skipped", "reason": "empty_title"})
        return GenerateImageOutput(status="skipped", reason="empty_title")

    async with _gateway(ctx) as gateway:
        result = await _safe_image(
            gateway,
            "cover_image",
            COVER_IMAGE_PROMPT_TEMPLATE.format(title=title),
            params.image_config,
            COVER_IMAGE_SIZE,
        )

    ctx.report_output(_image_report(result))
    return result


# =============================================================================
# PLACEHOLDER RESOLUTION
# =============================================================================

async def resolve_document_images(
    ctx,
    params: ResolveDocumentImagesInput,
) -> ResolveDocumentImagesOutput:
    """
    Resolve every {{GEN_IMG: ...}} placeholder in a document.

    Each distinct prompt triggers one image request; requests run
    concurrently. Failed prompts render as an inline error marker and do
    not affect the others.
    """
    document = params.document or ""
    prompts = find_placeholder_prompts(document)

    ctx.report_input({
        "document_length": len(document),
        "placeholder_count": len(prompts),
    })

    if not prompts:
        ctx.report_output({"status": "success", "placeholder_count": 0})
        return ResolveDocumentImagesOutput(materialized=document, status="success")

    image_config = params.image_config

    async with _gateway(ctx) as gateway:
        if not gateway.is_configured:
            logger.warning("resolve_document_images_skipped", reason="not_configured", placeholder_count=len(prompts))
            states = {
                prompt: PlaceholderState(status=PlaceholderStatus.FAILED, error="not_configured")
                for prompt in prompts
            }
            ctx.report_output({"status": "skipped", "reason": "not_configured", "total_failed": len(prompts)})
            return ResolveDocumentImagesOutput(
                materialized=materialize(document, states),
                placeholders=states,
                total_failed=len(prompts),
                status="skipped",
                reason="not_configured",
            )

        model = (image_config.model if image_config else None) or gateway.settings.model_for("image")
        size = (image_config.size if image_config else None) or IN_CONTEXT_IMAGE_SIZE

        async def generate(prompt: str) -> Optional[str]:
            return await gateway.generate_image(compose_inline_prompt(ctx, prompt), model=model, size=size)

        resolver = PlaceholderResolver(generate)
        resolver.scan(document)
        try:
            await resolver.wait()
        finally:
            await resolver.close()

    states = resolver.states
    materialized = resolver.render(document)
    total_resolved = sum(1 for s in states.values() if s.status == PlaceholderStatus.RESOLVED)
    total_failed = len(states) - total_resolved

    if total_failed == 0:
        status = "success"
    elif total_resolved:
        status = "partial"
    else:
        status = "error"

    logger.info(
        "document_images_resolved",
        total_resolved=total_resolved,
        total_failed=total_failed,
    )
    ctx.report_output({
        "total_resolved": total_resolved,
        "total_failed": total_failed,
        "failed_prompts": [p for p, s in states.items() if s.status == PlaceholderStatus.FAILED],
        "status": status,
    })

    return ResolveDocumentImagesOutput(
        materialized=materialized,
        placeholders=states,
        total_resolved=total_resolved,
        total_failed=total_failed,
        status=status,
    )


async def generate_illustrated_insights(
    ctx,
    params: GenerateInsightsInput,
) -> IllustratedInsightsOutput:
    """
    Generate insights and resolve their image placeholders in one call.

    The raw content (with tokens) is returned next to the materialized
    version so callers can keep editing the source text.
    """
    insights = await generate_insights(ctx, params)

    if insights.status != "success":
        return IllustratedInsightsOutput(
            content=insights.content,
            materialized=insights.content,
            status=insights.status,
            reason=insights.reason,
        )

    resolved = await resolve_document_images(
        ctx,
        ResolveDocumentImagesInput(document=insights.content),
    )

    return IllustratedInsightsOutput(
        content=insights.content,
        materialized=resolved.materialized,
        placeholders=resolved.placeholders,
        status=resolved.status,
        reason=resolved.reason,
    )
