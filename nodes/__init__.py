"""
Node functions for note insight workflows.

This package contains all workflow node implementations.
"""

from .llm import (
    # Note and stack nodes
    analyze_note_content,
    generate_stack_title,
    determine_stack_category,
    # Long-form generation
    generate_insights,
    generate_illustrated_insights,
    # Image nodes
    generate_in_context_image,
    generate_social_image,
    generate_cover_image,
    # Placeholder resolution
    resolve_document_images,
)

from .placeholders import (
    PlaceholderResolver,
    find_placeholder_prompts,
    materialize,
)

from .context import NodeContext
