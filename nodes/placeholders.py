"""
Inline image placeholder resolution.

Generated documents may contain lines like

    {{GEN_IMG: A shield protecting a plant from a storm}}

Each distinct prompt is resolved to an image URL exactly once, in the
background, while the document is displayed or edited. The rendered view is
recomputed from (document, states) on every call and never stored.

State per prompt: PENDING -> LOADING -> RESOLVED(url) | FAILED
"""
import asyncio
import re
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

import structlog

from .schemas import PlaceholderState, PlaceholderStatus

logger = structlog.get_logger()

# Token is expected on its own line but is matched anywhere on a single line
PLACEHOLDER_PATTERN = re.compile(r"\{\{GEN_IMG:\s*([^\n]*?)\s*\}\}")

LOADING_MARKER = "*⏳ 正在生成图片...*"
FAILED_MARKER = "*❌ 图片生成失败*"

TERMINAL_STATUSES = (PlaceholderStatus.RESOLVED, PlaceholderStatus.FAILED)

ImageGenerator = Callable[[str], Awaitable[Optional[str]]]
StateListener = Callable[[str, PlaceholderState], None]


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def find_placeholder_prompts(document: str) -> List[str]:
    """Distinct placeholder prompts in order of first appearance."""
    prompts: List[str] = []
    seen = set()
    for match in PLACEHOLDER_PATTERN.finditer(document or ""):
        prompt = match.group(1).strip()
        if prompt and prompt not in seen:
            seen.add(prompt)
            prompts.append(prompt)
    return prompts


def render_placeholder(
    prompt: str,
    state: PlaceholderState,
    loading_marker: str = LOADING_MARKER,
    failed_marker: str = FAILED_MARKER,
) -> str:
    """Markdown replacement for one placeholder occurrence."""
    if state.status == PlaceholderStatus.RESOLVED and state.url:
        alt_text = prompt.replace("[", "").replace("]", "")
        return f"![{alt_text}]({state.url})"
    if state.status == PlaceholderStatus.FAILED:
        return failed_marker
    return loading_marker


def materialize(
    document: str,
    states: Mapping[str, PlaceholderState],
    loading_marker: str = LOADING_MARKER,
    failed_marker: str = FAILED_MARKER,
) -> str:
    """
    Replace every placeholder token according to its prompt's state.

    Tokens whose prompt has no state are left as-is. Text outside the tokens
    is not touched.
    """
    if not document:
        return document or ""

    def _replace(match: "re.Match") -> str:
        prompt = match.group(1).strip()
        state = states.get(prompt)
        if state is None:
            return match.group(0)
        return render_placeholder(prompt, state, loading_marker, failed_marker)

    return PLACEHOLDER_PATTERN.sub(_replace, document)


# =============================================================================
# RESOLVER
# =============================================================================

class PlaceholderResolver:
    """
    Owns the prompt -> state map for one document display session.

    scan() must be called from inside a running event loop. All state
    changes happen on that loop: synchronously in scan(), and in the
    completion of each generation task.
    """

    def __init__(
        self,
        generate: ImageGenerator,
        on_change: Optional[StateListener] = None,
        loading_marker: str = LOADING_MARKER,
        failed_marker: str = FAILED_MARKER,
    ):
        """
        Args:
            generate: Coroutine function mapping a prompt to an image URL (or None)
            on_change: Called with (prompt, new_state) after every transition
            loading_marker: Text shown while a prompt is pending/loading
            failed_marker: Text shown for failed prompts
        """
        self._generate = generate
        self._on_change = on_change
        self.loading_marker = loading_marker
        self.failed_marker = failed_marker
        self._states: Dict[str, PlaceholderState] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def states(self) -> Dict[str, PlaceholderState]:
        """Snapshot of the current states."""
        return dict(self._states)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def scan(self, document: str) -> str:
        """
        Start resolution for prompts not seen before and return the current view.

        Prompts already tracked (in any state) are never requested again.
        """
        for prompt in find_placeholder_prompts(document):
            if prompt in self._states:
                continue
            self._states[prompt] = PlaceholderState(status=PlaceholderStatus.PENDING)
            self._start(prompt)
        return self.render(document)

    def render(self, document: str) -> str:
        """Materialized view of document from the current states."""
        return materialize(document, self._states, self.loading_marker, self.failed_marker)

    async def wait(self) -> None:
        """Wait until no generation task is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding tasks. Prompts that never finished become FAILED."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        for prompt, state in list(self._states.items()):
            if state.status not in TERMINAL_STATUSES:
                self._transition(prompt, PlaceholderState(status=PlaceholderStatus.FAILED, error="cancelled"))

    def _start(self, prompt: str) -> None:
        self._transition(prompt, PlaceholderState(status=PlaceholderStatus.LOADING))
        task = asyncio.get_running_loop().create_task(self._resolve(prompt))
        self._tasks[prompt] = task

    async def _resolve(self, prompt: str) -> None:
        try:
            url = await self._generate(prompt)
        except asyncio.CancelledError:
            self._transition(prompt, PlaceholderState(status=PlaceholderStatus.FAILED, error="cancelled"))
            raise
        except Exception as e:
            logger.error("placeholder_generation_failed", prompt=prompt[:50], error=str(e))
            self._transition(prompt, PlaceholderState(status=PlaceholderStatus.FAILED, error=str(e)))
        else:
            if url:
                logger.info("placeholder_resolved", prompt=prompt[:50])
                self._transition(prompt, PlaceholderState(status=PlaceholderStatus.RESOLVED, url=url))
            else:
                logger.warning("placeholder_empty_result", prompt=prompt[:50])
                self._transition(prompt, PlaceholderState(status=PlaceholderStatus.FAILED, error="empty result"))
        finally:
            self._tasks.pop(prompt, None)

    def _transition(self, prompt: str, state: PlaceholderState) -> None:
        current = self._states.get(prompt)
        # Terminal states are final
        if current is not None and current.status in TERMINAL_STATUSES:
            return
        self._states[prompt] = state
        if self._on_change is None:
            return
        try:
            self._on_change(prompt, state)
        except Exception as e:
            logger.error("placeholder_listener_failed", prompt=prompt[:50], error=str(e))
