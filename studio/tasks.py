"""
Task screens: one agent call at a time, tracked live, recorded on success.

Flow of a task
──────────────
1. busy flag taken (a second call raises StudioBusyError)
2. AgentClient.invoke(...) reports the session id → tracker starts polling
3. outcome mapped:
     transport failure  → TransportError   (tracker cleared)
     remote failure     → RemoteFailure    (session still tracked)
     success, no data   → EmptyResponse
     success            → exactly one HistoryItem appended, TaskResult returned
4. busy flag released, active agent reset

The tracker keeps running after the call returns; its last snapshot may lag
or lead the result.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import ValidationError

from studio.activity import ActivityTracker
from studio.agent_client import AgentClient
from studio.errors import EmptyResponse, RemoteFailure, StudioBusyError, TransportError
from studio.history import HistoryStore
from studio.models import (
    ContentResult,
    GraphicsResult,
    HistoryItem,
    HistoryType,
    InvocationOutcome,
    clamp_score,
)

logger = logging.getLogger(__name__)

LOADING_MESSAGES_CONTENT = [
    "Researching keywords and competitors...",
    "Analyzing search intent...",
    "Structuring content outline...",
    "Writing optimized content...",
    "Running SEO analysis...",
    "Finalizing article...",
]

LOADING_MESSAGES_GRAPHICS = [
    "Interpreting your description...",
    "Composing visual elements...",
    "Generating graphic...",
    "Applying style refinements...",
]

#: Seconds each loading message stays up.
LOADING_ROTATION = 3.0

AUDIENCES = ["General", "Marketers", "Developers", "Executives", "Small Business"]
TONES = ["Professional", "Casual", "Authoritative"]
GRAPHIC_STYLES = ["Modern", "Minimalist", "Bold", "Illustrated", "Photorealistic"]

#: Shown when the agent fails without giving a reason.
ARTICLE_FAILED = "Failed to generate content. Please try again."
OPTIMIZE_FAILED = "Failed to optimize. Please try again."
GRAPHIC_FAILED = "Failed to generate graphic. Please try again."


@dataclass
class TaskResult:
    """What a finished task hands back to its caller."""

    result: Union[ContentResult, GraphicsResult]
    item: HistoryItem
    session_id: Optional[str] = None


# ── Helpers ────────────────────────────────────────────────────────────────


def parse_keywords(raw: str, existing: Iterable[str] = ()) -> list[str]:
    """Merge comma-separated keywords into *existing*, dropping repeats.

    Examples:
        >>> parse_keywords(" seo, saas ,, seo", ["saas"])
        ['saas', 'seo']
    """
    merged = list(existing)
    for keyword in raw.split(","):
        keyword = keyword.strip()
        if keyword and keyword not in merged:
            merged.append(keyword)
    return merged


def export_markdown(title: str, content: str, meta_description: str = "") -> tuple[str, str]:
    """Render an article as a markdown file.

    Returns:
        ``(filename, text)``; the filename keeps only letters, digits and
        underscores.
    """
    text = f"# {title}\n\nMeta Description: {meta_description}\n\n{content}"
    safe = re.sub(r"\s+", "_", re.sub(r"[^a-zA-Z0-9 ]", "", title or "article")).strip("_")
    return f"{safe or 'article'}.md", text


# ── Screens ────────────────────────────────────────────────────────────────


class TaskScreen:
    """Shared orchestration for one screen bound to one agent."""

    loading_messages: Sequence[str] = ("Processing...",)

    def __init__(
        self,
        client: AgentClient,
        tracker: ActivityTracker,
        store: HistoryStore,
        agent_id: str,
        on_agent_active: Optional[Callable[[Optional[str]], None]] = None,
    ) -> None:
        self.client = client
        self.tracker = tracker
        self.store = store
        self.agent_id = agent_id
        self._on_agent_active = on_agent_active
        self._busy = threading.Lock()
        self._started_at: Optional[float] = None

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def loading_message(self, now: Optional[float] = None) -> str:
        """The rotating progress line while a task runs, ``""`` otherwise."""
        started = self._started_at
        if started is None:
            return ""
        elapsed = (now if now is not None else time.monotonic()) - started
        index = int(max(elapsed, 0) // LOADING_ROTATION) % len(self.loading_messages)
        return self.loading_messages[index]

    def close(self) -> None:
        self.tracker.close()

    def _set_active(self, agent_id: Optional[str]) -> None:
        if self._on_agent_active is not None:
            self._on_agent_active(agent_id)

    @contextmanager
    def _task(self) -> Iterator[None]:
        """Hold the busy flag for the duration of one task.

        Raises:
            StudioBusyError: If this screen is already running a task.
        """
        if not self._busy.acquire(blocking=False):
            raise StudioBusyError("A task is already running on this screen.")
        self._started_at = time.monotonic()
        self._set_active(self.agent_id)
        try:
            yield
        finally:
            self._started_at = None
            self._set_active(None)
            self._busy.release()

    def _invoke(self, message: str, fallback_error: str) -> InvocationOutcome:
        """Run one agent call and return a successful, non-empty outcome.

        Args:
            message: Task instruction for the agent.
            fallback_error: RemoteFailure message when the agent gives no reason.

        Raises:
            TransportError, RemoteFailure, EmptyResponse: On failure.
        """
        outcome = self.client.invoke(
            message,
            self.agent_id,
            on_session=self.tracker.track,
            fallback_error=fallback_error,
        )

        if outcome.session_id:
            self.tracker.track(outcome.session_id)
        elif outcome.error_kind == "transport":
            self.tracker.clear()

        if not outcome.success:
            if outcome.error_kind == "transport":
                raise TransportError(outcome.error)
            raise RemoteFailure(outcome.error)
        if outcome.is_empty:
            logger.warning("Empty response from agent=%s session=%s", self.agent_id, outcome.session_id)
            raise EmptyResponse()
        return outcome

    def _record(self, item: HistoryItem) -> None:
        self.store.append(item)


class ContentStudio(TaskScreen):
    """Article writing and SEO optimization through the content agent."""

    loading_messages = LOADING_MESSAGES_CONTENT

    def generate_article(
        self,
        topic: str,
        audience: str = "General",
        tone: str = "Professional",
        keywords: Sequence[str] = (),
    ) -> TaskResult:
        """Write an SEO-optimized article and record it as an ``article``.

        Raises:
            ValueError: If topic is blank.
            StudioBusyError: If another task is running on this screen.
            TaskError: If the agent call fails (see TaskScreen._invoke).
        """
        topic = topic.strip()
        if not topic:
            raise ValueError("Topic must not be empty.")

        message = (
            f"Write an SEO-optimized article about: {topic}. "
            f"Target audience: {audience}. Tone: {tone}."
        )
        if keywords:
            message += f" Keywords to include: {', '.join(keywords)}."

        with self._task():
            outcome = self._invoke(message, ARTICLE_FAILED)
            result = _content_result(outcome)
            item = HistoryItem.new(
                HistoryType.ARTICLE,
                title=result.title or topic,
                content=result.article_content or "",
                seo_score=clamp_score(result.seo_score),
                meta_description=result.meta_description,
                keywords=result.primary_keywords,
            )
            self._record(item)
        return TaskResult(result=result, item=item, session_id=outcome.session_id)

    def optimize(self, url: str = "", content: str = "") -> TaskResult:
        """Analyse existing content (by URL or pasted text) for SEO.

        A URL wins when both are given.

        Raises:
            ValueError: If both url and content are blank.
        """
        url, content = url.strip(), content.strip()
        if url:
            message = f"Analyze and optimize this content for SEO. URL: {url}"
        elif content:
            message = f"Analyze and optimize this content for SEO:\n\n{content}"
        else:
            raise ValueError("Provide a URL or content to optimize.")

        with self._task():
            outcome = self._invoke(message, OPTIMIZE_FAILED)
            result = _content_result(outcome)
            item = HistoryItem.new(
                HistoryType.OPTIMIZATION,
                title=result.title or "SEO Optimization Report",
                content=result.optimization_summary or result.article_content or "",
                seo_score=clamp_score(result.seo_score),
                meta_description=result.meta_description,
                keywords=result.primary_keywords,
            )
            self._record(item)
        return TaskResult(result=result, item=item, session_id=outcome.session_id)


class GraphicsStudio(TaskScreen):
    """Marketing visuals through the graphics agent."""

    loading_messages = LOADING_MESSAGES_GRAPHICS

    def generate_graphic(self, description: str, style: str = "Modern") -> TaskResult:
        """Generate a graphic and record it as a ``graphic``.

        Raises:
            ValueError: If description is blank.
        """
        description = description.strip()
        if not description:
            raise ValueError("Description must not be empty.")

        message = f"Create a {style.lower()} marketing graphic: {description}"

        with self._task():
            outcome = self._invoke(message, GRAPHIC_FAILED)
            data = outcome.result
            urls = outcome.artifact_urls
            result = GraphicsResult(
                description=data.get("description"),
                style=data.get("style") or style,
                prompt_used=data.get("prompt_used"),
                suggestions=data.get("suggestions"),
                image_url=urls[0] if urls else data.get("image_url"),
            )
            item = HistoryItem.new(
                HistoryType.GRAPHIC,
                title=result.description or description,
                image_url=result.image_url,
            )
            self._record(item)
        return TaskResult(result=result, item=item, session_id=outcome.session_id)


def _content_result(outcome: InvocationOutcome) -> ContentResult:
    if not outcome.result:
        raise EmptyResponse()
    try:
        return ContentResult.model_validate(outcome.result)
    except ValidationError as exc:
        logger.warning("Unusable content payload session=%s: %s", outcome.session_id, exc)
        raise EmptyResponse() from exc
