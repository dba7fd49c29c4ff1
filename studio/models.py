"""
Pydantic models shared across the Marketing Studio core.

Groups
──────
invocation  InvocationRequest, InvocationOutcome
activity    ActivityStatus, ActivityEvent, FeedUpdate, ActivityStep, ActivitySnapshot
history     HistoryType, HistoryItem
results     ContentResult, GraphicsResult (agent payloads)
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def clamp_score(score: Optional[float]) -> Optional[int]:
    """Round an SEO score to an int in 0..100; None stays None."""
    if score is None:
        return None
    return int(round(max(0.0, min(100.0, float(score)))))


# ── Invocation ─────────────────────────────────────────────────────────────


class InvocationRequest(BaseModel):
    """A task instruction addressed to one remote agent."""

    model_config = ConfigDict(frozen=True)

    message: str
    agent_id: str

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be empty")
        return value


class InvocationOutcome(BaseModel):
    """Normalised result of one agent call.

    ``response`` is set exactly when ``success`` is true and ``error``
    exactly when it is false. ``session_id`` may be present either way.
    """

    success: bool
    session_id: Optional[str] = None
    response: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    error_kind: Optional[Literal["transport", "remote"]] = None
    module_outputs: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _one_of_response_or_error(self) -> "InvocationOutcome":
        if self.success:
            if self.response is None or self.error is not None:
                raise ValueError("successful outcome needs a response and no error")
        elif self.response is not None or not (self.error or "").strip():
            raise ValueError("failed outcome needs a non-empty error and no response")
        return self

    @property
    def result(self) -> dict[str, Any]:
        """The structured task payload, ``{}`` when absent or unusable."""
        if not self.response:
            return {}
        payload = self.response.get("result")
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError:
                return {}
        return payload if isinstance(payload, dict) else {}

    @property
    def artifact_urls(self) -> list[str]:
        files = self.module_outputs.get("artifact_files")
        if not isinstance(files, list):
            return []
        return [
            f["file_url"]
            for f in files
            if isinstance(f, dict) and isinstance(f.get("file_url"), str) and f["file_url"]
        ]

    @property
    def is_empty(self) -> bool:
        """True for a success that carries nothing the caller can use."""
        return self.success and not self.result and not self.artifact_urls


# ── Activity ───────────────────────────────────────────────────────────────


class ActivityStatus(str, Enum):
    """Lifecycle of one step inside an agent session."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def terminal(self) -> bool:
        return self in (ActivityStatus.DONE, ActivityStatus.FAILED)


_STATUS_RANK = {
    ActivityStatus.PENDING: 0,
    ActivityStatus.RUNNING: 1,
    ActivityStatus.DONE: 2,
    ActivityStatus.FAILED: 2,
}


class ActivityEvent(BaseModel):
    """A single step observation read from the activity feed."""

    step_id: str
    label: str = ""
    status: ActivityStatus = ActivityStatus.PENDING
    message: str = ""


class FeedUpdate(BaseModel):
    """Everything one poll of the feed returned."""

    events: list[ActivityEvent] = Field(default_factory=list)
    finished: bool = False


class ActivityStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    label: str
    status: ActivityStatus
    message: str = ""


class ActivitySnapshot(BaseModel):
    """Aggregated progress of one session.

    Snapshots are immutable; ``merge`` returns a refinement. A step's status
    only moves forward and the first terminal status wins. ``active`` flips
    to false once and an inactive snapshot ignores later updates.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    steps: tuple[ActivityStep, ...] = ()
    active: bool = True
    version: int = 0

    @property
    def completed_steps(self) -> int:
        return sum(1 for step in self.steps if step.status.terminal)

    @property
    def progress(self) -> float:
        if not self.steps:
            return 0.0
        return self.completed_steps / len(self.steps)

    def merge(self, update: FeedUpdate) -> "ActivitySnapshot":
        if not self.active:
            return self

        steps = list(self.steps)
        index = {step.step_id: i for i, step in enumerate(steps)}
        changed = False

        for event in update.events:
            i = index.get(event.step_id)
            if i is None:
                index[event.step_id] = len(steps)
                steps.append(
                    ActivityStep(
                        step_id=event.step_id,
                        label=event.label or event.step_id,
                        status=event.status,
                        message=event.message,
                    )
                )
                changed = True
                continue

            current = steps[i]
            if current.status.terminal or event.status.rank <= current.status.rank:
                continue
            steps[i] = current.model_copy(
                update={
                    "status": event.status,
                    "label": event.label or current.label,
                    "message": event.message or current.message,
                }
            )
            changed = True

        if not changed and not update.finished:
            return self

        return self.model_copy(
            update={
                "steps": tuple(steps),
                "active": not update.finished,
                "version": self.version + 1,
            }
        )

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["progress"] = round(self.progress, 4)
        data["completed_steps"] = self.completed_steps
        return data


# ── History ────────────────────────────────────────────────────────────────


class HistoryType(str, Enum):
    ARTICLE = "article"
    OPTIMIZATION = "optimization"
    GRAPHIC = "graphic"


class HistoryItem(BaseModel):
    """A durable record of one completed task.

    Serialised with camelCase keys (``imageUrl``, ``seoScore``...) so a
    persisted collection keeps the same shape across versions.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str
    type: HistoryType
    title: str
    content: Optional[str] = None
    image_url: Optional[str] = None
    seo_score: Optional[int] = Field(default=None, ge=0, le=100)
    meta_description: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)
    timestamp: datetime

    @field_validator("seo_score", mode="before")
    @classmethod
    def _clamp_seo_score(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return clamp_score(value)
        return value

    @classmethod
    def new(cls, type: HistoryType, title: str, **fields: Any) -> "HistoryItem":
        """Build an item with a fresh id and the current UTC time."""
        return cls(
            id=uuid.uuid4().hex,
            type=type,
            title=title,
            timestamp=datetime.now(timezone.utc),
            **fields,
        )


# ── Agent payloads ─────────────────────────────────────────────────────────


class ContentResult(BaseModel):
    """Payload returned by the content agent (articles and optimizations)."""

    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    meta_description: Optional[str] = None
    article_content: Optional[str] = None
    seo_score: Optional[float] = None
    primary_keywords: list[str] = Field(default_factory=list)
    secondary_keywords: list[str] = Field(default_factory=list)
    keyword_usage_summary: Optional[str] = None
    heading_structure: list[str] = Field(default_factory=list)
    word_count: Optional[int] = None
    readability_score: Optional[float] = None
    improvement_notes: list[str] = Field(default_factory=list)
    optimization_summary: Optional[str] = None
    competitor_insights: Optional[str] = None

    @field_validator(
        "primary_keywords",
        "secondary_keywords",
        "heading_structure",
        "improvement_notes",
        mode="before",
    )
    @classmethod
    def _list_or_empty(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]


class GraphicsResult(BaseModel):
    """Payload returned by the graphics agent, plus the generated image URL."""

    model_config = ConfigDict(extra="ignore")

    description: str = ""
    style: str = ""
    prompt_used: str = ""
    suggestions: list[str] = Field(default_factory=list)
    image_url: str = ""

    @field_validator("description", "style", "prompt_used", "image_url", mode="before")
    @classmethod
    def _text_or_empty(cls, value: Any) -> Any:
        return value if isinstance(value, str) else ""

    @field_validator("suggestions", mode="before")
    @classmethod
    def _list_or_empty(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]
