"""
Tests for studio/tasks.py: the content and graphics screens end to end,
with the agent client and the activity feed replaced by doubles.

Run with: pytest tests/test_tasks.py
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from studio.activity import ActivityTracker
from studio.errors import EmptyResponse, RemoteFailure, StudioBusyError, TransportError
from studio.history import HistoryStore
from studio.models import FeedUpdate, HistoryType, InvocationOutcome
from studio.storage import MemoryStorage
from studio.tasks import (
    ARTICLE_FAILED,
    GRAPHIC_FAILED,
    OPTIMIZE_FAILED,
    ContentStudio,
    GraphicsStudio,
    LOADING_MESSAGES_CONTENT,
    clamp_score,
    export_markdown,
    parse_keywords,
)


class FakeClient:
    """Agent client double: reports a session, then returns a canned outcome."""

    def __init__(self, outcome: InvocationOutcome, session_id: str = "sess-local") -> None:
        self.outcome = outcome
        self.session_id = session_id
        self.calls: list[tuple[str, str]] = []
        self.fallbacks: list[str] = []
        self.tracked_during_call = None
        self.tracker = None

    def invoke(self, message, agent_id, on_session=None, fallback_error=""):
        self.calls.append((message, agent_id))
        self.fallbacks.append(fallback_error)
        if on_session is not None:
            on_session(self.session_id)
        if self.tracker is not None:
            self.tracked_during_call = self.tracker.session_id
        return self.outcome


def success(result, **extra) -> InvocationOutcome:
    return InvocationOutcome(success=True, response={"result": result}, **extra)


@pytest.fixture
def store() -> HistoryStore:
    store = HistoryStore(MemoryStorage())
    store.load()
    return store


@pytest.fixture
def tracker() -> ActivityTracker:
    feed = MagicMock()
    feed.fetch.return_value = FeedUpdate()
    return ActivityTracker(feed, autostart=False)


def content_screen(client, tracker, store, **kwargs) -> ContentStudio:
    client.tracker = tracker
    return ContentStudio(client, tracker, store, "content-agent-1", **kwargs)


# ── Scenarios ──────────────────────────────────────────────────────────────────


class TestGenerateArticle:
    def test_success_records_article_first(self, tracker, store):
        client = FakeClient(success({"title": "X Guide", "seo_score": 87, "article_content": "# X"}))
        screen = content_screen(client, tracker, store)

        task = screen.generate_article("Write about X")

        assert client.calls[0][1] == "content-agent-1"
        first = store.list()[0]
        assert first.type is HistoryType.ARTICLE
        assert first.title == "X Guide"
        assert first.seo_score == 87
        assert task.item == first

    def test_message_includes_audience_tone_keywords(self, tracker, store):
        client = FakeClient(success({"title": "T"}))
        content_screen(client, tracker, store).generate_article(
            " SaaS growth ", audience="Marketers", tone="Casual", keywords=["seo", "b2b"]
        )

        message = client.calls[0][0]
        assert message == (
            "Write an SEO-optimized article about: SaaS growth. Target audience: Marketers. "
            "Tone: Casual. Keywords to include: seo, b2b."
        )

    def test_title_falls_back_to_topic(self, tracker, store):
        client = FakeClient(success({"article_content": "body", "primary_keywords": ["k"]}))
        content_screen(client, tracker, store).generate_article("Remote work")

        item = store.list()[0]
        assert item.title == "Remote work"
        assert item.keywords == ["k"]

    def test_tracking_starts_during_call(self, tracker, store):
        client = FakeClient(success({"title": "T"}), session_id="early")
        content_screen(client, tracker, store).generate_article("topic")

        assert client.tracked_during_call == "early"
        assert tracker.session_id == "early"

    def test_remote_session_replaces_local(self, tracker, store):
        client = FakeClient(success({"title": "T"}, session_id="remote"), session_id="local")
        content_screen(client, tracker, store).generate_article("topic")
        assert tracker.session_id == "remote"

    def test_empty_payload_raises_and_records_nothing(self, tracker, store):
        client = FakeClient(InvocationOutcome(success=True, response={}))
        screen = content_screen(client, tracker, store)

        with pytest.raises(EmptyResponse, match="empty response"):
            screen.generate_article("topic")
        assert len(store) == 0

    def test_invalid_payload_is_empty_response(self, tracker, store):
        client = FakeClient(success({"title": "T", "seo_score": "very good"}))
        with pytest.raises(EmptyResponse):
            content_screen(client, tracker, store).generate_article("topic")
        assert len(store) == 0

    def test_remote_failure_surfaces_message_and_keeps_session(self, tracker, store):
        outcome = InvocationOutcome(
            success=False, error="rate limited", error_kind="remote", session_id="s-failed"
        )
        screen = content_screen(FakeClient(outcome), tracker, store)

        with pytest.raises(RemoteFailure) as info:
            screen.generate_article("topic")

        assert str(info.value) == "rate limited"
        assert len(store) == 0
        assert tracker.session_id == "s-failed"

    def test_transport_failure_clears_tracker(self, tracker, store):
        outcome = InvocationOutcome(
            success=False, error=TransportError.default_message, error_kind="transport"
        )
        screen = content_screen(FakeClient(outcome), tracker, store)

        with pytest.raises(TransportError):
            screen.generate_article("topic")

        assert tracker.session_id is None
        assert not screen.busy

    def test_blank_topic_rejected_without_call(self, tracker, store):
        client = FakeClient(success({"title": "T"}))
        with pytest.raises(ValueError, match="empty"):
            content_screen(client, tracker, store).generate_article("   ")
        assert client.calls == []

    def test_out_of_range_score_clamped(self, tracker, store):
        client = FakeClient(success({"title": "T", "seo_score": 140}))
        content_screen(client, tracker, store).generate_article("topic")
        assert store.list()[0].seo_score == 100


class TestOptimize:
    def test_url_wins_and_summary_is_content(self, tracker, store):
        client = FakeClient(
            success({"optimization_summary": "Improved", "article_content": "full", "seo_score": 84})
        )
        content_screen(client, tracker, store).optimize(url="https://ex.com/a", content="ignored")

        assert client.calls[0][0] == "Analyze and optimize this content for SEO. URL: https://ex.com/a"
        item = store.list()[0]
        assert item.type is HistoryType.OPTIMIZATION
        assert item.title == "SEO Optimization Report"
        assert item.content == "Improved"

    def test_pasted_content(self, tracker, store):
        client = FakeClient(success({"title": "Audit"}))
        content_screen(client, tracker, store).optimize(content="My post")
        assert client.calls[0][0].endswith(":\n\nMy post")

    def test_requires_input(self, tracker, store):
        with pytest.raises(ValueError):
            content_screen(FakeClient(success({})), tracker, store).optimize()


class TestGenerateGraphic:
    def test_image_from_artifacts(self, tracker, store):
        outcome = success(
            {"description": "Hero banner", "suggestions": ["dark mode"]},
            module_outputs={"artifact_files": [{"file_url": "https://f/hero.png"}]},
        )
        client = FakeClient(outcome)
        client.tracker = tracker
        screen = GraphicsStudio(client, tracker, store, "graphics-agent")

        task = screen.generate_graphic("a hero image", style="Bold")

        assert client.calls[0] == ("Create a bold marketing graphic: a hero image", "graphics-agent")
        assert task.result.image_url == "https://f/hero.png"
        assert task.result.style == "Bold"
        item = store.list()[0]
        assert (item.type, item.title, item.image_url) == (
            HistoryType.GRAPHIC,
            "Hero banner",
            "https://f/hero.png",
        )

    def test_title_falls_back_to_request(self, tracker, store):
        outcome = InvocationOutcome(
            success=True,
            response={},
            module_outputs={"artifact_files": [{"file_url": "https://f/x.png"}]},
        )
        GraphicsStudio(FakeClient(outcome), tracker, store, "g").generate_graphic("skyline")
        assert store.list()[0].title == "skyline"

    def test_nothing_returned_is_empty_response(self, tracker, store):
        screen = GraphicsStudio(FakeClient(InvocationOutcome(success=True, response={})), tracker, store, "g")
        with pytest.raises(EmptyResponse):
            screen.generate_graphic("skyline")
        assert len(store) == 0


class TestFailureMessages:
    def test_each_task_supplies_its_own_fallback(self, tracker, store):
        client = FakeClient(success({"title": "T"}))
        screen = content_screen(client, tracker, store)
        screen.generate_article("topic")
        screen.optimize(url="https://ex.com")
        GraphicsStudio(client, tracker, store, "g").generate_graphic("skyline")

        assert client.fallbacks == [ARTICLE_FAILED, OPTIMIZE_FAILED, GRAPHIC_FAILED]


class TestBusyAndActiveAgent:
    def test_second_call_while_running_is_rejected(self, tracker, store):
        entered = threading.Event()
        release = threading.Event()

        class SlowClient(FakeClient):
            def invoke(self, message, agent_id, on_session=None, fallback_error=""):
                entered.set()
                release.wait(2.0)
                return super().invoke(message, agent_id, on_session, fallback_error)

        screen = content_screen(SlowClient(success({"title": "T"})), tracker, store)
        worker = threading.Thread(target=screen.generate_article, args=("first",))
        worker.start()
        assert entered.wait(2.0)

        assert screen.busy
        assert screen.loading_message() == LOADING_MESSAGES_CONTENT[0]
        with pytest.raises(StudioBusyError):
            screen.generate_article("second")

        release.set()
        worker.join(2.0)
        assert not screen.busy
        assert len(store) == 1

    def test_active_agent_reported_and_reset(self, tracker, store):
        seen = []
        client = FakeClient(success({"title": "T"}))
        content_screen(client, tracker, store, on_agent_active=seen.append).generate_article("x")
        assert seen == ["content-agent-1", None]

    def test_loading_message_rotates(self, tracker, store):
        screen = content_screen(FakeClient(success({})), tracker, store)
        assert screen.loading_message() == ""
        screen._started_at = 100.0
        assert screen.loading_message(now=100.0) == LOADING_MESSAGES_CONTENT[0]
        assert screen.loading_message(now=106.5) == LOADING_MESSAGES_CONTENT[2]


# ── Helpers ────────────────────────────────────────────────────────────────────


class TestHelpers:
    def test_parse_keywords(self):
        assert parse_keywords(" seo, saas ,, seo", ["saas"]) == ["saas", "seo"]

    @pytest.mark.parametrize("score,expected", [(None, None), (-3, 0), (87.4, 87), (250, 100)])
    def test_clamp_score(self, score, expected):
        assert clamp_score(score) == expected

    def test_export_markdown(self):
        filename, text = export_markdown("X Guide: 2025!", "## Body", "meta")
        assert filename == "X_Guide_2025.md"
        assert text == "# X Guide: 2025!\n\nMeta Description: meta\n\n## Body"
