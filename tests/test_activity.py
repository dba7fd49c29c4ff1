"""Tests for studio/activity.py: feed parsing, subscriptions and the tracker."""

from __future__ import annotations

import threading

import httpx
import pytest

from studio.activity import ActivityFeed, ActivityTracker, Subscription, parse_feed
from studio.errors import TrackingError
from studio.models import ActivityStatus


class ScriptedFeed:
    """Feed double returning canned replies per session, then repeating the last."""

    def __init__(self, script: dict[str, list]) -> None:
        self.script = {sid: list(replies) for sid, replies in script.items()}
        self.calls: list[str] = []

    def fetch(self, session_id):
        self.calls.append(session_id)
        replies = self.script.get(session_id) or [[]]
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        return parse_feed(reply)


def ev(step: str, status: str) -> dict:
    return {"id": step, "label": step.title(), "status": status}


# ── Feed ───────────────────────────────────────────────────────────────────────


class TestParseFeed:
    def test_bare_list(self):
        update = parse_feed([ev("research", "in_progress")])
        assert update.events[0].status is ActivityStatus.RUNNING
        assert update.finished is False

    def test_object_with_finished_flag(self):
        update = parse_feed({"events": [ev("write", "completed")], "finished": True})
        assert update.events[0].status is ActivityStatus.DONE
        assert update.finished is True

    @pytest.mark.parametrize("status", ["completed", "failed", "error"])
    def test_terminal_session_status_finishes(self, status):
        assert parse_feed({"events": [], "status": status}).finished is True

    def test_lenient_event_fields(self):
        update = parse_feed({"events": [{"step": "s1", "name": "Outline", "status": "weird"}, "junk", {}]})
        assert len(update.events) == 1
        event = update.events[0]
        assert (event.step_id, event.label, event.status) == ("s1", "Outline", ActivityStatus.PENDING)

    def test_label_used_as_id(self):
        assert parse_feed([{"label": "Writing", "status": "running"}]).events[0].step_id == "Writing"

    @pytest.mark.parametrize("body", ["text", 3, None, {"events": "nope"}])
    def test_garbage_raises_tracking_error(self, body):
        with pytest.raises(TrackingError):
            parse_feed(body)


class TestActivityFeed:
    def test_fetch_reads_session_path(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["key"] = request.headers.get("x-api-key")
            return httpx.Response(200, json={"events": [ev("a", "running")]})

        http = httpx.Client(transport=httpx.MockTransport(handler))
        feed = ActivityFeed("https://feed.test/activity/", api_key="k", http_client=http)

        update = feed.fetch("sess-1")

        assert seen == {"path": "/activity/sess-1", "key": "k"}
        assert update.events[0].step_id == "a"

    @pytest.mark.parametrize(
        "response",
        [httpx.Response(500, json={}), httpx.Response(200, content=b"not json")],
    )
    def test_bad_replies_raise_tracking_error(self, response):
        http = httpx.Client(transport=httpx.MockTransport(lambda r: response))
        feed = ActivityFeed("https://feed.test", http_client=http)
        with pytest.raises(TrackingError):
            feed.fetch("s")

    def test_connection_error_raises_tracking_error(self):
        def handler(request):
            raise httpx.ConnectError("down")

        feed = ActivityFeed("https://feed.test", http_client=httpx.Client(transport=httpx.MockTransport(handler)))
        with pytest.raises(TrackingError):
            feed.fetch("s")


# ── Subscription ───────────────────────────────────────────────────────────────


class TestSubscription:
    def test_poll_merges_updates(self):
        feed = ScriptedFeed({"s": [[ev("a", "running")], [ev("a", "done"), ev("b", "running")]]})
        sub = Subscription(feed, "s")

        sub.poll()
        snap = sub.poll()

        assert [(st.step_id, st.status.value) for st in snap.steps] == [("a", "done"), ("b", "running")]

    def test_feed_errors_are_swallowed_and_retried(self):
        feed = ScriptedFeed({"s": [TrackingError("blip"), [ev("a", "running")]]})
        sub = Subscription(feed, "s")

        assert sub.poll().steps == ()
        assert sub.poll().steps[0].status is ActivityStatus.RUNNING

    def test_no_listener_call_after_close(self):
        calls = []
        feed = ScriptedFeed({"s": [[ev("a", "running")]]})
        sub = Subscription(feed, "s", listener=calls.append)

        sub.close()
        sub.poll()

        assert calls == []
        assert sub.closed

    def test_stops_polling_when_finished(self):
        feed = ScriptedFeed({"s": [{"events": [ev("a", "done")], "finished": True}]})
        sub = Subscription(feed, "s")

        sub.poll()
        sub.poll()

        assert feed.calls == ["s"]
        assert sub.snapshot.active is False

    def test_background_thread_runs_until_finished(self):
        done = threading.Event()
        feed = ScriptedFeed(
            {"s": [[ev("a", "running")], {"events": [ev("a", "done")], "finished": True}]}
        )

        def listener(snapshot):
            if not snapshot.active:
                done.set()

        with Subscription(feed, "s", interval=0.01, listener=listener) as sub:
            assert done.wait(2.0)
            sub._thread.join(2.0)
            assert not sub.running

        assert sub.snapshot.steps[0].status is ActivityStatus.DONE


# ── Tracker ────────────────────────────────────────────────────────────────────


class TestActivityTracker:
    @pytest.fixture
    def feed(self) -> ScriptedFeed:
        return ScriptedFeed(
            {
                "A": [[ev("a1", "running")], [ev("a1", "done"), ev("a2", "running")]],
                "B": [[ev("b1", "running")]],
            }
        )

    def test_idle_without_session(self, feed):
        tracker = ActivityTracker(feed, autostart=False)
        assert tracker.snapshot is None
        assert tracker.session_id is None
        assert tracker.poll() is None
        assert feed.calls == []

    def test_tracks_assigned_session(self, feed):
        tracker = ActivityTracker(feed, autostart=False)
        tracker.track("A")
        snap = tracker.poll()

        assert tracker.is_tracking
        assert snap.session_id == "A"
        assert snap.steps[0].step_id == "a1"

    def test_reassigning_same_session_keeps_snapshot(self, feed):
        tracker = ActivityTracker(feed, autostart=False)
        tracker.track("A")
        tracker.poll()
        tracker.track("A")
        assert tracker.snapshot.version == 1

    def test_new_session_abandons_old_feed(self, feed):
        seen = []
        tracker = ActivityTracker(feed, autostart=False, listener=seen.append)
        tracker.track("A")
        tracker.poll()

        tracker.track("B")
        assert tracker.snapshot.session_id == "B"
        assert tracker.snapshot.steps == ()
        tracker.poll()

        assert feed.calls == ["A", "B"]
        assert [s.session_id for s in seen] == ["A", "B"]
        assert all(step.step_id.startswith("b") for step in tracker.snapshot.steps)

    def test_clear_returns_to_idle(self, feed):
        tracker = ActivityTracker(feed, autostart=False)
        tracker.track("A")
        tracker.clear()

        assert tracker.snapshot is None
        assert not tracker.is_tracking

    def test_final_snapshot_stays_readable(self):
        feed = ScriptedFeed({"A": [{"events": [ev("a1", "done")], "finished": True}]})
        tracker = ActivityTracker(feed, autostart=False)
        tracker.track("A")
        tracker.poll()

        assert not tracker.is_tracking
        assert tracker.snapshot.active is False
        assert tracker.session_id == "A"

    def test_close_stops_background_polling(self, feed):
        tracker = ActivityTracker(feed, interval=0.01)
        tracker.track("A")
        sub = tracker._subscription

        tracker.close()

        assert sub.closed
        assert not sub.running
        calls = len(feed.calls)
        threading.Event().wait(0.05)
        assert len(feed.calls) == calls

    def test_reassignment_with_threads_never_mixes_sessions(self, feed):
        seen = []
        switched = threading.Event()

        def listener(snapshot):
            if switched.is_set():
                seen.append(snapshot.session_id)

        with ActivityTracker(feed, interval=0.005, listener=listener) as tracker:
            tracker.track("A")
            threading.Event().wait(0.03)
            tracker.track("B")
            switched.set()
            threading.Event().wait(0.03)

        assert "A" not in seen
