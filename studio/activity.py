"""
Live activity tracking for agent sessions.

Pieces
──────
ActivityFeed     GET {base_url}/{session_id} → FeedUpdate (raises TrackingError)
Subscription     polls one session on a timer thread; close() is final
ActivityTracker  Idle ⇄ Tracking state machine, one subscription at a time

Feed replies are read leniently. Either a bare list of events or an object:

    {"events": [{"id": "research", "label": "Keyword research",
                 "status": "completed"}],
     "finished": false}

Polling tolerates gaps and reordering because snapshots only ever move
forward (see ActivitySnapshot.merge).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Optional

import httpx

from studio.errors import TrackingError
from studio.models import ActivityEvent, ActivitySnapshot, ActivityStatus, FeedUpdate

logger = logging.getLogger(__name__)

Listener = Callable[[ActivitySnapshot], None]

#: Feed status strings mapped onto the four step states.
STATUS_ALIASES: dict[str, ActivityStatus] = {
    "pending": ActivityStatus.PENDING,
    "queued": ActivityStatus.PENDING,
    "waiting": ActivityStatus.PENDING,
    "running": ActivityStatus.RUNNING,
    "started": ActivityStatus.RUNNING,
    "in_progress": ActivityStatus.RUNNING,
    "processing": ActivityStatus.RUNNING,
    "done": ActivityStatus.DONE,
    "completed": ActivityStatus.DONE,
    "complete": ActivityStatus.DONE,
    "success": ActivityStatus.DONE,
    "succeeded": ActivityStatus.DONE,
    "failed": ActivityStatus.FAILED,
    "error": ActivityStatus.FAILED,
    "cancelled": ActivityStatus.FAILED,
}

_FINISHED_STATES = {"done", "completed", "complete", "finished", "success", "failed", "error"}


# ── Feed ───────────────────────────────────────────────────────────────────


class ActivityFeed:
    """Reads a session's step events from the activity API."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)
        self._headers = {"x-api-key": api_key} if api_key else {}

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def fetch(self, session_id: str) -> FeedUpdate:
        """Return everything the feed currently reports for *session_id*.

        Raises:
            TrackingError: On any transport, status or parse failure.
        """
        try:
            resp = self._http.get(f"{self.base_url}/{session_id}", headers=self._headers)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TrackingError(f"activity feed unavailable for {session_id}: {exc}") from exc
        return parse_feed(body)


def parse_feed(body: Any) -> FeedUpdate:
    """Convert a raw feed reply into a FeedUpdate.

    Raises:
        TrackingError: If the reply is neither a list nor an object.
    """
    if isinstance(body, list):
        raw_events, finished = body, False
    elif isinstance(body, dict):
        raw_events = body.get("events") or []
        status = str(body.get("status") or "").lower()
        finished = bool(body.get("finished") or body.get("done")) or status in _FINISHED_STATES
    else:
        raise TrackingError(f"unexpected activity payload: {type(body).__name__}")

    if not isinstance(raw_events, list):
        raise TrackingError("activity events must be a list")

    events = [event for event in (_parse_event(raw) for raw in raw_events) if event]
    return FeedUpdate(events=events, finished=finished)


def _parse_event(raw: Any) -> Optional[ActivityEvent]:
    if not isinstance(raw, dict):
        return None
    label = str(raw.get("label") or raw.get("name") or raw.get("title") or "")
    step_id = str(raw.get("id") or raw.get("step_id") or raw.get("step") or label)
    if not step_id:
        return None
    status = STATUS_ALIASES.get(str(raw.get("status") or "").lower(), ActivityStatus.PENDING)
    return ActivityEvent(
        step_id=step_id,
        label=label,
        status=status,
        message=str(raw.get("message") or ""),
    )


# ── Subscription ───────────────────────────────────────────────────────────


class Subscription:
    """Polling of a single session, released with ``close()``.

    Once ``close()`` returns, no listener call will start. A subscription
    ends by itself when the feed reports the session finished; the final
    snapshot stays readable.
    """

    def __init__(
        self,
        feed: ActivityFeed,
        session_id: str,
        interval: float = 2.0,
        listener: Optional[Listener] = None,
    ) -> None:
        self.session_id = session_id
        self._feed = feed
        self._interval = interval
        self._listener = listener
        self._snapshot = ActivitySnapshot(session_id=session_id)
        self._stop = threading.Event()
        # Held while a tick merges and notifies; close() takes it too.
        self._gate = threading.RLock()
        self._closed = False
        self._thread: Optional[threading.Thread] = None

    @property
    def snapshot(self) -> ActivitySnapshot:
        return self._snapshot

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "Subscription":
        if self._thread is None and not self._closed:
            self._thread = threading.Thread(
                target=self._run,
                name=f"activity-{self.session_id}",
                daemon=True,
            )
            self._thread.start()
        return self

    def poll(self) -> ActivitySnapshot:
        """Run one tick: fetch, merge, notify. Feed errors are swallowed."""
        if self._closed or not self._snapshot.active:
            return self._snapshot
        try:
            update = self._feed.fetch(self.session_id)
        except TrackingError as exc:
            logger.debug("Activity poll skipped for session=%s: %s", self.session_id, exc)
            return self._snapshot

        with self._gate:
            if self._closed:
                return self._snapshot
            merged = self._snapshot.merge(update)
            if merged is not self._snapshot:
                self._snapshot = merged
                if self._listener is not None:
                    self._listener(merged)
            return self._snapshot

    def close(self) -> None:
        with self._gate:
            self._closed = True
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._interval + 1.0)

    def _run(self) -> None:
        while not self._stop.is_set():
            snapshot = self.poll()
            if not snapshot.active:
                logger.info("Session %s finished after %d steps", self.session_id, len(snapshot.steps))
                break
            self._stop.wait(self._interval)

    def __enter__(self) -> "Subscription":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# ── Tracker ────────────────────────────────────────────────────────────────


class ActivityTracker:
    """Keeps a live snapshot for at most one session.

    Idle when no session is set. Assigning a new session closes the old
    subscription before the new one opens, so snapshots from two sessions
    never interleave.
    """

    def __init__(
        self,
        feed: ActivityFeed,
        interval: float = 2.0,
        autostart: bool = True,
        listener: Optional[Listener] = None,
    ) -> None:
        """Initialise the tracker.

        Args:
            feed: Where step events are read from.
            interval: Seconds between polls.
            autostart: Start a polling thread per session. With ``False``
                the owner drives ticks through ``poll()``.
            listener: Called with each new snapshot of the tracked session.
        """
        self._feed = feed
        self._interval = interval
        self._autostart = autostart
        self._listener = listener
        self._lock = threading.Lock()
        self._subscription: Optional[Subscription] = None

    @property
    def session_id(self) -> Optional[str]:
        sub = self._subscription
        return sub.session_id if sub else None

    @property
    def is_tracking(self) -> bool:
        sub = self._subscription
        return sub is not None and sub.snapshot.active

    @property
    def snapshot(self) -> Optional[ActivitySnapshot]:
        sub = self._subscription
        return sub.snapshot if sub else None

    def track(self, session_id: Optional[str]) -> None:
        """Point the tracker at *session_id*, or go idle for ``None``."""
        with self._lock:
            current = self._subscription
            if current is not None and current.session_id == session_id:
                return
            self._subscription = None
            if current is not None:
                current.close()
                logger.debug("Stopped tracking session=%s", current.session_id)
            if not session_id:
                return
            sub = Subscription(self._feed, session_id, self._interval, self._listener)
            self._subscription = sub
            logger.debug("Tracking session=%s", session_id)
        if self._autostart:
            sub.start()

    def poll(self) -> Optional[ActivitySnapshot]:
        """Run one tick on the tracked session."""
        sub = self._subscription
        return sub.poll() if sub else None

    def clear(self) -> None:
        self.track(None)

    def close(self) -> None:
        self.clear()

    def __enter__(self) -> "ActivityTracker":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
