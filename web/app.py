"""
Flask web server for Marketing Studio.

Routes
──────
POST   /api/content/article            Write an article  {topic, audience, tone, keywords}
POST   /api/content/optimize           Optimize content  {url | content}
POST   /api/graphics                   Generate graphic  {description, style}
GET    /api/<screen>/activity          Current activity snapshot + busy flag (JSON)
GET    /api/<screen>/activity/stream   SSE: snapshot updates until the session ends
GET    /api/history?type=&q=&sample=   Filtered history, newest first (JSON)
GET    /api/history/<id>               One history item (JSON)
DELETE /api/history/<id>               Delete an item (no error if absent)
GET    /api/history/<id>/export        Markdown download of a text item
GET    /api/dashboard?sample=          Five most recent items and counts
GET    /api/agents                     Configured agents and the active one

<screen> is ``content`` or ``graphics``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, Response, abort, jsonify, request, stream_with_context

# Allow running as `python web/app.py` from the project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

load_dotenv()

from config.settings import Settings
from studio.activity import ActivityFeed, ActivityTracker
from studio.agent_client import AgentClient
from studio.errors import StudioError
from studio.history import ALL_TYPES, HistoryStore, filter_items
from studio.models import HistoryItem, HistoryType
from studio.samples import build_sample_history, display_history
from studio.storage import SlotStorage, SqliteStorage
from studio.tasks import (
    ContentStudio,
    GraphicsStudio,
    TaskResult,
    TaskScreen,
    export_markdown,
    parse_keywords,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

#: HTTP status per StudioError.kind.
ERROR_STATUS = {
    "busy": 409,
    "transport": 502,
    "remote": 502,
    "empty": 502,
}

#: An activity stream with no new snapshot for this long, and no task
#: running, is closed.
STREAM_IDLE_TIMEOUT = 60.0

RECENT_LIMIT = 5


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[AgentClient] = None,
    feed: Optional[ActivityFeed] = None,
    storage: Optional[SlotStorage] = None,
    autostart: bool = True,
) -> Flask:
    """Build the Flask app with one content screen, one graphics screen and one history.

    Args:
        settings: Configuration; read from the environment when omitted.
        client: Agent client; built from settings when omitted.
        feed: Activity feed; built from settings when omitted.
        storage: History slot backend; SQLite at ``settings.history_db_path``
            when omitted.
        autostart: Poll activity on background threads.
    """
    settings = settings or Settings()
    if client is None:
        settings.validate()
        client = AgentClient(
            settings.agent_api_url,
            api_key=settings.agent_api_key,
            user_id=settings.user_id,
            timeout=settings.agent_timeout,
        )
    feed = feed or ActivityFeed(settings.feed_url, api_key=settings.agent_api_key)

    store = HistoryStore(storage or SqliteStorage(settings.history_db_path))
    store.load()

    active = {"agent_id": None}

    def set_active(agent_id: Optional[str]) -> None:
        active["agent_id"] = agent_id

    def tracker() -> ActivityTracker:
        return ActivityTracker(feed, interval=settings.poll_interval, autostart=autostart)

    screens: dict[str, TaskScreen] = {
        "content": ContentStudio(
            client, tracker(), store, settings.content_agent_id, on_agent_active=set_active
        ),
        "graphics": GraphicsStudio(
            client, tracker(), store, settings.graphics_agent_id, on_agent_active=set_active
        ),
    }
    agents = [
        {
            "id": settings.content_agent_id,
            "name": "Content Orchestrator",
            "purpose": "SEO content generation and optimization",
        },
        {
            "id": settings.graphics_agent_id,
            "name": "Graphics Generator",
            "purpose": "Marketing visuals and graphic generation",
        },
    ]

    app = Flask(__name__)
    app.extensions["studio"] = {"store": store, "screens": screens}

    def screen_or_404(name: str) -> TaskScreen:
        screen = screens.get(name)
        if screen is None:
            abort(404)
        return screen

    def payload() -> dict:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    def run_task(fn, *args, **kwargs):
        try:
            task: TaskResult = fn(*args, **kwargs)
        except ValueError as exc:
            return jsonify({"error": str(exc), "kind": "invalid"}), 400
        except StudioError as exc:
            return jsonify({"error": str(exc), "kind": exc.kind}), ERROR_STATUS.get(exc.kind, 500)
        return jsonify(
            {
                "result": task.result.model_dump(mode="json"),
                "history_id": task.item.id,
                "session_id": task.session_id,
            }
        )

    def sample_mode() -> bool:
        return request.args.get("sample", "").lower() in {"1", "true", "yes"}

    def item_json(item: HistoryItem) -> dict:
        return item.model_dump(mode="json", by_alias=True)

    def find_item(item_id: str) -> Optional[HistoryItem]:
        item = store.get(item_id)
        if item is None and sample_mode() and len(store) == 0:
            item = next((s for s in build_sample_history() if s.id == item_id), None)
        return item

    # ── Tasks ──────────────────────────────────────────────────────────────

    @app.route("/api/content/article", methods=["POST"])
    def generate_article():
        data = payload()
        keywords = data.get("keywords") or []
        if isinstance(keywords, str):
            keywords = parse_keywords(keywords)
        elif not isinstance(keywords, list):
            return jsonify(
                {"error": "Keywords must be a list or a comma-separated string.", "kind": "invalid"}
            ), 400
        return run_task(
            screens["content"].generate_article,
            str(data.get("topic", "")),
            audience=str(data.get("audience") or "General"),
            tone=str(data.get("tone") or "Professional"),
            keywords=[str(k) for k in keywords],
        )

    @app.route("/api/content/optimize", methods=["POST"])
    def optimize_content():
        data = payload()
        return run_task(
            screens["content"].optimize,
            url=str(data.get("url") or ""),
            content=str(data.get("content") or ""),
        )

    @app.route("/api/graphics", methods=["POST"])
    def generate_graphic():
        data = payload()
        return run_task(
            screens["graphics"].generate_graphic,
            str(data.get("description", "")),
            style=str(data.get("style") or "Modern"),
        )

    # ── Activity ───────────────────────────────────────────────────────────

    @app.route("/api/<screen_name>/activity")
    def activity(screen_name: str):
        screen = screen_or_404(screen_name)
        snapshot = screen.tracker.snapshot
        return jsonify(
            {
                "busy": screen.busy,
                "loading_message": screen.loading_message(),
                "session_id": screen.tracker.session_id,
                "snapshot": snapshot.to_dict() if snapshot else None,
            }
        )

    @app.route("/api/<screen_name>/activity/stream")
    def activity_stream(screen_name: str):
        """SSE endpoint that follows the screen's tracked session.

        SSE events emitted:
          {"type": "snapshot", "data": {...}}   whenever the snapshot changes
          {"type": "idle"}                      no session is being tracked
          {"type": "error", "message": "..."}   on failure
        """
        screen = screen_or_404(screen_name)
        poll = max(settings.poll_interval / 2, 0.05)

        def generate():
            seen: tuple[Optional[str], int] = (None, -1)
            last_change = time.monotonic()
            try:
                while True:
                    snapshot = screen.tracker.snapshot
                    if snapshot is None:
                        yield f"data: {json.dumps({'type': 'idle'})}\n\n"
                        break
                    key = (snapshot.session_id, snapshot.version)
                    if key != seen:
                        seen = key
                        last_change = time.monotonic()
                        data = json.dumps({"type": "snapshot", "data": snapshot.to_dict()})
                        yield f"data: {data}\n\n"
                    if not snapshot.active:
                        break
                    if not screen.busy and time.monotonic() - last_change > STREAM_IDLE_TIMEOUT:
                        break
                    time.sleep(poll)
            except Exception as exc:
                logger.exception("Activity stream error for screen=%s", screen_name)
                data = json.dumps({"type": "error", "message": str(exc)})
                yield f"data: {data}\n\n"

            yield "data: [DONE]\n\n"

        return Response(
            stream_with_context(generate()),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # ── History API ────────────────────────────────────────────────────────

    @app.route("/api/history")
    def list_history():
        type_filter = request.args.get("type", ALL_TYPES)
        search = request.args.get("q", "")
        if type_filter != ALL_TYPES and type_filter not in {t.value for t in HistoryType}:
            return jsonify({"error": f"Unknown type {type_filter!r}"}), 400
        items = filter_items(display_history(store.list(), sample_mode()), type_filter, search)
        return jsonify([item_json(item) for item in items])

    @app.route("/api/history/<item_id>")
    def get_history_item(item_id: str):
        item = find_item(item_id)
        if item is None:
            return jsonify({"error": "Not found"}), 404
        return jsonify(item_json(item))

    @app.route("/api/history/<item_id>", methods=["DELETE"])
    def delete_history_item(item_id: str):
        deleted = store.delete(item_id)
        return jsonify({"id": item_id, "deleted": deleted})

    @app.route("/api/history/<item_id>/export")
    def export_history_item(item_id: str):
        item = find_item(item_id)
        if item is None:
            return jsonify({"error": "Not found"}), 404
        if not item.content:
            return jsonify({"error": "Item has no text content to export"}), 400
        filename, text = export_markdown(item.title, item.content, item.meta_description or "")
        return Response(
            text,
            mimetype="text/markdown",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.route("/api/dashboard")
    def dashboard():
        items = display_history(store.list(), sample_mode())
        counts = {t.value: sum(1 for item in items if item.type is t) for t in HistoryType}
        return jsonify(
            {
                "recent": [item_json(item) for item in items[:RECENT_LIMIT]],
                "counts": counts,
                "total": len(items),
            }
        )

    @app.route("/api/agents")
    def list_agents():
        return jsonify({"agents": agents, "active_agent_id": active["agent_id"]})

    return app


# ── Entry point ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    settings = Settings()
    app = create_app(settings)
    try:
        app.run(debug=settings.debug, host="0.0.0.0", port=settings.port, threaded=True)
    finally:
        for screen in app.extensions["studio"]["screens"].values():
            screen.close()
