"""Application settings, all configuration loaded from environment variables.

Usage:
    from config.settings import Settings
    settings = Settings()
    settings.validate()   # raises ValueError if the agent API is not configured
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_HISTORY_DB = Path(__file__).parent.parent / "data" / "studio.db"


@dataclass
class Settings:
    """Centralised application configuration.

    All values are read from environment variables at instantiation time
    so that tests can override them by patching ``os.environ``.
    """

    # ── Agent API ───────────────────────────────────────────────────────────
    agent_api_url: str = field(
        default_factory=lambda: os.environ.get("AGENT_API_URL", "")
    )
    agent_api_key: str = field(
        default_factory=lambda: os.environ.get("AGENT_API_KEY", "")
    )
    #: Activity feed base URL; the session id is appended as a path segment.
    activity_api_url: str = field(
        default_factory=lambda: os.environ.get("ACTIVITY_API_URL", "")
    )
    user_id: str = field(
        default_factory=lambda: os.environ.get("AGENT_USER_ID", "studio")
    )
    agent_timeout: float = field(
        default_factory=lambda: float(os.environ.get("AGENT_TIMEOUT", "180"))
    )

    # ── Agents ──────────────────────────────────────────────────────────────
    content_agent_id: str = field(
        default_factory=lambda: os.environ.get("CONTENT_AGENT_ID", "69939142b175ad1ab1aed346")
    )
    graphics_agent_id: str = field(
        default_factory=lambda: os.environ.get("GRAPHICS_AGENT_ID", "69939142b6bc6d320bbb0398")
    )

    # ── Activity tracking ──────────────────────────────────────────────────
    poll_interval: float = field(
        default_factory=lambda: float(os.environ.get("ACTIVITY_POLL_INTERVAL", "2.0"))
    )

    # ── History ─────────────────────────────────────────────────────────────
    history_db_path: Path = field(
        default_factory=lambda: Path(os.environ.get("HISTORY_DB_PATH", str(DEFAULT_HISTORY_DB)))
    )

    # ── Flask ───────────────────────────────────────────────────────────────
    debug: bool = field(
        default_factory=lambda: os.environ.get("FLASK_DEBUG", "0") == "1"
    )
    port: int = field(
        default_factory=lambda: int(os.environ.get("PORT", "5001"))
    )

    @property
    def feed_url(self) -> str:
        """Activity feed base URL, defaulting to ``<agent api>/activity``."""
        return self.activity_api_url or f"{self.agent_api_url.rstrip('/')}/activity"

    def validate(self) -> None:
        """Raise ``ValueError`` if any required setting is missing."""
        if not self.agent_api_url:
            raise ValueError(
                "AGENT_API_URL environment variable is not set. "
                "Copy .env.example to .env and add the agent endpoint."
            )
        if not self.agent_api_key:
            raise ValueError(
                "AGENT_API_KEY environment variable is not set. "
                "Copy .env.example to .env and add your key."
            )
        if self.poll_interval <= 0:
            raise ValueError("ACTIVITY_POLL_INTERVAL must be positive.")
