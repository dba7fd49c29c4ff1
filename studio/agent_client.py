"""
HTTP client for the remote multi-step agents.

Flow
────
1. invoke(message, agent_id, on_session)
     → generates a session id and reports it through on_session *before*
       the request goes out, so activity tracking can start while the
       agent is still working
     → POSTs {message, agent_id, user_id, session_id} to the agent API
     → returns exactly one InvocationOutcome; never raises

Wire format of the reply
────────────────────────
{
  "success": true,
  "session_id": "...",              optional, overrides the one we sent
  "response": {"result": {...}},    task payload (object or JSON text)
  "module_outputs": {"artifact_files": [{"file_url": "..."}]},
  "error": "..."                    set when success is false
}
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Any, Optional

import httpx

from studio.errors import TransportError
from studio.models import InvocationOutcome, InvocationRequest

logger = logging.getLogger(__name__)

GENERIC_REMOTE_ERROR = "Agent reported a failure."


def new_session_id(agent_id: str) -> str:
    return f"{agent_id}-{uuid.uuid4().hex[:12]}"


class AgentClient:
    """Sends task requests to a named remote agent.

    No retries happen here; re-invoking is the caller's decision.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        user_id: str = "studio",
        timeout: float = 180.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        """Initialise the client.

        Args:
            api_url: Endpoint that accepts agent invocations.
            api_key: Sent as ``x-api-key``.
            user_id: Identifies this installation to the agent platform.
            timeout: Seconds to wait for the whole agent run.
            http_client: Pre-built client (tests inject one with a mock
                transport). The client is owned, and closed, only when
                this class created it.
        """
        self.api_url = api_url
        self.user_id = user_id
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["x-api-key"] = api_key

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "AgentClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── Invocation ─────────────────────────────────────────────────────────

    def invoke(
        self,
        message: str,
        agent_id: str,
        on_session: Optional[Callable[[str], None]] = None,
        fallback_error: str = GENERIC_REMOTE_ERROR,
    ) -> InvocationOutcome:
        """Run one task on the remote agent.

        Args:
            message: Free-text task instruction.
            agent_id: Which remote agent handles it.
            on_session: Called with the session id as soon as it exists.
            fallback_error: Error text for a remote failure that carries no
                reason of its own.

        Returns:
            An InvocationOutcome. Transport problems, malformed bodies and
            remote-reported failures all come back as ``success=False``.
        """
        try:
            request = InvocationRequest(message=message, agent_id=agent_id)
        except ValueError as exc:
            return _transport_failure(f"Invalid request: {exc}")

        session_id = new_session_id(agent_id)
        if on_session is not None:
            on_session(session_id)

        logger.info("Invoking agent=%s session=%s", agent_id, session_id)
        try:
            resp = self._http.post(
                self.api_url,
                headers=self._headers,
                json={
                    "message": request.message,
                    "agent_id": request.agent_id,
                    "user_id": self.user_id,
                    "session_id": session_id,
                },
            )
        except httpx.TimeoutException:
            logger.warning("Agent call timed out agent=%s session=%s", agent_id, session_id)
            return _transport_failure("The agent took too long to respond. Please try again.")
        except httpx.HTTPError as exc:
            logger.warning("Agent call failed agent=%s: %s", agent_id, exc)
            return _transport_failure()

        return self._parse_reply(resp, session_id, fallback_error)

    def _parse_reply(
        self,
        resp: httpx.Response,
        sent_session_id: str,
        fallback_error: str = GENERIC_REMOTE_ERROR,
    ) -> InvocationOutcome:
        try:
            body = resp.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            logger.warning(
                "Malformed agent reply status=%d session=%s", resp.status_code, sent_session_id
            )
            return _transport_failure(
                f"The agent service returned an unreadable response (HTTP {resp.status_code})."
            )

        session_id = _text(body.get("session_id")) or sent_session_id
        module_outputs = body.get("module_outputs")
        if not isinstance(module_outputs, dict):
            module_outputs = {}

        if resp.is_success and body.get("success") is True:
            response = body.get("response")
            return InvocationOutcome(
                success=True,
                session_id=session_id,
                response=response if isinstance(response, dict) else {},
                module_outputs=module_outputs,
            )

        error = _remote_error(body, fallback_error)
        logger.warning(
            "Agent reported failure status=%d session=%s: %s",
            resp.status_code,
            session_id,
            error,
        )
        return InvocationOutcome(
            success=False,
            session_id=session_id,
            error=error,
            error_kind="remote",
            module_outputs=module_outputs,
        )


# ── Helpers ────────────────────────────────────────────────────────────────


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _remote_error(body: dict[str, Any], fallback: str) -> str:
    response = body.get("response")
    nested = response.get("message") if isinstance(response, dict) else None
    return (
        _text(body.get("error"))
        or _text(body.get("message"))
        or _text(nested)
        or fallback
    )


def _transport_failure(message: str = "") -> InvocationOutcome:
    return InvocationOutcome(
        success=False,
        error=message or TransportError.default_message,
        error_kind="transport",
    )
