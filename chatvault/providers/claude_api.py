"""Claude conversation API session.

claude.ai renders each turn with a ``data-test-render-count`` attribute that
indexes into the conversation returned by its JSON API, which carries the
original Markdown of every message.  A :class:`ClaudeApiSession` is owned by
the extraction agent and passed into provider calls; it moves through
``new → active → stopped`` and can poll for conversation updates.

Usage::

    session = ClaudeApiSession(page.url, cookies={"lastActiveOrg": org, "sessionKey": key})
    if session.initialize():
        msg = session.message_at(3)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import urllib.error
import urllib.request
from collections.abc import Callable
from enum import Enum
from typing import Any

from chatvault.errors import ClaudeApiError
from chatvault.items import ExtractedMessage
from chatvault.settings import (
    CLAUDE_MAX_BACKOFF,
    CLAUDE_MAX_RETRIES,
    CLAUDE_POLL_INTERVAL,
    CLAUDE_REQUEST_TIMEOUT,
)

logger = logging.getLogger(__name__)

API_BASE = "https://claude.ai/api"

_SHARE_ID_RE = re.compile(r"/share/([a-f0-9-]+)")
_CHAT_ID_RE = re.compile(r"/chat/([a-f0-9-]+)")

FetchJson = Callable[[str], dict[str, Any]]


class SessionState(str, Enum):
    NEW = "new"
    ACTIVE = "active"
    STOPPED = "stopped"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def extract_chat_id(url: str) -> tuple[str, str] | None:
    """Return ``("shared" | "chat", id)`` for a Claude conversation URL."""
    if "/share/" in url:
        m = _SHARE_ID_RE.search(url)
        return ("shared", m.group(1)) if m else None
    if "/chat/" in url:
        m = _CHAT_ID_RE.search(url)
        return ("chat", m.group(1)) if m else None
    return None


def conversation_url(url_type: str, chat_id: str, org_id: str | None, *, minimal: bool = False) -> str:
    if url_type == "shared":
        url = f"{API_BASE}/chat_snapshots/{chat_id}?rendering_mode=messages"
    else:
        url = f"{API_BASE}/organizations/{org_id}/chat_conversations/{chat_id}?rendering_mode=messages"
    if not minimal:
        url += "&render_all_tools=true"
    return url


def message_index_from_render_count(value: Any) -> int:
    """Map a ``data-test-render-count`` value to an API message index."""
    try:
        return max(0, int(str(value).strip()))
    except (TypeError, ValueError):
        return 0


def extract_message_content(content: Any) -> str:
    """Join the text items of an API message; thinking and tool items are skipped."""
    if not isinstance(content, list):
        return ""
    texts = [
        str(item.get("text") or "")
        for item in content
        if isinstance(item, dict) and item.get("type") == "text"
    ]
    return "\n\n".join(t.strip() for t in texts if t.strip())


def _default_fetch_json(cookies: dict[str, str], timeout: int) -> FetchJson:
    cookie_header = "; ".join(f"{k}={v}" for k, v in cookies.items())

    def fetch(url: str) -> dict[str, Any]:
        req = urllib.request.Request(
            url,
            headers={
                "Accept": "application/json, text/plain, */*",
                "Content-Type": "application/json",
                "User-Agent": "Mozilla/5.0 (compatible; chatvault)",
                **({"Cookie": cookie_header} if cookie_header else {}),
            },
        )
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raise ClaudeApiError(f"HTTP {exc.code} fetching {url}: {exc.reason}", status=exc.code) from exc
        except urllib.error.URLError as exc:
            raise ClaudeApiError(f"URL error fetching {url}: {exc.reason}") from exc
        except (OSError, ValueError) as exc:
            raise ClaudeApiError(f"Could not read {url}: {exc}") from exc

    return fetch


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class ClaudeApiSession:
    """Conversation reader for one claude.ai page.

    Args:
        page_url:   URL of the chat (``/chat/<id>``) or shared chat (``/share/<id>``).
        org_id:     Organization id; read from the ``lastActiveOrg`` cookie
                    when omitted.  Not needed for shared chats.
        cookies:    Cookies sent with API requests.
        fetch_json: Replacement for the HTTP call (``url -> dict``).
    """

    def __init__(
        self,
        page_url: str,
        *,
        org_id: str | None = None,
        cookies: dict[str, str] | None = None,
        fetch_json: FetchJson | None = None,
        poll_interval: float = CLAUDE_POLL_INTERVAL,
        max_retries: int = CLAUDE_MAX_RETRIES,
        timeout: int = CLAUDE_REQUEST_TIMEOUT,
    ) -> None:
        self.page_url = page_url
        self.cookies = dict(cookies or {})
        self.org_id = org_id or self.cookies.get("lastActiveOrg")
        self._fetch = fetch_json or _default_fetch_json(self.cookies, timeout)
        self.poll_interval = poll_interval
        self.max_retries = max_retries

        self.state = SessionState.NEW
        self.url_type: str | None = None
        self.chat_id: str | None = None
        self.last_updated_at: str | None = None
        self.retry_count = 0
        self._data: dict[str, Any] | None = None

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> bool:
        """Resolve ids and load the conversation; ``True`` once active."""
        if self.state is SessionState.ACTIVE:
            return True
        if self.state is SessionState.STOPPED:
            return False

        info = extract_chat_id(self.page_url)
        if info is None:
            logger.warning("Not a Claude conversation URL: %s", self.page_url)
            return False
        self.url_type, self.chat_id = info
        if self.url_type == "chat" and not self.org_id:
            logger.warning("No organization id for %s; sign in to claude.ai", self.page_url)
            return False

        try:
            data = self._load()
        except ClaudeApiError as exc:
            if exc.is_auth_error:
                logger.error("Claude API refused access (%d); check the signed-in session", exc.status)
            elif exc.status == 404:
                logger.error("Claude conversation not found: %s", self.chat_id)
            else:
                logger.error("Claude session initialization failed: %s", exc)
            return False

        self.last_updated_at = data.get("updated_at")
        self.state = SessionState.ACTIVE
        logger.info("Claude session active for %s %s", self.url_type, self.chat_id)
        return True

    def stop(self) -> None:
        if self.state is not SessionState.STOPPED:
            logger.debug("Claude session stopped (%s)", self.chat_id)
        self.state = SessionState.STOPPED

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    def _load(self, *, minimal: bool = False) -> dict[str, Any]:
        assert self.url_type is not None and self.chat_id is not None
        url = conversation_url(self.url_type, self.chat_id, self.org_id, minimal=minimal)
        data = self._fetch(url)
        if not isinstance(data, dict):
            raise ClaudeApiError(f"Unexpected response from {url}")
        if not minimal:
            self._data = data
        return data

    def conversation(self) -> dict[str, Any]:
        if not self.is_active:
            raise ClaudeApiError(f"Session is {self.state.value}, not active")
        if self._data is None:
            self._load()
        assert self._data is not None
        return self._data

    @property
    def title(self) -> str:
        return str(self.conversation().get("name") or "Claude Chat")

    def _to_message(self, raw: dict[str, Any], title: str) -> ExtractedMessage | None:
        content = extract_message_content(raw.get("content"))
        if not content:
            content = str(raw.get("text") or "").strip()
        if not content:
            return None
        role = "user" if raw.get("sender") == "human" else "assistant"
        return ExtractedMessage(role=role, content=content, title=title)

    def message_at(self, index: int) -> ExtractedMessage | None:
        """Message at *index*; an index past the end falls back to the last message."""
        data = self.conversation()
        messages = data.get("chat_messages")
        if not isinstance(messages, list) or not messages:
            raise ClaudeApiError("Conversation has no chat_messages")
        index = max(0, index)
        if index >= len(messages):
            logger.warning(
                "Message index %d out of range (0-%d); using the last message",
                index, len(messages) - 1,
            )
            index = len(messages) - 1
        return self._to_message(messages[index], self.title)

    def messages(self) -> list[ExtractedMessage]:
        data = self.conversation()
        title = self.title
        found = [self._to_message(m, title) for m in data.get("chat_messages") or [] if isinstance(m, dict)]
        return [m for m in found if m is not None]

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def next_delay(self) -> float:
        if self.retry_count == 0:
            return self.poll_interval
        return min(self.poll_interval * 2 ** self.retry_count, CLAUDE_MAX_BACKOFF)

    def poll_once(self) -> bool:
        """Check for a newer ``updated_at``; ``True`` when the conversation changed.

        Authentication errors stop the session at once; other errors stop it
        after ``max_retries`` consecutive failures.
        """
        if not self.is_active:
            return False
        try:
            data = self._load(minimal=True)
        except ClaudeApiError as exc:
            self.retry_count += 1
            logger.warning("Claude poll failed (%d/%d): %s", self.retry_count, self.max_retries, exc)
            if exc.is_auth_error or self.retry_count >= self.max_retries:
                self.stop()
            return False

        self.retry_count = 0
        updated_at = data.get("updated_at")
        if updated_at != self.last_updated_at:
            self.last_updated_at = updated_at
            self._data = None
            logger.debug("Claude conversation updated at %s", updated_at)
            return True
        return False

    async def run_polling(self, on_update: Callable[[], Any]) -> None:
        """Poll until stopped, calling *on_update* after each change."""
        while self.is_active:
            await asyncio.sleep(self.next_delay())
            if not self.is_active:
                break
            if await asyncio.to_thread(self.poll_once):
                on_update()
