"""Extraction agent: watches a page, injects save buttons, dispatches saves.

The agent lives next to the page.  It re-scans after content changes
(debounced), retries the first scan while the chat is still rendering, adds
one save button per message, and sends plain-data :class:`SaveRequest`
payloads to the coordinator through a :class:`CoordinatorChannel`.

Usage::

    page = Page.from_file("claude.html", url="https://claude.ai/chat/…")
    agent = ExtractionAgent(page, channel=CoordinatorChannel(coordinator))
    asyncio.run(agent.start())
    outcome = asyncio.run(agent.save_capture("all"))
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from bs4 import Tag

from chatvault.errors import (
    ChatVaultError,
    ErrorCode,
    TransientChannelFailure,
    is_transient_failure,
    user_message,
)
from chatvault.items import (
    CaptureMode,
    ExtractedMessage,
    MessageType,
    SaveOutcome,
    SaveRequest,
    aggregate_outcomes,
)
from chatvault.providers import detect_service, get_provider
from chatvault.providers.base import INJECTED_MARKER
from chatvault.settings import (
    CHANNEL_RETRY_DELAY,
    DEBOUNCE_DELAY,
    INITIAL_SCAN_INTERVAL,
    INITIAL_SCAN_MAX_RETRIES,
    Settings,
)
from chatvault.splitter import split_text_async

if TYPE_CHECKING:
    from chatvault.coordinator import PersistenceCoordinator
    from chatvault.page import Page
    from chatvault.providers.claude_api import ClaudeApiSession

logger = logging.getLogger(__name__)

_CAPTURE_TYPES = {
    CaptureMode.ALL: MessageType.ALL,
    CaptureMode.RECENT: MessageType.RECENT,
    CaptureMode.SELECTED: MessageType.SELECTION,
}


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_messages(
    messages: list[ExtractedMessage],
    mode: CaptureMode | str,
    count: int | None = None,
) -> str:
    """Render captured messages as one note body."""
    mode = CaptureMode(mode)
    if mode is CaptureMode.RECENT:
        heading = f"# Last {count or len(messages)} Messages"
    elif mode is CaptureMode.SELECTED:
        heading = "# Selected Messages"
    else:
        heading = "# Full Conversation"

    blocks = [
        f"### {'User' if m.role == 'user' else 'Assistant'}\n\n{m.content}"
        for m in messages
    ]
    return heading + "\n\n" + "\n\n---\n\n".join(blocks) + "\n"


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

class CoordinatorChannel:
    """Request/response link from an agent to the coordinator.

    Payloads are copied on the way in and out.  A transient failure is
    retried once after a short delay; any other failure becomes an
    unsuccessful :class:`SaveOutcome` instead of an exception.
    """

    def __init__(
        self,
        coordinator: PersistenceCoordinator,
        *,
        retry_delay: float = CHANNEL_RETRY_DELAY,
        locale: str | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.retry_delay = retry_delay
        self.locale = locale or coordinator.settings.locale
        self.closed = False

    def close(self) -> None:
        self.closed = True

    async def _deliver(self, request: SaveRequest) -> SaveOutcome:
        if self.closed:
            raise TransientChannelFailure("Extension context invalidated")
        outcome = await self.coordinator.save(request.copy_across())
        return outcome.copy_across()

    async def send(self, request: SaveRequest) -> SaveOutcome:
        try:
            try:
                return await self._deliver(request)
            except Exception as exc:
                if not is_transient_failure(exc):
                    raise
                logger.warning("Channel failure, retrying in %.1fs: %s", self.retry_delay, exc)
                await asyncio.sleep(self.retry_delay)
                return await self._deliver(request)
        except Exception as exc:
            if isinstance(exc, ChatVaultError):
                code = exc.code
            elif is_transient_failure(exc):
                code = ErrorCode.CHANNEL_CLOSED
            else:
                code = ErrorCode.SAVE_FAILED
            logger.error("Save request could not be delivered: %s", exc)
            return SaveOutcome(success=False, error=str(exc), message=user_message(code, self.locale))


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

class ExtractionAgent:
    """Per-page extraction context.

    Args:
        page:     The rendered chat page.
        provider: Provider for the page; detected from the URL when omitted.
        channel:  Where save requests go.
        settings: User settings (button visibility, chunk size, recent count).
        session:  Optional Claude API session; the agent initializes it on
                  :meth:`start`, polls it, and stops it on :meth:`stop`.
    """

    def __init__(
        self,
        page: Page,
        provider: Any = None,
        channel: CoordinatorChannel | None = None,
        settings: Settings | None = None,
        *,
        session: ClaudeApiSession | None = None,
        debounce_delay: float = DEBOUNCE_DELAY,
        scan_interval: float = INITIAL_SCAN_INTERVAL,
        scan_retries: int = INITIAL_SCAN_MAX_RETRIES,
    ) -> None:
        if provider is None:
            service = detect_service(page.url)
            if service is None:
                raise ChatVaultError(f"Unsupported page: {page.url!r}", code=ErrorCode.NO_SERVICE)
            provider = get_provider(service)
        self.page = page
        self.provider = provider
        self.channel = channel
        self.settings = settings or (channel.coordinator.settings if channel else Settings())
        self.session = session
        self.debounce_delay = debounce_delay
        self.scan_interval = scan_interval
        self.scan_retries = scan_retries

        self.running = False
        self.scan_count = 0
        self._debounce: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Start watching; returns the number of messages found by the initial scan."""
        self.running = True
        if self.session is not None and await asyncio.to_thread(self.session.initialize):
            self._spawn(self.session.run_polling(self.notify_content_changed))

        found = 0
        for attempt in range(1, self.scan_retries + 1):
            found = self.scan()
            if found or not self.running:
                break
            logger.debug("Initial scan %d/%d found no messages", attempt, self.scan_retries)
            if attempt < self.scan_retries:
                await asyncio.sleep(self.scan_interval)
        if not found:
            logger.info("No %s messages found after %d scans", self.provider.name, self.scan_retries)
        return found

    def stop(self) -> None:
        """Stop watching; pending debounced scans and polling are abandoned."""
        self.running = False
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        if self.session is not None:
            self.session.stop()
        for task in list(self._tasks):
            task.cancel()

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def notify_content_changed(self) -> None:
        """Schedule a re-scan; bursts of notifications collapse into one scan."""
        if not self.running:
            return
        if self._debounce is not None:
            self._debounce.cancel()
        loop = asyncio.get_running_loop()
        self._debounce = loop.call_later(self.debounce_delay, self._debounced_scan)

    def _debounced_scan(self) -> None:
        self._debounce = None
        if self.running:
            self.scan()

    def scan(self) -> int:
        self.scan_count += 1
        elements = self.provider.find_message_elements(self.page)
        if self.settings.show_save_button:
            added = sum(1 for el in elements if self.inject_save_button(el))
            if added:
                logger.debug("Added %d save button(s)", added)
        return len(elements)

    def inject_save_button(self, element: Tag) -> bool:
        """Add a save button to *element* unless it already has one."""
        if element.select_one(f".{INJECTED_MARKER}") is not None:
            return False
        anchor = self.provider.affordance_anchor(element)
        button = self.page.soup.new_tag(
            "button",
            attrs={"class": INJECTED_MARKER, "type": "button", "data-chatvault-ui": "save"},
        )
        button.string = "Save"
        anchor.append(button)
        return True

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def _no_content(self, detail: str = "No messages found") -> SaveOutcome:
        logger.info("%s: %s", self.provider.name, detail)
        return SaveOutcome(
            success=False,
            error=detail,
            message=user_message(ErrorCode.NO_CONTENT, self.settings.locale),
        )

    async def _send(self, request: SaveRequest) -> SaveOutcome:
        if self.channel is None:
            raise ChatVaultError("Agent has no coordinator channel", code=ErrorCode.CHANNEL_CLOSED)
        outcome = await self.channel.send(request)
        if outcome.success:
            logger.info("Saved via %s: %s", outcome.method, outcome.filename)
        else:
            logger.warning("Save failed: %s", outcome.error)
        return outcome

    async def save_message(self, element: Tag) -> SaveOutcome:
        msg = self.provider.extract_single_message(element, self.page, session=self.session)
        if msg is None:
            return self._no_content("Message has no content")
        return await self._send(SaveRequest(
            content=msg.content,
            conversation_title=msg.title,
            service=self.provider.name,
            message_type=MessageType.SINGLE,
            metadata={"role": msg.role, "url": self.page.url},
        ))

    async def save_capture(self, mode: CaptureMode | str, count: int | None = None) -> SaveOutcome:
        """Capture by *mode* and save the messages as one note.

        Raises:
            ValueError: for an unknown *mode*.
        """
        mode = CaptureMode(mode)
        if mode is CaptureMode.RECENT and count is None:
            count = self.settings.recent_count
        result = self.provider.capture_messages(self.page, mode, count, session=self.session)
        if not result.success:
            return self._no_content(result.error or "No messages found")
        return await self._send(SaveRequest(
            content=format_messages(result.messages, mode, count),
            conversation_title=result.title,
            service=self.provider.name,
            message_type=_CAPTURE_TYPES[mode],
            metadata={"count": len(result.messages), "url": self.page.url},
        ))

    async def save_selection(self) -> SaveOutcome:
        text = self.page.selected_text()
        if not text:
            return self._no_content("Nothing is selected")
        return await self._send(SaveRequest(
            content=text,
            conversation_title=self.provider.get_title(self.page),
            service=self.provider.name,
            message_type=MessageType.SELECTION,
            metadata={"type": "selection", "url": self.page.url},
        ))

    async def save_artifacts(self, element: Tag | None = None) -> SaveOutcome:
        """Save every artifact in *element* (or the whole page) as its own note.

        Artifacts larger than the chunk size are split; the parts are saved
        concurrently and the result is their aggregate.
        """
        elements = [element] if element is not None else self.provider.find_message_elements(self.page)
        artifacts = [a for el in elements for a in self.provider.extract_artifacts(el)]
        if not artifacts:
            return self._no_content("No artifacts found")

        requests: list[SaveRequest] = []
        for artifact in artifacts:
            parts = await split_text_async(artifact.content, self.settings.chunk_size)
            for part in parts:
                metadata: dict[str, Any] = {
                    "artifactTitle": artifact.title,
                    "artifactLanguage": artifact.language,
                    "artifactFilename": artifact.filename,
                }
                if part.part is not None:
                    metadata["part"] = part.part
                    metadata["totalParts"] = part.total_parts
                requests.append(SaveRequest(
                    content=part.content,
                    conversation_title=artifact.title,
                    service=self.provider.name,
                    message_type=MessageType.ARTIFACT,
                    metadata=metadata,
                ))

        logger.debug("Saving %d artifact request(s)", len(requests))
        outcomes = await asyncio.gather(*(self._send(r) for r in requests))
        return aggregate_outcomes(list(outcomes))
