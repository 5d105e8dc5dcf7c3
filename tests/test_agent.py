"""Tests for the extraction agent, its channel, and note formatting."""

from __future__ import annotations

import asyncio

import pytest
import yaml

from conftest import PAGE_URLS


def _note_meta(note: str) -> dict:
    head, _sep, _body = note[4:].partition("---\n\n")
    return yaml.safe_load(head)


def _note_body(note: str) -> str:
    return note[4:].partition("---\n\n")[2]


class StubCoordinator:
    """Records requests; raises queued errors before answering."""

    def __init__(self, settings=None):
        from chatvault.settings import Settings

        self.settings = settings or Settings()
        self.received = []
        self.errors: list[Exception] = []

    async def save(self, request):
        from chatvault.items import SaveOutcome

        self.received.append(request)
        if self.errors:
            raise self.errors.pop(0)
        return SaveOutcome(success=True, method="clipboard", filename="note.md", message="ok")


@pytest.fixture
def clipboard_channel(make_coordinator):
    from chatvault.agent import CoordinatorChannel
    from chatvault.settings import SaveMethod

    return CoordinatorChannel(make_coordinator(save_method=SaveMethod.CLIPBOARD), retry_delay=0)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

class TestFormatMessages:
    def _messages(self):
        from chatvault.items import ExtractedMessage

        return [
            ExtractedMessage(role="user", content="Hi", title="T"),
            ExtractedMessage(role="assistant", content="Hello!", title="T"),
        ]

    def test_full_conversation(self):
        from chatvault.agent import format_messages

        assert format_messages(self._messages(), "all") == (
            "# Full Conversation\n\n"
            "### User\n\nHi\n\n---\n\n"
            "### Assistant\n\nHello!\n"
        )

    def test_recent_heading_uses_count(self):
        from chatvault.agent import format_messages

        assert format_messages(self._messages(), "recent", 5).startswith("# Last 5 Messages\n\n")
        assert format_messages(self._messages(), "recent").startswith("# Last 2 Messages\n\n")

    def test_selected_heading(self):
        from chatvault.agent import format_messages

        assert format_messages(self._messages()[:1], "selected") == "# Selected Messages\n\n### User\n\nHi\n"


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

class TestCoordinatorChannel:
    def test_payload_is_copied(self):
        from chatvault.agent import CoordinatorChannel
        from chatvault.items import SaveRequest

        coordinator = StubCoordinator()
        request = SaveRequest(content="x", service="chatgpt", metadata={"n": [1]})
        outcome = asyncio.run(CoordinatorChannel(coordinator).send(request))
        assert outcome.success
        (received,) = coordinator.received
        assert received == request
        assert received is not request
        assert received.metadata["n"] is not request.metadata["n"]

    def test_transient_failure_retried_once(self):
        from chatvault.agent import CoordinatorChannel
        from chatvault.items import SaveRequest

        coordinator = StubCoordinator()
        coordinator.errors.append(RuntimeError("Could not establish connection. Receiving end does not exist."))
        outcome = asyncio.run(CoordinatorChannel(coordinator, retry_delay=0).send(
            SaveRequest(content="x", service="chatgpt")))
        assert outcome.success
        assert len(coordinator.received) == 2

    def test_second_transient_failure_reported(self):
        from chatvault.agent import CoordinatorChannel
        from chatvault.errors import ErrorCode, user_message
        from chatvault.items import SaveRequest

        coordinator = StubCoordinator()
        coordinator.errors.extend([RuntimeError("message port closed")] * 2)
        outcome = asyncio.run(CoordinatorChannel(coordinator, retry_delay=0).send(
            SaveRequest(content="x", service="chatgpt")))
        assert not outcome.success
        assert outcome.message == user_message(ErrorCode.CHANNEL_CLOSED)

    def test_closed_channel(self):
        from chatvault.agent import CoordinatorChannel
        from chatvault.errors import ErrorCode, user_message
        from chatvault.items import SaveRequest

        coordinator = StubCoordinator()
        channel = CoordinatorChannel(coordinator, retry_delay=0)
        channel.close()
        outcome = asyncio.run(channel.send(SaveRequest(content="x", service="chatgpt")))
        assert not outcome.success
        assert outcome.error == "Extension context invalidated"
        assert outcome.message == user_message(ErrorCode.CHANNEL_CLOSED)
        assert coordinator.received == []

    def test_other_errors_not_retried(self):
        from chatvault.agent import CoordinatorChannel
        from chatvault.errors import ErrorCode, user_message
        from chatvault.items import SaveRequest

        coordinator = StubCoordinator()
        coordinator.errors.append(ValueError("bad payload"))
        outcome = asyncio.run(CoordinatorChannel(coordinator, locale="ja").send(
            SaveRequest(content="x", service="chatgpt")))
        assert not outcome.success
        assert outcome.error == "bad payload"
        assert outcome.message == user_message(ErrorCode.SAVE_FAILED, "ja")
        assert len(coordinator.received) == 1


# ---------------------------------------------------------------------------
# Lifecycle and scanning
# ---------------------------------------------------------------------------

class TestAgentLifecycle:
    def test_provider_detected_from_url(self, claude_page):
        from chatvault.agent import ExtractionAgent

        assert ExtractionAgent(claude_page).provider.name == "claude"

    def test_unsupported_page(self):
        from chatvault.agent import ExtractionAgent
        from chatvault.errors import ChatVaultError, ErrorCode
        from chatvault.page import Page

        with pytest.raises(ChatVaultError) as excinfo:
            ExtractionAgent(Page.from_html("<p>x</p>", url="https://example.com/"))
        assert excinfo.value.code is ErrorCode.NO_SERVICE

    def test_start_scans_and_injects_once(self, chatgpt_page):
        from chatvault.agent import ExtractionAgent

        agent = ExtractionAgent(chatgpt_page, scan_retries=1)
        assert asyncio.run(agent.start()) == 4
        agent.scan()
        buttons = chatgpt_page.soup.select(".chatvault-save-btn")
        assert len(buttons) == 4
        assert all(b["data-chatvault-ui"] == "save" for b in buttons)

    def test_buttons_can_be_disabled(self, chatgpt_page):
        from chatvault.agent import ExtractionAgent
        from chatvault.settings import Settings

        agent = ExtractionAgent(chatgpt_page, settings=Settings(show_save_button=False))
        agent.scan()
        assert chatgpt_page.soup.select(".chatvault-save-btn") == []

    def test_claude_button_goes_in_action_bar(self, claude_page):
        from chatvault.agent import ExtractionAgent

        ExtractionAgent(claude_page).scan()
        copy_button = claude_page.soup.select_one('[data-testid="action-bar-copy"]')
        assert copy_button.parent.select_one(".chatvault-save-btn") is not None

    def test_initial_scan_retries_until_messages_appear(self):
        from chatvault.agent import ExtractionAgent
        from chatvault.page import Page

        page = Page.from_html("<main></main>", url=PAGE_URLS["chatgpt"])
        agent = ExtractionAgent(page, scan_interval=0, scan_retries=3)
        assert asyncio.run(agent.start()) == 0
        assert agent.scan_count == 3

    def test_no_wait_after_last_failed_scan(self, monkeypatch):
        from chatvault.agent import ExtractionAgent
        from chatvault.page import Page

        waits: list[float] = []

        async def fake_sleep(delay):
            waits.append(delay)

        monkeypatch.setattr("chatvault.agent.asyncio.sleep", fake_sleep)
        page = Page.from_html("<main></main>", url=PAGE_URLS["chatgpt"])
        agent = ExtractionAgent(page, scan_interval=5, scan_retries=3)
        assert asyncio.run(agent.start()) == 0
        assert waits == [5, 5]

    def test_debounced_rescan(self, chatgpt_page):
        from chatvault.agent import ExtractionAgent

        async def run():
            agent = ExtractionAgent(chatgpt_page, debounce_delay=0.01, scan_retries=1)
            await agent.start()
            for _ in range(5):
                agent.notify_content_changed()
            await asyncio.sleep(0.1)
            agent.stop()
            agent.notify_content_changed()
            await asyncio.sleep(0.05)
            return agent.scan_count

        assert asyncio.run(run()) == 2

    def test_stop_cancels_pending_scan(self, chatgpt_page):
        from chatvault.agent import ExtractionAgent

        async def run():
            agent = ExtractionAgent(chatgpt_page, debounce_delay=0.05, scan_retries=1)
            await agent.start()
            agent.notify_content_changed()
            agent.stop()
            await asyncio.sleep(0.1)
            return agent.scan_count

        assert asyncio.run(run()) == 1

    def test_session_updates_trigger_rescan(self, claude_page):
        from chatvault.agent import ExtractionAgent
        from chatvault.providers.claude_api import ClaudeApiSession, SessionState

        versions = iter(range(1000))

        def fetch(url):
            return {"updated_at": f"v{next(versions)}", "chat_messages": []}

        session = ClaudeApiSession(claude_page.url, org_id="org-1", fetch_json=fetch, poll_interval=0.01)

        async def run():
            agent = ExtractionAgent(claude_page, session=session, debounce_delay=0, scan_retries=1)
            await agent.start()
            await asyncio.sleep(0.2)
            agent.stop()
            return agent.scan_count

        assert asyncio.run(run()) > 1
        assert session.state is SessionState.STOPPED


# ---------------------------------------------------------------------------
# Saving through the coordinator
# ---------------------------------------------------------------------------

class TestAgentSaves:
    def test_save_capture_all(self, chatgpt_page, clipboard_channel, clipboard):
        from chatvault.agent import ExtractionAgent

        agent = ExtractionAgent(chatgpt_page, channel=clipboard_channel)
        outcome = asyncio.run(agent.save_capture("all"))

        assert outcome.success
        assert outcome.method == "clipboard"
        assert "_chatgpt_Sorting_lists_" in outcome.filename
        (note,) = clipboard.copied
        assert _note_meta(note)["type"] == "all"
        body = _note_body(note)
        assert body.startswith(
            "# Full Conversation\n\n### User\n\nHow do I sort a list in Python?\n\n---\n\n### Assistant\n\n"
        )
        assert body.endswith("### Assistant\n\nYou're welcome.")

    def test_save_capture_recent(self, chatgpt_page, clipboard_channel, clipboard):
        from chatvault.agent import ExtractionAgent

        agent = ExtractionAgent(chatgpt_page, channel=clipboard_channel)
        asyncio.run(agent.save_capture("recent", count=2))
        (note,) = clipboard.copied
        assert _note_meta(note)["type"] == "recent"
        assert _note_body(note).startswith("# Last 2 Messages\n\n### User\n\nThanks!")

    def test_save_capture_selected(self, chatgpt_page, clipboard_channel, clipboard):
        from chatvault.agent import ExtractionAgent

        agent = ExtractionAgent(chatgpt_page, channel=clipboard_channel)
        chatgpt_page.select(agent.provider.find_message_elements(chatgpt_page)[3])
        outcome = asyncio.run(agent.save_capture("selected"))
        assert "_selection_chatgpt_" in outcome.filename
        assert _note_body(clipboard.copied[0]).startswith("# Selected Messages\n\n### Assistant")

    def test_nothing_captured(self, clipboard_channel, clipboard):
        from chatvault.agent import ExtractionAgent
        from chatvault.errors import ErrorCode, user_message
        from chatvault.page import Page

        page = Page.from_html("<main></main>", url=PAGE_URLS["chatgpt"])
        outcome = asyncio.run(ExtractionAgent(page, channel=clipboard_channel).save_capture("all"))
        assert not outcome.success
        assert outcome.message == user_message(ErrorCode.NO_CONTENT)
        assert clipboard.copied == []

    def test_unknown_mode(self, chatgpt_page, clipboard_channel):
        from chatvault.agent import ExtractionAgent

        with pytest.raises(ValueError):
            asyncio.run(ExtractionAgent(chatgpt_page, channel=clipboard_channel).save_capture("some"))

    def test_save_message(self, chatgpt_page, clipboard_channel, clipboard):
        from chatvault.agent import ExtractionAgent

        agent = ExtractionAgent(chatgpt_page, channel=clipboard_channel)
        agent.scan()
        element = agent.provider.find_message_elements(chatgpt_page)[0]
        outcome = asyncio.run(agent.save_message(element))
        assert outcome.success
        (note,) = clipboard.copied
        assert _note_meta(note)["type"] == "single"
        assert _note_body(note) == "How do I sort a list in Python?"

    def test_save_selection(self, gemini_page, clipboard_channel, clipboard):
        from chatvault.agent import ExtractionAgent

        agent = ExtractionAgent(gemini_page, channel=clipboard_channel)
        user_el = agent.provider.find_message_elements(gemini_page)[0]
        gemini_page.select(user_el)
        outcome = asyncio.run(agent.save_selection())

        assert "_selection_gemini_Fibonacci_helper_" in outcome.filename
        meta = _note_meta(clipboard.copied[0])
        assert meta["type"] == "selection"
        assert meta["source"] == "text selection"
        assert meta["url"] == PAGE_URLS["gemini"]
        assert _note_body(clipboard.copied[0]) == "Write fibonacci in Python"

    def test_save_selection_without_selection(self, gemini_page, clipboard_channel):
        from chatvault.agent import ExtractionAgent

        outcome = asyncio.run(ExtractionAgent(gemini_page, channel=clipboard_channel).save_selection())
        assert not outcome.success

    def test_save_artifacts(self, claude_page, clipboard_channel, clipboard):
        from chatvault.agent import ExtractionAgent

        outcome = asyncio.run(ExtractionAgent(claude_page, channel=clipboard_channel).save_artifacts())
        assert outcome.success
        assert outcome.filename.startswith("2024-05-06_07-08-09_artifact_claude_utils_")
        meta = _note_meta(clipboard.copied[0])
        assert meta["title"] == "utils"
        assert meta["artifact_filename"] == "utils.js"
        assert meta["artifact_language"] == "javascript"
        assert "part" not in meta

    def test_large_artifact_split_into_parts(self, claude_page, make_coordinator, clipboard):
        from chatvault.agent import CoordinatorChannel, ExtractionAgent
        from chatvault.settings import SaveMethod

        coordinator = make_coordinator(save_method=SaveMethod.CLIPBOARD, chunk_size=40)
        agent = ExtractionAgent(claude_page, channel=CoordinatorChannel(coordinator))
        outcome = asyncio.run(agent.save_artifacts())

        assert outcome.success
        assert outcome.message == "Saved 3 parts"
        metas = sorted((_note_meta(n) for n in clipboard.copied), key=lambda m: m["part"])
        assert [(m["part"], m["totalParts"]) for m in metas] == [(1, 3), (2, 3), (3, 3)]

    def test_no_artifacts(self, chatgpt_page, clipboard_channel):
        from chatvault.agent import ExtractionAgent

        outcome = asyncio.run(ExtractionAgent(chatgpt_page, channel=clipboard_channel).save_artifacts())
        assert not outcome.success
        assert outcome.error == "No artifacts found"

    def test_missing_channel(self, chatgpt_page):
        from chatvault.agent import ExtractionAgent
        from chatvault.errors import ChatVaultError

        with pytest.raises(ChatVaultError):
            asyncio.run(ExtractionAgent(chatgpt_page).save_capture("all"))
