"""Tests for platform providers: discovery, roles, capture modes, artifacts."""

from __future__ import annotations

import pytest

# ---------------------------------------------------------------------------
# Service detection and registry
# ---------------------------------------------------------------------------

class TestServiceDetection:
    @pytest.mark.parametrize(("url", "service"), [
        ("https://chatgpt.com/c/abc", "chatgpt"),
        ("https://chat.openai.com/c/abc", "chatgpt"),
        ("https://claude.ai/chat/1234", "claude"),
        ("https://gemini.google.com/app/xyz", "gemini"),
        ("https://aistudio.google.com/prompts/1", "gemini"),
        ("https://notebooklm.google.com/notebook/n1", "notebooklm"),
        ("https://example.com/", None),
        ("", None),
    ])
    def test_detect_service(self, url, service):
        from chatvault.providers import detect_service

        assert detect_service(url) == service

    def test_get_provider(self):
        from chatvault.providers import ClaudeProvider, get_provider

        assert isinstance(get_provider("claude"), ClaudeProvider)
        assert get_provider("CLAUDE").name == "claude"

    def test_unknown_provider_raises(self):
        from chatvault.providers import get_provider

        with pytest.raises(KeyError):
            get_provider("perplexity")

    def test_builtins_satisfy_protocol(self):
        from chatvault.plugins import ProviderPlugin
        from chatvault.providers import BUILTIN_PROVIDERS

        assert all(isinstance(p, ProviderPlugin) for p in BUILTIN_PROVIDERS)

    def test_registered_provider_is_used(self):
        from chatvault.extractors.selectors import SelectorSet
        from chatvault.page import Page
        from chatvault.plugins import clear_plugins, register_provider
        from chatvault.providers import detect_service, get_provider
        from chatvault.providers.base import BaseProvider

        class ExampleProvider(BaseProvider):
            name = "example"
            hostnames = ("chat.example.com",)
            selectors = SelectorSet(container=(".msg",), user=(".msg.me",))

        register_provider(ExampleProvider())
        try:
            assert detect_service("https://chat.example.com/t/1") == "example"
            page = Page.from_html(
                '<div class="msg me">hi</div><div class="msg">hello</div>',
                url="https://chat.example.com/t/1",
            )
            result = get_provider("example").capture_messages(page, "all")
            assert [m.role for m in result.messages] == ["user", "assistant"]
            assert result.title == "Untitled Chat"
        finally:
            clear_plugins()


# ---------------------------------------------------------------------------
# Role inference
# ---------------------------------------------------------------------------

class TestRoleInference:
    def _el(self, html: str):
        from bs4 import BeautifulSoup

        return BeautifulSoup(html, "lxml").body.contents[0]

    def test_direct_selector_match(self):
        from chatvault.providers import ChatGPTProvider

        el = self._el('<div data-message-author-role="user">hi</div>')
        assert ChatGPTProvider().resolve_role(el) == "user"

    def test_descendant_match(self):
        from chatvault.providers import ChatGPTProvider

        el = self._el('<div class="turn"><div data-message-author-role="user">hi</div></div>')
        assert ChatGPTProvider().resolve_role(el) == "user"

    def test_text_marker(self):
        from chatvault.providers import ChatGPTProvider

        el = self._el("<div><span>You said:</span> how are you?</div>")
        assert ChatGPTProvider().resolve_role(el) == "user"

    def test_undecided_role_defaults_to_assistant(self):
        # Known bias: anything the selectors and markers cannot place is
        # attributed to the assistant, even a user's own words.
        from chatvault.providers import ChatGPTProvider

        el = self._el('<div class="conversation-turn"><p>Sure, here it is.</p></div>')
        assert ChatGPTProvider().resolve_role(el) == "assistant"


# ---------------------------------------------------------------------------
# ChatGPT
# ---------------------------------------------------------------------------

class TestChatGPTProvider:
    def test_finds_messages_in_order(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        elements = ChatGPTProvider().find_message_elements(chatgpt_page)
        assert [el["data-message-id"] for el in elements] == ["msg-1", "msg-2", "msg-3", "msg-4"]

    def test_title_suffix_stripped(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        assert ChatGPTProvider().get_title(chatgpt_page) == "Sorting lists"

    def test_capture_all(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        result = ChatGPTProvider().capture_messages(chatgpt_page, "all")
        assert result.success
        assert [m.role for m in result.messages] == ["user", "assistant", "user", "assistant"]
        assert result.messages[0].content == "How do I sort a list in Python?"
        assert result.title == "Sorting lists"

    def test_assistant_markdown(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        content = ChatGPTProvider().capture_messages(chatgpt_page, "all").messages[1].content
        assert "Use the built-in `sorted` function:" in content
        assert "```python\nnums = [3, 1, 2]\nprint(sorted(nums))\n```" in content
        assert "\n\n---\n\n" in content
        assert "| Function | Returns |" in content
        assert "| sorted | a new list |" in content
        assert "Copy code" not in content

    def test_capture_recent(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        result = ChatGPTProvider().capture_messages(chatgpt_page, "recent", count=2)
        assert [m.content for m in result.messages] == ["Thanks!", "You're welcome."]

    def test_capture_selected(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        provider = ChatGPTProvider()
        elements = provider.find_message_elements(chatgpt_page)
        chatgpt_page.select(elements[2])
        result = provider.capture_messages(chatgpt_page, "selected")
        assert [m.content for m in result.messages] == ["Thanks!"]

    def test_selected_range_spanning_messages(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        provider = ChatGPTProvider()
        elements = provider.find_message_elements(chatgpt_page)
        chatgpt_page.select(elements[1].find("p"), elements[2])
        result = provider.capture_messages(chatgpt_page, "selected")
        assert [m.role for m in result.messages] == ["assistant", "user"]

    def test_selected_capture_indexes_document_once(self, chatgpt_page, monkeypatch):
        import chatvault.page
        from chatvault.providers import ChatGPTProvider

        provider = ChatGPTProvider()
        elements = provider.find_message_elements(chatgpt_page)
        chatgpt_page.select(elements[0], elements[3])

        calls: list[int] = []
        original = chatvault.page._element_positions

        def counting(soup):
            calls.append(1)
            return original(soup)

        monkeypatch.setattr(chatvault.page, "_element_positions", counting)
        result = provider.capture_messages(chatgpt_page, "selected")
        assert len(result.messages) == 4
        assert len(calls) == 1

    def test_selected_without_selection_finds_nothing(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        result = ChatGPTProvider().capture_messages(chatgpt_page, "selected")
        assert not result.success
        assert result.error == "No messages found"

    def test_unknown_mode_raises(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        with pytest.raises(ValueError):
            ChatGPTProvider().capture_messages(chatgpt_page, "everything")

    def test_empty_page(self):
        from chatvault.page import Page
        from chatvault.providers import ChatGPTProvider

        page = Page.from_html("<html><body><p>Log in</p></body></html>", url="https://chatgpt.com/")
        result = ChatGPTProvider().capture_messages(page, "all")
        assert not result.success
        assert result.messages == []

    def test_extraction_does_not_mutate_page(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        provider = ChatGPTProvider()
        element = provider.find_message_elements(chatgpt_page)[1]
        before = str(element)
        provider.extract_single_message(element, chatgpt_page)
        assert str(element) == before

    def test_injected_button_not_in_content(self, chatgpt_page):
        from chatvault.providers import ChatGPTProvider

        provider = ChatGPTProvider()
        element = provider.find_message_elements(chatgpt_page)[0]
        button = chatgpt_page.soup.new_tag("span", attrs={"class": "chatvault-save-btn"})
        button.string = "Save to Obsidian"
        element.find("div").append(button)
        msg = provider.extract_single_message(element, chatgpt_page)
        assert msg.content == "How do I sort a list in Python?"

    def test_message_without_content_is_none(self):
        from bs4 import BeautifulSoup

        from chatvault.providers import ChatGPTProvider

        el = BeautifulSoup('<div data-message-author-role="assistant"> </div>', "lxml").body.div
        assert ChatGPTProvider().extract_single_message(el) is None


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------

class TestClaudeProvider:
    def test_capture_all(self, claude_page):
        from chatvault.providers import ClaudeProvider

        result = ClaudeProvider().capture_messages(claude_page, "all")
        assert [m.role for m in result.messages] == ["user", "assistant"]
        assert result.messages[0].content == "Write a helper that parses a JSON config."
        assert result.title == "Parsing config files"

    def test_math_and_code(self, claude_page):
        from chatvault.providers import ClaudeProvider

        content = ClaudeProvider().capture_messages(claude_page, "all").messages[1].content
        assert "The energy is $E = mc^2$ in this example." in content
        assert "```javascript\nexport function parseConfig(text) {" in content
        assert "E=mc2" not in content

    def test_artifacts(self, claude_page):
        from chatvault.providers import ClaudeProvider

        provider = ClaudeProvider()
        user_el, assistant_el = provider.find_message_elements(claude_page)
        assert provider.extract_artifacts(user_el) == []

        (artifact,) = provider.extract_artifacts(assistant_el)
        assert artifact.title == "utils"
        assert artifact.language == "javascript"
        assert artifact.filename == "utils.js"
        assert artifact.content == (
            "```javascript\n"
            "export function parseConfig(text) {\n"
            "  return JSON.parse(text);\n"
            "}\n"
            "```"
        )

    def test_affordance_anchor_is_action_bar(self, claude_page):
        from chatvault.providers import ClaudeProvider

        provider = ClaudeProvider()
        assistant_el = provider.find_message_elements(claude_page)[1]
        anchor = provider.affordance_anchor(assistant_el)
        assert anchor.find("button")["data-testid"] == "action-bar-copy"

    def test_api_session_supplies_content(self, claude_page):
        from chatvault.providers import ClaudeProvider
        from chatvault.providers.claude_api import ClaudeApiSession

        conversation = {
            "name": "Parsing config files",
            "updated_at": "2024-05-06T07:00:00Z",
            "chat_messages": [
                {"sender": "human", "content": [{"type": "text", "text": "Write a helper"}]},
                {"sender": "assistant", "content": [
                    {"type": "thinking", "thinking": "hmm"},
                    {"type": "text", "text": "Here is **the** helper."},
                ]},
            ],
        }
        session = ClaudeApiSession(claude_page.url, org_id="org-1",
                                   fetch_json=lambda url: conversation)
        assert session.initialize()

        provider = ClaudeProvider()
        element = provider.find_message_elements(claude_page)[1]
        msg = provider.extract_single_message(element, claude_page, session=session)
        assert msg.role == "assistant"
        assert msg.content == "Here is **the** helper."
        assert msg.title == "Parsing config files"

    def test_inactive_session_falls_back_to_page(self, claude_page):
        from chatvault.providers import ClaudeProvider
        from chatvault.providers.claude_api import ClaudeApiSession

        session = ClaudeApiSession(claude_page.url, org_id="org-1",
                                   fetch_json=lambda url: {})
        provider = ClaudeProvider()
        element = provider.find_message_elements(claude_page)[0]
        msg = provider.extract_single_message(element, claude_page, session=session)
        assert msg.content == "Write a helper that parses a JSON config."


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------

class TestGeminiProvider:
    def test_messages_include_code_panel(self, gemini_page):
        from chatvault.providers import GeminiProvider

        result = GeminiProvider().capture_messages(gemini_page, "all")
        assert [m.role for m in result.messages] == ["user", "assistant", "assistant"]
        assert result.messages[0].content == "Write fibonacci in Python"
        assert result.title == "Fibonacci helper"

    def test_code_block_header_gives_language(self, gemini_page):
        from chatvault.providers import GeminiProvider

        content = GeminiProvider().capture_messages(gemini_page, "all").messages[1].content
        assert content.startswith("Here you go:")
        assert "```python\ndef fib(n):\n    return n if n < 2 else fib(n - 1) + fib(n - 2)\n```" in content
        assert "Copy code" not in content

    def test_panel_lines_deduplicated(self, gemini_page):
        from chatvault.providers import GeminiProvider

        panel_msg = GeminiProvider().capture_messages(gemini_page, "all").messages[2]
        assert panel_msg.content == "```python\ndef fib(n):\n    return n\n```"

    def test_panel_artifact(self, gemini_page):
        from chatvault.providers import GeminiProvider

        provider = GeminiProvider()
        panel = provider.find_message_elements(gemini_page)[2]
        (artifact,) = provider.extract_artifacts(panel)
        assert artifact.title == "fibonacci.py"
        assert artifact.language == "python"
        assert artifact.filename == "fibonacci.py"

    def test_remove_duplicate_lines_without_offsets(self):
        from bs4 import BeautifulSoup

        from chatvault.providers.gemini import remove_duplicate_lines

        soup = BeautifulSoup(
            '<div class="view-line">a</div><div class="view-line">a</div>'
            '<div class="view-line">b</div><div class="view-line">a</div>',
            "lxml",
        )
        assert remove_duplicate_lines(soup.select(".view-line")) == ["a", "b", "a"]

    def test_remove_duplicate_lines_orders_by_offset(self):
        from bs4 import BeautifulSoup

        from chatvault.providers.gemini import remove_duplicate_lines

        soup = BeautifulSoup(
            '<div class="view-line" style="top:38px">third</div>'
            '<div class="view-line" style="top:0px">first</div>'
            '<div class="view-line" style="top:19px">second</div>',
            "lxml",
        )
        assert remove_duplicate_lines(soup.select(".view-line")) == ["first", "second", "third"]


# ---------------------------------------------------------------------------
# NotebookLM
# ---------------------------------------------------------------------------

class TestNotebookLMProvider:
    def test_capture_all(self, notebooklm_page):
        from chatvault.providers import NotebookLMProvider

        result = NotebookLMProvider().capture_messages(notebooklm_page, "all")
        assert [m.role for m in result.messages] == ["user", "assistant", "user", "assistant"]
        assert result.messages[1].content == "Sleep improves memory consolidation."
        assert result.messages[3].content == "- Walker 2017\n- Stickgold 2005"
        assert result.title == "Sleep research"

    def test_recent_default_count(self, notebooklm_page):
        from chatvault.providers import NotebookLMProvider

        provider = NotebookLMProvider()
        assert provider.default_recent_count == 10
        assert len(provider.capture_messages(notebooklm_page, "recent").messages) == 4

    def test_affordance_anchor(self, notebooklm_page):
        from chatvault.providers import NotebookLMProvider

        provider = NotebookLMProvider()
        user_el, assistant_el = provider.find_message_elements(notebooklm_page)[:2]
        assert provider.affordance_anchor(assistant_el).name == "mat-card-actions"
        assert provider.affordance_anchor(user_el) is user_el


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestArtifactFilename:
    @pytest.mark.parametrize(("title", "language", "expected"), [
        ("utils", "javascript", "utils.js"),
        ("main.py", "python", "main.py"),
        ("My Component", "tsx", "My_Component.tsx"),
        ("notes", "", "notes.txt"),
        ("", "python", "artifact.py"),
    ])
    def test_filename(self, title, language, expected):
        from chatvault.providers.base import artifact_filename

        assert artifact_filename(title, language) == expected
