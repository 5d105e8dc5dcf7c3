"""ChatGPT (chatgpt.com / chat.openai.com)."""

from __future__ import annotations

from chatvault.extractors.selectors import SelectorSet
from chatvault.providers.base import BaseProvider


class ChatGPTProvider(BaseProvider):
    name = "chatgpt"
    hostnames = ("chatgpt.com", "chat.openai.com")
    title_suffixes = (" - ChatGPT", " | ChatGPT")
    default_title = "ChatGPT Conversation"

    selectors = SelectorSet(
        container=(
            "[data-message-author-role][data-message-id]",
            "[data-message-author-role]:not([data-testid])",
            '[data-testid^="conversation-turn-"]',
            ".conversation-turn",
            ".group.w-full [data-message-author-role]",
        ),
        user=(
            '[data-message-author-role="user"]',
            '.conversation-turn [data-message-author-role="user"]',
        ),
        assistant=(
            '[data-message-author-role="assistant"]',
            '.conversation-turn [data-message-author-role="assistant"]',
        ),
        content=(
            ".markdown",
            '[class*="markdown"]',
            ".prose",
            '[class*="prose"]',
            ".whitespace-pre-wrap",
        ),
    )
