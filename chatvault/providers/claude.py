"""Claude (claude.ai).

When an active :class:`~chatvault.providers.claude_api.ClaudeApiSession` is
supplied, message bodies come from the conversation API (original Markdown)
and the page only tells which message is which.  Without a session, or when
the API fails, the rendered HTML is converted instead.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from bs4 import Tag

from chatvault.errors import ClaudeApiError
from chatvault.extractors.selectors import SelectorSet
from chatvault.items import ExtractedMessage
from chatvault.providers.base import BaseProvider
from chatvault.providers.claude_api import ClaudeApiSession, message_index_from_render_count

if TYPE_CHECKING:
    from chatvault.page import Page

logger = logging.getLogger(__name__)

RENDER_COUNT_ATTR = "data-test-render-count"


class ClaudeProvider(BaseProvider):
    name = "claude"
    hostnames = ("claude.ai",)
    title_suffixes = (" | Claude", " – Claude", " - Claude")
    default_title = "Claude Chat"

    selectors = SelectorSet(
        container=(
            f"[{RENDER_COUNT_ATTR}]",
            '[data-testid="user-message"], .font-claude-response',
            '[data-testid="user-message"], .font-claude-message',
            "[data-is-streaming]",
        ),
        user=('[data-testid="user-message"]',),
        assistant=(".font-claude-response", ".font-claude-message", "[data-is-streaming]"),
        content=(
            '[data-testid="user-message"]',
            ".font-claude-response",
            ".font-claude-message",
            "div.prose",
        ),
        artifact=(
            '[data-testid="artifact"]',
            ".artifact-container",
            '[data-testid="artifact-view"]',
            'div[class*="artifact-block"]',
        ),
        artifact_title=('[data-testid="artifact-title"]', ".artifact-title", "h2", "h3"),
        artifact_content=(
            '[data-testid="artifact-content"]',
            ".artifact-content",
            ".code-block__code",
        ),
        extra={"copy_button": ('[data-testid="action-bar-copy"]',)},
    )

    def affordance_anchor(self, element: Tag) -> Tag:
        copy_button = element.select_one(self.selectors.extra["copy_button"][0])
        if copy_button is not None and copy_button.parent is not None:
            return copy_button.parent
        return element

    def render_container(self, element: Tag) -> Tag | None:
        if element.has_attr(RENDER_COUNT_ATTR):
            return element
        return element.find_parent(attrs={RENDER_COUNT_ATTR: True})

    def extract_single_message(
        self,
        element: Tag,
        page: Page | None = None,
        session: ClaudeApiSession | None = None,
    ) -> ExtractedMessage | None:
        if session is not None and session.is_active:
            container = self.render_container(element)
            if container is not None:
                index = message_index_from_render_count(container.get(RENDER_COUNT_ATTR))
                try:
                    msg = session.message_at(index)
                except ClaudeApiError as exc:
                    logger.warning("Claude API read failed, converting page HTML: %s", exc)
                    msg = None
                if msg is not None:
                    title = self.get_title(page) if page is not None else msg.title
                    return replace(msg, title=title, source=element)
        return super().extract_single_message(element, page, session=session)
