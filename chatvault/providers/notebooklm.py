"""NotebookLM (notebooklm.google.com).

Chat turns are Angular Material cards; the user's own questions carry
``to-user-message-card-content``.
"""

from __future__ import annotations

from chatvault.extractors.selectors import SelectorSet
from chatvault.providers.base import BaseProvider


class NotebookLMProvider(BaseProvider):
    name = "notebooklm"
    hostnames = ("notebooklm.google.com",)
    title_suffixes = (" | NotebookLM", " - Google NotebookLM", " - NotebookLM")
    default_title = "NotebookLM Chat"
    default_recent_count = 10

    selectors = SelectorSet(
        container=(
            "mat-card.mat-mdc-card, mat-card.to-user-message-card-content, "
            "mat-card.from-user-message-card-content",
            ".chat-message-pair mat-card",
        ),
        user=("mat-card.to-user-message-card-content",),
        assistant=(
            "mat-card.from-user-message-card-content",
            "mat-card.mat-mdc-card:not(.to-user-message-card-content)",
        ),
        content=(
            ".message-text-content",
            ".message-content",
            "mat-card-content .message-content",
        ),
        extra={
            "actions": ("chat-actions.actions-container", "mat-card-actions"),
        },
    )

    def affordance_anchor(self, element):
        for selector in self.selectors.extra["actions"]:
            found = element.select_one(selector)
            if found is not None:
                return found
        return element
