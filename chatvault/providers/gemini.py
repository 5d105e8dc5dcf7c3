"""Gemini (gemini.google.com) and Google AI Studio.

Besides chat turns, Gemini renders generated code in ``code-immersive-panel``
side panels backed by a Monaco editor.  Those panels are captured as
assistant messages and exposed as artifacts.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from bs4 import BeautifulSoup, Tag

from chatvault.extractors.markdown import fenced_block
from chatvault.extractors.selectors import SelectorSet, outermost
from chatvault.items import Artifact, ExtractedMessage
from chatvault.language import language_from_title
from chatvault.providers.base import BaseProvider, artifact_filename

if TYPE_CHECKING:
    from chatvault.page import Page

logger = logging.getLogger(__name__)

PANEL_TAG = "code-immersive-panel"
_TOP_RE = re.compile(r"top:\s*(-?\d+(?:\.\d+)?)px")


def remove_duplicate_lines(lines: list[Tag]) -> list[str]:
    """Text of Monaco ``.view-line`` rows with re-rendered duplicates removed.

    Rows carrying a ``top:`` offset are de-duplicated by offset and put in
    visual order; otherwise only consecutive repeats are dropped.
    """
    by_top: dict[float, str] = {}
    for line in lines:
        m = _TOP_RE.search(str(line.get("style") or ""))
        if m is None:
            break
        by_top.setdefault(float(m.group(1)), line.get_text())
    else:
        if by_top:
            return [by_top[k].replace("\xa0", " ") for k in sorted(by_top)]

    result: list[str] = []
    for line in lines:
        text = line.get_text().replace("\xa0", " ")
        if result and result[-1] == text:
            continue
        result.append(text)
    return result


class GeminiProvider(BaseProvider):
    name = "gemini"
    hostnames = ("gemini.google.com", "aistudio.google.com")
    title_suffixes = (" | Gemini", " - Gemini", " | Google AI Studio", " - Google AI Studio")
    default_title = "Gemini Chat"

    selectors = SelectorSet(
        container=(
            "user-query, model-response",
            "article[data-author]",
            "main article",
            'message-content, [id^="message-content-id-"], .model-response-text, .user-message',
            "[data-message-id]",
        ),
        user=(
            "user-query",
            ".user-message",
            '[data-role="user"]',
            '[data-author="user"]',
        ),
        assistant=(
            "model-response",
            "message-content",
            '[id^="message-content-id-"]',
            ".model-response-text",
            '[data-role="model"]',
            '[data-author="model"]',
            '[data-author="assistant"]',
        ),
        content=(
            "[data-message-content]",
            ".markdown",
            ".markdown-main-panel",
            ".model-response-text",
            ".query-text",
            '[class*="markdown"]',
        ),
        artifact=(PANEL_TAG,),
        artifact_title=(".title-text",),
        artifact_content=('[data-test-id="code-editor"]',),
        extra={"code_output": ('[data-test-id="code-output-stdout-stderr"]',)},
    )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def find_message_elements(self, page: Page) -> list[Tag]:
        messages = super().find_message_elements(page)
        ids = {id(m) for m in messages}
        panels = [
            p for p in page.soup.find_all(PANEL_TAG)
            if id(p) not in ids and not any(id(a) in ids for a in p.parents)
        ]
        return outermost(messages + panels) if panels else messages

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def prepare_clone(self, clone: Tag) -> None:
        soup = BeautifulSoup("", "lxml")
        for panel in clone.find_all(PANEL_TAG):
            _title, code, lang = self._panel_code(panel)
            pre = soup.new_tag("pre")
            code_tag = soup.new_tag("code", attrs={"class": f"language-{lang}"} if lang else {})
            code_tag.string = code
            pre.append(code_tag)
            panel.replace_with(pre)

        for selector in self.selectors.extra["code_output"]:
            for output in clone.select(selector):
                text = output.get_text().strip("\n")
                if not text.strip():
                    output.decompose()
                    continue
                wrapper = soup.new_tag("div")
                label = soup.new_tag("p")
                label.string = "Output:"
                pre = soup.new_tag("pre")
                code_tag = soup.new_tag("code", attrs={"class": "language-text"})
                code_tag.string = text
                pre.append(code_tag)
                wrapper.append(label)
                wrapper.append(pre)
                output.replace_with(wrapper)

    def extract_single_message(
        self,
        element: Tag,
        page: Page | None = None,
        session: Any = None,
    ) -> ExtractedMessage | None:
        if element.name == PANEL_TAG:
            _title, code, lang = self._panel_code(element)
            if not code.strip():
                return None
            return ExtractedMessage(
                role="assistant",
                content=fenced_block(code, lang),
                title=self.get_title(page),
                source=element,
            )
        return super().extract_single_message(element, page, session=session)

    # ------------------------------------------------------------------
    # Code panels
    # ------------------------------------------------------------------

    def _panel_code(self, panel: Tag) -> tuple[str, str, str]:
        """``(title, code, language)`` for a code-immersive panel."""
        title_el = panel.select_one(".title-text")
        title = " ".join(title_el.get_text(" ").split()) if title_el is not None else "Code"

        editor = panel.select_one('[data-test-id="code-editor"]') or panel
        code = ""
        textarea = editor.find("textarea")
        if textarea is not None and textarea.get_text().strip():
            code = textarea.get_text()
        else:
            rows = editor.select(".view-lines .view-line") or editor.select(".view-line")
            if rows:
                code = "\n".join(remove_duplicate_lines(rows))
            else:
                pre = editor.find("pre")
                code = (pre or editor).get_text()
        return title, code.strip("\n"), language_from_title(title)

    def extract_artifact(self, container: Tag) -> Artifact | None:
        if container.name != PANEL_TAG:
            return None
        title, code, lang = self._panel_code(container)
        if not code.strip():
            return None
        return Artifact(
            title=title,
            content=fenced_block(code, lang),
            language=lang,
            filename=artifact_filename(title, lang),
        )
