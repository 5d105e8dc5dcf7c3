"""Shared provider behaviour: locating messages, classifying roles, capturing.

Platform subclasses only declare data (selectors, hostnames, title
suffixes) and override hooks where their markup needs special handling.
"""

from __future__ import annotations

import copy
import logging
import re
from typing import TYPE_CHECKING, Any, ClassVar

from bs4 import Tag

from chatvault.extractors.markdown import fenced_block, html_to_markdown, prepare_fragment
from chatvault.extractors.selectors import (
    SelectorSet,
    has_descendant,
    matches_any,
    outermost,
    select_first,
    select_first_group,
)
from chatvault.items import Artifact, CaptureMode, CaptureResult, ExtractedMessage, Role
from chatvault.language import (
    detect_code_language,
    extension_for,
    language_from_filename,
    normalize_language,
)
from chatvault.settings import DEFAULT_RECENT_COUNT

if TYPE_CHECKING:
    from chatvault.page import Page

logger = logging.getLogger(__name__)

# Attribute/class marking affordances this package injects into the page
INJECTED_MARKER = "chatvault-save-btn"
INJECTED_SELECTOR = f".{INJECTED_MARKER}, [data-chatvault-ui]"

_USER_TEXT_RE = re.compile(r"^\s*(?:you said\b|(?:you|user|me)\s*:)", re.IGNORECASE)
_ASSISTANT_TEXT_RE = re.compile(
    r"^\s*(?:(?:chatgpt|claude|gemini|assistant|notebooklm)(?: said)?\s*:)",
    re.IGNORECASE,
)
_FILENAME_UNSAFE_RE = re.compile(r"[^\w.-]+")


class BaseProvider:
    """Base class for platform providers.

    Attributes:
        name                 -- service identifier (``"chatgpt"``, ``"claude"`` ...)
        hostnames            -- hosts served by this provider
        selectors            -- priority-ordered :class:`SelectorSet`
        title_selectors      -- elements holding the conversation title, tried
                                before the document title
        title_suffixes       -- suffixes stripped from the document title
        default_recent_count -- message count for ``recent`` captures
    """

    name: ClassVar[str] = ""
    hostnames: ClassVar[tuple[str, ...]] = ()
    selectors: ClassVar[SelectorSet] = SelectorSet(container=())
    title_selectors: ClassVar[tuple[str, ...]] = ()
    title_suffixes: ClassVar[tuple[str, ...]] = ()
    default_title: ClassVar[str] = "Untitled Chat"
    default_recent_count: ClassVar[int] = DEFAULT_RECENT_COUNT

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def get_selectors(self) -> SelectorSet:
        return self.selectors

    def handles_host(self, hostname: str) -> bool:
        hostname = (hostname or "").lower()
        return any(hostname == h or hostname.endswith("." + h) for h in self.hostnames)

    def find_message_elements(self, page: Page) -> list[Tag]:
        """Message containers in document order, from the first matching selector."""
        found = select_first_group(page.soup, self.get_selectors().container)
        return outermost(found)

    def content_element(self, element: Tag) -> Tag:
        """The subtree holding the message body (the element itself by default)."""
        content = self.get_selectors().content
        if matches_any(element, content):
            return element
        return select_first(element, content) or element

    def affordance_anchor(self, element: Tag) -> Tag:
        """Where a save control is inserted for *element*."""
        return element

    def get_title(self, page: Page | None) -> str:
        if page is None:
            return self.default_title
        node = select_first(page.soup, self.title_selectors) if self.title_selectors else None
        if node is not None:
            text = " ".join(node.get_text(" ").split())
            if text:
                return text
        title = page.title
        for suffix in self.title_suffixes:
            if title.endswith(suffix):
                title = title[: -len(suffix)]
                break
        return title.strip() or self.default_title

    # ------------------------------------------------------------------
    # Role inference
    # ------------------------------------------------------------------

    def resolve_role(self, element: Tag) -> Role:
        """Classify *element* as ``user`` or ``assistant``.

        Direct selector match first, then descendants, then a leading text
        marker.  Anything undecided is ``assistant``.
        """
        sel = self.get_selectors()
        if matches_any(element, sel.user):
            return "user"
        if matches_any(element, sel.assistant):
            return "assistant"
        if has_descendant(element, sel.user):
            return "user"
        if has_descendant(element, sel.assistant):
            return "assistant"

        head = element.get_text(" ", strip=True)[:80]
        if _USER_TEXT_RE.match(head):
            return "user"
        if _ASSISTANT_TEXT_RE.match(head):
            return "assistant"
        return "assistant"

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def prepare_clone(self, clone: Tag) -> None:
        """Platform hook to rewrite the cloned subtree before conversion."""

    def to_markdown(self, element: Tag) -> str:
        """Clone *element*, drop injected affordances and convert the clone."""
        clone = copy.copy(element)
        for injected in clone.select(INJECTED_SELECTOR):
            injected.decompose()
        self.prepare_clone(clone)
        return html_to_markdown(clone)

    def extract_single_message(
        self,
        element: Tag,
        page: Page | None = None,
        session: Any = None,
    ) -> ExtractedMessage | None:
        content = self.to_markdown(self.content_element(element))
        if not content:
            logger.debug("%s: no content in %s element", self.name, element.name)
            return None
        return ExtractedMessage(
            role=self.resolve_role(element),
            content=content,
            title=self.get_title(page),
            source=element,
        )

    def capture_messages(
        self,
        page: Page,
        mode: CaptureMode | str,
        count: int | None = None,
        session: Any = None,
    ) -> CaptureResult:
        """Capture messages from *page*.

        Raises:
            ValueError: for an unknown *mode*.
        """
        mode = CaptureMode(mode)
        elements = self.find_message_elements(page)
        if mode is CaptureMode.SELECTED:
            elements = page.selected_elements(elements)

        messages: list[ExtractedMessage] = []
        for el in elements:
            msg = self.extract_single_message(el, page, session=session)
            if msg is not None:
                messages.append(msg)

        if mode is CaptureMode.RECENT:
            n = self.default_recent_count if count is None else count
            messages = messages[-n:] if n > 0 else []

        title = self.get_title(page)
        logger.debug("%s: captured %d message(s) in %s mode", self.name, len(messages), mode.value)
        if not messages:
            return CaptureResult(success=False, title=title, error="No messages found")
        return CaptureResult(success=True, messages=messages, title=title)

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def find_artifact_containers(self, element: Tag) -> list[Tag]:
        selectors = self.get_selectors().artifact
        if not selectors:
            return []
        if matches_any(element, selectors):
            return [element]
        return outermost(select_first_group(element, selectors))

    def extract_artifact(self, container: Tag) -> Artifact | None:
        """Build an :class:`Artifact` from an artifact container, else ``None``."""
        sel = self.get_selectors()
        if not sel.artifact or not matches_any(container, sel.artifact):
            return None

        title_el = select_first(container, sel.artifact_title)
        title = " ".join(title_el.get_text(" ").split()) if title_el is not None else ""
        title = title or "Untitled Artifact"
        body_root = select_first(container, sel.artifact_content) or container

        fences: list[str] = []
        language = ""
        for body, lang in self._code_regions(body_root):
            lang = lang or language_from_filename(title)
            language = language or lang
            fences.append(fenced_block(body, lang))
        if not fences:
            return None

        return Artifact(
            title=title,
            content="\n\n".join(fences),
            language=language,
            filename=artifact_filename(title, language),
        )

    def extract_artifacts(self, element: Tag) -> list[Artifact]:
        artifacts: list[Artifact] = []
        for container in self.find_artifact_containers(element):
            artifact = self.extract_artifact(container)
            if artifact is not None:
                artifacts.append(artifact)
        return artifacts

    def _code_regions(self, root: Tag) -> list[tuple[str, str]]:
        """``(code, language)`` pairs for every code region under *root*."""
        regions: list[tuple[str, str]] = []
        for pre in root.find_all("pre"):
            code = pre.find("code")
            body = (code if code is not None else pre).get_text()
            if body.strip():
                regions.append((body, detect_code_language(code, pre)))
        if regions:
            return regions

        for area in root.find_all("textarea"):
            if area.get_text().strip():
                regions.append((area.get_text(), normalize_language(area.get("data-language"))))
        if regions:
            return regions

        clone = copy.copy(root)
        prepare_fragment(clone)
        text = clone.get_text("\n").strip("\n")
        if text.strip():
            code = root.find("code")
            regions.append((text, detect_code_language(code, None) if code is not None else ""))
        return regions


def artifact_filename(title: str, language: str) -> str:
    """``utils`` + javascript → ``utils.js``; titles with an extension are kept."""
    base = _FILENAME_UNSAFE_RE.sub("_", title.strip()).strip("_.") or "artifact"
    if language_from_filename(base):
        return base
    return base + extension_for(language)
