"""Rendered chat page snapshots and the active text selection.

A :class:`Page` wraps a parsed document together with its URL.  It can be
built from saved HTML or from a live Playwright page (optional ``browser``
extra).  The selection is a :class:`SelectionRange` between two elements in
document order, mirroring a browser selection range.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bs4 import BeautifulSoup, NavigableString, Tag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionRange:
    """Inclusive range from *start* to the end of *end*."""

    start: Tag
    end: Tag


def _element_positions(soup: BeautifulSoup) -> dict[int, int]:
    return {id(node): i for i, node in enumerate(soup.descendants)}


def _span(el: Tag, positions: dict[int, int]) -> tuple[int, int]:
    begin = positions.get(id(el), -1)
    last = begin
    for node in el.descendants:
        last = positions.get(id(node), last)
    return begin, last


@dataclass
class Page:
    soup: BeautifulSoup
    url: str = ""
    selection: SelectionRange | None = field(default=None)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_html(cls, html: str, url: str = "") -> Page:
        return cls(soup=BeautifulSoup(html or "", "lxml"), url=url)

    @classmethod
    def from_file(cls, path: str | Path, url: str = "") -> Page:
        html = Path(path).read_text(encoding="utf-8", errors="replace")
        page = cls.from_html(html, url=url)
        if not page.url:
            canonical = page.soup.select_one('link[rel="canonical"], meta[property="og:url"]')
            if canonical is not None:
                page.url = str(canonical.get("href") or canonical.get("content") or "")
        return page

    @classmethod
    def from_browser(cls, browser_page: Any) -> Page:
        """Snapshot a live Playwright page (anything with ``content()`` and ``url``)."""
        return cls.from_html(browser_page.content(), url=str(getattr(browser_page, "url", "")))

    def replace_html(self, html: str) -> None:
        """Swap in a fresh snapshot; any selection refers to the old tree and is dropped."""
        self.soup = BeautifulSoup(html or "", "lxml")
        self.selection = None

    # ------------------------------------------------------------------
    # Document info
    # ------------------------------------------------------------------

    @property
    def title(self) -> str:
        tag = self.soup.title
        if tag is None:
            return ""
        return " ".join(tag.get_text(" ").split())

    @property
    def hostname(self) -> str:
        from urllib.parse import urlparse

        return (urlparse(self.url).hostname or "").lower()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, start: Tag, end: Tag | None = None) -> SelectionRange:
        """Select from *start* through *end* (defaults to *start* alone)."""
        end = end if end is not None else start
        positions = _element_positions(self.soup)
        if positions.get(id(start), 0) > positions.get(id(end), 0):
            start, end = end, start
        self.selection = SelectionRange(start=start, end=end)
        return self.selection

    def clear_selection(self) -> None:
        self.selection = None

    def _selection_span(self, positions: dict[int, int]) -> tuple[int, int] | None:
        if self.selection is None:
            return None
        begin, _ = _span(self.selection.start, positions)
        _, last = _span(self.selection.end, positions)
        if begin < 0 or last < 0:
            return None
        return begin, last

    def selected_elements(self, elements: list[Tag]) -> list[Tag]:
        """Filter *elements* down to those overlapping the current selection."""
        if self.selection is None:
            return []
        positions = _element_positions(self.soup)
        selected = self._selection_span(positions)
        if selected is None:
            return []
        kept = []
        for el in elements:
            begin, last = _span(el, positions)
            if begin >= 0 and begin <= selected[1] and selected[0] <= last:
                kept.append(el)
        return kept

    def selected_text(self) -> str:
        positions = _element_positions(self.soup)
        selected = self._selection_span(positions)
        if selected is None:
            return ""
        chunks: list[str] = []
        for node in self.soup.descendants:
            pos = positions[id(node)]
            if pos < selected[0]:
                continue
            if pos > selected[1]:
                break
            if type(node) is not NavigableString:
                continue
            if node.parent is not None and node.parent.name in ("script", "style"):
                continue
            chunks.append(str(node))
        text = "".join(chunks)
        lines = [" ".join(line.split()) for line in text.splitlines()]
        return "\n".join(line for line in lines if line).strip()


def fetch_rendered_html(
    url: str,
    *,
    timeout: int = 30,
    user_data_dir: str | Path | None = None,
    wait_for: str | None = None,
    headless: bool = True,
) -> str:
    """Load *url* in Chromium and return the rendered HTML (requires playwright).

    Chat services need a signed-in session, so *user_data_dir* points at a
    persistent browser profile.  *wait_for* is an optional CSS selector to
    wait for before taking the snapshot.
    """
    from playwright.sync_api import sync_playwright

    with sync_playwright() as p:
        if user_data_dir:
            ctx = p.chromium.launch_persistent_context(
                str(Path(user_data_dir).expanduser()),
                headless=headless,
                args=["--disable-dev-shm-usage", "--disable-gpu"],
            )
            browser = None
        else:
            browser = p.chromium.launch(headless=headless, args=["--disable-dev-shm-usage"])
            ctx = browser.new_context(viewport={"width": 1920, "height": 1080})
        try:
            page = ctx.pages[0] if ctx.pages else ctx.new_page()
            page.goto(url, timeout=timeout * 1000, wait_until="domcontentloaded")
            if wait_for:
                try:
                    page.wait_for_selector(wait_for, timeout=timeout * 1000)
                except Exception as exc:
                    logger.warning("Selector %r did not appear on %s: %s", wait_for, url, exc)
            html = page.content()
        finally:
            ctx.close()
            if browser is not None:
                browser.close()
    return html
