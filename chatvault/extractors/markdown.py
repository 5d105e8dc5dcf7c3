"""Convert chat message HTML to canonical Markdown.

Code blocks become fenced blocks with a language tag, tables become GFM
tables, KaTeX math becomes ``$...$`` / ``$$...$$`` and UI chrome (copy and
edit buttons, toolbars, language chips) is dropped before conversion.

Usage::

    from chatvault.extractors.markdown import html_to_markdown

    html_to_markdown('<pre><code class="language-python">print(1)</code></pre>')
    # '```python\\nprint(1)\\n```'
"""

from __future__ import annotations

import copy
import html as html_lib
import logging
import re
from typing import Any

from bs4 import BeautifulSoup, NavigableString, Tag
from markdownify import ATX, MarkdownConverter

from chatvault.language import (
    detect_code_language,
    is_known_language,
    is_language_label,
    language_from_classes,
    normalize_language,
)

logger = logging.getLogger(__name__)

_EXCESSIVE_BLANK_LINES_RE = re.compile(r"\n{3,}")
_TRAILING_WHITESPACE_RE = re.compile(r"[ \t]+$", re.MULTILINE)
_TABLE_GAP_RE = re.compile(r"^(\|.*\|)[ \t]*\n(?:[ \t]*\n)+(?=\|)", re.MULTILINE)
_HTML_HINT_RE = re.compile(r"<[a-zA-Z][^>]*>")

_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_BLOCK_CLOSE_RE = re.compile(r"</(?:p|div|li|h[1-6]|tr|pre|blockquote|table|ul|ol)\s*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")

# Elements whose contents are never message text
_DROP_TAGS = ["script", "style", "noscript", "template", "svg", "button"]

# Styling-only containers; children are kept, the wrapper adds nothing
_WRAPPER_CLASSES = frozenset({
    "prose",
    "markdown",
    "markdown-main-panel",
    "whitespace-pre-wrap",
    "break-words",
})

# Marker classes that make a bare <code> a block
_PREFORMATTED_CLASSES = frozenset({"whitespace-pre", "!whitespace-pre", "hljs"})

_CHROME_CLASS_RE = re.compile(
    r"toolbar|copy-?button|code-block-decoration|message-actions|action-bar|"
    r"hover-actions|edit-?button|sr-only|chatvault-save-btn|button-container",
    re.IGNORECASE,
)
_CHROME_LABEL_RE = re.compile(r"\b(?:copy|edit)\b", re.IGNORECASE)
_CELL_CHROME = "button, sup, .superscript, .button-container, [role=tooltip], .tooltip"
_SUBSTANTIAL = ["pre", "code", "table", "img", "math", "ul", "ol"]

_CHROME_TEXT_LIMIT = 80


# ---------------------------------------------------------------------------
# Pre-pass: strip chrome, remember code languages
# ---------------------------------------------------------------------------

def _classes(el: Tag) -> list[str]:
    cls = el.get("class") or []
    return cls.split() if isinstance(cls, str) else list(cls)


def _holds_content(el: Tag) -> bool:
    """Whether *el* may hold real message content."""
    if el.find(_SUBSTANTIAL) is not None:
        return True
    return len(el.get_text(" ", strip=True)) > _CHROME_TEXT_LIMIT


def _is_chrome(el: Tag) -> bool:
    if el.get("role") == "button":
        return True
    if any(_CHROME_CLASS_RE.search(c) for c in _classes(el)):
        return True
    for attr in ("aria-label", "data-testid", "data-test-id"):
        value = el.get(attr)
        if isinstance(value, str) and _CHROME_LABEL_RE.search(value.replace("-", " ")):
            return True
    return False


def _first_token(el: Tag) -> str:
    parts = el.get_text(" ", strip=True).split()
    return parts[0] if parts else ""


def _is_label_chip(el: Tag) -> bool:
    if el.name not in ("div", "span") or el.find(_SUBSTANTIAL) is not None:
        return False
    text = el.get_text(strip=True)
    return is_language_label(text) and is_known_language(text)


def _find_language_chip(pre: Tag) -> tuple[str, Tag | None]:
    """Look for a language label next to *pre*.

    Returns the label and the chip element to drop (``None`` when the
    label sits in a header that chrome removal drops anyway).
    """
    node = pre
    for _ in range(3):
        sibling = node.find_previous_sibling()
        if isinstance(sibling, Tag) and _is_label_chip(sibling):
            return normalize_language(sibling.get_text(strip=True)), sibling
        parent = node.parent
        if parent is None or parent.name in ("body", "html", "[document]"):
            break
        if any("code-block" in c for c in _classes(parent)):
            header = parent.select_one(".code-block-decoration")
            label = _first_token(header) if header is not None else ""
            if is_language_label(label):
                return normalize_language(label), None
        node = parent

    # Header rendered inside the <pre>, before the <code>
    code = pre.find("code")
    if code is not None:
        for el in pre.find_all(["span", "div"]):
            if any(a is el for a in code.parents) or any(a is code for a in el.parents):
                continue
            if el.find(["span", "div"]) is None and is_language_label(el.get_text(strip=True)):
                return normalize_language(el.get_text(strip=True)), None
    return "", None


def _annotate_code_languages(root: Tag) -> None:
    for pre in root.find_all("pre"):
        known = detect_code_language(pre.find("code"), pre)
        label, chip = _find_language_chip(pre)
        if not known and label:
            pre["data-language"] = label
        if chip is not None and (not known or label == known):
            chip.decompose()


def prepare_fragment(root: Tag) -> Tag:
    """Remove UI chrome from *root* in place and return it."""
    for tag in root.find_all(_DROP_TAGS):
        tag.decompose()

    _annotate_code_languages(root)

    for el in list(root.find_all(True)):
        if el.decomposed:
            continue
        if el.name in ("pre", "code", "table", "html", "body"):
            continue
        if _is_chrome(el) and not _holds_content(el):
            el.decompose()
    return root


# ---------------------------------------------------------------------------
# Converter
# ---------------------------------------------------------------------------

def _fence(body: str, language: str = "") -> str:
    body = body.strip("\n")
    fence = "```"
    while fence in body:
        fence += "`"
    return f"\n\n{fence}{language}\n{body}\n{fence}\n\n"


def fenced_block(body: str, language: str = "") -> str:
    """Public form of the fence used for code blocks, without padding."""
    return _fence(body, language).strip("\n")


def _math_source(el: Tag) -> tuple[str, bool] | None:
    """Return ``(tex, is_display)`` when *el* is a rendered math node."""
    classes = set(_classes(el))
    display = bool(classes & {"katex-display", "math-display", "math-block"})
    inline = bool(classes & {"katex", "math-inline"})
    if el.name == "math":
        display = display or el.get("display") == "block"
        inline = not display
    if not (display or inline):
        return None

    tex = el.get("data-math")
    if not tex:
        annotation = el.find("annotation", attrs={"encoding": "application/x-tex"})
        tex = annotation.get_text() if annotation is not None else el.get_text()
    tex = str(tex).strip()
    if not tex:
        return None
    return tex, display


def _format_math(tex: str, display: bool) -> str:
    if display:
        return f"\n\n$$\n{tex}\n$$\n\n"
    return f"${tex}$"


def _cell_text(cell: Tag) -> str:
    work = copy.copy(cell)
    for chrome in work.select(_CELL_CHROME):
        chrome.decompose()
    text = " ".join(work.get_text(" ").split())
    return text.replace("|", "\\|")


class ChatMarkdownConverter(MarkdownConverter):
    """markdownify converter with chat-specific rules."""

    def convert_pre(self, el: Tag, text: str, parent_tags: Any) -> str:
        code = el.find("code")
        language = detect_code_language(code, el)
        body = (code if code is not None else el).get_text()
        if not body.strip():
            return ""
        return _fence(body, language)

    def convert_code(self, el: Tag, text: str, parent_tags: Any) -> str:
        if el.find_parent("pre") is not None:
            return text
        body = el.get_text()
        if not body:
            return ""
        language = language_from_classes(el)
        if language or set(_classes(el)) & _PREFORMATTED_CLASSES:
            return _fence(body, language)
        if "\n" in body.strip():
            return _fence(body)
        ticks = "``" if "`" in body else "`"
        pad = " " if ticks == "``" else ""
        return f"{ticks}{pad}{body}{pad}{ticks}"

    def convert_table(self, el: Tag, text: str, parent_tags: Any) -> str:
        rows: list[list[str]] = []
        for tr in el.find_all("tr"):
            if tr.find_parent("table") is not el:
                continue
            cells = [_cell_text(c) for c in tr.find_all(["th", "td"], recursive=False)]
            if cells:
                rows.append(cells)
        if not rows:
            return ""

        width = max(len(r) for r in rows)
        rows = [r + [""] * (width - len(r)) for r in rows]
        lines = ["| " + " | ".join(rows[0]) + " |", "|" + " --- |" * width]
        lines.extend("| " + " | ".join(r) + " |" for r in rows[1:])
        return "\n\n" + "\n".join(lines) + "\n\n"

    def convert_hr(self, el: Tag, text: str, parent_tags: Any) -> str:
        return "\n\n---\n\n"

    def convert_br(self, el: Tag, text: str, parent_tags: Any) -> str:
        if parent_tags and "_inline" in parent_tags:
            return " "
        return "\n"

    def convert_span(self, el: Tag, text: str, parent_tags: Any) -> str:
        math = _math_source(el)
        if math is not None:
            return _format_math(*math)
        return text

    def convert_math(self, el: Tag, text: str, parent_tags: Any) -> str:
        math = _math_source(el)
        return _format_math(*math) if math is not None else text

    def convert_div(self, el: Tag, text: str, parent_tags: Any) -> str:
        math = _math_source(el)
        if math is not None:
            return _format_math(*math)
        if set(_classes(el)) & _WRAPPER_CLASSES:
            return text
        if parent_tags and "_inline" in parent_tags:
            return " " + text.strip() + " "
        text = text.strip()
        return f"\n\n{text}\n\n" if text else ""


_CONVERTER_OPTIONS = {
    "heading_style": ATX,
    "bullets": "-",
    "escape_underscores": False,
    "escape_asterisks": False,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def strip_tags(html: str) -> str:
    """Naive tag stripper that keeps paragraph and line breaks.  Never raises."""
    try:
        text = _BR_RE.sub("\n", html or "")
        text = _BLOCK_CLOSE_RE.sub("\n\n", text)
        text = _TAG_RE.sub("", text)
        text = html_lib.unescape(text)
        text = _TRAILING_WHITESPACE_RE.sub("", text)
        return _EXCESSIVE_BLANK_LINES_RE.sub("\n\n", text).strip()
    except Exception as exc:
        logger.debug("Tag stripping failed: %s", exc)
        return ""


def normalize_table_spacing(markdown: str) -> str:
    """Remove blank lines that split one table into several."""
    previous = None
    while previous != markdown:
        previous = markdown
        markdown = _TABLE_GAP_RE.sub(r"\1\n", markdown)
    return markdown


def html_to_markdown(html: str | Tag | None) -> str:
    """Convert an HTML fragment (string or parsed tag) to canonical Markdown.

    Never raises: a conversion failure falls back to :func:`strip_tags`.
    Empty or whitespace-only input yields ``""``.
    """
    if html is None:
        return ""
    source = str(html)
    if not source.strip():
        return ""

    try:
        soup = BeautifulSoup(source, "lxml")
        prepare_fragment(soup)
        md = ChatMarkdownConverter(**_CONVERTER_OPTIONS).convert_soup(soup)
    except Exception as exc:
        logger.debug("Markdown conversion failed, stripping tags: %s", exc)
        return strip_tags(source)

    md = _TRAILING_WHITESPACE_RE.sub("", md)
    md = normalize_table_spacing(md)
    md = _EXCESSIVE_BLANK_LINES_RE.sub("\n\n", md)
    return md.strip()


def to_markdown_if_html(text: str | None) -> str:
    """Convert *text* only when it looks like HTML; plain text passes through."""
    if not text:
        return ""
    if _HTML_HINT_RE.search(text):
        return html_to_markdown(text)
    return text.strip()


def text_of(node: Tag | NavigableString | None) -> str:
    if node is None:
        return ""
    return " ".join(node.get_text(" ").split()) if isinstance(node, Tag) else str(node).strip()
