"""Extraction sub-package: selector evaluation and HTML → Markdown conversion."""

from .markdown import fenced_block, html_to_markdown, strip_tags, to_markdown_if_html
from .selectors import SelectorSet, matches_any, outermost, select_first, select_first_group

__all__ = [
    "SelectorSet",
    "fenced_block",
    "html_to_markdown",
    "matches_any",
    "outermost",
    "select_first",
    "select_first_group",
    "strip_tags",
    "to_markdown_if_html",
]
