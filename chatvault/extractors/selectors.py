"""Ordered selector lists and their lazy evaluation.

Platform markup changes without notice, so every lookup is a tuple of CSS
selectors tried in order; the first selector that yields a match wins.
Adding a new markup variant means appending a selector, never new branches.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from bs4 import Tag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectorSet:
    """Priority-ordered selectors for one platform."""

    container: tuple[str, ...]
    user: tuple[str, ...] = ()
    assistant: tuple[str, ...] = ()
    content: tuple[str, ...] = ()
    artifact: tuple[str, ...] = ()
    artifact_title: tuple[str, ...] = ()
    artifact_content: tuple[str, ...] = ()
    extra: dict[str, tuple[str, ...]] = field(default_factory=dict)


def _safe_select(root: Tag, selector: str) -> list[Tag]:
    try:
        return root.select(selector)
    except Exception as exc:
        logger.debug("Selector %r failed: %s", selector, exc)
        return []


def _safe_match(el: Tag, selector: str) -> bool:
    try:
        return bool(el.css.match(selector))
    except Exception as exc:
        logger.debug("Selector %r failed to match: %s", selector, exc)
        return False


def iter_matches(root: Tag, selectors: Iterable[str]) -> Iterator[tuple[str, list[Tag]]]:
    """Yield ``(selector, matches)`` for each selector that matches, lazily."""
    for selector in selectors:
        found = _safe_select(root, selector)
        if found:
            yield selector, found


def select_first_group(root: Tag, selectors: Iterable[str]) -> list[Tag]:
    """All matches of the first selector that matches anything."""
    for selector, found in iter_matches(root, selectors):
        logger.debug("Selector %r matched %d element(s)", selector, len(found))
        return found
    return []


def select_first(root: Tag, selectors: Iterable[str]) -> Tag | None:
    """First element matched by the highest-priority matching selector."""
    for _selector, found in iter_matches(root, selectors):
        return found[0]
    return None


def matches_any(el: Tag, selectors: Iterable[str]) -> bool:
    return any(_safe_match(el, s) for s in selectors)


def has_descendant(el: Tag, selectors: Iterable[str]) -> bool:
    return any(_safe_select(el, s) for s in selectors)


def outermost(elements: list[Tag]) -> list[Tag]:
    """Drop elements nested inside another element of the same list."""
    ids = {id(el) for el in elements}
    kept: list[Tag] = []
    for el in elements:
        if any(id(parent) in ids for parent in el.parents):
            continue
        kept.append(el)
    return kept
