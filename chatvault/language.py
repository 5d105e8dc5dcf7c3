"""Code language detection helpers."""

from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_CLASS_LANG_RE = re.compile(r"^(?:language|lang)-([\w+#.-]+)$", re.IGNORECASE)
_LABEL_RE = re.compile(r"^[A-Za-z][\w+#.-]{0,19}$")

EXTENSION_BY_LANGUAGE: dict[str, str] = {
    "javascript": ".js",
    "typescript": ".ts",
    "jsx": ".jsx",
    "tsx": ".tsx",
    "python": ".py",
    "java": ".java",
    "c": ".c",
    "cpp": ".cpp",
    "csharp": ".cs",
    "go": ".go",
    "rust": ".rs",
    "ruby": ".rb",
    "php": ".php",
    "swift": ".swift",
    "kotlin": ".kt",
    "html": ".html",
    "css": ".css",
    "scss": ".scss",
    "json": ".json",
    "yaml": ".yaml",
    "xml": ".xml",
    "sql": ".sql",
    "bash": ".sh",
    "shell": ".sh",
    "markdown": ".md",
    "text": ".txt",
}

LANGUAGE_ALIASES: dict[str, str] = {
    "js": "javascript",
    "ts": "typescript",
    "py": "python",
    "python3": "python",
    "c++": "cpp",
    "cs": "csharp",
    "c#": "csharp",
    "rb": "ruby",
    "sh": "bash",
    "zsh": "bash",
    "yml": "yaml",
    "md": "markdown",
    "golang": "go",
    "plaintext": "text",
    "txt": "text",
}

_LANGUAGE_BY_EXTENSION: dict[str, str] = {
    ext: lang for lang, ext in reversed(list(EXTENSION_BY_LANGUAGE.items()))
}
_LANGUAGE_BY_EXTENSION.update({".mjs": "javascript", ".yml": "yaml", ".htm": "html", ".h": "c"})

# Keywords checked against panel titles, in order
_TITLE_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("typescript", "typescript"),
    ("javascript", "javascript"),
    ("python", "python"),
    ("html", "html"),
    ("css", "css"),
    ("react", "jsx"),
    ("java", "java"),
    ("rust", "rust"),
    ("golang", "go"),
    ("sql", "sql"),
    ("json", "json"),
    ("bash", "bash"),
    ("shell", "bash"),
)


def normalize_language(name: str | None) -> str:
    """Lower-case *name* and resolve common aliases (``py`` → ``python``)."""
    if not name:
        return ""
    key = name.strip().lower()
    return LANGUAGE_ALIASES.get(key, key)


def language_from_classes(el: Any) -> str:
    """Return the ``language-*`` / ``lang-*`` token of a tag's class list."""
    getter = getattr(el, "get", None)
    classes = (getter("class") if getter else None) or []
    if isinstance(classes, str):
        classes = classes.split()
    for cls in classes:
        if not isinstance(cls, str):
            continue
        m = _CLASS_LANG_RE.match(cls)
        if m:
            return normalize_language(m.group(1))
    return ""


def language_from_attributes(el: Any) -> str:
    getter = getattr(el, "get", None)
    if getter is None:
        return ""
    for attr in ("data-language", "data-lang"):
        value = getter(attr)
        if isinstance(value, str) and _LABEL_RE.match(value.strip()):
            return normalize_language(value)
    return ""


def detect_code_language(code: Any, pre: Any = None) -> str:
    """Best-effort language for a code region.

    Checks the class list of *code* then *pre*, then their ``data-language``
    attributes.
    """
    for el in (code, pre):
        if el is None:
            continue
        lang = language_from_classes(el)
        if lang:
            return lang
    for el in (code, pre):
        if el is None:
            continue
        lang = language_from_attributes(el)
        if lang:
            return lang
    return ""


def language_from_filename(name: str | None) -> str:
    """Infer a language from the extension of *name* (``utils.py`` → python)."""
    if not name:
        return ""
    m = re.search(r"(\.[A-Za-z0-9]+)\s*$", name.strip())
    if not m:
        return ""
    return _LANGUAGE_BY_EXTENSION.get(m.group(1).lower(), "")


def language_from_title(title: str | None) -> str:
    """Guess a language from keywords in a panel title."""
    if not title:
        return ""
    from_ext = language_from_filename(title)
    if from_ext:
        return from_ext
    lowered = title.lower()
    for keyword, lang in _TITLE_KEYWORDS:
        if re.search(rf"\b{re.escape(keyword)}\b", lowered):
            return lang
    return ""


def extension_for(language: str | None) -> str:
    return EXTENSION_BY_LANGUAGE.get(normalize_language(language), ".txt")


def is_language_label(text: str) -> bool:
    """True for short single-token labels such as ``python`` or ``C++``."""
    stripped = (text or "").strip()
    return bool(stripped) and len(stripped) <= 20 and bool(_LABEL_RE.match(stripped))


def is_known_language(name: str | None) -> bool:
    key = normalize_language(name)
    return bool(key) and (key in EXTENSION_BY_LANGUAGE or key in _KNOWN_EXTRA)


_KNOWN_EXTRA = frozenset({
    "r", "lua", "perl", "scala", "dart", "haskell", "elixir", "latex", "tex",
    "diff", "dockerfile", "makefile", "powershell", "graphql", "toml", "ini",
    "vue", "svelte", "matlab", "objectivec", "console",
})
