"""Persistence coordinator: filename, frontmatter, and the save fallback chain.

A request moves ``pending → <preferred strategies> → clipboard → terminal``.
Strategies that cannot handle the payload are skipped up front; a failing
strategy hands the same request to the next one.  Exactly one
:class:`~chatvault.items.SaveOutcome` comes back per request.

Usage::

    coordinator = PersistenceCoordinator(settings, store=VaultStore(settings.vault_store_path))
    outcome = asyncio.run(coordinator.save(request))
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

import yaml

from chatvault.errors import (
    ChatVaultError,
    ErrorCode,
    is_transient_failure,
    user_message,
)
from chatvault.items import MessageType, SaveMethodUsed, SaveOutcome, SaveRequest, aggregate_outcomes
from chatvault.plugins import get_strategies
from chatvault.settings import (
    CHANNEL_RETRY_DELAY,
    CONTENT_HASH_LENGTH,
    DEFAULT_FOLDER_TEMPLATE,
    UNTITLED_FALLBACK,
    SaveMethod,
    Settings,
)
from chatvault.strategies import STRATEGIES, Capabilities, SaveContext, SaveStrategy
from chatvault.vault import VaultStore

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_RE = re.compile(r'[/\\:*?"<>|\x00-\x1f\x7f]')
_WHITESPACE_RE = re.compile(r"\s+")
_MULTI_SLASH_RE = re.compile(r"/{2,}")

_CHAINS: dict[SaveMethod, tuple[SaveMethodUsed, ...]] = {
    SaveMethod.FILESYSTEM: (SaveMethodUsed.FILESYSTEM, SaveMethodUsed.CLIPBOARD),
    SaveMethod.ADVANCED_URI: (
        SaveMethodUsed.ADVANCED_URI_CLIPBOARD,
        SaveMethodUsed.ADVANCED_URI,
        SaveMethodUsed.CLIPBOARD,
    ),
    SaveMethod.URI: (SaveMethodUsed.URI, SaveMethodUsed.CLIPBOARD),
    SaveMethod.DOWNLOADS: (SaveMethodUsed.DOWNLOADS, SaveMethodUsed.CLIPBOARD),
    SaveMethod.CLIPBOARD: (SaveMethodUsed.CLIPBOARD,),
    SaveMethod.AUTO: (
        SaveMethodUsed.FILESYSTEM,
        SaveMethodUsed.ADVANCED_URI_CLIPBOARD,
        SaveMethodUsed.ADVANCED_URI,
        SaveMethodUsed.DOWNLOADS,
        SaveMethodUsed.CLIPBOARD,
    ),
}

# Why a strategy was skipped, for the final error when nothing worked
_SKIP_CODES: dict[SaveMethodUsed, ErrorCode] = {
    SaveMethodUsed.FILESYSTEM: ErrorCode.MISSING_VAULT_HANDLE,
    SaveMethodUsed.ADVANCED_URI: ErrorCode.URI_TOO_LONG,
    SaveMethodUsed.URI: ErrorCode.URI_TOO_LONG,
}


# ---------------------------------------------------------------------------
# Naming helpers
# ---------------------------------------------------------------------------

def sanitize_title(title: str | None, fallback: str = UNTITLED_FALLBACK) -> str:
    """Filesystem-safe title: reserved and control characters dropped, spaces to ``_``."""
    cleaned = _UNSAFE_FILENAME_RE.sub("", title or "").strip()
    cleaned = _WHITESPACE_RE.sub("_", cleaned)
    return cleaned or fallback


def content_hash(content: str, length: int = CONTENT_HASH_LENGTH) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:length]


def effective_type(request: SaveRequest) -> str:
    message_type = MessageType(request.message_type).value
    if message_type == MessageType.SINGLE and request.metadata.get("type") == MessageType.SELECTION:
        return MessageType.SELECTION.value
    return message_type


def type_prefix(message_type: str) -> str:
    if message_type == MessageType.ARTIFACT:
        return "artifact_"
    if message_type == MessageType.SELECTION:
        return "selection_"
    return ""


def build_filename(request: SaveRequest, now: datetime) -> str:
    """``{date}_{time}_{typePrefix}{service}_{title}_{hash8}.md``"""
    return (
        f"{now:%Y-%m-%d}_{now:%H-%M-%S}_"
        f"{type_prefix(effective_type(request))}{request.service}_"
        f"{sanitize_title(request.conversation_title)}_{content_hash(request.content)}.md"
    )


def build_folder_path(template: str, request: SaveRequest, now: datetime) -> str:
    folder = (template or DEFAULT_FOLDER_TEMPLATE)
    folder = folder.replace("{service}", request.service.upper())
    folder = folder.replace("{date}", f"{now:%Y-%m-%d}")
    folder = folder.replace("{title}", sanitize_title(request.conversation_title))
    folder = folder.replace("{type}", effective_type(request))
    folder = _MULTI_SLASH_RE.sub("/", folder)
    return folder.rstrip("/")


def build_frontmatter(request: SaveRequest, now: datetime) -> str:
    message_type = effective_type(request)
    data: dict[str, Any] = {
        "title": request.conversation_title or "Untitled Conversation",
        "service": request.service,
        "date": now.isoformat(timespec="seconds"),
        "type": message_type,
    }
    meta = request.metadata or {}
    if message_type == MessageType.ARTIFACT:
        for key, field in (("artifactTitle", "artifact_title"),
                           ("artifactLanguage", "artifact_language"),
                           ("artifactFilename", "artifact_filename")):
            if meta.get(key):
                data[field] = meta[key]
        part, total = meta.get("part"), meta.get("totalParts")
        if isinstance(part, int) and isinstance(total, int):
            data["part"] = part
            data["totalParts"] = total
    elif message_type == MessageType.SELECTION:
        if meta.get("url"):
            data["url"] = meta["url"]
        data["source"] = "text selection"

    body = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{body}---\n\n"


def chain_for(method: SaveMethod | str) -> list[SaveStrategy]:
    """Strategies tried for *method*, in order; registered plugins go before the clipboard."""
    try:
        key = SaveMethod(method)
    except ValueError:
        key = SaveMethod.FILESYSTEM
    chain = [STRATEGIES[name] for name in _CHAINS[key]]
    extra = get_strategies()
    if extra and key is not SaveMethod.CLIPBOARD:
        chain[-1:-1] = extra
    return chain


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class PersistenceCoordinator:
    """Turns :class:`SaveRequest` objects into notes in the vault.

    Args:
        settings:     Validated user settings.
        store:        Where the vault handle is persisted; ``None`` disables
                      the filesystem strategy.
        capabilities: Host clipboard, URI opener, downloads.
        clock:        Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: VaultStore | None = None,
        capabilities: Capabilities | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.store = store
        self.capabilities = capabilities or Capabilities.default(self.settings)
        self.clock = clock or (lambda: datetime.now().astimezone())

    def build_context(self, request: SaveRequest) -> SaveContext:
        now = self.clock()
        return SaveContext(
            request=request,
            settings=self.settings,
            filename=build_filename(request, now),
            folder=build_folder_path(self.settings.chat_folder_path, request, now),
            full_content=build_frontmatter(request, now) + request.content,
            capabilities=self.capabilities,
            store=self.store,
        )

    def _failure(self, code: ErrorCode, detail: str, filename: str = "") -> SaveOutcome:
        return SaveOutcome(
            success=False,
            filename=filename,
            message=user_message(code, self.settings.locale),
            error=detail,
        )

    async def _attempt(self, strategy: SaveStrategy, ctx: SaveContext) -> SaveOutcome:
        try:
            return await strategy.attempt(ctx)
        except Exception as exc:
            if not is_transient_failure(exc):
                raise
            logger.warning("%s hit a transient failure, retrying once: %s", strategy, exc)
            await asyncio.sleep(CHANNEL_RETRY_DELAY)
            return await strategy.attempt(ctx)

    async def save(self, request: SaveRequest) -> SaveOutcome:
        if not request.content or not request.content.strip():
            return self._failure(ErrorCode.NO_CONTENT, "Empty content")

        ctx = self.build_context(request)
        if self.settings.obsidian_vault == "MyVault":
            logger.warning('Using default vault name "MyVault"; set your vault name in settings')
        logger.debug("Saving %s (%d chars) via %s", ctx.relative_path,
                     len(ctx.full_content), self.settings.save_method.value)

        last_code = ErrorCode.SAVE_FAILED
        details: list[str] = []
        for strategy in chain_for(self.settings.save_method):
            name = getattr(strategy, "name", strategy)
            name = getattr(name, "value", name)
            try:
                eligible = strategy.is_eligible(ctx)
            except Exception as exc:
                logger.warning("%r could not check eligibility: %s", strategy, exc)
                eligible = False
            if not eligible:
                logger.debug("Skipping %r: not eligible for this request", strategy)
                last_code = _SKIP_CODES.get(getattr(strategy, "name", None), last_code)
                details.append(f"{name}: skipped")
                continue
            try:
                outcome = await self._attempt(strategy, ctx)
            except ChatVaultError as exc:
                logger.warning("%r failed: %s", strategy, exc.detail)
                last_code = exc.code
                details.append(f"{name}: {exc}")
                continue
            except Exception as exc:
                logger.warning("%r failed: %s", strategy, exc)
                last_code = ErrorCode.SAVE_FAILED
                details.append(f"{name}: {exc}")
                continue
            logger.debug("%r succeeded for %s", strategy, outcome.filename)
            return outcome

        logger.error("All save methods failed for %s", ctx.filename)
        return self._failure(last_code, "; ".join(details) or "No save method available", ctx.filename)

    async def save_parts(self, requests: list[SaveRequest]) -> SaveOutcome:
        """Save split parts concurrently; the aggregate succeeds only if all parts do."""
        outcomes = await asyncio.gather(*(self.save(r) for r in requests), return_exceptions=True)
        results: list[SaveOutcome] = []
        for item in outcomes:
            if isinstance(item, BaseException):
                if not isinstance(item, Exception):
                    raise item
                logger.error("Part save raised: %s", item)
                results.append(self._failure(ErrorCode.SAVE_FAILED, str(item)))
            else:
                results.append(item)
        return aggregate_outcomes(results)


__all__ = [
    "PersistenceCoordinator",
    "build_filename",
    "build_folder_path",
    "build_frontmatter",
    "chain_for",
    "content_hash",
    "sanitize_title",
]
