"""Save strategies and the host capabilities they drive.

Each strategy knows whether it can handle a request (:meth:`is_eligible`)
and performs one attempt (:meth:`attempt`), returning a
:class:`~chatvault.items.SaveOutcome` or raising a
:class:`~chatvault.errors.ChatVaultError`.  The coordinator walks them in
preference order; every strategy sees the same frozen :class:`SaveContext`.

Host capabilities (clipboard, URI launch, downloads) are small protocols so
tests and embedders can substitute their own.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import webbrowser
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable
from urllib.parse import quote

import pyperclip

from chatvault.errors import (
    DownloadTimeout,
    ErrorCode,
    PayloadTooLarge,
    PermissionDenied,
    StrategyError,
)
from chatvault.items import SaveMethodUsed, SaveOutcome
from chatvault.settings import (
    ADVANCED_URI_MAX_CONTENT,
    ADVANCED_URI_MAX_LENGTH,
    DOWNLOAD_MAX_BYTES,
    DOWNLOAD_TIMEOUT,
    NATIVE_URI_MAX_LENGTH,
)
from chatvault.vault import gesture_active

if TYPE_CHECKING:
    from collections.abc import Callable

    from chatvault.items import SaveRequest
    from chatvault.settings import Settings
    from chatvault.vault import VaultHandle, VaultStore

logger = logging.getLogger(__name__)

# Control characters other than tab and newline
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")
# encodeURIComponent leaves these unescaped
_URI_SAFE = "-_.!~*'()"
_DATA_URI_PREFIX = "data:text/markdown;charset=utf-8;base64,"


# ---------------------------------------------------------------------------
# Content helpers
# ---------------------------------------------------------------------------

def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def process_content(text: str) -> str:
    """Content as sent through URIs and the clipboard."""
    return _CONTROL_RE.sub("", normalize_newlines(text)).strip()


def encode_component(value: str) -> str:
    return quote(value, safe=_URI_SAFE)


def to_data_uri(content: str) -> str:
    return _DATA_URI_PREFIX + base64.b64encode(content.encode("utf-8")).decode("ascii")


def decode_data_uri(data_uri: str) -> bytes:
    if not data_uri.startswith(_DATA_URI_PREFIX):
        raise ValueError("Not a base64 markdown data URI")
    return base64.b64decode(data_uri[len(_DATA_URI_PREFIX):])


# ---------------------------------------------------------------------------
# Obsidian URIs
# ---------------------------------------------------------------------------

def build_new_uri(vault: str, file_path: str, content: str | None = None) -> str:
    uri = f"obsidian://new?vault={encode_component(vault)}&file={encode_component(file_path)}"
    if content is not None:
        uri += f"&content={encode_component(content)}"
    return uri


def build_advanced_uri_text(vault: str, file_path: str, text: str, mode: str = "new") -> str:
    return (
        f"obsidian://advanced-uri?vault={encode_component(vault)}"
        f"&filepath={encode_component(file_path)}"
        f"&text={encode_component(text)}&mode={mode}"
    )


def build_advanced_uri_clipboard(vault: str, file_path: str, mode: str = "new") -> str:
    return (
        f"obsidian://advanced-uri?vault={encode_component(vault)}"
        f"&filepath={encode_component(file_path)}"
        f"&clipboard=true&mode={mode}"
    )


# ---------------------------------------------------------------------------
# Deduplicating writer
# ---------------------------------------------------------------------------

def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="")


def write_deduplicated(root: Path, relative_path: str, content: str) -> tuple[Path, bool]:
    """Write *content* under *root*, avoiding clobbering existing notes.

    Returns ``(path, is_duplicate)``.  An existing file with the same content
    (line endings normalized) is reported as a duplicate and left alone; a
    different file at the same name gets ``-2``, ``-3``, … appended.
    """
    root = root.resolve()
    target = (root / relative_path).resolve()
    if root != target and root not in target.parents:
        raise PermissionDenied(f"{relative_path!r} escapes the destination folder")

    wanted = normalize_newlines(content)
    candidate = target
    counter = 2
    while candidate.exists():
        existing = candidate.read_text(encoding="utf-8", errors="replace")
        if normalize_newlines(existing) == wanted:
            return candidate, True
        candidate = target.with_name(f"{target.stem}-{counter}{target.suffix}")
        counter += 1
    _write_text(candidate, content)
    return candidate, False


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------

@runtime_checkable
class ClipboardBackend(Protocol):
    def copy(self, text: str) -> None: ...


@runtime_checkable
class UriOpener(Protocol):
    def open(self, uri: str) -> bool: ...


@runtime_checkable
class DownloadBackend(Protocol):
    async def download(self, data_uri: str, relative_path: str) -> Path: ...


class PyperclipClipboard:
    def copy(self, text: str) -> None:
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as exc:
            raise StrategyError(f"Clipboard unavailable: {exc}", code=ErrorCode.CLIPBOARD_FAILED) from exc


class WebbrowserOpener:
    def open(self, uri: str) -> bool:
        return webbrowser.open(uri)


class FileDownloadBackend:
    """Writes data URIs into a local downloads directory."""

    def __init__(self, downloads_dir: str | Path, max_bytes: int = DOWNLOAD_MAX_BYTES) -> None:
        self.downloads_dir = Path(downloads_dir).expanduser()
        self.max_bytes = max_bytes

    async def download(self, data_uri: str, relative_path: str) -> Path:
        if len(data_uri) > self.max_bytes:
            raise PayloadTooLarge(
                f"Content too large for a data URI ({len(data_uri)} bytes, max {self.max_bytes})"
            )
        payload = decode_data_uri(data_uri).decode("utf-8")
        path, _dup = await asyncio.to_thread(
            write_deduplicated, self.downloads_dir, relative_path, payload
        )
        return path


@dataclass
class Capabilities:
    clipboard: ClipboardBackend = field(default_factory=PyperclipClipboard)
    opener: UriOpener = field(default_factory=WebbrowserOpener)
    downloads: DownloadBackend | None = None
    picker: Callable[[], str | Path | None] | None = None
    download_timeout: float = DOWNLOAD_TIMEOUT

    @classmethod
    def default(cls, settings: Settings) -> Capabilities:
        return cls(downloads=FileDownloadBackend(settings.downloads_dir))


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SaveContext:
    """Everything a strategy needs for one request, shared read-only."""

    request: SaveRequest
    settings: Settings
    filename: str
    folder: str
    full_content: str
    capabilities: Capabilities
    store: VaultStore | None = None

    @property
    def relative_path(self) -> str:
        return f"{self.folder}/{self.filename}" if self.folder else self.filename

    @property
    def processed_content(self) -> str:
        return process_content(self.full_content)

    @property
    def vault_name(self) -> str:
        return self.settings.obsidian_vault

    def vault_handle(self) -> VaultHandle | None:
        return self.store.load() if self.store is not None else None


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class SaveStrategy:
    name: SaveMethodUsed

    def is_eligible(self, ctx: SaveContext) -> bool:
        return True

    async def attempt(self, ctx: SaveContext) -> SaveOutcome:
        raise NotImplementedError

    def _open(self, ctx: SaveContext, uri: str) -> None:
        try:
            opened = ctx.capabilities.opener.open(uri)
        except Exception as exc:
            raise StrategyError(f"Failed to open Obsidian: {exc}") from exc
        if not opened:
            raise StrategyError("No handler accepted the obsidian:// URI")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name.value}>"


class FilesystemStrategy(SaveStrategy):
    name = SaveMethodUsed.FILESYSTEM

    def is_eligible(self, ctx: SaveContext) -> bool:
        return gesture_active() or ctx.vault_handle() is not None

    async def attempt(self, ctx: SaveContext) -> SaveOutcome:
        handle = ctx.vault_handle()
        if handle is None:
            picker = ctx.capabilities.picker
            if picker is None or ctx.store is None:
                raise PermissionDenied("No vault folder has been granted",
                                       code=ErrorCode.MISSING_VAULT_HANDLE)
            handle = ctx.store.grant(picker)
        handle.request_permission()

        path, duplicate = await asyncio.to_thread(
            write_deduplicated, handle.path, ctx.relative_path, ctx.full_content
        )
        if duplicate:
            logger.info("Identical note already in vault: %s", path)
            message = f"Already saved: {path.name}"
        else:
            logger.info("Saved note to vault: %s", path)
            message = f"Saved directly to your Obsidian vault: {path.name}"
        return SaveOutcome(
            success=True,
            method=self.name,
            filename=path.name,
            message=message,
            is_duplicate=duplicate,
        )


class AdvancedUriClipboardStrategy(SaveStrategy):
    name = SaveMethodUsed.ADVANCED_URI_CLIPBOARD

    async def attempt(self, ctx: SaveContext) -> SaveOutcome:
        ctx.capabilities.clipboard.copy(ctx.full_content)
        self._open(ctx, build_advanced_uri_clipboard(ctx.vault_name, ctx.relative_path))
        return SaveOutcome(
            success=True,
            method=self.name,
            filename=ctx.filename,
            message="Saved to Obsidian via Advanced URI plugin (clipboard method)",
        )


class AdvancedUriStrategy(SaveStrategy):
    name = SaveMethodUsed.ADVANCED_URI

    def _uri(self, ctx: SaveContext) -> str:
        return build_advanced_uri_text(ctx.vault_name, ctx.relative_path, ctx.processed_content)

    def is_eligible(self, ctx: SaveContext) -> bool:
        encoded = encode_component(ctx.processed_content)
        return (len(self._uri(ctx)) < ADVANCED_URI_MAX_LENGTH
                and len(encoded) < ADVANCED_URI_MAX_CONTENT)

    async def attempt(self, ctx: SaveContext) -> SaveOutcome:
        self._open(ctx, self._uri(ctx))
        return SaveOutcome(
            success=True,
            method=self.name,
            filename=ctx.filename,
            message="Saved to Obsidian via Advanced URI plugin (text method)",
        )


class NativeUriStrategy(SaveStrategy):
    name = SaveMethodUsed.URI

    def _uri(self, ctx: SaveContext) -> str:
        return build_new_uri(ctx.vault_name, ctx.relative_path, ctx.processed_content)

    def is_eligible(self, ctx: SaveContext) -> bool:
        return len(self._uri(ctx)) < NATIVE_URI_MAX_LENGTH

    async def attempt(self, ctx: SaveContext) -> SaveOutcome:
        self._open(ctx, self._uri(ctx))
        return SaveOutcome(
            success=True,
            method=self.name,
            filename=ctx.filename,
            message=f"Opened Obsidian to create {ctx.filename}",
        )


class DownloadsStrategy(SaveStrategy):
    name = SaveMethodUsed.DOWNLOADS

    def is_eligible(self, ctx: SaveContext) -> bool:
        return ctx.capabilities.downloads is not None

    async def attempt(self, ctx: SaveContext) -> SaveOutcome:
        backend = ctx.capabilities.downloads
        if backend is None:
            raise StrategyError("No downloads backend is available")
        relative = f"{ctx.settings.downloads_folder}/{ctx.request.service.upper()}/{ctx.filename}"
        try:
            path = await asyncio.wait_for(
                backend.download(to_data_uri(ctx.full_content), relative),
                timeout=ctx.capabilities.download_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise DownloadTimeout(
                f"Download of {relative} did not finish within {ctx.capabilities.download_timeout:g}s"
            ) from exc
        logger.info("Saved note to downloads: %s", path)
        return SaveOutcome(
            success=True,
            method=self.name,
            filename=Path(path).name,
            message=(f"Saved to Downloads folder: {relative}\n\n"
                     "Move the file into your Obsidian vault."),
        )


class ClipboardStrategy(SaveStrategy):
    """Terminal fallback: copy the note and open an empty note to paste into."""

    name = SaveMethodUsed.CLIPBOARD

    async def attempt(self, ctx: SaveContext) -> SaveOutcome:
        ctx.capabilities.clipboard.copy(ctx.processed_content)
        uri = build_new_uri(ctx.vault_name, ctx.relative_path)
        try:
            self._open(ctx, uri)
        except StrategyError as exc:
            # The content is already on the clipboard
            logger.warning("Could not open Obsidian after copying: %s", exc)
        return SaveOutcome(
            success=True,
            method=self.name,
            filename=ctx.filename,
            message=(f"Content copied to clipboard. Paste it into {ctx.filename} "
                     "with Ctrl/Cmd+V."),
        )


STRATEGIES: dict[SaveMethodUsed, SaveStrategy] = {
    s.name: s
    for s in (
        FilesystemStrategy(),
        AdvancedUriClipboardStrategy(),
        AdvancedUriStrategy(),
        NativeUriStrategy(),
        DownloadsStrategy(),
        ClipboardStrategy(),
    )
}
