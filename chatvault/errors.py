"""Error taxonomy and user-facing messages.

Every failure that reaches the user carries a short localized message from
:func:`user_message`; the internal detail travels on the exception and is
logged separately.
"""

from __future__ import annotations

import re
from enum import Enum


class ErrorCode(str, Enum):
    NO_SERVICE = "NO_SERVICE"
    NO_CONTENT = "NO_CONTENT"
    MISSING_VAULT_HANDLE = "MISSING_VAULT_HANDLE"
    CLIPBOARD_FAILED = "CLIPBOARD_FAILED"
    FILESYSTEM_PERMISSION = "FILESYSTEM_PERMISSION"
    URI_TOO_LONG = "URI_TOO_LONG"
    NO_TAB_ID = "NO_TAB_ID"
    DOWNLOAD_TIMEOUT = "DOWNLOAD_TIMEOUT"
    CHANNEL_CLOSED = "CHANNEL_CLOSED"
    SAVE_FAILED = "SAVE_FAILED"


_MESSAGES: dict[str, dict[ErrorCode, str]] = {
    "en": {
        ErrorCode.NO_SERVICE: "This page is not a supported chat service.",
        ErrorCode.NO_CONTENT: "No messages were found on this page.",
        ErrorCode.MISSING_VAULT_HANDLE: "No vault folder is selected. Choose your vault folder first.",
        ErrorCode.CLIPBOARD_FAILED: "Could not copy the note to the clipboard.",
        ErrorCode.FILESYSTEM_PERMISSION: "Permission to write to the vault folder was denied.",
        ErrorCode.URI_TOO_LONG: "The note is too large to send to Obsidian directly.",
        ErrorCode.NO_TAB_ID: "The source page could not be identified.",
        ErrorCode.DOWNLOAD_TIMEOUT: "The download did not finish in time.",
        ErrorCode.CHANNEL_CLOSED: "The page lost its connection. Reload the page and try again.",
        ErrorCode.SAVE_FAILED: "Saving failed.",
    },
    "ja": {
        ErrorCode.NO_SERVICE: "対応しているチャットサービスではありません。",
        ErrorCode.NO_CONTENT: "メッセージが見つかりませんでした。",
        ErrorCode.MISSING_VAULT_HANDLE: "保管庫フォルダが選択されていません。先にフォルダを選択してください。",
        ErrorCode.CLIPBOARD_FAILED: "クリップボードへのコピーに失敗しました。",
        ErrorCode.FILESYSTEM_PERMISSION: "保管庫フォルダへの書き込み権限がありません。",
        ErrorCode.URI_TOO_LONG: "ノートが大きすぎるため Obsidian に直接送信できません。",
        ErrorCode.NO_TAB_ID: "元のページを特定できませんでした。",
        ErrorCode.DOWNLOAD_TIMEOUT: "ダウンロードが時間内に完了しませんでした。",
        ErrorCode.CHANNEL_CLOSED: "ページとの接続が切れました。再読み込みしてからお試しください。",
        ErrorCode.SAVE_FAILED: "保存に失敗しました。",
    },
}

_TRANSIENT_PATTERNS = re.compile(
    r"Extension context invalidated|message port closed|"
    r"Could not establish connection|Receiving end does not exist",
    re.IGNORECASE,
)


def user_message(code: ErrorCode | str, locale: str = "en") -> str:
    """Return the localized message for *code*; unknown locales use English."""
    try:
        key = ErrorCode(code)
    except ValueError:
        key = ErrorCode.SAVE_FAILED
    table = _MESSAGES.get((locale or "en").split("-")[0].lower(), _MESSAGES["en"])
    return table.get(key, _MESSAGES["en"][key])


def is_transient_failure(exc: BaseException | str) -> bool:
    """True when *exc* looks like a torn-down messaging channel."""
    if isinstance(exc, TransientChannelFailure):
        return True
    return bool(_TRANSIENT_PATTERNS.search(str(exc)))


class ChatVaultError(RuntimeError):
    """Base class for chatvault failures.

    Attributes:
        code   -- :class:`ErrorCode` used to pick the user message
        detail -- internal detail for the log
    """

    code: ErrorCode = ErrorCode.SAVE_FAILED

    def __init__(self, message: str, code: ErrorCode | None = None, detail: str = "") -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.detail = detail or message

    def user_message(self, locale: str = "en") -> str:
        return user_message(self.code, locale)


class NoContentFound(ChatVaultError):
    code = ErrorCode.NO_CONTENT


class PermissionDenied(ChatVaultError):
    code = ErrorCode.FILESYSTEM_PERMISSION


class PayloadTooLarge(ChatVaultError):
    code = ErrorCode.URI_TOO_LONG


class TransientChannelFailure(ChatVaultError):
    code = ErrorCode.CHANNEL_CLOSED


class DownloadTimeout(ChatVaultError):
    code = ErrorCode.DOWNLOAD_TIMEOUT


class StrategyError(ChatVaultError):
    """A single save strategy failed; the chain moves on."""


class ClaudeApiError(ChatVaultError):
    """Raised when the Claude conversation API cannot be read.

    Attributes:
        status -- HTTP status code (0 if no response was received)
    """

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = status

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403)
