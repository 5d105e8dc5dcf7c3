"""Default settings and the user settings model for chatvault.

Module-level constants hold the fixed limits and timeouts used across the
package.  User-facing options arrive as a flat key-value map (the same keys
the options page stores) and are validated into :class:`Settings`.

Usage::

    from chatvault.settings import load_settings

    settings = load_settings("~/.chatvault.yaml", service="claude")
    print(settings.chat_folder_path)
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Project identity
# ---------------------------------------------------------------------------
APP_NAME = "chatvault"

# ---------------------------------------------------------------------------
# Destination defaults
# ---------------------------------------------------------------------------
DEFAULT_VAULT_NAME = "MyVault"
DEFAULT_FOLDER_TEMPLATE = "ChatVault/{service}"
DEFAULT_DOWNLOADS_FOLDER = "ChatVault"
UNTITLED_FALLBACK = "untitled"
CONTENT_HASH_LENGTH = 8

# Key under which the vault directory handle is persisted
VAULT_HANDLE_KEY = "vaultDirectory"
VAULT_STORE_PATH = Path.home() / ".chatvault" / "handles.sqlite3"

# ---------------------------------------------------------------------------
# Payload limits
# ---------------------------------------------------------------------------
# Advanced URI: the whole URI and the encoded content are bounded separately.
ADVANCED_URI_MAX_LENGTH = 30_000
ADVANCED_URI_MAX_CONTENT = 8_000
NATIVE_URI_MAX_LENGTH = 8_000
DOWNLOAD_MAX_BYTES = 64 * 1024 * 1024

# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------
CHUNK_MAX_SIZE = 10_000
CHUNK_OVERLAP = 500

# ---------------------------------------------------------------------------
# Timing (seconds)
# ---------------------------------------------------------------------------
DEBOUNCE_DELAY = 0.3
INITIAL_SCAN_INTERVAL = 0.5
INITIAL_SCAN_MAX_RETRIES = 20
CHANNEL_RETRY_DELAY = 0.3
DOWNLOAD_TIMEOUT = 30.0

CLAUDE_POLL_INTERVAL = 5.0
CLAUDE_MAX_RETRIES = 3
CLAUDE_MAX_BACKOFF = 30.0
CLAUDE_REQUEST_TIMEOUT = 30

# ---------------------------------------------------------------------------
# Capture defaults
# ---------------------------------------------------------------------------
DEFAULT_RECENT_COUNT = 30

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SaveMethod(str, Enum):
    """User preference for which save mechanism to try first."""

    FILESYSTEM = "filesystem"
    ADVANCED_URI = "advanced-uri"
    URI = "uri"
    DOWNLOADS = "downloads"
    CLIPBOARD = "clipboard"
    AUTO = "auto"


class Settings(BaseModel):
    """Validated view of the flat settings map.

    Keys are accepted either in the stored camelCase form
    (``obsidianVault``) or as snake_case attribute names.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    obsidian_vault: str = Field(default=DEFAULT_VAULT_NAME, alias="obsidianVault")
    chat_folder_path: str = Field(default=DEFAULT_FOLDER_TEMPLATE, alias="chatFolderPath")
    save_method: SaveMethod = Field(default=SaveMethod.FILESYSTEM, alias="saveMethod")
    downloads_folder: str = Field(default=DEFAULT_DOWNLOADS_FOLDER, alias="downloadsFolder")
    downloads_dir: Path = Field(default_factory=lambda: Path.home() / "Downloads",
                                alias="downloadsDir")
    vault_store_path: Path = Field(default=VAULT_STORE_PATH, alias="vaultStorePath")
    show_save_button: bool = Field(default=True, alias="showSaveButton")
    recent_count: int | None = Field(default=None, alias="recentCount")
    chunk_size: int = Field(default=CHUNK_MAX_SIZE, alias="chunkSize")
    locale: str = "en"

    @field_validator("obsidian_vault", "downloads_folder", mode="before")
    @classmethod
    def _blank_to_default(cls, v: Any, info: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return cls.model_fields[info.field_name].default
        return v.strip() if isinstance(v, str) else v

    @field_validator("chat_folder_path", mode="before")
    @classmethod
    def _template_or_default(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_FOLDER_TEMPLATE
        return v

    @field_validator("save_method", mode="before")
    @classmethod
    def _unknown_method_to_default(cls, v: Any) -> Any:
        if isinstance(v, str) and v not in {m.value for m in SaveMethod}:
            return SaveMethod.FILESYSTEM
        return v

    @field_validator("downloads_dir", "vault_store_path", mode="before")
    @classmethod
    def _expand_path(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> Settings:
        return cls.model_validate(dict(data or {}))


def load_settings(path: str | Path | None = None, service: str | None = None) -> Settings:
    """Load settings from a YAML file.

    The file may contain a ``default:`` section and per-service sections
    under ``services:``; the service section is merged over the defaults.
    A flat mapping without either key is used as-is.  A missing *path*
    returns the built-in defaults.
    """
    if path is None:
        return Settings()
    file_path = Path(path).expanduser()
    if not file_path.exists():
        return Settings()

    data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        return Settings()

    if "default" not in data and "services" not in data:
        return Settings.from_mapping(data)

    merged: dict[str, Any] = {}
    default = data.get("default", {})
    if isinstance(default, dict):
        merged.update(default)
    services = data.get("services", {})
    if service and isinstance(services, dict):
        section = services.get(service.lower())
        if isinstance(section, dict):
            merged.update(section)
    return Settings.from_mapping(merged)
