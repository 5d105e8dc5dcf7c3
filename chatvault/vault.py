"""Vault directory handle, its persistent store, and the user-gesture scope.

A :class:`VaultHandle` is acquired once through :meth:`VaultStore.grant`,
which only runs inside a :func:`user_gesture` block, and is persisted in a
small sqlite database under the key ``vaultDirectory``.  Permission is
re-checked before every write; a denied handle is never silently replaced.

Usage::

    store = VaultStore(settings.vault_store_path)
    with user_gesture():
        handle = store.grant(lambda: "~/Documents/Obsidian/MyVault")
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import closing, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from chatvault.errors import ErrorCode, PermissionDenied
from chatvault.settings import VAULT_HANDLE_KEY

logger = logging.getLogger(__name__)

_gesture: ContextVar[bool] = ContextVar("chatvault_user_gesture", default=False)


# ---------------------------------------------------------------------------
# User gesture
# ---------------------------------------------------------------------------

@contextmanager
def user_gesture() -> Iterator[None]:
    """Mark the enclosed code as running in response to an explicit user action."""
    token = _gesture.set(True)
    try:
        yield
    finally:
        _gesture.reset(token)


def gesture_active() -> bool:
    return _gesture.get()


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------

class PermissionState(str, Enum):
    GRANTED = "granted"
    PROMPT = "prompt"
    DENIED = "denied"


@dataclass
class VaultHandle:
    """Permission-scoped reference to the vault root directory."""

    path: Path
    granted_at: str = ""

    def __post_init__(self) -> None:
        self.path = Path(self.path).expanduser()

    def query_permission(self) -> PermissionState:
        if self.path.is_dir():
            if os.access(self.path, os.W_OK | os.X_OK):
                return PermissionState.GRANTED
            return PermissionState.DENIED
        # A missing directory can still be created once the user confirms
        return PermissionState.PROMPT

    def request_permission(self) -> PermissionState:
        """Re-validate write access, creating the directory under a user gesture.

        Raises:
            PermissionDenied: no gesture is active, or access is still refused.
        """
        state = self.query_permission()
        if state is PermissionState.GRANTED:
            return state
        if not gesture_active():
            raise PermissionDenied(
                f"Write access to {self.path} needs a user gesture",
                detail=f"permission state {state.value}",
            )
        if state is PermissionState.PROMPT:
            try:
                self.path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise PermissionDenied(f"Cannot create vault folder {self.path}: {exc}") from exc
        state = self.query_permission()
        if state is not PermissionState.GRANTED:
            raise PermissionDenied(f"Write access to {self.path} was refused")
        return state

    def to_json(self) -> str:
        return json.dumps({"path": str(self.path), "granted_at": self.granted_at})

    @classmethod
    def from_json(cls, raw: str) -> VaultHandle:
        data = json.loads(raw)
        return cls(path=Path(data["path"]), granted_at=data.get("granted_at", ""))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class VaultStore:
    """sqlite-backed key-value store holding the vault handle."""

    def __init__(self, db_path: str | Path, key: str = VAULT_HANDLE_KEY) -> None:
        self.db_path = Path(db_path).expanduser()
        self.key = key
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=30.0)

    def _init_db(self) -> None:
        with closing(self._connect()) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS handles (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()

    def load(self) -> VaultHandle | None:
        """Return the stored handle, or ``None`` when nothing was granted.

        Raises:
            PermissionDenied: the store itself cannot be read.
        """
        try:
            with closing(self._connect()) as conn:
                row = conn.execute("SELECT value FROM handles WHERE key = ?", (self.key,)).fetchone()
        except sqlite3.Error as exc:
            raise PermissionDenied(f"Vault handle store is unreadable: {exc}",
                                   code=ErrorCode.MISSING_VAULT_HANDLE) from exc
        if row is None:
            return None
        try:
            return VaultHandle.from_json(row[0])
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable vault handle: %s", exc)
            return None

    def save(self, handle: VaultHandle) -> None:
        with closing(self._connect()) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO handles (key, value) VALUES (?, ?)",
                (self.key, handle.to_json()),
            )
            conn.commit()
        logger.debug("Stored vault handle %s", handle.path)

    def grant(self, picker: Callable[[], str | Path | None]) -> VaultHandle:
        """Ask *picker* for the vault directory and persist the new handle.

        Raises:
            PermissionDenied: outside a user gesture, or the picker was cancelled.
        """
        if not gesture_active():
            raise PermissionDenied(
                "Choosing the vault folder needs a user gesture",
                code=ErrorCode.MISSING_VAULT_HANDLE,
            )
        chosen = picker()
        if not chosen:
            raise PermissionDenied("Vault folder selection was cancelled",
                                   code=ErrorCode.MISSING_VAULT_HANDLE)
        handle = VaultHandle(
            path=Path(chosen),
            granted_at=datetime.now(timezone.utc).isoformat(),
        )
        handle.request_permission()
        self.save(handle)
        logger.info("Vault folder granted: %s", handle.path)
        return handle

    def revoke(self) -> None:
        with closing(self._connect()) as conn:
            conn.execute("DELETE FROM handles WHERE key = ?", (self.key,))
            conn.commit()
        logger.info("Vault handle revoked")
