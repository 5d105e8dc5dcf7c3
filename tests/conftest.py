"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"

PAGE_URLS = {
    "chatgpt": "https://chatgpt.com/c/6702a9f1-0000-8000-a000-000000000001",
    "claude": "https://claude.ai/chat/0b3c6a8e-1111-4a2b-9c3d-222233334444",
    "gemini": "https://gemini.google.com/app/5f1e2d3c4b5a",
    "notebooklm": "https://notebooklm.google.com/notebook/abc123",
}


def _read_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


def load_page(service: str):
    from chatvault.page import Page

    return Page.from_html(_read_fixture(f"{service}.html"), url=PAGE_URLS[service])


@pytest.fixture
def chatgpt_page():
    return load_page("chatgpt")


@pytest.fixture
def claude_page():
    return load_page("claude")


@pytest.fixture
def gemini_page():
    return load_page("gemini")


@pytest.fixture
def notebooklm_page():
    return load_page("notebooklm")


# ---------------------------------------------------------------------------
# Fake host capabilities
# ---------------------------------------------------------------------------

class FakeClipboard:
    def __init__(self, fail: bool = False) -> None:
        self.copied: list[str] = []
        self.fail = fail

    def copy(self, text: str) -> None:
        from chatvault.errors import ErrorCode, StrategyError

        if self.fail:
            raise StrategyError("clipboard unavailable", code=ErrorCode.CLIPBOARD_FAILED)
        self.copied.append(text)


class FakeOpener:
    def __init__(self, result: bool = True) -> None:
        self.opened: list[str] = []
        self.result = result

    def open(self, uri: str) -> bool:
        self.opened.append(uri)
        return self.result


FIXED_NOW = datetime(2024, 5, 6, 7, 8, 9)


@pytest.fixture
def clipboard() -> FakeClipboard:
    return FakeClipboard()


@pytest.fixture
def opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def settings(tmp_path):
    from chatvault.settings import Settings

    return Settings(
        obsidian_vault="Notes",
        downloads_dir=tmp_path / "downloads",
        vault_store_path=tmp_path / "store" / "handles.sqlite3",
    )


@pytest.fixture
def store(settings):
    from chatvault.vault import VaultStore

    return VaultStore(settings.vault_store_path)


@pytest.fixture
def vault_dir(tmp_path) -> Path:
    path = tmp_path / "vault"
    path.mkdir()
    return path


@pytest.fixture
def capabilities(settings, clipboard, opener):
    from chatvault.strategies import Capabilities, FileDownloadBackend

    return Capabilities(
        clipboard=clipboard,
        opener=opener,
        downloads=FileDownloadBackend(settings.downloads_dir),
    )


@pytest.fixture
def make_coordinator(settings, store, capabilities):
    from chatvault.coordinator import PersistenceCoordinator

    def factory(**overrides):
        cfg = settings.model_copy(update=overrides) if overrides else settings
        return PersistenceCoordinator(cfg, store=store, capabilities=capabilities,
                                      clock=lambda: FIXED_NOW)

    return factory
