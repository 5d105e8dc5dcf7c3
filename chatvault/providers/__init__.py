"""Platform providers and service detection.

Usage::

    from chatvault.providers import detect_service, get_provider

    service = detect_service("https://claude.ai/chat/1234")   # "claude"
    provider = get_provider(service)
"""

from __future__ import annotations

from urllib.parse import urlparse

from chatvault.plugins import ProviderPlugin, get_providers

from .base import BaseProvider
from .chatgpt import ChatGPTProvider
from .claude import ClaudeProvider
from .claude_api import ClaudeApiSession
from .gemini import GeminiProvider
from .notebooklm import NotebookLMProvider

BUILTIN_PROVIDERS: tuple[BaseProvider, ...] = (
    ChatGPTProvider(),
    ClaudeProvider(),
    GeminiProvider(),
    NotebookLMProvider(),
)


def _all_providers() -> list[ProviderPlugin]:
    return [*get_providers(), *BUILTIN_PROVIDERS]


def detect_service(url: str) -> str | None:
    """Service name for *url*, or ``None`` for unsupported sites."""
    hostname = (urlparse(url or "").hostname or "").lower()
    if not hostname:
        return None
    for provider in _all_providers():
        if provider.handles_host(hostname):
            return provider.name
    return None


def get_provider(service: str) -> ProviderPlugin:
    """Provider registered under *service*.

    Raises:
        KeyError: when no provider has that name.
    """
    key = (service or "").lower()
    for provider in _all_providers():
        if provider.name == key:
            return provider
    raise KeyError(f"No provider for service {service!r}")


__all__ = [
    "BUILTIN_PROVIDERS",
    "BaseProvider",
    "ChatGPTProvider",
    "ClaudeApiSession",
    "ClaudeProvider",
    "GeminiProvider",
    "NotebookLMProvider",
    "detect_service",
    "get_provider",
]
