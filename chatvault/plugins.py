"""chatvault.plugins - extension point registry for providers and save strategies.

Usage::

    from chatvault import register_provider
    from chatvault.providers.base import BaseProvider
    from chatvault.extractors.selectors import SelectorSet

    class PerplexityProvider(BaseProvider):
        name = "perplexity"
        hostnames = ("perplexity.ai",)
        selectors = SelectorSet(container=(".prose",))

    register_provider(PerplexityProvider())

Both plugin types follow ``runtime_checkable`` ``Protocol`` contracts so
you can use ``isinstance()`` checks in tests without inheriting from a base
class.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

# ---------------------------------------------------------------------------
# Protocol definitions
# ---------------------------------------------------------------------------

@runtime_checkable
class ProviderPlugin(Protocol):
    """Extracts messages from one chat platform."""

    name: str

    def handles_host(self, hostname: str) -> bool:
        """Return True if this provider serves *hostname*."""
        ...

    def capture_messages(self, page: Any, mode: Any, count: int | None = None,
                         session: Any = None) -> Any:
        """Return a CaptureResult for *page*."""
        ...

    def extract_single_message(self, element: Any, page: Any = None,
                               session: Any = None) -> Any:
        """Return an ExtractedMessage for *element*, or None."""
        ...


@runtime_checkable
class SaveStrategyPlugin(Protocol):
    """Custom save mechanism tried before the clipboard fallback."""

    name: str

    def is_eligible(self, ctx: Any) -> bool:
        """Return True if this strategy should be attempted for *ctx*."""
        ...

    async def attempt(self, ctx: Any) -> Any:
        """Save and return a SaveOutcome; raise StrategyError on failure."""
        ...


# ---------------------------------------------------------------------------
# Module-level registry
# ---------------------------------------------------------------------------

_registry: dict[str, list[Any]] = {
    "providers": [],
    "strategies": [],
}


# ---------------------------------------------------------------------------
# Registration helpers
# ---------------------------------------------------------------------------

def register_provider(plugin: ProviderPlugin) -> None:
    """Register a custom :class:`ProviderPlugin`; later registrations win."""
    _registry["providers"].insert(0, plugin)


def register_strategy(plugin: SaveStrategyPlugin) -> None:
    """Register a custom :class:`SaveStrategyPlugin`."""
    _registry["strategies"].append(plugin)


# ---------------------------------------------------------------------------
# Accessor helpers
# ---------------------------------------------------------------------------

def get_providers() -> list[ProviderPlugin]:
    """Return all registered provider plugins, most recent first."""
    return list(_registry["providers"])


def get_strategies() -> list[SaveStrategyPlugin]:
    """Return all registered save-strategy plugins."""
    return list(_registry["strategies"])


def clear_plugins() -> None:
    """Remove all registered plugins. Primarily for use in tests."""
    for value in _registry.values():
        value.clear()
