"""chatvault - save AI chat conversations into an Obsidian vault.

Quick usage::

    import asyncio
    from chatvault import ExtractionAgent, CoordinatorChannel, Page, PersistenceCoordinator

    page = Page.from_file("chat.html", url="https://chatgpt.com/c/abc")
    agent = ExtractionAgent(page, channel=CoordinatorChannel(PersistenceCoordinator()))
    outcome = asyncio.run(agent.save_capture("all"))
    print(outcome.filename)

Markdown only::

    from chatvault import html_to_markdown

    print(html_to_markdown('<pre><code class="language-python">x = 1</code></pre>'))

Plugin extension points::

    from chatvault import register_provider

    register_provider(MyProvider())
"""

from chatvault.agent import CoordinatorChannel, ExtractionAgent, format_messages
from chatvault.coordinator import PersistenceCoordinator
from chatvault.errors import ChatVaultError, ErrorCode
from chatvault.extractors.markdown import html_to_markdown
from chatvault.items import (
    CaptureMode,
    CaptureResult,
    ContentPart,
    ExtractedMessage,
    SaveOutcome,
    SaveRequest,
)
from chatvault.page import Page
from chatvault.plugins import register_provider, register_strategy
from chatvault.providers import detect_service, get_provider
from chatvault.settings import Settings, load_settings
from chatvault.splitter import split_markdown, split_text

__version__ = "0.1.0"
__all__ = [
    "CaptureMode",
    "CaptureResult",
    "ChatVaultError",
    "ContentPart",
    "CoordinatorChannel",
    "ErrorCode",
    "ExtractedMessage",
    "ExtractionAgent",
    "Page",
    "PersistenceCoordinator",
    "SaveOutcome",
    "SaveRequest",
    "Settings",
    "detect_service",
    "format_messages",
    "get_provider",
    "html_to_markdown",
    "load_settings",
    "register_provider",
    "register_strategy",
    "split_markdown",
    "split_text",
]
