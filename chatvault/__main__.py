"""CLI entry point: python -m chatvault (--html FILE | --url URL) [options]"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from chatvault.settings import LOG_DATE_FORMAT, LOG_FORMAT, SaveMethod

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatvault",
        description=(
            "Save AI chat conversations into an Obsidian vault.\n"
            "Supports ChatGPT, Claude, Gemini and NotebookLM pages."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--html", metavar="FILE",
                        help="Saved HTML of a chat page")
    source.add_argument("--url", metavar="URL",
                        help="Chat URL to render with Playwright (needs the 'browser' extra)")
    parser.add_argument("--page-url", default="", metavar="URL",
                        help="Original URL of the page saved with --html")
    parser.add_argument("--profile-dir", default=None, metavar="DIR",
                        help="Persistent browser profile holding the signed-in session")
    parser.add_argument("--wait-for", default=None, metavar="SELECTOR",
                        help="CSS selector to wait for before snapshotting --url")
    parser.add_argument("--service", default=None,
                        choices=["chatgpt", "claude", "gemini", "notebooklm"],
                        help="Override service detection")
    parser.add_argument("--mode", default="all", choices=["all", "recent", "artifacts"],
                        help="What to save (default: all)")
    parser.add_argument("--count", type=int, default=None, metavar="N",
                        help="Number of messages for --mode recent")
    parser.add_argument("--settings", default=None, metavar="FILE",
                        help="YAML settings file")
    parser.add_argument("--vault-dir", default=None, metavar="DIR",
                        help="Grant (and remember) the vault folder to write into")
    parser.add_argument("--vault-name", default=None, metavar="NAME",
                        help="Obsidian vault name used in obsidian:// URIs")
    parser.add_argument("--method", default=None,
                        choices=[m.value for m in SaveMethod],
                        help="Save method preference (default: from settings)")
    parser.add_argument("--claude-session-key", default=None, metavar="KEY",
                        help="claude.ai sessionKey cookie; enables API-backed extraction")
    parser.add_argument("--claude-org", default=None, metavar="ORG",
                        help="claude.ai organization id (lastActiveOrg cookie)")
    parser.add_argument("--list", action="store_true", default=False,
                        help="List captured messages instead of saving")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        metavar="{DEBUG,INFO,WARNING,ERROR}",
                        help="Logging level (default: WARNING)")
    return parser


def _load_page(args: argparse.Namespace) -> Any:
    from chatvault.page import Page, fetch_rendered_html

    if args.html:
        return Page.from_file(args.html, url=args.page_url)
    try:
        html = fetch_rendered_html(
            args.url, user_data_dir=args.profile_dir, wait_for=args.wait_for,
        )
    except ImportError as exc:
        raise SystemExit(
            f"ERROR: Playwright is required for --url ({exc}).\n"
            "Run: pip install 'chatvault[browser]' && playwright install chromium"
        ) from exc
    return Page.from_html(html, url=args.url)


def _print_messages(messages: list[Any], title: str) -> None:
    from rich import box
    from rich.console import Console
    from rich.table import Table

    tbl = Table(
        title=f"[bold green]{title} ({len(messages)} messages)[/bold green]",
        box=box.SIMPLE_HEAVY,
        show_lines=False,
    )
    tbl.add_column("#",       style="dim",   justify="right", width=4, no_wrap=True)
    tbl.add_column("Role",    style="cyan",  width=10,                 no_wrap=True)
    tbl.add_column("Chars",   justify="right", width=7,                no_wrap=True)
    tbl.add_column("Preview", ratio=1, overflow="ellipsis",            no_wrap=True)
    for i, msg in enumerate(messages, 1):
        preview = " ".join(msg.content.split())[:77]
        tbl.add_row(str(i), msg.role, str(len(msg.content)), preview)
    Console().print(tbl)


def _print_outcome(outcome: Any, service: str, mode: str) -> None:
    from rich.console import Console
    from rich.panel import Panel

    style = "green" if outcome.success else "red"
    lines = [
        f"Service:   [cyan]{service}[/cyan]",
        f"Mode:      {mode}",
        f"Method:    {outcome.method or '-'}",
        f"File:      [yellow]{outcome.filename or '-'}[/yellow]",
    ]
    if outcome.parts:
        lines.append(f"Parts:     {len(outcome.parts)}")
    if outcome.is_duplicate:
        lines.append("Duplicate: already saved")
    lines.append("")
    lines.append(outcome.message or outcome.error or "")
    if not outcome.success and outcome.error:
        lines.append(f"[dim]{outcome.error}[/dim]")
    Console().print(Panel.fit(
        "\n".join(lines),
        border_style=style,
        title=f"[bold]{'Saved' if outcome.success else 'Not saved'}[/bold]",
    ))


async def _run(agent: Any, mode: str, count: int | None) -> Any:
    await agent.start()
    try:
        if mode == "artifacts":
            return await agent.save_artifacts()
        return await agent.save_capture(mode, count)
    finally:
        agent.stop()


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    from chatvault.agent import CoordinatorChannel, ExtractionAgent
    from chatvault.coordinator import PersistenceCoordinator
    from chatvault.errors import ChatVaultError, ErrorCode, user_message
    from chatvault.providers import detect_service, get_provider
    from chatvault.providers.claude_api import ClaudeApiSession
    from chatvault.settings import load_settings
    from chatvault.vault import VaultStore, user_gesture

    try:
        page = _load_page(args)
    except OSError as exc:
        print(f"ERROR: Could not read page: {exc}", file=sys.stderr)
        return 1

    service = args.service or detect_service(page.url)
    if service is None:
        print(f"ERROR: {user_message(ErrorCode.NO_SERVICE)} Use --service or --page-url.",
              file=sys.stderr)
        return 2

    settings = load_settings(args.settings, service=service)
    overrides: dict[str, Any] = {}
    if args.method:
        overrides["save_method"] = SaveMethod(args.method)
    if args.vault_name:
        overrides["obsidian_vault"] = args.vault_name
    if overrides:
        settings = settings.model_copy(update=overrides)

    provider = get_provider(service)
    if args.list:
        result = provider.capture_messages(page, "all")
        if not result.success:
            print(f"ERROR: {user_message(ErrorCode.NO_CONTENT, settings.locale)}", file=sys.stderr)
            return 1
        _print_messages(result.messages, result.title)
        return 0

    store = VaultStore(settings.vault_store_path)
    session = None
    if service == "claude" and args.claude_session_key:
        cookies = {"sessionKey": args.claude_session_key}
        if args.claude_org:
            cookies["lastActiveOrg"] = args.claude_org
        session = ClaudeApiSession(page.url, cookies=cookies)

    coordinator = PersistenceCoordinator(settings, store=store)
    agent = ExtractionAgent(
        page, provider, CoordinatorChannel(coordinator), settings,
        session=session, scan_retries=1,
    )

    # Running the CLI is an explicit user action
    with user_gesture():
        try:
            if args.vault_dir:
                store.grant(lambda: Path(args.vault_dir))
            outcome = asyncio.run(_run(agent, args.mode, args.count))
        except ChatVaultError as exc:
            logger.error("%s", exc.detail)
            print(f"ERROR: {exc.user_message(settings.locale)}", file=sys.stderr)
            return 1

    _print_outcome(outcome, service, args.mode)
    return 0 if outcome.success else 1


if __name__ == "__main__":
    sys.exit(main())
