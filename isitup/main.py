"""Entry point for the isitup uptime monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from isitup.config import settings
from isitup.health.models import Site, Status, validate_url
from isitup.health.prober import perform_check
from isitup.health.scheduler import MonitorScheduler, SchedulerConfig
from isitup.health.store import SQLiteStore
from isitup.sites.registry import SiteRegistry

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

_STYLE = {Status.UP: "bold green", Status.DEGRADED: "bold yellow", Status.DOWN: "bold red"}


def run_server() -> None:
    """Start the API server with the scheduler attached."""
    console.print(Panel("Starting isitup monitor", style="bold green"))
    uvicorn.run(
        "isitup.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def run_check(url: str, check_ssl: bool, content: str | None) -> int:
    """Probe a single URL and print the result. Nothing is stored."""
    site = Site(id="adhoc", url=validate_url(url), check_ssl=check_ssl, check_content=content)

    with console.status(f"[bold green]Checking {url}..."):
        result = perform_check(site)

    table = Table(show_header=False, box=None)
    table.add_row("Status", f"[{_STYLE[result.status]}]{result.status.value.upper()}[/]")
    table.add_row("DNS resolved", str(result.dns_resolved))
    table.add_row("HTTP status", str(result.http_status or "-"))
    table.add_row(
        "Response time",
        f"{result.response_time_ms}ms" if result.response_time_ms is not None else "-",
    )
    if result.ssl_valid is not None:
        expiry = result.ssl_expires_at.date().isoformat() if result.ssl_expires_at else "?"
        table.add_row("SSL", f"{'valid' if result.ssl_valid else 'invalid'} (expires {expiry})")
    if result.content_found is not None:
        table.add_row("Content found", str(result.content_found))
    if result.error_message:
        table.add_row("Reason", result.error_message)

    console.print(Panel(table, title=url))
    return 0 if result.status == Status.UP else 1


def run_seed(path: str | None) -> None:
    store = SQLiteStore(settings.db_path)
    try:
        count = SiteRegistry(path or settings.sites_file).seed(store)
    finally:
        store.close()
    console.print(f"[bold]Seeded {count} sites[/bold] into {settings.db_path}")


def run_cleanup(days: int | None) -> None:
    config = SchedulerConfig.from_settings()
    if days is not None:
        config.retention_days = days

    async def _cleanup() -> int:
        store = SQLiteStore(settings.db_path)
        scheduler = MonitorScheduler(store, store, config=config)
        try:
            return await scheduler.run_cleanup()
        finally:
            await scheduler.stop()
            await scheduler.notifier.close()
            store.close()

    removed = asyncio.run(_cleanup())
    console.print(f"[dim]Removed {removed} checks older than {config.retention_days} days[/dim]")


def main() -> None:
    parser = argparse.ArgumentParser(description="isitup uptime monitor")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server and scheduler")

    check_parser = sub.add_parser("check", help="Probe a URL once and print the result")
    check_parser.add_argument("url", help="Absolute http(s) URL")
    check_parser.add_argument("--no-ssl", action="store_true", help="Skip the certificate check")
    check_parser.add_argument("--content", help="Text the page body must contain")

    seed_parser = sub.add_parser("seed", help="Load users and sites from a YAML registry")
    seed_parser.add_argument("file", nargs="?", help=f"Registry file (default {settings.sites_file})")

    cleanup_parser = sub.add_parser("cleanup", help="Delete checks past the retention window")
    cleanup_parser.add_argument("--days", type=int, help="Retention window in days")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "check":
        try:
            sys.exit(run_check(args.url, not args.no_ssl, args.content))
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(2)
    elif args.command == "seed":
        run_seed(args.file)
    elif args.command == "cleanup":
        run_cleanup(args.days)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
