#!/usr/bin/env python3
"""
gitshelf CLI - pull, edit and push tracker collections from the terminal
"""

import argparse
import asyncio
import inspect
import json
import logging
import sys

from config.loader import load_settings
from config.providers import ConfigCredentialProvider
from storage.content_store import GitHubContentStore
from storage.errors import StoreError


def parse_assignments(pairs: list[str]) -> dict:
    """key=value pairs -> record; values are parsed as JSON when possible"""
    record = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"expected key=value, got {pair!r}")
        try:
            record[key] = json.loads(raw)
        except json.JSONDecodeError:
            record[key] = raw
    return record


def _session(args):
    from sync.session import SessionContext

    # Each CLI run is a fresh process: unsaved shards must survive in the state file.
    settings = load_settings(workspace_root=args.workspace)
    cfg = settings.collection(args.app).model_copy(update={"persist_local": True})
    settings.collections[args.app] = cfg
    return SessionContext.from_settings(settings, namespace=cfg.credential_namespace), cfg


def _open(args):
    from apps.presets import open_collection

    session, _ = _session(args)
    store = GitHubContentStore(session)
    collection, coordinator = open_collection(session, store, args.app)
    return session, store, collection, coordinator


def _print_records(records: list[dict], title: str) -> None:
    from rich.console import Console
    from rich.table import Table

    console = Console()
    if not records:
        console.print("[yellow]No records[/yellow]")
        return

    columns: list[str] = []
    for record in records:
        for key in record:
            if not key.startswith("_") and key not in columns:
                columns.append(key)

    table = Table(title=title)
    table.add_column("#", style="dim", justify="right")
    for column in columns:
        table.add_column(column)
    for i, record in enumerate(records):
        table.add_row(str(i), *("" if record.get(c) is None else str(record.get(c)) for c in columns))
    console.print(table)


async def cmd_pull(args) -> int:
    """Load the collection from the remote store and print it"""
    _, store, collection, _ = _open(args)
    async with store:
        records = await collection.load_all()
    _print_records(records, f"{args.app} ({len(records)} records)")
    return 0


async def cmd_add(args) -> int:
    """Append one record and push the owning shard"""
    from rich.console import Console

    record = parse_assignments(args.fields)
    _, store, collection, coordinator = _open(args)
    async with store:
        key = await collection.append(record)
        outcome = await coordinator.save()
    console = Console()
    if outcome.ok:
        console.print(f"[green]Added to {collection.shard_path(key)}[/green]")
        return 0
    console.print(f"[red]Saved locally only: {outcome.failed[0].reason}[/red]")
    return 1


async def cmd_remove(args) -> int:
    """Remove a record by its position in `pull` output and push"""
    from rich.console import Console

    _, store, collection, coordinator = _open(args)
    console = Console()
    async with store:
        await collection.load_all()
        try:
            removed = collection.remove(args.index)
        except IndexError as e:
            console.print(f"[red]{e}[/red]")
            return 2
        outcome = await coordinator.save()
    if outcome.ok:
        console.print(f"[green]Removed {removed}[/green]")
        return 0
    console.print(f"[red]Push failed: {outcome.failed[0].reason}[/red]")
    return 1


async def cmd_push(args) -> int:
    """Flush shards left pending by an earlier failed push"""
    from rich.console import Console

    _, store, collection, coordinator = _open(args)
    console = Console()
    if not collection.is_pending:
        console.print("[dim]Nothing to push[/dim]")
        return 0
    async with store:
        outcome = await coordinator.save()
    for result in outcome.results:
        style = "green" if result.ok else "red"
        console.print(f"[{style}]{result.path}: {'ok' if result.ok else result.reason}[/{style}]")
    return 0 if outcome.ok else 1


async def cmd_reshard(args) -> int:
    """Move records whose date no longer matches their day file, then push"""
    from rich.console import Console

    _, store, collection, coordinator = _open(args)
    console = Console()
    async with store:
        moved = await collection.reshard()
        if not moved:
            console.print("[dim]Every record is in its day file[/dim]")
            return 0
        outcome = await coordinator.save()
    if outcome.ok:
        console.print(f"[green]Moved {moved} records[/green]")
        return 0
    console.print(f"[red]Moved {moved} records locally; push failed: {outcome.failed[0].reason}[/red]")
    return 1


async def cmd_status(args) -> int:
    """Show sync state and pending shards"""
    from rich.console import Console

    _, _, collection, coordinator = _open(args)
    console = Console()
    console.print(f"{args.app}: [bold]{coordinator.state.value}[/bold]")
    for key in collection.pending_keys:
        console.print(f"  pending: {collection.shard_path(key)}")
    if coordinator.needs_unsaved_warning():
        console.print("[yellow]Unsaved changes; run `gitshelf push`[/yellow]")
    return 0


def cmd_login(args) -> int:
    """Store token and repository for an app"""
    session, cfg = _session(args)
    ConfigCredentialProvider(session.config, cfg.credential_namespace).store(args.token, args.repo)
    print(f"Credentials saved for {args.app} ({cfg.credential_namespace})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gitshelf", description="Sync tracker records with a Git-hosted repository")
    parser.add_argument("--workspace", type=str, help="Project directory holding .gitshelf/config.json")
    parser.add_argument("--log-level", default="WARNING", help="DEBUG, INFO, WARNING, ERROR")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("pull", help="Load and print a collection")
    p.add_argument("app")
    p.set_defaults(func=cmd_pull)

    p = sub.add_parser("add", help="Append a record (key=value ...)")
    p.add_argument("app")
    p.add_argument("fields", nargs="+")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("remove", help="Remove a record by index")
    p.add_argument("app")
    p.add_argument("index", type=int)
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("push", help="Push pending shards")
    p.add_argument("app")
    p.set_defaults(func=cmd_push)

    p = sub.add_parser("reshard", help="Move records into the day file matching their date")
    p.add_argument("app")
    p.set_defaults(func=cmd_reshard)

    p = sub.add_parser("status", help="Show sync state")
    p.add_argument("app")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("login", help="Store credentials")
    p.add_argument("app")
    p.add_argument("--token", required=True)
    p.add_argument("--repo", required=True, help="owner/name")
    p.set_defaults(func=cmd_login)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    try:
        if inspect.iscoroutinefunction(args.func):
            return asyncio.run(args.func(args))
        return args.func(args)
    except (StoreError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
