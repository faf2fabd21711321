#!/usr/bin/env python3
"""
Huddle Snapshot Tool
--------------------
• Lists database snapshots (newest first)
• Takes a manual snapshot
• Restores a snapshot into the live database (a pre_restore copy is taken first)

Usage:
    python scripts/restore_backup.py list
    python scripts/restore_backup.py snapshot
    python scripts/restore_backup.py restore bot_backup_20260101_120000_000000_scheduled.db

Stop the bot before restoring: the running process keeps its own in-memory
copy of the store and would not see the restored data.
"""

import argparse
import asyncio
import sys

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from huddle.common.exceptions.exceptions import BackupError, RestoreError
from huddle.config.backup_config import get_backup_config
from huddle.config.logging_config import setup_logging
from huddle.config.storage_config import get_storage_config
from huddle.infra.backup.snapshot_manager import SnapshotManager
from huddle.infra.persistence.sqlite_client import SQLiteClient

load_dotenv()

console = Console()


async def list_snapshots(manager: SnapshotManager) -> int:
    snapshots = await manager.list_snapshots()
    if not snapshots:
        console.print(f"No snapshots in {manager.directory}")
        return 0

    table = Table(title=f"Snapshots in {manager.directory}")
    table.add_column("#", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Reason")
    table.add_column("Created (UTC)")
    table.add_column("Size", justify="right")
    for i, info in enumerate(snapshots, 1):
        table.add_row(
            str(i),
            info.name,
            info.reason,
            info.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            f"{info.size / 1024:.1f} KB",
        )
    console.print(table)
    return 0


async def take_snapshot(manager: SnapshotManager) -> int:
    info = await manager.create_snapshot("manual")
    if info is None:
        console.print("[yellow]A snapshot is already in progress[/yellow]")
        return 1
    console.print(f"[green]Snapshot written:[/green] {info.path}")
    return 0


async def restore_snapshot(manager: SnapshotManager, name: str) -> int:
    safety = await manager.restore(name)
    console.print(f"[green]Database restored from {name}[/green]")
    console.print(f"Previous state saved as {safety.name}")
    return 0


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="List, take and restore huddle database snapshots")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List snapshots, newest first")
    sub.add_parser("snapshot", help="Take a manual snapshot")
    restore = sub.add_parser("restore", help="Restore a snapshot by file name")
    restore.add_argument("name")
    args = parser.parse_args(argv)

    setup_logging(service_name="huddle-restore")

    client = SQLiteClient(get_storage_config())
    await client.connect()
    manager = SnapshotManager(client, get_backup_config())
    try:
        if args.command == "list":
            return await list_snapshots(manager)
        if args.command == "snapshot":
            return await take_snapshot(manager)
        return await restore_snapshot(manager, args.name)
    except (BackupError, RestoreError) as e:
        console.print(f"[red]{e}[/red]")
        return 1
    finally:
        await client.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
