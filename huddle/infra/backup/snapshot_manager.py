# =============================================================================
# File: huddle/infra/backup/snapshot_manager.py
# Description: Consistent SQLite snapshots, rotation and restore
# =============================================================================

from __future__ import annotations

import asyncio
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

import aiofiles
import aiofiles.os

from huddle.common.exceptions.exceptions import BackupError, RestoreError
from huddle.config.backup_config import BackupConfig
from huddle.config.logging_config import get_logger
from huddle.infra.persistence.sqlite_client import SQLiteClient
from huddle.rsvp.models import utc_now

log = get_logger("huddle.infra.backup")

_STAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
_COPY_CHUNK = 1024 * 1024


@dataclass
class SnapshotInfo:
    name: str
    path: str
    size: int
    created_at: datetime
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "created_at": self.created_at.isoformat(),
            "reason": self.reason,
        }


def _verify_sqlite_file(path: str) -> int:
    """Open read-only and query sqlite_master. Returns the table count."""
    conn = sqlite3.connect(f"file:{path}?mode=ro&immutable=1", uri=True)
    try:
        row = conn.execute("SELECT COUNT(*) FROM sqlite_master WHERE type = 'table'").fetchone()
    finally:
        conn.close()
    if row is None or not isinstance(row[0], int):
        raise BackupError(f"Snapshot {path} appears to be corrupted")
    return row[0]


class SnapshotManager:
    """
    Snapshots are named <prefix><UTC timestamp>_<reason>.db and ordered by
    that timestamp. Only one snapshot or restore runs at a time.
    """

    def __init__(
            self,
            client: SQLiteClient,
            config: BackupConfig,
            after_restore: Optional[Callable[[], Awaitable[None]]] = None,
            clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.config = config
        self.directory = Path(config.directory)
        self.after_restore = after_restore
        self._clock = clock

        self._lock = asyncio.Lock()
        self._periodic_task: Optional[asyncio.Task] = None
        self._last_snapshot: Optional[SnapshotInfo] = None
        self._last_error: Optional[str] = None
        self._snapshots_created = 0

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    # =========================================================================
    # Snapshots
    # =========================================================================

    async def create_snapshot(self, reason: str = "manual") -> Optional[SnapshotInfo]:
        """
        Write, verify and rotate. Returns None when another snapshot or
        restore is already running. Failures raise BackupError.
        """
        if self._lock.locked():
            log.warning(f"Snapshot already in progress; skipping {reason} snapshot")
            return None

        async with self._lock:
            return await self._create_locked(reason)

    async def _create_locked(self, reason: str, rotate: bool = True) -> SnapshotInfo:
        start = time.perf_counter()
        await aiofiles.os.makedirs(self.directory, exist_ok=True)

        created_at = self._clock()
        name = f"{self.config.file_prefix}{created_at.strftime(_STAMP_FORMAT)}_{reason}.db"
        path = str(self.directory / name)

        try:
            await self._export(path)
            size = await self._verify(path)
        except BackupError as e:
            self._last_error = str(e)
            log.error(f"Snapshot {name} failed: {e}")
            raise
        except Exception as e:
            self._last_error = str(e)
            log.error(f"Snapshot {name} failed: {e}")
            await self._discard(path)
            raise BackupError(f"Snapshot {name} failed: {e}") from e

        info = SnapshotInfo(name=name, path=path, size=size, created_at=created_at, reason=reason)
        self._last_snapshot = info
        self._last_error = None
        self._snapshots_created += 1

        duration_ms = (time.perf_counter() - start) * 1000
        log.info(f"Snapshot {name} written ({size / 1024 / 1024:.2f} MB, {duration_ms:.0f}ms)")

        if rotate:
            await self.rotate(self.config.keep_count)
        return info

    async def _export(self, path: str) -> None:
        try:
            await self.client.export_snapshot(path)
            return
        except NotImplementedError as e:
            if not self.config.allow_raw_copy_fallback:
                raise BackupError(f"Consistent export unavailable: {e}") from e
            log.warning(f"{e}; falling back to a raw file copy")

        async with aiofiles.open(self.client.database_path, "rb") as src:
            async with aiofiles.open(path, "wb") as dst:
                while True:
                    chunk = await src.read(_COPY_CHUNK)
                    if not chunk:
                        break
                    await dst.write(chunk)

    async def _verify(self, path: str) -> int:
        """Size of a valid snapshot. Invalid files are deleted before raising."""
        try:
            stat = await aiofiles.os.stat(path)
            if stat.st_size == 0:
                raise BackupError(f"Snapshot {path} is empty")
            await asyncio.to_thread(_verify_sqlite_file, path)
        except BackupError:
            await self._discard(path)
            raise
        except (OSError, sqlite3.Error) as e:
            await self._discard(path)
            raise BackupError(f"Snapshot verification failed for {path}: {e}") from e
        return stat.st_size

    async def verify(self, name: str) -> SnapshotInfo:
        """Check an existing snapshot without deleting it on failure."""
        info = await self._find(name)
        try:
            await asyncio.to_thread(_verify_sqlite_file, info.path)
        except sqlite3.Error as e:
            raise BackupError(f"Snapshot {name} is not a valid database: {e}") from e
        if info.size == 0:
            raise BackupError(f"Snapshot {name} is empty")
        return info

    @staticmethod
    async def _discard(path: str) -> None:
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError as e:
            log.warning(f"Failed to remove invalid snapshot {path}: {e}")

    # =========================================================================
    # Listing and rotation
    # =========================================================================

    def _parse_name(self, name: str) -> Optional[tuple]:
        prefix = self.config.file_prefix
        if not name.startswith(prefix) or not name.endswith(".db"):
            return None
        parts = name[len(prefix):-3].split("_", 3)
        if len(parts) < 3:
            return None
        try:
            created_at = datetime.strptime("_".join(parts[:3]), _STAMP_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            return None
        reason = parts[3] if len(parts) > 3 else ""
        return created_at, reason

    async def list_snapshots(self) -> List[SnapshotInfo]:
        """Snapshots in the directory, newest first."""
        if not await aiofiles.os.path.isdir(self.directory):
            return []

        snapshots: List[SnapshotInfo] = []
        for name in await aiofiles.os.listdir(self.directory):
            parsed = self._parse_name(name)
            if parsed is None:
                continue
            created_at, reason = parsed
            path = str(self.directory / name)
            try:
                stat = await aiofiles.os.stat(path)
            except FileNotFoundError:
                continue
            snapshots.append(SnapshotInfo(
                name=name, path=path, size=stat.st_size, created_at=created_at, reason=reason,
            ))

        snapshots.sort(key=lambda s: (s.created_at, s.name), reverse=True)
        return snapshots

    async def rotate(self, keep_count: Optional[int] = None) -> List[str]:
        """Delete all but the keep_count newest snapshots. Returns the deleted names."""
        keep_count = keep_count if keep_count is not None else self.config.keep_count
        snapshots = await self.list_snapshots()
        deleted: List[str] = []
        for info in snapshots[keep_count:]:
            try:
                await aiofiles.os.remove(info.path)
                deleted.append(info.name)
            except OSError as e:
                log.warning(f"Failed to delete old snapshot {info.name}: {e}")
        if deleted:
            log.info(f"Rotated {len(deleted)} old snapshot(s), kept {min(len(snapshots), keep_count)}")
        return deleted

    async def _find(self, name: str) -> SnapshotInfo:
        for info in await self.list_snapshots():
            if info.name == name:
                return info
        raise BackupError(f"Snapshot {name} not found in {self.directory}")

    # =========================================================================
    # Restore
    # =========================================================================

    async def restore(self, name: str) -> SnapshotInfo:
        """
        Restore the live database from a snapshot.

        A pre_restore snapshot of the current state is taken first, then the
        snapshot is copied in with the online backup API and the after-restore
        hook reloads in-memory state. Returns the pre_restore snapshot.
        """
        if self._lock.locked():
            raise RestoreError("A snapshot or restore is already in progress")

        async with self._lock:
            try:
                source = await self.verify(name)
            except BackupError as e:
                raise RestoreError(f"Cannot restore {name}: {e}") from e

            try:
                safety = await self._create_locked("pre_restore", rotate=False)
            except BackupError as e:
                raise RestoreError(f"Pre-restore snapshot failed, restore aborted: {e}") from e

            log.warning(f"Restoring database from {source.name} (safety copy {safety.name})")
            try:
                await self.client.restore_from(source.path)
            except Exception as e:
                raise RestoreError(f"Restore from {name} failed: {e}") from e

            if self.after_restore is not None:
                try:
                    await self.after_restore()
                except Exception as e:
                    raise RestoreError(f"Database restored from {name} but reload failed: {e}") from e

            await self.rotate(self.config.keep_count)
            log.info(f"Database restored from {source.name}")
            return safety

    # =========================================================================
    # Periodic snapshots
    # =========================================================================

    def start_periodic(self) -> None:
        if self._periodic_task is not None and not self._periodic_task.done():
            return
        self._periodic_task = asyncio.create_task(self._periodic_loop(), name="periodic-snapshots")
        log.info(
            f"Periodic snapshots every {self.config.interval_hours}h "
            f"(first in {self.config.initial_delay_minutes} min)"
        )

    async def stop(self) -> None:
        task, self._periodic_task = self._periodic_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Periodic snapshots stopped")

    async def _periodic_loop(self) -> None:
        await asyncio.sleep(self.config.initial_delay_minutes * 60)
        reason = "startup"
        while True:
            try:
                await self.create_snapshot(reason)
            except BackupError as e:
                log.error(f"Scheduled snapshot failed: {e}")
            reason = "scheduled"
            await asyncio.sleep(self.config.interval_hours * 3600)

    def get_status(self) -> Dict[str, object]:
        return {
            "directory": str(self.directory),
            "in_progress": self.in_progress,
            "periodic_running": self._periodic_task is not None and not self._periodic_task.done(),
            "snapshots_created": self._snapshots_created,
            "last_snapshot": self._last_snapshot.to_dict() if self._last_snapshot else None,
            "last_error": self._last_error,
            "keep_count": self.config.keep_count,
        }
