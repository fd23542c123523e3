"""
Database backups for sites.

Each backup is a plain SQL dump produced by the engine's own dump tool
inside the site's database container and written to
<root>/backups/<site>/<YYYY-MM-DD_HH-MM-SS-ffffff>-<site>-backup.sql.
An existing file is never overwritten.
"""

import logging
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import IO, Callable, List, Optional, Tuple

from dotenv import dotenv_values

from .environment.store import EnvironmentStore
from .errors import BackupFailed, FleetOperationFailed
from .fleet import FleetDriver
from .models import (
    BackupResult,
    BackupStatus,
    BackupSweepResult,
    DatabaseDescriptor,
    DatabaseEngine,
)

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S-%f"
SECONDS_PER_DAY = 24 * 60 * 60


def backup_filename(name: str, moment: datetime) -> str:
    """File name embedding site name and a sortable, filesystem-safe timestamp."""
    return f"{moment.strftime(TIMESTAMP_FORMAT)}-{name}-backup.sql"


def read_descriptor(env_file: Path) -> DatabaseDescriptor:
    """
    Read the database connection descriptor from an application .env file.

    Falls back to the default descriptor (and to default values for
    individual missing keys) when the file is absent or unreadable.
    """
    default = DatabaseDescriptor()
    try:
        values = dotenv_values(env_file) if env_file.is_file() else {}
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Cannot read {env_file}, using default database descriptor: {e}")
        values = {}

    return DatabaseDescriptor(
        connection=values.get("DB_CONNECTION") or default.connection,
        username=values.get("DB_USERNAME") or default.username,
        password=values.get("DB_PASSWORD") or default.password,
        database=values.get("DB_DATABASE") or default.database,
    )


class BackupRunner:
    """Dumps site databases and prunes old dumps."""

    def __init__(
        self,
        store: EnvironmentStore,
        fleet: FleetDriver,
        retention_days: int = 7,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.fleet = fleet
        self.retention_days = retention_days
        self.clock = clock

    def backup_one(self, name: str) -> BackupResult:
        """
        Dump one site's database.

        Returns:
            BackupResult with status COMPLETED, or SKIPPED when the database
            container is not running (no file is created then)

        Raises:
            NotFound: the site does not exist
            BackupFailed: the dump command failed (the partial file is removed)
        """
        site_dir = self.store.require(name)
        descriptor = read_descriptor(site_dir / "src" / ".env")
        container = f"{name}-db"

        if not self.fleet.is_running(container):
            logger.warning(f"Database container not running for {name}, skipping backup")
            return BackupResult(
                site=name,
                status=BackupStatus.SKIPPED,
                message=f"{container} is not running",
            )

        if descriptor.engine == DatabaseEngine.POSTGRES:
            command, args, env = "pg_dump", ["-U", descriptor.username, descriptor.database], None
        else:
            command = "mysqldump"
            args = ["-u", descriptor.username, descriptor.database]
            env = {"MYSQL_PWD": descriptor.password}

        backup_dir = self.store.backup_dir(name)
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
            target, handle = self._create_dump_file(backup_dir, name)
        except OSError as e:
            raise BackupFailed(
                f"Cannot create dump file in {backup_dir}: {e}", site=name, step="backup"
            )

        logger.info(f"Backing up database for site {name} to {target}")
        try:
            with handle:
                self.fleet.exec(container, command, *args, env=env, stdout=handle)
        except (FleetOperationFailed, OSError) as e:
            target.unlink(missing_ok=True)
            raise BackupFailed(f"{command} failed: {e}", site=name, step="backup")

        logger.info(f"Backup completed for {name}: {target.stat().st_size} bytes")
        return BackupResult(site=name, status=BackupStatus.COMPLETED, path=target)

    def _create_dump_file(self, backup_dir: Path, name: str) -> Tuple[Path, IO]:
        """Exclusively create the next free dump file, stepping the timestamp on collision."""
        moment = self.clock()
        while True:
            target = backup_dir / backup_filename(name, moment)
            try:
                return target, open(target, "x")
            except FileExistsError:
                moment += timedelta(microseconds=1)

    def backup_all(self) -> BackupSweepResult:
        """Back up every site, continuing past failures, then prune old dumps."""
        sweep = BackupSweepResult()
        for name in self.store.list_names():
            try:
                sweep.results.append(self.backup_one(name))
            except BackupFailed as e:
                logger.error(e.get_detailed_message())
                sweep.results.append(
                    BackupResult(site=name, status=BackupStatus.FAILED, message=e.message)
                )
            except FleetOperationFailed as e:
                logger.error(f"Backup of {name} failed: {e}")
                sweep.results.append(
                    BackupResult(site=name, status=BackupStatus.FAILED, message=str(e))
                )

        sweep.pruned = self.prune()
        return sweep

    def prune(self, now: Optional[float] = None) -> List[Path]:
        """
        Delete dumps whose modification time is older than the retention window.

        Returns:
            Paths that were deleted
        """
        now = time.time() if now is None else now
        cutoff = now - self.retention_days * SECONDS_PER_DAY
        removed = []
        for path in self.store.all_backups():
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed.append(path)
            except FileNotFoundError:
                continue
        if removed:
            logger.info(f"Pruned {len(removed)} backup(s) older than {self.retention_days} days")
        return removed
