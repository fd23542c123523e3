"""
Environment store: the on-disk tree that decides which sites exist.

Layout under the root directory:

    <root>/proxy/            shared reverse proxy
    <root>/mailhog/          shared mail capture
    <root>/scheduler/        shared backup scheduler
    <root>/backups/<site>/   dated database dumps
    <root>/<site>/           one directory per site

A directory counts as a site when it holds a docker-compose.yml and is not
one of the reserved shared-service directories. New sites are assembled in
a hidden staging directory and renamed into place in one step, so a failed
create never leaves a half-built site behind.
"""

import fcntl
import logging
import re
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List

from dotenv import dotenv_values

from ..config import BACKUPS_DIR, RESERVED_NAMES
from ..errors import AlreadyExists, NotFound, ValidationError
from ..models import Credentials, DatabaseEngine, EnvironmentSpec, SourceMode
from .renderer import ArtifactSet

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
MAX_NAME_LENGTH = 63
STAGING_PREFIX = ".staging-"
SITE_SUBDIRS = ("src", "database", "logs")
MANIFEST = "docker-compose.yml"


def normalize_name(raw: str, reserved: Iterable[str] = RESERVED_NAMES) -> str:
    """
    Normalize a user-supplied site name (lowercase, spaces to hyphens).

    Raises:
        ValidationError: empty, not a valid DNS label, or reserved
    """
    if raw is None or not raw.strip():
        raise ValidationError("Site name cannot be empty", step="validate")

    name = "-".join(raw.strip().lower().split())
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Site name '{name}' is longer than {MAX_NAME_LENGTH} characters", step="validate"
        )
    if not NAME_PATTERN.match(name):
        raise ValidationError(
            f"Site name '{name}' may only contain letters, digits and hyphens, "
            "and must start and end with a letter or digit",
            step="validate",
        )
    if name in set(reserved):
        raise ValidationError(f"Site name '{name}' is reserved", step="validate")
    return name


class EnvironmentStore:
    """Filesystem-backed registry of sites."""

    def __init__(self, root: Path, reserved: Iterable[str] = RESERVED_NAMES):
        self.root = Path(root).expanduser()
        self.reserved = frozenset(reserved)

    def ensure_layout(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / BACKUPS_DIR).mkdir(exist_ok=True)

    def site_dir(self, name: str) -> Path:
        return self.root / name

    def backup_dir(self, name: str) -> Path:
        return self.root / BACKUPS_DIR / name

    def exists(self, name: str) -> bool:
        return self.site_dir(name).is_dir()

    def require(self, name: str) -> Path:
        """Return the site directory or raise NotFound."""
        path = self.site_dir(name)
        if not name or name in self.reserved or not path.is_dir():
            raise NotFound(f"Site not found: {name}", site=name, step="lookup")
        return path

    def list_names(self) -> List[str]:
        """Names of every site, sorted."""
        if not self.root.is_dir():
            return []
        names = []
        for entry in self.root.iterdir():
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            if entry.name in self.reserved:
                continue
            if (entry / MANIFEST).is_file():
                names.append(entry.name)
        return sorted(names)

    def list_backups(self, name: str) -> List[Path]:
        """Dump files of a site, oldest first (file names embed a sortable timestamp)."""
        directory = self.backup_dir(name)
        if not directory.is_dir():
            return []
        return sorted(directory.glob("*.sql"))

    def all_backups(self) -> List[Path]:
        backups_root = self.root / BACKUPS_DIR
        if not backups_root.is_dir():
            return []
        return sorted(backups_root.glob("*/*.sql"))

    def load_spec(self, name: str, domain_suffix: str = "local") -> EnvironmentSpec:
        """
        Rebuild a site's specification from its persisted state file.

        Credentials come from <site>/.env and the application key from
        <site>/src/.env; neither is ever regenerated here.
        """
        site = self.require(name)
        state_file = site / ".env"
        if not state_file.is_file():
            raise NotFound(f"State file missing: {state_file}", site=name, step="load")

        state = dotenv_values(state_file)
        app_state = dotenv_values(site / "src" / ".env") if (site / "src" / ".env").is_file() else {}

        cache_enabled = (state.get("CACHE_ENABLED") or "").lower() == "true"
        try:
            engine = DatabaseEngine(state.get("DB_TYPE") or DatabaseEngine.MYSQL.value)
            source_mode = SourceMode(state.get("SOURCE_MODE") or SourceMode.FRESH.value)
        except ValueError as e:
            raise ValidationError(f"Invalid state in {state_file}: {e}", site=name, step="load")

        return EnvironmentSpec(
            name=name,
            engine=engine,
            cache_enabled=cache_enabled,
            source_mode=source_mode,
            credentials=Credentials(
                db_password=state.get("DB_PASSWORD") or "",
                db_root_password=state.get("DB_ROOT_PASSWORD") or "",
                cache_password=(state.get("REDIS_PASSWORD") or None) if cache_enabled else None,
            ),
            domain_suffix=domain_suffix,
            app_key=app_state.get("APP_KEY") or "",
        )

    def write_artifacts(self, target: Path, artifacts: ArtifactSet) -> List[Path]:
        """Write a complete artifact set below target."""
        written = []
        for relative, artifact in artifacts:
            path = Path(target) / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(artifact.content)
            if artifact.executable:
                path.chmod(0o755)
            written.append(path)
        logger.debug(f"Wrote {len(written)} files to {target}")
        return written

    def cleanup_staging(self) -> None:
        """Remove staging directories left behind by an interrupted create."""
        if not self.root.is_dir():
            return
        for entry in self.root.glob(f"{STAGING_PREFIX}*"):
            logger.warning(f"Removing stale staging directory {entry}")
            shutil.rmtree(entry, ignore_errors=True)

    @contextmanager
    def staging(self, name: str) -> Iterator[Path]:
        """
        Yield a private directory to assemble a new site in.

        On normal exit the directory is renamed to <root>/<name>; on any
        exception it is deleted and the exception propagates.
        """
        self.ensure_layout()
        staging = Path(tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}{name}-", dir=self.root))
        for subdir in SITE_SUBDIRS:
            (staging / subdir).mkdir()
        try:
            yield staging
            if self.exists(name):
                raise AlreadyExists(f"Site already exists: {self.site_dir(name)}", site=name, step="create")
            staging.rename(self.site_dir(name))
            logger.info(f"Site directory ready: {self.site_dir(name)}")
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

    def remove(self, name: str) -> None:
        site = self.require(name)
        shutil.rmtree(site)
        logger.info(f"Removed site directory {site}")

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Exclusive lock held by mutating operations (single writer)."""
        self.ensure_layout()
        with open(self.root / ".harbor.lock", "a") as handle:
            fcntl.flock(handle, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)
