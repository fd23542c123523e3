"""
Data models for LaraHarbor

Defines the site specification, the database profiles derived from it,
and the result classes returned by lifecycle and backup operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DatabaseEngine(str, Enum):
    """Database engines a site can be created with."""

    MYSQL = "mysql"
    POSTGRES = "pgsql"


class SourceMode(str, Enum):
    """How the application source tree of a new site is populated."""

    FRESH = "fresh"
    IMPORT = "import"


class BackupStatus(Enum):
    """Outcome of a single site backup."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class DatabaseProfile:
    """Engine-specific settings used when rendering and backing up a site."""

    engine: DatabaseEngine
    image: str
    port: int
    env_prefix: str
    volume_path: str
    admin_label: str
    admin_image: str
    admin_port: int
    root_user: str
    dump_tool: str
    display_name: str


DATABASE_PROFILES: Dict[DatabaseEngine, DatabaseProfile] = {
    DatabaseEngine.MYSQL: DatabaseProfile(
        engine=DatabaseEngine.MYSQL,
        image="mysql:8.0",
        port=3306,
        env_prefix="MYSQL",
        volume_path="/var/lib/mysql",
        admin_label="phpMyAdmin",
        admin_image="phpmyadmin/phpmyadmin",
        admin_port=80,
        root_user="root",
        dump_tool="mysqldump",
        display_name="MySQL",
    ),
    DatabaseEngine.POSTGRES: DatabaseProfile(
        engine=DatabaseEngine.POSTGRES,
        image="postgres:14",
        port=5432,
        env_prefix="POSTGRES",
        volume_path="/var/lib/postgresql/data",
        admin_label="Adminer",
        admin_image="adminer",
        admin_port=8080,
        root_user="laravel",
        dump_tool="pg_dump",
        display_name="PostgreSQL",
    ),
}


class Credentials(BaseModel):
    """Generated secrets for one site."""

    model_config = ConfigDict(frozen=True)

    db_password: str
    db_root_password: str
    cache_password: Optional[str] = None


class EnvironmentSpec(BaseModel):
    """Everything the renderer needs to produce a site's artifact set."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Normalized site name, also the DNS label")
    engine: DatabaseEngine = Field(DatabaseEngine.MYSQL, description="Database engine")
    cache_enabled: bool = Field(True, description="Whether a Redis service is included")
    source_mode: SourceMode = Field(SourceMode.FRESH, description="Fresh scaffold or imported project")
    credentials: Credentials
    domain_suffix: str = Field("local", description="Local top-level domain")
    app_key: str = Field("", description="Application key carried across re-renders")

    @property
    def domain(self) -> str:
        return f"{self.name}.{self.domain_suffix}"

    @property
    def admin_domain(self) -> str:
        return f"admin.{self.domain}"

    @property
    def database(self) -> DatabaseProfile:
        return DATABASE_PROFILES[self.engine]

    def container_name(self, service: str) -> str:
        """Container name for one of the site's services (app, db, redis, dbadmin)."""
        return f"{self.name}-{service}"


@dataclass
class DatabaseDescriptor:
    """Connection details used to dump a site's database."""

    connection: str = "mysql"
    username: str = "laravel"
    password: str = "laravel"
    database: str = "laravel"

    @property
    def engine(self) -> DatabaseEngine:
        if self.connection == DatabaseEngine.POSTGRES.value:
            return DatabaseEngine.POSTGRES
        return DatabaseEngine.MYSQL


@dataclass
class BackupResult:
    """Result of backing up one site."""

    site: str
    status: BackupStatus
    path: Optional[Path] = None
    message: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return self.status == BackupStatus.COMPLETED

    def get_summary(self) -> str:
        """Get a summary string for the backup result."""
        icon = {
            BackupStatus.COMPLETED: "✅",
            BackupStatus.SKIPPED: "⚠️",
            BackupStatus.FAILED: "❌",
        }[self.status]
        detail = f" -> {self.path}" if self.path else ""
        message = f" ({self.message})" if self.message else ""
        return f"{icon} {self.site}: {self.status.value}{detail}{message}"


@dataclass
class BackupSweepResult:
    """Result of backing up every site and pruning old dumps."""

    results: List[BackupResult] = field(default_factory=list)
    pruned: List[Path] = field(default_factory=list)

    @property
    def failures(self) -> List[BackupResult]:
        return [r for r in self.results if r.status == BackupStatus.FAILED]


@dataclass
class SiteStatus:
    """Listing entry for one site."""

    name: str
    domain: str
    admin_domain: str
    running: bool
    backup_count: int

    @property
    def url(self) -> str:
        return f"https://{self.domain}"

    @property
    def admin_url(self) -> str:
        return f"https://{self.admin_domain}"


@dataclass
class SweepResult:
    """Result of applying one command to every site."""

    succeeded: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failures


@dataclass
class SetupResult:
    """Outcome of preparing the shared services."""

    network_created: bool = False
    started: List[str] = field(default_factory=list)
    already_running: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class CreateResult:
    """What the operator needs to know after a site is created."""

    name: str
    directory: Path
    url: str
    admin_url: str
    mail_url: str
    credentials: Credentials
    ready: bool = False
    warnings: List[str] = field(default_factory=list)


@dataclass
class DeleteResult:
    """Outcome of deleting a site, including its final backup."""

    name: str
    backup: Optional[BackupResult] = None
    warnings: List[str] = field(default_factory=list)
