"""
Lifecycle orchestration for sites.

Ties the store, renderer, credentials, certificates, hosts table, fleet
driver and backup runner together into the operator-facing operations:
setup, create, start, stop, start_all, stop_all, list, backup, delete,
regenerate and run_tool.

Mutating operations hold the store lock so only one runs at a time.
"""

import logging
import os
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..backup import BackupRunner
from ..certificates import CertificateProvisioner
from ..config import HarborConfig
from ..credentials import CredentialGenerator
from ..errors import (
    AlreadyExists,
    BackupFailed,
    FleetOperationFailed,
    RegistrationFailed,
    ValidationError,
)
from ..fleet import ComposeFleetDriver, FleetDriver
from ..hosts import HostsRegistrar
from ..infrastructure import SharedInfrastructureManager
from ..models import (
    BackupResult,
    BackupStatus,
    BackupSweepResult,
    CreateResult,
    DatabaseEngine,
    DeleteResult,
    EnvironmentSpec,
    SetupResult,
    SiteStatus,
    SourceMode,
    SweepResult,
)
from ..readiness import wait_for_site_sync
from .renderer import HELPER_COMMANDS, TemplateRenderer
from .store import EnvironmentStore, normalize_name

logger = logging.getLogger(__name__)

COMPOSER_IMAGE = "composer:latest"
LARAVEL_PACKAGE = "laravel/laravel"
REDIS_CLIENT_PACKAGE = "predis/predis"

ReadinessProbe = Callable[[str, int, float], bool]


class LifecycleOrchestrator:
    """Runs site lifecycle operations against explicit collaborators."""

    def __init__(
        self,
        config: HarborConfig,
        store: Optional[EnvironmentStore] = None,
        fleet: Optional[FleetDriver] = None,
        hosts: Optional[HostsRegistrar] = None,
        certificates: Optional[CertificateProvisioner] = None,
        credentials: Optional[CredentialGenerator] = None,
        renderer: Optional[TemplateRenderer] = None,
        backups: Optional[BackupRunner] = None,
        infrastructure: Optional[SharedInfrastructureManager] = None,
        probe: ReadinessProbe = wait_for_site_sync,
    ):
        """
        Initialize orchestrator.

        Collaborators not given are built from the configuration.
        """
        self.config = config
        log_dir = str(config.get_log_dir_path())

        self.store = store or EnvironmentStore(config.root_path)
        self.fleet = fleet or ComposeFleetDriver(
            container_runtime=config.container_runtime, log_dir=log_dir
        )
        self.hosts = hosts or HostsRegistrar(
            hosts_file=config.hosts_file,
            use_sudo=config.hosts_use_sudo,
            lock_file=config.root_path / ".hosts.lock",
        )
        self.certificates = certificates or CertificateProvisioner(
            cert_dir=config.cert_dir,
            days=config.cert_days,
            key_size=config.cert_key_size,
            openssl=config.openssl_binary,
        )
        self.credentials = credentials or CredentialGenerator(length=config.credential_length)
        self.renderer = renderer or TemplateRenderer(
            network_name=config.network_name,
            mail_host=config.mail_host,
            container_prefix=config.project_container_prefix,
            container_runtime=config.container_runtime,
        )
        self.backups = backups or BackupRunner(
            self.store, self.fleet, retention_days=config.backup_retention_days
        )
        self.infrastructure = infrastructure or SharedInfrastructureManager(
            config=config,
            store=self.store,
            fleet=self.fleet,
            renderer=self.renderer,
            certificates=self.certificates,
            hosts=self.hosts,
        )
        self.probe = probe

    def _domain(self, name: str) -> str:
        return f"{name}.{self.config.domain_suffix}"

    def setup(self) -> SetupResult:
        """Prepare the shared network and services. Safe to repeat."""
        logger.info("Setting up shared infrastructure")
        with self.store.lock():
            self.store.cleanup_staging()
            return self.infrastructure.setup()

    def create(
        self,
        name: str,
        engine: DatabaseEngine = DatabaseEngine.MYSQL,
        cache_enabled: bool = True,
        source_mode: SourceMode = SourceMode.FRESH,
    ) -> CreateResult:
        """
        Create, start and probe a new site.

        Everything up to and including the source scaffold happens in a
        staging directory; any failure there leaves no site behind. Hosts
        registration, container start and readiness are reported as
        warnings when they fail.

        Raises:
            ValidationError: the name is empty, malformed or reserved
            AlreadyExists: a site with the normalized name exists
            ProvisioningFailed: certificates could not be issued
            FleetOperationFailed: the source scaffold failed
        """
        name = normalize_name(name, self.store.reserved)

        with self.store.lock():
            if self.store.exists(name):
                raise AlreadyExists(
                    f"Site already exists: {self.store.site_dir(name)}", site=name, step="create"
                )

            logger.info(f"Creating site {name} ({engine.value}, cache={cache_enabled}, {source_mode.value})")
            spec = EnvironmentSpec(
                name=name,
                engine=engine,
                cache_enabled=cache_enabled,
                source_mode=source_mode,
                credentials=self.credentials.for_site(cache_enabled),
                domain_suffix=self.config.domain_suffix,
            )
            backup_dir = self.store.backup_dir(name)

            with self.store.staging(name) as staging:
                for host in (spec.domain, spec.admin_domain):
                    self.certificates.provision(host)
                if source_mode == SourceMode.FRESH:
                    self._scaffold(spec, staging)
                artifacts = self.renderer.render_site(spec, backup_dir=str(backup_dir))
                self.store.write_artifacts(staging, artifacts)

            backup_dir.mkdir(parents=True, exist_ok=True)
            site_dir = self.store.site_dir(name)
            result = CreateResult(
                name=name,
                directory=site_dir,
                url=f"https://{spec.domain}",
                admin_url=f"https://{spec.admin_domain}",
                mail_url=f"https://{self.config.mail_host}",
                credentials=spec.credentials,
            )

            try:
                self.hosts.add(spec.domain, spec.admin_domain)
            except RegistrationFailed as e:
                result.warnings.append(
                    f"Could not register {spec.domain} and {spec.admin_domain}: {e.message}. "
                    f"Add '127.0.0.1 {spec.domain} {spec.admin_domain}' to {self.config.hosts_file} manually."
                )

            try:
                self.fleet.ensure_network(self.config.network_name)
                self.fleet.up(site_dir)
            except FleetOperationFailed as e:
                result.warnings.append(
                    f"Containers did not start: {e.message}. Run 'harbor start {name}' to retry."
                )
                for warning in result.warnings:
                    logger.warning(f"[{name}] {warning}")
                return result

        # Polling happens outside the lock
        result.ready = self.probe(
            result.url, self.config.readiness_attempts, self.config.readiness_interval
        )
        if not result.ready:
            result.warnings.append(
                f"{result.url} did not answer within "
                f"{self.config.readiness_attempts} attempts; it may still be starting."
            )

        for warning in result.warnings:
            logger.warning(f"[{name}] {warning}")
        logger.info(f"Site {name} created at {site_dir}")
        return result

    def _scaffold(self, spec: EnvironmentSpec, target: Path) -> None:
        """Populate target/src with a fresh Laravel project."""
        src = target / "src"
        volumes = {str(src.resolve()): "/app"}
        user = f"{os.getuid()}:{os.getgid()}"

        logger.info(f"Scaffolding a new Laravel project for {spec.name}")
        try:
            self.fleet.run_oneoff(
                COMPOSER_IMAGE,
                ["create-project", "--prefer-dist", LARAVEL_PACKAGE, "."],
                volumes=volumes,
                workdir="/app",
                user=user,
            )
            if spec.cache_enabled:
                self.fleet.run_oneoff(
                    COMPOSER_IMAGE,
                    ["require", REDIS_CLIENT_PACKAGE],
                    volumes=volumes,
                    workdir="/app",
                    user=user,
                )
        except FleetOperationFailed as e:
            e.site = spec.name
            raise

    def start(self, name: str) -> None:
        """
        Bring a site's containers up.

        Raises:
            NotFound: the site does not exist
            FleetOperationFailed: the runtime failed
        """
        with self.store.lock():
            site_dir = self.store.require(name)
            self.fleet.up(site_dir)
        logger.info(f"Site {name} started")

    def stop(self, name: str) -> None:
        """
        Take a site's containers down.

        Raises:
            NotFound: the site does not exist
            FleetOperationFailed: the runtime failed
        """
        with self.store.lock():
            site_dir = self.store.require(name)
            self.fleet.down(site_dir)
        logger.info(f"Site {name} stopped")

    def start_all(self) -> SweepResult:
        """Start the shared services, then every site, continuing past failures."""
        sweep = SweepResult()
        with self.store.lock():
            sweep.failures.update(self.infrastructure.up_all())
            for name in self.store.list_names():
                try:
                    self.fleet.up(self.store.site_dir(name))
                    sweep.succeeded.append(name)
                except FleetOperationFailed as e:
                    logger.error(f"Failed to start {name}: {e}")
                    sweep.failures[name] = e.message
        return sweep

    def stop_all(self) -> SweepResult:
        """Stop every site, then the shared services, continuing past failures."""
        sweep = SweepResult()
        with self.store.lock():
            for name in self.store.list_names():
                try:
                    self.fleet.down(self.store.site_dir(name))
                    sweep.succeeded.append(name)
                except FleetOperationFailed as e:
                    logger.error(f"Failed to stop {name}: {e}")
                    sweep.failures[name] = e.message
            sweep.failures.update(self.infrastructure.down_all())
        return sweep

    def list(self) -> List[SiteStatus]:
        """Every site sorted by name, with running state and backup count."""
        statuses = []
        for name in self.store.list_names():
            try:
                running = self.fleet.is_running(f"{name}-app")
            except FleetOperationFailed as e:
                logger.warning(f"Cannot query state of {name}: {e}")
                running = False
            domain = self._domain(name)
            statuses.append(
                SiteStatus(
                    name=name,
                    domain=domain,
                    admin_domain=f"admin.{domain}",
                    running=running,
                    backup_count=len(self.store.list_backups(name)),
                )
            )
        return statuses

    def backup(self, name: str) -> BackupResult:
        """Back up one site's database on demand."""
        with self.store.lock():
            return self.backups.backup_one(name)

    def backup_all(self) -> BackupSweepResult:
        """Back up every site and prune dumps past the retention window."""
        with self.store.lock():
            return self.backups.backup_all()

    def delete(self, name: str, confirmed: bool, require_backup: bool = False) -> DeleteResult:
        """
        Take a final backup, stop the containers, remove the site directory
        and drop its hosts entries.

        The backup runs first since a stopped database cannot be dumped. A
        skipped or failed backup is reported as a warning unless
        require_backup is set, in which case nothing is removed.

        Raises:
            ValidationError: deletion was not confirmed
            NotFound: the site does not exist
            BackupFailed: require_backup is set and no backup was written
        """
        if not confirmed:
            raise ValidationError(
                f"Deletion of '{name}' was not confirmed", site=name, step="delete"
            )

        with self.store.lock():
            site_dir = self.store.require(name)
            result = DeleteResult(name=name)

            try:
                result.backup = self.backups.backup_one(name)
            except BackupFailed as e:
                if require_backup:
                    raise
                result.backup = BackupResult(site=name, status=BackupStatus.FAILED, message=e.message)
            except FleetOperationFailed as e:
                if require_backup:
                    raise BackupFailed(
                        f"Final backup failed: {e.message}; site left in place",
                        site=name,
                        step="delete",
                    )
                result.backup = BackupResult(site=name, status=BackupStatus.FAILED, message=e.message)

            if result.backup.status != BackupStatus.COMPLETED:
                if require_backup:
                    raise BackupFailed(
                        f"Final backup {result.backup.status.value}: {result.backup.message}; "
                        "site left in place",
                        site=name,
                        step="delete",
                    )
                result.warnings.append(
                    f"No final backup was written ({result.backup.status.value}: {result.backup.message})"
                )

            try:
                self.fleet.down(site_dir)
            except FleetOperationFailed as e:
                result.warnings.append(f"Containers could not be stopped: {e.message}")

            self.store.remove(name)

            domain = self._domain(name)
            for host in (domain, f"admin.{domain}"):
                try:
                    self.hosts.remove(host)
                except RegistrationFailed as e:
                    result.warnings.append(
                        f"Could not remove {host} from {self.config.hosts_file}: {e.message}"
                    )

        for warning in result.warnings:
            logger.warning(f"[{name}] {warning}")
        logger.info(f"Site {name} deleted")
        return result

    def regenerate(self, name: str) -> List[Path]:
        """
        Re-render every file of a site from its persisted state.

        Credentials and the application key are kept. Missing certificates
        are issued again.

        Returns:
            Paths that were written
        """
        with self.store.lock():
            site_dir = self.store.require(name)
            spec = self.store.load_spec(name, self.config.domain_suffix)
            for host in (spec.domain, spec.admin_domain):
                if not self.certificates.has_certificate(host):
                    self.certificates.provision(host)
            artifacts = self.renderer.render_site(
                spec, backup_dir=str(self.store.backup_dir(name))
            )
            written = self.store.write_artifacts(site_dir, artifacts)
        logger.info(f"Regenerated {len(written)} files for {name}")
        return written

    def run_tool(self, name: str, tool: str, args: Sequence[str] = ()) -> int:
        """
        Run artisan, composer or npm inside a site's app container
        attached to the current terminal.

        Raises:
            ValidationError: unknown tool
            NotFound: the site does not exist
            FleetOperationFailed: the tool exited non-zero
        """
        if tool not in HELPER_COMMANDS:
            raise ValidationError(
                f"Unknown tool '{tool}' (expected one of: {', '.join(HELPER_COMMANDS)})",
                site=name,
                step="run",
            )
        self.store.require(name)
        command, *prefix = HELPER_COMMANDS[tool].split()
        return self.fleet.exec(f"{name}-app", command, *prefix, *args, interactive=True)
