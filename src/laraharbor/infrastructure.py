"""
Shared infrastructure: the reverse proxy, the mail-capture service and the
backup scheduler, plus the network every site joins.

There is one instance of each per machine. They are brought up once and
reused by every site.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

from .certificates import CertificateProvisioner
from .config import BACKUPS_DIR, MAIL_DIR, PROXY_DIR, RESERVED_NAMES, SCHEDULER_DIR, HarborConfig
from .environment.renderer import ArtifactSet, TemplateRenderer
from .environment.store import EnvironmentStore
from .errors import FleetOperationFailed, RegistrationFailed
from .fleet import FleetDriver
from .hosts import HostsRegistrar
from .models import SetupResult

logger = logging.getLogger(__name__)

PROXY_SUBDIRS = ("certs", "vhost.d", "html", "conf.d")


@dataclass(frozen=True)
class Singleton:
    """One shared service: its store directory and container name."""

    name: str
    directory: Path
    container: str


class SharedInfrastructureManager:
    """Owns the three shared services and the shared network."""

    def __init__(
        self,
        config: HarborConfig,
        store: EnvironmentStore,
        fleet: FleetDriver,
        renderer: TemplateRenderer,
        certificates: CertificateProvisioner,
        hosts: HostsRegistrar,
    ):
        self.config = config
        self.store = store
        self.fleet = fleet
        self.renderer = renderer
        self.certificates = certificates
        self.hosts = hosts

    @property
    def singletons(self) -> List[Singleton]:
        """Shared services in start order (proxy first)."""
        root = self.store.root
        return [
            Singleton("proxy", root / PROXY_DIR, self.config.shared_container_name("proxy")),
            Singleton("mail", root / MAIL_DIR, self.config.shared_container_name("mailhog")),
            Singleton(
                "scheduler",
                root / SCHEDULER_DIR,
                self.config.shared_container_name("backup-scheduler"),
            ),
        ]

    def render(self) -> Dict[str, ArtifactSet]:
        """Render the artifact sets of all shared services keyed by service name."""
        root = self.store.root
        return {
            "proxy": self.renderer.render_proxy(),
            "mail": self.renderer.render_mail(),
            "scheduler": self.renderer.render_scheduler(
                root_dir=str(root.resolve()),
                backups_dir=str((root / BACKUPS_DIR).resolve()),
                scheduler_dir=SCHEDULER_DIR,
                reserved=sorted(RESERVED_NAMES),
                retention_days=self.config.backup_retention_days,
            ),
        }

    def write_artifacts(self) -> None:
        """Write (or rewrite) every shared service's files."""
        self.store.ensure_layout()
        rendered = self.render()
        for singleton in self.singletons:
            singleton.directory.mkdir(parents=True, exist_ok=True)
            self.store.write_artifacts(singleton.directory, rendered[singleton.name])
        for subdir in PROXY_SUBDIRS:
            (self.store.root / PROXY_DIR / subdir).mkdir(parents=True, exist_ok=True)

    def _ensure_running(self, singleton: Singleton) -> bool:
        """Bring a singleton up unless already running. Returns True if started."""
        if self.fleet.is_running(singleton.container):
            logger.debug(f"{singleton.container} already running")
            return False
        self.fleet.up(singleton.directory)
        logger.info(f"Started {singleton.container}")
        return True

    def setup(self) -> SetupResult:
        """
        Prepare network, files, mail certificate and hosts entry, then start
        every singleton that is not running. Safe to call repeatedly.
        """
        result = SetupResult()
        result.network_created = self.fleet.ensure_network(self.config.network_name)
        self.write_artifacts()

        self.certificates.provision(self.config.mail_host)
        try:
            self.hosts.add(self.config.mail_host)
        except RegistrationFailed as e:
            warning = (
                f"Could not register {self.config.mail_host} in {self.config.hosts_file}: "
                f"{e.message}. Add '127.0.0.1 {self.config.mail_host}' manually."
            )
            logger.warning(warning)
            result.warnings.append(warning)

        for singleton in self.singletons:
            if self._ensure_running(singleton):
                result.started.append(singleton.name)
            else:
                result.already_running.append(singleton.name)
        return result

    def up_all(self) -> Dict[str, str]:
        """
        Make sure the network, the shared files and every singleton are in
        place, continuing past failures.

        Returns:
            Failures keyed by container name, network name or "shared-files"
        """
        failures = {}
        try:
            self.fleet.ensure_network(self.config.network_name)
        except FleetOperationFailed as e:
            logger.error(f"Failed to create network {self.config.network_name}: {e}")
            failures[self.config.network_name] = str(e)
        try:
            self.write_artifacts()
        except OSError as e:
            logger.error(f"Failed to write shared service files: {e}")
            failures["shared-files"] = str(e)
        for singleton in self.singletons:
            try:
                self._ensure_running(singleton)
            except FleetOperationFailed as e:
                logger.error(f"Failed to start {singleton.container}: {e}")
                failures[singleton.container] = str(e)
        return failures

    def down_all(self) -> Dict[str, str]:
        """
        Stop every singleton, proxy last.

        Returns:
            Failures keyed by container name
        """
        failures = {}
        for singleton in reversed(self.singletons):
            if not (singleton.directory / "docker-compose.yml").is_file():
                continue
            try:
                self.fleet.down(singleton.directory)
            except FleetOperationFailed as e:
                logger.error(f"Failed to stop {singleton.container}: {e}")
                failures[singleton.container] = str(e)
        return failures
