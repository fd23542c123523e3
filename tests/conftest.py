"""
Pytest configuration and fixtures for LaraHarbor tests.

Provides an isolated HARBOR_* environment, a temporary store root and
orchestrators wired to in-memory fakes.
"""

import os
import random
from collections.abc import Generator
from datetime import datetime
from pathlib import Path

import pytest

from laraharbor.backup import BackupRunner
from laraharbor.config import HarborConfig
from laraharbor.credentials import CredentialGenerator
from laraharbor.environment.orchestrator import LifecycleOrchestrator
from laraharbor.environment.renderer import TemplateRenderer
from laraharbor.environment.store import EnvironmentStore
from laraharbor.hosts import HostsRegistrar

from .mock_fleet import FakeCertificateProvisioner, FakeFleetDriver, FakeProbe

BACKUP_TIME = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture
def isolated_test_env(tmp_path: Path) -> Generator[dict[str, str], None, None]:
    """
    Run with clean HARBOR_* variables pointing at a temporary root.

    Yields:
        Dictionary of original environment variables
    """
    original_env = os.environ.copy()
    original_cwd = os.getcwd()

    for key in list(os.environ.keys()):
        if key.startswith("HARBOR_"):
            del os.environ[key]

    os.environ.update(
        {
            "HARBOR_ROOT_DIR": str(tmp_path / "LaraHarbor"),
            "HARBOR_HOSTS_FILE": str(tmp_path / "hosts"),
            "HARBOR_HOSTS_USE_SUDO": "false",
            "HARBOR_LOG_LEVEL": "DEBUG",
        }
    )
    # Keep a stray .env in the working directory out of the settings
    os.chdir(tmp_path)

    yield original_env

    os.chdir(original_cwd)
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def test_config(isolated_test_env: dict[str, str], tmp_path: Path) -> HarborConfig:
    """Configuration rooted in the temporary directory with fast readiness polling."""
    return HarborConfig(
        root_dir=str(tmp_path / "LaraHarbor"),
        hosts_file=str(tmp_path / "hosts"),
        hosts_use_sudo=False,
        readiness_attempts=2,
        readiness_interval=0.0,
        log_level="DEBUG",
    )


@pytest.fixture
def hosts_file(tmp_path: Path) -> Path:
    path = tmp_path / "hosts"
    path.write_text("127.0.0.1 localhost\n::1 localhost\n")
    return path


@pytest.fixture
def store(test_config: HarborConfig) -> EnvironmentStore:
    store = EnvironmentStore(test_config.root_path)
    store.ensure_layout()
    return store


@pytest.fixture
def renderer(test_config: HarborConfig) -> TemplateRenderer:
    return TemplateRenderer(
        network_name=test_config.network_name,
        mail_host=test_config.mail_host,
        container_prefix=test_config.project_container_prefix,
        container_runtime=test_config.container_runtime,
    )


@pytest.fixture
def fleet() -> FakeFleetDriver:
    return FakeFleetDriver()


@pytest.fixture
def certificates(test_config: HarborConfig) -> FakeCertificateProvisioner:
    return FakeCertificateProvisioner(test_config.cert_dir)


@pytest.fixture
def hosts(hosts_file: Path, tmp_path: Path) -> HostsRegistrar:
    return HostsRegistrar(
        hosts_file=str(hosts_file), use_sudo=False, lock_file=tmp_path / ".hosts.lock"
    )


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def orchestrator(
    test_config: HarborConfig,
    store: EnvironmentStore,
    fleet: FakeFleetDriver,
    hosts: HostsRegistrar,
    certificates: FakeCertificateProvisioner,
    renderer: TemplateRenderer,
    probe: FakeProbe,
) -> LifecycleOrchestrator:
    """Orchestrator wired to fakes for the container runtime, openssl and HTTP."""
    return LifecycleOrchestrator(
        test_config,
        store=store,
        fleet=fleet,
        hosts=hosts,
        certificates=certificates,
        credentials=CredentialGenerator(length=16, rng=random.Random(1234)),
        renderer=renderer,
        backups=BackupRunner(
            store,
            fleet,
            retention_days=test_config.backup_retention_days,
            clock=lambda: BACKUP_TIME,
        ),
        probe=probe,
    )


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "container: marks tests that require a container runtime")


# Test utilities
class TestHelper:
    """Helper class for common test operations."""

    @staticmethod
    def create_test_file(path: Path, content: str) -> None:
        """Create a test file with given content."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)

    @staticmethod
    def make_site(store: EnvironmentStore, name: str, app_env: str = "") -> Path:
        """Create a minimal site directory the store recognizes."""
        site = store.site_dir(name)
        (site / "src").mkdir(parents=True, exist_ok=True)
        (site / "docker-compose.yml").write_text(
            "services:\n"
            f"  {name}-app:\n    container_name: {name}-app\n"
            f"  {name}-db:\n    container_name: {name}-db\n"
        )
        if app_env:
            (site / "src" / ".env").write_text(app_env)
        return site


@pytest.fixture
def test_helper() -> TestHelper:
    """Provide test helper utilities."""
    return TestHelper()
