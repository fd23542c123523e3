"""
Mock fleet and certificate operations for testing

Provides in-memory implementations that simulate the container runtime
and openssl without either being installed.
"""

from pathlib import Path
from typing import IO, Dict, List, Optional, Sequence, Set, Tuple

import yaml

from laraharbor.certificates import CertificateBundle, CertificateProvisioner
from laraharbor.errors import FleetOperationFailed, ProvisioningFailed
from laraharbor.fleet import FleetDriver

DUMP_OUTPUT = "-- fake dump\nCREATE TABLE users (id int);\n"


class FakeFleetDriver(FleetDriver):
    """FleetDriver that tracks running containers in memory."""

    def __init__(self):
        self.running: Set[str] = set()
        self.networks: Set[str] = set()
        self.calls: List[Tuple[str, str]] = []
        self.exec_calls: List[dict] = []
        self.oneoff_calls: List[dict] = []
        self.failures: Dict[str, Set[str]] = {}
        self.dump_output = DUMP_OUTPUT

    def set_failure(self, operation: str, target: str) -> None:
        """Force operation (up, down, ps, exec, network, run) to fail for target."""
        self.failures.setdefault(operation, set()).add(target)

    def _check(self, operation: str, target: str) -> None:
        if target in self.failures.get(operation, set()):
            raise FleetOperationFailed(operation, target, 1, "forced failure")

    @staticmethod
    def containers_in(env_dir: Path) -> List[str]:
        manifest = yaml.safe_load((Path(env_dir) / "docker-compose.yml").read_text())
        return [
            service.get("container_name", key)
            for key, service in (manifest.get("services") or {}).items()
        ]

    def up(self, env_dir: Path) -> None:
        env_dir = Path(env_dir)
        self._check("up", env_dir.name)
        self.calls.append(("up", env_dir.name))
        self.running.update(self.containers_in(env_dir))

    def down(self, env_dir: Path) -> None:
        env_dir = Path(env_dir)
        self._check("down", env_dir.name)
        self.calls.append(("down", env_dir.name))
        self.running.difference_update(self.containers_in(env_dir))

    def is_running(self, container_name: str) -> bool:
        self._check("ps", container_name)
        return container_name in self.running

    def exec(
        self,
        container_name: str,
        command: str,
        *args: str,
        env: Optional[Dict[str, str]] = None,
        stdout: Optional[IO] = None,
        interactive: bool = False,
    ) -> int:
        self.exec_calls.append(
            {
                "container": container_name,
                "command": command,
                "args": list(args),
                "env": env,
                "interactive": interactive,
            }
        )
        self._check("exec", container_name)
        if stdout is not None:
            stdout.write(self.dump_output)
        return 0

    def ensure_network(self, network_name: str) -> bool:
        self._check("network", network_name)
        if network_name in self.networks:
            return False
        self.networks.add(network_name)
        return True

    def run_oneoff(
        self,
        image: str,
        args: Sequence[str],
        volumes: Optional[Dict[str, str]] = None,
        workdir: Optional[str] = None,
        user: Optional[str] = None,
    ) -> None:
        self.oneoff_calls.append(
            {"image": image, "args": list(args), "volumes": volumes or {}, "workdir": workdir, "user": user}
        )
        self._check("run", args[0] if args else image)
        if "create-project" in args:
            for host_path in (volumes or {}):
                Path(host_path, "composer.json").write_text('{"name": "laravel/laravel"}\n')
                Path(host_path, ".env").write_text("APP_KEY=base64:scaffolded\n")


class FakeCertificateProvisioner(CertificateProvisioner):
    """Writes placeholder certificate files instead of calling openssl."""

    def __init__(self, cert_dir: Path, **kwargs):
        super().__init__(cert_dir, **kwargs)
        self.issued: List[str] = []
        self.fail_hosts: Set[str] = set()

    def provision(self, host: str) -> CertificateBundle:
        if host in self.fail_hosts:
            raise ProvisioningFailed(f"openssl failed for {host}", step="certificate")
        self.cert_dir.mkdir(parents=True, exist_ok=True)
        bundle = self.paths_for(host)
        bundle.key_path.write_text(f"KEY {host}\n")
        bundle.cert_path.write_text(f"CERT {host}\n")
        bundle.bundle_path.write_text(f"CERT {host}\nKEY {host}\n")
        self.issued.append(host)
        return bundle


class FakeProbe:
    """Readiness probe that records the URLs it was asked about."""

    def __init__(self, ready: bool = True):
        self.ready = ready
        self.calls: List[Tuple[str, int, float]] = []

    def __call__(self, url: str, attempts: int, interval: float) -> bool:
        self.calls.append((url, attempts, interval))
        return self.ready
