"""
Name resolution registrar.

Maps site host names to the loopback address in the static hosts table.
Adds are idempotent: a host that already resolves to the loopback address
is never appended again.
"""

import fcntl
import logging
import subprocess
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from .errors import RegistrationFailed

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"


class HostsRegistrar:
    """Adds and removes loopback entries in a hosts file."""

    _thread_lock = threading.Lock()

    def __init__(
        self,
        hosts_file: str = "/etc/hosts",
        use_sudo: bool = True,
        address: str = LOOPBACK,
        lock_file: Optional[Path] = None,
    ):
        self.hosts_file = Path(hosts_file)
        self.use_sudo = use_sudo
        self.address = address
        self.lock_file = Path(lock_file) if lock_file else None

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._thread_lock:
            if self.lock_file is None:
                yield
                return
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.lock_file, "a") as handle:
                fcntl.flock(handle, fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(handle, fcntl.LOCK_UN)

    def _read_lines(self) -> List[str]:
        try:
            return self.hosts_file.read_text().splitlines()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise RegistrationFailed(f"Cannot read {self.hosts_file}: {e}", step="hosts")

    def _write_lines(self, lines: List[str]) -> None:
        content = "\n".join(lines) + "\n"
        try:
            self.hosts_file.write_text(content)
            return
        except PermissionError as e:
            if not self.use_sudo:
                raise RegistrationFailed(
                    f"No permission to write {self.hosts_file}: {e}", step="hosts"
                )
        except OSError as e:
            raise RegistrationFailed(f"Cannot write {self.hosts_file}: {e}", step="hosts")

        logger.info(f"Writing {self.hosts_file} through sudo")
        try:
            process = subprocess.run(
                ["sudo", "tee", str(self.hosts_file)],
                input=content,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                timeout=120,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise RegistrationFailed(f"sudo unavailable for {self.hosts_file}: {e}", step="hosts")
        if process.returncode != 0:
            raise RegistrationFailed(
                f"sudo tee {self.hosts_file} failed (exit code {process.returncode}): "
                f"{process.stderr.strip()}",
                step="hosts",
            )

    def _registered(self, lines: List[str]) -> set:
        hosts = set()
        for line in lines:
            fields = line.split("#", 1)[0].split()
            if len(fields) >= 2 and fields[0] == self.address:
                hosts.update(fields[1:])
        return hosts

    def is_registered(self, host: str) -> bool:
        return host in self._registered(self._read_lines())

    def add(self, *hosts: str) -> List[str]:
        """
        Map each host to the loopback address.

        Returns:
            The hosts that were actually added (already present ones are skipped)

        Raises:
            RegistrationFailed: the hosts file could not be read or written
        """
        with self._locked():
            lines = self._read_lines()
            existing = self._registered(lines)
            missing = []
            for host in hosts:
                if host not in existing and host not in missing:
                    missing.append(host)
            if not missing:
                logger.debug(f"Hosts already registered: {', '.join(hosts)}")
                return []

            lines.append(f"{self.address} {' '.join(missing)}")
            self._write_lines(lines)
            logger.info(f"Registered {', '.join(missing)} in {self.hosts_file}")
            return missing

    def remove(self, host: str) -> bool:
        """
        Remove host from every loopback entry, dropping entries left empty.

        Returns:
            True when the file was changed
        """
        with self._locked():
            lines = self._read_lines()
            updated = []
            changed = False
            for line in lines:
                body, _, comment = line.partition("#")
                fields = body.split()
                if len(fields) >= 2 and fields[0] == self.address and host in fields[1:]:
                    changed = True
                    remaining = [f for f in fields[1:] if f != host]
                    if remaining:
                        rebuilt = f"{self.address} {' '.join(remaining)}"
                        if comment:
                            rebuilt += f" #{comment}"
                        updated.append(rebuilt)
                    continue
                updated.append(line)

            if changed:
                self._write_lines(updated)
                logger.info(f"Removed {host} from {self.hosts_file}")
            return changed
