"""
Container fleet driver

Wraps the container runtime's compose lifecycle (up, down), process
listing and exec behind a narrow interface, one site directory at a time.
The orchestrator only talks to FleetDriver, so tests can substitute an
in-memory implementation.
"""

import logging
import subprocess
import sys
import time
from pathlib import Path
from typing import IO, Dict, List, Optional, Sequence

from .errors import FleetOperationFailed
from .logging_config import SubprocessLogHandler

logger = logging.getLogger(__name__)


class FleetDriver:
    """Interface for driving a site's containers."""

    def up(self, env_dir: Path) -> None:
        raise NotImplementedError

    def down(self, env_dir: Path) -> None:
        raise NotImplementedError

    def is_running(self, container_name: str) -> bool:
        raise NotImplementedError

    def exec(
        self,
        container_name: str,
        command: str,
        *args: str,
        env: Optional[Dict[str, str]] = None,
        stdout: Optional[IO] = None,
        interactive: bool = False,
    ) -> int:
        raise NotImplementedError

    def ensure_network(self, network_name: str) -> bool:
        raise NotImplementedError

    def run_oneoff(
        self,
        image: str,
        args: Sequence[str],
        volumes: Optional[Dict[str, str]] = None,
        workdir: Optional[str] = None,
        user: Optional[str] = None,
    ) -> None:
        raise NotImplementedError


class ComposeFleetDriver(FleetDriver):
    """
    FleetDriver backed by the docker (or podman) CLI.

    All calls block until the runtime returns. Non-zero exits raise
    FleetOperationFailed.
    """

    def __init__(
        self,
        container_runtime: str = "docker",
        log_dir: str = "logs",
        log_handler: Optional[SubprocessLogHandler] = None,
        timeout: int = 900,
    ):
        self.container_runtime = container_runtime
        self.log_dir = log_dir
        self._log_handler = log_handler
        self.timeout = timeout

    @property
    def log_handler(self) -> SubprocessLogHandler:
        if self._log_handler is None:
            self._log_handler = SubprocessLogHandler("fleet", self.log_dir)
        return self._log_handler

    def _run(
        self,
        operation: str,
        target: str,
        cmd: List[str],
        cwd: Optional[Path] = None,
        stdout: Optional[IO] = None,
    ) -> subprocess.CompletedProcess:
        self.log_handler.log_command(cmd)
        logger.debug(f"{operation} command: {' '.join(cmd[:4])} ...")

        start_time = time.time()
        try:
            if stdout is not None:
                process = subprocess.run(
                    cmd,
                    cwd=cwd,
                    stdout=stdout,
                    stderr=subprocess.PIPE,
                    text=True,
                    timeout=self.timeout,
                )
            else:
                process = subprocess.run(
                    cmd,
                    cwd=cwd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
        except FileNotFoundError:
            raise FleetOperationFailed(
                operation, target, 127, f"{self.container_runtime} not found"
            )
        except subprocess.TimeoutExpired:
            raise FleetOperationFailed(
                operation, target, 124, f"timed out after {self.timeout} seconds"
            )

        elapsed = time.time() - start_time
        if stdout is None:
            self.log_handler.log_output(process.stdout)
        self.log_handler.log_output(process.stderr, logging.WARNING)
        self.log_handler.log_completion(process.returncode, elapsed)

        if process.returncode != 0:
            raise FleetOperationFailed(
                operation, target, process.returncode, process.stderr or ""
            )
        return process

    def _compose(self, env_dir: Path, *args: str) -> List[str]:
        return [
            self.container_runtime,
            "compose",
            "-f",
            str(Path(env_dir) / "docker-compose.yml"),
            *args,
        ]

    def up(self, env_dir: Path) -> None:
        env_dir = Path(env_dir)
        logger.info(f"Bringing up {env_dir.name}")
        self._run("up", env_dir.name, self._compose(env_dir, "up", "-d", "--build"), cwd=env_dir)

    def down(self, env_dir: Path) -> None:
        env_dir = Path(env_dir)
        logger.info(f"Tearing down {env_dir.name}")
        self._run("down", env_dir.name, self._compose(env_dir, "down"), cwd=env_dir)

    def running_containers(self) -> List[str]:
        """Names of all running containers."""
        process = self._run(
            "ps", "*", [self.container_runtime, "ps", "--format", "{{.Names}}"]
        )
        return [line.strip() for line in process.stdout.splitlines() if line.strip()]

    def is_running(self, container_name: str) -> bool:
        return container_name in self.running_containers()

    def exec(
        self,
        container_name: str,
        command: str,
        *args: str,
        env: Optional[Dict[str, str]] = None,
        stdout: Optional[IO] = None,
        interactive: bool = False,
    ) -> int:
        """
        Run a command inside a running container.

        With interactive=True the command inherits this process's terminal
        (stdin/stdout/stderr) like `docker exec -it`; otherwise output is
        captured, or streamed into stdout when a file object is given.
        """
        cmd = [self.container_runtime, "exec"]
        if interactive:
            cmd.append("-i")
            if sys.stdin.isatty():
                cmd.append("-t")
        for key, value in (env or {}).items():
            cmd.extend(["-e", f"{key}={value}"])
        cmd.extend([container_name, command, *args])

        if interactive:
            self.log_handler.log_command(cmd)
            try:
                returncode = subprocess.call(cmd)
            except FileNotFoundError:
                raise FleetOperationFailed("exec", container_name, 127, f"{self.container_runtime} not found")
            if returncode != 0:
                raise FleetOperationFailed("exec", container_name, returncode)
            return returncode

        self._run("exec", container_name, cmd, stdout=stdout)
        return 0

    def ensure_network(self, network_name: str) -> bool:
        """
        Create the shared network unless it already exists.

        Returns:
            True when the network was created by this call
        """
        try:
            inspect = subprocess.run(
                [self.container_runtime, "network", "inspect", network_name],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except FileNotFoundError:
            raise FleetOperationFailed(
                "network_inspect", network_name, 127, f"{self.container_runtime} not found"
            )
        if inspect.returncode == 0:
            logger.debug(f"Network {network_name} already exists")
            return False

        self._run(
            "network_create",
            network_name,
            [self.container_runtime, "network", "create", network_name],
        )
        logger.info(f"Created network {network_name}")
        return True

    def run_oneoff(
        self,
        image: str,
        args: Sequence[str],
        volumes: Optional[Dict[str, str]] = None,
        workdir: Optional[str] = None,
        user: Optional[str] = None,
    ) -> None:
        """Run a throwaway container (e.g. composer create-project) to completion."""
        cmd = [self.container_runtime, "run", "--rm"]
        for host_path, container_path in (volumes or {}).items():
            cmd.extend(["-v", f"{host_path}:{container_path}"])
        if workdir:
            cmd.extend(["-w", workdir])
        if user:
            cmd.extend(["--user", user])
        cmd.append(image)
        cmd.extend(args)
        self._run("run", image, cmd)
