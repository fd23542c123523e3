"""
Self-signed certificate provisioning for site host names.

Certificates are written into the proxy's certs directory using the
<host>.crt / <host>.key naming the proxy looks up, plus a <host>.pem
bundle holding certificate and key together.
"""

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ProvisioningFailed
from .logging_config import SubprocessLogHandler

logger = logging.getLogger(__name__)


@dataclass
class CertificateBundle:
    """Paths of the files issued for one host name."""

    host: str
    key_path: Path
    cert_path: Path
    bundle_path: Path


class CertificateProvisioner:
    """Issues self-signed certificates with openssl."""

    def __init__(
        self,
        cert_dir: Path,
        days: int = 365,
        key_size: int = 2048,
        openssl: str = "openssl",
        organization: str = "LaraHarbor",
        log_handler: Optional[SubprocessLogHandler] = None,
    ):
        self.cert_dir = Path(cert_dir)
        self.days = days
        self.key_size = key_size
        self.openssl = openssl
        self.organization = organization
        self.log_handler = log_handler

    def paths_for(self, host: str) -> CertificateBundle:
        return CertificateBundle(
            host=host,
            key_path=self.cert_dir / f"{host}.key",
            cert_path=self.cert_dir / f"{host}.crt",
            bundle_path=self.cert_dir / f"{host}.pem",
        )

    def build_command(self, host: str) -> list:
        """Build the openssl command issuing a certificate for host."""
        bundle = self.paths_for(host)
        return [
            self.openssl,
            "req",
            "-x509",
            "-nodes",
            "-days", str(self.days),
            "-newkey", f"rsa:{self.key_size}",
            "-keyout", str(bundle.key_path),
            "-out", str(bundle.cert_path),
            "-subj", f"/CN={host}/O={self.organization}/C=US",
            "-addext", f"subjectAltName=DNS:{host},DNS:*.{host}",
        ]

    def provision(self, host: str) -> CertificateBundle:
        """
        Issue (or re-issue) a certificate for host.

        Existing files for the same host are overwritten.

        Raises:
            ProvisioningFailed: openssl is missing or exited non-zero
        """
        logger.info(f"Generating self-signed SSL certificate for {host}")
        self.cert_dir.mkdir(parents=True, exist_ok=True)
        bundle = self.paths_for(host)
        cmd = self.build_command(host)

        if self.log_handler:
            self.log_handler.log_command(cmd)

        start_time = time.time()
        try:
            process = subprocess.run(cmd, capture_output=True, text=True, timeout=60)
        except FileNotFoundError:
            raise ProvisioningFailed(
                f"'{self.openssl}' not found; install OpenSSL to issue certificates",
                step="certificate",
            )
        except subprocess.TimeoutExpired:
            raise ProvisioningFailed(f"openssl timed out issuing certificate for {host}", step="certificate")

        if self.log_handler:
            self.log_handler.log_output(process.stderr, logging.DEBUG)
            self.log_handler.log_completion(process.returncode, time.time() - start_time)

        if process.returncode != 0:
            raise ProvisioningFailed(
                f"openssl failed for {host} (exit code {process.returncode}): {process.stderr.strip()}",
                step="certificate",
            )

        try:
            bundle.bundle_path.write_text(
                bundle.cert_path.read_text() + bundle.key_path.read_text()
            )
        except OSError as e:
            raise ProvisioningFailed(f"Failed to write bundle for {host}: {e}", step="certificate")

        logger.info(f"SSL certificate generated for {host}")
        return bundle

    def has_certificate(self, host: str) -> bool:
        bundle = self.paths_for(host)
        return bundle.cert_path.exists() and bundle.key_path.exists()
