"""
Error types for LaraHarbor operations.

Every error carries enough context to name the affected site and the step
that failed, so the CLI can report it without further lookups.
"""

from typing import Optional


class HarborError(Exception):
    """Base class for all LaraHarbor errors."""

    def __init__(self, message: str, site: Optional[str] = None, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.site = site
        self.step = step

    def get_detailed_message(self) -> str:
        """Get message prefixed with site and step when known."""
        parts = []
        if self.site:
            parts.append(f"[{self.site}]")
        if self.step:
            parts.append(f"{self.step}:")
        parts.append(self.message)
        return " ".join(parts)

    def __str__(self) -> str:
        return self.get_detailed_message()


class ValidationError(HarborError):
    """Bad, empty, or reserved site name, or an unconfirmed destructive request."""


class AlreadyExists(HarborError):
    """A site with the requested name already exists."""


class NotFound(HarborError):
    """The requested site does not exist."""


class ProvisioningFailed(HarborError):
    """Certificate or credential generation failed."""


class RegistrationFailed(HarborError):
    """Writing the hosts table failed. Callers treat this as non-fatal."""


class BackupFailed(HarborError):
    """The database dump command failed."""


class FleetOperationFailed(HarborError):
    """The container runtime exited non-zero."""

    def __init__(
        self,
        operation: str,
        container_name: str,
        exit_code: int,
        output: str = "",
        site: Optional[str] = None,
    ):
        message = f"{operation} failed for {container_name} (exit code {exit_code})"
        if output.strip():
            message += f": {output.strip().splitlines()[-1]}"
        super().__init__(message, site=site, step=operation)
        self.operation = operation
        self.container_name = container_name
        self.exit_code = exit_code
        self.output = output
