"""
Credential generation for new sites.
"""

import logging
import random
import secrets
import string
from typing import Optional, Set

from .models import Credentials

logger = logging.getLogger(__name__)

# Letters and digits only: safe inside compose files, .env files and shell scripts
ALPHABET = string.ascii_letters + string.digits


class CredentialGenerator:
    """Produces random alphanumeric secrets that are never handed out twice."""

    def __init__(self, length: int = 16, rng: Optional[random.Random] = None):
        if length < 1:
            raise ValueError("Password length must be at least 1")
        self.length = length
        self.rng = rng or secrets.SystemRandom()
        self._issued: Set[str] = set()

    def generate(self) -> str:
        """Generate one secret that has not been issued by this generator before."""
        while True:
            value = "".join(self.rng.choice(ALPHABET) for _ in range(self.length))
            if value not in self._issued:
                self._issued.add(value)
                return value
            logger.debug("Discarded a repeated credential")

    def for_site(self, cache_enabled: bool) -> Credentials:
        """Generate the full credential set for one site."""
        return Credentials(
            db_password=self.generate(),
            db_root_password=self.generate(),
            cache_password=self.generate() if cache_enabled else None,
        )
