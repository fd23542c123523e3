"""
Site environments for LaraHarbor.

The renderer turns a site specification into its files and the store
keeps them on disk. The lifecycle operations live in
laraharbor.environment.orchestrator.
"""

from .renderer import Artifact, ArtifactSet, TemplateRenderer
from .store import EnvironmentStore, normalize_name

__all__ = [
    "Artifact",
    "ArtifactSet",
    "TemplateRenderer",
    "EnvironmentStore",
    "normalize_name",
]
