"""Entities - Domain models for the repository management engine.

This module contains pure domain entities without business logic:
- Repository: A named, filesystem-backed artifact storage area
- Capability / Requirement: Namespaced metadata records of an artifact
- BundleDescriptorEntry: One indexed artifact in a descriptor document
- DescriptorDocument: The per-repository artifact index
"""

from depot.entities.descriptor import (
    BundleDescriptorEntry,
    Capability,
    DescriptorDocument,
    Requirement,
)
from depot.entities.repository import Repository

__all__ = [
    "BundleDescriptorEntry",
    "Capability",
    "DescriptorDocument",
    "Repository",
    "Requirement",
]
