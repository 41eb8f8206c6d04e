"""Service layer - wiring of the repository management engine.

This module contains helpers that assemble the engine from configuration:
- create_repository_manager: Build a manager and its collaborators
- initialize_manager: Load config, configure logging and activate a manager
"""

from depot.service.bootstrap import create_repository_manager, initialize_manager

__all__ = [
    "create_repository_manager",
    "initialize_manager",
]
