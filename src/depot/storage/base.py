"""Abstract base class for repository stores.

Why this exists:
- The registry must survive restarts without tying the manager to one format
- Enables testing with an in-memory implementation

How to extend:
1. Subclass RepositoryStore
2. Implement save() and load()
3. Register in create_repository_store()
"""

from abc import ABC, abstractmethod

from depot.entities import Repository


class RepositoryStore(ABC):
    """Abstract interface for persisting the repository registry.

    ``save`` always receives the full set of active repositories and replaces
    whatever was stored before.
    """

    @abstractmethod
    def save(self, repositories: list[Repository]) -> None:
        """Persist the full repository list.

        Args:
            repositories: Active repositories, in registry order

        Raises:
            StorageError: If the store cannot be written
        """
        pass

    @abstractmethod
    def load(self) -> list[Repository]:
        """Load the persisted repository list.

        Returns:
            Stored repositories, empty if nothing was saved yet

        Raises:
            StorageError: If the store exists but cannot be read
        """
        pass
