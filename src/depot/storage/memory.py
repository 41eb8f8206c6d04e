"""In-memory repository store for testing and ephemeral use."""

from depot.entities import Repository
from depot.storage.base import RepositoryStore


class InMemoryRepositoryStore(RepositoryStore):
    """Keeps copies of the saved repositories in memory."""

    def __init__(self) -> None:
        self.repositories: list[Repository] = []
        self.save_count = 0

    def save(self, repositories: list[Repository]) -> None:
        self.repositories = [r.model_copy() for r in repositories]
        self.save_count += 1

    def load(self) -> list[Repository]:
        return [r.model_copy() for r in self.repositories]
