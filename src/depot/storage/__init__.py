"""Storage layer: repository registry stores and descriptor persistence."""

from depot.config.schema import AppConfig, RepositoryStoreType
from depot.storage.base import RepositoryStore


def create_repository_store(config: AppConfig) -> RepositoryStore:
    """Factory function to create the repository store based on configuration.

    Args:
        config: Application configuration

    Returns:
        Repository store

    Raises:
        ValueError: If store_type is unknown

    Example:
        config = load_config()
        store = create_repository_store(config)
        repositories = store.load()
    """
    store_type = config.storage.store_type

    if store_type == RepositoryStoreType.MEMORY:
        from depot.storage.memory import InMemoryRepositoryStore

        return InMemoryRepositoryStore()

    elif store_type == RepositoryStoreType.PROPERTIES:
        from depot.storage.properties import PropertiesRepositoryStore

        return PropertiesRepositoryStore(
            config.storage.location / config.storage.store_file,
            persist_scheduling=config.storage.persist_scheduling,
        )

    else:
        raise ValueError(
            f"Unknown repository store type: '{store_type}'. "
            f"Supported types: properties, memory"
        )


__all__ = [
    "RepositoryStore",
    "create_repository_store",
]
