"""Repository manager initialization service.

Provides helper functions for building and activating the repository manager
from configuration.
"""

from pathlib import Path
from typing import Optional

from depot.config.loader import get_default_config_path, load_config
from depot.config.schema import AppConfig
from depot.core.indexer import BundleIndexer
from depot.core.repository import RepositoryManager
from depot.observability.logging import configure_from_config, get_logger
from depot.providers import create_artifact_transfer
from depot.providers.base import ArtifactTransfer, EndpointPublisher, Scheduler
from depot.providers.memory import InMemoryEndpointPublisher, InMemoryScheduler
from depot.storage import create_repository_store

logger = get_logger(__name__)


def create_repository_manager(
    config: AppConfig,
    publisher: Optional[EndpointPublisher] = None,
    scheduler: Optional[Scheduler] = None,
    transfer: Optional[ArtifactTransfer] = None,
) -> RepositoryManager:
    """Build a repository manager from configuration.

    Collaborators that are not given fall back to the in-memory publisher and
    scheduler and to the configured HTTP transfer.

    Args:
        config: Application configuration
        publisher: Endpoint publisher
        scheduler: Maintenance job scheduler
        transfer: Artifact transfer

    Returns:
        Repository manager, not yet activated
    """
    return RepositoryManager(
        store=create_repository_store(config),
        publisher=publisher or InMemoryEndpointPublisher(),
        scheduler=scheduler or InMemoryScheduler(),
        transfer=transfer or create_artifact_transfer(config),
        base_storage=config.storage.location,
        indexer=BundleIndexer(
            descriptor_name=config.indexer.descriptor_name,
            read_fully=config.indexer.read_fully,
        ),
        http_context=config.publication.http_context,
        default_realm=config.defaults.realm,
        default_pool_size=config.defaults.pool_size,
        reschedule_on_load=config.storage.persist_scheduling,
    )


def initialize_manager(config_path: Optional[str] = None) -> RepositoryManager:
    """Load configuration, configure logging and activate a repository manager.

    Args:
        config_path: Optional path to config file

    Returns:
        Activated repository manager
    """
    path = Path(config_path) if config_path else get_default_config_path()
    config = load_config(config_path=path)
    configure_from_config(config.logging)

    manager = create_repository_manager(config)
    manager.activate()

    logger.info("repository_manager_initialized", storage=str(config.storage.location))
    return manager
