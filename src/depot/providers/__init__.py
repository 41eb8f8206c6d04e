"""Provider abstractions: endpoint publication, scheduling and artifact transfer."""

from depot.config.schema import AppConfig
from depot.providers.base import ArtifactTransfer, EndpointPublisher, Scheduler


def create_artifact_transfer(config: AppConfig) -> ArtifactTransfer:
    """Factory function to create the artifact transfer based on configuration.

    Args:
        config: Application configuration

    Returns:
        Artifact transfer using the configured remote repositories

    Example:
        config = load_config()
        transfer = create_artifact_transfer(config)
        for chunk in transfer.fetch("mvn:org.foo/bar/1.0"):
            ...
    """
    from depot.providers.transfer import HttpArtifactTransfer

    return HttpArtifactTransfer(config.transfer)


__all__ = [
    "ArtifactTransfer",
    "EndpointPublisher",
    "Scheduler",
    "create_artifact_transfer",
]
