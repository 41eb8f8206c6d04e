"""Abstract interfaces for the engine's external collaborators.

Why this exists:
- Publishing repository content over HTTP, running timers and moving
  artifact bytes are owned by the hosting environment
- Enables testing the engine with in-memory implementations

How to extend:
1. Subclass EndpointPublisher, Scheduler or ArtifactTransfer
2. Implement all abstract methods
3. Pass the instance to create_repository_manager()
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Iterator

from depot.core.coordinates import Coordinates
from depot.core.scheduling import ScheduleTrigger


class EndpointPublisher(ABC):
    """Exposes repository contents at an endpoint path."""

    @abstractmethod
    def publish(self, path: str, config: dict[str, Any]) -> None:
        """Publish a repository handler.

        Args:
            path: Endpoint path (the repository url)
            config: Handler configuration built by the repository manager
        """
        pass

    @abstractmethod
    def unpublish(self, path: str) -> None:
        """Remove the handler published at a path."""
        pass


class Scheduler(ABC):
    """Timer engine firing repository maintenance jobs."""

    @abstractmethod
    def schedule(self, job_id: str, trigger: ScheduleTrigger, callback: Callable[[], Any]) -> None:
        """Register a job.

        Args:
            job_id: Unique job id
            trigger: When the job fires
            callback: Zero-argument callable run on each firing
        """
        pass

    @abstractmethod
    def unschedule(self, job_id: str) -> None:
        """Remove a job. Unknown ids are ignored."""
        pass

    @abstractmethod
    def list_job_ids(self) -> list[str]:
        """Return the ids of the registered jobs."""
        pass


class ArtifactTransfer(ABC):
    """Moves artifact bytes between locations and repositories."""

    @abstractmethod
    def fetch(self, url: str) -> Iterator[bytes]:
        """Stream the content of an artifact.

        Raises:
            TransferError: If the artifact cannot be retrieved
        """
        pass

    @abstractmethod
    def install(self, coordinates: Coordinates, local_file: Path, repository_location: Path) -> Path:
        """Place a local file at its coordinate path in a repository.

        Returns:
            Path of the installed artifact

        Raises:
            TransferError: If the artifact cannot be installed
        """
        pass

    @abstractmethod
    def deploy(self, coordinates: Coordinates, local_file: Path, remote_repository_url: str) -> str:
        """Upload a local file to a remote repository.

        Returns:
            URL of the deployed artifact

        Raises:
            TransferError: If the upload fails
        """
        pass
