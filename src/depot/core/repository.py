"""Repository management logic.

Provides high-level operations for managing repositories including:
- Creating, reconfiguring and removing repositories
- Relocating, copying and purging repository storage
- Adding and deleting artifacts
- Maintaining the bundle descriptor of a repository
- Publishing repositories and scheduling their maintenance jobs

Every operation runs under one re-entrant lock; reads return copies.
"""

import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from depot.core.coordinates import (
    Coordinates,
    DEFAULT_EXTENSION,
    infer_from_url,
    is_maven_url,
    maven_url_to_path,
    parse_maven_url,
    to_path,
)
from depot.core.errors import (
    InvalidLocatorError,
    InvalidScheduleError,
    RepositoryExistsError,
    RepositoryNotFoundError,
    RepositoryStateError,
    StorageError,
    TransferError,
)
from depot.core.filesystem import copy_tree, delete_path, move_tree, purge_contents
from depot.core.indexer import BundleIndexer
from depot.core.scheduling import SchedulingPolicy, parse_schedule
from depot.entities import DescriptorDocument, Repository
from depot.observability.logging import get_logger
from depot.providers.base import ArtifactTransfer, EndpointPublisher, Scheduler
from depot.storage.base import RepositoryStore

logger = get_logger(__name__)


class RepositoryManager:
    """Registry of active repositories.

    Coordinates the repository store, the endpoint publisher, the scheduler
    and the artifact transfer so that every change to a repository is
    reflected in all of them.
    """

    def __init__(
        self,
        store: RepositoryStore,
        publisher: EndpointPublisher,
        scheduler: Scheduler,
        transfer: ArtifactTransfer,
        base_storage: Path,
        indexer: Optional[BundleIndexer] = None,
        http_context: str = "/depot/repository",
        default_realm: Optional[str] = "depot",
        default_pool_size: int = 8,
        reschedule_on_load: bool = False,
    ):
        """Initialize repository manager.

        Args:
            store: Persistence of the repository registry
            publisher: Publishes repository content endpoints
            scheduler: Runs scheduled maintenance jobs
            transfer: Fetches and installs artifacts
            base_storage: Parent directory of default repository locations
            indexer: Bundle descriptor indexer
            http_context: Prefix of default repository urls
            default_realm: Realm of repositories created without one
            default_pool_size: Pool size of repositories created without one
            reschedule_on_load: Schedule loaded repositories on activation
        """
        self.store = store
        self.publisher = publisher
        self.scheduler = scheduler
        self.transfer = transfer
        self.base_storage = Path(base_storage).absolute()
        self.indexer = indexer or BundleIndexer()
        self.http_context = http_context.rstrip("/")
        self.default_realm = default_realm
        self.default_pool_size = default_pool_size
        self.reschedule_on_load = reschedule_on_load
        self.policy = SchedulingPolicy(self)

        self._repositories: dict[str, Repository] = {}
        self._lock = threading.RLock()

    # Lookup

    def _get(self, name: str) -> Repository:
        repository = self._repositories.get(name)
        if repository is None:
            raise RepositoryNotFoundError(f"Repository {name} doesn't exist")
        return repository

    def _location(self, repository: Repository, must_exist: bool = True) -> Path:
        if not repository.location:
            raise RepositoryStateError(f"Repository {repository.name} location is not defined")
        location = Path(repository.location)
        if must_exist and not location.is_dir():
            raise RepositoryStateError(
                f"Repository {repository.name} location {location} is not a directory"
            )
        return location

    def repositories(self) -> list[Repository]:
        """List all repositories.

        Returns:
            Copies of the active repositories, in creation order
        """
        with self._lock:
            return [repository.model_copy() for repository in self._repositories.values()]

    def repository(self, name: str) -> Optional[Repository]:
        """Retrieve a repository by name.

        Returns:
            Copy of the repository if found, None otherwise
        """
        with self._lock:
            repository = self._repositories.get(name)
            return repository.model_copy() if repository else None

    # Publication and scheduling

    def publication_config(self, repository: Repository) -> dict[str, Any]:
        """Build the handler configuration of a repository endpoint.

        The repository storage is always served as the default repository;
        a proxy, when set, is consulted before it.
        """
        file_repository = f"file:{repository.location}@id={repository.name}"
        config: dict[str, Any] = {
            "name": repository.name,
            "location": repository.location,
            "pool_size": repository.pool_size,
            "realm": repository.realm,
            "download_role": repository.download_role,
            "upload_role": repository.upload_role,
            "default_repositories": file_repository + "@snapshots@releases",
            "default_local_repo_as_remote": False,
            "use_fallback_repositories": False,
        }
        if (not repository.proxy or repository.mirror) and repository.location:
            config["local_repository"] = repository.location
        if repository.proxy:
            config["repositories"] = f"{repository.proxy},{file_repository}@snapshots"
        else:
            config["repositories"] = f"{file_repository}@snapshots"
        return config

    def _publish(self, repository: Repository) -> None:
        self.publisher.publish(repository.url, self.publication_config(repository))
        logger.debug("repository_published", name=repository.name, url=repository.url)

    def _unpublish(self, repository: Repository) -> None:
        self.publisher.unpublish(repository.url)
        logger.debug("repository_unpublished", name=repository.name, url=repository.url)

    def _schedule(self, repository: Repository) -> None:
        if not repository.scheduling:
            return
        trigger = parse_schedule(repository.scheduling)
        job_id = self.policy.job_id(repository.name)
        self.scheduler.schedule(job_id, trigger, self.policy.job_for(repository))
        logger.info(
            "repository_scheduled",
            name=repository.name,
            job_id=job_id,
            trigger=trigger.kind.value,
            actions=repository.scheduling_action,
        )

    def _unschedule(self, repository: Repository) -> None:
        job_id = self.policy.job_id(repository.name)
        if job_id in self.scheduler.list_job_ids():
            self.scheduler.unschedule(job_id)
            logger.info("repository_unscheduled", name=repository.name, job_id=job_id)

    # Lifecycle

    def create(
        self,
        name: str,
        location: Optional[str] = None,
        url: Optional[str] = None,
        proxy: Optional[str] = None,
        mirror: bool = False,
        realm: Optional[str] = None,
        download_role: Optional[str] = None,
        upload_role: Optional[str] = None,
        scheduling: Optional[str] = None,
        scheduling_action: Optional[str] = None,
        pool_size: Optional[int] = None,
    ) -> Repository:
        """Create a new repository.

        Args:
            name: Unique repository name
            location: Storage directory, ``<base storage>/<name>`` when empty
            url: Endpoint path, ``<http context>/<name>`` when empty
            proxy: Upstream repository URL
            mirror: Also keep fetched artifacts in the local storage
            realm: Security realm, the configured default when None
            download_role: Role required to download
            upload_role: Role required to upload
            scheduling: Maintenance trigger (``cron:``, ``at:`` or bare cron)
            scheduling_action: Comma separated maintenance actions
            pool_size: Handler thread pool size, the configured default when None

        Returns:
            Copy of the created repository

        Raises:
            RepositoryExistsError: If the name is already in use
            InvalidLocatorError: If the name is not a valid path segment
            InvalidScheduleError: If the scheduling definition is malformed
            StorageError: If the storage directory cannot be created
        """
        logger.info("repository_create_started", name=name)

        with self._lock:
            if name in self._repositories:
                raise RepositoryExistsError(f"Repository {name} already exists")
            if scheduling:
                parse_schedule(scheduling)

            try:
                repository = Repository(
                    name=name,
                    location=str(Path(location).expanduser().absolute()) if location else None,
                    url=url or f"{self.http_context}/{name}",
                    proxy=proxy or None,
                    mirror=mirror,
                    realm=realm if realm is not None else self.default_realm,
                    download_role=download_role,
                    upload_role=upload_role,
                    scheduling=scheduling or None,
                    scheduling_action=scheduling_action or None,
                    pool_size=pool_size if pool_size is not None else self.default_pool_size,
                )
            except ValidationError as e:
                raise InvalidLocatorError(f"Invalid repository {name!r}: {e}", e) from e
            if repository.location is None:
                repository.location = str(self.base_storage / name)

            try:
                Path(repository.location).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Unable to create storage {repository.location}: {e}", e) from e

            self._repositories[name] = repository
            self._publish(repository)
            self._schedule(repository)
            self.save()

            logger.info("repository_created", name=name, location=repository.location, url=repository.url)
            return repository.model_copy()

    def remove(self, name: str, storage_cleanup: bool = False) -> None:
        """Remove a repository.

        Args:
            name: Repository name
            storage_cleanup: Also delete the storage directory and its content

        Raises:
            RepositoryNotFoundError: If the repository doesn't exist
        """
        logger.info("repository_remove_started", name=name, storage_cleanup=storage_cleanup)

        with self._lock:
            repository = self._get(name)
            if storage_cleanup and repository.location:
                try:
                    delete_path(Path(repository.location))
                except OSError as e:
                    raise StorageError(f"Unable to delete storage {repository.location}: {e}", e) from e
            self._unpublish(repository)
            self._unschedule(repository)
            del self._repositories[name]
            self.save()

        logger.info("repository_removed", name=name)

    def purge(self, name: str) -> int:
        """Delete the content of a repository, keeping the repository itself.

        Returns:
            Number of top-level entries removed

        Raises:
            RepositoryNotFoundError: If the repository doesn't exist
            RepositoryStateError: If the repository has no location
        """
        with self._lock:
            location = self._location(self._get(name), must_exist=False)
            try:
                removed = purge_contents(location)
            except OSError as e:
                raise StorageError(f"Unable to purge {location}: {e}", e) from e

        logger.info("repository_purged", name=name, removed=removed)
        return removed

    # Reconfiguration

    def change_location(self, name: str, location: str) -> None:
        """Move a repository storage to a new directory.

        Raises:
            RepositoryNotFoundError: If the repository doesn't exist
            RelocationError: If the storage tree cannot be moved
        """
        if not location:
            raise InvalidLocatorError("Location can't be empty")
        target = Path(location).expanduser().absolute()

        with self._lock:
            repository = self._get(name)
            if repository.location:
                move_tree(Path(repository.location), target)
            else:
                try:
                    target.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise StorageError(f"Unable to create storage {target}: {e}", e) from e

            self._unpublish(repository)
            previous = repository.location
            repository.location = str(target)
            self._publish(repository)
            self.save()

        logger.info("repository_relocated", name=name, source=previous, destination=str(target))

    def change_url(self, name: str, url: str) -> None:
        """Publish a repository at a new endpoint path."""
        if not url:
            raise InvalidLocatorError("URL can't be empty")
        with self._lock:
            repository = self._get(name)
            self._unpublish(repository)
            repository.url = url
            self._publish(repository)
            self.save()
        logger.info("repository_url_changed", name=name, url=url)

    def change_proxy(self, name: str, proxy: Optional[str], mirror: bool = False) -> None:
        """Set or clear the upstream repository proxied by a repository."""
        with self._lock:
            repository = self._get(name)
            self._unpublish(repository)
            repository.proxy = proxy or None
            repository.mirror = mirror
            self._publish(repository)
            self.save()
        logger.info("repository_proxy_changed", name=name, proxy=proxy, mirror=mirror)

    def change_security(
        self,
        name: str,
        realm: Optional[str],
        download_role: Optional[str] = None,
        upload_role: Optional[str] = None,
    ) -> None:
        """Change the realm and roles forwarded to the repository endpoint."""
        with self._lock:
            repository = self._get(name)
            self._unpublish(repository)
            repository.realm = realm
            repository.download_role = download_role
            repository.upload_role = upload_role
            self._publish(repository)
            self.save()
        logger.info("repository_security_changed", name=name, realm=realm)

    def change_scheduling(
        self, name: str, scheduling: Optional[str], scheduling_action: Optional[str]
    ) -> None:
        """Replace the maintenance job of a repository.

        Raises:
            RepositoryNotFoundError: If the repository doesn't exist
            InvalidScheduleError: If the scheduling definition is malformed
        """
        with self._lock:
            repository = self._get(name)
            if scheduling:
                parse_schedule(scheduling)
            self._unschedule(repository)
            repository.scheduling = scheduling or None
            repository.scheduling_action = scheduling_action or None
            self._schedule(repository)
            self.save()
        logger.info(
            "repository_scheduling_changed",
            name=name,
            scheduling=scheduling,
            actions=scheduling_action,
        )

    # Content

    def copy(self, source: str, destination: str) -> int:
        """Copy the content of a repository into another one.

        Existing files in the destination are replaced; files that cannot be
        copied are logged and skipped.

        Returns:
            Number of files copied

        Raises:
            RepositoryNotFoundError: If either repository doesn't exist
            RepositoryStateError: If either repository has no location
        """
        with self._lock:
            source_location = self._location(self._get(source))
            destination_location = self._location(self._get(destination), must_exist=False)
            copied = copy_tree(source_location, destination_location)

        logger.info("repository_copied", source=source, destination=destination, files=copied)
        return copied

    def _coordinates_for(
        self,
        artifact_url: str,
        group_id: Optional[str],
        artifact_id: Optional[str],
        version: Optional[str],
        type: Optional[str],
        classifier: Optional[str],
    ) -> Coordinates:
        try:
            if is_maven_url(artifact_url):
                derived = parse_maven_url(artifact_url)
            else:
                derived = infer_from_url(artifact_url)
        except InvalidLocatorError:
            if artifact_id is None:
                raise
            derived = Coordinates()

        return Coordinates(
            group_id=group_id if group_id is not None else derived.group_id,
            artifact_id=artifact_id if artifact_id is not None else derived.artifact_id,
            version=version if version is not None else derived.version,
            extension=type or derived.extension or DEFAULT_EXTENSION,
            classifier=classifier if classifier is not None else derived.classifier,
        )

    def add_artifact(
        self,
        artifact_url: str,
        name: str,
        group_id: Optional[str] = None,
        artifact_id: Optional[str] = None,
        version: Optional[str] = None,
        type: Optional[str] = None,
        classifier: Optional[str] = None,
    ) -> Path:
        """Fetch an artifact and install it in a repository.

        Coordinates not given explicitly are derived from the URL: parsed from
        a ``mvn:`` locator, otherwise inferred from the last path segment.

        Args:
            artifact_url: ``mvn:``, ``http(s)://``, ``file:`` URL or local path
            name: Repository name
            group_id: Explicit groupId
            artifact_id: Explicit artifactId
            version: Explicit version
            type: Explicit extension
            classifier: Explicit classifier

        Returns:
            Path of the installed artifact

        Raises:
            RepositoryNotFoundError: If the repository doesn't exist
            InvalidLocatorError: If no artifactId can be determined
            TransferError: If fetching or installing fails
        """
        if not artifact_url:
            raise InvalidLocatorError("Artifact URL can't be empty")

        with self._lock:
            self._location(self._get(name))
        coordinates = self._coordinates_for(artifact_url, group_id, artifact_id, version, type, classifier)
        logger.info("artifact_add_started", name=name, url=artifact_url, path=to_path(coordinates))

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{coordinates.artifact_id}-", suffix=f".{coordinates.extension}"
        )
        tmp = Path(tmp_name)
        try:
            try:
                with os.fdopen(fd, "wb") as stream:
                    for chunk in self.transfer.fetch(artifact_url):
                        stream.write(chunk)
            except OSError as e:
                raise TransferError(f"Unable to download {artifact_url}: {e}", original_error=e) from e

            with self._lock:
                location = self._location(self._get(name))
                installed = self.transfer.install(coordinates, tmp, location)
        finally:
            tmp.unlink(missing_ok=True)

        logger.info("artifact_added", name=name, url=artifact_url, path=str(installed))
        return installed

    def _resolve_inside(self, location: Path, relative: str) -> Path:
        root = Path(os.path.realpath(location))
        target = Path(os.path.normpath(root / relative.lstrip("/")))
        parent = Path(os.path.realpath(target.parent))
        if target == root or (parent != root and root not in parent.parents):
            raise InvalidLocatorError(f"Artifact path {relative} is outside of {location}")
        return target

    def _delete_relative(self, name: str, relative: str) -> bool:
        with self._lock:
            location = self._location(self._get(name), must_exist=False)
            target = self._resolve_inside(location, relative)
            try:
                deleted = delete_path(target)
            except OSError as e:
                raise StorageError(f"Unable to delete {target}: {e}", e) from e

        if deleted:
            logger.info("artifact_deleted", name=name, path=str(target))
        else:
            logger.debug("artifact_not_present", name=name, path=str(target))
        return deleted

    def delete_artifact(self, locator_or_path: str, name: str) -> bool:
        """Delete an artifact, or a directory of artifacts, from a repository.

        Args:
            locator_or_path: ``mvn:`` URL or path relative to the repository
            name: Repository name

        Returns:
            True if something was deleted, False if nothing existed there

        Raises:
            RepositoryNotFoundError: If the repository doesn't exist
            InvalidLocatorError: If the locator is malformed or escapes the repository
        """
        if not locator_or_path:
            raise InvalidLocatorError("Artifact locator can't be empty")
        if locator_or_path.startswith("mvn:"):
            relative = maven_url_to_path(locator_or_path)
        else:
            relative = locator_or_path
        return self._delete_relative(name, relative)

    def delete_artifact_coordinates(
        self,
        group_id: Optional[str],
        artifact_id: str,
        version: Optional[str],
        type: Optional[str],
        classifier: Optional[str],
        name: str,
    ) -> bool:
        """Delete an artifact addressed by its coordinates.

        Returns:
            True if something was deleted, False if nothing existed there
        """
        if not artifact_id:
            raise InvalidLocatorError("Artifact coordinates require an artifactId")
        coordinates = Coordinates(
            group_id=group_id,
            artifact_id=artifact_id,
            version=version,
            extension=type or DEFAULT_EXTENSION,
            classifier=classifier,
        )
        return self._delete_relative(name, to_path(coordinates))

    def update_bundle_repository_descriptor(self, name: str) -> DescriptorDocument:
        """Index the bundles of a repository into its descriptor.

        Raises:
            RepositoryNotFoundError: If the repository doesn't exist
            RepositoryStateError: If the repository storage doesn't exist
            IndexingError: If the storage walk or the descriptor I/O fails
        """
        with self._lock:
            location = self._location(self._get(name))
            return self.indexer.update_descriptor(location, name)

    # Activation and persistence

    def save(self) -> None:
        """Persist the registry through the repository store."""
        with self._lock:
            self.store.save(list(self._repositories.values()))

    def load(self) -> None:
        """Replace the registry with the persisted repositories."""
        with self._lock:
            self._repositories.clear()
            for repository in self.store.load():
                self._repositories[repository.name] = repository
            logger.info("repositories_loaded", count=len(self._repositories))

    def activate(self) -> None:
        """Load the registry and publish every repository."""
        with self._lock:
            self.load()
            for repository in self._repositories.values():
                self._publish(repository)
                if self.reschedule_on_load:
                    self._unschedule(repository)
                    try:
                        self._schedule(repository)
                    except InvalidScheduleError as e:
                        logger.error(
                            "repository_schedule_invalid",
                            name=repository.name,
                            scheduling=repository.scheduling,
                            error=e.message,
                        )
        logger.info("repository_manager_activated", count=len(self._repositories))

    def deactivate(self) -> None:
        """Unpublish and unschedule every repository."""
        with self._lock:
            for repository in self._repositories.values():
                self._unpublish(repository)
                self._unschedule(repository)
        logger.info("repository_manager_deactivated")
