"""Unit tests for RepositoryManager."""

import errno
import threading
from unittest.mock import patch

import httpx
import pytest

from depot.config.schema import TransferConfig
from depot.core.errors import (
    ErrorKind,
    InvalidLocatorError,
    InvalidScheduleError,
    RelocationError,
    RepositoryExistsError,
    RepositoryNotFoundError,
    RepositoryStateError,
    TransferError,
)
from depot.core.repository import RepositoryManager
from depot.core.scheduling import ActionKind, TriggerKind
from depot.providers.memory import InMemoryEndpointPublisher, InMemoryScheduler
from depot.providers.transfer import HttpArtifactTransfer
from depot.storage.memory import InMemoryRepositoryStore
from depot.storage.properties import PropertiesRepositoryStore


def _offline(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404)


class TestRepositoryManager:
    """Test RepositoryManager functionality."""

    @pytest.fixture
    def remote(self, tmp_path, bundle_factory, foo_headers):
        """A file: remote repository holding one bundle."""
        root = tmp_path / "remote"
        bundle_factory(root / "org" / "foo" / "foo" / "1.2" / "foo-1.2.jar", foo_headers)
        return root

    @pytest.fixture
    def collaborators(self, remote):
        transfer = HttpArtifactTransfer(
            TransferConfig(remote_repositories=[remote.as_uri()]),
            client=httpx.Client(transport=httpx.MockTransport(_offline)),
        )
        yield InMemoryRepositoryStore(), InMemoryEndpointPublisher(), InMemoryScheduler(), transfer
        transfer.close()

    @pytest.fixture
    def manager(self, tmp_path, collaborators):
        store, publisher, scheduler, transfer = collaborators
        return RepositoryManager(
            store=store,
            publisher=publisher,
            scheduler=scheduler,
            transfer=transfer,
            base_storage=tmp_path / "storage",
        )

    # Create

    def test_create_with_defaults(self, manager, tmp_path):
        repository = manager.create("releases")

        assert repository.location == str(tmp_path / "storage" / "releases")
        assert repository.url == "/depot/repository/releases"
        assert repository.realm == "depot"
        assert repository.pool_size == 8
        assert (tmp_path / "storage" / "releases").is_dir()
        assert manager.store.load()[0].name == "releases"

    def test_create_publishes_endpoint(self, manager):
        repository = manager.create("releases", download_role="viewer", upload_role="admin")

        config = manager.publisher.publications["/depot/repository/releases"]
        assert config["name"] == "releases"
        assert config["local_repository"] == repository.location
        assert config["default_repositories"] == f"file:{repository.location}@id=releases@snapshots@releases"
        assert config["repositories"] == f"file:{repository.location}@id=releases@snapshots"
        assert config["download_role"] == "viewer"
        assert config["upload_role"] == "admin"

    def test_create_duplicate(self, manager):
        manager.create("releases")

        with pytest.raises(RepositoryExistsError) as exc_info:
            manager.create("releases")

        assert exc_info.value.kind == ErrorKind.ALREADY_EXISTS
        assert len(manager.repositories()) == 1

    def test_create_with_explicit_location_and_url(self, manager, tmp_path):
        repository = manager.create("snapshots", location=str(tmp_path / "custom"), url="/snap")

        assert repository.location == str(tmp_path / "custom")
        assert "/snap" in manager.publisher.publications

    @pytest.mark.parametrize("name", ["", "a/b", ".."])
    def test_create_rejects_unsafe_names(self, manager, name):
        with pytest.raises(InvalidLocatorError):
            manager.create(name)

        assert manager.repositories() == []

    def test_create_with_malformed_schedule_changes_nothing(self, manager, tmp_path):
        with pytest.raises(InvalidScheduleError):
            manager.create("releases", scheduling="weekly:monday")

        assert manager.repositories() == []
        assert not (tmp_path / "storage" / "releases").exists()
        assert manager.publisher.publications == {}
        assert manager.store.save_count == 0

    def test_create_with_schedule_registers_job(self, manager):
        manager.create("releases", scheduling="cron:0 0 * * * ?", scheduling_action="purge")

        assert manager.scheduler.list_job_ids() == ["depot-repository-releases"]
        assert manager.scheduler.trigger("depot-repository-releases").kind == TriggerKind.CRON

    # Proxy publication

    def test_proxy_is_listed_first(self, manager):
        repository = manager.create("central", proxy="https://repo1.maven.org/maven2")

        config = manager.publisher.publications[repository.url]
        assert config["repositories"] == (
            f"https://repo1.maven.org/maven2,file:{repository.location}@id=central@snapshots"
        )
        assert "local_repository" not in config

    def test_mirror_keeps_local_repository(self, manager):
        repository = manager.create("central", proxy="https://repo1.maven.org/maven2", mirror=True)

        assert manager.publisher.publications[repository.url]["local_repository"] == repository.location

    # Reads

    def test_reads_return_copies(self, manager):
        manager.create("releases")

        manager.repository("releases").proxy = "http://tampered"
        manager.repositories()[0].url = "/tampered"

        assert manager.repository("releases").proxy is None
        assert manager.repository("releases").url == "/depot/repository/releases"
        assert manager.repository("missing") is None

    # Remove and purge

    def test_remove_keeps_storage(self, manager, tmp_path):
        manager.create("releases", scheduling="cron:0 0 * * * ?")

        manager.remove("releases")

        assert manager.repository("releases") is None
        assert (tmp_path / "storage" / "releases").is_dir()
        assert manager.publisher.publications == {}
        assert manager.scheduler.list_job_ids() == []
        assert manager.store.load() == []

    def test_remove_with_storage_cleanup(self, manager, tmp_path):
        manager.create("releases")
        (tmp_path / "storage" / "releases" / "foo.jar").write_bytes(b"x")

        manager.remove("releases", storage_cleanup=True)

        assert not (tmp_path / "storage" / "releases").exists()

    def test_remove_unknown(self, manager):
        with pytest.raises(RepositoryNotFoundError):
            manager.remove("missing")

    def test_purge_keeps_location_and_record(self, manager, tmp_path):
        manager.create("releases")
        location = tmp_path / "storage" / "releases"
        (location / "org").mkdir()
        (location / "org" / "foo.jar").write_bytes(b"x")
        (location / "repository.xml").write_text("<repository/>")

        assert manager.purge("releases") == 2

        assert location.is_dir()
        assert list(location.iterdir()) == []
        assert manager.repository("releases") is not None

    # Reconfiguration

    def test_change_location_moves_tree(self, manager, tmp_path):
        manager.create("releases")
        (tmp_path / "storage" / "releases" / "foo.jar").write_bytes(b"x")
        target = tmp_path / "elsewhere" / "releases"

        manager.change_location("releases", str(target))

        assert (target / "foo.jar").read_bytes() == b"x"
        assert not (tmp_path / "storage" / "releases").exists()
        assert manager.repository("releases").location == str(target)
        assert manager.publisher.publications["/depot/repository/releases"]["location"] == str(target)
        assert manager.store.load()[0].location == str(target)

    def test_change_location_across_devices(self, manager, tmp_path):
        manager.create("releases")
        (tmp_path / "storage" / "releases" / "foo.jar").write_bytes(b"x")
        target = tmp_path / "other-device"

        with patch("depot.core.filesystem.os.rename", side_effect=OSError(errno.EXDEV, "cross-device")):
            manager.change_location("releases", str(target))

        assert (target / "foo.jar").read_bytes() == b"x"
        assert not (tmp_path / "storage" / "releases").exists()

    def test_change_location_to_non_empty_directory(self, manager, tmp_path):
        repository = manager.create("releases")
        target = tmp_path / "busy"
        target.mkdir()
        (target / "other.jar").write_bytes(b"x")

        with pytest.raises(RelocationError):
            manager.change_location("releases", str(target))

        assert manager.repository("releases").location == repository.location

    def test_change_url_republishes(self, manager):
        manager.create("releases")

        manager.change_url("releases", "/new/releases")

        assert list(manager.publisher.publications) == ["/new/releases"]
        assert manager.publisher.history[-2:] == [
            ("unpublish", "/depot/repository/releases"),
            ("publish", "/new/releases"),
        ]
        assert manager.store.load()[0].url == "/new/releases"

    def test_change_url_rejects_empty(self, manager):
        manager.create("releases")

        with pytest.raises(InvalidLocatorError):
            manager.change_url("releases", "")

    def test_change_proxy(self, manager):
        manager.create("central")

        manager.change_proxy("central", "https://repo1.maven.org/maven2", mirror=True)

        repository = manager.repository("central")
        assert repository.proxy == "https://repo1.maven.org/maven2"
        assert repository.mirror is True
        assert manager.publisher.publications[repository.url]["repositories"].startswith(
            "https://repo1.maven.org/maven2,"
        )

    def test_change_security(self, manager):
        manager.create("releases")

        manager.change_security("releases", "ldap", "reader", "writer")

        config = manager.publisher.publications["/depot/repository/releases"]
        assert (config["realm"], config["download_role"], config["upload_role"]) == ("ldap", "reader", "writer")
        assert manager.store.load()[0].realm == "ldap"

    def test_change_scheduling_replaces_job(self, manager):
        manager.create("releases", scheduling="cron:0 0 * * * ?", scheduling_action="purge")

        manager.change_scheduling("releases", "at:2030-01-01T00:00:00", "delete")

        assert manager.scheduler.list_job_ids() == ["depot-repository-releases"]
        assert manager.scheduler.trigger("depot-repository-releases").kind == TriggerKind.AT
        assert manager.repository("releases").scheduling_action == "delete"

    def test_change_scheduling_to_none_unschedules(self, manager):
        manager.create("releases", scheduling="cron:0 0 * * * ?")

        manager.change_scheduling("releases", None, None)

        assert manager.scheduler.list_job_ids() == []

    def test_change_scheduling_invalid_keeps_job(self, manager):
        manager.create("releases", scheduling="cron:0 0 * * * ?")

        with pytest.raises(InvalidScheduleError):
            manager.change_scheduling("releases", "at:never", "purge")

        assert manager.scheduler.list_job_ids() == ["depot-repository-releases"]
        assert manager.repository("releases").scheduling == "cron:0 0 * * * ?"

    # Copy

    def test_copy_between_repositories(self, manager, tmp_path):
        manager.create("releases")
        manager.create("backup")
        (tmp_path / "storage" / "releases" / "org").mkdir()
        (tmp_path / "storage" / "releases" / "org" / "foo.jar").write_bytes(b"x")

        copied = manager.copy("releases", "backup")

        assert copied == 1
        assert (tmp_path / "storage" / "backup" / "org" / "foo.jar").read_bytes() == b"x"

    def test_copy_unknown_destination(self, manager):
        manager.create("releases")

        with pytest.raises(RepositoryNotFoundError):
            manager.copy("releases", "missing")

    # Artifacts

    def test_add_maven_artifact_from_file_remote(self, manager, tmp_path, remote):
        manager.create("releases")

        installed = manager.add_artifact("mvn:org.foo/foo/1.2", "releases")

        expected = tmp_path / "storage" / "releases" / "org" / "foo" / "foo" / "1.2" / "foo-1.2.jar"
        assert installed == expected
        assert expected.read_bytes() == (remote / "org" / "foo" / "foo" / "1.2" / "foo-1.2.jar").read_bytes()

    def test_add_plain_url_without_version(self, manager, tmp_path, remote):
        manager.create("releases")
        source = remote / "org" / "foo" / "foo" / "1.2" / "foo-1.2.jar"

        installed = manager.add_artifact(source.as_uri(), "releases")

        assert installed == tmp_path / "storage" / "releases" / "foo-1.2" / "foo-1.2-.jar"

    def test_add_with_explicit_coordinates(self, manager, tmp_path, remote):
        manager.create("releases")
        source = remote / "org" / "foo" / "foo" / "1.2" / "foo-1.2.jar"

        installed = manager.add_artifact(
            str(source), "releases", group_id="com.acme", artifact_id="foo", version="1.2", classifier="osgi"
        )

        assert installed == tmp_path / "storage" / "releases" / "com" / "acme" / "foo" / "1.2" / "foo-1.2-osgi.jar"

    def test_add_missing_artifact(self, manager, tmp_path):
        manager.create("releases")

        with pytest.raises(TransferError):
            manager.add_artifact("mvn:org.foo/missing/1.0", "releases")

        assert list((tmp_path / "storage" / "releases").iterdir()) == []

    def test_add_to_unknown_repository(self, manager):
        with pytest.raises(RepositoryNotFoundError):
            manager.add_artifact("mvn:org.foo/foo/1.2", "missing")

    def test_add_without_location(self, manager, tmp_path):
        manager.create("releases")
        (tmp_path / "storage" / "releases").rmdir()

        with pytest.raises(RepositoryStateError):
            manager.add_artifact("mvn:org.foo/foo/1.2", "releases")

    def test_delete_artifact_by_maven_url(self, manager):
        manager.create("releases")
        installed = manager.add_artifact("mvn:org.foo/foo/1.2", "releases")

        assert manager.delete_artifact("mvn:org.foo/foo/1.2", "releases") is True

        assert not installed.exists()

    def test_delete_artifact_directory_by_path(self, manager, tmp_path):
        manager.create("releases")
        manager.add_artifact("mvn:org.foo/foo/1.2", "releases")

        assert manager.delete_artifact("org/foo", "releases") is True

        assert not (tmp_path / "storage" / "releases" / "org" / "foo").exists()

    def test_delete_missing_artifact_is_noop(self, manager):
        manager.create("releases")

        assert manager.delete_artifact("mvn:org.foo/foo/9.9", "releases") is False

    def test_delete_artifact_coordinates(self, manager):
        manager.create("releases")
        installed = manager.add_artifact("mvn:org.foo/foo/1.2", "releases")

        assert manager.delete_artifact_coordinates("org.foo", "foo", "1.2", None, None, "releases") is True

        assert not installed.exists()

    @pytest.mark.parametrize("locator", ["../outside.jar", "org/../../outside.jar", "/", "."])
    def test_delete_outside_location_is_refused(self, manager, tmp_path, locator):
        manager.create("releases")
        outside = tmp_path / "storage" / "outside.jar"
        outside.write_bytes(b"x")

        with pytest.raises(InvalidLocatorError):
            manager.delete_artifact(locator, "releases")

        assert outside.exists()
        assert (tmp_path / "storage" / "releases").is_dir()

    # Descriptor

    def test_update_descriptor_indexes_added_artifacts(self, manager, tmp_path):
        manager.create("releases")
        manager.add_artifact("mvn:org.foo/foo/1.2", "releases")

        document = manager.update_bundle_repository_descriptor("releases")

        assert document.name == "releases"
        assert document.uris() == {"org/foo/foo/1.2/foo-1.2.jar"}
        assert (tmp_path / "storage" / "releases" / "repository.xml").exists()

    def test_update_descriptor_twice_is_idempotent(self, manager):
        manager.create("releases")
        manager.add_artifact("mvn:org.foo/foo/1.2", "releases")
        first = manager.update_bundle_repository_descriptor("releases")

        second = manager.update_bundle_repository_descriptor("releases")

        assert len(second.entries) == 1
        assert second.increment == first.increment

    # Scheduled execution

    def test_scheduled_purge_and_copy(self, manager, tmp_path):
        manager.create("backup")
        manager.create("releases", scheduling="cron:0 0 * * * ?", scheduling_action="copy backup,purge")
        (tmp_path / "storage" / "releases" / "foo.jar").write_bytes(b"x")

        results = manager.scheduler.run("depot-repository-releases")

        assert [r.action.kind for r in results] == [ActionKind.COPY, ActionKind.PURGE]
        assert all(r.success for r in results)
        assert (tmp_path / "storage" / "backup" / "foo.jar").exists()
        assert not (tmp_path / "storage" / "releases" / "foo.jar").exists()

    def test_scheduled_delete_then_purge_fails_gracefully(self, manager):
        manager.create("releases", scheduling="cron:0 0 * * * ?", scheduling_action="delete,purge")

        results = manager.scheduler.run("depot-repository-releases")

        assert [r.success for r in results] == [True, False]
        assert manager.repository("releases") is None
        assert manager.scheduler.list_job_ids() == []

    # Activation and persistence

    def test_activate_publishes_persisted_repositories(self, tmp_path, collaborators):
        _, _, _, transfer = collaborators
        store = PropertiesRepositoryStore(tmp_path / "storage" / "repositories.db")
        first = RepositoryManager(
            store, InMemoryEndpointPublisher(), InMemoryScheduler(), transfer, tmp_path / "storage"
        )
        first.create("releases", proxy="https://repo1.maven.org/maven2")
        first.create("snapshots", scheduling="cron:0 0 * * * ?", scheduling_action="purge")

        second = RepositoryManager(
            store, InMemoryEndpointPublisher(), InMemoryScheduler(), transfer, tmp_path / "storage"
        )
        second.activate()

        assert [r.name for r in second.repositories()] == ["releases", "snapshots"]
        assert second.repository("releases").proxy == "https://repo1.maven.org/maven2"
        assert set(second.publisher.publications) == {
            "/depot/repository/releases",
            "/depot/repository/snapshots",
        }
        assert second.repository("snapshots").scheduling is None
        assert second.scheduler.list_job_ids() == []

    def test_activate_reschedules_when_scheduling_is_persisted(self, tmp_path, collaborators):
        _, _, _, transfer = collaborators
        store = PropertiesRepositoryStore(tmp_path / "storage" / "repositories.db", persist_scheduling=True)
        first = RepositoryManager(
            store, InMemoryEndpointPublisher(), InMemoryScheduler(), transfer, tmp_path / "storage"
        )
        first.create("snapshots", scheduling="cron:0 0 * * * ?", scheduling_action="purge")

        second = RepositoryManager(
            store,
            InMemoryEndpointPublisher(),
            InMemoryScheduler(),
            transfer,
            tmp_path / "storage",
            reschedule_on_load=True,
        )
        second.activate()

        assert second.scheduler.list_job_ids() == ["depot-repository-snapshots"]
        assert second.repository("snapshots").scheduling_action == "purge"

    def test_activate_after_create_replaces_existing_jobs(self, tmp_path, collaborators):
        store, publisher, scheduler, transfer = collaborators
        manager = RepositoryManager(
            store, publisher, scheduler, transfer, tmp_path / "storage", reschedule_on_load=True
        )
        manager.create("nightly", scheduling="cron:0 0 * * * ?", scheduling_action="purge")
        manager.create("releases")

        manager.activate()

        assert scheduler.list_job_ids() == ["depot-repository-nightly"]
        assert set(publisher.publications) == {
            "/depot/repository/nightly",
            "/depot/repository/releases",
        }
        assert [r.action.kind for r in scheduler.run("depot-repository-nightly")] == [ActionKind.PURGE]

    def test_load_replaces_registry_contents(self, manager):
        manager.create("releases")
        manager.store.save([])

        manager.load()

        assert manager.repositories() == []

    def test_deactivate_unpublishes_and_unschedules(self, manager):
        manager.create("releases", scheduling="cron:0 0 * * * ?")
        manager.create("snapshots")

        manager.deactivate()

        assert manager.publisher.publications == {}
        assert manager.scheduler.list_job_ids() == []
        assert len(manager.repositories()) == 2

    def test_concurrent_creates(self, manager):
        errors = []

        def create(index: int) -> None:
            try:
                manager.create(f"repo-{index}")
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=create, args=(i,)) for i in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(manager.repositories()) == 16
        assert len(manager.store.load()) == 16
