"""Tests for storage tree operations."""

import errno
import os
from unittest.mock import patch

import pytest

from depot.core.errors import RelocationError
from depot.core.filesystem import copy_tree, delete_path, move_tree, purge_contents


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "source"
    (root / "org" / "foo").mkdir(parents=True)
    (root / "org" / "foo" / "foo-1.0.jar").write_bytes(b"jar")
    (root / "repository.xml").write_text("<repository/>")
    return root


class TestCopyTree:
    """Test recursive copy."""

    def test_copies_files_and_timestamps(self, tree, tmp_path):
        old = 1_600_000_000
        os.utime(tree / "org" / "foo" / "foo-1.0.jar", (old, old))
        os.utime(tree / "org", (old, old))
        destination = tmp_path / "destination"

        copied = copy_tree(tree, destination)

        assert copied == 2
        assert (destination / "org" / "foo" / "foo-1.0.jar").read_bytes() == b"jar"
        assert (destination / "org" / "foo" / "foo-1.0.jar").stat().st_mtime == old
        assert (destination / "org").stat().st_mtime == old

    def test_existing_directories_are_tolerated(self, tree, tmp_path):
        destination = tmp_path / "destination"
        (destination / "org" / "foo").mkdir(parents=True)
        (destination / "org" / "foo" / "foo-1.0.jar").write_bytes(b"old")
        (destination / "keep.txt").write_text("keep")

        copy_tree(tree, destination)

        assert (destination / "org" / "foo" / "foo-1.0.jar").read_bytes() == b"jar"
        assert (destination / "keep.txt").exists()

    def test_failed_file_is_skipped(self, tree, tmp_path):
        destination = tmp_path / "destination"
        real_copy = __import__("shutil").copy2

        def flaky_copy(source, target, **kwargs):
            if str(source).endswith(".jar"):
                raise PermissionError(errno.EACCES, "denied", str(source))
            return real_copy(source, target, **kwargs)

        with patch("depot.core.filesystem.shutil.copy2", side_effect=flaky_copy):
            copied = copy_tree(tree, destination)

        assert copied == 1
        assert (destination / "repository.xml").exists()

    def test_strict_mode_raises(self, tree, tmp_path):
        with patch("depot.core.filesystem.shutil.copy2", side_effect=PermissionError("denied")):
            with pytest.raises(OSError):
                copy_tree(tree, tmp_path / "destination", strict=True)

    def test_symlinks_are_copied_as_links(self, tree, tmp_path):
        os.symlink(tree / "org", tree / "link")
        destination = tmp_path / "destination"

        copy_tree(tree, destination)

        assert (destination / "link").is_symlink()
        assert os.readlink(destination / "link") == str(tree / "org")


class TestDelete:
    """Test deletion helpers."""

    def test_delete_file_and_tree(self, tree):
        assert delete_path(tree / "repository.xml")
        assert delete_path(tree / "org")
        assert list(tree.iterdir()) == []

    def test_delete_missing_path(self, tmp_path):
        assert not delete_path(tmp_path / "missing")

    def test_purge_keeps_directory(self, tree):
        removed = purge_contents(tree)

        assert removed == 2
        assert tree.is_dir()
        assert list(tree.iterdir()) == []

    def test_purge_missing_directory(self, tmp_path):
        assert purge_contents(tmp_path / "missing") == 0


class TestMoveTree:
    """Test relocation with rename and copy fallback."""

    def test_rename(self, tree, tmp_path):
        destination = tmp_path / "moved" / "releases"

        move_tree(tree, destination)

        assert not tree.exists()
        assert (destination / "org" / "foo" / "foo-1.0.jar").read_bytes() == b"jar"

    def test_into_existing_empty_directory(self, tree, tmp_path):
        destination = tmp_path / "empty"
        destination.mkdir()

        move_tree(tree, destination)

        assert (destination / "repository.xml").exists()

    def test_cross_device_falls_back_to_copy(self, tree, tmp_path):
        destination = tmp_path / "other-device"

        with patch("depot.core.filesystem.os.rename", side_effect=OSError(errno.EXDEV, "cross-device")):
            move_tree(tree, destination)

        assert not tree.exists()
        assert (destination / "org" / "foo" / "foo-1.0.jar").read_bytes() == b"jar"

    def test_failed_fallback_leaves_source(self, tree, tmp_path):
        destination = tmp_path / "other-device"

        with patch("depot.core.filesystem.os.rename", side_effect=OSError(errno.EXDEV, "cross-device")):
            with patch("depot.core.filesystem.shutil.copy2", side_effect=OSError("disk full")):
                with pytest.raises(RelocationError):
                    move_tree(tree, destination)

        assert (tree / "org" / "foo" / "foo-1.0.jar").exists()
        assert not destination.exists()

    def test_non_empty_destination(self, tree, tmp_path):
        destination = tmp_path / "busy"
        destination.mkdir()
        (destination / "file").write_text("x")

        with pytest.raises(RelocationError):
            move_tree(tree, destination)

        assert tree.exists()

    def test_destination_inside_source(self, tree):
        with pytest.raises(RelocationError):
            move_tree(tree, tree / "nested")

    def test_missing_source_creates_destination(self, tmp_path):
        destination = tmp_path / "new"

        move_tree(tmp_path / "gone", destination)

        assert destination.is_dir()
