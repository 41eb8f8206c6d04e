"""Storage tree operations: copy, purge, delete and relocate.

Tree walks never follow directory symlinks; a symlink found in a tree is
copied or removed as a link.
"""

import os
import shutil
from pathlib import Path

from depot.core.errors import RelocationError
from depot.observability.logging import get_logger

logger = get_logger(__name__)


def _copy_entry(source: Path, target: Path) -> None:
    if source.is_symlink():
        if target.is_symlink() or target.exists():
            target.unlink()
        os.symlink(os.readlink(source), target)
    else:
        shutil.copy2(source, target, follow_symlinks=False)


def copy_tree(source: Path, destination: Path, strict: bool = False) -> int:
    """Recursively copy a directory tree, preserving attributes and timestamps.

    Existing directories in the destination are reused. Directory timestamps
    are applied once their contents have been copied.

    Args:
        source: Directory to copy
        destination: Target directory, created if missing
        strict: Raise on the first failure instead of logging and skipping

    Returns:
        Number of files copied

    Raises:
        OSError: If strict and a file or directory cannot be copied
    """
    source = Path(source)
    destination = Path(destination)
    copied = 0
    directories: list[tuple[Path, Path]] = []

    def failed(error: OSError) -> None:
        if strict:
            raise error
        logger.warning("copy_entry_failed", path=str(error.filename), error=str(error))

    for dirpath, dirnames, filenames in os.walk(source, onerror=failed, followlinks=False):
        current = Path(dirpath)
        target_dir = destination / current.relative_to(source)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            failed(e)
            dirnames[:] = []
            continue
        directories.append((current, target_dir))

        linked = [name for name in dirnames if (current / name).is_symlink()]
        for name in linked:
            dirnames.remove(name)
        for name in linked + filenames:
            try:
                _copy_entry(current / name, target_dir / name)
                copied += 1
            except OSError as e:
                failed(e)

    for current, target_dir in reversed(directories):
        try:
            shutil.copystat(current, target_dir)
        except OSError as e:
            failed(e)

    logger.debug("tree_copied", source=str(source), destination=str(destination), files=copied)
    return copied


def delete_path(path: Path) -> bool:
    """Delete a file, a symlink or a directory tree.

    Returns:
        False if nothing existed at the path
    """
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False


def purge_contents(path: Path) -> int:
    """Delete everything under a directory, keeping the directory itself.

    Returns:
        Number of top-level entries removed
    """
    path = Path(path)
    if not path.is_dir():
        return 0
    removed = 0
    for child in path.iterdir():
        if delete_path(child):
            removed += 1
    return removed


def _is_within(path: Path, parent: Path) -> bool:
    try:
        path.relative_to(parent)
        return True
    except ValueError:
        return False


def move_tree(source: Path, destination: Path) -> None:
    """Move a directory tree to a new location.

    ``os.rename`` is tried first; when it fails (for example across devices)
    the tree is copied and the source deleted afterwards.

    Raises:
        RelocationError: If the destination is not empty, lies inside the
            source, or neither strategy succeeds
    """
    source = Path(source).absolute()
    destination = Path(destination).absolute()

    if source == destination:
        return
    if _is_within(destination, source):
        raise RelocationError(f"Destination {destination} is inside {source}")
    if destination.is_file() or (destination.is_dir() and any(destination.iterdir())):
        raise RelocationError(f"Destination {destination} already exists and is not empty")

    if not source.exists():
        logger.warning("relocation_source_missing", source=str(source))
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RelocationError(f"Unable to create {destination}: {e}", e) from e
        return

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        os.rename(source, destination)
        logger.debug("tree_renamed", source=str(source), destination=str(destination))
        return
    except OSError as e:
        logger.warning(
            "tree_rename_failed",
            source=str(source),
            destination=str(destination),
            error=str(e),
        )

    created = not destination.exists()
    try:
        copy_tree(source, destination, strict=True)
    except OSError as e:
        if created:
            shutil.rmtree(destination, ignore_errors=True)
        else:
            purge_contents(destination)
        raise RelocationError(f"Unable to move {source} to {destination}: {e}", e) from e

    try:
        shutil.rmtree(source)
    except OSError as e:
        raise RelocationError(
            f"Copied {source} to {destination} but could not remove the source: {e}", e
        ) from e
    logger.debug("tree_copied_and_removed", source=str(source), destination=str(destination))
