"""Bundle descriptor indexing.

Walks a repository's storage tree, extracts the manifest of every bundle
artifact, computes content digests and merges the resulting entries into the
repository descriptor document.

Merge semantics:
- entries are keyed by their (relative) content URI
- an entry whose URI is already indexed is dropped, never overwritten
- the document increment only advances when something was appended
"""

import hashlib
import os
import time
import zipfile
from pathlib import Path
from typing import IO, Iterable, Optional

from depot.core.errors import IndexingError, IndexingSkipped, SkipReason
from depot.core.manifest import MANIFEST_NAME, build_resource, parse_manifest
from depot.entities.descriptor import (
    BUNDLE_MIME_TYPE,
    CONTENT_MIME_ATTRIBUTE,
    CONTENT_NAMESPACE,
    CONTENT_SIZE_ATTRIBUTE,
    BundleDescriptorEntry,
    DescriptorDocument,
)
from depot.observability.logging import get_logger
from depot.storage.descriptor import read_descriptor, write_descriptor

logger = get_logger(__name__)

NON_ARTIFACT_SUFFIXES = (".sha1", ".pom", ".xml", ".repositories", ".properties", ".lastUpdated")

_CHUNK_SIZE = 64 * 1024


class DigestingReader:
    """Binary reader that hashes and counts every byte read through it."""

    def __init__(self, stream: IO[bytes]):
        self._stream = stream
        self._hasher = hashlib.sha256()
        self.size = 0

    def read(self, n: int = -1) -> bytes:
        data = self._stream.read(n)
        if data:
            self._hasher.update(data)
            self.size += len(data)
        return data

    def drain(self) -> None:
        """Read the remaining bytes in fixed-size chunks."""
        for _ in iter(lambda: self.read(_CHUNK_SIZE), b""):
            pass

    @property
    def hexdigest(self) -> str:
        return self._hasher.hexdigest()


def is_candidate(path: Path) -> bool:
    """Check whether a file name may be an artifact."""
    return not path.name.endswith(NON_ARTIFACT_SUFFIXES)


def relative_uri(path: Path, location: Path) -> str:
    """Content URI of a file, relative to the repository location when inside it."""
    absolute = path.absolute().as_posix()
    prefix = location.absolute().as_posix().rstrip("/") + "/"
    if absolute.startswith(prefix):
        return absolute[len(prefix) :]
    return path.absolute().as_uri()


class BundleIndexer:
    """Builds and maintains repository descriptor documents."""

    def __init__(self, descriptor_name: str = "repository.xml", read_fully: bool = True):
        """Initialize the indexer.

        Args:
            descriptor_name: File name of the descriptor at the repository root
            read_fully: Compute digest and size for every indexed artifact
        """
        self.descriptor_name = descriptor_name
        self.read_fully = read_fully

    def scan(self, location: Path) -> list[Path]:
        """List candidate artifact files under a repository location.

        Directory symlinks are not followed.

        Raises:
            IndexingError: If the directory walk fails
        """

        def fail(error: OSError) -> None:
            raise IndexingError(f"Unable to scan {location}: {error}", original_error=error)

        candidates: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(location, onerror=fail, followlinks=False):
            dirnames.sort()
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                if is_candidate(path):
                    candidates.append(path)
        return candidates

    def build_entry(
        self, path: Path, location: Path, read_fully: Optional[bool] = None
    ) -> BundleDescriptorEntry:
        """Build the descriptor entry of a single artifact.

        Args:
            path: Artifact file
            location: Repository location the content URI is made relative to
            read_fully: Override the indexer's digest setting

        Returns:
            Entry with identity, content and wiring capabilities

        Raises:
            IndexingSkipped: If the file is not an indexable bundle
        """
        read_fully = self.read_fully if read_fully is None else read_fully

        try:
            with zipfile.ZipFile(path) as archive:
                with archive.open(MANIFEST_NAME) as manifest:
                    headers = parse_manifest(manifest)
        except KeyError as e:
            raise IndexingSkipped(
                f"Resource {path} does not contain a manifest", SkipReason.NOT_AN_ARTIFACT, e
            ) from e
        except zipfile.BadZipFile as e:
            raise IndexingSkipped(
                f"Resource {path} is not an archive", SkipReason.NOT_AN_ARTIFACT, e
            ) from e
        except (UnicodeDecodeError, ValueError) as e:
            raise IndexingSkipped(
                f"Resource {path} has an invalid manifest: {e}", SkipReason.INVALID_METADATA, e
            ) from e
        except OSError as e:
            raise IndexingSkipped(f"Unable to read {path}: {e}", SkipReason.UNREADABLE, e) from e

        if "Bundle-SymbolicName" not in headers:
            raise IndexingSkipped(f"Resource {path} is not a bundle", SkipReason.NOT_A_BUNDLE)

        uri = relative_uri(path, location)
        try:
            entry = build_resource(headers, uri)
        except ValueError as e:
            raise IndexingSkipped(
                f"Unable to create resource from {uri}: {e}", SkipReason.INVALID_METADATA, e
            ) from e

        content = entry.capability(CONTENT_NAMESPACE)
        if read_fully:
            try:
                with open(path, "rb") as stream:
                    reader = DigestingReader(stream)
                    reader.drain()
            except OSError as e:
                raise IndexingSkipped(f"Unable to read {path}: {e}", SkipReason.UNREADABLE, e) from e
            content.attributes[CONTENT_NAMESPACE] = reader.hexdigest
            content.attributes[CONTENT_SIZE_ATTRIBUTE] = reader.size
            content.types[CONTENT_SIZE_ATTRIBUTE] = "Long"
        content.attributes[CONTENT_MIME_ATTRIBUTE] = BUNDLE_MIME_TYPE
        return entry

    def merge(self, document: DescriptorDocument, entries: Iterable[BundleDescriptorEntry]) -> int:
        """Append entries whose URI is not yet indexed.

        Returns:
            Number of appended entries
        """
        known = document.uris()
        added = 0
        for entry in entries:
            uri = entry.uri
            if uri is None or uri in known:
                continue
            document.entries.append(entry)
            known.add(uri)
            added += 1
        if added:
            document.increment = max(int(time.time() * 1000), document.increment + 1)
        return added

    def update_descriptor(self, location: Path, name: Optional[str] = None) -> DescriptorDocument:
        """Index a repository location and update its descriptor.

        Args:
            location: Repository storage location
            name: Repository name recorded in a new descriptor

        Returns:
            The up-to-date descriptor document

        Raises:
            IndexingError: If the walk or the descriptor I/O fails
        """
        location = Path(location)
        descriptor_path = location / self.descriptor_name
        logger.info("descriptor_update_started", location=str(location))

        if descriptor_path.exists():
            document = read_descriptor(descriptor_path)
        else:
            document = DescriptorDocument(name=name)
            write_descriptor(document, descriptor_path)

        entries: list[BundleDescriptorEntry] = []
        for candidate in self.scan(location):
            try:
                entries.append(self.build_entry(candidate, location))
            except IndexingSkipped as e:
                logger.warning(
                    "artifact_skipped",
                    path=str(candidate),
                    reason=e.reason.value,
                    error=e.message,
                )

        added = self.merge(document, entries)
        if added:
            write_descriptor(document, descriptor_path)

        logger.info(
            "descriptor_updated",
            location=str(location),
            indexed=len(entries),
            added=added,
            increment=document.increment,
        )
        return document
