"""Artifact transfer over HTTP and the local filesystem using httpx."""

import os
import shutil
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import urlsplit
from urllib.request import url2pathname

import httpx

from depot.config.schema import TransferConfig
from depot.core.coordinates import Coordinates, is_maven_url, parse_maven_url, to_path
from depot.core.errors import InvalidLocatorError, TransferError
from depot.observability.logging import get_logger
from depot.providers.base import ArtifactTransfer

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


def _is_http(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def _local_path(url: str) -> Path:
    """Filesystem path of a ``file:`` URL or a plain path."""
    if url.startswith("file:"):
        return Path(url2pathname(urlsplit(url).path))
    return Path(url)


def _join(base: str, relative: str) -> str:
    return base.rstrip("/") + "/" + relative


def artifact_target(coordinates: Coordinates, repository_location: Path) -> Path:
    """Resolve the coordinate path of an artifact inside a repository.

    Empty path segments (an absent version) are collapsed.

    Raises:
        InvalidLocatorError: If the coordinates have no artifactId or the
            path escapes the repository
    """
    if not coordinates.artifact_id:
        raise InvalidLocatorError("Artifact coordinates require an artifactId")
    root = Path(os.path.normpath(Path(repository_location).absolute()))
    target = Path(os.path.normpath(root / to_path(coordinates)))
    if root not in target.parents:
        raise InvalidLocatorError(f"Artifact path {target} is outside of {root}")
    return target


def _copy_into(local_file: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(target.name + f".tmp-{os.getpid()}")
    try:
        shutil.copyfile(local_file, tmp)
        os.replace(tmp, target)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


class HttpArtifactTransfer(ArtifactTransfer):
    """Fetches and deploys artifacts over http(s), ``file:`` URLs and plain paths.

    ``mvn:`` locators are resolved against the configured remote repositories,
    first match wins.
    """

    def __init__(self, config: TransferConfig, client: Optional[httpx.Client] = None):
        """Initialize the transfer.

        Args:
            config: Transfer configuration
            client: Preconfigured httpx client, built from config when None
        """
        self.config = config
        self.client = client or httpx.Client(
            timeout=config.timeout,
            follow_redirects=config.follow_redirects,
            headers=config.extra_params.get("headers"),
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "HttpArtifactTransfer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def fetch(self, url: str) -> Iterator[bytes]:
        if url.startswith("mvn:"):
            yield from self._fetch_maven(url)
        elif _is_http(url):
            yield from self._fetch_http(url)
        else:
            yield from self._fetch_local(url)

    def _fetch_maven(self, url: str) -> Iterator[bytes]:
        if not is_maven_url(url):
            raise InvalidLocatorError(f"Invalid Maven URL: {url}")
        relative = to_path(parse_maven_url(url))

        errors: list[str] = []
        for remote in self.config.remote_repositories:
            candidate = _join(remote, relative)
            chunks = self.fetch(candidate)
            try:
                first = next(chunks, b"")
            except TransferError as e:
                logger.debug("artifact_not_in_remote", url=url, remote=remote, error=e.message)
                errors.append(e.message)
                continue
            logger.info("artifact_resolved", url=url, location=candidate)
            yield first
            yield from chunks
            return
        raise TransferError(f"Unable to resolve {url} in {self.config.remote_repositories}: {errors}")

    def _fetch_http(self, url: str) -> Iterator[bytes]:
        try:
            with self.client.stream("GET", url) as response:
                response.raise_for_status()
                yield from response.iter_bytes(CHUNK_SIZE)
        except httpx.HTTPStatusError as e:
            raise TransferError(
                f"Unable to fetch {url}: HTTP {e.response.status_code}", original_error=e
            ) from e
        except httpx.HTTPError as e:
            raise TransferError(f"Unable to fetch {url}: {e}", original_error=e) from e

    def _fetch_local(self, url: str) -> Iterator[bytes]:
        path = _local_path(url)
        try:
            with open(path, "rb") as stream:
                yield from iter(lambda: stream.read(CHUNK_SIZE), b"")
        except OSError as e:
            raise TransferError(f"Unable to read {url}: {e}", original_error=e) from e

    def install(self, coordinates: Coordinates, local_file: Path, repository_location: Path) -> Path:
        target = artifact_target(coordinates, repository_location)
        try:
            _copy_into(Path(local_file), target)
        except OSError as e:
            raise TransferError(f"Unable to install {local_file} to {target}: {e}", original_error=e) from e
        logger.info("artifact_installed", path=str(target))
        return target

    def deploy(self, coordinates: Coordinates, local_file: Path, remote_repository_url: str) -> str:
        if not coordinates.artifact_id:
            raise InvalidLocatorError("Artifact coordinates require an artifactId")
        relative = os.path.normpath(to_path(coordinates)).replace(os.sep, "/")
        url = _join(remote_repository_url, relative)

        if _is_http(url):
            try:
                response = self.client.put(url, content=Path(local_file).read_bytes())
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise TransferError(
                    f"Unable to deploy to {url}: HTTP {e.response.status_code}", original_error=e
                ) from e
            except (httpx.HTTPError, OSError) as e:
                raise TransferError(f"Unable to deploy to {url}: {e}", original_error=e) from e
        else:
            try:
                _copy_into(Path(local_file), _local_path(url))
            except OSError as e:
                raise TransferError(f"Unable to deploy to {url}: {e}", original_error=e) from e

        logger.info("artifact_deployed", url=url)
        return url
