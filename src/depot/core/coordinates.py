"""Maven coordinate parsing and coordinate <-> path mapping.

Locators follow the ``mvn:`` grammar::

    mvn:<groupId>/<artifactId>/<version>[/<extension>[/<classifier>]]

groupId and artifactId contain no ``/`` or space, the version may be empty,
the extension defaults to ``jar``.
"""

import re
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict

from depot.core.errors import InvalidLocatorError

MAVEN_URL_PREFIX = "mvn:"
DEFAULT_EXTENSION = "jar"

_MVN_PATTERN = re.compile(r"mvn:([^/ ]+)/([^/ ]+)/([^/ ]*)(/([^/ ]+)(/([^/ ]+))?)?")


class Coordinates(BaseModel):
    """Maven-style identity of an artifact."""

    model_config = ConfigDict(frozen=True)

    group_id: Optional[str] = None
    artifact_id: Optional[str] = None
    version: Optional[str] = None
    extension: str = DEFAULT_EXTENSION
    classifier: Optional[str] = None


def is_maven_url(locator: str) -> bool:
    """Check whether a locator is a well-formed ``mvn:`` URL."""
    return _MVN_PATTERN.fullmatch(locator) is not None


def parse_maven_url(locator: str) -> Optional[Coordinates]:
    """Extract coordinates from a ``mvn:`` URL.

    Args:
        locator: Artifact locator such as ``mvn:org.foo/bar/1.0/zip/sources``

    Returns:
        Parsed coordinates, or None if the locator does not match the grammar
    """
    match = _MVN_PATTERN.fullmatch(locator)
    if not match:
        return None
    return Coordinates(
        group_id=match.group(1),
        artifact_id=match.group(2),
        version=match.group(3),
        extension=match.group(5) or DEFAULT_EXTENSION,
        classifier=match.group(7),
    )


def to_maven_url(coordinates: Coordinates) -> str:
    """Build the ``mvn:`` URL for a set of coordinates."""
    url = f"{MAVEN_URL_PREFIX}{coordinates.group_id}/{coordinates.artifact_id}/{coordinates.version or ''}"
    if coordinates.classifier:
        url += f"/{coordinates.extension}/{coordinates.classifier}"
    elif coordinates.extension != DEFAULT_EXTENSION:
        url += f"/{coordinates.extension}"
    return url


def to_path(coordinates: Coordinates) -> str:
    """Map coordinates to a path relative to the repository root.

    ``group.foo:bar:1.0`` becomes ``group/foo/bar/1.0/bar-1.0.jar``.
    """
    artifact_id = coordinates.artifact_id
    version = coordinates.version or ""
    path = ""
    if coordinates.group_id is not None:
        path += coordinates.group_id.replace(".", "/") + "/"
    path += f"{artifact_id}/{version}/{artifact_id}-{version}"
    if coordinates.classifier is not None:
        path += f"-{coordinates.classifier}"
    return path + f".{coordinates.extension}"


def maven_url_to_path(locator: str) -> str:
    """Map a ``mvn:`` URL to a repository-relative path.

    Raises:
        InvalidLocatorError: If the locator is not a valid ``mvn:`` URL
    """
    coordinates = parse_maven_url(locator)
    if coordinates is None:
        raise InvalidLocatorError(f"Invalid Maven URL: {locator}")
    return to_path(coordinates)


def infer_from_url(url: str) -> Coordinates:
    """Guess partial coordinates from a plain (non ``mvn:``) artifact URL.

    The last path segment gives the artifactId and its final ``.`` suffix the
    extension (``jar`` when there is none).

    Raises:
        InvalidLocatorError: If the URL has no path segment
    """
    path = urlsplit(url).path if "://" in url else url
    if "/" not in path:
        raise InvalidLocatorError(f"Can't find possible artifactId in the artifact URL {url}")
    segment = path.rsplit("/", 1)[1]
    if not segment:
        raise InvalidLocatorError(f"Can't find possible artifactId in the artifact URL {url}")

    stem, dot, suffix = segment.rpartition(".")
    if dot and stem and suffix:
        return Coordinates(artifact_id=stem, extension=suffix)
    return Coordinates(artifact_id=segment, extension=DEFAULT_EXTENSION)
