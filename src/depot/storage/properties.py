"""Properties-file repository store.

The registry is persisted as one flat, key-indexed Java properties file::

    count=2
    item.0.name=releases
    item.0.location=/srv/depot/repository/releases
    item.0.url=/depot/repository/releases
    item.0.proxy=
    ...

Optional string fields are written as empty strings and read back as None.
``scheduling``/``schedulingAction`` are only written when
``persist_scheduling`` is enabled.
"""

import os
import re
from datetime import datetime
from pathlib import Path
from typing import IO, Optional

from depot.core.errors import StorageError
from depot.entities import Repository
from depot.observability.logging import get_logger
from depot.storage.base import RepositoryStore

logger = get_logger(__name__)

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_SEPARATOR = re.compile(r"(?<!\\)(?:\\\\)*[=:\s]")


def _unescape(text: str) -> str:
    result: list[str] = []
    i = 0
    while i < len(text):
        char = text[i]
        if char != "\\" or i + 1 == len(text):
            result.append(char)
            i += 1
            continue
        nxt = text[i + 1]
        if nxt == "u" and i + 6 <= len(text):
            code = int(text[i + 2 : i + 6], 16)
            i += 6
            # UTF-16 surrogate pair
            if 0xD800 <= code <= 0xDBFF and text[i : i + 2] == "\\u" and i + 6 <= len(text):
                low = int(text[i + 2 : i + 6], 16)
                if 0xDC00 <= low <= 0xDFFF:
                    code = 0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00)
                    i += 6
            result.append(chr(code))
            continue
        result.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(result)


def _escape(text: str, is_key: bool) -> str:
    result: list[str] = []
    for index, char in enumerate(text):
        if char == "\\":
            result.append("\\\\")
        elif char in "\t\n\r\f":
            result.append("\\" + {"\t": "t", "\n": "n", "\r": "r", "\f": "f"}[char])
        elif char in "=:#!":
            result.append("\\" + char)
        elif char == " " and (is_key or index == 0):
            result.append("\\ ")
        elif ord(char) > 0xFFFF:
            code = ord(char) - 0x10000
            result.append(f"\\u{0xD800 + (code >> 10):04x}\\u{0xDC00 + (code & 0x3FF):04x}")
        elif ord(char) < 0x20 or ord(char) > 0x7E:
            result.append(f"\\u{ord(char):04x}")
        else:
            result.append(char)
    return "".join(result)


def _logical_lines(text: str):
    """Join continuation lines (ending with an odd number of backslashes)."""
    pending: Optional[str] = None
    for raw in text.splitlines():
        line = raw.lstrip(" \t\f")
        if pending is None and (not line or line[0] in "#!"):
            continue
        trailing = len(line) - len(line.rstrip("\\"))
        continued = trailing % 2 == 1
        if continued:
            line = line[:-1]
        pending = line if pending is None else pending + line
        if not continued:
            yield pending
            pending = None
    if pending is not None:
        yield pending


def load_properties(text: str) -> dict[str, str]:
    """Parse Java properties text into a dict."""
    properties: dict[str, str] = {}
    for line in _logical_lines(text):
        match = _SEPARATOR.search(line)
        if match is None:
            properties[_unescape(line)] = ""
            continue
        split = match.end() - 1
        key = line[:split]
        rest = line[split:].lstrip(" \t\f")
        if rest[:1] in ("=", ":"):
            rest = rest[1:].lstrip(" \t\f")
        properties[_unescape(key)] = _unescape(rest)
    return properties


def dump_properties(properties: dict[str, str], stream: IO[str], comment: Optional[str] = None) -> None:
    """Write a dict as Java properties text."""
    if comment:
        stream.write(f"#{comment}\n")
    stream.write(f"#{datetime.now().strftime('%a %b %d %H:%M:%S %Y')}\n")
    for key, value in properties.items():
        stream.write(f"{_escape(key, True)}={_escape(value, False)}\n")


def _optional(value: Optional[str]) -> Optional[str]:
    return value if value else None


class PropertiesRepositoryStore(RepositoryStore):
    """Repository store backed by a single properties file."""

    def __init__(self, path: Path, persist_scheduling: bool = False) -> None:
        """Initialize the store.

        Args:
            path: Location of the properties file
            persist_scheduling: Also write scheduling and schedulingAction
        """
        self.path = Path(path)
        self.persist_scheduling = persist_scheduling

    def save(self, repositories: list[Repository]) -> None:
        properties = {"count": str(len(repositories))}
        for i, repository in enumerate(repositories):
            prefix = f"item.{i}."
            properties[prefix + "name"] = repository.name
            properties[prefix + "location"] = repository.location or ""
            properties[prefix + "url"] = repository.url
            properties[prefix + "proxy"] = repository.proxy or ""
            properties[prefix + "mirror"] = "true" if repository.mirror else "false"
            properties[prefix + "realm"] = repository.realm or ""
            properties[prefix + "downloadRole"] = repository.download_role or ""
            properties[prefix + "uploadRole"] = repository.upload_role or ""
            properties[prefix + "poolSize"] = str(repository.pool_size)
            if self.persist_scheduling:
                properties[prefix + "scheduling"] = repository.scheduling or ""
                properties[prefix + "schedulingAction"] = repository.scheduling_action or ""

        tmp = self.path.with_name(self.path.name + f".tmp-{os.getpid()}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="latin-1") as stream:
                dump_properties(properties, stream, "Depot Repositories DB")
            os.replace(tmp, self.path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Unable to write repositories DB {self.path}: {e}", e) from e

        logger.debug("repositories_saved", path=str(self.path), count=len(repositories))

    def load(self) -> list[Repository]:
        if not self.path.exists():
            return []
        try:
            properties = load_properties(self.path.read_text(encoding="latin-1"))
        except OSError as e:
            raise StorageError(f"Unable to read repositories DB {self.path}: {e}", e) from e
        except ValueError as e:
            raise StorageError(f"Corrupt repositories DB {self.path}: {e}", e) from e

        repositories: list[Repository] = []
        try:
            count = int(properties.get("count", "0"))
            for i in range(count):
                prefix = f"item.{i}."
                get = lambda field: properties.get(prefix + field, "")  # noqa: E731
                repositories.append(
                    Repository(
                        name=get("name"),
                        location=_optional(get("location")),
                        url=get("url"),
                        proxy=_optional(get("proxy")),
                        mirror=get("mirror").lower() == "true",
                        realm=_optional(get("realm")),
                        download_role=_optional(get("downloadRole")),
                        upload_role=_optional(get("uploadRole")),
                        pool_size=int(get("poolSize") or 8),
                        scheduling=_optional(get("scheduling")) if self.persist_scheduling else None,
                        scheduling_action=(
                            _optional(get("schedulingAction")) if self.persist_scheduling else None
                        ),
                    )
                )
        except ValueError as e:
            raise StorageError(f"Corrupt repositories DB {self.path}: {e}", e) from e

        logger.debug("repositories_loaded", path=str(self.path), count=len(repositories))
        return repositories
