"""Shared fixtures for unit tests."""

import zipfile
from pathlib import Path
from typing import Callable, Optional

import pytest


def write_bundle(path: Path, headers: Optional[dict[str, str]] = None, manifest: bool = True) -> Path:
    """Write a jar at path with the given main manifest headers."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        if manifest:
            lines = ["Manifest-Version: 1.0"]
            lines += [f"{name}: {value}" for name, value in (headers or {}).items()]
            archive.writestr("META-INF/MANIFEST.MF", "\r\n".join(lines) + "\r\n\r\n")
        archive.writestr("org/foo/Foo.class", b"\xca\xfe\xba\xbe")
    return path


@pytest.fixture
def bundle_factory() -> Callable[..., Path]:
    """Return a function that writes bundle jars."""
    return write_bundle


@pytest.fixture
def foo_headers() -> dict[str, str]:
    return {
        "Bundle-ManifestVersion": "2",
        "Bundle-SymbolicName": "org.foo",
        "Bundle-Version": "1.2",
        "Export-Package": 'org.foo;version="1.2.0",org.foo.api',
        "Import-Package": 'org.bar;version="[1.0,2.0)"',
    }
