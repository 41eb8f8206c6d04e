"""Descriptor entities - the per-repository index of bundle artifacts."""

from typing import Any, Optional

from pydantic import BaseModel, Field

IDENTITY_NAMESPACE = "osgi.identity"
CONTENT_NAMESPACE = "osgi.content"
BUNDLE_NAMESPACE = "osgi.wiring.bundle"
HOST_NAMESPACE = "osgi.wiring.host"
PACKAGE_NAMESPACE = "osgi.wiring.package"

CONTENT_URL_ATTRIBUTE = "url"
CONTENT_SIZE_ATTRIBUTE = "size"
CONTENT_MIME_ATTRIBUTE = "mime"
BUNDLE_MIME_TYPE = "application/vnd.osgi.bundle"


class Capability(BaseModel):
    """Something a resource provides, described by namespaced attributes.

    ``types`` records the declared type of attributes that are not plain
    strings (``Version``, ``Long``, ``Double``, ``List<String>``...).
    """

    namespace: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    directives: dict[str, str] = Field(default_factory=dict)
    types: dict[str, str] = Field(default_factory=dict)


class Requirement(BaseModel):
    """Something a resource needs, usually expressed as a filter directive."""

    namespace: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    directives: dict[str, str] = Field(default_factory=dict)
    types: dict[str, str] = Field(default_factory=dict)


class BundleDescriptorEntry(BaseModel):
    """One indexed artifact inside a descriptor document."""

    capabilities: list[Capability] = Field(default_factory=list)
    requirements: list[Requirement] = Field(default_factory=list)

    def capability(self, namespace: str) -> Optional[Capability]:
        for cap in self.capabilities:
            if cap.namespace == namespace:
                return cap
        return None

    def _content_attribute(self, name: str) -> Any:
        content = self.capability(CONTENT_NAMESPACE)
        return content.attributes.get(name) if content else None

    @property
    def identity(self) -> Optional[tuple[str, str]]:
        """(symbolic name, version) of the artifact."""
        cap = self.capability(IDENTITY_NAMESPACE)
        if cap is None:
            return None
        return cap.attributes.get(IDENTITY_NAMESPACE), str(cap.attributes.get("version", "0.0.0"))

    @property
    def uri(self) -> Optional[str]:
        return self._content_attribute(CONTENT_URL_ATTRIBUTE)

    @property
    def digest(self) -> Optional[str]:
        return self._content_attribute(CONTENT_NAMESPACE)

    @property
    def size(self) -> Optional[int]:
        return self._content_attribute(CONTENT_SIZE_ATTRIBUTE)

    @property
    def mime_type(self) -> Optional[str]:
        return self._content_attribute(CONTENT_MIME_ATTRIBUTE)


class DescriptorDocument(BaseModel):
    """The descriptor written at the root of a repository.

    ``increment`` is a last-modified marker in milliseconds since the epoch.
    """

    name: Optional[str] = None
    increment: int = 0
    entries: list[BundleDescriptorEntry] = Field(default_factory=list)

    def uris(self) -> set[str]:
        return {entry.uri for entry in self.entries if entry.uri is not None}
