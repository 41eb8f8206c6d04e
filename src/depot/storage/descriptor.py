"""Descriptor document persistence as OSGi repository XML.

The document lives at the root of a repository (``repository.xml`` by
default)::

    <repository xmlns="http://www.osgi.org/xmlns/repository/v1.0.0"
                name="releases" increment="1700000000000">
      <resource>
        <capability namespace="osgi.identity">
          <attribute name="osgi.identity" value="org.foo"/>
          <attribute name="version" type="Version" value="1.0.0"/>
        </capability>
        <requirement namespace="osgi.wiring.package">
          <directive name="filter" value="(osgi.wiring.package=org.bar)"/>
        </requirement>
      </resource>
    </repository>
"""

import os
from pathlib import Path
from typing import Any, Union
from xml.etree import ElementTree as ET

from depot.core.errors import IndexingError
from depot.core.manifest import typed_value
from depot.entities.descriptor import (
    BundleDescriptorEntry,
    Capability,
    DescriptorDocument,
    Requirement,
)
from depot.observability.logging import get_logger

logger = get_logger(__name__)

REPOSITORY_XMLNS = "http://www.osgi.org/xmlns/repository/v1.0.0"


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _value_type(name: str, value: Any, types: dict[str, str]) -> str:
    if name in types:
        return types[name]
    if isinstance(value, bool):
        return "String"
    if isinstance(value, int):
        return "Long"
    if isinstance(value, float):
        return "Double"
    if isinstance(value, list):
        return "List<String>"
    return "String"


def _format_value(value: Any) -> str:
    if isinstance(value, list):
        return ",".join(str(item) for item in value)
    return str(value)


def _write_element(
    parent: ET.Element, tag: str, record: Union[Capability, Requirement]
) -> None:
    element = ET.SubElement(parent, tag, namespace=record.namespace)
    for name, value in record.directives.items():
        ET.SubElement(element, "directive", name=name, value=value)
    for name, value in record.attributes.items():
        attribute = ET.SubElement(element, "attribute", name=name)
        value_type = _value_type(name, value, record.types)
        if value_type != "String":
            attribute.set("type", value_type)
        attribute.set("value", _format_value(value))


def to_xml(document: DescriptorDocument) -> ET.ElementTree:
    """Build the XML tree for a descriptor document."""
    root = ET.Element("repository", xmlns=REPOSITORY_XMLNS)
    if document.name:
        root.set("name", document.name)
    root.set("increment", str(document.increment))
    for entry in document.entries:
        resource = ET.SubElement(root, "resource")
        for capability in entry.capabilities:
            _write_element(resource, "capability", capability)
        for requirement in entry.requirements:
            _write_element(resource, "requirement", requirement)
    ET.indent(root)
    return ET.ElementTree(root)


def _read_element(element: ET.Element) -> dict[str, Any]:
    attributes: dict[str, Any] = {}
    directives: dict[str, str] = {}
    types: dict[str, str] = {}
    for child in element:
        name = child.get("name")
        if name is None:
            continue
        kind = _local_name(child.tag)
        if kind == "directive":
            directives[name] = child.get("value", "")
        elif kind == "attribute":
            declared = child.get("type")
            attributes[name] = typed_value(child.get("value", ""), declared)
            if declared and declared != "String":
                types[name] = declared
    return {
        "namespace": element.get("namespace", ""),
        "attributes": attributes,
        "directives": directives,
        "types": types,
    }


def from_xml(root: ET.Element) -> DescriptorDocument:
    """Read a descriptor document from its XML root element."""
    document = DescriptorDocument(
        name=root.get("name"),
        increment=int(root.get("increment", "0")),
    )
    for resource in root:
        if _local_name(resource.tag) != "resource":
            continue
        entry = BundleDescriptorEntry()
        for child in resource:
            kind = _local_name(child.tag)
            if kind == "capability":
                entry.capabilities.append(Capability(**_read_element(child)))
            elif kind == "requirement":
                entry.requirements.append(Requirement(**_read_element(child)))
        document.entries.append(entry)
    return document


def read_descriptor(path: Path) -> DescriptorDocument:
    """Load a descriptor document from disk.

    Raises:
        IndexingError: If the file cannot be read or parsed
    """
    try:
        tree = ET.parse(path)
        return from_xml(tree.getroot())
    except (OSError, ET.ParseError, ValueError) as e:
        raise IndexingError(f"Unable to read descriptor {path}: {e}", original_error=e) from e


def write_descriptor(document: DescriptorDocument, path: Path) -> None:
    """Replace the descriptor file atomically.

    Raises:
        IndexingError: If the file cannot be written
    """
    tmp = path.with_name(path.name + f".tmp-{os.getpid()}")
    try:
        to_xml(document).write(tmp, encoding="utf-8", xml_declaration=True)
        os.replace(tmp, path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise IndexingError(f"Unable to write descriptor {path}: {e}", original_error=e) from e
    logger.debug("descriptor_written", path=str(path), entries=len(document.entries))
