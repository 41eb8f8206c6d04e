"""Bundle manifest parsing and capability/requirement building.

A bundle describes itself through ``META-INF/MANIFEST.MF`` headers. This
module reads the main section of a manifest and turns the OSGi headers into
the capability and requirement records stored in a descriptor entry.

Header values use the OSGi clause syntax::

    clause ( ',' clause ) *
    clause  ::= path ( ';' path ) * ( ';' parameter ) *
    parameter ::= key '=' value | key ':=' value | key ':' type '=' value

Values may be quoted so they can contain ``,`` and ``;``.
"""

import re
from dataclasses import dataclass, field
from typing import IO, Any, Optional

from depot.entities.descriptor import (
    BUNDLE_NAMESPACE,
    CONTENT_NAMESPACE,
    CONTENT_URL_ATTRIBUTE,
    HOST_NAMESPACE,
    IDENTITY_NAMESPACE,
    PACKAGE_NAMESPACE,
    BundleDescriptorEntry,
    Capability,
    Requirement,
)

MANIFEST_NAME = "META-INF/MANIFEST.MF"

TYPE_BUNDLE = "osgi.bundle"
TYPE_FRAGMENT = "osgi.fragment"
DEFAULT_VERSION = "0.0.0"

_VERSION_PATTERN = re.compile(r"(\d+)(?:\.(\d+)(?:\.(\d+)(?:\.([A-Za-z0-9_-]+))?)?)?")
_RANGE_PATTERN = re.compile(r"([\[(])\s*([^,\s]+)\s*,\s*([^,\s]+)\s*([\])])")


@dataclass
class Clause:
    """One parsed clause of a manifest header."""

    paths: list[str]
    attributes: dict[str, str] = field(default_factory=dict)
    directives: dict[str, str] = field(default_factory=dict)
    types: dict[str, str] = field(default_factory=dict)


def parse_manifest(stream: IO[bytes]) -> dict[str, str]:
    """Read the main section of a manifest.

    Continuation lines (starting with a single space) are appended to the
    previous header value. Reading stops at the first blank line.

    Raises:
        ValueError: If a header line has no ``name: value`` separator
    """
    headers: dict[str, str] = {}
    last: Optional[str] = None
    for raw in stream:
        line = raw.decode("utf-8").rstrip("\r\n")
        if not line:
            break
        if line.startswith(" "):
            if last is None:
                raise ValueError("Manifest continuation line without a header")
            headers[last] += line[1:]
            continue
        name, sep, value = line.partition(":")
        if not sep or not name:
            raise ValueError(f"Invalid manifest header line: {line!r}")
        last = name.strip()
        headers[last] = value.strip()
    return headers


def _split(text: str, separator: str) -> list[str]:
    """Split on a separator, ignoring separators inside double quotes."""
    parts: list[str] = []
    current: list[str] = []
    quoted = False
    escaped = False
    for char in text:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\" and quoted:
            current.append(char)
            escaped = True
        elif char == '"':
            current.append(char)
            quoted = not quoted
        elif char == separator and not quoted:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    if quoted:
        raise ValueError(f"Unterminated quoted value in: {text!r}")
    parts.append("".join(current))
    return parts


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return re.sub(r"\\(.)", r"\1", value[1:-1])
    return value


def parse_header(value: Optional[str]) -> list[Clause]:
    """Parse an OSGi header value into clauses.

    Raises:
        ValueError: If the header is malformed
    """
    if value is None or not value.strip():
        return []

    clauses: list[Clause] = []
    for raw_clause in _split(value, ","):
        clause = Clause(paths=[])
        for piece in _split(raw_clause, ";"):
            piece = piece.strip()
            if not piece:
                raise ValueError(f"Empty element in header clause: {raw_clause!r}")
            equals = piece.find("=")
            quote = piece.find('"')
            if equals == -1 or (quote != -1 and quote < equals):
                if clause.attributes or clause.directives:
                    raise ValueError(f"Path '{piece}' follows a parameter in: {raw_clause!r}")
                clause.paths.append(_unquote(piece))
                continue

            key = piece[:equals].strip()
            param_value = _unquote(piece[equals + 1 :])
            if key.endswith(":"):
                clause.directives[key[:-1].strip()] = param_value
            elif ":" in key:
                name, _, type_name = key.partition(":")
                clause.attributes[name.strip()] = param_value
                clause.types[name.strip()] = type_name.strip()
            else:
                clause.attributes[key] = param_value
        if not clause.paths:
            raise ValueError(f"Header clause has no path: {raw_clause!r}")
        clauses.append(clause)
    return clauses


def normalize_version(version: Optional[str]) -> str:
    """Normalize an OSGi version to ``major.minor.micro[.qualifier]``.

    Raises:
        ValueError: If the version is not a valid OSGi version
    """
    if version is None or not version.strip():
        return DEFAULT_VERSION
    match = _VERSION_PATTERN.fullmatch(version.strip())
    if not match:
        raise ValueError(f"Invalid version: {version!r}")
    major, minor, micro, qualifier = match.groups()
    normalized = f"{int(major)}.{int(minor or 0)}.{int(micro or 0)}"
    return f"{normalized}.{qualifier}" if qualifier else normalized


def _range_filters(attribute: str, version_range: str) -> list[str]:
    """Translate a version range into LDAP filter components."""
    version_range = version_range.strip()
    match = _RANGE_PATTERN.fullmatch(version_range)
    if not match:
        return [f"({attribute}>={normalize_version(version_range)})"]

    left, low, high, right = match.groups()
    low, high = normalize_version(low), normalize_version(high)
    lower = f"({attribute}>={low})" if left == "[" else f"(!({attribute}<={low}))"
    upper = f"({attribute}<={high})" if right == "]" else f"(!({attribute}>={high}))"
    return [lower, upper]


def version_range_filter(attribute: str, version_range: str) -> str:
    """Build an LDAP filter matching a version range on an attribute."""
    return _and(_range_filters(attribute, version_range))


def _and(components: list[str]) -> str:
    if len(components) == 1:
        return components[0]
    return "(&" + "".join(components) + ")"


def typed_value(value: str, type_name: Optional[str]) -> Any:
    """Convert a typed attribute value."""
    if not type_name or type_name == "String":
        return value
    if type_name == "Version":
        return normalize_version(value)
    if type_name == "Long":
        return int(value)
    if type_name == "Double":
        return float(value)
    if type_name.startswith("List"):
        element_type = type_name[5:-1] if type_name.endswith(">") else "String"
        return [typed_value(item.strip(), element_type) for item in value.split(",") if item.strip()]
    raise ValueError(f"Unknown attribute type: {type_name}")


def _requirement_filter(namespace: str, name: str, clause: Clause) -> str:
    components = [f"({namespace}={name})"]
    for key, value in clause.attributes.items():
        if key in {"version", "specification-version", "bundle-version"}:
            components.extend(_range_filters(key if key != "specification-version" else "version", value))
        else:
            components.append(f"({key}={value})")
    return _and(components)


def build_resource(headers: dict[str, str], uri: str) -> BundleDescriptorEntry:
    """Build a descriptor entry from bundle manifest headers.

    Args:
        headers: Main manifest section
        uri: Content location of the artifact

    Returns:
        Entry carrying identity, content, wiring capabilities and requirements

    Raises:
        ValueError: If the headers are not those of a valid bundle
    """
    bsn_clauses = parse_header(headers.get("Bundle-SymbolicName"))
    if len(bsn_clauses) != 1 or len(bsn_clauses[0].paths) != 1:
        raise ValueError("Bundle-SymbolicName must hold exactly one symbolic name")
    bsn_clause = bsn_clauses[0]
    symbolic_name = bsn_clause.paths[0]
    version = normalize_version(headers.get("Bundle-Version"))

    host_clauses = parse_header(headers.get("Fragment-Host"))
    fragment = bool(host_clauses)

    entry = BundleDescriptorEntry()

    identity = Capability(
        namespace=IDENTITY_NAMESPACE,
        attributes={
            IDENTITY_NAMESPACE: symbolic_name,
            "type": TYPE_FRAGMENT if fragment else TYPE_BUNDLE,
            "version": version,
        },
        types={"version": "Version"},
    )
    if bsn_clause.directives.get("singleton") == "true":
        identity.directives["singleton"] = "true"
    entry.capabilities.append(identity)

    entry.capabilities.append(
        Capability(namespace=CONTENT_NAMESPACE, attributes={CONTENT_URL_ATTRIBUTE: uri})
    )

    if not fragment:
        bundle_attributes = {BUNDLE_NAMESPACE: symbolic_name, "bundle-version": version}
        bundle_attributes.update(bsn_clause.attributes)
        entry.capabilities.append(
            Capability(
                namespace=BUNDLE_NAMESPACE,
                attributes=bundle_attributes,
                directives=dict(bsn_clause.directives),
                types={"bundle-version": "Version"},
            )
        )
        if bsn_clause.directives.get("fragment-attachment") != "never":
            entry.capabilities.append(
                Capability(
                    namespace=HOST_NAMESPACE,
                    attributes={HOST_NAMESPACE: symbolic_name, "bundle-version": version},
                    types={"bundle-version": "Version"},
                )
            )

    for clause in parse_header(headers.get("Export-Package")):
        exported_version = clause.attributes.get("version", clause.attributes.get("specification-version"))
        for package in clause.paths:
            attributes: dict[str, Any] = {
                key: typed_value(value, clause.types.get(key))
                for key, value in clause.attributes.items()
                if key not in {"version", "specification-version"}
            }
            attributes.update(
                {
                    PACKAGE_NAMESPACE: package,
                    "version": normalize_version(exported_version),
                    "bundle-symbolic-name": symbolic_name,
                    "bundle-version": version,
                }
            )
            entry.capabilities.append(
                Capability(
                    namespace=PACKAGE_NAMESPACE,
                    attributes=attributes,
                    directives=dict(clause.directives),
                    types={"version": "Version", "bundle-version": "Version"},
                )
            )

    for clause in parse_header(headers.get("Provide-Capability")):
        for namespace in clause.paths:
            entry.capabilities.append(
                Capability(
                    namespace=namespace,
                    attributes={k: typed_value(v, clause.types.get(k)) for k, v in clause.attributes.items()},
                    directives=dict(clause.directives),
                    types=dict(clause.types),
                )
            )

    for clause in parse_header(headers.get("Import-Package")):
        for package in clause.paths:
            directives = {"filter": _requirement_filter(PACKAGE_NAMESPACE, package, clause)}
            directives.update({k: v for k, v in clause.directives.items() if k != "filter"})
            entry.requirements.append(Requirement(namespace=PACKAGE_NAMESPACE, directives=directives))

    for clause in parse_header(headers.get("Require-Bundle")):
        for bundle in clause.paths:
            directives = {"filter": _requirement_filter(BUNDLE_NAMESPACE, bundle, clause)}
            directives.update(clause.directives)
            entry.requirements.append(Requirement(namespace=BUNDLE_NAMESPACE, directives=directives))

    for clause in host_clauses:
        for host in clause.paths:
            directives = {"filter": _requirement_filter(HOST_NAMESPACE, host, clause)}
            directives.update(clause.directives)
            entry.requirements.append(Requirement(namespace=HOST_NAMESPACE, directives=directives))

    for clause in parse_header(headers.get("Require-Capability")):
        for namespace in clause.paths:
            entry.requirements.append(
                Requirement(
                    namespace=namespace,
                    attributes={k: typed_value(v, clause.types.get(k)) for k, v in clause.attributes.items()},
                    directives=dict(clause.directives),
                    types=dict(clause.types),
                )
            )

    return entry
