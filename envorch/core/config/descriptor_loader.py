"""
Component descriptor loader — reads component YAML files.

A component file looks like::

    name: web
    version: 1.4.0
    dependencies:
      api: ^2.0.0
    services:
      frontend:
        image: ghcr.io/acme/web:1.4.0
        interfaces:
          http: 8080
        resources:
          cpu: 250m
          memory: 256Mi

Dependencies may also be a list of ``{name, version}`` mappings, and
services a list of mappings with a ``name`` key. Every file in a catalog
directory is one version of one component.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from envorch.core.errors import DescriptorError
from envorch.core.models.descriptor import ComponentDescriptor
from envorch.core.services.version_constraint import is_valid_constraint, parse_version

logger = logging.getLogger(__name__)

DESCRIPTOR_SUFFIXES = (".yml", ".yaml")

# Never component files, even when they sit in a catalog directory
IGNORED_FILES = frozenset({"envorch.yml", "envorch.yaml"})


def _normalize_dependencies(raw: Any, path: Path) -> list[dict[str, str]]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        items = [{"name": str(k), "constraint": "*" if v is None else str(v)} for k, v in raw.items()]
    elif isinstance(raw, list):
        items = []
        for entry in raw:
            if isinstance(entry, str):
                name, _, constraint = entry.partition(":")
                items.append({"name": name.strip(), "constraint": constraint.strip() or "*"})
            elif isinstance(entry, dict) and "name" in entry:
                constraint = entry.get("version", entry.get("constraint", "*"))
                items.append({"name": str(entry["name"]), "constraint": str(constraint or "*")})
            else:
                raise DescriptorError(str(path), f"cannot parse dependency entry {entry!r}")
    else:
        raise DescriptorError(str(path), "'dependencies' must be a mapping or a list")

    for item in items:
        if not is_valid_constraint(item["constraint"]):
            raise DescriptorError(
                str(path),
                f"invalid version constraint '{item['constraint']}' for dependency '{item['name']}'",
            )
    return items


def _normalize_interfaces(raw: Any) -> dict[str, Any]:
    if not raw:
        return {}
    if isinstance(raw, dict):
        # Shorthand: "http: 8080"
        return {
            str(k): {"port": v} if isinstance(v, int) else v
            for k, v in raw.items()
        }
    return raw


def _normalize_services(raw: Any, path: Path) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        entries = []
        for name, body in raw.items():
            if body is not None and not isinstance(body, dict):
                raise DescriptorError(str(path), f"service '{name}' must be a mapping")
            body = dict(body or {})
            body["name"] = str(name)
            entries.append(body)
    elif isinstance(raw, list):
        entries = [dict(e) for e in raw if isinstance(e, dict)]
    else:
        raise DescriptorError(str(path), "'services' must be a mapping or a list")

    for entry in entries:
        entry["interfaces"] = _normalize_interfaces(entry.get("interfaces"))
        if isinstance(entry.get("build"), str):
            entry["build"] = {"context": entry["build"]}
        if isinstance(entry.get("command"), str):
            entry["command"] = entry["command"].split()
        env = entry.get("environment") or {}
        if not isinstance(env, dict):
            raise DescriptorError(
                str(path), f"'environment' of service '{entry.get('name')}' must be a mapping"
            )
        entry["environment"] = {str(k): "" if v is None else str(v) for k, v in env.items()}
    return entries


def parse_descriptor(data: Any, source: Path) -> ComponentDescriptor:
    """Validate already-parsed YAML data into a descriptor."""
    if not isinstance(data, dict):
        raise DescriptorError(
            str(source), f"expected a YAML mapping, got {type(data).__name__}"
        )

    payload = {
        "name": data.get("name"),
        "version": str(data.get("version", "")),
        "description": data.get("description", "") or "",
        "dependencies": _normalize_dependencies(data.get("dependencies"), source),
        "services": _normalize_services(data.get("services"), source),
        "source": str(source),
    }

    try:
        return ComponentDescriptor.model_validate(payload)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'descriptor'}: {err['msg']}"
            for err in e.errors()
        )
        raise DescriptorError(str(source), errors) from e


def load_descriptor(path: Path) -> ComponentDescriptor:
    """Load a single component descriptor.

    Raises:
        DescriptorError: If the file is missing, unreadable or invalid.
    """
    if not path.is_file():
        raise DescriptorError(str(path), "file not found")

    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DescriptorError(str(path), f"cannot read file: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise DescriptorError(str(path), f"invalid YAML: {e}") from e

    descriptor = parse_descriptor(data, path)
    logger.debug("Loaded component %s from %s", descriptor.key, path)
    return descriptor


class ComponentCatalog:
    """Every known version of every component, keyed by name."""

    def __init__(self, descriptors: list[ComponentDescriptor] | None = None):
        self._components: dict[str, dict[str, ComponentDescriptor]] = {}
        for descriptor in descriptors or []:
            self.add(descriptor)

    def add(self, descriptor: ComponentDescriptor) -> None:
        """Register a descriptor. A later duplicate of name@version wins."""
        versions = self._components.setdefault(descriptor.name, {})
        if descriptor.version in versions:
            logger.warning(
                "Component %s defined twice (%s, %s); using the latter",
                descriptor.key,
                versions[descriptor.version].source,
                descriptor.source,
            )
        versions[descriptor.version] = descriptor

    def names(self) -> list[str]:
        return sorted(self._components)

    def versions(self, name: str) -> list[ComponentDescriptor]:
        """All versions of a component, newest first."""
        return sorted(
            self._components.get(name, {}).values(),
            key=lambda d: parse_version(d.version),
            reverse=True,
        )

    def get(self, name: str, version: str) -> ComponentDescriptor | None:
        return self._components.get(name, {}).get(version)

    def __contains__(self, name: object) -> bool:
        return name in self._components

    def __len__(self) -> int:
        return sum(len(v) for v in self._components.values())


def discover_components(dirs: list[Path]) -> ComponentCatalog:
    """Walk catalog directories and load every descriptor found.

    Unparsable files are logged and skipped: a broken unrelated file must
    not block deploying a component that doesn't need it.
    """
    catalog = ComponentCatalog()
    seen: set[Path] = set()

    for directory in dirs:
        if not directory.is_dir():
            logger.debug("Catalog directory not found: %s", directory)
            continue
        for path in sorted(directory.rglob("*")):
            if path.suffix not in DESCRIPTOR_SUFFIXES or path.name in IGNORED_FILES:
                continue
            if any(part.startswith(".") for part in path.relative_to(directory).parts):
                continue
            if not path.is_file():
                continue
            resolved = path.resolve()
            if resolved in seen:
                continue
            seen.add(resolved)
            try:
                catalog.add(load_descriptor(path))
            except DescriptorError as e:
                logger.warning("Skipping %s", e)

    logger.info("Discovered %d component versions in %d directories", len(catalog), len(dirs))
    return catalog
