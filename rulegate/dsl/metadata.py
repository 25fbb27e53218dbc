"""Authorization-metadata registry loader."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from rulegate.core.errors import CompileSyntaxError, CompileTypeError
from rulegate.core.types import normalize_type_name
from .schemas import MetadataCategory, MetadataField, MetadataRegistry

logger = logging.getLogger(__name__)


def parse_metadata(text: str, source: str | None = None) -> MetadataRegistry:
    """Parse a metadata registry document.

    The document maps category names to an enabled flag and a field list::

        metadata:
          roles:
            enabled: true
            fields:
              - name: roleLevel
                type: int

    Raises:
        CompileSyntaxError: Malformed YAML or unexpected structure
        CompileTypeError: Field of an unknown type
    """
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        raise CompileSyntaxError(
            f"invalid metadata registry: {getattr(e, 'problem', None) or e}",
            source=source,
            line=mark.line + 1 if mark else None,
            column=mark.column + 1 if mark else None,
        ) from e

    if not isinstance(data, dict):
        raise CompileSyntaxError("metadata registry must be a mapping", source=source, line=1)
    body = data.get("metadata", data)
    if not isinstance(body, dict):
        raise CompileSyntaxError("'metadata' must map category names to definitions", source=source)

    categories: dict[str, MetadataCategory] = {}
    for name, definition in body.items():
        categories[str(name)] = _category(str(name), definition or {}, source)

    logger.debug(
        "Loaded %d metadata categories (%d enabled)",
        len(categories),
        sum(1 for c in categories.values() if c.enabled),
    )
    return MetadataRegistry(categories=categories)


def _category(name: str, definition: Any, source: str | None) -> MetadataCategory:
    if not isinstance(definition, dict):
        raise CompileSyntaxError(f"metadata category '{name}' must be a mapping", source=source)
    enabled = definition.get("enabled", True)
    if not isinstance(enabled, bool):
        raise CompileSyntaxError(f"metadata category '{name}': 'enabled' must be true or false", source=source)

    fields: list[MetadataField] = []
    for entry in definition.get("fields") or []:
        if not isinstance(entry, dict) or "name" not in entry or "type" not in entry:
            raise CompileSyntaxError(
                f"metadata category '{name}': each field needs a name and a type", source=source
            )
        neutral = normalize_type_name(str(entry["type"]))
        if neutral is None:
            raise CompileTypeError(
                f"metadata field '{name}.{entry['name']}' has unknown type '{entry['type']}'",
                source=source,
            )
        if any(f.name == entry["name"] for f in fields):
            raise CompileSyntaxError(
                f"metadata category '{name}' declares field '{entry['name']}' twice", source=source
            )
        fields.append(MetadataField(name=str(entry["name"]), type=neutral))
    return MetadataCategory(name=name, enabled=enabled, fields=tuple(fields))


def load_metadata_registry(path: str | Path) -> MetadataRegistry:
    """Load a registry file; a missing file is an empty registry."""
    path = Path(path)
    if not path.exists():
        logger.info("No metadata registry at %s", path)
        return MetadataRegistry()
    return parse_metadata(path.read_text(encoding="utf-8"), source=str(path))
