"""
Model IR types.

The Model IR is the neutral-typed, per-domain description of every table and
view compiled from SQL DDL. It is the only schema contract downstream stages
see: nothing after the schema compiler re-reads SQL text.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator

import yaml
from pydantic import BaseModel, ConfigDict, Field

from rulegate.core.types import NeutralType, TargetKind

SCHEMA_VERSION = 1


class FieldDef(BaseModel):
    """A column of a model, or a projected column of a view."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: NeutralType
    nullable: bool = True
    is_primary_key: bool = False
    ordinal: int
    """1-based position, stable across recompilation."""

    primary_key_position: int | None = None
    """Position within a composite primary key."""

    precision: int | None = None
    scale: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "nullable": self.nullable,
            "is_primary_key": self.is_primary_key,
            "ordinal": self.ordinal,
        }
        if self.primary_key_position is not None:
            data["primary_key_position"] = self.primary_key_position
        if self.precision is not None:
            data["precision"] = self.precision
        if self.scale is not None:
            data["scale"] = self.scale
        return data


class EntityDef(BaseModel):
    """Common shape of models and views."""

    model_config = ConfigDict(frozen=True)

    name: str
    domain: str
    resource: str
    fields: tuple[FieldDef, ...] = ()

    @property
    def kind(self) -> TargetKind:
        raise NotImplementedError

    @property
    def source_name(self) -> str:
        raise NotImplementedError

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def get_field(self, name: str) -> FieldDef | None:
        for field in self.fields:
            if field.name == name:
                return field
        return None

    def accessible_fields(self) -> tuple[FieldDef, ...]:
        """Fields a rule may reference on this entity."""
        return self.fields

    def matches(self, name: str) -> bool:
        return name.lower() == self.source_name or name == self.name


class ModelDef(EntityDef):
    """A table compiled to a model; every declared column is a field."""

    source_table: str

    @property
    def kind(self) -> TargetKind:
        return TargetKind.MODEL

    @property
    def source_name(self) -> str:
        return self.source_table

    @property
    def primary_key(self) -> list[str]:
        keys = [f for f in self.fields if f.is_primary_key]
        keys.sort(key=lambda f: f.primary_key_position or 0)
        return [f.name for f in keys]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "source_table": self.source_table,
            "resource": self.resource,
            "fields": [f.to_dict() for f in self.fields],
        }


class ViewDef(EntityDef):
    """A view; only projected columns become fields."""

    source_view: str
    referenced_columns: tuple[str, ...] = ()
    """Columns used only in joins, filters or grouping."""

    @property
    def kind(self) -> TargetKind:
        return TargetKind.VIEW

    @property
    def source_name(self) -> str:
        return self.source_view

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "source_view": self.source_view,
            "resource": self.resource,
            "fields": [f.to_dict() for f in self.fields],
            "referenced_columns": list(self.referenced_columns),
        }


class DomainSchema(BaseModel):
    """All models and views of one domain, in declaration order."""

    model_config = ConfigDict(frozen=True)

    name: str
    models: tuple[ModelDef, ...] = ()
    views: tuple[ViewDef, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "models": [m.to_dict() for m in self.models],
            "views": [v.to_dict() for v in self.views],
        }


class ModelIR(BaseModel):
    """Complete Model IR for one compilation run."""

    model_config = ConfigDict(frozen=True)

    schema_version: int = SCHEMA_VERSION
    domains: dict[str, DomainSchema] = Field(default_factory=dict)

    def entities(self) -> Iterator[EntityDef]:
        for domain in self.domains.values():
            yield from domain.models
            yield from domain.views

    def find_target(
        self,
        domain: str,
        name: str,
        kind: TargetKind | str = TargetKind.MODEL,
    ) -> EntityDef | None:
        """Resolve a rule target.

        Args:
            domain: Domain the target lives in
            name: SQL table/view name or compiled model/view name
            kind: model or view

        Returns:
            The matching entry, or None
        """
        schema = self.domains.get(domain)
        if schema is None:
            return None
        candidates = schema.views if TargetKind(kind) is TargetKind.VIEW else schema.models
        for entity in candidates:
            if entity.matches(name):
                return entity
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "domains": {name: d.to_dict() for name, d in self.domains.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelIR:
        domains: dict[str, DomainSchema] = {}
        for name, body in (data.get("domains") or {}).items():
            body = body or {}
            models = tuple(
                ModelDef(domain=name, **_entity_kwargs(m)) for m in body.get("models") or []
            )
            views = tuple(
                ViewDef(domain=name, **_entity_kwargs(v)) for v in body.get("views") or []
            )
            domains[name] = DomainSchema(name=name, models=models, views=views)
        return cls(schema_version=data.get("schema_version", SCHEMA_VERSION), domains=domains)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

    @classmethod
    def from_yaml(cls, text: str) -> ModelIR:
        return cls.from_dict(yaml.safe_load(text) or {})

    def dump(self, path: str | Path) -> None:
        Path(path).write_text(self.to_yaml(), encoding="utf-8")

    @classmethod
    def load(cls, path: str | Path) -> ModelIR:
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))


def _entity_kwargs(data: dict[str, Any]) -> dict[str, Any]:
    kwargs = dict(data)
    kwargs["fields"] = tuple(FieldDef(**f) for f in data.get("fields") or [])
    if "referenced_columns" in kwargs:
        kwargs["referenced_columns"] = tuple(kwargs["referenced_columns"] or ())
    kwargs.setdefault("resource", "")
    return kwargs
