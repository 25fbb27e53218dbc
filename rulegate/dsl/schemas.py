"""
Rule IR types.

These Pydantic models are the validated, self-describing form of the rule
documents and the authorization-metadata registry. They serialize to the
``specs.yaml`` shape consumed by downstream generators and by the rule
backend compiler.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

from rulegate.core.types import Logic, NeutralType, Operator, TargetKind

RULE_SCHEMA_VERSION = 1

LiteralValue = Union[bool, int, float, str]


def literal_kind(value: Any) -> str:
    """Lexical type of a literal: string, int, float or bool."""
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    return "string"


# =============================================================================
# Conditions
# =============================================================================


class Condition(BaseModel):
    """A single ``field operator literal`` comparison."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: Operator
    value: LiteralValue
    """Fixed at parse time from lexical shape; never a reference."""

    literal_text: str | None = None
    """Source text of a decimal-shaped literal, e.g. '1000.10'."""

    @property
    def value_type(self) -> str:
        return literal_kind(self.value)

    def describe(self) -> str:
        if self.literal_text is not None:
            value = self.literal_text
        elif isinstance(self.value, str):
            value = f'"{self.value}"'
        elif isinstance(self.value, bool):
            value = "true" if self.value else "false"
        else:
            value = str(self.value)
        return f"{self.field} {self.operator.value} {value}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "field": self.field,
            "operator": self.operator.value,
            "value": self.value,
            "value_type": self.value_type,
        }
        if self.literal_text is not None:
            data["literal_text"] = self.literal_text
        return data


class CompoundCondition(BaseModel):
    """An AND/OR combination of conditions."""

    model_config = ConfigDict(frozen=True)

    logic: Logic
    clauses: tuple[Condition, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"logic": self.logic.value, "clauses": [c.to_dict() for c in self.clauses]}


class MetadataRequirementGroup(BaseModel):
    """Authorization precondition evaluated against one context category."""

    model_config = ConfigDict(frozen=True)

    category: str
    conditions: tuple[Condition, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"category": self.category, "conditions": [c.to_dict() for c in self.conditions]}


class Target(BaseModel):
    """Reference to one model or view of the Model IR."""

    model_config = ConfigDict(frozen=True)

    type: TargetKind = TargetKind.MODEL
    name: str
    domain: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "name": self.name, "domain": self.domain}


class Outcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str


class RuleDef(BaseModel):
    """One rule, compiled from one scenario."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    target: Target
    blocking: bool = False
    metadata_requirements: tuple[MetadataRequirementGroup, ...] = ()
    condition: Union[Condition, CompoundCondition]
    then: Outcome
    otherwise: Outcome = Field(alias="else")

    description: str | None = None
    """Scenario title."""

    source: str | None = Field(default=None, exclude=True)
    line: int | None = Field(default=None, exclude=True)

    @property
    def positive_status(self) -> str:
        return self.then.status

    @property
    def negative_status(self) -> str:
        return self.otherwise.status

    def conditions(self) -> tuple[Condition, ...]:
        """Conditions of the main condition, flattened."""
        if isinstance(self.condition, CompoundCondition):
            return self.condition.clauses
        return (self.condition,)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "target": self.target.to_dict(),
            "blocking": self.blocking,
        }
        if self.description:
            data["description"] = self.description
        data["metadata_requirements"] = [g.to_dict() for g in self.metadata_requirements]
        data["condition"] = self.condition.to_dict()
        data["then"] = {"status": self.then.status}
        data["else"] = {"status": self.otherwise.status}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleDef:
        condition = data["condition"]
        if "logic" in condition:
            parsed: Condition | CompoundCondition = CompoundCondition(
                logic=condition["logic"],
                clauses=tuple(_condition(c) for c in condition.get("clauses") or []),
            )
        else:
            parsed = _condition(condition)
        return cls(
            name=data["name"],
            target=Target(**data["target"]),
            blocking=data.get("blocking", False),
            metadata_requirements=tuple(
                MetadataRequirementGroup(
                    category=g["category"],
                    conditions=tuple(_condition(c) for c in g.get("conditions") or []),
                )
                for g in data.get("metadata_requirements") or []
            ),
            condition=parsed,
            then=Outcome(**data["then"]),
            otherwise=Outcome(**data["else"]),
            description=data.get("description"),
        )


def _condition(data: dict[str, Any]) -> Condition:
    return Condition(
        field=data["field"],
        operator=Operator(data["operator"]),
        value=data["value"],
        literal_text=data.get("literal_text"),
    )


# =============================================================================
# Metadata registry
# =============================================================================


class MetadataField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: NeutralType


class MetadataCategory(BaseModel):
    """A named authorization-context object and its typed fields."""

    model_config = ConfigDict(frozen=True)

    name: str
    enabled: bool = True
    fields: tuple[MetadataField, ...] = ()

    def get_field(self, name: str) -> MetadataField | None:
        for field in self.fields:
            if field.name == name:
                return field
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "fields": [{"name": f.name, "type": f.type.value} for f in self.fields],
        }


class MetadataRegistry(BaseModel):
    """Category name -> category definition."""

    model_config = ConfigDict(frozen=True)

    categories: dict[str, MetadataCategory] = Field(default_factory=dict)

    def get(self, name: str) -> MetadataCategory | None:
        return self.categories.get(name)

    def field_type(self, category: str, field: str) -> NeutralType | None:
        entry = self.categories.get(category)
        found = entry.get_field(field) if entry else None
        return found.type if found else None

    def to_dict(self) -> dict[str, Any]:
        return {name: c.to_dict() for name, c in self.categories.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MetadataRegistry:
        categories = {}
        for name, body in (data or {}).items():
            body = body or {}
            categories[name] = MetadataCategory(
                name=name,
                enabled=body.get("enabled", True),
                fields=tuple(MetadataField(**f) for f in body.get("fields") or []),
            )
        return cls(categories=categories)


# =============================================================================
# Rule IR
# =============================================================================


class RuleIR(BaseModel):
    """Complete Rule IR for one compilation run."""

    model_config = ConfigDict(frozen=True)

    schema_version: int = RULE_SCHEMA_VERSION
    metadata: MetadataRegistry = Field(default_factory=MetadataRegistry)
    rules: tuple[RuleDef, ...] = ()

    def get_rule(self, name: str) -> RuleDef | None:
        for rule in self.rules:
            if rule.name == name:
                return rule
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "metadata": self.metadata.to_dict(),
            "rules": [r.to_dict() for r in self.rules],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleIR:
        return cls(
            schema_version=data.get("schema_version", RULE_SCHEMA_VERSION),
            metadata=MetadataRegistry.from_dict(data.get("metadata") or {}),
            rules=tuple(RuleDef.from_dict(r) for r in data.get("rules") or []),
        )

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

    @classmethod
    def from_yaml(cls, text: str) -> RuleIR:
        return cls.from_dict(yaml.safe_load(text) or {})

    def dump(self, path: str | Path) -> None:
        Path(path).write_text(self.to_yaml(), encoding="utf-8")

    @classmethod
    def load(cls, path: str | Path) -> RuleIR:
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))
