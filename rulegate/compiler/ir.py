"""
Compiled rule types.

A CompiledRule is a Rule IR entry bound to its resolved target: every field
name is already resolved to a NeutralType and every literal converted to the
form used at comparison time, so evaluation never consults the schema.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterator, Union

from pydantic import BaseModel, ConfigDict, Field

from rulegate.core.types import Logic, NeutralType, Operator, TargetKind
from rulegate.dsl.schemas import RuleDef, RuleIR
from rulegate.schema.schemas import ModelIR


class CompiledCondition(BaseModel):
    """A single comparison with its field type resolved."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: Operator
    literal: Union[bool, Decimal, float, str]
    """Comparison form: Decimal for decimal fields, float for other numerics."""

    type: NeutralType
    text: str
    """Human-readable form, e.g. 'severity_level >= 7'."""


class CompiledCompound(BaseModel):
    model_config = ConfigDict(frozen=True)

    logic: Logic
    clauses: tuple[CompiledCondition, ...]


class CompiledMetadataGroup(BaseModel):
    """AND over rows, evaluated against one context category."""

    model_config = ConfigDict(frozen=True)

    category: str
    clauses: tuple[CompiledCondition, ...]


class TargetBinding(BaseModel):
    """A resolved target: its field set and the accessor built for it."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    domain: str
    kind: TargetKind
    name: str
    """Compiled model/view name."""

    source_name: str
    """SQL table/view name."""

    field_types: dict[str, NeutralType]
    accessor: Any = Field(exclude=True)
    """FieldAccessor over the field set."""

    @property
    def key(self) -> tuple[str, TargetKind, str]:
        return (self.domain, self.kind, self.name)


class CompiledRule(BaseModel):
    """Immutable unit consumed by the evaluation engine."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    binding: TargetBinding
    blocking: bool
    metadata_groups: tuple[CompiledMetadataGroup, ...] = ()
    condition: Union[CompiledCondition, CompiledCompound]
    positive_status: str
    negative_status: str
    definition: RuleDef


class TargetRegistry:
    """Target identity -> binding, built once per compilation run."""

    def __init__(self, bindings: list[TargetBinding] | None = None):
        self._bindings: dict[tuple[str, TargetKind, str], TargetBinding] = {}
        for binding in bindings or []:
            self.register(binding)

    def register(self, binding: TargetBinding) -> TargetBinding:
        return self._bindings.setdefault(binding.key, binding)

    def get(self, domain: str, kind: TargetKind | str, name: str) -> TargetBinding | None:
        return self._bindings.get((domain, TargetKind(kind), name))

    def resolve(self, domain: str, name: str, kind: TargetKind | str = TargetKind.MODEL) -> TargetBinding | None:
        """Find a binding by compiled name or SQL name."""
        kind = TargetKind(kind)
        direct = self._bindings.get((domain, kind, name))
        if direct is not None:
            return direct
        for binding in self._bindings.values():
            if binding.domain == domain and binding.kind is kind and binding.source_name == name.lower():
                return binding
        return None

    def __iter__(self) -> Iterator[TargetBinding]:
        return iter(self._bindings.values())

    def __len__(self) -> int:
        return len(self._bindings)


class CompiledRuleSet:
    """All compiled rules of one build, plus the IRs they came from.

    Treated as immutable once built; a rebuild produces a new set that is
    published by swapping the reference.
    """

    def __init__(
        self,
        rules: list[CompiledRule],
        targets: TargetRegistry,
        model_ir: ModelIR,
        rule_ir: RuleIR,
    ):
        self._rules = tuple(rules)
        self._by_name = {rule.name: rule for rule in self._rules}
        self.targets = targets
        self.model_ir = model_ir
        self.rule_ir = rule_ir

    @property
    def rules(self) -> tuple[CompiledRule, ...]:
        return self._rules

    @property
    def names(self) -> list[str]:
        return [rule.name for rule in self._rules]

    def get(self, name: str) -> CompiledRule | None:
        return self._by_name.get(name)

    def for_target(self, domain: str, name: str, kind: TargetKind | str = TargetKind.MODEL) -> list[CompiledRule]:
        """Rules bound to a target, in declaration order."""
        binding = self.targets.resolve(domain, name, kind)
        if binding is None:
            return []
        return [rule for rule in self._rules if rule.binding.key == binding.key]

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[CompiledRule]:
        return iter(self._rules)
