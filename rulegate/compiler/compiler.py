"""
Rule backend compiler.

Binds validated Rule IR entries to their Model IR targets. The compiler
reads finished IR only, so it can equally be fed IR loaded back from
``models.yaml`` / ``specs.yaml``.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from rulegate.core.errors import CompileReferenceError
from rulegate.core.types import NeutralType
from rulegate.dsl.schemas import Condition, CompoundCondition, RuleDef, RuleIR
from rulegate.runtime.accessors import ModelFieldAccessor
from rulegate.schema.schemas import EntityDef, ModelIR
from .ir import (
    CompiledCompound,
    CompiledCondition,
    CompiledMetadataGroup,
    CompiledRule,
    CompiledRuleSet,
    TargetBinding,
    TargetRegistry,
)

logger = logging.getLogger(__name__)


def comparison_literal(value: Any, neutral: NeutralType, text: str | None = None) -> Any:
    """Convert a parsed literal to the form compared at run time.

    Decimal fields compare exactly, so their literal is built from the
    source text when it is known, never from the binary float.
    """
    if neutral is NeutralType.DECIMAL:
        if text is not None:
            return Decimal(text)
        return Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    if neutral.is_numeric:
        return float(value)
    return value


class RuleCompiler:
    """Compiles Rule IR entries to CompiledRules."""

    def __init__(self, model_ir: ModelIR):
        self.model_ir = model_ir
        self._targets = TargetRegistry()

    def compile(self, rule_ir: RuleIR) -> CompiledRuleSet:
        """Compile every rule of a Rule IR.

        Args:
            rule_ir: Validated Rule IR

        Returns:
            CompiledRuleSet in declaration order
        """
        self._targets = TargetRegistry()
        compiled = [self.compile_rule(rule, rule_ir) for rule in rule_ir.rules]
        logger.info("Compiled %d rules over %d targets", len(compiled), len(self._targets))
        return CompiledRuleSet(
            rules=compiled,
            targets=self._targets,
            model_ir=self.model_ir,
            rule_ir=rule_ir,
        )

    def compile_rule(self, rule: RuleDef, rule_ir: RuleIR) -> CompiledRule:
        binding = self._bind(rule)

        groups = []
        for group in rule.metadata_requirements:
            clauses = tuple(
                self._compile_condition(
                    rule, c, rule_ir.metadata.field_type(group.category, c.field), group.category
                )
                for c in group.conditions
            )
            groups.append(CompiledMetadataGroup(category=group.category, clauses=clauses))

        condition: CompiledCondition | CompiledCompound
        if isinstance(rule.condition, CompoundCondition):
            condition = CompiledCompound(
                logic=rule.condition.logic,
                clauses=tuple(
                    self._compile_condition(rule, c, binding.field_types.get(c.field))
                    for c in rule.condition.clauses
                ),
            )
        else:
            condition = self._compile_condition(
                rule, rule.condition, binding.field_types.get(rule.condition.field)
            )

        logger.debug("Compiled rule %s -> %s %s", rule.name, binding.kind.value, binding.name)
        return CompiledRule(
            name=rule.name,
            binding=binding,
            blocking=rule.blocking,
            metadata_groups=tuple(groups),
            condition=condition,
            positive_status=rule.positive_status,
            negative_status=rule.negative_status,
            definition=rule,
        )

    def _bind(self, rule: RuleDef) -> TargetBinding:
        target = rule.target
        entity = self.model_ir.find_target(target.domain, target.name, target.type)
        if entity is None:
            raise CompileReferenceError(
                f"target {target.type.value} '{target.name}' not found in domain '{target.domain}'",
                source=rule.source,
                line=rule.line,
                rule=rule.name,
            )
        existing = self._targets.get(entity.domain, entity.kind, entity.name)
        if existing is not None:
            return existing
        return self._targets.register(self._binding_for(entity))

    @staticmethod
    def _binding_for(entity: EntityDef) -> TargetBinding:
        fields = entity.accessible_fields()
        return TargetBinding(
            domain=entity.domain,
            kind=entity.kind,
            name=entity.name,
            source_name=entity.source_name,
            field_types={f.name: f.type for f in fields},
            accessor=ModelFieldAccessor([f.name for f in fields]),
        )

    @staticmethod
    def _compile_condition(
        rule: RuleDef,
        condition: Condition,
        neutral: NeutralType | None,
        category: str | None = None,
    ) -> CompiledCondition:
        if neutral is None:
            owner = f"metadata category '{category}'" if category else "target"
            raise CompileReferenceError(
                f"{owner} has no field '{condition.field}'",
                source=rule.source,
                line=rule.line,
                rule=rule.name,
            )
        return CompiledCondition(
            field=condition.field,
            operator=condition.operator,
            literal=comparison_literal(condition.value, neutral, condition.literal_text),
            type=neutral,
            text=condition.describe(),
        )


def compile_rules(model_ir: ModelIR, rule_ir: RuleIR) -> CompiledRuleSet:
    """Convenience function to compile a Rule IR."""
    return RuleCompiler(model_ir).compile(rule_ir)
