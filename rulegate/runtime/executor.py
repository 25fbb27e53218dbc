"""
Runtime executor for compiled rules.

Evaluation is a pure function of (CompiledRule, entity, context): it reads
through field accessors, never writes to its inputs or to shared state, and
has no error channel. A field that is missing, or present but of the wrong
type, makes its comparison false.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from rulegate.compiler.ir import (
    CompiledCompound,
    CompiledCondition,
    CompiledRule,
    CompiledRuleSet,
)
from rulegate.core.types import Logic, NeutralType, Operator, TargetKind
from .accessors import FieldAccessor, IntrospectionAccessor
from .trace import EvaluationResult, EvaluationTrace, TargetEvaluation

logger = logging.getLogger(__name__)

_MISMATCH = object()


# Operator implementations
def _eval_eq(actual: Any, expected: Any) -> bool:
    return actual == expected


def _eval_ne(actual: Any, expected: Any) -> bool:
    return actual != expected


def _eval_gt(actual: Any, expected: Any) -> bool:
    try:
        return actual > expected
    except TypeError:
        return False


def _eval_lt(actual: Any, expected: Any) -> bool:
    try:
        return actual < expected
    except TypeError:
        return False


def _eval_gte(actual: Any, expected: Any) -> bool:
    try:
        return actual >= expected
    except TypeError:
        return False


def _eval_lte(actual: Any, expected: Any) -> bool:
    try:
        return actual <= expected
    except TypeError:
        return False


OPERATORS = {
    Operator.EQ: _eval_eq,
    Operator.NE: _eval_ne,
    Operator.GT: _eval_gt,
    Operator.LT: _eval_lt,
    Operator.GTE: _eval_gte,
    Operator.LTE: _eval_lte,
}


def coerce_actual(value: Any, neutral: NeutralType) -> Any:
    """Bring a runtime value into the comparison domain of its field type.

    Returns:
        The coerced value, or a sentinel when the value cannot be compared
    """
    if neutral is NeutralType.STRING:
        return value if isinstance(value, str) else _MISMATCH
    if neutral is NeutralType.BOOL:
        return value if isinstance(value, bool) else _MISMATCH
    if isinstance(value, bool):
        return _MISMATCH
    if neutral is NeutralType.DECIMAL:
        if isinstance(value, Decimal):
            return value
        if isinstance(value, int):
            return Decimal(value)
        if isinstance(value, float):
            return Decimal(repr(value))
        if isinstance(value, str):
            try:
                return Decimal(value.strip())
            except InvalidOperation:
                return _MISMATCH
        return _MISMATCH
    if neutral.is_numeric and isinstance(value, (int, float, Decimal)):
        return float(value)
    return _MISMATCH


def compare(actual: Any, found: bool, operator: Operator, literal: Any, neutral: NeutralType) -> bool:
    """Compare a looked-up value with a compiled literal.

    Not found and null both compare false under every operator, ``!=``
    included.
    """
    if not found or actual is None:
        return False
    coerced = coerce_actual(actual, neutral)
    if coerced is _MISMATCH:
        return False
    if neutral is NeutralType.DECIMAL and coerced.is_nan():
        return False
    return OPERATORS[operator](coerced, literal)


class RuleRuntime:
    """Evaluates compiled rules against entities and authorization context."""

    def __init__(self, metadata_accessor: FieldAccessor | None = None):
        """Initialize the runtime.

        Args:
            metadata_accessor: Accessor for context objects (reflective if not provided)
        """
        self._metadata_accessor = metadata_accessor or IntrospectionAccessor()

    def evaluate(
        self,
        rule: CompiledRule,
        entity: Any,
        context: Mapping[str, Any] | None = None,
        include_trace: bool = False,
    ) -> EvaluationResult:
        """Evaluate one rule.

        Metadata groups run first, in declared order. If any group fails the
        negative status is returned and the main condition is not evaluated.

        Args:
            rule: The compiled rule
            entity: Target instance (mapping or attribute object)
            context: Category name -> authorization-context object
            include_trace: Record every comparison performed

        Returns:
            EvaluationResult
        """
        trace = EvaluationTrace(rule_name=rule.name) if include_trace else None
        context = context or {}

        for group in rule.metadata_groups:
            if group.category not in context:
                logger.debug("Rule %s: context category '%s' missing", rule.name, group.category)
                return EvaluationResult.gate_failed(rule.name, rule.negative_status, rule.blocking, trace)
            holder = context[group.category]
            for clause in group.clauses:
                if not self._check(clause, self._metadata_accessor, holder, trace, "metadata", group.category):
                    return EvaluationResult.gate_failed(rule.name, rule.negative_status, rule.blocking, trace)

        satisfied = self.evaluate_condition(rule.condition, rule.binding.accessor, entity, trace)
        return EvaluationResult(
            rule_name=rule.name,
            status=rule.positive_status if satisfied else rule.negative_status,
            blocking=rule.blocking,
            satisfied=satisfied,
            trace=trace,
        )

    def evaluate_condition(
        self,
        condition: CompiledCondition | CompiledCompound,
        accessor: FieldAccessor,
        target: Any,
        trace: EvaluationTrace | None = None,
    ) -> bool:
        """Evaluate a simple or compound condition with short-circuiting."""
        if isinstance(condition, CompiledCondition):
            return self._check(condition, accessor, target, trace, "condition")

        for clause in condition.clauses:
            result = self._check(clause, accessor, target, trace, "condition")
            if condition.logic is Logic.AND and not result:
                return False
            if condition.logic is Logic.OR and result:
                return True
        return condition.logic is Logic.AND

    def _check(
        self,
        clause: CompiledCondition,
        accessor: FieldAccessor,
        target: Any,
        trace: EvaluationTrace | None,
        phase: str,
        category: str | None = None,
    ) -> bool:
        actual, found = accessor.get_field(target, clause.field)
        result = compare(actual, found, clause.operator, clause.literal, clause.type)
        if trace is not None:
            trace.add_step(
                phase=phase,
                description=clause.text,
                category=category,
                field=clause.field,
                operator=clause.operator.value,
                expected_value=clause.literal,
                actual_value=actual,
                found=found,
                result=result,
            )
        return result

    def evaluate_target(
        self,
        rule_set: CompiledRuleSet,
        domain: str,
        name: str,
        entity: Any,
        context: Mapping[str, Any] | None = None,
        kind: TargetKind | str = TargetKind.MODEL,
        include_trace: bool = False,
    ) -> TargetEvaluation:
        """Evaluate every rule bound to a target, in declaration order."""
        outcomes = [
            self.evaluate(rule, entity, context, include_trace)
            for rule in rule_set.for_target(domain, name, kind)
        ]
        return TargetEvaluation(outcomes=outcomes)


def evaluate_rule(
    rule: CompiledRule,
    entity: Any,
    context: Mapping[str, Any] | None = None,
    include_trace: bool = False,
) -> EvaluationResult:
    """Convenience function to evaluate a single rule."""
    return RuleRuntime().evaluate(rule, entity, context, include_trace)
