"""Cross-reference validation of the Rule IR against the Model IR.

Checks run in two groups:
- Fatal checks: duplicate names, unresolved targets and fields, metadata
  categories and fields, non-comparable types and literal/type mismatches.
  The first failure raises and aborts the build.
- Lint checks: patterns that compile but are probably not what the author
  meant. They produce SemanticWarning records and never abort.
"""

from __future__ import annotations

import logging
import re
from itertools import combinations

from pydantic import BaseModel, Field

from rulegate.core.errors import (
    CompileReferenceError,
    CompileSyntaxError,
    CompileTypeError,
    DuplicateDefinitionError,
    SemanticWarning,
)
from rulegate.core.types import Logic, NeutralType, Operator
from rulegate.dsl.schemas import (
    Condition,
    CompoundCondition,
    MetadataRegistry,
    RuleDef,
    RuleIR,
)
from rulegate.schema.schemas import EntityDef, ModelIR, ViewDef

logger = logging.getLogger(__name__)

_PASCAL_CASE = re.compile(r"^[A-Z][A-Za-z0-9]*$")
_UPPER_SNAKE_CASE = re.compile(r"^[A-Z][A-Z0-9]*(?:_[A-Z0-9]+)*$")


class ValidationReport(BaseModel):
    """Outcome of a successful validation run."""

    rules_checked: int = 0
    warnings: list[SemanticWarning] = Field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def warnings_for(self, rule: str) -> list[SemanticWarning]:
        return [w for w in self.warnings if w.rule == rule]

    def codes(self) -> set[str]:
        return {w.code for w in self.warnings}


# =============================================================================
# Type compatibility
# =============================================================================


def literal_matches_type(value: object, neutral: NeutralType) -> bool:
    """Whether a literal can be compared against a field of this type.

    Numbers of either lexical shape are accepted for every numeric type;
    a float literal against an integer column widens at run time.
    """
    if neutral is NeutralType.STRING:
        return isinstance(value, str)
    if neutral is NeutralType.BOOL:
        return isinstance(value, bool)
    if neutral.is_numeric:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return False


def check_condition_type(rule: RuleDef, condition: Condition, neutral: NeutralType, label: str) -> None:
    """Raise CompileTypeError if the condition cannot apply to this type."""
    if not neutral.is_comparable:
        raise CompileTypeError(
            f"{label} has type {neutral.value}, which cannot be used in conditions",
            source=rule.source,
            line=rule.line,
            rule=rule.name,
        )
    if condition.operator.is_ordering and not neutral.is_orderable:
        raise CompileTypeError(
            f"operator '{condition.operator.value}' is not defined for bool {label}",
            source=rule.source,
            line=rule.line,
            rule=rule.name,
        )
    if not literal_matches_type(condition.value, neutral):
        raise CompileTypeError(
            f"{condition.value_type} literal {condition.value!r} cannot be compared with "
            f"{neutral.value} {label}",
            source=rule.source,
            line=rule.line,
            rule=rule.name,
        )


# =============================================================================
# Fatal checks
# =============================================================================


def check_unique_names(rule_ir: RuleIR) -> None:
    seen: dict[str, RuleDef] = {}
    for rule in rule_ir.rules:
        if rule.name in seen:
            first = seen[rule.name]
            where = f" (first declared at {first.source}:{first.line})" if first.source else ""
            raise DuplicateDefinitionError(
                f"duplicate rule name '{rule.name}'{where}",
                source=rule.source,
                line=rule.line,
                rule=rule.name,
            )
        seen[rule.name] = rule


def check_target(rule: RuleDef, model_ir: ModelIR) -> EntityDef:
    target = rule.target
    entity = model_ir.find_target(target.domain, target.name, target.type)
    if entity is None:
        other = model_ir.find_target(
            target.domain, target.name, "view" if target.type.value == "model" else "model"
        )
        hint = f"; a {other.kind.value} of that name exists" if other is not None else ""
        raise CompileReferenceError(
            f"target {target.type.value} '{target.name}' not found in domain '{target.domain}'{hint}",
            source=rule.source,
            line=rule.line,
            rule=rule.name,
        )
    return entity


def check_main_condition(rule: RuleDef, entity: EntityDef) -> None:
    if isinstance(rule.condition, CompoundCondition) and not rule.condition.clauses:
        raise CompileSyntaxError(
            "compound condition has no clauses", source=rule.source, line=rule.line, rule=rule.name
        )
    for condition in rule.conditions():
        field = entity.get_field(condition.field)
        if field is None:
            raise CompileReferenceError(
                _missing_field_message(entity, condition.field),
                source=rule.source,
                line=rule.line,
                rule=rule.name,
            )
        check_condition_type(rule, condition, field.type, f"field '{condition.field}'")


def _missing_field_message(entity: EntityDef, name: str) -> str:
    if isinstance(entity, ViewDef):
        referenced = any(ref.split(".")[-1] == name for ref in entity.referenced_columns)
        detail = " (used only in joins or filters)" if referenced else ""
        return f"field '{name}' is not projected by view {entity.source_view}{detail}"
    return f"field '{name}' is not declared on {entity.kind.value} {entity.name}"


def check_metadata(rule: RuleDef, registry: MetadataRegistry) -> None:
    for group in rule.metadata_requirements:
        category = registry.get(group.category)
        if category is None:
            raise CompileReferenceError(
                f"unknown metadata category '{group.category}'",
                source=rule.source,
                line=rule.line,
                rule=rule.name,
            )
        if not category.enabled:
            raise CompileReferenceError(
                f"metadata category '{group.category}' is disabled",
                source=rule.source,
                line=rule.line,
                rule=rule.name,
            )
        if not group.conditions:
            raise CompileSyntaxError(
                f"metadata requirement '{group.category}' has no conditions",
                source=rule.source,
                line=rule.line,
                rule=rule.name,
            )
        for condition in group.conditions:
            field = category.get_field(condition.field)
            if field is None:
                raise CompileReferenceError(
                    f"metadata category '{group.category}' has no field '{condition.field}'",
                    source=rule.source,
                    line=rule.line,
                    rule=rule.name,
                )
            check_condition_type(
                rule, condition, field.type, f"metadata field '{group.category}.{condition.field}'"
            )


# =============================================================================
# Lint checks
# =============================================================================


def _make_warning(code: str, rule: RuleDef, message: str, element: str | None = None) -> SemanticWarning:
    return SemanticWarning(code=code, rule=rule.name, message=message, element=element)


def lint_literal_matches_field(rule: RuleDef, entity: EntityDef) -> list[SemanticWarning]:
    """A string literal naming another field is likely a field-to-field comparison."""
    names = set(entity.field_names)
    warnings = []
    for condition in rule.conditions():
        if isinstance(condition.value, str) and condition.value in names and condition.value != condition.field:
            warnings.append(
                _make_warning(
                    "literal-matches-field",
                    rule,
                    f"literal \"{condition.value}\" in '{condition.describe()}' equals a field of "
                    f"{entity.name}; conditions compare against constants, not other fields",
                    element=condition.value,
                )
            )
    return warnings


def lint_clauses(rule: RuleDef, clauses: tuple[Condition, ...], logic: Logic, where: str) -> list[SemanticWarning]:
    """Complementary and repeated clauses within one group."""
    warnings = []
    for a, b in combinations(clauses, 2):
        if a.field != b.field or a.value != b.value or a.value_type != b.value_type:
            continue
        if {a.operator, b.operator} == {Operator.EQ, Operator.NE}:
            effect = "is always true" if logic is Logic.OR else "can never be true"
            warnings.append(
                _make_warning(
                    "complementary-clauses",
                    rule,
                    f"{where} {logic.value} of '{a.describe()}' and '{b.describe()}' {effect}",
                    element=a.field,
                )
            )
        elif a.operator is b.operator:
            warnings.append(
                _make_warning(
                    "duplicate-clause", rule, f"{where} repeats '{a.describe()}'", element=a.field
                )
            )
    return warnings


def lint_naming(rule: RuleDef) -> list[SemanticWarning]:
    warnings = []
    if not _PASCAL_CASE.match(rule.name):
        warnings.append(
            _make_warning("rule-name-style", rule, "rule names should be PascalCase", element=rule.name)
        )
    for status in (rule.positive_status, rule.negative_status):
        if not _UPPER_SNAKE_CASE.match(status):
            warnings.append(
                _make_warning(
                    "status-name-style",
                    rule,
                    f"status \"{status}\" should be UPPER_SNAKE_CASE",
                    element=status,
                )
            )
    if rule.positive_status == rule.negative_status:
        warnings.append(
            _make_warning(
                "identical-outcomes",
                rule,
                f"both outcomes are \"{rule.positive_status}\"; the rule cannot distinguish anything",
                element=rule.positive_status,
            )
        )
    return warnings


# =============================================================================
# Validator
# =============================================================================


class CrossReferenceValidator:
    """Validates a Rule IR against the Model IR it targets."""

    def __init__(self, model_ir: ModelIR):
        self.model_ir = model_ir

    def validate(self, rule_ir: RuleIR) -> ValidationReport:
        """Run every fatal check and collect lint warnings.

        Raises:
            DuplicateDefinitionError: Rule names collide
            CompileReferenceError: Unresolved target, field or metadata reference
            CompileTypeError: Non-comparable field or literal/type mismatch
            CompileSyntaxError: Empty condition group
        """
        report = ValidationReport()
        check_unique_names(rule_ir)

        for rule in rule_ir.rules:
            entity = check_target(rule, self.model_ir)
            check_metadata(rule, rule_ir.metadata)
            check_main_condition(rule, entity)

            report.warnings.extend(lint_literal_matches_field(rule, entity))
            if isinstance(rule.condition, CompoundCondition):
                report.warnings.extend(
                    lint_clauses(rule, rule.condition.clauses, rule.condition.logic, "condition")
                )
            for group in rule.metadata_requirements:
                report.warnings.extend(
                    lint_clauses(rule, group.conditions, Logic.AND, f"{group.category} requirement")
                )
            report.warnings.extend(lint_naming(rule))
            report.rules_checked += 1

        for warning in report.warnings:
            logger.warning("%s", warning)
        logger.info(
            "Validated %d rules (%d warnings)", report.rules_checked, len(report.warnings)
        )
        return report


def validate_rules(model_ir: ModelIR, rule_ir: RuleIR) -> ValidationReport:
    """Convenience function to validate a Rule IR."""
    return CrossReferenceValidator(model_ir).validate(rule_ir)
