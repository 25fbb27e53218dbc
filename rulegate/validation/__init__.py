"""Validation domain - cross-reference checks between Rule IR and Model IR."""

from .service import (
    ValidationReport,
    CrossReferenceValidator,
    validate_rules,
    literal_matches_type,
    check_unique_names,
    check_target,
    check_main_condition,
    check_metadata,
    lint_literal_matches_field,
    lint_clauses,
    lint_naming,
)

__all__ = [
    "ValidationReport",
    "CrossReferenceValidator",
    "validate_rules",
    "literal_matches_type",
    "check_unique_names",
    "check_target",
    "check_main_condition",
    "check_metadata",
    "lint_literal_matches_field",
    "lint_clauses",
    "lint_naming",
]
