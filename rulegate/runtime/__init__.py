"""Runtime domain - pure evaluation of compiled rules."""

from .accessors import FieldAccessor, ModelFieldAccessor, IntrospectionAccessor
from .trace import TraceStep, EvaluationTrace, EvaluationResult, TargetEvaluation
from .executor import RuleRuntime, OPERATORS, compare, coerce_actual, evaluate_rule
from .cache import RuleSetHolder, get_rule_set_holder, reset_rule_set_holder

__all__ = [
    # Accessors
    "FieldAccessor",
    "ModelFieldAccessor",
    "IntrospectionAccessor",
    # Results
    "TraceStep",
    "EvaluationTrace",
    "EvaluationResult",
    "TargetEvaluation",
    # Executor
    "RuleRuntime",
    "OPERATORS",
    "compare",
    "coerce_actual",
    "evaluate_rule",
    # Publication
    "RuleSetHolder",
    "get_rule_set_holder",
    "reset_rule_set_holder",
]
