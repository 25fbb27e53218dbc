"""API domain - HTTP surface over the published rule set."""

from .routes import router, get_rule_set, get_runtime, context_from_headers
from .schemas import (
    EvaluateRequest,
    EvaluationResponse,
    TargetEvaluationResponse,
    TraceStepResponse,
    RuleInfo,
    RulesListResponse,
    RuleDetailResponse,
)

__all__ = [
    # Router
    "router",
    "get_rule_set",
    "get_runtime",
    "context_from_headers",
    # Schemas
    "EvaluateRequest",
    "EvaluationResponse",
    "TargetEvaluationResponse",
    "TraceStepResponse",
    "RuleInfo",
    "RulesListResponse",
    "RuleDetailResponse",
]
