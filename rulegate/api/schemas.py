"""API request/response models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class EvaluateRequest(BaseModel):
    """Entity plus authorization context for an evaluation."""

    entity: dict[str, Any] = Field(default_factory=dict, description="Target instance fields")
    context: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Metadata category -> context fields"
    )
    include_trace: bool = False


class TraceStepResponse(BaseModel):
    phase: str
    description: str
    category: str | None = None
    field: str
    found: bool
    result: bool


class EvaluationResponse(BaseModel):
    rule_name: str
    status: str
    blocking: bool
    satisfied: bool
    gate_passed: bool
    trace: list[TraceStepResponse] | None = None


class TargetEvaluationResponse(BaseModel):
    domain: str
    kind: str
    target: str
    outcomes: list[EvaluationResponse]
    has_blocking_failures: bool


class RuleInfo(BaseModel):
    name: str
    domain: str
    target: str
    kind: str
    blocking: bool
    description: str | None = None


class RulesListResponse(BaseModel):
    rules: list[RuleInfo]
    total: int
    generation: int


class RuleDetailResponse(BaseModel):
    name: str
    definition: dict[str, Any]
    field_types: dict[str, str]
