"""Routes for rule inspection and evaluation.

The API is a caller of the core: it picks the published rule set, builds
the authorization context, and turns a failed blocking rule into HTTP 422.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from rulegate.compiler.ir import CompiledRuleSet
from rulegate.core.errors import CompilationError
from rulegate.core.types import NeutralType, TargetKind
from rulegate.dsl.schemas import MetadataRegistry
from rulegate.pipeline.service import RulePipeline
from rulegate.runtime.cache import get_rule_set_holder
from rulegate.runtime.executor import RuleRuntime
from rulegate.runtime.trace import EvaluationResult
from .schemas import (
    EvaluateRequest,
    EvaluationResponse,
    RuleDetailResponse,
    RuleInfo,
    RulesListResponse,
    TargetEvaluationResponse,
    TraceStepResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Rules"])

# Global instances
_runtime: RuleRuntime | None = None


def get_rule_set() -> CompiledRuleSet:
    """Current published rule set, building it from settings on first use.

    Raises:
        HTTPException: 503 when nothing is published and the build fails
    """
    holder = get_rule_set_holder()
    rule_set = holder.current()
    if rule_set is None:
        try:
            RulePipeline(holder=holder).build_from_settings(publish=True)
        except CompilationError as e:
            logger.error("Rule build failed: %s", e)
            raise HTTPException(status_code=503, detail=e.to_dict()) from e
        rule_set = holder.current()
    if rule_set is None:
        raise HTTPException(status_code=503, detail="No rule set published")
    return rule_set


async def _rule_set() -> CompiledRuleSet:
    if get_rule_set_holder().current() is None:
        return await run_in_threadpool(get_rule_set)
    return get_rule_set()


def get_runtime() -> RuleRuntime:
    """Get or create the runtime instance."""
    global _runtime
    if _runtime is None:
        _runtime = RuleRuntime()
    return _runtime


# =============================================================================
# Metadata headers
# =============================================================================


def _kebab(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "-", name).replace("_", "-").lower()


def _coerce_header(raw: str, neutral: NeutralType) -> Any:
    text = raw.strip()
    if neutral is NeutralType.BOOL:
        if text.lower() not in ("true", "false"):
            raise ValueError(f"expected true or false, got '{raw}'")
        return text.lower() == "true"
    if neutral in (NeutralType.INT32, NeutralType.INT64):
        return int(text)
    if neutral is NeutralType.FLOAT64:
        return float(text)
    if neutral is NeutralType.DECIMAL:
        try:
            return Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"expected a decimal, got '{raw}'") from e
    return raw


def context_from_headers(registry: MetadataRegistry, headers: Mapping[str, str]) -> dict[str, dict[str, Any]]:
    """Read ``X-<Category>-<Field>`` headers into metadata context objects.

    Header names are matched case-insensitively against the kebab-case
    spelling of each enabled category and field, e.g. ``X-Roles-Role-Level``
    for ``roles.roleLevel``. Values are coerced to the registry field type.

    Raises:
        HTTPException: A header value that does not fit its field type
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    context: dict[str, dict[str, Any]] = {}
    for name, category in registry.categories.items():
        if not category.enabled:
            continue
        for field in category.fields:
            header = f"x-{_kebab(name)}-{_kebab(field.name)}"
            if header not in lowered:
                continue
            try:
                value = _coerce_header(lowered[header], field.type)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=f"Header {header}: {e}") from e
            context.setdefault(name, {})[field.name] = value
    return context


def _merge_context(body: dict[str, dict[str, Any]], headers: dict[str, dict[str, Any]]) -> dict[str, Any]:
    merged: dict[str, Any] = {name: dict(values) for name, values in headers.items()}
    for name, values in body.items():
        merged.setdefault(name, {}).update(values)
    return merged


def _to_response(result: EvaluationResult) -> EvaluationResponse:
    trace = None
    if result.trace is not None:
        trace = [
            TraceStepResponse(
                phase=s.phase,
                description=s.description,
                category=s.category,
                field=s.field,
                found=s.found,
                result=s.result,
            )
            for s in result.trace.steps
        ]
    return EvaluationResponse(
        rule_name=result.rule_name,
        status=result.status,
        blocking=result.blocking,
        satisfied=result.satisfied,
        gate_passed=result.gate_passed,
        trace=trace,
    )


# =============================================================================
# Routes
# =============================================================================


@router.get("/rules", response_model=RulesListResponse)
async def list_rules() -> RulesListResponse:
    """List all published rules."""
    rule_set = await _rule_set()
    rules = [
        RuleInfo(
            name=rule.name,
            domain=rule.binding.domain,
            target=rule.definition.target.name,
            kind=rule.binding.kind.value,
            blocking=rule.blocking,
            description=rule.definition.description,
        )
        for rule in rule_set
    ]
    return RulesListResponse(rules=rules, total=len(rules), generation=get_rule_set_holder().generation)


@router.get("/rules/{name}", response_model=RuleDetailResponse)
async def get_rule(name: str) -> RuleDetailResponse:
    """Get a rule's Rule IR entry."""
    rule = (await _rule_set()).get(name)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Rule not found: {name}")
    return RuleDetailResponse(
        name=rule.name,
        definition=rule.definition.to_dict(),
        field_types={k: v.value for k, v in rule.binding.field_types.items()},
    )


@router.post("/rules/{name}/evaluate", response_model=EvaluationResponse)
async def evaluate_single_rule(name: str, body: EvaluateRequest, request: Request) -> EvaluationResponse:
    """Evaluate one rule. Always 200: the result reports the outcome."""
    rule_set = await _rule_set()
    rule = rule_set.get(name)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Rule not found: {name}")
    context = _merge_context(body.context, context_from_headers(rule_set.rule_ir.metadata, request.headers))
    result = get_runtime().evaluate(rule, body.entity, context, body.include_trace)
    return _to_response(result)


@router.post("/targets/{domain}/{kind}/{name}/evaluate", response_model=TargetEvaluationResponse)
async def evaluate_target(
    domain: str, kind: str, name: str, body: EvaluateRequest, request: Request
) -> TargetEvaluationResponse:
    """Evaluate every rule bound to a target.

    Responds 422 with the same payload when a blocking rule is unsatisfied.
    """
    try:
        target_kind = TargetKind(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown target kind: {kind}")

    rule_set = await _rule_set()
    if rule_set.targets.resolve(domain, name, target_kind) is None:
        raise HTTPException(status_code=404, detail=f"No rules for {kind} {domain}/{name}")

    context = _merge_context(body.context, context_from_headers(rule_set.rule_ir.metadata, request.headers))
    evaluation = get_runtime().evaluate_target(
        rule_set, domain, name, body.entity, context, target_kind, body.include_trace
    )
    response = TargetEvaluationResponse(
        domain=domain,
        kind=target_kind.value,
        target=name,
        outcomes=[_to_response(o) for o in evaluation.outcomes],
        has_blocking_failures=evaluation.has_blocking_failures,
    )
    if evaluation.has_blocking_failures:
        logger.info(
            "Rejected %s %s/%s: %s",
            kind,
            domain,
            name,
            ", ".join(o.rule_name for o in evaluation.blocking_failures),
        )
        raise HTTPException(status_code=422, detail=response.model_dump())
    return response
