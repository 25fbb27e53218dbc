"""
Evaluation results and optional tracing.

A trace records every comparison the engine actually performed, which makes
short-circuiting and the metadata gate visible to callers and tests.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class TraceStep(BaseModel):
    """A single comparison performed during evaluation."""

    phase: str
    """'metadata' or 'condition'."""

    description: str
    """Human-readable form of the comparison."""

    category: str | None = None
    """Context category, for metadata steps."""

    field: str
    operator: str
    expected_value: Any = None
    actual_value: Any = None
    found: bool = False
    result: bool = False


class EvaluationTrace(BaseModel):
    rule_name: str
    steps: list[TraceStep] = Field(default_factory=list)

    def add_step(
        self,
        phase: str,
        description: str,
        field: str,
        operator: str,
        expected_value: Any = None,
        actual_value: Any = None,
        found: bool = False,
        result: bool = False,
        category: str | None = None,
    ) -> TraceStep:
        step = TraceStep(
            phase=phase,
            description=description,
            category=category,
            field=field,
            operator=operator,
            expected_value=expected_value,
            actual_value=actual_value,
            found=found,
            result=result,
        )
        self.steps.append(step)
        return step

    def fields_evaluated(self, phase: str | None = None) -> list[str]:
        return [s.field for s in self.steps if phase is None or s.phase == phase]


class EvaluationResult(BaseModel):
    """Outcome of evaluating one rule."""

    rule_name: str
    status: str
    blocking: bool
    satisfied: bool
    gate_passed: bool = True
    """False when a metadata requirement failed and the condition never ran."""

    trace: EvaluationTrace | None = None

    @property
    def rejected(self) -> bool:
        """A blocking rule that was not satisfied."""
        return self.blocking and not self.satisfied

    @classmethod
    def gate_failed(cls, rule_name: str, status: str, blocking: bool, trace: EvaluationTrace | None = None) -> EvaluationResult:
        return cls(
            rule_name=rule_name,
            status=status,
            blocking=blocking,
            satisfied=False,
            gate_passed=False,
            trace=trace,
        )


class TargetEvaluation(BaseModel):
    """Outcomes of every rule bound to one target."""

    outcomes: list[EvaluationResult] = Field(default_factory=list)

    @property
    def blocking_failures(self) -> list[EvaluationResult]:
        return [o for o in self.outcomes if o.rejected]

    @property
    def has_blocking_failures(self) -> bool:
        return any(o.rejected for o in self.outcomes)

    def statuses(self) -> dict[str, str]:
        return {o.rule_name: o.status for o in self.outcomes}
