"""Compiler domain - Rule IR bound to Model IR targets."""

from .ir import (
    CompiledCondition,
    CompiledCompound,
    CompiledMetadataGroup,
    TargetBinding,
    TargetRegistry,
    CompiledRule,
    CompiledRuleSet,
)
from .compiler import RuleCompiler, compile_rules, comparison_literal

__all__ = [
    # IR
    "CompiledCondition",
    "CompiledCompound",
    "CompiledMetadataGroup",
    "TargetBinding",
    "TargetRegistry",
    "CompiledRule",
    "CompiledRuleSet",
    # Compiler
    "RuleCompiler",
    "compile_rules",
    "comparison_literal",
]
