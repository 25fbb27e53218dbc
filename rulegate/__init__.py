"""rulegate - schema-bound business rules.

Compiles SQL DDL and Gherkin-style rule documents into a Model IR and a
Rule IR, validates them against each other, and evaluates the compiled
rules against entities and authorization context.
"""

from .core import (
    Settings,
    get_settings,
    CompilationError,
    CompileSyntaxError,
    CompileReferenceError,
    CompileTypeError,
    DuplicateDefinitionError,
    SemanticWarning,
    NeutralType,
    Operator,
)
from .schema import ModelIR, SchemaCompiler, SchemaParser
from .dsl import RuleIR, FeatureParser, MetadataRegistry
from .validation import CrossReferenceValidator, ValidationReport
from .compiler import CompiledRule, CompiledRuleSet, RuleCompiler, compile_rules
from .runtime import RuleRuntime, EvaluationResult, evaluate_rule, get_rule_set_holder
from .pipeline import BuildResult, BuildStage, RulePipeline

__version__ = "0.1.0"

__all__ = [
    # Core
    "Settings",
    "get_settings",
    "CompilationError",
    "CompileSyntaxError",
    "CompileReferenceError",
    "CompileTypeError",
    "DuplicateDefinitionError",
    "SemanticWarning",
    "NeutralType",
    "Operator",
    # Schema
    "ModelIR",
    "SchemaCompiler",
    "SchemaParser",
    # Rule DSL
    "RuleIR",
    "FeatureParser",
    "MetadataRegistry",
    # Validation
    "CrossReferenceValidator",
    "ValidationReport",
    # Compiler
    "CompiledRule",
    "CompiledRuleSet",
    "RuleCompiler",
    "compile_rules",
    # Runtime
    "RuleRuntime",
    "EvaluationResult",
    "evaluate_rule",
    "get_rule_set_holder",
    # Pipeline
    "BuildResult",
    "BuildStage",
    "RulePipeline",
]
