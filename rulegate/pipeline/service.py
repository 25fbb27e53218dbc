"""
Build pipeline: Parsed -> Validated -> Compiled -> Evaluable.

Schema files and rule documents are independent until validation, so they
are parsed concurrently, one task per file. Validation sees everything at
once. Any stage error aborts the build and nothing is published; a source
change always means a full rebuild from the Parsed stage.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict

from rulegate.compiler.compiler import RuleCompiler
from rulegate.compiler.ir import CompiledRuleSet
from rulegate.core.config import Settings, get_settings
from rulegate.core.errors import BuildAbortedError
from rulegate.dsl.metadata import load_metadata_registry
from rulegate.dsl.parser import FeatureParser, ParsedFeature
from rulegate.dsl.schemas import RuleIR
from rulegate.dsl.service import RuleDslFrontend, find_feature_files
from rulegate.runtime.cache import RuleSetHolder, get_rule_set_holder
from rulegate.schema.parser import ParsedSchema, SchemaParser
from rulegate.schema.schemas import ModelIR
from rulegate.schema.service import SchemaCompiler
from rulegate.validation.service import CrossReferenceValidator, ValidationReport

logger = logging.getLogger(__name__)


class BuildStage(str, Enum):
    PARSED = "parsed"
    VALIDATED = "validated"
    COMPILED = "compiled"
    EVALUABLE = "evaluable"


class BuildResult(BaseModel):
    """Artifacts of one build, up to the stage reached."""

    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    stage: BuildStage
    model_ir: ModelIR
    rule_ir: RuleIR
    report: ValidationReport | None = None
    rule_set: CompiledRuleSet | None = None
    generation: int | None = None
    """Holder generation, when the rule set was published."""


class RulePipeline:
    """Runs every compiler stage over a set of source files."""

    def __init__(self, settings: Settings | None = None, holder: RuleSetHolder | None = None):
        self.settings = settings or get_settings()
        self._holder = holder
        self.schema_parser = SchemaParser()
        self.feature_parser = FeatureParser(self.settings.default_domain)

    @property
    def holder(self) -> RuleSetHolder:
        return self._holder or get_rule_set_holder()

    def parse(
        self,
        schema_paths: Iterable[str | Path],
        feature_paths: Iterable[str | Path],
    ) -> tuple[list[ParsedSchema], list[ParsedFeature]]:
        """Parse all sources, one worker task per file.

        Results keep the order of the input paths; the first failing file
        (in that order) raises.
        """
        schema_paths = [Path(p) for p in schema_paths]
        feature_paths = [Path(p) for p in feature_paths]
        workers = max(1, self.settings.parse_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rulegate-parse") as pool:
            schema_futures = [pool.submit(self.schema_parser.parse_file, p) for p in schema_paths]
            feature_futures = [pool.submit(self.feature_parser.parse_file, p) for p in feature_paths]
            schemas = [f.result() for f in schema_futures]
            features = [f.result() for f in feature_futures]
        logger.info("Parsed %d schema files and %d rule documents", len(schemas), len(features))
        return schemas, features

    def build(
        self,
        schema_paths: Iterable[str | Path],
        feature_paths: Iterable[str | Path],
        metadata_path: str | Path | None = None,
        previous_models: ModelIR | None = None,
        domain_map: dict[str, str] | None = None,
        publish: bool = False,
    ) -> BuildResult:
        """Run the full pipeline.

        Args:
            schema_paths: DDL files
            feature_paths: Rule documents
            metadata_path: Metadata registry (empty registry if None)
            previous_models: Model IR of the last build, for stable ordinals
            domain_map: Explicit table/view -> domain assignments
            publish: Swap the compiled rule set into the holder

        Returns:
            BuildResult at the COMPILED stage, or EVALUABLE when published

        Raises:
            CompilationError: Any fatal error in any stage
        """
        schemas, features = self.parse(schema_paths, feature_paths)
        registry = load_metadata_registry(metadata_path) if metadata_path else None

        model_ir = SchemaCompiler(self.settings.default_domain, domain_map, previous_models).compile(schemas)
        rule_ir = RuleDslFrontend(self.settings.default_domain).build_rule_ir(features, registry)
        result = BuildResult(stage=BuildStage.PARSED, model_ir=model_ir, rule_ir=rule_ir)

        result.report = CrossReferenceValidator(model_ir).validate(rule_ir)
        if self.settings.fail_on_warnings and result.report.warnings:
            raise BuildAbortedError(
                f"{len(result.report.warnings)} semantic warning(s) with fail_on_warnings set: "
                + "; ".join(str(w) for w in result.report.warnings)
            )
        result.stage = BuildStage.VALIDATED

        result.rule_set = RuleCompiler(model_ir).compile(rule_ir)
        result.stage = BuildStage.COMPILED

        if publish:
            result.generation = self.holder.publish(result.rule_set)
            result.stage = BuildStage.EVALUABLE
        return result

    def build_from_settings(self, base_dir: str | Path = ".", publish: bool = True) -> BuildResult:
        """Build from the paths configured in settings, relative to base_dir."""
        base = Path(base_dir)
        schema_paths = [base / name for name in self.settings.schema_files if (base / name).exists()]
        feature_paths = find_feature_files(base / self.settings.features_dir)
        metadata_path = base / self.settings.metadata_path
        models_path = base / self.settings.models_output
        previous = ModelIR.load(models_path) if models_path.exists() else None
        return self.build(
            schema_paths,
            feature_paths,
            metadata_path if metadata_path.exists() else None,
            previous_models=previous,
            publish=publish,
        )


def write_outputs(result: BuildResult, models_path: str | Path, specs_path: str | Path) -> None:
    """Write both IRs as YAML."""
    result.model_ir.dump(models_path)
    result.rule_ir.dump(specs_path)
    logger.info("Wrote %s and %s", models_path, specs_path)


def build_rules(
    schema_paths: Iterable[str | Path],
    feature_paths: Iterable[str | Path],
    metadata_path: str | Path | None = None,
    **kwargs: Any,
) -> BuildResult:
    """Convenience function to run the pipeline with default settings."""
    return RulePipeline().build(schema_paths, feature_paths, metadata_path, **kwargs)
