"""Pytest fixtures for test suite."""

import pytest
from pathlib import Path

from rulegate.compiler import CompiledRuleSet, compile_rules
from rulegate.dsl import FeatureParser, MetadataRegistry, RuleDslFrontend, RuleIR
from rulegate.dsl.metadata import load_metadata_registry, parse_metadata
from rulegate.dsl.service import find_feature_files
from rulegate.runtime.cache import reset_rule_set_holder
from rulegate.schema import ModelIR
from rulegate.schema.service import compile_schema_files, compile_schema_text
from rulegate.validation import validate_rules


# =============================================================================
# Paths
# =============================================================================


@pytest.fixture
def data_dir() -> Path:
    """Path to the sample schema, metadata and rule documents."""
    return Path(__file__).parent / "data"


@pytest.fixture
def schema_paths(data_dir: Path) -> list[Path]:
    return [data_dir / "schema.sql", data_dir / "views.sql"]


@pytest.fixture
def feature_paths(data_dir: Path) -> list[Path]:
    return find_feature_files(data_dir / "features")


@pytest.fixture
def metadata_path(data_dir: Path) -> Path:
    return data_dir / "metadata.yaml"


# =============================================================================
# Compiled Artifacts
# =============================================================================


@pytest.fixture
def model_ir(schema_paths: list[Path]) -> ModelIR:
    """Model IR compiled from the sample DDL."""
    return compile_schema_files(schema_paths, default_domain="default")


@pytest.fixture
def registry(metadata_path: Path) -> MetadataRegistry:
    return load_metadata_registry(metadata_path)


@pytest.fixture
def rule_ir(feature_paths: list[Path], metadata_path: Path) -> RuleIR:
    """Rule IR assembled from the sample rule documents."""
    return RuleDslFrontend("default").load(feature_paths, metadata_path)


@pytest.fixture
def rule_set(model_ir: ModelIR, rule_ir: RuleIR) -> CompiledRuleSet:
    """Validated and compiled sample rule set."""
    validate_rules(model_ir, rule_ir)
    return compile_rules(model_ir, rule_ir)


@pytest.fixture
def make_rule_set():
    """Factory compiling inline DDL, one rule document and optional metadata."""

    def _make(sql: str, feature: str, metadata: str | None = None) -> CompiledRuleSet:
        model_ir = compile_schema_text(sql, default_domain="test")
        registry = parse_metadata(metadata) if metadata else MetadataRegistry()
        parsed = FeatureParser("test").parse_text(feature)
        rule_ir = RuleDslFrontend("test").build_rule_ir([parsed], registry)
        validate_rules(model_ir, rule_ir)
        return compile_rules(model_ir, rule_ir)

    return _make


@pytest.fixture(autouse=True)
def fresh_holder():
    """Every test starts without a published rule set."""
    reset_rule_set_holder()
    yield
    reset_rule_set_holder()
