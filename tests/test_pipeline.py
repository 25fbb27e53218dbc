"""
Tests for the build pipeline.

Tests stage progression, publication, failure isolation and output files.
"""

import shutil
from pathlib import Path

import pytest
import yaml

from rulegate.core.config import Settings
from rulegate.core.errors import BuildAbortedError, CompileReferenceError, CompileSyntaxError
from rulegate.pipeline import BuildStage, RulePipeline, write_outputs
from rulegate.runtime import RuleSetHolder
from rulegate.schema import ModelIR


@pytest.fixture
def workspace(tmp_path: Path, data_dir: Path) -> Path:
    """Copy of the sample sources laid out the way settings expect."""
    shutil.copytree(data_dir, tmp_path / "project")
    return tmp_path / "project"


@pytest.fixture
def pipeline() -> RulePipeline:
    return RulePipeline(Settings(default_domain="default"), holder=RuleSetHolder())


class TestRulePipeline:
    """Test the full Parsed -> Validated -> Compiled -> Evaluable run."""

    def test_build_without_publish(self, pipeline, schema_paths, feature_paths, metadata_path):
        result = pipeline.build(schema_paths, feature_paths, metadata_path)
        assert result.stage is BuildStage.COMPILED
        assert len(result.rule_set) == 7
        assert result.report.rules_checked == 7
        assert result.generation is None
        assert pipeline.holder.current() is None

    def test_build_and_publish(self, pipeline, schema_paths, feature_paths, metadata_path):
        result = pipeline.build(schema_paths, feature_paths, metadata_path, publish=True)
        assert result.stage is BuildStage.EVALUABLE
        assert result.generation == 1
        assert pipeline.holder.current() is result.rule_set

    def test_parse_keeps_input_order(self, schema_paths, feature_paths):
        for workers in (1, 4):
            pipeline = RulePipeline(Settings(parse_workers=workers), holder=RuleSetHolder())
            schemas, features = pipeline.parse(schema_paths, feature_paths)
            assert [s.source for s in schemas] == [str(p) for p in schema_paths]
            assert [f.source for f in features] == [str(p) for p in feature_paths]

    def test_failed_build_keeps_previous_set(self, pipeline, schema_paths, feature_paths, metadata_path, tmp_path):
        first = pipeline.build(schema_paths, feature_paths, metadata_path, publish=True)

        broken = tmp_path / "broken.feature"
        broken.write_text(
            "@domain:support\n"
            "Feature: Broken\n"
            "  @target:incidents @rule:UrgencyCheck\n"
            "  Scenario: Unknown field\n"
            "    When urgency is at least 3\n"
            '    Then status is "URGENT"\n'
            '    But otherwise status is "NORMAL"\n'
        )
        with pytest.raises(CompileReferenceError, match="urgency"):
            pipeline.build(schema_paths, feature_paths + [broken], metadata_path, publish=True)

        assert pipeline.holder.current() is first.rule_set
        assert pipeline.holder.generation == 1

    def test_parse_error_aborts(self, pipeline, schema_paths, tmp_path):
        broken = tmp_path / "broken.feature"
        broken.write_text("Scenario: No feature\n")
        with pytest.raises(CompileSyntaxError):
            pipeline.build(schema_paths, [broken])
        assert pipeline.holder.current() is None

    def test_fail_on_warnings(self, schema_paths, tmp_path):
        document = tmp_path / "style.feature"
        document.write_text(
            "@domain:support\n"
            "Feature: Style\n"
            "  @target:incidents @rule:severity_check\n"
            "  Scenario: Badly named\n"
            "    When severity_level is at least 3\n"
            '    Then status is "HIGH"\n'
            '    But otherwise status is "LOW"\n'
        )
        lenient = RulePipeline(Settings(), holder=RuleSetHolder())
        assert lenient.build(schema_paths, [document]).report.codes() == {"rule-name-style"}

        strict = RulePipeline(Settings(fail_on_warnings=True), holder=RuleSetHolder())
        with pytest.raises(BuildAbortedError, match="rule-name-style"):
            strict.build(schema_paths, [document], publish=True)
        assert strict.holder.current() is None

    def test_build_from_settings(self, pipeline, workspace):
        result = pipeline.build_from_settings(workspace)
        assert result.stage is BuildStage.EVALUABLE
        assert result.rule_set.names[0] == "SeatAvailabilityCheck"
        assert result.rule_ir.metadata.get("roles") is not None

    def test_rebuild_keeps_ordinals(self, pipeline, workspace):
        first = pipeline.build_from_settings(workspace)
        write_outputs(first, workspace / "models.yaml", workspace / "specs.yaml")

        schema = workspace / "schema.sql"
        schema.write_text(
            schema.read_text().replace(
                "    id BIGINT PRIMARY KEY,\n    username",
                "    id BIGINT PRIMARY KEY,\n    display_name VARCHAR(100),\n    username",
            )
        )
        second = pipeline.build_from_settings(workspace)
        user = second.model_ir.find_target("auth", "users")
        assert user.field_names[1] == "display_name"
        assert user.get_field("display_name").ordinal == 8
        assert user.get_field("username").ordinal == 2
        assert pipeline.holder.generation == 2


class TestOutputs:
    """Test models.yaml / specs.yaml output."""

    def test_write_outputs(self, pipeline, schema_paths, feature_paths, metadata_path, tmp_path):
        result = pipeline.build(schema_paths, feature_paths, metadata_path)
        models_path = tmp_path / "models.yaml"
        specs_path = tmp_path / "specs.yaml"
        write_outputs(result, models_path, specs_path)

        models = yaml.safe_load(models_path.read_text())
        assert list(models["domains"]) == ["auth", "support", "finance", "academics"]
        view = models["domains"]["academics"]["views"][0]
        assert view["source_view"] == "course_availability_view"
        assert view["referenced_columns"] == [
            "enrollments.course_id",
            "courses.department",
            "courses.capacity",
        ]

        specs = yaml.safe_load(specs_path.read_text())
        assert [r["name"] for r in specs["rules"]] == result.rule_set.names
        assert specs["metadata"]["billing"]["enabled"] is False

        assert ModelIR.load(models_path) == result.model_ir
