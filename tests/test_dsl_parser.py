"""
Tests for the rule DSL frontend.

Tests operator normalization, literal typing, scenario parsing and the
metadata registry loader.
"""

import pytest

from rulegate.core.errors import CompileSyntaxError, CompileTypeError
from rulegate.core.types import Logic, NeutralType, Operator, TargetKind
from rulegate.dsl import (
    Condition,
    CompoundCondition,
    FeatureParser,
    MetadataRegistry,
    RuleDslFrontend,
    RuleIR,
    parse_literal,
)
from rulegate.dsl.metadata import load_metadata_registry, parse_metadata


def _feature(body: str, domain: str = "test") -> str:
    return f"@domain:{domain}\nFeature: Test rules\n\n{body}"


SIMPLE_SCENARIO = """
  @target:incidents @rule:SeverityCheck
  Scenario: Severity check
    When severity_level is at least 7
    Then status is "HIGH"
    But otherwise status is "LOW"
"""


class TestOperators:
    """Test operator phrase normalization."""

    def test_symbols(self):
        assert Operator.parse("==") is Operator.EQ
        assert Operator.parse("=") is Operator.EQ
        assert Operator.parse("<>") is Operator.NE
        assert Operator.parse(">=") is Operator.GTE

    def test_phrases(self):
        assert Operator.parse("equals") is Operator.EQ
        assert Operator.parse("does not equal") is Operator.NE
        assert Operator.parse("is greater than") is Operator.GT
        assert Operator.parse("is less than") is Operator.LT
        assert Operator.parse("is at least") is Operator.GTE
        assert Operator.parse("Is  At  Most") is Operator.LTE

    def test_unknown(self):
        assert Operator.parse("resembles") is None


class TestLiterals:
    """Test lexical literal typing."""

    def test_quoted_is_string(self):
        assert parse_literal('"7"') == "7"
        assert parse_literal("'OPEN'") == "OPEN"

    def test_booleans(self):
        assert parse_literal("true") is True
        assert parse_literal("false") is False

    def test_numbers(self):
        assert parse_literal("7") == 7
        assert isinstance(parse_literal("7"), int)
        assert parse_literal("-2") == -2
        assert parse_literal("1000.10") == 1000.1

    def test_unquoted_text_rejected(self):
        with pytest.raises(ValueError):
            parse_literal("OPEN")
        with pytest.raises(ValueError):
            parse_literal("TRUE")


class TestFeatureParser:
    """Test scenario parsing."""

    def test_parse_sample_documents(self, data_dir):
        parser = FeatureParser("default")
        feature = parser.parse_file(data_dir / "features" / "auth.feature")
        assert feature.domain == "auth"
        assert feature.name == "Auth rules"
        assert [r.name for r in feature.rules] == ["UserActivationCheck", "AdminAccessCheck"]

        activation = feature.rules[0]
        assert activation.target.name == "users"
        assert activation.target.domain == "auth"
        assert activation.target.type is TargetKind.MODEL
        assert activation.blocking is True
        assert activation.condition == Condition(field="is_active", operator=Operator.EQ, value=True)
        assert activation.positive_status == "ACCOUNT_ACTIVE"
        assert activation.negative_status == "ACCOUNT_INACTIVE"
        assert activation.line == 6

    def test_metadata_requirements(self, data_dir):
        feature = FeatureParser("default").parse_file(data_dir / "features" / "auth.feature")
        admin = feature.rules[1]
        assert admin.blocking is False
        assert [g.category for g in admin.metadata_requirements] == ["roles", "sso"]
        roles = admin.metadata_requirements[0]
        assert roles.conditions == (
            Condition(field="roleLevel", operator=Operator.GTE, value=4),
            Condition(field="isAdmin", operator=Operator.EQ, value=True),
        )

    def test_compound_conditions(self, data_dir):
        feature = FeatureParser("default").parse_file(data_dir / "features" / "support.feature")
        critical = feature.rules[1]
        assert isinstance(critical.condition, CompoundCondition)
        assert critical.condition.logic is Logic.AND
        assert [c.field for c in critical.condition.clauses] == ["severity_level", "priority_level"]

        visible = feature.rules[2]
        assert visible.condition.logic is Logic.OR
        assert visible.condition.clauses[1].value == "support-team"

    def test_view_target(self, data_dir):
        feature = FeatureParser("default").parse_file(data_dir / "features" / "academics.feature")
        rule = feature.rules[0]
        assert rule.target.type is TargetKind.VIEW
        assert rule.target.name == "course_availability_view"

    def test_default_domain(self):
        text = "Feature: No domain\n" + SIMPLE_SCENARIO
        feature = FeatureParser("fallback").parse_text(text)
        assert feature.rules[0].target.domain == "fallback"

    def test_scenario_domain_overrides_feature(self):
        body = SIMPLE_SCENARIO.replace("@rule:SeverityCheck", "@rule:SeverityCheck @domain:ops")
        feature = FeatureParser("fallback").parse_text(_feature(body))
        assert feature.rules[0].target.domain == "ops"

    def test_symbolic_simple_condition(self):
        body = SIMPLE_SCENARIO.replace("is at least 7", '!= "closed"').replace("severity_level", "status")
        rule = FeatureParser().parse_text(_feature(body)).rules[0]
        assert rule.condition == Condition(field="status", operator=Operator.NE, value="closed")

    def test_missing_rule_tag(self):
        body = SIMPLE_SCENARIO.replace(" @rule:SeverityCheck", "")
        with pytest.raises(CompileSyntaxError, match="no @rule tag") as exc_info:
            FeatureParser().parse_text(_feature(body), source="ops.feature")
        assert exc_info.value.line == 6
        assert exc_info.value.source == "ops.feature"

    def test_missing_negative_outcome(self):
        body = SIMPLE_SCENARIO.replace('    But otherwise status is "LOW"\n', "")
        with pytest.raises(CompileSyntaxError) as exc_info:
            FeatureParser().parse_text(_feature(body))
        assert exc_info.value.rule == "SeverityCheck"

    def test_unquoted_string_literal(self):
        body = SIMPLE_SCENARIO.replace("severity_level is at least 7", "status equals OPEN")
        with pytest.raises(CompileSyntaxError, match="invalid literal"):
            FeatureParser().parse_text(_feature(body))

    def test_metadata_after_condition(self):
        body = """
  @target:users @rule:LateGate
  Scenario: Gate after condition
    When is_active equals true
    Given roles context requires:
      | field     | operator | value |
      | roleLevel | >=       | 1     |
    Then status is "OK"
    But otherwise status is "DENIED"
"""
        with pytest.raises(CompileSyntaxError, match="must precede"):
            FeatureParser().parse_text(_feature(body))

    def test_bad_table_header(self):
        body = """
  @target:users @rule:BadHeader
  Scenario: Wrong columns
    When all conditions are met:
      | name      | op | expected |
      | is_active | == | true     |
    Then status is "OK"
    But otherwise status is "DENIED"
"""
        with pytest.raises(CompileSyntaxError, match="header"):
            FeatureParser().parse_text(_feature(body))

    def test_empty_table(self):
        body = """
  @target:users @rule:EmptyTable
  Scenario: No rows
    When any condition is met:
      | field | operator | value |
    Then status is "OK"
    But otherwise status is "DENIED"
"""
        with pytest.raises(CompileSyntaxError, match="no rows"):
            FeatureParser().parse_text(_feature(body))

    def test_unsupported_construct(self):
        body = SIMPLE_SCENARIO.replace("Scenario: Severity check", "Scenario Outline: Severity check")
        with pytest.raises(CompileSyntaxError, match="unsupported"):
            FeatureParser().parse_text(_feature(body))

    def test_two_main_conditions(self):
        body = SIMPLE_SCENARIO.replace(
            "    Then", "    And priority_level is at least 2\n    Then", 1
        )
        with pytest.raises(CompileSyntaxError, match="exactly one main condition"):
            FeatureParser().parse_text(_feature(body))


class TestRuleIR:
    """Test Rule IR assembly and serialization."""

    def test_load_sample(self, rule_ir):
        assert [r.name for r in rule_ir.rules] == [
            "SeatAvailabilityCheck",
            "UserActivationCheck",
            "AdminAccessCheck",
            "LargeInvoiceReview",
            "SeverityEscalation",
            "CriticalIncidentCheck",
            "PublicOrOwnedCheck",
        ]
        assert "roles" in rule_ir.metadata.categories

    def test_rule_shape(self, rule_ir):
        data = rule_ir.get_rule("AdminAccessCheck").to_dict()
        assert data["target"] == {"type": "model", "name": "users", "domain": "auth"}
        assert data["then"] == {"status": "ADMIN_GRANTED"}
        assert data["else"] == {"status": "ADMIN_DENIED"}
        assert data["metadata_requirements"][0]["conditions"][0] == {
            "field": "roleLevel",
            "operator": ">=",
            "value": 4,
            "value_type": "int",
        }

    def test_yaml_preserves_rules(self, rule_ir):
        restored = RuleIR.from_yaml(rule_ir.to_yaml())
        assert [r.name for r in restored.rules] == [r.name for r in rule_ir.rules]
        assert restored.get_rule("LargeInvoiceReview").condition.value == 1000.1
        assert restored.metadata.field_type("roles", "isAdmin") is NeutralType.BOOL

    def test_frontend_without_metadata(self, feature_paths):
        rule_ir = RuleDslFrontend("default").load(feature_paths)
        assert rule_ir.metadata == MetadataRegistry()
        assert len(rule_ir.rules) == 7


class TestMetadataRegistry:
    """Test metadata.yaml loading."""

    def test_load(self, registry):
        assert registry.field_type("roles", "roleLevel") is NeutralType.INT32
        assert registry.field_type("roles", "isAdmin") is NeutralType.BOOL
        assert registry.field_type("roles", "roleName") is NeutralType.STRING
        assert registry.get("billing").enabled is False
        assert registry.field_type("roles", "missing") is None

    def test_unknown_type(self):
        text = "metadata:\n  roles:\n    fields:\n      - name: level\n        type: geometry\n"
        with pytest.raises(CompileTypeError, match="geometry"):
            parse_metadata(text)

    def test_malformed_yaml(self):
        with pytest.raises(CompileSyntaxError) as exc_info:
            parse_metadata("metadata:\n  roles: [unclosed\n", source="metadata.yaml")
        assert exc_info.value.source == "metadata.yaml"
        assert exc_info.value.line is not None

    def test_field_without_type(self):
        with pytest.raises(CompileSyntaxError, match="name and a type"):
            parse_metadata("metadata:\n  roles:\n    fields:\n      - name: level\n")

    def test_top_level_categories(self):
        registry = parse_metadata("sso:\n  fields:\n    - name: provider\n      type: string\n")
        assert registry.get("sso").enabled is True

    def test_missing_file(self, tmp_path):
        assert load_metadata_registry(tmp_path / "absent.yaml") == MetadataRegistry()
