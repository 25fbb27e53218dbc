"""Rule DSL domain - rule documents and metadata registry to Rule IR."""

from .schemas import (
    RULE_SCHEMA_VERSION,
    Condition,
    CompoundCondition,
    MetadataRequirementGroup,
    Target,
    Outcome,
    RuleDef,
    MetadataField,
    MetadataCategory,
    MetadataRegistry,
    RuleIR,
    literal_kind,
)
from .parser import FeatureParser, ParsedFeature, parse_literal
from .metadata import parse_metadata, load_metadata_registry
from .service import RuleDslFrontend, find_feature_files

__all__ = [
    # Rule IR
    "RULE_SCHEMA_VERSION",
    "Condition",
    "CompoundCondition",
    "MetadataRequirementGroup",
    "Target",
    "Outcome",
    "RuleDef",
    "MetadataField",
    "MetadataCategory",
    "MetadataRegistry",
    "RuleIR",
    "literal_kind",
    # Parsing
    "FeatureParser",
    "ParsedFeature",
    "parse_literal",
    "parse_metadata",
    "load_metadata_registry",
    # Frontend
    "RuleDslFrontend",
    "find_feature_files",
]
