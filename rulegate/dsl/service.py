"""Rule DSL frontend: documents plus metadata registry to Rule IR."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .metadata import load_metadata_registry
from .parser import FeatureParser, ParsedFeature
from .schemas import MetadataRegistry, RuleIR

logger = logging.getLogger(__name__)


class RuleDslFrontend:
    """Assembles the Rule IR from parsed documents."""

    def __init__(self, default_domain: str | None = None):
        self.parser = FeatureParser(default_domain)

    def build_rule_ir(
        self,
        features: Iterable[ParsedFeature],
        registry: MetadataRegistry | None = None,
    ) -> RuleIR:
        """Concatenate rules in document order.

        Cross-reference checks (names, targets, fields) are the validator's
        job; this step only assembles.
        """
        rules = [rule for feature in features for rule in feature.rules]
        logger.info("Assembled Rule IR: %d rules", len(rules))
        return RuleIR(metadata=registry or MetadataRegistry(), rules=tuple(rules))

    def load(self, feature_paths: Iterable[str | Path], metadata_path: str | Path | None = None) -> RuleIR:
        features = [self.parser.parse_file(p) for p in feature_paths]
        registry = load_metadata_registry(metadata_path) if metadata_path else MetadataRegistry()
        return self.build_rule_ir(features, registry)


def find_feature_files(directory: str | Path) -> list[Path]:
    """All ``.feature`` files below a directory, sorted for a stable rule order."""
    directory = Path(directory)
    if not directory.exists():
        return []
    return sorted(directory.rglob("*.feature"))
