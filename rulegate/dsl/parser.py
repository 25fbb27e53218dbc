"""
Parser for Gherkin-style rule documents.

One document holds one Feature (a domain) and any number of Scenarios (one
rule each)::

    @domain:auth
    Feature: Auth rules

      @target:users @rule:UserActivationCheck @blocking
      Scenario: Users must be active
        Given roles context requires:
          | field     | operator | value |
          | roleLevel | >=       | 4     |
        When is_active equals true
        Then status is "ACCOUNT_ACTIVE"
        But otherwise status is "ACCOUNT_INACTIVE"
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from rulegate.core.config import get_settings
from rulegate.core.errors import CompileSyntaxError
from rulegate.core.types import OPERATOR_PHRASES, Logic, Operator, TargetKind
from .schemas import (
    Condition,
    CompoundCondition,
    MetadataRequirementGroup,
    Outcome,
    RuleDef,
    Target,
)

logger = logging.getLogger(__name__)


_STEP_RE = re.compile(r"^(Given|When|Then|And|But)\s+(.*)$")
_CONTEXT_RE = re.compile(r"^(?P<category>[A-Za-z_][\w-]*)\s+context\s+requires\s*:?$", re.IGNORECASE)
_COMPOUND_RE = re.compile(r"^(?P<mode>all|any)\s+conditions?\s+(?:are|is)\s+met\s*:?$", re.IGNORECASE)
_SIMPLE_RE = re.compile(
    r"^(?P<field>[A-Za-z_][\w.]*)\s+(?P<op>"
    + "|".join(re.escape(p) for p in OPERATOR_PHRASES)
    + r"|==|!=|<>|>=|<=|=|>|<)\s+(?P<value>.+)$",
    re.IGNORECASE,
)
_THEN_RE = re.compile(r'^status\s+is\s+"(?P<status>[^"]*)"$', re.IGNORECASE)
_ELSE_RE = re.compile(r'^otherwise\s+status\s+is\s+"(?P<status>[^"]*)"$', re.IGNORECASE)
_INT_RE = re.compile(r"^[-+]?\d+$")
_FLOAT_RE = re.compile(r"^[-+]?\d+\.\d+$")
_UNSUPPORTED = ("Background:", "Rule:", "Examples:", "Scenarios:", "Scenario Outline:", "Scenario Template:", '"""', "```")


def parse_literal(text: str) -> Any:
    """Coerce a literal by its lexical shape.

    Quoted text is a string, ``true``/``false`` a bool, a bare integer an
    int and a bare decimal a float.

    Raises:
        ValueError: Anything else
    """
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    if text == "true":
        return True
    if text == "false":
        return False
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    raise ValueError(f"invalid literal '{text}': quote strings, or use true/false or a number")


class ParsedFeature(BaseModel):
    """Rules declared by one document, in scenario order."""

    source: str | None = None
    name: str = ""
    domain: str | None = None
    rules: list[RuleDef] = Field(default_factory=list)


class _Table:
    def __init__(self, kind: str, line: int, category: str | None = None, logic: Logic | None = None):
        self.kind = kind
        self.line = line
        self.category = category
        self.logic = logic
        self.header: list[str] | None = None
        self.rows: list[Condition] = []


class _Scenario:
    def __init__(self, title: str, tags: list[tuple[str, int]], line: int):
        self.title = title
        self.tags = tags
        self.line = line
        self.groups: list[_Table] = []
        self.condition: Condition | _Table | None = None
        self.then: str | None = None
        self.otherwise: str | None = None
        self.last_step: str | None = None


class FeatureParser:
    """Parses rule documents into Rule IR entries.

    Holds no per-document state, so one instance may parse many files
    concurrently.
    """

    def __init__(self, default_domain: str | None = None):
        self.default_domain = default_domain or get_settings().default_domain

    def parse_file(self, path: str | Path) -> ParsedFeature:
        path = Path(path)
        return self.parse_text(path.read_text(encoding="utf-8"), source=str(path))

    def parse_text(self, text: str, source: str | None = None) -> ParsedFeature:
        """Parse one document.

        Args:
            text: Document text
            source: File name used in error locations

        Returns:
            ParsedFeature with one RuleDef per scenario

        Raises:
            CompileSyntaxError: Malformed document
        """
        return _DocumentReader(source, self.default_domain).read(text)


class _DocumentReader:
    """Line-oriented reader for a single document."""

    def __init__(self, source: str | None, default_domain: str):
        self._source = source
        self.default_domain = default_domain

    def read(self, text: str) -> ParsedFeature:
        source = self._source
        feature = ParsedFeature(source=source)
        feature_seen = False
        pending: list[tuple[str, int]] = []
        scenario: _Scenario | None = None
        table: _Table | None = None

        for number, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue

            if line.startswith("|"):
                if table is None:
                    raise self._error("table row outside a condition block", number)
                self._add_row(table, line, number)
                continue
            if table is not None:
                self._close_table(table)
                table = None

            if line.startswith(_UNSUPPORTED):
                raise self._error(f"unsupported construct '{line.split()[0]}'", number)

            if line.startswith("@"):
                for token in line.split():
                    if not token.startswith("@") or len(token) == 1:
                        raise self._error(f"malformed tag '{token}'", number)
                    pending.append((token[1:], number))
                continue

            if line.startswith("Feature:"):
                if feature_seen:
                    raise self._error("only one Feature is allowed per document", number)
                feature_seen = True
                feature.name = line[len("Feature:"):].strip()
                for tag, tag_line in pending:
                    key, _, value = tag.partition(":")
                    if key == "domain":
                        feature.domain = self._tag_value(key, value, tag_line)
                pending = []
                continue

            if line.startswith("Scenario:"):
                if not feature_seen:
                    raise self._error("Scenario before Feature", number)
                if scenario is not None:
                    feature.rules.append(self._finish(scenario, feature))
                scenario = _Scenario(line[len("Scenario:"):].strip(), pending, number)
                pending = []
                continue

            step = _STEP_RE.match(line)
            if step:
                if scenario is None:
                    raise self._error("step outside a Scenario", number)
                table = self._step(scenario, step.group(1), step.group(2).strip(), number)
                continue

            if scenario is not None:
                raise self._error(f"unexpected line in scenario: {line}", number)
            if not feature_seen:
                raise self._error(f"unexpected text before Feature: {line}", number)
            # Free-form feature description

        if table is not None:
            self._close_table(table)
        if pending:
            raise self._error("tags not followed by a Feature or Scenario", pending[-1][1])
        if scenario is not None:
            feature.rules.append(self._finish(scenario, feature))
        if not feature_seen:
            raise self._error("document has no Feature", 1)

        logger.debug("Parsed %s: %d rules", source or "<text>", len(feature.rules))
        return feature

    def _error(self, message: str, line: int, rule: str | None = None) -> CompileSyntaxError:
        return CompileSyntaxError(message, source=self._source, line=line, rule=rule)

    def _tag_value(self, key: str, value: str, line: int) -> str:
        if not value.strip():
            raise self._error(f"tag '@{key}' needs a value", line)
        return value.strip()

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _step(self, scenario: _Scenario, keyword: str, body: str, number: int) -> _Table | None:
        if keyword == "And":
            if scenario.last_step is None:
                raise self._error("'And' must follow another step", number)
            keyword = scenario.last_step
        elif keyword != "But":
            scenario.last_step = keyword

        if keyword == "Given":
            match = _CONTEXT_RE.match(body)
            if not match:
                raise self._error(f"expected '<category> context requires:', got '{body}'", number)
            if scenario.condition is not None:
                raise self._error("metadata requirements must precede the main condition", number)
            category = match.group("category")
            if any(g.category == category for g in scenario.groups):
                raise self._error(f"metadata category '{category}' required twice", number)
            group = _Table("metadata", number, category=category)
            scenario.groups.append(group)
            return group

        if keyword == "When":
            if scenario.condition is not None:
                raise self._error("a rule has exactly one main condition", number)
            compound = _COMPOUND_RE.match(body)
            if compound:
                logic = Logic.AND if compound.group("mode").lower() == "all" else Logic.OR
                block = _Table("compound", number, logic=logic)
                scenario.condition = block
                return block
            simple = _SIMPLE_RE.match(body)
            if not simple:
                raise self._error(f"cannot parse condition '{body}'", number)
            scenario.condition = self._condition(
                simple.group("field"), simple.group("op"), simple.group("value"), number
            )
            return None

        if keyword == "Then":
            match = _THEN_RE.match(body)
            if not match:
                raise self._error(f"expected 'status is \"<STATUS>\"', got '{body}'", number)
            if scenario.then is not None:
                raise self._error("positive outcome declared twice", number)
            scenario.then = match.group("status")
            return None

        # But
        match = _ELSE_RE.match(body)
        if not match:
            raise self._error(f"expected 'otherwise status is \"<STATUS>\"', got '{body}'", number)
        if scenario.otherwise is not None:
            raise self._error("negative outcome declared twice", number)
        scenario.otherwise = match.group("status")
        return None

    def _condition(self, field: str, op: str, value: str, number: int) -> Condition:
        operator = Operator.parse(op)
        if operator is None:
            raise self._error(f"unknown operator '{op}'", number)
        try:
            literal = parse_literal(value)
        except ValueError as e:
            raise self._error(str(e), number) from e
        text = value.strip() if isinstance(literal, float) else None
        return Condition(field=field.strip(), operator=operator, value=literal, literal_text=text)

    def _add_row(self, table: _Table, line: str, number: int) -> None:
        cells = [c.strip() for c in line.strip().strip("|").split("|")]
        if table.header is None:
            header = [c.lower() for c in cells]
            if header != ["field", "operator", "value"]:
                raise self._error("condition table header must be '| field | operator | value |'", number)
            table.header = header
            return
        if len(cells) != 3 or not cells[0]:
            raise self._error("condition row needs exactly field, operator and value", number)
        table.rows.append(self._condition(cells[0], cells[1], cells[2], number))

    def _close_table(self, table: _Table) -> None:
        if not table.rows:
            raise self._error("condition table has no rows", table.line)

    # -------------------------------------------------------------------------
    # Scenario assembly
    # -------------------------------------------------------------------------

    def _finish(self, scenario: _Scenario, feature: ParsedFeature) -> RuleDef:
        values: dict[str, str] = {}
        blocking = False
        kind = TargetKind.MODEL
        for tag, line in scenario.tags:
            key, _, value = tag.partition(":")
            if key in ("target", "rule", "domain"):
                if key in values:
                    raise self._error(f"tag '@{key}' given twice", line)
                values[key] = self._tag_value(key, value, line)
            elif key == "blocking":
                blocking = True
            elif key == "view":
                kind = TargetKind.VIEW
            else:
                logger.debug("Ignoring tag @%s on scenario '%s'", tag, scenario.title)

        name = values.get("rule")
        if not name:
            raise self._error(f"scenario '{scenario.title}' has no @rule tag", scenario.line)
        if "target" not in values:
            raise self._error("scenario has no @target tag", scenario.line, rule=name)
        if scenario.condition is None:
            raise self._error("scenario has no When condition", scenario.line, rule=name)
        if scenario.then is None:
            raise self._error("scenario has no 'Then status is' outcome", scenario.line, rule=name)
        if scenario.otherwise is None:
            raise self._error("scenario has no 'But otherwise status is' outcome", scenario.line, rule=name)

        if isinstance(scenario.condition, _Table):
            condition: Condition | CompoundCondition = CompoundCondition(
                logic=scenario.condition.logic, clauses=tuple(scenario.condition.rows)
            )
        else:
            condition = scenario.condition

        domain = values.get("domain") or feature.domain or self.default_domain
        return RuleDef(
            name=name,
            target=Target(type=kind, name=values["target"], domain=domain),
            blocking=blocking,
            metadata_requirements=tuple(
                MetadataRequirementGroup(category=g.category, conditions=tuple(g.rows))
                for g in scenario.groups
            ),
            condition=condition,
            then=Outcome(status=scenario.then),
            otherwise=Outcome(status=scenario.otherwise),
            description=scenario.title or None,
            source=self._source,
            line=scenario.line,
        )
