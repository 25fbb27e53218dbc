"""
Schema compiler: raw DDL statements to Model IR.

Tables from every file are registered first, then views are resolved in
declaration order so a view may select from any table and from any view
declared before it.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable

from rulegate.core.config import get_settings
from rulegate.core.errors import (
    CompileReferenceError,
    CompileSyntaxError,
    CompileTypeError,
    DuplicateDefinitionError,
)
from rulegate.core.types import NeutralType, widest
from .parser import (
    IDENT,
    ParsedSchema,
    ProjectionSpec,
    SchemaParser,
    TableSpec,
    ViewSpec,
    mask,
    unquote,
)
from .schemas import DomainSchema, EntityDef, FieldDef, ModelDef, ModelIR, ViewDef

logger = logging.getLogger(__name__)


# =============================================================================
# Naming
# =============================================================================


def singularize(word: str) -> str:
    lower = word.lower()
    if lower.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if lower.endswith(("sses", "xes", "ches", "shes", "uses")):
        return word[:-2]
    if lower.endswith("s") and not lower.endswith("ss"):
        return word[:-1]
    return word


def pascal_case(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[_\-\s]+", name) if part)


def model_name(table: str) -> str:
    """``users`` -> ``User``, ``order_items`` -> ``OrderItem``."""
    parts = [p for p in re.split(r"[_\-\s]+", table) if p]
    if not parts:
        return table
    parts[-1] = singularize(parts[-1])
    return pascal_case("_".join(parts))


def resource_name(name: str) -> str:
    """Kebab-case resource path segment."""
    return re.sub(r"[_\s]+", "-", name).lower()


# =============================================================================
# Ordinals
# =============================================================================


class OrdinalRegistry:
    """Stable field numbering across recompilation.

    Seeded from a previous Model IR: existing fields keep their ordinal,
    new fields are numbered after the highest ordinal ever assigned to the
    entity, so numbers are never reused.
    """

    def __init__(self, previous: ModelIR | None = None):
        self._known: dict[tuple[str, str], dict[str, int]] = {}
        if previous is not None:
            for entity in previous.entities():
                self._known[(entity.domain, entity.name)] = {f.name: f.ordinal for f in entity.fields}

    def assign(self, domain: str, entity: str, field_names: list[str]) -> list[int]:
        known = self._known.get((domain, entity), {})
        next_ordinal = max(known.values(), default=0)
        ordinals = []
        for name in field_names:
            if name in known:
                ordinals.append(known[name])
            else:
                next_ordinal += 1
                ordinals.append(next_ordinal)
        return ordinals


# =============================================================================
# View column resolution
# =============================================================================

_AGGREGATE_RE = re.compile(
    r"^(?P<fn>COUNT|SUM|AVG|MIN|MAX)\s*\(\s*(?:DISTINCT\s+)?(?P<inner>.*?)\s*\)$",
    re.IGNORECASE | re.DOTALL,
)
_CALL_RE = re.compile(r"^(?P<fn>[A-Za-z_]\w*)\s*\(", re.DOTALL)
_COLUMN_RE = re.compile(rf"^(?:(?P<qualifier>{IDENT})\s*\.\s*)?(?P<column>{IDENT})$")
_STAR_RE = re.compile(rf"^(?:(?P<qualifier>{IDENT})\s*\.\s*)?\*$")
_INT_RE = re.compile(r"^\d+$")
_DECIMAL_RE = re.compile(r"^\d+\.\d*$|^\.\d+$")
_STRING_RE = re.compile(r"^'(?:[^']|'')*'$")
_REFERENCE_RE = re.compile(rf"(?:(?P<qualifier>{IDENT})\s*\.\s*)?(?P<column>{IDENT})")
_SQL_WORDS = {
    "AND", "OR", "NOT", "NULL", "IS", "IN", "LIKE", "BETWEEN", "TRUE", "FALSE",
    "EXISTS", "CASE", "WHEN", "THEN", "ELSE", "END", "AS", "ASC", "DESC",
    "COUNT", "SUM", "AVG", "MIN", "MAX", "DISTINCT",
}


class _Resolved:
    """Type of one select expression; origin is 'table.column' for plain columns."""

    __slots__ = ("type", "nullable", "name", "precision", "scale", "origin")

    def __init__(self, type, nullable, name=None, precision=None, scale=None, origin=None):
        self.type = type
        self.nullable = nullable
        self.name = name
        self.precision = precision
        self.scale = scale
        self.origin = origin


class RelationIndex:
    """Tables and views compiled so far, keyed by (domain, SQL name)."""

    def __init__(self):
        self._entities: dict[tuple[str, str], EntityDef] = {}

    def add(self, entity: EntityDef) -> None:
        self._entities[(entity.domain, entity.source_name)] = entity

    def lookup(self, domain: str, name: str) -> list[EntityDef]:
        """Relations a view in ``domain`` may mean by ``name``.

        A relation of the view's own domain wins; otherwise every domain
        declaring the name is a candidate.
        """
        name = name.lower()
        local = self._entities.get((domain, name))
        if local is not None:
            return [local]
        return [e for (_, n), e in self._entities.items() if n == name]


class ViewResolver:
    """Types the projected columns of one view against known relations."""

    def __init__(self, view: ViewSpec, relations: RelationIndex, domain: str):
        self.view = view
        self._aliases: dict[str, EntityDef] = {}
        for source in view.sources:
            candidates = relations.lookup(domain, source.table)
            if not candidates:
                raise self._reference_error(
                    f"view {view.name} selects from unknown table '{source.table}'"
                )
            if len(candidates) > 1:
                owners = ", ".join(sorted(c.domain for c in candidates))
                raise self._reference_error(
                    f"view {view.name}: table '{source.table}' is ambiguous, declared in domains {owners}"
                )
            relation = candidates[0]
            self._aliases[source.table.lower()] = relation
            if source.alias:
                self._aliases[source.alias.lower()] = relation

    def _reference_error(self, message: str, offset: int | None = None) -> CompileReferenceError:
        return CompileReferenceError.at_offset(
            message, self.view.text, self.view.offset if offset is None else offset, self.view.source
        )

    def fields(self) -> list[_Resolved]:
        resolved: list[_Resolved] = []
        for projection in self.view.projections:
            star = _STAR_RE.match(projection.expression)
            if star:
                resolved.extend(self._expand_star(star.group("qualifier"), projection))
                continue
            column = self.resolve(projection.expression, projection)
            column.name = projection.alias or column.name
            if not column.name:
                raise self._reference_error(
                    f"view {self.view.name}: expression '{projection.expression}' needs an alias",
                    projection.offset,
                )
            resolved.append(column)
        return resolved

    def _expand_star(self, qualifier: str | None, projection: ProjectionSpec) -> list[_Resolved]:
        if qualifier:
            relations = [self._relation(unquote(qualifier), projection)]
        else:
            relations = [self._aliases[s.alias.lower() if s.alias else s.table.lower()] for s in self.view.sources]
        return [
            _Resolved(f.type, f.nullable, f.name, f.precision, f.scale, f"{relation.source_name}.{f.name}")
            for relation in relations
            for f in relation.fields
        ]

    def _relation(self, qualifier: str, projection: ProjectionSpec) -> EntityDef:
        relation = self._aliases.get(qualifier.lower())
        if relation is None:
            raise self._reference_error(
                f"view {self.view.name}: unknown table alias '{qualifier}' in '{projection.expression}'",
                projection.offset,
            )
        return relation

    def resolve(self, expression: str, projection: ProjectionSpec) -> _Resolved:
        """Resolve one select expression to its neutral type.

        Raises:
            CompileReferenceError: Unknown alias, column or function
            CompileTypeError: Arithmetic over non-numeric operands
        """
        expr = expression.strip()
        while expr.startswith("(") and _wraps(expr):
            expr = expr[1:-1].strip()

        operands = _split_arithmetic(expr)
        if len(operands) > 1:
            return self._resolve_arithmetic(expr, operands, projection)

        aggregate = _AGGREGATE_RE.match(expr)
        if aggregate and _wraps(expr[expr.index("("):]):
            return self._resolve_aggregate(aggregate.group("fn").upper(), aggregate.group("inner"), projection)

        call = _CALL_RE.match(expr)
        if call:
            raise self._reference_error(
                f"view {self.view.name}: unknown function '{call.group('fn')}' in '{projection.expression}'",
                projection.offset,
            )

        if _INT_RE.match(expr):
            return _Resolved(NeutralType.INT32, False)
        if _DECIMAL_RE.match(expr):
            return _Resolved(NeutralType.DECIMAL, False)
        if _STRING_RE.match(expr):
            return _Resolved(NeutralType.STRING, False)
        if expr.upper() in ("TRUE", "FALSE"):
            return _Resolved(NeutralType.BOOL, False)

        column = _COLUMN_RE.match(expr)
        if column:
            return self._resolve_column(column.group("qualifier"), unquote(column.group("column")), projection)

        raise self._reference_error(
            f"view {self.view.name}: cannot resolve expression '{projection.expression}'",
            projection.offset,
        )

    def _resolve_column(self, qualifier: str | None, name: str, projection: ProjectionSpec) -> _Resolved:
        if qualifier:
            relation = self._relation(unquote(qualifier), projection)
            field = relation.get_field(name) or _get_field_ci(relation, name)
            if field is None:
                raise self._reference_error(
                    f"view {self.view.name}: '{relation.source_name}' has no column '{name}' "
                    f"in '{projection.expression}'",
                    projection.offset,
                )
            return _Resolved(
                field.type, field.nullable, field.name, field.precision, field.scale,
                f"{relation.source_name}.{field.name}",
            )

        matches = []
        for source in self.view.sources:
            relation = self._aliases[source.table.lower()]
            field = relation.get_field(name) or _get_field_ci(relation, name)
            if field is not None:
                matches.append((relation, field))
        if not matches:
            raise self._reference_error(
                f"view {self.view.name}: unresolved column '{name}' in '{projection.expression}'",
                projection.offset,
            )
        if len(matches) > 1:
            raise self._reference_error(
                f"view {self.view.name}: ambiguous column '{name}' in '{projection.expression}'",
                projection.offset,
            )
        relation, field = matches[0]
        return _Resolved(
            field.type, field.nullable, field.name, field.precision, field.scale,
            f"{relation.source_name}.{field.name}",
        )

    def _resolve_aggregate(self, fn: str, inner: str, projection: ProjectionSpec) -> _Resolved:
        inner = inner.strip()
        if fn == "COUNT":
            if inner != "*":
                self.resolve(inner, projection)
            return _Resolved(NeutralType.INT64, False)
        if inner == "*" or not inner:
            raise self._reference_error(
                f"view {self.view.name}: {fn} needs a column in '{projection.expression}'",
                projection.offset,
            )
        source = self.resolve(inner, projection)
        if fn == "SUM":
            return _Resolved(NeutralType.DECIMAL, True)
        if fn == "AVG":
            return _Resolved(NeutralType.FLOAT64, True)
        return _Resolved(source.type, True, None, source.precision, source.scale)

    def _resolve_arithmetic(
        self, expr: str, operands: list[tuple[str, str]], projection: ProjectionSpec
    ) -> _Resolved:
        types: list[NeutralType] = []
        nullable = False
        divides = False
        for op, operand in operands:
            resolved = self.resolve(operand, projection)
            if not resolved.type.is_numeric:
                raise CompileTypeError.at_offset(
                    f"view {self.view.name}: non-numeric operand '{operand.strip()}' "
                    f"({resolved.type.value}) in '{projection.expression}'",
                    self.view.text,
                    projection.offset,
                    self.view.source,
                )
            types.append(resolved.type)
            nullable = nullable or resolved.nullable
            divides = divides or op == "/"
        result = widest(types)
        if divides and result in (NeutralType.INT32, NeutralType.INT64):
            result = NeutralType.FLOAT64
        return _Resolved(result, nullable)

    def referenced_columns(self, projected: list[_Resolved]) -> list[str]:
        """Base columns used in joins, filters and grouping but not projected as-is."""
        projected_origins = {c.origin for c in projected if c.origin}
        seen: list[str] = []
        for clause in self.view.filter_clauses:
            clean = re.sub(r"'(?:[^']|'')*'", " ", clause)
            for match in _REFERENCE_RE.finditer(clean):
                column = unquote(match.group("column"))
                if column.upper() in _SQL_WORDS:
                    continue
                qualifier = match.group("qualifier")
                if qualifier:
                    relation = self._aliases.get(unquote(qualifier).lower())
                else:
                    owners = [
                        self._aliases[s.table.lower()]
                        for s in self.view.sources
                        if _get_field_ci(self._aliases[s.table.lower()], column) is not None
                    ]
                    relation = owners[0] if len(owners) == 1 else None
                field = _get_field_ci(relation, column) if relation is not None else None
                if field is None:
                    continue
                ref = f"{relation.source_name}.{field.name}"
                if ref not in seen and ref not in projected_origins:
                    seen.append(ref)
        return seen


def _wraps(expr: str) -> bool:
    """True when the first parenthesis closes at the very end."""
    depth = 0
    for i, ch in enumerate(mask(expr)):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i == len(expr.rstrip()) - 1
    return False


def _split_arithmetic(expr: str) -> list[tuple[str, str]]:
    """Split on top-level + - * / into (operator, operand) pairs."""
    masked = mask(expr)
    parts: list[tuple[str, str]] = []
    op = ""
    start = 0
    previous = ""
    for i, ch in enumerate(masked):
        if ch in "+-*/" and previous not in ("", "+", "-", "*", "/", "("):
            parts.append((op, expr[start:i]))
            op = ch
            start = i + 1
            previous = ch
            continue
        if not ch.isspace():
            previous = ch
    parts.append((op, expr[start:]))
    return parts


def _get_field_ci(relation: EntityDef, name: str):
    lower = name.lower()
    for field in relation.fields:
        if field.name.lower() == lower:
            return field
    return None


# =============================================================================
# Compiler
# =============================================================================


class SchemaCompiler:
    """Compiles parsed DDL files into a Model IR."""

    def __init__(
        self,
        default_domain: str | None = None,
        domain_map: dict[str, str] | None = None,
        previous: ModelIR | None = None,
    ):
        """Initialize the compiler.

        Args:
            default_domain: Domain for statements with no marker
            domain_map: Explicit table/view name -> domain, wins over markers
            previous: Model IR of the last run, for stable ordinals
        """
        self.default_domain = default_domain or get_settings().default_domain
        self.domain_map = {k.lower(): v for k, v in (domain_map or {}).items()}
        self.ordinals = OrdinalRegistry(previous)

    def _domain(self, name: str, marker: str | None) -> str:
        return self.domain_map.get(name.lower()) or marker or self.default_domain

    def compile(self, parsed: Iterable[ParsedSchema]) -> ModelIR:
        """Build the Model IR from every parsed schema file.

        Raises:
            DuplicateDefinitionError: Two models or two views share a name in a domain
            CompileReferenceError: A view column cannot be resolved
        """
        parsed = list(parsed)
        order: list[str] = []
        models: dict[str, list[ModelDef]] = {}
        views: dict[str, list[ViewDef]] = {}
        relations = RelationIndex()

        def _domain_slot(domain: str) -> None:
            if domain not in order:
                order.append(domain)
                models[domain] = []
                views[domain] = []

        for schema in parsed:
            for table in schema.tables:
                domain = self._domain(table.name, table.domain)
                _domain_slot(domain)
                model = self._compile_table(table, domain)
                if any(m.name == model.name for m in models[domain]):
                    raise DuplicateDefinitionError(
                        f"duplicate model '{model.name}' in domain '{domain}'",
                        source=table.source,
                        line=table.line,
                    )
                models[domain].append(model)
                relations.add(model)

        for schema in parsed:
            for view in schema.views:
                domain = self._domain(view.name, view.domain)
                _domain_slot(domain)
                compiled = self._compile_view(view, domain, relations)
                if any(v.name == compiled.name for v in views[domain]):
                    raise DuplicateDefinitionError(
                        f"duplicate view '{compiled.name}' in domain '{domain}'",
                        source=view.source,
                        line=view.line,
                    )
                views[domain].append(compiled)
                relations.add(compiled)

        domains = {
            name: DomainSchema(name=name, models=tuple(models[name]), views=tuple(views[name]))
            for name in order
        }
        logger.info(
            "Compiled schema: %d domains, %d models, %d views",
            len(domains),
            sum(len(d.models) for d in domains.values()),
            sum(len(d.views) for d in domains.values()),
        )
        return ModelIR(domains=domains)

    def _compile_table(self, table: TableSpec, domain: str) -> ModelDef:
        name = model_name(table.name)
        seen: set[str] = set()
        for column in table.columns:
            if column.name.lower() in seen:
                raise DuplicateDefinitionError(
                    f"duplicate column '{column.name}' in table {table.name}",
                    source=table.source,
                    line=table.line,
                )
            seen.add(column.name.lower())

        ordinals = self.ordinals.assign(domain, name, [c.name for c in table.columns])
        fields = tuple(
            FieldDef(
                name=c.name,
                type=c.type,
                nullable=c.nullable,
                is_primary_key=c.is_primary_key,
                primary_key_position=c.primary_key_position,
                ordinal=ordinal,
                precision=c.precision,
                scale=c.scale,
            )
            for c, ordinal in zip(table.columns, ordinals)
        )
        logger.debug("Table %s -> model %s (%s)", table.name, name, domain)
        return ModelDef(
            name=name,
            domain=domain,
            source_table=table.name.lower(),
            resource=resource_name(table.name),
            fields=fields,
        )

    def _compile_view(self, view: ViewSpec, domain: str, relations: RelationIndex) -> ViewDef:
        resolver = ViewResolver(view, relations, domain)
        columns = resolver.fields()
        if view.column_names is not None:
            if len(view.column_names) != len(columns):
                raise CompileSyntaxError(
                    f"view {view.name} names {len(view.column_names)} columns but selects {len(columns)}",
                    source=view.source,
                    line=view.line,
                )
            for column, name in zip(columns, view.column_names):
                column.name = name

        names = [c.name for c in columns]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise DuplicateDefinitionError(
                f"view {view.name} projects duplicate column(s): {', '.join(sorted(duplicates))}",
                source=view.source,
                line=view.line,
            )

        name = pascal_case(view.name)
        ordinals = self.ordinals.assign(domain, name, names)
        fields = tuple(
            FieldDef(
                name=c.name,
                type=c.type,
                nullable=c.nullable,
                ordinal=ordinal,
                precision=c.precision,
                scale=c.scale,
            )
            for c, ordinal in zip(columns, ordinals)
        )
        logger.debug("View %s -> %s (%s), %d projected", view.name, name, domain, len(fields))
        return ViewDef(
            name=name,
            domain=domain,
            source_view=view.name.lower(),
            resource=resource_name(view.name),
            fields=fields,
            referenced_columns=tuple(resolver.referenced_columns(columns)),
        )


def compile_schema_files(
    paths: Iterable[str | Path],
    default_domain: str | None = None,
    domain_map: dict[str, str] | None = None,
    previous: ModelIR | None = None,
) -> ModelIR:
    """Convenience function to parse and compile DDL files sequentially."""
    parser = SchemaParser()
    parsed = [parser.parse_file(path) for path in paths]
    return SchemaCompiler(default_domain, domain_map, previous).compile(parsed)


def compile_schema_text(
    text: str,
    default_domain: str | None = None,
    previous: ModelIR | None = None,
) -> ModelIR:
    """Convenience function for DDL held in memory."""
    return SchemaCompiler(default_domain, previous=previous).compile([SchemaParser().parse_text(text)])
