"""
SQL DDL parser.

Turns the text of one schema file into raw table and view statements. Each
file is parsed independently of every other file; resolving view columns
against base tables happens later in the schema compiler, once all files
are known.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from pydantic import BaseModel, Field

from rulegate.core.errors import CompileSyntaxError, CompileTypeError
from rulegate.core.types import NeutralType

logger = logging.getLogger(__name__)


# =============================================================================
# Native type table
# =============================================================================

NATIVE_TYPES: dict[str, NeutralType] = {
    "VARCHAR": NeutralType.STRING,
    "CHAR": NeutralType.STRING,
    "CHARACTER": NeutralType.STRING,
    "CHARACTER VARYING": NeutralType.STRING,
    "NVARCHAR": NeutralType.STRING,
    "NCHAR": NeutralType.STRING,
    "VARCHAR2": NeutralType.STRING,
    "NVARCHAR2": NeutralType.STRING,
    "TEXT": NeutralType.STRING,
    "CLOB": NeutralType.STRING,
    "INT": NeutralType.INT32,
    "INTEGER": NeutralType.INT32,
    "SMALLINT": NeutralType.INT32,
    "TINYINT": NeutralType.INT32,
    "MEDIUMINT": NeutralType.INT32,
    "SERIAL": NeutralType.INT32,
    "BIGINT": NeutralType.INT64,
    "LONG": NeutralType.INT64,
    "BIGSERIAL": NeutralType.INT64,
    "DECIMAL": NeutralType.DECIMAL,
    "NUMERIC": NeutralType.DECIMAL,
    "NUMBER": NeutralType.DECIMAL,
    "MONEY": NeutralType.DECIMAL,
    "FLOAT": NeutralType.FLOAT64,
    "DOUBLE": NeutralType.FLOAT64,
    "DOUBLE PRECISION": NeutralType.FLOAT64,
    "REAL": NeutralType.FLOAT64,
    "DATE": NeutralType.DATE,
    "TIMESTAMP": NeutralType.DATETIME,
    "TIMESTAMPTZ": NeutralType.DATETIME,
    "DATETIME": NeutralType.DATETIME,
    "DATETIME2": NeutralType.DATETIME,
    "BOOLEAN": NeutralType.BOOL,
    "BOOL": NeutralType.BOOL,
    "BIT": NeutralType.BOOL,
}

# Words that end the type part of a column declaration
_TYPE_STOP_WORDS = {
    "NOT", "NULL", "DEFAULT", "PRIMARY", "UNIQUE", "CHECK", "REFERENCES",
    "CONSTRAINT", "AUTO_INCREMENT", "AUTOINCREMENT", "GENERATED", "COLLATE",
    "COMMENT", "IDENTITY", "ON",
}

# Leading words of table-level constraint lines
_CONSTRAINT_KEYWORDS = ("PRIMARY", "FOREIGN", "CONSTRAINT", "UNIQUE", "CHECK", "INDEX", "KEY", "EXCLUDE")


# =============================================================================
# Raw statement types
# =============================================================================


class ColumnSpec(BaseModel):
    """A column declaration as written in CREATE TABLE."""

    name: str
    native_type: str
    type: NeutralType
    nullable: bool = True
    is_primary_key: bool = False
    primary_key_position: int | None = None
    precision: int | None = None
    scale: int | None = None


class TableSpec(BaseModel):
    """A parsed CREATE TABLE statement."""

    name: str
    domain: str | None = None
    columns: list[ColumnSpec] = Field(default_factory=list)
    source: str | None = None
    line: int = 1


class ProjectionSpec(BaseModel):
    """One item of a view's SELECT list."""

    expression: str
    alias: str | None = None
    offset: int = 0


class SourceSpec(BaseModel):
    """One table of a view's FROM/JOIN clause."""

    table: str
    alias: str | None = None


class ViewSpec(BaseModel):
    """A parsed CREATE VIEW ... AS SELECT statement."""

    name: str
    domain: str | None = None
    projections: list[ProjectionSpec] = Field(default_factory=list)
    sources: list[SourceSpec] = Field(default_factory=list)
    column_names: list[str] | None = None
    filter_clauses: list[str] = Field(default_factory=list)
    """JOIN ON, WHERE, GROUP BY and HAVING text."""

    source: str | None = None
    text: str = ""
    offset: int = 0
    line: int = 1


class DomainMarker(BaseModel):
    name: str
    description: str | None = None
    offset: int


class ParsedSchema(BaseModel):
    """Everything declared in one schema file, in declaration order."""

    source: str | None = None
    tables: list[TableSpec] = Field(default_factory=list)
    views: list[ViewSpec] = Field(default_factory=list)
    markers: list[DomainMarker] = Field(default_factory=list)


# =============================================================================
# Lexical helpers
# =============================================================================

IDENT = r'(?:`[^`]+`|"[^"]+"|\[[^\]]+\]|[A-Za-z_][\w$]*)'
QUALIFIED = rf"{IDENT}(?:\s*\.\s*{IDENT})*"

_MARKER_RE = re.compile(
    r"--[ \t]*([A-Za-z_][\w-]*)[ \t]+domain\b[ \t]*(?::[ \t]*(.*))?$",
    re.IGNORECASE | re.MULTILINE,
)
_TABLE_RE = re.compile(
    rf"CREATE\s+(?:(?:GLOBAL|LOCAL)\s+)?(?:TEMP(?:ORARY)?\s+)?TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?"
    rf"(?P<name>{QUALIFIED})\s*\(",
    re.IGNORECASE,
)
_VIEW_RE = re.compile(
    rf"CREATE\s+(?:OR\s+REPLACE\s+)?(?:TEMP(?:ORARY)?\s+)?(?:MATERIALIZED\s+)?VIEW\s+"
    rf"(?:IF\s+NOT\s+EXISTS\s+)?(?P<name>{QUALIFIED})\s*(?:\((?P<cols>[^)]*)\)\s*)?AS\b",
    re.IGNORECASE,
)
_CLAUSE_RE = re.compile(
    r"\b(?P<kw>FROM|WHERE|GROUP\s+BY|HAVING|ORDER\s+BY|LIMIT|UNION|INTERSECT|EXCEPT)\b",
    re.IGNORECASE,
)
_JOIN_RE = re.compile(
    r"\b(?:NATURAL\s+)?(?:(?:INNER|CROSS|(?:LEFT|RIGHT|FULL)(?:\s+OUTER)?)\s+)?JOIN\b",
    re.IGNORECASE,
)
_SOURCE_RE = re.compile(
    rf"^\s*(?P<table>{QUALIFIED})(?:\s+(?:AS\s+)?(?P<alias>{IDENT}))?"
    rf"(?:\s+(?:ON\s+(?P<on>.*)|USING\s*\((?P<using>[^)]*)\)))?\s*$",
    re.IGNORECASE | re.DOTALL,
)
_ALIAS_RE = re.compile(rf"^(?P<expr>.*?)\s+(?:(?P<as>AS)\s+)?(?P<alias>{IDENT})\s*$", re.IGNORECASE | re.DOTALL)
_TYPE_TOKEN_RE = re.compile(r"\([^)]*\)|[^\s(]+")
_NOT_NULL_RE = re.compile(r"\bNOT\s+NULL\b", re.IGNORECASE)
_PRIMARY_KEY_RE = re.compile(r"\bPRIMARY\s+KEY\b", re.IGNORECASE)
_KEY_COLUMNS_RE = re.compile(r"\bPRIMARY\s+KEY\s*\((?P<cols>[^)]*)\)", re.IGNORECASE)

_RESERVED_ALIASES = {
    "ON", "USING", "WHERE", "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "CROSS",
    "NATURAL", "GROUP", "ORDER", "HAVING", "LIMIT", "END", "FROM", "AND", "OR",
}


def unquote(identifier: str) -> str:
    """Strip identifier quoting and schema qualification."""
    parts = re.findall(IDENT, identifier.strip())
    last = parts[-1] if parts else identifier.strip()
    if len(last) >= 2 and (last[0], last[-1]) in (("`", "`"), ('"', '"'), ("[", "]")):
        return last[1:-1]
    return last


def strip_comments(text: str) -> str:
    """Blank out SQL comments, keeping offsets and newlines intact."""
    out = list(text)
    i = 0
    n = len(text)
    quote: str | None = None
    while i < n:
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
            i += 1
        elif ch in ("'", '"', "`"):
            quote = ch
            i += 1
        elif text.startswith("--", i):
            end = text.find("\n", i)
            end = n if end == -1 else end
            for j in range(i, end):
                out[j] = " "
            i = end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            for j in range(i, end):
                if out[j] != "\n":
                    out[j] = " "
            i = end
        else:
            i += 1
    return "".join(out)


def mask(text: str) -> str:
    """Blank out quoted text and the insides of parentheses.

    Keywords and separators found in the masked text are exactly the
    top-level ones of the input; offsets are unchanged.
    """
    out = list(text)
    depth = 0
    quote: str | None = None
    closing = {"'": "'", '"': '"', "`": "`", "[": "]"}
    for i, ch in enumerate(text):
        if quote:
            if ch == quote:
                quote = None
                if depth > 0:
                    out[i] = " "
            else:
                out[i] = " "
        elif ch in closing:
            quote = closing[ch]
            if depth > 0:
                out[i] = " "
        elif ch == "(":
            if depth > 0:
                out[i] = " "
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth > 0:
                out[i] = " "
        elif depth > 0:
            out[i] = " "
    return "".join(out)


def split_top_level(text: str, sep: str = ",") -> list[tuple[str, int]]:
    """Split on a separator outside parentheses and quotes.

    Returns:
        (piece, offset within text) pairs
    """
    masked = mask(text)
    pieces: list[tuple[str, int]] = []
    start = 0
    for i, ch in enumerate(masked):
        if ch == sep:
            pieces.append((text[start:i], start))
            start = i + 1
    pieces.append((text[start:], start))
    return pieces


def _closing_paren(text: str, open_index: int) -> int:
    depth = 0
    quote: str | None = None
    for i in range(open_index, len(text)):
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
    return -1


# =============================================================================
# Parser
# =============================================================================


class SchemaParser:
    """Parses CREATE TABLE / CREATE VIEW statements from one DDL file."""

    def parse_file(self, path: str | Path) -> ParsedSchema:
        path = Path(path)
        return self.parse_text(path.read_text(encoding="utf-8"), source=str(path))

    def parse_text(self, text: str, source: str | None = None) -> ParsedSchema:
        """Parse DDL text.

        Args:
            text: Raw SQL
            source: File name used in error locations

        Returns:
            ParsedSchema with tables, views and domain markers

        Raises:
            CompileSyntaxError: Malformed statement
            CompileTypeError: Column of an unknown native type
        """
        result = ParsedSchema(source=source)
        for match in _MARKER_RE.finditer(text):
            description = (match.group(2) or "").strip() or None
            result.markers.append(
                DomainMarker(name=match.group(1).lower(), description=description, offset=match.start())
            )

        cleaned = strip_comments(text)
        for statement, offset in split_top_level(cleaned, ";"):
            stripped = statement.lstrip()
            if not stripped.strip():
                continue
            start = offset + len(statement) - len(stripped)
            head = " ".join(stripped.split()[:6]).upper()
            if not head.startswith("CREATE"):
                logger.debug("Skipping non-DDL statement at offset %d in %s", start, source)
                continue
            domain = self._domain_for(result.markers, start)
            if _is_create(head, "TABLE"):
                result.tables.append(self._parse_table(stripped.rstrip(), text, start, source, domain))
            elif _is_create(head, "VIEW"):
                result.views.append(self._parse_view(stripped.rstrip(), text, start, source, domain))
            else:
                logger.debug("Skipping %s at offset %d in %s", head, start, source)

        logger.debug(
            "Parsed %s: %d tables, %d views", source or "<text>", len(result.tables), len(result.views)
        )
        return result

    @staticmethod
    def _domain_for(markers: list[DomainMarker], offset: int) -> str | None:
        domain = None
        for marker in markers:
            if marker.offset < offset:
                domain = marker.name
        return domain

    # -------------------------------------------------------------------------
    # Tables
    # -------------------------------------------------------------------------

    def _parse_table(
        self, statement: str, text: str, start: int, source: str | None, domain: str | None
    ) -> TableSpec:
        match = _TABLE_RE.match(statement)
        if not match:
            raise CompileSyntaxError.at_offset("malformed CREATE TABLE statement", text, start, source)
        name = unquote(match.group("name"))
        open_index = match.end() - 1
        close_index = _closing_paren(statement, open_index)
        if close_index == -1:
            raise CompileSyntaxError.at_offset(
                f"unbalanced parentheses in CREATE TABLE {name}", text, start + open_index, source
            )

        body = statement[open_index + 1:close_index]
        body_offset = start + open_index + 1
        columns: list[ColumnSpec] = []
        table_keys: list[str] = []

        for item, item_offset in split_top_level(body):
            line = item.strip()
            location = body_offset + item_offset + (len(item) - len(item.lstrip()))
            if not line:
                raise CompileSyntaxError.at_offset(
                    f"empty column definition in table {name}", text, location, source
                )
            first = re.match(r"\w*", line).group(0).upper()
            if first in _CONSTRAINT_KEYWORDS and not _looks_like_column(line):
                keys = _KEY_COLUMNS_RE.search(line)
                if keys:
                    table_keys.extend(unquote(k) for k in keys.group("cols").split(","))
                continue
            columns.append(self._parse_column(line, name, text, location, source))

        if not columns:
            raise CompileSyntaxError.at_offset(f"table {name} declares no columns", text, start, source)

        # Inline keys first, then table-level keys in their declared order
        position = 0
        by_name = {c.name.lower(): c for c in columns}
        for column in columns:
            if column.is_primary_key:
                position += 1
                column.primary_key_position = position
        for key in table_keys:
            column = by_name.get(key.lower())
            if column is None:
                raise CompileSyntaxError.at_offset(
                    f"primary key column '{key}' is not declared in table {name}", text, start, source
                )
            if not column.is_primary_key:
                position += 1
                column.is_primary_key = True
                column.nullable = False
                column.primary_key_position = position

        return TableSpec(
            name=name,
            domain=domain,
            columns=columns,
            source=source,
            line=text.count("\n", 0, start) + 1,
        )

    def _parse_column(
        self, line: str, table: str, text: str, offset: int, source: str | None
    ) -> ColumnSpec:
        name_match = re.match(IDENT, line)
        if not name_match:
            raise CompileSyntaxError.at_offset(
                f"invalid column declaration in table {table}: {line}", text, offset, source
            )
        name = unquote(name_match.group(0))
        rest = line[name_match.end():]

        words: list[str] = []
        args: str | None = None
        for token in _TYPE_TOKEN_RE.findall(rest):
            if token.startswith("("):
                if args is None and words:
                    args = token[1:-1]
                    continue
                break
            if token.upper() in _TYPE_STOP_WORDS or args is not None:
                break
            words.append(token.upper())

        if not words:
            raise CompileSyntaxError.at_offset(
                f"column '{name}' in table {table} has no type", text, offset, source
            )

        native = " ".join(words)
        neutral = NATIVE_TYPES.get(native) or NATIVE_TYPES.get(words[0])
        if neutral is None:
            raise CompileTypeError.at_offset(
                f"unknown native type '{native}' for column '{name}' in table {table}",
                text,
                offset,
                source,
            )

        precision = scale = None
        if neutral is NeutralType.DECIMAL and args:
            parts = [p.strip() for p in args.split(",")]
            if parts[0].isdigit():
                precision = int(parts[0])
            if len(parts) > 1 and parts[1].isdigit():
                scale = int(parts[1])

        is_pk = bool(_PRIMARY_KEY_RE.search(rest))
        return ColumnSpec(
            name=name,
            native_type=native if args is None else f"{native}({args})",
            type=neutral,
            nullable=not (is_pk or _NOT_NULL_RE.search(rest)),
            is_primary_key=is_pk,
            precision=precision,
            scale=scale,
        )

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def _parse_view(
        self, statement: str, text: str, start: int, source: str | None, domain: str | None
    ) -> ViewSpec:
        match = _VIEW_RE.match(statement)
        if not match:
            raise CompileSyntaxError.at_offset("malformed CREATE VIEW statement", text, start, source)
        name = unquote(match.group("name"))
        column_names = None
        if match.group("cols"):
            column_names = [unquote(c) for c in match.group("cols").split(",")]

        select = statement[match.end():]
        select_offset = start + match.end()
        leading = len(select) - len(select.lstrip())
        select = select.strip()
        select_offset += leading
        while select.startswith("(") and _closing_paren(select, 0) == len(select) - 1:
            select = select[1:-1].strip()
            select_offset += 1

        head = re.match(r"SELECT\s+(?:DISTINCT\s+|ALL\s+)?", select, re.IGNORECASE)
        if not head:
            raise CompileSyntaxError.at_offset(
                f"view {name} must be defined by a SELECT", text, select_offset, source
            )

        masked = mask(select)
        clauses = [(m.group("kw").upper().split()[0], m.start(), m.end()) for m in _CLAUSE_RE.finditer(masked)]
        if not clauses or clauses[0][0] != "FROM":
            raise CompileSyntaxError.at_offset(
                f"view {name} has no FROM clause", text, select_offset, source
            )
        for keyword, _, _ in clauses:
            if keyword in ("UNION", "INTERSECT", "EXCEPT"):
                raise CompileSyntaxError.at_offset(
                    f"view {name}: set operations are not supported", text, select_offset, source
                )

        projection_text = select[head.end():clauses[0][1]]
        projections: list[ProjectionSpec] = []
        for item, item_offset in split_top_level(projection_text):
            item_start = select_offset + head.end() + item_offset
            if not item.strip():
                raise CompileSyntaxError.at_offset(
                    f"empty select item in view {name}", text, item_start, source
                )
            projections.append(_projection(item.strip(), item_start))

        spec = ViewSpec(
            name=name,
            domain=domain,
            projections=projections,
            column_names=column_names,
            source=source,
            text=text,
            offset=start,
            line=text.count("\n", 0, start) + 1,
        )

        for index, (keyword, _, kw_end) in enumerate(clauses):
            end = clauses[index + 1][1] if index + 1 < len(clauses) else len(select)
            body = select[kw_end:end]
            if keyword == "FROM":
                self._parse_sources(spec, body, text, select_offset + kw_end)
            elif keyword in ("WHERE", "GROUP", "HAVING"):
                spec.filter_clauses.append(body.strip())

        if column_names is not None and len(column_names) != len(projections):
            raise CompileSyntaxError.at_offset(
                f"view {name} names {len(column_names)} columns but selects {len(projections)}",
                text,
                start,
                source,
            )
        return spec

    def _parse_sources(self, spec: ViewSpec, body: str, text: str, offset: int) -> None:
        for piece, piece_offset in split_top_level(body):
            masked = mask(piece)
            bounds = [0] + [m.start() for m in _JOIN_RE.finditer(masked)] + [len(piece)]
            for i in range(len(bounds) - 1):
                segment = piece[bounds[i]:bounds[i + 1]]
                if i > 0:
                    segment = _JOIN_RE.sub("", segment, count=1)
                if segment.strip().startswith("("):
                    raise CompileSyntaxError.at_offset(
                        f"view {spec.name}: derived tables are not supported",
                        text,
                        offset + piece_offset + bounds[i],
                        spec.source,
                    )
                match = _SOURCE_RE.match(segment)
                if not match:
                    raise CompileSyntaxError.at_offset(
                        f"view {spec.name}: cannot parse FROM item '{segment.strip()}'",
                        text,
                        offset + piece_offset + bounds[i],
                        spec.source,
                    )
                alias = match.group("alias")
                if alias and alias.upper() in _RESERVED_ALIASES:
                    alias = None
                spec.sources.append(
                    SourceSpec(table=unquote(match.group("table")), alias=unquote(alias) if alias else None)
                )
                if match.group("on"):
                    spec.filter_clauses.append(match.group("on").strip())
                if match.group("using"):
                    spec.filter_clauses.append(match.group("using").strip())


def _is_create(head: str, kind: str) -> bool:
    words = head.split()
    return kind in words[:6] and (kind != "TABLE" or "VIEW" not in words[:6])


def _looks_like_column(line: str) -> bool:
    """A column literally named ``key`` or ``check`` followed by a type."""
    words = line.split()
    if len(words) < 2 or words[0].upper() in ("PRIMARY", "FOREIGN", "CONSTRAINT"):
        return False
    second = re.split(r"[\s(]", words[1], maxsplit=1)[0].upper()
    return second in NATIVE_TYPES


def _projection(item: str, offset: int) -> ProjectionSpec:
    masked = mask(item)
    match = _ALIAS_RE.match(masked)
    if match:
        expr_end = match.end("expr")
        has_as = match.group("as") is not None
        alias = item[match.start("alias"):match.end("alias")]
        expression = item[:expr_end].strip()
        dangling = expression.rstrip()[-1:] in ("+", "-", "*", "/", "%", ",", "(")
        if alias.upper() not in _RESERVED_ALIASES and (has_as or not dangling):
            return ProjectionSpec(expression=expression, alias=unquote(alias), offset=offset)
    return ProjectionSpec(expression=item, offset=offset)
