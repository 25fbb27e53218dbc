"""
Neutral type system and operator vocabulary shared by every compiler stage.

NeutralType is the language-agnostic scalar type carried by the Model IR,
the Rule IR and the compiled rules. Operator is the six-symbol comparison
set that both the natural-language DSL phrases and the symbolic table
operators normalize to.
"""

from __future__ import annotations

from enum import Enum


class NeutralType(str, Enum):
    """Scalar column type independent of any SQL dialect or host language."""

    STRING = "string"
    INT32 = "int32"
    INT64 = "int64"
    DECIMAL = "decimal"
    FLOAT64 = "float64"
    BOOL = "bool"
    DATE = "date"
    DATETIME = "datetime"

    @property
    def is_comparable(self) -> bool:
        """Temporal types carry no operators in rule conditions."""
        return self not in (NeutralType.DATE, NeutralType.DATETIME)

    @property
    def is_numeric(self) -> bool:
        return self in NUMERIC_TYPES

    @property
    def is_orderable(self) -> bool:
        return self.is_comparable and self is not NeutralType.BOOL


# Widening order used for arithmetic view columns
NUMERIC_TYPES: tuple[NeutralType, ...] = (
    NeutralType.INT32,
    NeutralType.INT64,
    NeutralType.DECIMAL,
    NeutralType.FLOAT64,
)


def widest(types: list[NeutralType]) -> NeutralType:
    """Return the widest numeric type of the given operand types."""
    return max(types, key=NUMERIC_TYPES.index)


# Registry spellings accepted in metadata.yaml
_TYPE_ALIASES: dict[str, NeutralType] = {
    "string": NeutralType.STRING,
    "str": NeutralType.STRING,
    "text": NeutralType.STRING,
    "int": NeutralType.INT32,
    "integer": NeutralType.INT32,
    "int32": NeutralType.INT32,
    "long": NeutralType.INT64,
    "int64": NeutralType.INT64,
    "decimal": NeutralType.DECIMAL,
    "bigdecimal": NeutralType.DECIMAL,
    "double": NeutralType.FLOAT64,
    "float": NeutralType.FLOAT64,
    "float64": NeutralType.FLOAT64,
    "bool": NeutralType.BOOL,
    "boolean": NeutralType.BOOL,
    "date": NeutralType.DATE,
    "datetime": NeutralType.DATETIME,
    "timestamp": NeutralType.DATETIME,
}


def normalize_type_name(name: str) -> NeutralType | None:
    """Map a registry type spelling (``boolean``, ``Long``, ``String``) to a NeutralType."""
    return _TYPE_ALIASES.get(name.strip().lower())


class Operator(str, Enum):
    """Comparison operator in symbolic form."""

    EQ = "=="
    NE = "!="
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="

    @property
    def is_ordering(self) -> bool:
        return self not in (Operator.EQ, Operator.NE)

    @classmethod
    def parse(cls, text: str) -> Operator | None:
        """Normalize a symbol or natural-language phrase to an Operator.

        Args:
            text: ``>=``, ``=``, ``is at least``, ``does not equal``...

        Returns:
            The operator, or None if the text is not recognised
        """
        cleaned = " ".join(text.strip().lower().split())
        if cleaned in _SYMBOLS:
            return _SYMBOLS[cleaned]
        return _PHRASES.get(cleaned)


_SYMBOLS: dict[str, Operator] = {
    "==": Operator.EQ,
    "=": Operator.EQ,
    "!=": Operator.NE,
    "<>": Operator.NE,
    ">": Operator.GT,
    "<": Operator.LT,
    ">=": Operator.GTE,
    "<=": Operator.LTE,
}

_PHRASES: dict[str, Operator] = {
    "does not equal": Operator.NE,
    "is not equal to": Operator.NE,
    "is greater than": Operator.GT,
    "is less than": Operator.LT,
    "is at least": Operator.GTE,
    "is at most": Operator.LTE,
    "is equal to": Operator.EQ,
    "equals": Operator.EQ,
}

# Longest phrase first so "does not equal" wins over "equals"
OPERATOR_PHRASES: tuple[str, ...] = tuple(sorted(_PHRASES, key=len, reverse=True))


class Logic(str, Enum):
    """Compound combinator."""

    AND = "AND"
    OR = "OR"


class TargetKind(str, Enum):
    """Kind of Model IR entry a rule evaluates against."""

    MODEL = "model"
    VIEW = "view"
