"""
Compiler error taxonomy.

Every compiler stage is fatal on the first error: the build aborts and no
partial rule set is produced. SemanticWarning is the one non-fatal finding;
it is collected on the validation report instead of being raised.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class CompilationError(Exception):
    """Base class for fatal compiler-stage errors."""

    kind = "CompilationError"

    def __init__(
        self,
        message: str,
        source: str | None = None,
        line: int | None = None,
        column: int | None = None,
        offset: int | None = None,
        rule: str | None = None,
    ):
        self.message = message
        self.source = source
        self.line = line
        self.column = column
        self.offset = offset
        self.rule = rule
        super().__init__(self._render())

    def _render(self) -> str:
        location = ":".join(
            str(part) for part in (self.source, self.line, self.column) if part is not None
        )
        text = self.message
        if self.rule:
            text = f"rule '{self.rule}': {text}"
        return f"{location}: {text}" if location else text

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "source": self.source,
            "line": self.line,
            "column": self.column,
            "rule": self.rule,
        }

    @classmethod
    def at_offset(
        cls,
        message: str,
        text: str,
        offset: int,
        source: str | None = None,
        **kwargs: Any,
    ) -> CompilationError:
        """Build an error located at a character offset of ``text``."""
        line = text.count("\n", 0, offset) + 1
        column = offset - (text.rfind("\n", 0, offset) + 1) + 1
        return cls(message, source=source, line=line, column=column, offset=offset, **kwargs)


class CompileSyntaxError(CompilationError):
    """Malformed schema, rule or metadata text."""

    kind = "SyntaxError"


class CompileReferenceError(CompilationError):
    """Unknown target, field, metadata category/field or view expression."""

    kind = "ReferenceError"


class CompileTypeError(CompilationError):
    """Unknown native type, non-comparable field, or literal/type mismatch."""

    kind = "TypeError"


class DuplicateDefinitionError(CompilationError):
    """Two models/views in one domain, or two rules, share a name."""

    kind = "DuplicateDefinitionError"


class BuildAbortedError(CompilationError):
    """Raised when warnings are promoted to errors."""

    kind = "BuildAborted"


class SemanticWarning(BaseModel):
    """A likely authoring mistake that does not block compilation."""

    model_config = ConfigDict(frozen=True)

    code: str
    """Stable identifier, e.g. 'complementary-clauses'."""

    rule: str
    """Rule the finding belongs to."""

    message: str
    """Human-readable explanation."""

    element: str | None = None
    """Field, literal or status the finding is about."""

    def __str__(self) -> str:
        return f"[{self.code}] rule '{self.rule}': {self.message}"
