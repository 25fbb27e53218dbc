"""Core package - shared configuration, error taxonomy and neutral types."""

from .config import Settings, get_settings, configure_logging
from .errors import (
    CompilationError,
    CompileSyntaxError,
    CompileReferenceError,
    CompileTypeError,
    DuplicateDefinitionError,
    BuildAbortedError,
    SemanticWarning,
)
from .types import (
    NeutralType,
    Operator,
    Logic,
    TargetKind,
    normalize_type_name,
    widest,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "configure_logging",
    # Errors
    "CompilationError",
    "CompileSyntaxError",
    "CompileReferenceError",
    "CompileTypeError",
    "DuplicateDefinitionError",
    "BuildAbortedError",
    "SemanticWarning",
    # Types
    "NeutralType",
    "Operator",
    "Logic",
    "TargetKind",
    "normalize_type_name",
    "widest",
]
