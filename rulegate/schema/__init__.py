"""Schema domain - SQL DDL to Model IR."""

from .schemas import (
    SCHEMA_VERSION,
    FieldDef,
    EntityDef,
    ModelDef,
    ViewDef,
    DomainSchema,
    ModelIR,
)
from .parser import (
    NATIVE_TYPES,
    ColumnSpec,
    TableSpec,
    ViewSpec,
    ParsedSchema,
    SchemaParser,
)
from .service import (
    OrdinalRegistry,
    SchemaCompiler,
    ViewResolver,
    compile_schema_files,
    compile_schema_text,
    model_name,
    resource_name,
)

__all__ = [
    # IR
    "SCHEMA_VERSION",
    "FieldDef",
    "EntityDef",
    "ModelDef",
    "ViewDef",
    "DomainSchema",
    "ModelIR",
    # Parsing
    "NATIVE_TYPES",
    "ColumnSpec",
    "TableSpec",
    "ViewSpec",
    "ParsedSchema",
    "SchemaParser",
    # Compilation
    "OrdinalRegistry",
    "SchemaCompiler",
    "ViewResolver",
    "compile_schema_files",
    "compile_schema_text",
    "model_name",
    "resource_name",
]
