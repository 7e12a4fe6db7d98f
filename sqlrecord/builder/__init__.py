"""SQL generation for mapped tables."""

from sqlrecord.builder._base import (
    ArgSource,
    BindContext,
    CallerArg,
    FieldArg,
    PlaceholderStyle,
    SQLBuilder,
    StatementPlan,
    ValueArg,
)
from sqlrecord.builder.statements import ConflictTarget, Returning, ReturningSpec, StatementGenerator, TableSQL

__all__ = (
    "ArgSource",
    "BindContext",
    "CallerArg",
    "ConflictTarget",
    "FieldArg",
    "PlaceholderStyle",
    "Returning",
    "ReturningSpec",
    "SQLBuilder",
    "StatementGenerator",
    "StatementPlan",
    "TableSQL",
    "ValueArg",
)
