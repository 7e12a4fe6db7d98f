"""Record type introspection and tag rules."""

from sqlrecord.mapping.meta import (
    EMBEDDED_METADATA_KEY,
    FieldMetadata,
    RecordDescriptor,
    Role,
    column,
    embedded,
    resolve_descriptor,
)
from sqlrecord.mapping.tags import EXCLUDED, TAG_METADATA_KEY, Tag, TagRule, parse_rule_tags, parse_tags, rule_matches

__all__ = (
    "EMBEDDED_METADATA_KEY",
    "EXCLUDED",
    "TAG_METADATA_KEY",
    "FieldMetadata",
    "RecordDescriptor",
    "Role",
    "Tag",
    "TagRule",
    "column",
    "embedded",
    "parse_rule_tags",
    "parse_tags",
    "resolve_descriptor",
    "rule_matches",
)
