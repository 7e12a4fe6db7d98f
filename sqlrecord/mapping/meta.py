"""Record type introspection.

A record type is walked once and turned into a :class:`RecordDescriptor`: the
flattened, ordered list of :class:`FieldMetadata` for every column the type
maps, plus the facts the statement generator needs (soft delete, row
version, updated-at, sequence-backed primary key).

Descriptors are cached per record type and set of custom labels, so column
order is identical for every statement generated from the same type.
"""

import dataclasses
import datetime
import threading
import typing
from collections.abc import Iterable, Mapping
from decimal import Decimal
from enum import Enum
from typing import Any, Final, Optional
from uuid import UUID

from sqlrecord.exceptions import ConfigurationError
from sqlrecord.mapping.tags import EXCLUDED, TAG_METADATA_KEY, Tag, TagRule, parse_tags, rule_matches
from sqlrecord.utils.text import snake_case
from sqlrecord.utils.type_guards import is_dataclass_type, is_integer_type, unwrap_optional

__all__ = (
    "EMBEDDED_METADATA_KEY",
    "FieldMetadata",
    "RecordDescriptor",
    "Role",
    "column",
    "embedded",
    "resolve_descriptor",
)

EMBEDDED_METADATA_KEY: Final = "sqlrecord_embedded"


class Role(Enum):
    """Reserved column roles, matched on the derived column name."""

    ID = "id"
    ROW_VERSION = "row_version"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    DELETED_AT = "deleted_at"
    UID = "uid"


_ROLES_BY_COLUMN: Final = {role.value: role for role in Role}


def column(*, tags: str = "", **kwargs: Any) -> Any:
    """Declare a dataclass field carrying sqlrecord tags.

    Accepts every keyword :func:`dataclasses.field` accepts.

    Example::

        @dataclass
        class User:
            id: int = 0
            password_hash: str = column(tags="nocache", default="")
    """
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[TAG_METADATA_KEY] = tags
    return dataclasses.field(metadata=metadata, **kwargs)


def embedded(record_type: "type[Any]", *, tags: str = "", **kwargs: Any) -> Any:
    """Declare a field whose own fields are flattened into the owner's columns.

    The sub-record is created with ``record_type()`` unless a default or
    default factory is supplied. Only ``tags="-"`` is meaningful here; it
    drops the whole sub-record.
    """
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[EMBEDDED_METADATA_KEY] = True
    metadata[TAG_METADATA_KEY] = tags
    if "default" not in kwargs and "default_factory" not in kwargs:
        kwargs["default_factory"] = record_type
    return dataclasses.field(metadata=metadata, **kwargs)


def _from_text(target: type, value: Any) -> Any:
    if target is datetime.datetime:
        return datetime.datetime.fromisoformat(value)
    if target is datetime.date:
        return datetime.date.fromisoformat(value)
    if target is datetime.time:
        return datetime.time.fromisoformat(value)
    return target(value)


@dataclasses.dataclass(frozen=True, eq=False)
class FieldMetadata:
    """One mapped column, addressed by its attribute path from the root record."""

    name: str
    path: "tuple[str, ...]"
    column: str
    kind: str
    declared_type: Any
    nullable: bool
    tags: "Mapping[str, str]"
    role: "Optional[Role]" = None

    def has_tag(self, label: "str | Tag") -> bool:
        return str(label) in self.tags

    def get(self, record: Any) -> Any:
        target = record
        for attr in self.path[:-1]:
            target = getattr(target, attr)
            if target is None:
                msg = f"embedded record {attr!r} of {type(record).__name__} is not initialised"
                raise ConfigurationError(msg)
        return getattr(target, self.path[-1])

    def set(self, record: Any, value: Any) -> None:
        target = record
        for attr in self.path[:-1]:
            target = getattr(target, attr)
            if target is None:
                msg = f"embedded record {attr!r} of {type(record).__name__} is not initialised"
                raise ConfigurationError(msg)
        setattr(target, self.path[-1], self.convert(value))

    def convert(self, value: Any) -> Any:
        """Coerce a driver value to the declared type where the driver stores text or integers."""
        if value is None:
            return None
        target, _ = unwrap_optional(self.declared_type)
        if not isinstance(target, type) or isinstance(value, target):
            return value
        if target is bool and isinstance(value, int):
            return bool(value)
        if isinstance(value, (str, bytes)) and target in {datetime.datetime, datetime.date, datetime.time}:
            return _from_text(target, value.decode() if isinstance(value, bytes) else value)
        if target is Decimal and isinstance(value, (str, int, float)):
            return Decimal(str(value))
        if target is UUID and isinstance(value, str):
            return UUID(value)
        if target is UUID and isinstance(value, bytes):
            return UUID(bytes=value)
        return value


class RecordDescriptor:
    """Static description of how one record type maps to a table."""

    __slots__ = (
        "_by_column",
        "_embedded_paths",
        "_roles",
        "fields",
        "is_sequence_backed",
        "record_type",
    )

    def __init__(
        self, record_type: "type[Any]", fields: "tuple[FieldMetadata, ...]", embedded_paths: "tuple[tuple[str, ...], ...]"
    ) -> None:
        self.record_type = record_type
        self.fields = fields
        self._embedded_paths = embedded_paths
        self._by_column = {meta.column: meta for meta in fields}
        self._roles = {meta.role: meta for meta in fields if meta.role is not None}
        id_field = self._roles.get(Role.ID)
        self.is_sequence_backed = (
            id_field is not None and is_integer_type(id_field.declared_type) and not id_field.has_tag(Tag.NO_SEQ)
        )

    def __repr__(self) -> str:
        return f"RecordDescriptor({self.record_type.__name__}, columns={list(self._by_column)!r})"

    @property
    def columns(self) -> "tuple[str, ...]":
        return tuple(meta.column for meta in self.fields)

    def role(self, role: Role) -> "Optional[FieldMetadata]":
        return self._roles.get(role)

    def field(self, column_name: str) -> FieldMetadata:
        try:
            return self._by_column[column_name]
        except KeyError:
            msg = f"{self.record_type.__name__} has no column {column_name!r}"
            raise ConfigurationError(msg) from None

    def has_column(self, column_name: str) -> bool:
        return column_name in self._by_column

    @property
    def has_soft_delete(self) -> bool:
        return Role.DELETED_AT in self._roles

    @property
    def has_row_version(self) -> bool:
        return Role.ROW_VERSION in self._roles

    @property
    def has_updated_at(self) -> bool:
        return Role.UPDATED_AT in self._roles

    def select_fields(self, rule: TagRule = TagRule.ALL, labels: "frozenset[str]" = frozenset()) -> "tuple[FieldMetadata, ...]":
        """Fields taking part in a clause, in declaration order."""
        return tuple(meta for meta in self.fields if rule_matches(meta.tags, rule, labels))

    def check_initialized(self, record: Any) -> None:
        """Raise if ``record`` is not of the mapped type or has an unset embedded record."""
        if not isinstance(record, self.record_type):
            msg = f"expected {self.record_type.__name__}, got {type(record).__name__}"
            raise ConfigurationError(msg)
        for path in self._embedded_paths:
            target = record
            for attr in path:
                target = getattr(target, attr)
                if target is None:
                    msg = f"embedded record {'.'.join(path)!r} of {self.record_type.__name__} is not initialised"
                    raise ConfigurationError(msg)


def _walk(
    record_type: "type[Any]",
    prefix: "tuple[str, ...]",
    known: "frozenset[str]",
    seen: "tuple[type[Any], ...]",
    out: "list[FieldMetadata]",
    embedded_paths: "list[tuple[str, ...]]",
) -> None:
    if record_type in seen:
        chain = " -> ".join(t.__name__ for t in (*seen, record_type))
        msg = f"cyclic embedding is not supported: {chain}"
        raise ConfigurationError(msg)
    seen = (*seen, record_type)

    try:
        hints = typing.get_type_hints(record_type)
    except Exception as exc:
        msg = f"cannot resolve annotations of {record_type.__name__}: {exc}"
        raise ConfigurationError(msg) from exc

    for fld in dataclasses.fields(record_type):
        if fld.name.startswith("_"):
            continue
        raw_tags = fld.metadata.get(TAG_METADATA_KEY, "")
        if not isinstance(raw_tags, str):
            msg = f"field {record_type.__name__}.{fld.name}: tags must be a string, got {type(raw_tags).__name__}"
            raise ConfigurationError(msg)
        tags = parse_tags(raw_tags, field_name=f"{record_type.__name__}.{fld.name}", known=known)
        if EXCLUDED in tags:
            continue

        declared = hints.get(fld.name, fld.type)
        inner, nullable = unwrap_optional(declared)
        path = (*prefix, fld.name)

        if fld.metadata.get(EMBEDDED_METADATA_KEY):
            if not is_dataclass_type(inner):
                msg = f"embedded field {record_type.__name__}.{fld.name} must be annotated with a dataclass type"
                raise ConfigurationError(msg)
            embedded_paths.append(path)
            _walk(inner, path, known, seen, out, embedded_paths)
            continue

        col = snake_case(fld.name)
        out.append(
            FieldMetadata(
                name=fld.name,
                path=path,
                column=col,
                kind=getattr(inner, "__name__", str(inner)),
                declared_type=declared,
                nullable=nullable,
                tags=tags,
                role=_ROLES_BY_COLUMN.get(col),
            )
        )


_descriptor_cache: "dict[tuple[type[Any], frozenset[str]], RecordDescriptor]" = {}
_descriptor_lock = threading.Lock()


def resolve_descriptor(record: Any, custom_tags: "Iterable[str]" = ()) -> RecordDescriptor:
    """Return the cached descriptor of a record type (or of an instance's type).

    Raises:
        ConfigurationError: If the type is not a dataclass, embeds itself,
            maps two fields to one column or carries undeclared tag labels.
    """
    record_type = record if isinstance(record, type) else type(record)
    if not is_dataclass_type(record_type):
        msg = f"{record_type.__name__} is not a dataclass"
        raise ConfigurationError(msg)

    known = frozenset(custom_tags)
    key = (record_type, known)
    with _descriptor_lock:
        descriptor = _descriptor_cache.get(key)
    if descriptor is not None:
        return descriptor

    fields: list[FieldMetadata] = []
    embedded_paths: list[tuple[str, ...]] = []
    _walk(record_type, (), known, (), fields, embedded_paths)
    if not fields:
        msg = f"{record_type.__name__} maps no columns"
        raise ConfigurationError(msg)

    seen_columns: dict[str, FieldMetadata] = {}
    for meta in fields:
        previous = seen_columns.get(meta.column)
        if previous is not None:
            msg = (
                f"{record_type.__name__}: fields {'.'.join(previous.path)!r} and "
                f"{'.'.join(meta.path)!r} both map to column {meta.column!r}"
            )
            raise ConfigurationError(msg)
        seen_columns[meta.column] = meta

    descriptor = RecordDescriptor(record_type, tuple(fields), tuple(embedded_paths))
    with _descriptor_lock:
        return _descriptor_cache.setdefault(key, descriptor)

