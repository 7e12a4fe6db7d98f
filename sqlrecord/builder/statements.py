"""SQL generation for one mapped table.

Column lists come from the table's :class:`RecordDescriptor`; placeholder
syntax comes from the database's :class:`PlaceholderStyle`. Caller WHERE
fragments are written with placeholders ``$1..$n`` (or ``?``) for their own
parameters; generated placeholders are numbered after them.
"""

import dataclasses
from collections.abc import Sequence
from enum import Enum
from typing import Optional, Union

from sqlrecord.builder._base import FieldArg, PlaceholderStyle, SQLBuilder, StatementPlan, ValueArg
from sqlrecord.exceptions import ConfigurationError
from sqlrecord.mapping.meta import FieldMetadata, RecordDescriptor, Role
from sqlrecord.mapping.tags import Tag, TagRule

__all__ = (
    "ConflictTarget",
    "Returning",
    "ReturningSpec",
    "StatementGenerator",
    "TableSQL",
)


class Returning(Enum):
    """Special values for the ``returning`` option."""

    ALL = "all"
    """Return every mapped column."""

    NONE = "none"
    """Return nothing, not even the generated id or row version."""


ReturningSpec = Union[None, Returning, Sequence[str]]
ConflictTarget = Union[None, bool, str, Sequence[str]]

DELETED_AT_VALUE = "deleted_at"
ID_VALUE = "id"

_UPDATE_SKIPPED_ROLES = frozenset({Role.ID, Role.CREATED_AT, Role.DELETED_AT, Role.ROW_VERSION, Role.UPDATED_AT})


@dataclasses.dataclass(frozen=True)
class TableSQL:
    """Statements generated once when a table is constructed."""

    select: StatementPlan
    select_by_id: Optional[StatementPlan]
    select_cache: StatementPlan
    select_cache_without_deleted: StatementPlan
    exists_by_id: Optional[StatementPlan]
    exists_by_uid: Optional[StatementPlan]
    insert: StatementPlan
    basic_update: Optional[StatementPlan]
    soft_delete: Optional[StatementPlan]
    hard_delete: Optional[StatementPlan]
    flex_delete: str
    update_row_version: Optional[StatementPlan]
    select_count: StatementPlan


class StatementGenerator:
    """Builds every statement kind for one table."""

    __slots__ = ("descriptor", "sequence_name", "style", "table")

    def __init__(
        self,
        table: str,
        descriptor: RecordDescriptor,
        style: PlaceholderStyle,
        sequence_name: Optional[str] = None,
    ) -> None:
        self.table = table
        self.descriptor = descriptor
        self.style = style
        self.sequence_name = sequence_name or f"{table}_seq"

    def _builder(self, reserved: int = 0) -> SQLBuilder:
        return SQLBuilder(self.style, reserved)

    def _id_field(self) -> FieldMetadata:
        id_field = self.descriptor.role(Role.ID)
        if id_field is None:
            msg = f"table {self.table!r}: {self.descriptor.record_type.__name__} has no id field"
            raise ConfigurationError(msg)
        return id_field

    def _require(self, role: Role, operation: str) -> FieldMetadata:
        meta = self.descriptor.role(role)
        if meta is None:
            msg = f"table {self.table!r}: {operation} requires a {role.value} column"
            raise ConfigurationError(msg)
        return meta

    @staticmethod
    def _column_list(fields: "Sequence[FieldMetadata]") -> str:
        return ", ".join(meta.column for meta in fields)

    def _returning(
        self, spec: ReturningSpec, implicit: "Sequence[FieldMetadata]" = ()
    ) -> "tuple[FieldMetadata, ...]":
        """Resolve a returning option to the fields scanned from the returned row."""
        if spec is Returning.NONE:
            return ()
        if spec is Returning.ALL:
            return self.descriptor.fields
        fields = list(implicit)
        if spec:
            if isinstance(spec, str):
                spec = [spec]
            for name in spec:
                meta = self.descriptor.field(name)
                if meta not in fields:
                    fields.append(meta)
        return tuple(fields)

    def _append_returning(self, builder: SQLBuilder, fields: "Sequence[FieldMetadata]") -> None:
        if fields:
            builder.append(" RETURNING ", self._column_list(fields))

    def _append_where(self, builder: SQLBuilder, where: Optional[str], param_count: int, *, joiner: str) -> None:
        if where:
            builder.append(joiner, "(").fragment(where, param_count).append(")")

    # -- SELECT ---------------------------------------------------------------

    def select(
        self,
        where: Optional[str] = None,
        order: Optional[str] = None,
        offset: int = 0,
        limit: int = 0,
        param_count: int = 0,
        rule: TagRule = TagRule.ALL,
        labels: "frozenset[str]" = frozenset(),
    ) -> StatementPlan:
        fields = self.descriptor.select_fields(rule, labels)
        builder = self._builder(param_count)
        builder.append("SELECT ", self._column_list(fields), " FROM ", self.table)
        if where:
            builder.append(" WHERE ").fragment(where, param_count)
        if order:
            builder.append(" ORDER BY ", order)
        if limit > 0:
            builder.append(f" LIMIT {int(limit)}")
        if offset > 0:
            if limit <= 0 and self.style is PlaceholderStyle.QMARK:
                # sqlite only accepts OFFSET after a LIMIT
                builder.append(" LIMIT -1")
            builder.append(f" OFFSET {int(offset)}")
        return builder.build(scan=fields, returns_rows=True)

    def select_by_id(self) -> StatementPlan:
        fields = self.descriptor.fields
        builder = self._builder()
        builder.append("SELECT ", self._column_list(fields), " FROM ", self.table, " WHERE id = ")
        builder.param(ValueArg(ID_VALUE))
        return builder.build(scan=fields, returns_rows=True)

    def select_cache(self, *, without_deleted: bool = False) -> StatementPlan:
        fields = self.descriptor.select_fields(TagRule.EXCLUDE, frozenset({Tag.NO_CACHE.value}))
        builder = self._builder()
        builder.append("SELECT ", self._column_list(fields), " FROM ", self.table)
        if without_deleted and self.descriptor.has_soft_delete:
            builder.append(" WHERE deleted_at IS NULL")
        return builder.build(scan=fields, returns_rows=True)

    def exists(self, column: str = "id") -> StatementPlan:
        builder = self._builder()
        builder.append("SELECT 1 FROM ", self.table, f" WHERE {column} = ")
        builder.param(ValueArg(column))
        return builder.build(returns_rows=True)

    def count(self, where: Optional[str] = None, param_count: int = 0) -> StatementPlan:
        builder = self._builder(param_count)
        builder.append("SELECT COUNT(*) FROM ", self.table)
        if where:
            builder.append(" WHERE ").fragment(where, param_count)
        return builder.build(returns_rows=True)

    # -- INSERT ---------------------------------------------------------------

    def insert_fields(self) -> "tuple[FieldMetadata, ...]":
        return self.descriptor.select_fields(TagRule.EXCLUDE, frozenset({Tag.NO_INS.value}))

    def insert(self, returning: ReturningSpec = None, ignore_conflict: ConflictTarget = None) -> StatementPlan:
        fields = self.insert_fields()
        sequence_backed = self.descriptor.is_sequence_backed
        builder = self._builder()
        builder.append("INSERT INTO ", self.table, " (", self._column_list(fields), ") VALUES (")
        for position, meta in enumerate(fields):
            if position:
                builder.append(", ")
            if sequence_backed and meta.role is Role.ID:
                builder.append(f"NEXTVAL('{self.sequence_name}')")
            else:
                builder.param(FieldArg(meta))
        builder.append(")")

        if ignore_conflict:
            if ignore_conflict is True:
                builder.append(" ON CONFLICT DO NOTHING")
            elif isinstance(ignore_conflict, str):
                builder.append(" ON CONFLICT ", ignore_conflict, " DO NOTHING")
            else:
                builder.append(" ON CONFLICT (", ", ".join(ignore_conflict), ") DO NOTHING")

        implicit = (self._id_field(),) if sequence_backed else ()
        scan = self._returning(returning, implicit)
        self._append_returning(builder, scan)
        return builder.build(scan=scan)

    # -- UPDATE ---------------------------------------------------------------

    def update_fields(self, rule: TagRule = TagRule.ALL, labels: "frozenset[str]" = frozenset()) -> "tuple[FieldMetadata, ...]":
        """Columns assigned by UPDATE, with ``updated_at`` last when present.

        ``updated_at`` is always written, whatever the rule says; id,
        created_at, deleted_at, row_version and ``noupd`` fields never are.
        """
        fields = [
            meta
            for meta in self.descriptor.select_fields(rule, labels)
            if meta.role not in _UPDATE_SKIPPED_ROLES and not meta.has_tag(Tag.NO_UPD)
        ]
        updated_at = self.descriptor.role(Role.UPDATED_AT)
        if updated_at is not None:
            fields.append(updated_at)
        return tuple(fields)

    def update(
        self,
        rule: TagRule = TagRule.ALL,
        labels: "frozenset[str]" = frozenset(),
        where: Optional[str] = None,
        param_count: int = 0,
        check_version: bool = False,
        returning: ReturningSpec = None,
    ) -> StatementPlan:
        id_field = self._id_field()
        fields = self.update_fields(rule, labels)
        has_row_version = self.descriptor.has_row_version
        if not fields and not has_row_version:
            msg = f"table {self.table!r}: no columns left to update for rule {rule} {sorted(labels)}"
            raise ConfigurationError(msg)
        if check_version and not has_row_version:
            msg = f"table {self.table!r}: check_version requires a row_version column"
            raise ConfigurationError(msg)

        builder = self._builder(param_count)
        builder.append("UPDATE ", self.table, " SET ")
        for position, meta in enumerate(fields):
            if position:
                builder.append(", ")
            builder.append(meta.column, " = ").param(FieldArg(meta))
        if has_row_version:
            builder.append(", " if fields else "", "row_version = row_version + 1")
        builder.append(" WHERE id = ").param(FieldArg(id_field))
        if check_version:
            builder.append(" AND row_version = ").param(FieldArg(self.descriptor.field("row_version")))
        self._append_where(builder, where, param_count, joiner=" AND ")

        implicit = (self.descriptor.field("row_version"),) if has_row_version else ()
        scan = self._returning(returning, implicit)
        self._append_returning(builder, scan)
        return builder.build(scan=scan)

    def update_row_version(self) -> StatementPlan:
        self._require(Role.ROW_VERSION, "touch")
        updated_at = self._require(Role.UPDATED_AT, "touch")
        builder = self._builder()
        builder.append("UPDATE ", self.table, " SET updated_at = ").param(FieldArg(updated_at))
        builder.append(", row_version = row_version + 1 WHERE id = ").param(ValueArg(ID_VALUE))
        scan = (self.descriptor.field("row_version"),)
        self._append_returning(builder, scan)
        return builder.build(scan=scan)

    # -- DELETE ---------------------------------------------------------------

    def soft_delete(
        self,
        where: Optional[str] = None,
        param_count: int = 0,
        by_id: bool = True,
        returning: ReturningSpec = None,
    ) -> StatementPlan:
        self._require(Role.DELETED_AT, "soft delete")
        if not by_id and not where:
            msg = f"table {self.table!r}: soft delete needs an id or a where condition"
            raise ConfigurationError(msg)
        builder = self._builder(param_count)
        builder.append("UPDATE ", self.table, " SET deleted_at = ").param(ValueArg(DELETED_AT_VALUE))
        if self.descriptor.has_row_version:
            builder.append(", row_version = row_version + 1")
        builder.append(" WHERE ")
        if by_id:
            builder.append("id = ").param(ValueArg(ID_VALUE))
            self._append_where(builder, where, param_count, joiner=" AND ")
        else:
            builder.append("(").fragment(where or "", param_count).append(")")

        implicit = (self.descriptor.field("row_version"),) if self.descriptor.has_row_version else ()
        scan = self._returning(returning, implicit)
        self._append_returning(builder, scan)
        return builder.build(scan=scan)

    def hard_delete(self, returning: ReturningSpec = None) -> StatementPlan:
        builder = self._builder()
        builder.append("DELETE FROM ", self.table, " WHERE id = ").param(ValueArg(ID_VALUE))
        scan = self._returning(returning)
        self._append_returning(builder, scan)
        return builder.build(scan=scan)

    def flex_delete(self, where: str, param_count: int = 0, returning: ReturningSpec = None) -> StatementPlan:
        if not where:
            msg = f"table {self.table!r}: delete without a where condition is refused"
            raise ConfigurationError(msg)
        builder = self._builder(param_count)
        builder.append("DELETE FROM ", self.table, " WHERE ").fragment(where, param_count)
        scan = self._returning(returning)
        self._append_returning(builder, scan)
        return builder.build(scan=scan)

    # -- dictionary -----------------------------------------------------------

    def generate(self) -> TableSQL:
        has_id = self.descriptor.role(Role.ID) is not None
        has_touch = has_id and self.descriptor.has_row_version and self.descriptor.has_updated_at
        updatable = has_id and (bool(self.update_fields()) or self.descriptor.has_row_version)
        return TableSQL(
            select=self.select(),
            select_by_id=self.select_by_id() if has_id else None,
            select_cache=self.select_cache(),
            select_cache_without_deleted=self.select_cache(without_deleted=True),
            exists_by_id=self.exists("id") if has_id else None,
            exists_by_uid=self.exists("uid") if self.descriptor.role(Role.UID) is not None else None,
            insert=self.insert(),
            basic_update=self.update() if updatable else None,
            soft_delete=self.soft_delete() if has_id and self.descriptor.has_soft_delete else None,
            hard_delete=self.hard_delete() if has_id else None,
            flex_delete=f"DELETE FROM {self.table} WHERE ",
            update_row_version=self.update_row_version() if has_touch else None,
            select_count=self.count(),
        )
