"""Table façade: typed CRUD operations over one mapped record type."""

import copy
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Generic, NamedTuple, Optional, TypeVar, Union

from sqlrecord.builder import ConflictTarget, Returning, ReturningSpec, StatementGenerator, StatementPlan, TableSQL
from sqlrecord.config import TableConfig
from sqlrecord.core.classifier import UNDEFINED_TABLE
from sqlrecord.exceptions import ConfigurationError, DatabaseError, NotFoundError, RowVersionConflictError
from sqlrecord.mapping.meta import FieldMetadata, RecordDescriptor, Role, resolve_descriptor
from sqlrecord.mapping.tags import Tag, TagRule, parse_rule_tags
from sqlrecord.utils.logging import get_logger

if TYPE_CHECKING:
    from sqlrecord.base import Database
    from sqlrecord.core.context import ExecutionContext
    from sqlrecord.core.instance import ExecutionInstance
    from sqlrecord.core.transaction import Transaction

__all__ = ("BindResult", "Table", "TableSpec", "bind_tables")

RecordT = TypeVar("RecordT")
TagsArg = Union[str, Tag, Iterable[Union[str, Tag]], None]

logger = get_logger("table")


def _next_timestamp(previous: Any) -> datetime:
    """Current UTC time, strictly after ``previous`` when that is a datetime."""
    now = datetime.now(timezone.utc)
    if isinstance(previous, datetime):
        if previous.tzinfo is None:
            now = now.replace(tzinfo=None)
        if now <= previous:
            now = previous + timedelta(microseconds=1)
    return now


def _returning_key(spec: ReturningSpec) -> Any:
    if spec is None or isinstance(spec, Returning):
        return spec
    if isinstance(spec, str):
        return (spec,)
    return tuple(spec)


def _conflict_key(target: ConflictTarget) -> Any:
    if target is None or isinstance(target, (bool, str)):
        return target
    return tuple(target)


class Table(Generic[RecordT]):
    """SQL operations for one table mapped to a dataclass.

    Statements are generated once at construction (see :attr:`sql`);
    variants depending on call options are generated on first use and
    memoised. Every statement goes through the database's statement cache.

    Args:
        db: Connection handle.
        name: Table name, used verbatim in SQL.
        record: The record type, or a prototype instance whose embedded
            records are checked for initialisation.
        config: Per-table settings.

    Raises:
        ConfigurationError: The record type cannot be mapped.
    """

    __slots__ = ("_db", "_generator", "_plans", "_plans_lock", "config", "descriptor", "name", "sql")

    def __init__(
        self,
        db: "Database",
        name: str,
        record: "Union[type[RecordT], RecordT]",
        config: Optional[TableConfig] = None,
    ) -> None:
        self._db = db
        self.name = name
        self.config = config or TableConfig()
        custom_tags = (*db.config.custom_tags, *self.config.custom_tags)
        self.descriptor: RecordDescriptor = resolve_descriptor(record, custom_tags)
        if not isinstance(record, type):
            self.descriptor.check_initialized(record)
        self._generator = StatementGenerator(name, self.descriptor, db.placeholder_style, self.config.sequence_name)
        self.sql: TableSQL = self._generator.generate()
        self._plans: dict[Any, StatementPlan] = {}
        self._plans_lock = threading.Lock()
        logger.debug("mapped table %s to %s (%d columns)", name, self.record_type.__name__, len(self.descriptor.fields))
        if self.config.check_existence:
            self.check_columns()

    def __repr__(self) -> str:
        return f"Table({self.name!r}, {self.record_type.__name__})"

    @property
    def db(self) -> "Database":
        return self._db

    @property
    def record_type(self) -> "type[RecordT]":
        return self.descriptor.record_type

    @property
    def columns(self) -> "tuple[str, ...]":
        return self.descriptor.columns

    def new_record(self) -> RecordT:
        """Instantiate the record type with its defaults."""
        try:
            return self.record_type()
        except TypeError as exc:
            msg = f"{self.record_type.__name__} cannot be created without arguments; pass a row"
            raise ConfigurationError(msg) from exc

    # -- plumbing ---------------------------------------------------------

    def _plan(self, key: Any, factory: "Callable[[], StatementPlan]") -> StatementPlan:
        with self._plans_lock:
            plan = self._plans.get(key)
        if plan is None:
            plan = factory()
            with self._plans_lock:
                plan = self._plans.setdefault(key, plan)
        return plan

    @staticmethod
    def _resolve_rule(tags: TagsArg, rule: Optional[TagRule]) -> "tuple[TagRule, frozenset[str]]":
        labels = parse_rule_tags(tags)
        if rule is None:
            rule = TagRule.INCLUDE if labels else TagRule.ALL
        if rule is not TagRule.ALL and not labels:
            msg = f"tag rule {rule} needs at least one tag"
            raise ConfigurationError(msg)
        return rule, labels

    def _check_row(self, row: Any) -> None:
        self.descriptor.check_initialized(row)

    @contextmanager
    def _restore_on_failure(self, row: Any, fields: "Iterable[FieldMetadata]") -> "Iterator[None]":
        """Put ``fields`` of ``row`` back to their current values if the block raises."""
        if row is None:
            yield
            return
        saved = [(meta, meta.get(row)) for meta in dict.fromkeys(fields)]
        try:
            yield
        except BaseException:
            for meta, value in saved:
                meta.set(row, value)
            raise

    def _execute(
        self,
        plan: StatementPlan,
        *,
        record: Any = None,
        params: "Sequence[Any]" = (),
        values: "Optional[Mapping[str, Any]]" = None,
        target: Any = None,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
        missing: "Optional[type[NotFoundError]]" = None,
    ) -> int:
        """Bind and run ``plan``; the first returned row is scanned into ``target``.

        Returns:
            Rows returned, or rows affected for statements without rows.

        Raises:
            NotFoundError: ``missing`` is set and nothing was touched.
        """
        args = plan.bind(record, params, values)

        def action(instance: "ExecutionInstance") -> int:
            if not plan.returns_rows:
                return instance.exec(*args)
            seen = 0

            def on_row(raw: "Sequence[Any]") -> None:
                nonlocal seen
                if seen == 0 and target is not None:
                    plan.scan_into(target, raw)
                seen += 1

            instance.query(*args, callback=on_row)
            return seen

        count = self._db.run(plan.sql, action, name=plan.name, tx=tx, context=context, table=self.name)
        if missing is not None and count == 0:
            raise missing("no rows matched", table=self.name, sql=plan.sql, parameters=args)
        return count

    # -- insert -----------------------------------------------------------

    def insert(
        self,
        row: RecordT,
        *,
        returning: ReturningSpec = None,
        into: Any = None,
        ignore_conflict: ConflictTarget = None,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> int:
        """Insert ``row``.

        A sequence-backed id is read back into ``row.id``. ``created_at`` is
        stamped when unset and ``row_version`` starts at 1; both are put back
        if the insert fails.

        Args:
            row: Record to insert.
            returning: ``Returning.ALL``, column names, or ``Returning.NONE``.
            into: Record receiving the returned columns instead of ``row``.
            ignore_conflict: ``True`` for ``ON CONFLICT DO NOTHING``, column
                names or a raw conflict target.
            tx: Run inside this transaction.
            context: Cancellation context.

        Returns:
            Number of inserted rows, 0 when an ignored conflict skipped it.
        """
        self._check_row(row)
        if returning is None and not ignore_conflict:
            plan = self.sql.insert
        else:
            plan = self._plan(
                ("insert", _returning_key(returning), _conflict_key(ignore_conflict)),
                lambda: self._generator.insert(returning, ignore_conflict),
            )
        descriptor = self.descriptor
        stamped = [
            meta
            for meta in (descriptor.role(Role.CREATED_AT), descriptor.role(Role.UPDATED_AT), descriptor.role(Role.ROW_VERSION))
            if meta is not None
        ]
        target = into if into is not None else row
        with self._restore_on_failure(row, (*stamped, *(plan.scan if target is row else ()))):
            created_at = descriptor.role(Role.CREATED_AT)
            if created_at is not None and created_at.get(row) is None:
                created_at.set(row, _next_timestamp(None))
            updated_at = descriptor.role(Role.UPDATED_AT)
            if updated_at is not None and updated_at.get(row) is None:
                updated_at.set(row, created_at.get(row) if created_at is not None else _next_timestamp(None))
            row_version = descriptor.role(Role.ROW_VERSION)
            if row_version is not None and not row_version.get(row):
                row_version.set(row, 1)
            return self._execute(plan, record=row, target=target, tx=tx, context=context)

    # -- update -----------------------------------------------------------

    def update(
        self,
        row: RecordT,
        *,
        tags: TagsArg = None,
        rule: Optional[TagRule] = None,
        where: Optional[str] = None,
        params: "Sequence[Any]" = (),
        check_version: bool = False,
        returning: ReturningSpec = None,
        into: Any = None,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> int:
        """Update ``row`` by id.

        With ``tags`` only the fields selected by ``rule`` (``INCLUDE`` by
        default) are written; without, every updatable field is. The new
        ``row_version`` is read back into ``row`` and ``updated_at`` is
        stamped, or put back if the update fails.

        Args:
            row: Record to write.
            tags: Labels selecting the fields to write.
            rule: How ``tags`` filter fields.
            where: Extra condition ANDed to ``id = ...``, using the first
                ``len(params)`` placeholders.
            params: Parameters of ``where``.
            check_version: Only update when ``row_version`` still matches.
            returning: Columns to read back, replacing the default.
            into: Record receiving the returned columns instead of ``row``.
            tx: Run inside this transaction.
            context: Cancellation context.

        Raises:
            NotFoundError: No row has this id (or matches ``where``).
            RowVersionConflictError: ``check_version`` is set and the row
                changed since it was read.

        Returns:
            Number of updated rows.
        """
        self._check_row(row)
        rule, labels = self._resolve_rule(tags, rule)
        if rule is TagRule.ALL and not where and not check_version and returning is None and self.sql.basic_update:
            plan = self.sql.basic_update
        else:
            plan = self._plan(
                ("update", rule, labels, where, len(params), check_version, _returning_key(returning)),
                lambda: self._generator.update(rule, labels, where, len(params), check_version, returning),
            )
        updated_at = self.descriptor.role(Role.UPDATED_AT)
        target = into if into is not None else row
        restored = (*((updated_at,) if updated_at is not None else ()), *(plan.scan if target is row else ()))
        with self._restore_on_failure(row, restored):
            if updated_at is not None:
                updated_at.set(row, _next_timestamp(updated_at.get(row)))
            return self._execute(
                plan,
                record=row,
                params=params,
                target=target,
                tx=tx,
                context=context,
                missing=RowVersionConflictError if check_version else NotFoundError,
            )

    def touch(
        self, row: RecordT, *, tx: "Optional[Transaction]" = None, context: "Optional[ExecutionContext]" = None
    ) -> None:
        """Bump ``row_version`` and stamp ``updated_at`` without writing other columns."""
        self._check_row(row)
        plan = self.sql.update_row_version
        if plan is None:
            msg = f"table {self.name!r}: touch requires id, row_version and updated_at columns"
            raise ConfigurationError(msg)
        updated_at = self.descriptor.field("updated_at")
        row_id = self.descriptor.field("id").get(row)
        with self._restore_on_failure(row, (updated_at, *plan.scan)):
            updated_at.set(row, _next_timestamp(updated_at.get(row)))
            self._execute(plan, record=row, values={"id": row_id}, target=row, tx=tx, context=context, missing=NotFoundError)

    # -- delete -----------------------------------------------------------

    def delete(
        self,
        row: Optional[RecordT] = None,
        *,
        id: Any = None,  # noqa: A002
        where: Optional[str] = None,
        params: "Sequence[Any]" = (),
        hard: bool = False,
        returning: ReturningSpec = None,
        into: Any = None,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> int:
        """Delete by row, by id or by condition.

        Tables with a ``deleted_at`` column are soft-deleted unless ``hard``
        is set: ``deleted_at`` is stamped and ``row_version`` bumped, and both
        are reflected in ``row``. Deleting a single id that does not exist
        raises :class:`NotFoundError`; a condition matching nothing returns 0.

        Returns:
            Number of deleted rows.
        """
        row_id = id
        if row is not None:
            self._check_row(row)
            row_id = self.descriptor.field("id").get(row)
        if row_id is None and not where:
            msg = f"table {self.name!r}: delete needs a row, an id or a where condition"
            raise ConfigurationError(msg)
        target = into if into is not None else row

        if not hard and self.descriptor.has_soft_delete:
            by_id = row_id is not None
            if by_id and not where and returning is None and self.sql.soft_delete is not None:
                plan = self.sql.soft_delete
            else:
                plan = self._plan(
                    ("soft_delete", where, len(params), by_id, _returning_key(returning)),
                    lambda: self._generator.soft_delete(where, len(params), by_id, returning),
                )
            deleted_at = _next_timestamp(None)
            deleted_field = self.descriptor.field("deleted_at")
            with self._restore_on_failure(target, plan.scan):
                count = self._execute(
                    plan,
                    record=row,
                    params=params,
                    values={"id": row_id, "deleted_at": deleted_at},
                    target=target,
                    tx=tx,
                    context=context,
                    missing=NotFoundError if by_id else None,
                )
            if row is not None and count:
                deleted_field.set(row, deleted_at)
            return count

        if row_id is not None and where:
            msg = f"table {self.name!r}: hard delete takes either an id or a where condition"
            raise ConfigurationError(msg)
        if row_id is not None:
            if returning is None and self.sql.hard_delete is not None:
                plan = self.sql.hard_delete
            else:
                plan = self._plan(
                    ("hard_delete", _returning_key(returning)), lambda: self._generator.hard_delete(returning)
                )
            return self._execute(
                plan, values={"id": row_id}, target=target, tx=tx, context=context, missing=NotFoundError
            )
        plan = self._plan(
            ("flex_delete", where, len(params), _returning_key(returning)),
            lambda: self._generator.flex_delete(where or "", len(params), returning),
        )
        return self._execute(plan, params=params, target=target, tx=tx, context=context)

    def soft_delete(self, row: RecordT, **kwargs: Any) -> int:
        if not self.descriptor.has_soft_delete:
            msg = f"table {self.name!r} has no deleted_at column"
            raise ConfigurationError(msg)
        return self.delete(row, **kwargs)

    def hard_delete(self, id: Any, **kwargs: Any) -> int:  # noqa: A002
        return self.delete(id=id, hard=True, **kwargs)

    def hard_delete_where(self, where: str, params: "Sequence[Any]" = (), **kwargs: Any) -> int:
        return self.delete(where=where, params=params, hard=True, **kwargs)

    # -- select -----------------------------------------------------------

    def _select_plan(
        self,
        where: Optional[str],
        order: Optional[str],
        offset: int,
        limit: int,
        param_count: int,
        tags: TagsArg,
        rule: Optional[TagRule],
    ) -> StatementPlan:
        rule, labels = self._resolve_rule(tags, rule)
        if not where and not order and offset <= 0 and limit <= 0 and rule is TagRule.ALL:
            return self.sql.select
        return self._plan(
            ("select", where, order, offset, limit, param_count, rule, labels),
            lambda: self._generator.select(where, order, offset, limit, param_count, rule, labels),
        )

    def _scan_each(
        self,
        plan: StatementPlan,
        on_row: "Callable[[Sequence[Any]], None]",
        *,
        params: "Sequence[Any]" = (),
        values: "Optional[Mapping[str, Any]]" = None,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> int:
        args = plan.bind(None, params, values)
        return self._db.run(
            plan.sql,
            lambda instance: instance.query(*args, callback=on_row),
            name=plan.name,
            tx=tx,
            context=context,
            table=self.name,
        )

    def select(
        self,
        where: Optional[str] = None,
        order: Optional[str] = None,
        offset: int = 0,
        limit: int = 0,
        callback: "Optional[Callable[[RecordT], Any]]" = None,
        row: Optional[RecordT] = None,
        params: "Sequence[Any]" = (),
        *,
        tags: TagsArg = None,
        rule: Optional[TagRule] = None,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> int:
        """Select rows into ``row``.

        With a ``callback`` every row is scanned into the same ``row`` object
        and passed to it; an exception from the callback stops the fetch.
        Without one, the first row is read into ``row`` and the rest are only
        counted.

        Raises:
            NotFoundError: No callback was given and no row matched.

        Returns:
            Number of rows the query returned.
        """
        plan = self._select_plan(where, order, offset, limit, len(params), tags, rule)
        target = row if row is not None else self.new_record()
        if callback is None:
            return self._execute(plan, params=params, target=target, tx=tx, context=context, missing=NotFoundError)

        def on_row(raw: "Sequence[Any]") -> None:
            plan.scan_into(target, raw)
            callback(target)

        return self._scan_each(plan, on_row, params=params, tx=tx, context=context)

    def select_all(
        self,
        where: Optional[str] = None,
        order: Optional[str] = None,
        offset: int = 0,
        limit: int = 0,
        params: "Sequence[Any]" = (),
        *,
        row: Optional[RecordT] = None,
        tags: TagsArg = None,
        rule: Optional[TagRule] = None,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> "list[RecordT]":
        """Select rows as independent records.

        Columns a tag rule leaves out keep the values of ``row`` (or the
        record defaults).
        """
        plan = self._select_plan(where, order, offset, limit, len(params), tags, rule)
        prototype = row if row is not None else self.new_record()
        records: list[RecordT] = []

        def on_row(raw: "Sequence[Any]") -> None:
            record = copy.deepcopy(prototype)
            plan.scan_into(record, raw)
            records.append(record)

        self._scan_each(plan, on_row, params=params, tx=tx, context=context)
        return records

    def select_by_id(
        self,
        id: Any,  # noqa: A002
        row: Optional[RecordT] = None,
        *,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> RecordT:
        """Read the row with primary key ``id``, soft-deleted or not.

        Raises:
            NotFoundError: No row has this id.
        """
        plan = self.sql.select_by_id
        if plan is None:
            msg = f"table {self.name!r} has no id column"
            raise ConfigurationError(msg)
        target = row if row is not None else self.new_record()
        self._execute(plan, values={"id": id}, target=target, tx=tx, context=context, missing=NotFoundError)
        return target

    def select_cache(
        self,
        callback: "Callable[[RecordT], Any]",
        row: Optional[RecordT] = None,
        *,
        include_deleted: bool = False,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> int:
        """Stream every row without ``nocache`` columns, skipping soft-deleted rows by default."""
        plan = self.sql.select_cache if include_deleted else self.sql.select_cache_without_deleted
        target = row if row is not None else self.new_record()

        def on_row(raw: "Sequence[Any]") -> None:
            plan.scan_into(target, raw)
            callback(target)

        return self._scan_each(plan, on_row, tx=tx, context=context)

    def count(
        self,
        where: Optional[str] = None,
        params: "Sequence[Any]" = (),
        *,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> int:
        if where:
            plan = self._plan(("count", where, len(params)), lambda: self._generator.count(where, len(params)))
        else:
            plan = self.sql.select_count
        args = plan.bind(None, params)
        result = self._db.run(
            plan.sql,
            lambda instance: instance.query_row(*args),
            name=plan.name,
            tx=tx,
            context=context,
            table=self.name,
        )
        return int(result[0])

    def _exists(
        self,
        plan: Optional[StatementPlan],
        column_name: str,
        value: Any,
        tx: "Optional[Transaction]",
        context: "Optional[ExecutionContext]",
    ) -> bool:
        if plan is None:
            msg = f"table {self.name!r} has no {column_name} column"
            raise ConfigurationError(msg)
        return self._execute(plan, values={column_name: value}, tx=tx, context=context) > 0

    def exists(
        self,
        id: Any,  # noqa: A002
        *,
        tx: "Optional[Transaction]" = None,
        context: "Optional[ExecutionContext]" = None,
    ) -> bool:
        return self._exists(self.sql.exists_by_id, "id", id, tx, context)

    def exists_by_uid(
        self, uid: Any, *, tx: "Optional[Transaction]" = None, context: "Optional[ExecutionContext]" = None
    ) -> bool:
        return self._exists(self.sql.exists_by_uid, "uid", uid, tx, context)

    # -- schema checks ----------------------------------------------------

    def _probe(self) -> "Optional[tuple[str, ...]]":
        """Column names of the live table, ``None`` when it does not exist."""
        sql = f"SELECT * FROM {self.name} WHERE 1 = 0"

        def action(instance: "ExecutionInstance") -> "tuple[str, ...]":
            instance.query(callback=lambda _: None)
            return instance.columns

        try:
            return self._db.run(sql, action, table=self.name)
        except DatabaseError as exc:
            if exc.code != UNDEFINED_TABLE:
                raise
            # the refused probe stays cached otherwise
            self._db.evict(sql)
            return None

    def check_existence(self) -> bool:
        """Return whether the table exists in the connected database."""
        return self._probe() is not None

    def check_columns(self) -> None:
        """Verify the table exists and has every mapped column.

        Raises:
            ConfigurationError: The table or some mapped columns are missing.
        """
        live = self._probe()
        if live is None:
            msg = f"table {self.name!r} does not exist"
            raise ConfigurationError(msg)
        present = {column.lower() for column in live}
        missing = [column for column in self.descriptor.columns if column.lower() not in present]
        if missing:
            msg = f"table {self.name!r} lacks mapped columns: {', '.join(missing)}"
            raise ConfigurationError(msg)


TableSpec = Union["type[Any]", Any, "tuple[Any, TableConfig]"]


class BindResult(NamedTuple):
    """Tables that were constructed and the errors of those that were not."""

    tables: "dict[str, Table[Any]]"
    errors: "dict[str, Exception]"


def bind_tables(
    db: "Database",
    specs: "Mapping[str, TableSpec]",
    *,
    parallel: bool = True,
    max_workers: Optional[int] = None,
) -> BindResult:
    """Construct several tables, collecting failures per table.

    Args:
        db: Connection handle shared by the tables.
        specs: Table name to record type, prototype record, or
            ``(record, TableConfig)``.
        parallel: Build tables on a bounded thread pool, one task per table.
        max_workers: Pool size; defaults to the number of tables.

    Returns:
        Built tables and the error of each table that failed. One failure
        never prevents the other tables.
    """

    def build(name: str, spec: TableSpec) -> "Table[Any]":
        if isinstance(spec, tuple):
            record, config = spec
            return Table(db, name, record, config)
        return Table(db, name, spec)

    def attempt(item: "tuple[str, TableSpec]") -> "tuple[str, Optional[Table[Any]], Optional[Exception]]":
        name, spec = item
        try:
            return name, build(name, spec), None
        except Exception as exc:
            return name, None, exc

    items = list(specs.items())
    if parallel and len(items) > 1:
        with ThreadPoolExecutor(max_workers=max_workers or len(items), thread_name_prefix="sqlrecord-bind") as pool:
            outcomes = list(pool.map(attempt, items))
    else:
        outcomes = [attempt(item) for item in items]

    result = BindResult({}, {})
    for name, table, error in outcomes:
        if error is not None:
            result.errors[name] = error
        elif table is not None:
            result.tables[name] = table
    if result.errors:
        logger.debug("bound %d tables, %d failed: %s", len(result.tables), len(result.errors), sorted(result.errors))
    return result
