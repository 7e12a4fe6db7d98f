"""Statement plans and the builder that produces them.

A :class:`StatementPlan` is the SQL text of one statement together with the
ordered list of argument sources that feed its placeholders. Plans are built
once and bound many times; binding never touches the text.
"""

import dataclasses
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any, Optional, Union

from mypy_extensions import mypyc_attr

from sqlrecord.exceptions import ConfigurationError
from sqlrecord.mapping.meta import FieldMetadata

__all__ = (
    "ArgSource",
    "BindContext",
    "CallerArg",
    "FieldArg",
    "PlaceholderStyle",
    "SQLBuilder",
    "StatementPlan",
    "ValueArg",
)


class PlaceholderStyle(Enum):
    """Placeholder syntax of the connected database."""

    QMARK = "qmark"
    """``?`` placeholders, bound in textual order."""

    NUMERIC = "numeric"
    """``$1``, ``$2`` ... placeholders, bound by position."""

    def __str__(self) -> str:
        return self.value


@dataclasses.dataclass(frozen=True)
class BindContext:
    """Per-call inputs a plan draws its arguments from."""

    record: Any = None
    params: "Sequence[Any]" = ()
    values: "Mapping[str, Any]" = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class FieldArg:
    """Value of a record field; a same-named entry in ``values`` overrides it."""

    field: FieldMetadata

    def resolve(self, ctx: BindContext) -> Any:
        if self.field.column in ctx.values:
            return ctx.values[self.field.column]
        return self.field.get(ctx.record)


@dataclasses.dataclass(frozen=True)
class CallerArg:
    """Positional parameter supplied with a caller WHERE fragment."""

    index: int

    def resolve(self, ctx: BindContext) -> Any:
        try:
            return ctx.params[self.index]
        except IndexError:
            msg = f"missing parameter {self.index + 1}: {len(ctx.params)} supplied"
            raise ConfigurationError(msg) from None


@dataclasses.dataclass(frozen=True)
class ValueArg:
    """Value computed by the operation itself (a timestamp, an id)."""

    name: str

    def resolve(self, ctx: BindContext) -> Any:
        return ctx.values[self.name]


ArgSource = Union[FieldArg, CallerArg, ValueArg]


@dataclasses.dataclass(frozen=True)
class StatementPlan:
    """Generated SQL text plus how to bind and scan it.

    Attributes:
        sql: Statement text.
        args: Argument sources in bind order.
        scan: Fields receiving the columns of a returned row, in column order.
        returns_rows: Whether the statement yields rows (SELECT or RETURNING).
        name: Explicit statement name; anonymous plans are keyed by text hash.
    """

    sql: str
    args: "tuple[ArgSource, ...]" = ()
    scan: "tuple[FieldMetadata, ...]" = ()
    returns_rows: bool = False
    name: Optional[str] = None

    def bind(self, record: Any = None, params: "Sequence[Any]" = (), values: "Optional[Mapping[str, Any]]" = None) -> "tuple[Any, ...]":
        ctx = BindContext(record=record, params=params, values=values or {})
        return tuple(source.resolve(ctx) for source in self.args)

    def scan_into(self, target: Any, row: "Sequence[Any]") -> None:
        for meta, value in zip(self.scan, row):
            meta.set(target, value)

    def named(self, name: Optional[str]) -> "StatementPlan":
        return dataclasses.replace(self, name=name)


@mypyc_attr(allow_interpreted_subclasses=False)
class SQLBuilder:
    """Ordered clause list with a positional-parameter counter.

    Every generated statement goes through this class so placeholder syntax
    and numbering are decided in exactly one place. With
    :attr:`PlaceholderStyle.NUMERIC`, ``reserved`` positions ``$1..$reserved``
    belong to a caller fragment and generated placeholders start after them;
    with :attr:`PlaceholderStyle.QMARK` arguments follow textual order.
    """

    __slots__ = ("_counter", "_emitted", "_parts", "_reserved", "_slots", "_style")

    def __init__(self, style: PlaceholderStyle, reserved: int = 0) -> None:
        self._style = style
        self._reserved = reserved
        self._counter = reserved
        self._emitted = 0
        self._parts: list[str] = []
        self._slots: list[tuple[int, ArgSource]] = []

    @property
    def style(self) -> PlaceholderStyle:
        return self._style

    def append(self, *text: str) -> "SQLBuilder":
        self._parts.extend(text)
        return self

    def placeholder(self, source: ArgSource) -> str:
        """Record ``source`` and return the placeholder text without appending it."""
        self._emitted += 1
        if self._style is PlaceholderStyle.NUMERIC:
            self._counter += 1
            self._slots.append((self._counter, source))
            return f"${self._counter}"
        self._slots.append((self._emitted, source))
        return "?"

    def param(self, source: ArgSource) -> "SQLBuilder":
        self._parts.append(self.placeholder(source))
        return self

    def fragment(self, text: str, count: int) -> "SQLBuilder":
        """Append a caller fragment bound to the first ``count`` caller parameters."""
        if self._style is PlaceholderStyle.NUMERIC:
            if count > self._reserved:
                msg = f"fragment uses {count} parameters but only {self._reserved} positions were reserved"
                raise ConfigurationError(msg)
            self._slots.extend((position + 1, CallerArg(position)) for position in range(count))
        else:
            for position in range(count):
                self._emitted += 1
                self._slots.append((self._emitted, CallerArg(position)))
        self._parts.append(text)
        return self

    def build(
        self, *, scan: "Sequence[FieldMetadata]" = (), returns_rows: bool = False, name: Optional[str] = None
    ) -> StatementPlan:
        if self._style is PlaceholderStyle.NUMERIC:
            # caller slots were recorded after generated ones that precede them in the text
            ordered = sorted(self._slots, key=lambda slot: slot[0])
        else:
            ordered = self._slots
        return StatementPlan(
            sql="".join(self._parts).strip(),
            args=tuple(source for _, source in ordered),
            scan=tuple(scan),
            returns_rows=returns_rows or bool(scan),
            name=name,
        )
