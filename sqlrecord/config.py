from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, ClassVar, Optional, Union

from sqlrecord.builder import PlaceholderStyle
from sqlrecord.exceptions import ConfigurationError
from sqlrecord.mapping.tags import RECOGNIZED_LABELS

if TYPE_CHECKING:
    from sqlrecord.protocols import DriverProtocol, StatementObserver

__all__ = ("AdapterConfig", "DatabaseConfig", "TableConfig")


def _normalize_labels(labels: "Iterable[str]") -> "tuple[str, ...]":
    result: list[str] = []
    for label in labels:
        label = str(label).strip()
        if not label:
            continue
        if label in RECOGNIZED_LABELS:
            msg = f"custom tag {label!r} shadows a built-in label"
            raise ConfigurationError(msg)
        if label not in result:
            result.append(label)
    return tuple(result)


class DatabaseConfig:
    """Settings of a :class:`~sqlrecord.base.Database`.

    Args:
        placeholder_style: Force a placeholder syntax instead of the driver's.
        custom_tags: Tag labels every table accepts besides the built-in ones.
        observers: Statement observers notified on prepare and execute.
        statement_retry_attempts: Extra attempts when a cached statement was
            closed by eviction while being handed out.
    """

    __slots__ = ("custom_tags", "observers", "placeholder_style", "statement_retry_attempts")

    def __init__(
        self,
        *,
        placeholder_style: "Optional[Union[PlaceholderStyle, str]]" = None,
        custom_tags: "Iterable[str]" = (),
        observers: "Iterable[StatementObserver]" = (),
        statement_retry_attempts: int = 2,
    ) -> None:
        self.placeholder_style = PlaceholderStyle(placeholder_style) if placeholder_style is not None else None
        self.custom_tags = _normalize_labels(custom_tags)
        self.observers = tuple(observers)
        if statement_retry_attempts < 0:
            msg = "statement_retry_attempts must not be negative"
            raise ConfigurationError(msg)
        self.statement_retry_attempts = statement_retry_attempts

    def __repr__(self) -> str:
        parts = ", ".join(
            [
                f"placeholder_style={self.placeholder_style!r}",
                f"custom_tags={self.custom_tags!r}",
                f"observers={len(self.observers)}",
                f"statement_retry_attempts={self.statement_retry_attempts!r}",
            ]
        )
        return f"{type(self).__name__}({parts})"


class TableConfig:
    """Per-table settings.

    Args:
        custom_tags: Extra tag labels accepted on this table's record type.
        check_existence: Verify the table and its columns at construction.
        sequence_name: Sequence feeding a sequence-backed id; ``<table>_seq``
            when omitted.
    """

    __slots__ = ("check_existence", "custom_tags", "sequence_name")

    def __init__(
        self,
        *,
        custom_tags: "Iterable[str]" = (),
        check_existence: bool = False,
        sequence_name: Optional[str] = None,
    ) -> None:
        self.custom_tags = _normalize_labels(custom_tags)
        self.check_existence = check_existence
        self.sequence_name = sequence_name

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(custom_tags={self.custom_tags!r}, "
            f"check_existence={self.check_existence!r}, sequence_name={self.sequence_name!r})"
        )


class AdapterConfig(ABC):
    """Connection settings of one adapter; builds its driver."""

    __slots__ = ("database_config", "driver_features")

    driver_name: "ClassVar[str]"

    def __init__(
        self, *, database_config: Optional[DatabaseConfig] = None, driver_features: "Optional[dict[str, Any]]" = None
    ) -> None:
        self.database_config = database_config or DatabaseConfig()
        self.driver_features = dict(driver_features or {})

    @abstractmethod
    def create_driver(self) -> "DriverProtocol":
        """Open the connection (or pool) and return the adapter driver."""
        raise NotImplementedError
