"""Type guard functions for runtime type checking in sqlrecord."""

import types
from typing import TYPE_CHECKING, Any, Union, get_args, get_origin

if TYPE_CHECKING:
    from typing_extensions import TypeGuard

__all__ = (
    "has_sqlite_error",
    "has_sqlstate",
    "is_dataclass",
    "is_dataclass_instance",
    "is_dataclass_type",
    "is_integer_type",
    "unwrap_optional",
)


def is_dataclass_instance(obj: Any) -> bool:
    """Check if an object is a dataclass instance.

    Args:
        obj: An object to check.

    Returns:
        True if the object is a dataclass instance.
    """
    return not isinstance(obj, type) and hasattr(type(obj), "__dataclass_fields__")


def is_dataclass_type(obj: Any) -> "TypeGuard[type[Any]]":
    return isinstance(obj, type) and hasattr(obj, "__dataclass_fields__")


def is_dataclass(obj: Any) -> bool:
    """Check if an object is a dataclass.

    Args:
        obj: Value to check.

    Returns:
        bool
    """
    if is_dataclass_type(obj):
        return True
    return is_dataclass_instance(obj)


def unwrap_optional(annotation: Any) -> "tuple[Any, bool]":
    """Strip ``Optional[...]`` / ``X | None`` from an annotation.

    Returns:
        The inner annotation and whether ``None`` was allowed.
    """
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0], True
    return annotation, False


def is_integer_type(annotation: Any) -> bool:
    inner, _ = unwrap_optional(annotation)
    return isinstance(inner, type) and issubclass(inner, int) and not issubclass(inner, bool)


def has_sqlstate(obj: Any) -> bool:
    return getattr(obj, "sqlstate", None) is not None


def has_sqlite_error(obj: Any) -> bool:
    return hasattr(obj, "sqlite_errorcode") and hasattr(obj, "sqlite_errorname")
