"""Field tag labels and the rule evaluator deciding clause participation."""

import re
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Final, Union

from sqlrecord.exceptions import ConfigurationError

__all__ = (
    "EXCLUDED",
    "RECOGNIZED_LABELS",
    "TAG_METADATA_KEY",
    "Tag",
    "TagRule",
    "TagSet",
    "parse_rule_tags",
    "parse_tags",
    "rule_key",
    "rule_matches",
)

TAG_METADATA_KEY: Final = "sqlrecord"
EXCLUDED: Final = "-"

_LABEL_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Tag(str, Enum):
    """Labels understood by the statement generator."""

    NO_SEQ = "noseq"
    """The integer ``id`` is supplied by the caller rather than ``<table>_seq``."""

    NO_INS = "noins"
    """Never written by INSERT."""

    NO_UPD = "noupd"
    """Never written by UPDATE."""

    NO_CACHE = "nocache"
    """Left out of the cache select."""

    def __str__(self) -> str:
        return self.value


class TagRule(Enum):
    """How a tag set filters fields for one clause."""

    EXCLUDE = 1
    INCLUDE = 2
    ALL = 3

    def __str__(self) -> str:
        return self.name.lower()


RECOGNIZED_LABELS: Final = frozenset(tag.value for tag in Tag)

TagSet = Mapping[str, str]
"""Parsed labels of one field: label -> value (empty when the label has none)."""


def parse_tags(raw: str, *, field_name: str, known: "Iterable[str]" = ()) -> "dict[str, str]":
    """Parse ``"noins,maxlen=20"`` into ``{"noins": "", "maxlen": "20"}``.

    Args:
        raw: Comma separated labels as written on the field.
        field_name: Used in error messages only.
        known: Caller-defined labels accepted next to :class:`Tag`.

    Raises:
        ConfigurationError: On empty labels, invalid label names, unknown
            labels or ``"-"`` mixed with other labels.

    Returns:
        The parsed tag set.
    """
    raw = raw.strip()
    if not raw:
        return {}
    if raw == EXCLUDED:
        return {EXCLUDED: ""}

    accepted = RECOGNIZED_LABELS.union(known)
    result: dict[str, str] = {}
    for item in raw.split(","):
        label, _, value = item.strip().partition("=")
        label = label.strip()
        if label == EXCLUDED:
            msg = f"field {field_name!r}: '-' cannot be combined with other labels in {raw!r}"
            raise ConfigurationError(msg)
        if not _LABEL_RE.match(label):
            msg = f"field {field_name!r}: malformed tag {item!r} in {raw!r}"
            raise ConfigurationError(msg)
        if label not in accepted:
            msg = f"field {field_name!r}: unknown tag label {label!r}; declare it in custom_tags"
            raise ConfigurationError(msg)
        result[label] = value.strip()
    return result


def parse_rule_tags(tags: "Union[str, Tag, Iterable[Union[str, Tag]], None]") -> "frozenset[str]":
    """Normalise the tag argument of an operation to a set of labels."""
    if not tags:
        return frozenset()
    if isinstance(tags, str):
        items: Iterable[Union[str, Tag]] = tags.split(",")
    else:
        items = tags
    return frozenset(str(item).strip() for item in items if str(item).strip())


def rule_matches(field_tags: "TagSet", rule: TagRule, labels: "frozenset[str]") -> bool:
    """Return True when a field takes part in a clause.

    Labels match whole; ``"ins"`` never matches a field tagged ``noins``.
    """
    if rule is TagRule.ALL:
        return True
    hit = any(label in field_tags for label in labels)
    if rule is TagRule.EXCLUDE:
        return not hit
    if rule is TagRule.INCLUDE:
        return hit
    msg = f"unknown tag rule {rule!r}"
    raise ConfigurationError(msg)


def rule_key(rule: TagRule, labels: "frozenset[str]") -> str:
    """Stable text form of a rule, used in statement names."""
    return f"{rule}:{','.join(sorted(labels))}"
