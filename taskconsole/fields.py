"""Span fields, attributes, metadata and their display formatting."""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field, replace
from typing import ClassVar, Optional, Union

logger = logging.getLogger(__name__)

_KEY_COLOR = "light_blue"
_VALUE_COLOR = "yellow"
_BOLD = "bold"
_DIM = "dim"

_REGISTRY_PATH = re.compile(r".*/\.cargo(/registry/src/[^/]*/|/git/checkouts/)")


@dataclass(frozen=True)
class Span:
    """A piece of text with an optional color and modifier."""

    content: str
    color: Optional[str] = None
    modifier: Optional[str] = None


@dataclass(frozen=True)
class Location:
    """A source code location."""

    file: Optional[str] = None
    module_path: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        text = self.file or self.module_path or "<unknown location>"
        if self.line is not None:
            text += f":{self.line}"
            if self.column is not None:
                text += f":{self.column}"
        return text


@dataclass(frozen=True, order=True)
class FieldValue:
    """A typed field value; values of different kinds order by kind first."""

    class Kind(enum.IntEnum):
        BOOL = 0
        STR = 1
        U64 = 2
        I64 = 3
        DEBUG = 4

    kind: "FieldValue.Kind"
    value: Union[bool, int, str]

    @classmethod
    def of_bool(cls, value: bool) -> "FieldValue":
        return cls(cls.Kind.BOOL, value)

    @classmethod
    def of_str(cls, value: str) -> "FieldValue":
        return cls(cls.Kind.STR, value)

    @classmethod
    def of_u64(cls, value: int) -> "FieldValue":
        return cls(cls.Kind.U64, value)

    @classmethod
    def of_i64(cls, value: int) -> "FieldValue":
        return cls(cls.Kind.I64, value)

    @classmethod
    def of_debug(cls, value: str) -> "FieldValue":
        return cls(cls.Kind.DEBUG, value)

    def __str__(self) -> str:
        if self.kind is FieldValue.Kind.BOOL:
            return "true" if self.value else "false"
        return str(self.value)

    def _is_text(self) -> bool:
        return self.kind in (FieldValue.Kind.STR, FieldValue.Kind.DEBUG)

    def _is_empty(self) -> bool:
        return self._is_text() and self.value == ""

    def _truncate_registry_path(self) -> "FieldValue":
        if self._is_text():
            return FieldValue.of_debug(truncate_registry_path(self.value))
        return self


@dataclass(frozen=True)
class ProtoField:
    """A field as received: named by string or by index into its metadata."""

    name: Union[str, int, None]
    value: Optional[FieldValue] = None
    metadata_id: Optional[int] = None


@dataclass(frozen=True)
class ProtoAttribute:
    """An attribute as received: a field with an optional unit."""

    field: Optional[ProtoField]
    unit: Optional[str] = None


@dataclass(frozen=True)
class ProtoMetadata:
    """Callsite metadata as received."""

    field_names: list[str] = field(default_factory=list)
    target: str = ""


@dataclass
class Metadata:
    """Callsite metadata: field names by index and the target."""

    field_names: list[str]
    target: str
    id: int

    @staticmethod
    def from_proto(pb: ProtoMetadata, id: int) -> "Metadata":
        return Metadata(field_names=list(pb.field_names), target=pb.target, id=id)


def _name_sort_key(name: str) -> tuple[int, str]:
    if name == Field.NAME:
        return (0, "")
    if name == Field.SPAWN_LOCATION:
        return (2, "")
    return (1, name)


@dataclass(frozen=True)
class Field:
    """A named field value; the task name sorts first, spawn location last."""

    SPAWN_LOCATION: ClassVar[str] = "spawn.location"
    NAME: ClassVar[str] = "task.name"
    TASK_ID: ClassVar[str] = "task.id"

    name: str
    value: FieldValue

    @property
    def sort_key(self) -> tuple[int, str]:
        return _name_sort_key(self.name)

    def __lt__(self, other: "Field") -> bool:
        return self.sort_key < other.sort_key

    @classmethod
    def from_proto(cls, proto: ProtoField, meta: Metadata) -> Optional["Field"]:
        """Resolve a received field against ``meta``.

        Returns ``None`` for malformed fields and empty string values.
        """
        name = proto.name
        if name is None:
            return None
        if not isinstance(name, str):
            if proto.metadata_id != meta.id:
                logger.warning(
                    "skipping malformed field name (metadata id mismatch): "
                    "task.meta_id=%s field.meta.id=%s field.name_index=%s",
                    meta.id, proto.metadata_id, name,
                )
                return None
            if not 0 <= name < len(meta.field_names):
                logger.warning(
                    "missing field name for index: task.meta_id=%s field.name_index=%s",
                    meta.id, name,
                )
                return None
            name = meta.field_names[name]
        value = proto.value
        if value is None:
            logger.warning("missing field value for field %r", name)
            return None
        if value._is_empty():
            return None
        if name == cls.SPAWN_LOCATION:
            value = value._truncate_registry_path()
        return cls(name, value)

    @staticmethod
    def make_formatted(fields) -> list[list[Span]]:
        """Format fields as ``name=value`` span groups, in display order."""
        return [
            [
                Span(f.name, _KEY_COLOR, _BOLD),
                Span("=", _KEY_COLOR, _DIM),
                Span(f"{f.value} ", _VALUE_COLOR),
            ]
            for f in sorted(fields, key=lambda f: f.sort_key)
        ]


@dataclass(frozen=True)
class Attribute:
    """A field with an optional unit, ordered by field and then unit."""

    field: Field
    unit: Optional[str] = None

    @property
    def sort_key(self) -> tuple:
        return (self.field.sort_key, self.unit is not None, self.unit or "")

    def __lt__(self, other: "Attribute") -> bool:
        return self.sort_key < other.sort_key

    @staticmethod
    def make_formatted(attributes) -> list[list[Span]]:
        """Format attributes as ``name=value[unit]`` span groups, in order."""
        formatted = []
        for attr in sorted(attributes, key=lambda a: a.sort_key):
            elems = [
                Span(attr.field.name, _KEY_COLOR, _BOLD),
                Span("=", _KEY_COLOR, _DIM),
                Span(str(attr.field.value), _VALUE_COLOR),
            ]
            if attr.unit is not None:
                elems.append(Span(attr.unit, _KEY_COLOR))
            elems.append(Span(" "))
            formatted.append(elems)
        return formatted


def truncate_registry_path(path: str) -> str:
    """Replace a package-registry or git-checkout prefix with ``<cargo>/``."""
    return _REGISTRY_PATH.sub("<cargo>/", path, count=1)


def format_location(location: Optional[Location]) -> str:
    """Render a location, shortening registry paths."""
    if location is None:
        return "<unknown location>"
    if location.file is not None:
        location = replace(location, file=truncate_registry_path(location.file))
    return str(location)


def pb_duration(seconds: int, nanos: int) -> int:
    """Convert a seconds/nanoseconds pair to nanoseconds."""
    if seconds < 0 or nanos < 0:
        raise ValueError("duration should not be negative!")
    return seconds * 1_000_000_000 + nanos