"""Resource state: resources received from the instrumented process and their stats."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Optional

from taskconsole.fields import (
    Attribute,
    Field,
    Location,
    Metadata,
    ProtoAttribute,
    Span,
    format_location,
)
from taskconsole.store import Id, Ids, Store, Visibility

logger = logging.getLogger(__name__)

# The wire enumeration of resource kinds the console knows by number.
KNOWN_TIMER = 0


class ResourceKindError(ValueError):
    """Raised when a known resource kind number cannot be interpreted."""


def _since(now: int, earlier: int) -> Optional[int]:
    """Elapsed time from ``earlier`` to ``now``, or ``None`` if ``earlier`` is later."""
    elapsed = now - earlier
    return elapsed if elapsed >= 0 else None


@dataclass(frozen=True)
class ResourceKind:
    """A resource kind as received: a known kind number or a free-form name."""

    known: Optional[int] = None
    other: Optional[str] = None


@dataclass
class ResourceStatsProto:
    """Resource statistics as received."""

    created_at: Optional[int] = None
    dropped_at: Optional[int] = None
    attributes: list[ProtoAttribute] = field(default_factory=list)


@dataclass
class ResourceProto:
    """A new resource as received."""

    id: Optional[int] = None
    metadata: Optional[int] = None
    kind: Optional[ResourceKind] = None
    concrete_type: str = ""
    location: Optional[Location] = None
    is_internal: bool = False
    parent_resource_id: Optional[int] = None


@dataclass
class ResourceUpdate:
    """A batch of new resources and stats updates keyed by span ID."""

    new_resources: list[ResourceProto] = field(default_factory=list)
    stats_update: dict[int, ResourceStatsProto] = field(default_factory=dict)
    dropped_events: int = 0


class TypeVisibility(enum.IntEnum):
    """Whether a resource type is part of the public API or internal."""

    PUBLIC = 0
    INTERNAL = 1

    def render(self, utf8: bool) -> Span:
        """Return the icon (or ASCII label) for this visibility."""
        if self is TypeVisibility.INTERNAL:
            return Span("\U0001F512" if utf8 else "INT", "red")
        return Span("\u2705" if utf8 else "PUB", "green")


class SortBy(enum.IntEnum):
    """Columns the resource list can be sorted by; the value is the column index."""

    RID = 0
    KIND = 1
    CONCRETE_TYPE = 2
    TARGET = 3
    TOTAL = 4

    @classmethod
    def default(cls) -> "SortBy":
        return cls.RID

    @classmethod
    def from_index(cls, index: int) -> "SortBy":
        """Return the column at ``index``; raises ``ValueError`` if there is none."""
        try:
            return cls(index)
        except ValueError:
            raise ValueError(f"no resource column at index {index}") from None

    def as_column(self) -> int:
        return int(self)

    def sort(self, now: int, resources: list["Resource"]) -> None:
        """Sort ``resources`` in place by this column, ascending."""
        if self is SortBy.RID:
            resources.sort(key=lambda r: r.id)
        elif self is SortBy.KIND:
            resources.sort(key=lambda r: r.kind)
        elif self is SortBy.CONCRETE_TYPE:
            resources.sort(key=lambda r: r.concrete_type)
        elif self is SortBy.TARGET:
            resources.sort(key=lambda r: r.target)
        else:
            resources.sort(key=lambda r: r.total(now))


@dataclass
class ResourceStats:
    """A resource's statistics, in nanoseconds."""

    created_at: int
    dropped_at: Optional[int]
    total: Optional[int]
    formatted_attributes: list[list[Span]]

    @staticmethod
    def from_proto(pb: ResourceStatsProto, meta: Metadata) -> "ResourceStats":
        """Convert received stats; raises ``ValueError`` if the creation time is missing."""
        attributes = []
        for attr in pb.attributes:
            if attr.field is None:
                continue
            resolved = Field.from_proto(attr.field, meta)
            if resolved is None:
                continue
            attributes.append(Attribute(resolved, attr.unit))
        formatted = Attribute.make_formatted(attributes)
        if pb.created_at is None:
            raise ValueError("resource span was never created")
        total = None
        if pb.dropped_at is not None:
            total = _since(pb.dropped_at, pb.created_at) or 0
        return ResourceStats(
            created_at=pb.created_at,
            dropped_at=pb.dropped_at,
            total=total,
            formatted_attributes=formatted,
        )


@dataclass(eq=False)
class Resource:
    """A resource, with a local sequential ID distinct from its remote span ID."""

    id: Id
    span_id: int
    id_str: str
    parent: str
    parent_id: str
    meta_id: int
    kind: str
    stats: ResourceStats
    target: str
    concrete_type: str
    location: str
    visibility: TypeVisibility

    @property
    def formatted_attributes(self) -> list[list[Span]]:
        return self.stats.formatted_attributes

    def total(self, since: int) -> int:
        if self.stats.total is not None:
            return self.stats.total
        return _since(since, self.stats.created_at) or 0

    def dropped(self) -> bool:
        return self.stats.total is not None


def kind_from_proto(kind: ResourceKind) -> str:
    """Return the display name of a resource kind.

    Raises ``ResourceKindError`` for an unrecognised known kind and
    ``ValueError`` if the kind carries neither a number nor a name.
    """
    if kind.known is not None:
        if kind.known == KNOWN_TIMER:
            return "Timer"
        raise ResourceKindError(f"failed to parse known kind from {kind.known}")
    if kind.other is not None:
        return kind.other
    raise ValueError("a resource should have a kind field")


@dataclass
class ResourcesState:
    """All known resources and the count of dropped events."""

    resources: Store = field(default_factory=Store)
    dropped_events: int = 0

    @property
    def ids(self) -> Ids:
        return self.resources.ids

    def take_new_resources(self) -> list[Resource]:
        """Return resources added since the last call."""
        return self.resources.take_new_items()

    def update_resources(
        self,
        metas: dict[int, Metadata],
        update: ResourceUpdate,
        visibility: Visibility,
    ) -> None:
        """Add new resources and apply stats updates."""
        parents: dict[Id, Resource] = {}
        for proto in update.new_resources:
            if proto.parent_resource_id is None:
                continue
            parent = self.resources.get_by_span(proto.parent_resource_id)
            if parent is not None:
                parents[parent.id] = parent

        stats_update = dict(update.stats_update)

        def build(ids: Ids, proto: ResourceProto) -> Optional[tuple[Id, Resource]]:
            if proto.id is None:
                logger.warning("skipping resource with no id: %r", proto)
            if proto.metadata is None:
                logger.warning("resource has no metadata ID, skipping: %r", proto)
                return None
            meta = metas.get(proto.metadata)
            if meta is None:
                logger.warning("no metadata for resource, skipping: meta_id=%s", proto.metadata)
                return None
            if proto.kind is None:
                return None
            try:
                kind = kind_from_proto(proto.kind)
            except ResourceKindError as err:
                logger.warning("resource kind cannot be parsed: %s", err)
                return None

            if proto.id is None:
                return None
            span_id = proto.id
            stats_pb = stats_update.pop(span_id, None)
            if stats_pb is None:
                return None
            stats = ResourceStats.from_proto(stats_pb, meta)

            id = ids.id_for(span_id)
            parent_id = None
            if proto.parent_resource_id is not None:
                parent_id = ids.id_for(proto.parent_resource_id)

            if parent_id is None:
                parent = "n/a"
            else:
                known_parent = parents.get(parent_id)
                if known_parent is not None:
                    parent = (
                        f"{known_parent.id} "
                        f"({known_parent.target}::{known_parent.concrete_type})"
                    )
                else:
                    parent = str(parent_id)

            resource = Resource(
                id=id,
                span_id=span_id,
                id_str=str(id),
                parent=parent,
                parent_id="n/a" if parent_id is None else str(parent_id),
                meta_id=proto.metadata,
                kind=kind,
                stats=stats,
                target=meta.target,
                concrete_type=proto.concrete_type,
                location=format_location(proto.location),
                visibility=(
                    TypeVisibility.INTERNAL if proto.is_internal else TypeVisibility.PUBLIC
                ),
            )
            return id, resource

        self.resources.insert_with(visibility, update.new_resources, build)

        self.dropped_events += update.dropped_events

        for stats_pb, resource in self.resources.updated(stats_update):
            meta = metas.get(resource.meta_id)
            if meta is not None:
                resource.stats = ResourceStats.from_proto(stats_pb, meta)

    def retain_active(self, now: int, retain_for: int) -> None:
        """Drop resources that were dropped at least ``retain_for`` before ``now``."""

        def keep(_id: Id, resource: Resource) -> bool:
            dropped_at = resource.stats.dropped_at
            if dropped_at is None:
                return True
            return retain_for > (_since(now, dropped_at) or 0)

        self.resources.retain(keep)