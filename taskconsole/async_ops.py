"""Async operation state: async ops on resources and their poll statistics."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from taskconsole.fields import Attribute, Field, Metadata, ProtoAttribute, Span, pb_duration
from taskconsole.store import Id, Ids, Store, Visibility
from taskconsole.tasks import PollStats

logger = logging.getLogger(__name__)

WireDuration = tuple[int, int]


def _wire_duration(pb: Optional[WireDuration]) -> int:
    if pb is None:
        return 0
    seconds, nanos = pb
    return pb_duration(seconds, nanos)


def _since(now: int, earlier: int) -> Optional[int]:
    """Elapsed time from ``earlier`` to ``now``, or ``None`` if ``earlier`` is later."""
    elapsed = now - earlier
    return elapsed if elapsed >= 0 else None


@dataclass
class AsyncOpStatsProto:
    """Async op statistics as received."""

    created_at: Optional[int] = None
    dropped_at: Optional[int] = None
    poll_stats: Optional[PollStats] = None
    task_id: Optional[int] = None
    attributes: list[ProtoAttribute] = field(default_factory=list)


@dataclass
class AsyncOpProto:
    """A new async op as received."""

    id: Optional[int] = None
    metadata: Optional[int] = None
    resource_id: Optional[int] = None
    parent_async_op_id: Optional[int] = None
    source: str = ""


@dataclass
class AsyncOpUpdate:
    """A batch of new async ops and stats updates keyed by span ID."""

    new_async_ops: list[AsyncOpProto] = field(default_factory=list)
    stats_update: dict[int, AsyncOpStatsProto] = field(default_factory=dict)
    dropped_events: int = 0


class SortBy(enum.IntEnum):
    """Columns the async op list can be sorted by; the value is the column index."""

    AID = 0
    TASK = 1
    SOURCE = 2
    TOTAL = 3
    BUSY = 4
    IDLE = 5
    POLLS = 6

    @classmethod
    def default(cls) -> "SortBy":
        return cls.AID

    @classmethod
    def from_index(cls, index: int) -> "SortBy":
        """Return the column at ``index``; raises ``ValueError`` if there is none."""
        try:
            return cls(index)
        except ValueError:
            raise ValueError(f"no async op column at index {index}") from None

    def as_column(self) -> int:
        return int(self)

    def sort(self, now: int, ops: list["AsyncOp"]) -> None:
        """Sort ``ops`` in place by this column, ascending."""
        if self is SortBy.AID:
            ops.sort(key=lambda op: op.id)
        elif self is SortBy.TASK:
            ops.sort(
                key=lambda op: (op.task_id is not None, op.task_id.value if op.task_id else 0)
            )
        elif self is SortBy.SOURCE:
            ops.sort(key=lambda op: op.source)
        elif self is SortBy.TOTAL:
            ops.sort(key=lambda op: op.total(now))
        elif self is SortBy.BUSY:
            ops.sort(key=lambda op: op.busy(now))
        elif self is SortBy.IDLE:
            ops.sort(key=lambda op: op.idle(now))
        else:
            ops.sort(key=lambda op: op.stats.polls)


@dataclass
class AsyncOpStats:
    """An async op's statistics, in nanoseconds."""

    created_at: int
    dropped_at: Optional[int]
    polls: int
    busy: int
    last_poll_started: Optional[int]
    last_poll_ended: Optional[int]
    idle: Optional[int]
    total: Optional[int]
    task_id: Optional[Id]
    task_id_str: str
    formatted_attributes: list[list[Span]]

    @staticmethod
    def from_proto(pb: AsyncOpStatsProto, meta: Metadata, task_ids: Ids) -> "AsyncOpStats":
        """Convert received stats; raises ``ValueError`` if required parts are missing."""
        attributes = []
        for attr in pb.attributes:
            if attr.field is None:
                continue
            resolved = Field.from_proto(attr.field, meta)
            if resolved is None:
                continue
            attributes.append(Attribute(resolved, attr.unit))

        if pb.created_at is None:
            raise ValueError("async op span was never created")
        created_at = pb.created_at
        total = None
        if pb.dropped_at is not None:
            total = _since(pb.dropped_at, created_at) or 0

        if pb.poll_stats is None:
            raise ValueError("task should have poll stats")
        poll_stats = pb.poll_stats
        busy = _wire_duration(poll_stats.busy_time)
        idle = None if total is None else max(total - busy, 0)
        formatted = Attribute.make_formatted(attributes)
        task_id = None if pb.task_id is None else task_ids.id_for(pb.task_id)
        return AsyncOpStats(
            created_at=created_at,
            dropped_at=pb.dropped_at,
            polls=poll_stats.polls,
            busy=busy,
            last_poll_started=poll_stats.last_poll_started,
            last_poll_ended=poll_stats.last_poll_ended,
            idle=idle,
            total=total,
            task_id=task_id,
            task_id_str="n/a" if task_id is None else str(task_id),
            formatted_attributes=formatted,
        )


@dataclass(eq=False)
class AsyncOp:
    """An async operation performed on a resource."""

    id: Id
    parent_id: str
    resource_id: Id
    meta_id: int
    source: str
    stats: AsyncOpStats

    @property
    def task_id(self) -> Optional[Id]:
        return self.stats.task_id

    @property
    def task_id_str(self) -> str:
        return self.stats.task_id_str

    @property
    def total_polls(self) -> int:
        return self.stats.polls

    @property
    def formatted_attributes(self) -> list[list[Span]]:
        return self.stats.formatted_attributes

    def total(self, since: int) -> int:
        if self.stats.total is not None:
            return self.stats.total
        return _since(since, self.stats.created_at) or 0

    def busy(self, since: int) -> int:
        started = self.stats.last_poll_started
        if started is not None and self.stats.last_poll_ended is None:
            return self.stats.busy + (_since(since, started) or 0)
        return self.stats.busy

    def idle(self, since: int) -> int:
        if self.stats.idle is not None:
            return self.stats.idle
        return max(self.total(since) - self.busy(since), 0)

    def dropped(self) -> bool:
        return self.stats.total is not None


@dataclass
class AsyncOpsState:
    """All known async ops and the count of dropped events."""

    store: Store = field(default_factory=Store)
    dropped_events: int = 0

    def take_new_async_ops(self) -> list[AsyncOp]:
        """Return async ops added since the last call."""
        return self.store.take_new_items()

    def async_ops(self) -> Iterator[AsyncOp]:
        """Iterate over all async ops."""
        return iter(list(self.store.values()))

    def update_async_ops(
        self,
        metas: dict[int, Metadata],
        update: AsyncOpUpdate,
        resource_ids: Ids,
        task_ids: Ids,
        visibility: Visibility,
    ) -> None:
        """Add new async ops and apply stats updates."""
        stats_update = dict(update.stats_update)

        def build(ids: Ids, proto: AsyncOpProto) -> Optional[tuple[Id, AsyncOp]]:
            if proto.id is None:
                logger.warning("skipping async op with no id: %r", proto)
            if proto.metadata is None:
                logger.warning("async op has no metadata ID, skipping: %r", proto)
                return None
            meta = metas.get(proto.metadata)
            if meta is None:
                logger.warning("no metadata for async op, skipping: meta_id=%s", proto.metadata)
                return None
            if proto.id is None:
                return None
            span_id = proto.id
            stats_pb = stats_update.pop(span_id, None)
            if stats_pb is None:
                return None
            stats = AsyncOpStats.from_proto(stats_pb, meta, task_ids)

            id = ids.id_for(span_id)
            if proto.resource_id is None:
                return None
            resource_id = resource_ids.id_for(proto.resource_id)
            if proto.parent_async_op_id is None:
                parent_id = "n/a"
            else:
                parent_id = str(ids.id_for(proto.parent_async_op_id))

            op = AsyncOp(
                id=id,
                parent_id=parent_id,
                resource_id=resource_id,
                meta_id=proto.metadata,
                source=proto.source,
                stats=stats,
            )
            return id, op

        self.store.insert_with(visibility, update.new_async_ops, build)

        for stats_pb, op in self.store.updated(stats_update):
            meta = metas.get(op.meta_id)
            if meta is not None:
                op.stats = AsyncOpStats.from_proto(stats_pb, meta, task_ids)

        self.dropped_events += update.dropped_events

    def retain_active(self, now: int, retain_for: int) -> None:
        """Drop async ops that were dropped at least ``retain_for`` before ``now``."""

        def keep(_id: Id, op: AsyncOp) -> bool:
            dropped_at = op.stats.dropped_at
            if dropped_at is None:
                return True
            return retain_for > (_since(now, dropped_at) or 0)

        self.store.retain(keep)