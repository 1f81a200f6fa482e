"""Task state: tasks received from the instrumented process and their stats."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from taskconsole.fields import (
    Field,
    FieldValue,
    Location,
    Metadata,
    ProtoField,
    Span,
    format_location,
    pb_duration,
)
from taskconsole.histogram import DurationHistogram
from taskconsole.store import Id, Ids, Store, Visibility
from taskconsole.util import percent_of

logger = logging.getLogger(__name__)

# Durations on the wire are (seconds, nanoseconds) pairs; timestamps and
# durations held in memory are integer nanoseconds.
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


def _later(a: Optional[int], b: Optional[int]) -> bool:
    """Compare optional timestamps, treating a missing one as earliest."""
    if a is None:
        return False
    if b is None:
        return True
    return a > b


@dataclass
class PollStats:
    """Poll statistics as received."""

    polls: int = 0
    last_poll_started: Optional[int] = None
    last_poll_ended: Optional[int] = None
    busy_time: Optional[WireDuration] = None


@dataclass
class TaskStatsProto:
    """Task statistics as received."""

    created_at: Optional[int] = None
    dropped_at: Optional[int] = None
    poll_stats: Optional[PollStats] = None
    scheduled_time: Optional[WireDuration] = None
    last_wake: Optional[int] = None
    wakes: int = 0
    waker_clones: int = 0
    waker_drops: int = 0
    self_wakes: int = 0


@dataclass
class TaskProto:
    """A new task as received: its span ID, metadata ID, fields and location."""

    id: Optional[int] = None
    metadata: Optional[int] = None
    fields: list[ProtoField] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class TaskUpdate:
    """A batch of new tasks and stats updates keyed by span ID."""

    new_tasks: list[TaskProto] = field(default_factory=list)
    stats_update: dict[int, TaskStatsProto] = field(default_factory=dict)
    dropped_events: int = 0


class TaskState(enum.IntEnum):
    """The state a task is in; ordered for sorting."""

    COMPLETED = 0
    IDLE = 1
    RUNNING = 2
    SCHEDULED = 3

    def render(self, utf8: bool) -> Span:
        """Return the icon (or ASCII label) for this state."""
        if self is TaskState.RUNNING:
            return Span("\u25B6" if utf8 else "BUSY", "green")
        if self is TaskState.SCHEDULED:
            return Span("\u23EB" if utf8 else "SCHED")
        if self is TaskState.IDLE:
            return Span("\u23F8" if utf8 else "IDLE")
        return Span("\u23F9" if utf8 else "DONE")


class SortBy(enum.IntEnum):
    """Columns the task list can be sorted by; the value is the column index."""

    WARNS = 0
    TID = 1
    STATE = 2
    NAME = 3
    TOTAL = 4
    BUSY = 5
    SCHEDULED = 6
    IDLE = 7
    POLLS = 8
    TARGET = 9
    LOCATION = 10

    @classmethod
    def default(cls) -> "SortBy":
        return cls.TOTAL

    @classmethod
    def from_index(cls, index: int) -> "SortBy":
        """Return the column at ``index``; raises ``ValueError`` if there is none."""
        try:
            return cls(index)
        except ValueError:
            raise ValueError(f"no task column at index {index}") from None

    def as_column(self) -> int:
        return int(self)

    def sort(self, now: int, tasks: list["Task"]) -> None:
        """Sort ``tasks`` in place by this column, ascending."""
        if self is SortBy.TID:
            tasks.sort(key=lambda t: (t.task_id is not None, t.task_id or 0))
        elif self is SortBy.NAME:
            tasks.sort(key=lambda t: (t.name is not None, t.name or ""))
        elif self is SortBy.STATE:
            tasks.sort(key=lambda t: t.state())
        elif self is SortBy.WARNS:
            tasks.sort(key=lambda t: len(t.warnings))
        elif self is SortBy.TOTAL:
            tasks.sort(key=lambda t: t.total(now))
        elif self is SortBy.IDLE:
            tasks.sort(key=lambda t: t.idle(now))
        elif self is SortBy.SCHEDULED:
            tasks.sort(key=lambda t: t.scheduled(now))
        elif self is SortBy.BUSY:
            tasks.sort(key=lambda t: t.busy(now))
        elif self is SortBy.POLLS:
            tasks.sort(key=lambda t: t.stats.polls)
        elif self is SortBy.TARGET:
            tasks.sort(key=lambda t: t.target)
        else:
            tasks.sort(key=lambda t: t.location)


@dataclass
class TaskStats:
    """A task's statistics, in nanoseconds."""

    polls: int
    created_at: int
    dropped_at: Optional[int]
    busy: int
    scheduled: int
    last_poll_started: Optional[int]
    last_poll_ended: Optional[int]
    idle: Optional[int]
    total: Optional[int]
    wakes: int
    waker_clones: int
    waker_drops: int
    last_wake: Optional[int]
    self_wakes: int

    @staticmethod
    def from_proto(pb: TaskStatsProto) -> "TaskStats":
        """Convert received stats; raises ``ValueError`` if required parts are missing."""
        if pb.created_at is None:
            raise ValueError("task span was never created")
        if pb.poll_stats is None:
            raise ValueError("task should have poll stats")
        created_at = pb.created_at
        total = None
        if pb.dropped_at is not None:
            total = _since(pb.dropped_at, created_at) or 0
        poll_stats = pb.poll_stats
        busy = _wire_duration(poll_stats.busy_time)
        scheduled = _wire_duration(pb.scheduled_time)
        idle = None
        if total is not None:
            idle = max(total - (busy + scheduled), 0)
        return TaskStats(
            polls=poll_stats.polls,
            created_at=created_at,
            dropped_at=pb.dropped_at,
            busy=busy,
            scheduled=scheduled,
            last_poll_started=poll_stats.last_poll_started,
            last_poll_ended=poll_stats.last_poll_ended,
            idle=idle,
            total=total,
            wakes=pb.wakes,
            waker_clones=pb.waker_clones,
            waker_drops=pb.waker_drops,
            last_wake=pb.last_wake,
            self_wakes=pb.self_wakes,
        )


@dataclass
class Details:
    """Detailed information about the currently selected task."""

    span_id: int = 0
    poll_times_histogram: Optional[DurationHistogram] = None
    scheduled_times_histogram: Optional[DurationHistogram] = None


@dataclass(eq=False)
class Task:
    """A task, with a local sequential ID distinct from its remote span ID."""

    id: Id
    span_id: int
    stats: TaskStats
    target: str
    task_id: Optional[int] = None
    name: Optional[str] = None
    id_str: str = ""
    short_desc: str = ""
    formatted_fields: list[list[Span]] = field(default_factory=list)
    location: str = "<unknown location>"
    warnings: list[Any] = field(default_factory=list)

    def is_running(self) -> bool:
        """Whether the task is being polled right now."""
        return _later(self.stats.last_poll_started, self.stats.last_poll_ended)

    def is_scheduled(self) -> bool:
        return _later(self.stats.last_wake, self.stats.last_poll_started)

    def is_completed(self) -> bool:
        return self.stats.total is not None

    def state(self) -> TaskState:
        if self.is_completed():
            return TaskState.COMPLETED
        if self.is_running():
            return TaskState.RUNNING
        if self.is_scheduled():
            return TaskState.SCHEDULED
        return TaskState.IDLE

    def total(self, since: int) -> int:
        if self.stats.total is not None:
            return self.stats.total
        return _since(since, self.stats.created_at) or 0

    def busy(self, since: int) -> int:
        started = self.stats.last_poll_started
        if started is not None and _later(started, self.stats.last_poll_ended):
            return self.stats.busy + (_since(since, started) or 0)
        return self.stats.busy

    def scheduled(self, since: int) -> int:
        wake = self.stats.last_wake
        if wake is not None and _later(wake, self.stats.last_poll_started):
            return self.stats.scheduled + (_since(since, wake) or 0)
        return self.stats.scheduled

    def idle(self, since: int) -> int:
        if self.stats.idle is not None:
            return self.stats.idle
        return max(self.total(since) - (self.busy(since) + self.scheduled(since)), 0)

    def since_wake(self, now: int) -> Optional[int]:
        """Time since the last wake, or ``None`` if never woken or woken after ``now``."""
        if self.stats.last_wake is None:
            return None
        return _since(now, self.stats.last_wake)

    def waker_count(self) -> int:
        """The current number of wakers for this task."""
        return max(self.stats.waker_clones - self.stats.waker_drops, 0)

    def self_wake_percent(self) -> int:
        """The percentage of wakeups that were self-wakes."""
        return percent_of(self.stats.self_wakes, self.stats.wakes)

    def is_awakened(self) -> bool:
        """Whether the task is waiting to be polled after being woken."""
        return self.stats.polls == 0 or _later(self.stats.last_wake, self.stats.last_poll_started)

    def lint(self, linters) -> None:
        """Recompute this task's warnings from ``linters``."""
        self.warnings.clear()
        for linter in linters:
            warning = linter.check(self)
            if warning is not None:
                logger.info("found a warning for task %s: %r", self.id, warning)
                self.warnings.append(warning)


def _short_desc(task_id: Optional[int], name: Optional[str]) -> str:
    if task_id is not None and name is not None:
        return f"{task_id} ({name})"
    if task_id is not None:
        return str(task_id)
    if name is not None:
        return name
    return ""


@dataclass
class TasksState:
    """All known tasks, the linters applied to them and dropped event counts."""

    tasks: Store = field(default_factory=Store)
    linters: list[Any] = field(default_factory=list)
    dropped_events: int = 0

    @property
    def ids(self) -> Ids:
        return self.tasks.ids

    def take_new_tasks(self) -> list[Task]:
        """Return tasks added since the last call."""
        return self.tasks.take_new_items()

    def update_tasks(
        self,
        metas: dict[int, Metadata],
        update: TaskUpdate,
        visibility: Visibility,
    ) -> None:
        """Add new tasks and apply stats updates."""
        stats_update = dict(update.stats_update)
        linters = self.linters

        def build(ids: Ids, proto: TaskProto) -> Optional[tuple[Id, Task]]:
            if proto.id is None:
                logger.warning("skipping task with no id: %r", proto)
            if proto.metadata is None:
                logger.warning("task has no metadata ID, skipping: %r", proto)
                return None
            meta = metas.get(proto.metadata)
            if meta is None:
                logger.warning("no metadata for task, skipping: meta_id=%s", proto.metadata)
                return None

            name: Optional[str] = None
            task_id: Optional[int] = None
            fields = []
            for pb in proto.fields:
                resolved = Field.from_proto(pb, meta)
                if resolved is None:
                    continue
                if resolved.name == Field.NAME:
                    name = str(resolved.value)
                elif resolved.name == Field.TASK_ID:
                    value = resolved.value
                    task_id = value.value if value.kind is FieldValue.Kind.U64 else None
                else:
                    fields.append(resolved)

            formatted_fields = Field.make_formatted(fields)
            if proto.id is None:
                return None
            span_id = proto.id
            stats_pb = stats_update.pop(span_id, None)
            if stats_pb is None:
                return None
            stats = TaskStats.from_proto(stats_pb)
            location = format_location(proto.location)
            id = ids.id_for(span_id)

            task = Task(
                id=id,
                span_id=span_id,
                stats=stats,
                target=meta.target,
                task_id=task_id,
                name=name,
                id_str="" if task_id is None else str(task_id),
                short_desc=_short_desc(task_id, name),
                formatted_fields=formatted_fields,
                location=location,
            )
            task.lint(linters)
            return id, task

        self.tasks.insert_with(visibility, update.new_tasks, build)

        for stats_pb, task in self.tasks.updated(stats_update):
            task.stats = TaskStats.from_proto(stats_pb)
            task.lint(linters)

        self.dropped_events += update.dropped_events

    def retain_active(self, now: int, retain_for: int) -> None:
        """Drop tasks that completed at least ``retain_for`` before ``now``."""

        def keep(_id: Id, task: Task) -> bool:
            dropped_at = task.stats.dropped_at
            if dropped_at is None:
                return True
            return retain_for > (_since(now, dropped_at) or 0)

        self.tasks.retain(keep)

    def warnings(self) -> list[Any]:
        """Linters that currently match at least one task."""
        return [linter for linter in self.linters if linter.count() > 0]

    def task(self, id: Id) -> Optional[Task]:
        return self.tasks.get(id)