"""The console's overall state, fed by updates from the instrumented process."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from taskconsole.async_ops import AsyncOpUpdate, AsyncOpsState
from taskconsole.fields import Metadata, ProtoMetadata
from taskconsole.histogram import DurationHistogram
from taskconsole.resources import ResourcesState, ResourceUpdate
from taskconsole.store import Visibility
from taskconsole.tasks import Details, TasksState, TaskUpdate


class ViewKind(enum.Enum):
    """The view currently on screen."""

    TASKS_LIST = "tasks_list"
    RESOURCES_LIST = "resources_list"
    TASK_INSTANCE = "task_instance"
    RESOURCE_INSTANCE = "resource_instance"


class _Temporality(enum.Enum):
    LIVE = "live"
    PAUSED = "paused"


@dataclass
class MetadataUpdate:
    """New callsite metadata as ``(id, metadata)`` pairs; either may be missing."""

    metadata: list[tuple[Optional[int], Optional[ProtoMetadata]]] = field(default_factory=list)


@dataclass
class TaskDetailsUpdate:
    """Details for one task: its span ID and histograms as received."""

    task_id: Optional[int] = None
    poll_times_histogram: Any = None
    scheduled_times_histogram: Any = None


@dataclass
class Update:
    """One update from the instrumented process."""

    now: Optional[int] = None
    new_metadata: Optional[MetadataUpdate] = None
    task_update: Optional[TaskUpdate] = None
    resource_update: Optional[ResourceUpdate] = None
    async_op_update: Optional[AsyncOpUpdate] = None


def _visibility(shown: bool) -> Visibility:
    return Visibility.SHOW if shown else Visibility.HIDE


@dataclass
class State:
    """Tasks, resources and async ops, with metadata and pause state."""

    metas: dict[int, Metadata] = field(default_factory=dict)
    last_updated_at: Optional[int] = None
    tasks_state: TasksState = field(default_factory=TasksState)
    resources_state: ResourcesState = field(default_factory=ResourcesState)
    async_ops_state: AsyncOpsState = field(default_factory=AsyncOpsState)
    current_task_details: Optional[Details] = None
    retain_for: Optional[int] = None
    _temporality: _Temporality = _Temporality.LIVE

    def with_retain_for(self, retain_for: Optional[int]) -> "State":
        self.retain_for = retain_for
        return self

    def with_task_linters(self, linters: Iterable[Any]) -> "State":
        self.tasks_state.linters.extend(linters)
        return self

    def update(self, current_view: ViewKind, update: Update) -> None:
        """Apply an update; new items are shown only in the matching list view."""
        if update.now is not None:
            self.last_updated_at = update.now

        if update.new_metadata is not None:
            for id, meta in update.new_metadata.metadata:
                if id is None or meta is None:
                    continue
                self.metas[id] = Metadata.from_proto(meta, id)

        if update.task_update is not None:
            self.tasks_state.update_tasks(
                self.metas,
                update.task_update,
                _visibility(current_view is ViewKind.TASKS_LIST),
            )

        if update.resource_update is not None:
            self.resources_state.update_resources(
                self.metas,
                update.resource_update,
                _visibility(current_view is ViewKind.RESOURCES_LIST),
            )

        if update.async_op_update is not None:
            self.async_ops_state.update_async_ops(
                self.metas,
                update.async_op_update,
                self.resources_state.ids,
                self.tasks_state.ids,
                _visibility(current_view is ViewKind.RESOURCE_INSTANCE),
            )

    def retain_active(self) -> None:
        """Drop items dropped longer ago than ``retain_for``, unless paused."""
        if self.is_paused():
            return
        if self.last_updated_at is not None and self.retain_for is not None:
            now = self.last_updated_at
            self.tasks_state.retain_active(now, self.retain_for)
            self.resources_state.retain_active(now, self.retain_for)
            self.async_ops_state.retain_active(now, self.retain_for)

    def update_task_details(self, update: TaskDetailsUpdate) -> None:
        """Replace the current task details; ignored if the update has no task ID."""
        if update.task_id is None:
            return
        poll = None
        if update.poll_times_histogram is not None:
            poll = DurationHistogram.from_poll_durations(update.poll_times_histogram)
        scheduled = None
        if update.scheduled_times_histogram is not None:
            scheduled = DurationHistogram.from_proto(update.scheduled_times_histogram)
        self.current_task_details = Details(
            span_id=update.task_id,
            poll_times_histogram=poll,
            scheduled_times_histogram=scheduled,
        )

    def unset_task_details(self) -> None:
        self.current_task_details = None

    def pause(self) -> None:
        self._temporality = _Temporality.PAUSED

    def resume(self) -> None:
        self._temporality = _Temporality.LIVE

    def is_paused(self) -> bool:
        return self._temporality is _Temporality.PAUSED