# taskconsole

`taskconsole` holds the state that a console for an async runtime keeps about
the program it watches: tasks, resources, the async operations performed on
those resources, and the poll-time and scheduled-time histograms of a
selected task.

Updates are passed in as plain Python dataclasses. The package gives each
task, resource and async op a sequential id (starting at 1) in place of its
remote span id, derives timings (total, busy, scheduled, idle), works out task
states, formats fields and attributes for display, runs lint checks on tasks,
and forgets items that were dropped longer ago than a configurable time.

All timestamps and durations held in memory are integer nanoseconds. Durations
on the wire (`busy_time`, `scheduled_time`) are `(seconds, nanoseconds)` pairs.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `taskconsole.util` – `percentage(total, amount)` and
  `percent_of(amount, total)`; `percentage` raises `ValueError` when the amount
  exceeds the total, and `percent_of` gives an integer result for integer
  arguments.
- `taskconsole.store` – `Store`, `Ids`, `Id` and `Visibility`. A `Store` keeps
  items by `Id`, looks them up by span id (`get_by_span`), inserts built items
  with `insert_with`, pairs stats updates with stored items via `updated`,
  prunes with `retain`, and hands out newly added items once through
  `take_new_items`. Inserting with `Visibility.SHOW` first clears the list of
  new items.
- `taskconsole.histogram` – `Histogram` (an HDR histogram with `record`,
  `value_at_quantile`, `min`, `max`, `total_count` and `serialize` to the V2
  format), `deserialize_histogram` (reads V2 data, plain or zlib-compressed,
  returning `None` when it is invalid) and `DurationHistogram`.
- `taskconsole.fields` – `Field`, `FieldValue`, `Attribute`, `Metadata`,
  `Span`, `Location`, the received forms `ProtoField`, `ProtoAttribute` and
  `ProtoMetadata`, plus `truncate_registry_path`, `format_location` and
  `pb_duration`. When formatting, `task.name` sorts first and
  `spawn.location` last.
- `taskconsole.tasks` – `Task`, `TaskStats`, `TaskState`, `TasksState`,
  `Details`, the task `SortBy` columns, and the received forms `TaskProto`,
  `TaskStatsProto`, `PollStats` and `TaskUpdate`.
- `taskconsole.resources` – `Resource`, `ResourceStats`, `ResourcesState`,
  `TypeVisibility`, `kind_from_proto`, the resource `SortBy` columns, and the
  received forms `ResourceProto`, `ResourceStatsProto`, `ResourceKind` and
  `ResourceUpdate`.
- `taskconsole.async_ops` – `AsyncOp`, `AsyncOpStats`, `AsyncOpsState`, the
  async-op `SortBy` columns, and the received forms `AsyncOpProto`,
  `AsyncOpStatsProto` and `AsyncOpUpdate`.
- `taskconsole.state` – `State`, which ties everything together, with
  `Update`, `MetadataUpdate`, `TaskDetailsUpdate` and `ViewKind`.

## Example

```python
from taskconsole.fields import FieldValue, ProtoField, ProtoMetadata
from taskconsole.state import MetadataUpdate, State, Update, ViewKind
from taskconsole.tasks import PollStats, TaskProto, TaskStatsProto, TaskUpdate

state = State().with_retain_for(6_000_000_000)  # six seconds

update = Update(
    now=10_000_000_000,
    new_metadata=MetadataUpdate(
        [(1, ProtoMetadata(field_names=["task.name"], target="app"))]
    ),
    task_update=TaskUpdate(
        new_tasks=[
            TaskProto(
                id=42,
                metadata=1,
                fields=[ProtoField(0, FieldValue.of_str("worker"), metadata_id=1)],
            )
        ],
        stats_update={
            42: TaskStatsProto(
                created_at=1_000_000_000,
                poll_stats=PollStats(polls=3, busy_time=(0, 500)),
            )
        },
    ),
)

state.update(ViewKind.TASKS_LIST, update)
state.retain_active()

for task in state.tasks_state.take_new_tasks():
    print(task.id, task.name, task.state().name, task.total(state.last_updated_at))
# 1 worker IDLE 9000000000
```

New items count as "new" for the view they belong to: tasks for
`ViewKind.TASKS_LIST`, resources for `ViewKind.RESOURCES_LIST` and async ops
for `ViewKind.RESOURCE_INSTANCE`.

`State.pause()` stops dropped items from being pruned by `retain_active` until
`State.resume()` is called; `State.is_paused()` tells which mode is active.
`State.update_task_details` records the histograms of the selected task in
`State.current_task_details`, and `State.unset_task_details` clears them.

Task linters are any objects with a `check(task)` method, returning a warning
or `None`, and a `count()` method; add them with `State.with_task_linters`.
`TasksState.warnings()` lists the linters whose `count()` is above zero.

## What this package does not do

It only keeps and derives state. It has no command to run, does not connect
to an instrumented process or decode its wire messages, and draws no terminal
screens: `Span` values and the `render` methods of `TaskState` and
`TypeVisibility` describe text and colours, but nothing here displays them.