import pytest

from taskconsole.fields import (
    FieldValue,
    Location,
    Metadata,
    ProtoAttribute,
    ProtoField,
)
from taskconsole.resources import (
    Resource,
    ResourceKind,
    ResourceKindError,
    ResourceProto,
    ResourcesState,
    ResourceStats,
    ResourceStatsProto,
    ResourceUpdate,
    SortBy,
    TypeVisibility,
    kind_from_proto,
)
from taskconsole.store import Id, Visibility

META = Metadata(field_names=["permits", "locked"], target="tokio::sync", id=7)
METAS = {7: META}


def _proto(span_id, concrete_type="Mutex", parent=None, kind=None, **kw):
    return ResourceProto(
        id=span_id,
        metadata=7,
        kind=kind or ResourceKind(other="Sync"),
        concrete_type=concrete_type,
        parent_resource_id=parent,
        **kw,
    )


def _update(*protos, created=100, dropped=None, dropped_events=0):
    return ResourceUpdate(
        new_resources=list(protos),
        stats_update={
            p.id: ResourceStatsProto(created_at=created, dropped_at=dropped) for p in protos
        },
        dropped_events=dropped_events,
    )


def test_kind_from_proto_timer_and_other():
    assert kind_from_proto(ResourceKind(known=0)) == "Timer"
    assert kind_from_proto(ResourceKind(other="Semaphore")) == "Semaphore"


def test_kind_from_proto_unknown_known_kind():
    with pytest.raises(ResourceKindError):
        kind_from_proto(ResourceKind(known=5))


def test_kind_from_proto_missing():
    with pytest.raises(ValueError):
        kind_from_proto(ResourceKind())


def test_type_visibility_render():
    assert TypeVisibility.INTERNAL.render(False).content == "INT"
    assert TypeVisibility.PUBLIC.render(False).content == "PUB"
    assert TypeVisibility.INTERNAL.render(True).content == "\U0001F512"
    assert TypeVisibility.PUBLIC.render(True).content == "\u2705"
    assert TypeVisibility.PUBLIC < TypeVisibility.INTERNAL


def test_sort_by_index_round_trip():
    for column in SortBy:
        assert SortBy.from_index(column.as_column()) is column
    assert SortBy.default() is SortBy.RID
    with pytest.raises(ValueError):
        SortBy.from_index(5)


def test_new_resource_fields():
    state = ResourcesState()
    state.update_resources(METAS, _update(_proto(42, is_internal=True)), Visibility.SHOW)
    (resource,) = state.take_new_resources()
    assert resource.id == Id(1)
    assert resource.span_id == 42
    assert resource.id_str == "1"
    assert resource.parent == "n/a"
    assert resource.parent_id == "n/a"
    assert resource.kind == "Sync"
    assert resource.target == "tokio::sync"
    assert resource.concrete_type == "Mutex"
    assert resource.visibility is TypeVisibility.INTERNAL
    assert resource.location == "<unknown location>"
    assert state.take_new_resources() == []


def test_location_registry_path_truncated():
    loc = Location(file="/home/u/.cargo/registry/src/index-abc/tokio-1.0/src/sync.rs", line=5)
    state = ResourcesState()
    state.update_resources(METAS, _update(_proto(1, location=loc)), Visibility.SHOW)
    (resource,) = state.take_new_resources()
    assert resource.location == "<cargo>/tokio-1.0/src/sync.rs:5"


def test_parent_known_and_unknown():
    state = ResourcesState()
    state.update_resources(METAS, _update(_proto(10, "Semaphore")), Visibility.SHOW)
    state.update_resources(
        METAS,
        _update(_proto(20, parent=10), _proto(30, parent=99)),
        Visibility.SHOW,
    )
    child = state.resources.get_by_span(20)
    assert child.parent == "1 (tokio::sync::Semaphore)"
    assert child.parent_id == "1"
    orphan = state.resources.get_by_span(30)
    assert orphan.parent == orphan.parent_id
    assert orphan.parent_id == str(state.ids.get(99))


def test_skips_invalid_resources():
    state = ResourcesState()
    no_meta = ResourceProto(id=1, metadata=None, kind=ResourceKind(known=0))
    unknown_meta = ResourceProto(id=2, metadata=3, kind=ResourceKind(known=0))
    bad_kind = _proto(3, kind=ResourceKind(known=9))
    no_kind = ResourceProto(id=4, metadata=7, kind=None)
    no_stats = _proto(5)
    update = _update(no_meta, unknown_meta, bad_kind, no_kind)
    update.new_resources.append(no_stats)
    state.update_resources(METAS, update, Visibility.SHOW)
    assert len(state.resources) == 0


def test_missing_created_at_raises():
    stats = ResourceStatsProto(created_at=None)
    with pytest.raises(ValueError):
        ResourceStats.from_proto(stats, META)


def test_attributes_formatted():
    stats = ResourceStatsProto(
        created_at=0,
        attributes=[
            ProtoAttribute(ProtoField(0, FieldValue.of_u64(3), metadata_id=7), "permits"),
            ProtoAttribute(ProtoField("locked", FieldValue.of_bool(True))),
            ProtoAttribute(None),
            ProtoAttribute(ProtoField(0, FieldValue.of_u64(1), metadata_id=8)),
        ],
    )
    result = ResourceStats.from_proto(stats, META)
    contents = [[span.content for span in group] for group in result.formatted_attributes]
    assert contents == [
        ["locked", "=", "true", " "],
        ["permits", "=", "3", "permits", " "],
    ]


def test_total_and_dropped():
    state = ResourcesState()
    state.update_resources(METAS, _update(_proto(1), created=100), Visibility.SHOW)
    state.update_resources(METAS, _update(_proto(2), created=100, dropped=160), Visibility.SHOW)
    live = state.resources.get_by_span(1)
    done = state.resources.get_by_span(2)
    assert not live.dropped()
    assert live.total(130) == 30
    assert live.total(50) == 0
    assert done.dropped()
    assert done.total(10_000) == 60


def test_stats_update_applied_and_dropped_events():
    state = ResourcesState()
    state.update_resources(METAS, _update(_proto(1), dropped_events=2), Visibility.SHOW)
    update = ResourceUpdate(
        stats_update={
            1: ResourceStatsProto(created_at=100, dropped_at=150),
            77: ResourceStatsProto(created_at=0),
        },
        dropped_events=3,
    )
    state.update_resources(METAS, update, Visibility.SHOW)
    resource = state.resources.get_by_span(1)
    assert resource.dropped()
    assert resource.stats.dropped_at == 150
    assert state.dropped_events == 5
    assert len(state.resources) == 1


def test_retain_active():
    state = ResourcesState()
    state.update_resources(METAS, _update(_proto(1)), Visibility.SHOW)
    state.update_resources(METAS, _update(_proto(2), dropped=200), Visibility.SHOW)
    state.update_resources(METAS, _update(_proto(3), dropped=900), Visibility.SHOW)
    state.retain_active(now=1000, retain_for=500)
    kept = sorted(r.span_id for r in state.resources.values())
    assert kept == [1, 3]


def test_hidden_updates_accumulate_new_items():
    state = ResourcesState()
    state.update_resources(METAS, _update(_proto(1)), Visibility.HIDE)
    state.update_resources(METAS, _update(_proto(2)), Visibility.HIDE)
    assert [r.span_id for r in state.take_new_resources()] == [1, 2]
    state.update_resources(METAS, _update(_proto(3)), Visibility.HIDE)
    state.update_resources(METAS, _update(_proto(4)), Visibility.SHOW)
    assert [r.span_id for r in state.take_new_resources()] == [4]


def test_sort_by_columns():
    state = ResourcesState()
    state.update_resources(
        METAS,
        _update(
            _proto(1, "Semaphore", kind=ResourceKind(other="Sync")),
            _proto(2, "Mutex", kind=ResourceKind(known=0)),
        ),
        Visibility.SHOW,
    )
    resources = list(state.resources.values())
    SortBy.KIND.sort(0, resources)
    assert [r.kind for r in resources] == ["Sync", "Timer"]
    SortBy.CONCRETE_TYPE.sort(0, resources)
    assert [r.concrete_type for r in resources] == ["Mutex", "Semaphore"]
    SortBy.RID.sort(0, resources)
    assert [r.id for r in resources] == [Id(1), Id(2)]
    assert all(isinstance(r, Resource) for r in resources)


def test_sort_by_total():
    state = ResourcesState()
    state.update_resources(METAS, _update(_proto(1), created=100), Visibility.SHOW)
    state.update_resources(METAS, _update(_proto(2), created=10), Visibility.SHOW)
    resources = list(state.resources.values())
    SortBy.TOTAL.sort(200, resources)
    totals = [r.total(200) for r in resources]
    assert totals == sorted(totals)
    assert resources[0].span_id == 1