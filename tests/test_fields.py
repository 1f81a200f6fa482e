import pytest

from taskconsole.fields import (
    Attribute,
    Field,
    FieldValue,
    Location,
    Metadata,
    ProtoField,
    ProtoMetadata,
    format_location,
    pb_duration,
    truncate_registry_path,
)

REGISTRY = "/home/dev/.cargo/registry/src/index.example-abc123/"
CHECKOUTS = "/home/dev/.cargo/git/checkouts/"


@pytest.fixture
def meta():
    return Metadata.from_proto(ProtoMetadata(field_names=["kind", "spawn.location"], target="app"), 7)


def test_metadata_from_proto():
    m = Metadata.from_proto(ProtoMetadata(field_names=["a", "b"], target="tgt"), 3)
    assert m.field_names == ["a", "b"]
    assert m.target == "tgt"
    assert m.id == 3


def test_truncate_registry():
    assert truncate_registry_path(REGISTRY + "tokio-1.0/src/lib.rs") == "<cargo>/tokio-1.0/src/lib.rs"


def test_truncate_git_checkout():
    assert truncate_registry_path(CHECKOUTS + "foo/src/x.rs") == "<cargo>/foo/src/x.rs"


def test_truncate_leaves_other_paths():
    assert truncate_registry_path("src/main.rs") == "src/main.rs"


def test_format_location_unknown():
    assert format_location(None) == "<unknown location>"


def test_format_location_truncates_file():
    loc = Location(file=REGISTRY + "pkg/src/a.rs", line=10, column=5)
    assert format_location(loc) == "<cargo>/pkg/src/a.rs:10:5"


def test_field_value_display():
    assert str(FieldValue.of_bool(True)) == "true"
    assert str(FieldValue.of_u64(42)) == "42"
    assert str(FieldValue.of_str("hi")) == "hi"


def test_field_value_orders_by_kind_first():
    assert FieldValue.of_bool(True) < FieldValue.of_str("a") < FieldValue.of_u64(0)
    assert FieldValue.of_u64(1) < FieldValue.of_u64(2)


def test_field_from_string_name(meta):
    f = Field.from_proto(ProtoField("answer", FieldValue.of_i64(-3)), meta)
    assert f == Field("answer", FieldValue.of_i64(-3))


def test_field_from_index(meta):
    f = Field.from_proto(ProtoField(0, FieldValue.of_str("timer"), metadata_id=7), meta)
    assert f.name == "kind"
    assert f.value == FieldValue.of_str("timer")


def test_field_metadata_mismatch(meta):
    assert Field.from_proto(ProtoField(0, FieldValue.of_str("x"), metadata_id=8), meta) is None


def test_field_index_out_of_range(meta):
    assert Field.from_proto(ProtoField(5, FieldValue.of_str("x"), metadata_id=7), meta) is None


@pytest.mark.parametrize(
    "proto",
    [
        ProtoField(None, FieldValue.of_str("x")),
        ProtoField("a", None),
        ProtoField("a", FieldValue.of_str("")),
        ProtoField("a", FieldValue.of_debug("")),
    ],
)
def test_field_skipped(meta, proto):
    assert Field.from_proto(proto, meta) is None


def test_spawn_location_truncated_to_debug(meta):
    proto = ProtoField(1, FieldValue.of_str(REGISTRY + "x/src/lib.rs:3:1"), metadata_id=7)
    f = Field.from_proto(proto, meta)
    assert f.value == FieldValue.of_debug("<cargo>/x/src/lib.rs:3:1")


def test_field_formatting_order():
    fields = [
        Field("zeta", FieldValue.of_u64(1)),
        Field(Field.SPAWN_LOCATION, FieldValue.of_debug("src/a.rs")),
        Field("alpha", FieldValue.of_bool(False)),
        Field(Field.NAME, FieldValue.of_str("worker")),
    ]
    formatted = Field.make_formatted(fields)
    assert [row[0].content for row in formatted] == [Field.NAME, "alpha", "zeta", Field.SPAWN_LOCATION]
    assert [span.content for span in formatted[0]] == [Field.NAME, "=", "worker "]
    assert sorted(fields)[0].name == Field.NAME


def test_field_formatting_empty():
    assert Field.make_formatted([]) == []


def test_attribute_formatting():
    attrs = [
        Attribute(Field("size", FieldValue.of_u64(3)), "ms"),
        Attribute(Field("size", FieldValue.of_u64(3))),
        Attribute(Field("count", FieldValue.of_u64(9))),
    ]
    formatted = Attribute.make_formatted(attrs)
    assert [span.content for span in formatted[0]] == ["count", "=", "9", " "]
    assert [span.content for span in formatted[1]] == ["size", "=", "3", " "]
    assert [span.content for span in formatted[2]] == ["size", "=", "3", "ms", " "]
    assert formatted[2][3].color == formatted[2][0].color


def test_pb_duration():
    assert pb_duration(1, 5) == 1_000_000_005
    assert pb_duration(0, 0) == 0


def test_pb_duration_negative():
    with pytest.raises(ValueError):
        pb_duration(-1, 0)
    with pytest.raises(ValueError):
        pb_duration(0, -1)