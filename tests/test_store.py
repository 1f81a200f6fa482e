from taskconsole.store import Id, Ids, Store, Visibility


def _insert(store, visibility, pairs):
    def build(ids, pair):
        span_id, value = pair
        if value is None:
            return None
        return ids.id_for(span_id), value

    store.insert_with(visibility, pairs, build)


def test_ids_start_at_one_and_increase():
    ids = Ids()
    first = ids.id_for(900)
    second = ids.id_for(17)
    assert first == Id(1)
    assert second == Id(2)
    assert first < second


def test_ids_are_stable_per_span():
    ids = Ids()
    a = ids.id_for(42)
    ids.id_for(43)
    assert ids.id_for(42) == a
    assert len(ids) == 2
    assert 42 in ids


def test_id_displays_its_number():
    assert str(Id(7)) == "7"


def test_insert_and_lookup():
    store = Store()
    _insert(store, Visibility.HIDE, [(100, "a"), (200, "b")])
    assert store.get_by_span(100) == "a"
    assert store.get_by_span(200) == "b"
    assert store.get(Id(2)) == "b"
    assert store.get_by_span(300) is None
    assert len(store) == 2


def test_skipped_items_are_not_stored():
    store = Store()
    _insert(store, Visibility.HIDE, [(1, None), (2, "x")])
    assert len(store) == 1
    assert store.get_by_span(1) is None
    assert store.take_new_items() == ["x"]


def test_take_new_items_drains():
    store = Store()
    _insert(store, Visibility.HIDE, [(1, "a"), (2, "b")])
    assert store.take_new_items() == ["a", "b"]
    assert store.take_new_items() == []


def test_hidden_inserts_accumulate_new_items():
    store = Store()
    _insert(store, Visibility.HIDE, [(1, "a")])
    _insert(store, Visibility.HIDE, [(2, "b")])
    assert store.take_new_items() == ["a", "b"]


def test_shown_insert_clears_previous_new_items():
    store = Store()
    _insert(store, Visibility.HIDE, [(1, "a")])
    _insert(store, Visibility.SHOW, [(2, "b")])
    assert store.take_new_items() == ["b"]
    assert store.get_by_span(1) == "a"


def test_updated_yields_only_known_spans():
    store = Store()
    _insert(store, Visibility.HIDE, [(10, ["a"]), (20, ["b"])])
    pairs = list(store.updated({10: "u10", 99: "u99"}))
    assert pairs == [("u10", ["a"])]
    update, item = pairs[0]
    item.append(update)
    assert store.get_by_span(10) == ["a", "u10"]


def test_updated_accepts_pairs():
    store = Store()
    _insert(store, Visibility.HIDE, [(5, "five")])
    assert list(store.updated([(5, 1), (6, 2)])) == [(1, "five")]


def test_retain_removes_items_and_new_items():
    store = Store()
    _insert(store, Visibility.HIDE, [(1, "keep"), (2, "drop")])
    store.retain(lambda id, item: item == "keep")
    assert len(store) == 1
    assert store.get_by_span(2) is None
    assert store.take_new_items() == ["keep"]


def test_values_and_items():
    store = Store()
    _insert(store, Visibility.HIDE, [(3, "c"), (4, "d")])
    assert sorted(store.values()) == ["c", "d"]
    assert dict(store.items()) == {Id(1): "c", Id(2): "d"}