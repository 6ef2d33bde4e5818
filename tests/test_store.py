import json

import pytest

from common.store import InMemoryStore, JsonFileStore, open_store


def test_in_memory_store_round_trips_json_values():
    store = InMemoryStore({"a": {"x": 1}})

    value = store.get("a")
    value["x"] = 2

    assert store.get("a") == {"x": 1}
    assert store.get("missing") is None
    assert store.set({"b": [1, 2]}) is True
    assert store.get("b") == [1, 2]


def test_json_file_store_missing_file_reads_empty(tmp_path):
    store = JsonFileStore(tmp_path / "nested" / "store.json")

    assert store.get("anything") is None


def test_json_file_store_merges_keys_and_writes_atomically(tmp_path):
    path = tmp_path / "nested" / "store.json"
    store = JsonFileStore(path)

    store.set({"cache": {"k": 1}})
    store.set({"queue": [1]})

    document = json.loads(path.read_text(encoding="utf-8"))
    assert document == {"cache": {"k": 1}, "queue": [1]}
    assert not path.with_suffix(".json.tmp").exists()
    assert JsonFileStore(path).get("cache") == {"k": 1}


def test_json_file_store_rejects_non_object_document(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    with pytest.raises(ValueError, match="does not contain a JSON object"):
        JsonFileStore(path).get("cache")


def test_open_store_empty_path_is_in_memory(tmp_path):
    assert isinstance(open_store(""), InMemoryStore)
    assert isinstance(open_store(str(tmp_path / "s.json")), JsonFileStore)
