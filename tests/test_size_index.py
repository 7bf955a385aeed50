from client.size_index import CacheSizeIndex


def test_empty_index(size_index):
    assert size_index.is_empty()
    assert size_index.total_bytes() == 0
    assert size_index.get("media", "a") is None


def test_set_and_total(size_index):
    size_index.set("media", "a.mp4", 100)
    size_index.set("media", "b.mp4", 50)
    assert not size_index.is_empty()
    assert size_index.get("media", "a.mp4") == 100
    assert size_index.total_bytes() == 150


def test_set_replaces_previous_size(size_index):
    size_index.set("media", "a.mp4", 100)
    size_index.set("media", "a.mp4", 30)
    assert size_index.total_bytes() == 30


def test_negative_and_missing_sizes_clamped(size_index):
    size_index.set("media", "a", -5)
    size_index.set("media", "b", None)
    assert size_index.records() == {"media:::a": 0, "media:::b": 0}


def test_bucket_is_part_of_the_record_key(size_index):
    size_index.set("one", "same/key", 10)
    size_index.set("two", "same/key", 20)
    assert size_index.records() == {"one:::same/key": 10, "two:::same/key": 20}


def test_remove_and_clear(size_index):
    size_index.set("media", "a", 1)
    size_index.set("media", "b", 2)
    size_index.remove("media", "a")
    size_index.remove("media", "missing")
    assert size_index.total_bytes() == 2
    size_index.clear()
    assert size_index.is_empty()


def test_persists_across_instances(tmp_path):
    path = tmp_path / "idx" / "sizes.db"
    first = CacheSizeIndex(path)
    first.set("media", "a", 42)
    first.close()

    second = CacheSizeIndex(path)
    try:
        assert second.get("media", "a") == 42
    finally:
        second.close()
