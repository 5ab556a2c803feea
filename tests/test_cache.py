import itertools

import pytest

from imagefactory.cache import CacheStorage
from imagefactory.storage import NotFoundError, Storage


class MockStorage(Storage):
    def __init__(self):
        self.counter = itertools.count(1)

    def head(self, id_):
        raise AssertionError("should never be called")

    def get(self, id_):
        n = next(self.counter)
        if id_ == "not-found":
            raise NotFoundError(f'schematic ID "{id_}" not found')
        if id_ == "failing":
            raise RuntimeError("failing")
        return f"{id_}-{n}".encode()

    def put(self, id_, data):
        pass


def test_storage():
    s = CacheStorage(MockStorage())
    assert s.get("foo") == b"foo-1"
    assert s.get("foo") == b"foo-1"
    assert s.get("bar") == b"bar-2"
    s.head("bar")
    s.head("baz")
    assert s.get("baz") == b"baz-3"
    s.put("foo", b"newvalue")
    assert s.get("foo") == b"newvalue"
    with pytest.raises(NotFoundError):
        s.get("not-found")
    with pytest.raises(NotFoundError):
        s.head("not-found")
    with pytest.raises(NotFoundError):
        s.get("not-found")
    assert s.get("foobar") == b"foobar-5"
    with pytest.raises(RuntimeError, match="failing"):
        s.get("failing")
    with pytest.raises(RuntimeError, match="failing"):
        s.get("failing")
    assert s.get("lastone") == b"lastone-8"


def test_collect_counts_entries():
    s = CacheStorage(MockStorage())
    s.get("a")
    s.put("b", b"x")
    assert s.collect() == {"image_factory_schematic_cache_size": 2.0}