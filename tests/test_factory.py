import pytest

from imagefactory.cache import CacheStorage
from imagefactory.factory import SchematicFactory
from imagefactory.schematic import Customization, Schematic
from imagefactory.storage import NotFoundError, Storage

EMPTY_ID = "376567988ad370138ad8b2698212367b8edcb69b5fd68c80be1f2ec7d603b4ba"


class MemoryStorage(Storage):
    def __init__(self):
        self.data = {}
        self.puts = 0

    def head(self, id_):
        if id_ not in self.data:
            raise NotFoundError(id_)

    def get(self, id_):
        try:
            return self.data[id_]
        except KeyError:
            raise NotFoundError(id_) from None

    def put(self, id_, data):
        self.puts += 1
        self.data[id_] = data


class FailingHeadStorage(MemoryStorage):
    def head(self, id_):
        raise RuntimeError("unavailable")


def test_put_empty_schematic_id():
    factory = SchematicFactory(MemoryStorage())
    assert factory.put(Schematic()) == EMPTY_ID


def test_put_stores_marshalled_data():
    storage = MemoryStorage()
    schematic = Schematic(customization=Customization(extra_kernel_args=["noapic"]))
    id_ = SchematicFactory(storage).put(schematic)
    assert id_ == schematic.id()
    assert storage.data[id_] == schematic.marshal()


def test_put_duplicate_does_not_store_again():
    storage = MemoryStorage()
    factory = SchematicFactory(storage)
    first = factory.put(Schematic())
    second = factory.put(Schematic())
    assert first == second
    assert storage.puts == 1
    metrics = factory.collect()
    assert metrics["image_factory_schematic_create_total"] == 1.0
    assert metrics["image_factory_schematic_duplicate_create_total"] == 1.0


def test_put_when_head_fails_stores():
    storage = FailingHeadStorage()
    factory = SchematicFactory(storage)
    factory.put(Schematic())
    factory.put(Schematic())
    assert storage.puts == 2


def test_get_round_trip():
    factory = SchematicFactory(MemoryStorage())
    schematic = Schematic(customization=Customization(extra_kernel_args=["nolapic", "nomodeset"]))
    id_ = factory.put(schematic)
    assert factory.get(id_) == schematic
    assert factory.collect()["image_factory_schematic_get_total"] == 1.0


def test_get_not_found():
    factory = SchematicFactory(MemoryStorage())
    with pytest.raises(NotFoundError):
        factory.get("missing")
    assert factory.collect()["image_factory_schematic_get_total"] == 0.0


def test_collect_includes_storage_metrics():
    factory = SchematicFactory(CacheStorage(MemoryStorage()))
    factory.put(Schematic())
    metrics = factory.collect()
    assert metrics["image_factory_schematic_cache_size"] == 1.0
    assert metrics["image_factory_schematic_create_total"] == 1.0