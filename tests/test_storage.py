import pytest

from imagefactory.storage import NotFoundError, Storage, TransportError, is_status_code_error


class _Mem(Storage):
    def head(self, id_):
        raise NotFoundError(id_)

    def get(self, id_):
        return b""

    def put(self, id_, data):
        pass


def test_direct_match():
    assert is_status_code_error(TransportError(404), 500, 404)


def test_no_match():
    assert not is_status_code_error(TransportError(500), 404)


def test_not_transport():
    assert not is_status_code_error(ValueError("x"), 404)
    assert not is_status_code_error(None, 404)


def test_wrapped():
    try:
        try:
            raise TransportError(404)
        except TransportError as inner:
            raise RuntimeError("outer") from inner
    except RuntimeError as err:
        assert is_status_code_error(err, 404)


def test_storage_is_abstract():
    with pytest.raises(TypeError):
        Storage()


def test_default_collect_is_empty():
    assert Storage.collect(_Mem()) == {}


def test_not_found_is_lookup_error():
    with pytest.raises(LookupError) as excinfo:
        raise NotFoundError("abc")
    assert not is_status_code_error(excinfo.value, 404)