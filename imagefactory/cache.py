"""In-memory cache over a schematic storage."""

from __future__ import annotations

import threading
from concurrent.futures import Future

from .storage import NotFoundError, Storage

_MISSING = object()


class CacheStorage(Storage):
    """Caches schematics (and not-found results) of an underlying storage."""

    def __init__(self, underlying: Storage) -> None:
        self._underlying = underlying
        self._entries: dict[str, bytes | None] = {}
        self._inflight: dict[str, Future] = {}
        self._lock = threading.Lock()

    def head(self, id_: str) -> None:
        with self._lock:
            value = self._entries.get(id_, _MISSING)
        if value is _MISSING:
            self.get(id_)
        elif value is None:
            raise NotFoundError(f'schematic ID "{id_}" not found')

    def get(self, id_: str) -> bytes:
        with self._lock:
            value = self._entries.get(id_, _MISSING)
            if value is not _MISSING:
                if value is None:
                    raise NotFoundError(f'schematic ID "{id_}" not found')
                return value
            future = self._inflight.get(id_)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[id_] = future

        if not leader:
            return future.result()

        try:
            data = self._underlying.get(id_)
        except BaseException as exc:
            with self._lock:
                if isinstance(exc, NotFoundError):
                    self._entries.setdefault(id_, None)
                del self._inflight[id_]
            future.set_exception(exc)
            raise
        with self._lock:
            self._entries.setdefault(id_, data)
            del self._inflight[id_]
        future.set_result(data)
        return data

    def put(self, id_: str, data: bytes) -> None:
        self._underlying.put(id_, data)
        with self._lock:
            self._entries[id_] = data

    def collect(self) -> dict[str, float]:
        with self._lock:
            return {"image_factory_schematic_cache_size": float(len(self._entries))}