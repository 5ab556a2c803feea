"""Schematic factory: storing and retrieving image schematics."""

from __future__ import annotations

import logging
import threading

from .schematic import Schematic, unmarshal
from .storage import Storage

_logger = logging.getLogger(__name__)


class SchematicFactory:
    """Stores schematics by their content-derived ID."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._lock = threading.Lock()
        self._gets = 0
        self._creates = 0
        self._duplicates = 0

    def put(self, schematic: Schematic) -> str:
        """Store the schematic and return its ID; existing schematics are left as they are."""
        id_ = schematic.id()

        try:
            self._storage.head(id_)
        except Exception:  # noqa: BLE001 - any failure means we store it
            pass
        else:
            _logger.info("schematic already exists", extra={"id": id_})
            with self._lock:
                self._duplicates += 1
            return id_

        self._storage.put(id_, schematic.marshal())

        with self._lock:
            self._creates += 1
        _logger.info(
            "schematic created", extra={"id": id_, "customization": schematic.customization}
        )
        return id_

    def get(self, id_: str) -> Schematic:
        """Return the stored schematic."""
        data = self._storage.get(id_)
        with self._lock:
            self._gets += 1
        return unmarshal(data)

    def collect(self) -> dict[str, float]:
        """Return the factory metrics merged with those of the storage."""
        with self._lock:
            metrics = {
                "image_factory_schematic_create_total": float(self._creates),
                "image_factory_schematic_get_total": float(self._gets),
                "image_factory_schematic_duplicate_create_total": float(self._duplicates),
            }
        metrics.update(self._storage.collect())
        return metrics