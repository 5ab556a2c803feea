"""Schematic storage interface and registry transport errors."""

from __future__ import annotations

import abc


class NotFoundError(LookupError):
    """Raised when a schematic is not found."""


class TransportError(Exception):
    """An error returned by a registry transport, carrying the HTTP status code."""

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(message or f"unexpected status code {status_code}")
        self.status_code = status_code


class Storage(abc.ABC):
    """Schematic storage."""

    @abc.abstractmethod
    def head(self, id_: str) -> None:
        """Raise NotFoundError if the schematic does not exist."""

    @abc.abstractmethod
    def get(self, id_: str) -> bytes:
        """Return the stored schematic data."""

    @abc.abstractmethod
    def put(self, id_: str, data: bytes) -> None:
        """Store the schematic data."""

    def collect(self) -> dict[str, float]:
        """Return current metric values."""
        return {}


def is_status_code_error(err: BaseException | None, *args: int) -> bool:
    """Check whether err (or an error it wraps) is a TransportError with one of the codes."""
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(err, TransportError):
            return err.status_code in args
        err = err.__cause__ or err.__context__
    return False