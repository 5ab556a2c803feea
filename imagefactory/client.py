"""HTTP API client for the image factory."""

from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from .schematic import Schematic

_MAX_ERROR_BODY = 8192


@dataclass
class ExtensionInfo:
    """An official extension available for a Talos version."""

    name: str = ""
    ref: str = ""
    digest: str = ""
    author: str = ""
    description: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ExtensionInfo:
        return cls(
            name=data.get("name", ""),
            ref=data.get("ref", ""),
            digest=data.get("digest", ""),
            author=data.get("author", ""),
            description=data.get("description", ""),
        )


@dataclass
class OverlayInfo:
    """An official overlay available for a Talos version."""

    name: str = ""
    image: str = ""
    ref: str = ""
    digest: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> OverlayInfo:
        return cls(
            name=data.get("name", ""),
            image=data.get("image", ""),
            ref=data.get("ref", ""),
            digest=data.get("digest", ""),
        )


class HTTPError(Exception):
    """An error response from the server."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"HTTP {code}: {message}")
        self.code = code
        self.message = message


class InvalidSchematicError(Exception):
    """The server rejected the request with 400 Bad Request."""

    def __init__(self, error: HTTPError) -> None:
        super().__init__(f"invalid schematic: {error}")
        self.error = error


def is_http_error_code(err: BaseException, code: int) -> bool:
    """Whether err is an HTTPError with the given status code."""
    return isinstance(err, HTTPError) and err.code == code


def is_invalid_schematic_error(err: BaseException) -> bool:
    """Whether err reports an invalid schematic."""
    return isinstance(err, InvalidSchematicError)


class Client:
    """Image factory HTTP API client."""

    def __init__(self, base_url: str, timeout: float | None = None) -> None:
        self._base = urllib.parse.urlsplit(base_url)
        # accessing the port validates it
        _ = self._base.port
        self._timeout = timeout

    def _url(self, uri: str) -> str:
        path = self._base.path.rstrip("/") + "/" + uri.lstrip("/")
        return urllib.parse.urlunsplit(
            (self._base.scheme, self._base.netloc, path, self._base.query, self._base.fragment)
        )

    def _do(
        self,
        method: str,
        uri: str,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        request = urllib.request.Request(
            self._url(uri), data=data, method=method, headers=headers or {}
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as exc:
            raise self._error_from(exc) from None
        return json.loads(body)

    @staticmethod
    def _error_from(exc: urllib.error.HTTPError) -> Exception:
        try:
            raw = exc.read(_MAX_ERROR_BODY) if exc.fp is not None else b""
        finally:
            exc.close()
        error = HTTPError(exc.code, raw.decode("utf-8", errors="replace"))
        if exc.code == 400:
            return InvalidSchematicError(error)
        return error

    def schematic_create(self, schematic: Schematic) -> str:
        """Upload the schematic and return its ID."""
        response = self._do(
            "POST",
            "/schematics",
            schematic.marshal(),
            {"Content-Type": "application/yaml"},
        )
        return (response or {}).get("id", "")

    def versions(self) -> list[str]:
        """Return the Talos versions available."""
        return list(self._do("GET", "/versions") or [])

    def extensions_versions(self, talos_version: str) -> list[ExtensionInfo]:
        """Return the official extensions for a Talos version."""
        items = self._do("GET", f"/version/{talos_version}/extensions/official") or []
        return [ExtensionInfo.from_json(item) for item in items]

    def overlays_versions(self, talos_version: str) -> list[OverlayInfo]:
        """Return the official overlays for a Talos version."""
        items = self._do("GET", f"/version/{talos_version}/overlays/official") or []
        return [OverlayInfo.from_json(item) for item in items]