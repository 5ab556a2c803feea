"""Schematic storage in an OCI registry.

A schematic ID is the sha256 of its contents, so it matches the registry's
content-addressable blob storage.
"""

from __future__ import annotations

import hashlib
import json
import re
import urllib.error
import urllib.parse
import urllib.request

from .storage import NotFoundError, Storage, TransportError, is_status_code_error

SCHEMATIC_MEDIA_TYPE = "application/vnd.sidero.dev-image.schematic"

_MANIFEST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"
_CONFIG_MEDIA_TYPE = "application/vnd.docker.container.image.v1+json"
_DIGEST_PREFIX = "sha256:"
_HEX_RE = re.compile(r"[0-9a-f]{64}")
_TIMEOUT = 60.0


def _not_found(id_: str) -> NotFoundError:
    return NotFoundError(f'schematic ID "{id_}" not found')


class RegistryStorage(Storage):
    """Stores schematics as blobs in an OCI registry repository."""

    def __init__(self, registry_url: str, repository: str) -> None:
        if "://" not in registry_url:
            registry_url = "https://" + registry_url
        self._base = registry_url.rstrip("/")
        self._repository = repository.strip("/")

    def _url(self, path: str) -> str:
        return f"{self._base}/v2/{self._repository}/{path}"

    def _request(
        self,
        method: str,
        url: str,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[dict[str, str], bytes]:
        request = urllib.request.Request(url, data=data, method=method, headers=headers or {})
        try:
            with urllib.request.urlopen(request, timeout=_TIMEOUT) as response:
                return dict(response.headers.items()), response.read()
        except urllib.error.HTTPError as exc:
            try:
                body = exc.read() if exc.fp is not None else b""
            finally:
                exc.close()
            message = body.decode("utf-8", errors="replace").strip()
            raise TransportError(
                exc.code, f"{method} {url}: unexpected status code {exc.code}: {message}"
            ) from None

    def head(self, id_: str) -> None:
        if not _HEX_RE.fullmatch(id_):
            raise _not_found(id_)
        try:
            self._request("HEAD", self._url(f"blobs/{_DIGEST_PREFIX}{id_}"))
        except TransportError as exc:
            if is_status_code_error(exc, 404):
                raise _not_found(id_) from exc
            raise

    def get(self, id_: str) -> bytes:
        if not _HEX_RE.fullmatch(id_):
            raise _not_found(id_)
        try:
            _, body = self._request("GET", self._url(f"blobs/{_DIGEST_PREFIX}{id_}"))
        except TransportError as exc:
            if is_status_code_error(exc, 404):
                raise _not_found(id_) from exc
            raise
        return body

    def _blob_exists(self, digest: str) -> bool:
        try:
            self._request("HEAD", self._url(f"blobs/{digest}"))
        except TransportError as exc:
            if is_status_code_error(exc, 404):
                return False
            raise
        return True

    def _upload_blob(self, digest: str, data: bytes) -> None:
        if self._blob_exists(digest):
            return
        headers, _ = self._request("POST", self._url("blobs/uploads/"), data=b"")
        location = headers.get("Location") or headers.get("location")
        if not location:
            raise TransportError(0, "registry did not return an upload location")
        location = urllib.parse.urljoin(self._base + "/", location)
        separator = "&" if "?" in location else "?"
        self._request(
            "PUT",
            f"{location}{separator}digest={urllib.parse.quote(digest)}",
            data=data,
            headers={"Content-Type": "application/octet-stream"},
        )

    def put(self, id_: str, data: bytes) -> None:
        layer_digest = _DIGEST_PREFIX + id_

        # a manifest is pushed along with the blob so the registry doesn't garbage collect it
        config = json.dumps(
            {
                "architecture": "",
                "os": "",
                "config": {},
                "rootfs": {"type": "layers", "diff_ids": [layer_digest]},
            },
            separators=(",", ":"),
        ).encode()
        config_digest = _DIGEST_PREFIX + hashlib.sha256(config).hexdigest()

        self._upload_blob(layer_digest, data)
        self._upload_blob(config_digest, config)

        manifest = json.dumps(
            {
                "schemaVersion": 2,
                "mediaType": _MANIFEST_MEDIA_TYPE,
                "config": {
                    "mediaType": _CONFIG_MEDIA_TYPE,
                    "size": len(config),
                    "digest": config_digest,
                },
                "layers": [
                    {
                        "mediaType": SCHEMATIC_MEDIA_TYPE,
                        "size": len(data),
                        "digest": layer_digest,
                    }
                ],
            },
            separators=(",", ":"),
        ).encode()
        self._request(
            "PUT",
            self._url(f"manifests/{id_}"),
            data=manifest,
            headers={"Content-Type": _MANIFEST_MEDIA_TYPE},
        )