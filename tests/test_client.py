import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from imagefactory.client import (
    Client,
    ExtensionInfo,
    HTTPError,
    InvalidSchematicError,
    OverlayInfo,
    is_http_error_code,
    is_invalid_schematic_error,
)
from imagefactory.schematic import Customization, Schematic, unmarshal


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, *args):
        pass

    def _handle(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        self.server.requests.append(
            {"method": self.command, "path": self.path, "headers": dict(self.headers), "body": body}
        )
        route = self.server.routes.get((self.command, self.path))
        if route is None:
            status, payload = 404, b"not found"
        elif callable(route):
            status, payload = route(body)
        else:
            status, payload = route
        self.send_response(status)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    do_GET = _handle
    do_POST = _handle


@pytest.fixture
def server():
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    srv.routes = {}
    srv.requests = []
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    srv.base_url = f"http://127.0.0.1:{srv.server_address[1]}"
    yield srv
    srv.shutdown()
    srv.server_close()


def _create_route(body):
    return 201, json.dumps({"id": unmarshal(body).id()}).encode()


def test_schematic_create_empty(server):
    server.routes[("POST", "/schematics")] = _create_route
    client = Client(server.base_url)

    result = client.schematic_create(Schematic())

    assert result == "376567988ad370138ad8b2698212367b8edcb69b5fd68c80be1f2ec7d603b4ba"
    request = server.requests[0]
    assert request["method"] == "POST"
    assert request["headers"]["Content-Type"] == "application/yaml"
    assert request["body"] == Schematic().marshal()


def test_schematic_create_kernel_args(server):
    server.routes[("POST", "/schematics")] = _create_route
    client = Client(server.base_url)

    schematic = Schematic(customization=Customization(extra_kernel_args=["noapic", "nolapic"]))

    assert (
        client.schematic_create(schematic)
        == "9cba8e32753f91a16c1837ab8abf356af021706ef284aef07380780177d9a06c"
    )


def test_versions(server):
    server.routes[("GET", "/versions")] = (200, json.dumps(["v1.5.0", "v1.6.0"]).encode())

    assert Client(server.base_url).versions() == ["v1.5.0", "v1.6.0"]


def test_versions_null(server):
    server.routes[("GET", "/versions")] = (200, b"null")

    assert Client(server.base_url).versions() == []


def test_base_url_with_prefix(server):
    server.routes[("GET", "/prefix/versions")] = (200, json.dumps(["v1.7.0"]).encode())

    assert Client(server.base_url + "/prefix/").versions() == ["v1.7.0"]
    assert server.requests[0]["path"] == "/prefix/versions"


def test_extensions_versions(server):
    items = [
        {
            "name": "siderolabs/amd-ucode",
            "ref": "ghcr.io/siderolabs/amd-ucode:2023048",
            "digest": "sha256:1234567890",
            "author": "Sidero Labs",
            "description": "microcode",
            "unknown": "ignored",
        },
        {"name": "siderolabs/gvisor"},
    ]
    server.routes[("GET", "/version/v1.5.0/extensions/official")] = (200, json.dumps(items).encode())

    result = Client(server.base_url).extensions_versions("v1.5.0")

    assert result == [
        ExtensionInfo(
            name="siderolabs/amd-ucode",
            ref="ghcr.io/siderolabs/amd-ucode:2023048",
            digest="sha256:1234567890",
            author="Sidero Labs",
            description="microcode",
        ),
        ExtensionInfo(name="siderolabs/gvisor"),
    ]


def test_overlays_versions(server):
    items = [
        {
            "name": "rpi_generic",
            "image": "siderolabs/sbc-raspberrypi",
            "ref": "ghcr.io/siderolabs/sbc-raspberrypi:v0.1.0",
            "digest": "sha256:abcdef123456",
        }
    ]
    server.routes[("GET", "/version/v1.7.0/overlays/official")] = (200, json.dumps(items).encode())

    result = Client(server.base_url).overlays_versions("v1.7.0")

    assert result == [
        OverlayInfo(
            name="rpi_generic",
            image="siderolabs/sbc-raspberrypi",
            ref="ghcr.io/siderolabs/sbc-raspberrypi:v0.1.0",
            digest="sha256:abcdef123456",
        )
    ]


def test_overlays_versions_null(server):
    server.routes[("GET", "/version/v1.5.0/overlays/official")] = (200, b"null")

    assert Client(server.base_url).overlays_versions("v1.5.0") == []


def test_bad_request_is_invalid_schematic(server):
    server.routes[("POST", "/schematics")] = (400, b"bad yaml")

    with pytest.raises(InvalidSchematicError) as info:
        Client(server.base_url).schematic_create(Schematic())

    err = info.value
    assert str(err) == "invalid schematic: HTTP 400: bad yaml"
    assert is_invalid_schematic_error(err)
    assert err.error.code == 400
    assert not is_http_error_code(err, 400)


def test_not_found_is_http_error(server):
    with pytest.raises(HTTPError) as info:
        Client(server.base_url).extensions_versions("v1.5.0-alpha.0")

    err = info.value
    assert err.code == 404
    assert err.message == "not found"
    assert is_http_error_code(err, 404)
    assert not is_http_error_code(err, 500)
    assert not is_invalid_schematic_error(err)


def test_error_body_is_limited(server):
    server.routes[("GET", "/versions")] = (500, b"x" * 10000)

    with pytest.raises(HTTPError) as info:
        Client(server.base_url).versions()

    assert len(info.value.message) == 8192
    assert info.value.code == 500


def test_invalid_base_url():
    with pytest.raises(ValueError):
        Client("http://[::1")