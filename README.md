# imagefactory

Building blocks for a Talos image factory: image schematics with stable
content-derived IDs, cached and registry-backed schematic storage, SecureBoot
signing configuration, imager profiles parsed from download paths, and a
client for the factory HTTP API.

## Installation

```
pip install imagefactory
```

## Schematics

A schematic (`imagefactory.schematic`) describes an image customization:
extra kernel arguments, initial META values, official system extensions and
an overlay. Its ID is the SHA-256 of its canonical YAML form, so the same
schematic always has the same ID.

```python
from imagefactory.schematic import Schematic, Customization, unmarshal

cfg = Schematic(customization=Customization(extra_kernel_args=["noapic", "nolapic"]))
print(cfg.id())
print(cfg.marshal().decode())

same = unmarshal(b'{"customization": {"extraKernelArgs": ["noapic", "nolapic"]}}')
assert same.id() == cfg.id()
```

`unmarshal` rejects unknown fields, malformed YAML and META keys outside
0–255 with `imagefactory.schematic.InvalidSchematicError`.

## Storing schematics

`imagefactory.storage.Storage` is the abstract storage with `head`, `get`,
`put` and `collect`. A missing schematic raises
`imagefactory.storage.NotFoundError`.

- `imagefactory.factory.SchematicFactory` stores schematics by ID, leaving
  ones that already exist untouched, and decodes them on `get`.
- `imagefactory.cache.CacheStorage` keeps an in-memory copy of what it has
  seen in front of another storage, including not-found results; other
  errors are not cached. Concurrent lookups of the same ID share one call to
  the underlying storage.
- `imagefactory.registry.RegistryStorage` keeps schematics as blobs in an
  OCI registry repository, pushing a small manifest tagged with the ID so the
  blob is not garbage collected. IDs that are not 64 lowercase hex digits are
  reported as not found.

```python
from imagefactory.cache import CacheStorage
from imagefactory.factory import SchematicFactory
from imagefactory.registry import RegistryStorage

storage = CacheStorage(RegistryStorage("http://localhost:5000", "image-factory/schematic"))
factory = SchematicFactory(storage)

schematic_id = factory.put(cfg)
restored = factory.get(schematic_id)
print(factory.collect())
```

`collect()` returns metric values as a plain dict (create, get and duplicate
counts, and the cache size for `CacheStorage`).
`imagefactory.storage.is_status_code_error` tells whether an error, or one it
was raised from, is a `TransportError` with one of the given HTTP codes.

## Imager profiles

`imagefactory.builder.parse_from_path` turns a download path such as
`metal-amd64.raw.xz`, `kernel-arm64`, `cmdline-aws-amd64-secureboot`,
`installer-amd64-secureboot.tar` or `azure-amd64.vhd` into a
`imagefactory.profile.Profile` for a Talos version. For versions before
v1.7.0, arm64 metal paths may carry a board name
(`metal-rpi_generic-arm64.raw.xz`). `installer_profile` builds the profile
for an installer image, and `supports_overlay` tells whether a version
supports overlays.

`enhance_from_schematic` returns a copy of a profile completed from a
schematic: SecureBoot assets, the base installer, official extensions
(with a few renamed extension names resolved), the schematic extension,
the overlay, kernel arguments and META values. It gets images through an
`ArtifactProducer` you implement.

`imagefactory.profile.hash_profile` gives a stable hash of a profile,
ignoring temporary directories and registry hosts (see `clean`).

```python
from imagefactory.builder import parse_from_path
from imagefactory.profile import hash_profile

prof = parse_from_path("aws-amd64-secureboot.qcow2.tar.gz", "v1.6.0")
print(prof.platform, prof.arch, prof.output.kind, prof.output.out_format)
print(prof.to_yaml())
print(hash_profile(prof))
```

Paths and schematics that make no sense raise
`imagefactory.builder.InvalidProfileError`.

## SecureBoot

```python
from imagefactory.secureboot import Options, new_service

service = new_service(Options(
    enabled=True,
    signing_key_path="sign-key.pem",
    signing_cert_path="sign-cert.pem",
    pcr_key_path="pcr-key.pem",
))
assets = service.secure_boot_assets()
pem = service.signing_cert_pem()
```

A disabled service raises `SecureBootDisabledError`. An incomplete
configuration makes `new_service` raise `ValueError`. `signing_cert_pem`
reads the certificate file once and returns it PEM-encoded; for a key vault
configuration it raises, as no key vault signer is available.

## HTTP client

```python
from imagefactory.client import Client

client = Client("http://localhost:8080", timeout=30)
print(client.versions())
print([ext.name for ext in client.extensions_versions("v1.7.0")])
print([ov.name for ov in client.overlays_versions("v1.7.0")])
schematic_id = client.schematic_create(cfg)
```

Failed responses raise `imagefactory.client.HTTPError`; a `400` answer raises
`imagefactory.client.InvalidSchematicError`. `is_http_error_code` and
`is_invalid_schematic_error` check for them.

## What this package does not do

It has no HTTP server and no command line: it does not serve images, PXE
scripts or a registry frontend. It does not build images itself;
`enhance_from_schematic` only prepares profiles, and fetching extension,
overlay and installer images is left to your `ArtifactProducer`.
`RegistryStorage` speaks to the registry without authentication.

## Running the tests

```
pip install -e ".[test]"
pytest
```