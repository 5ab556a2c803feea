"""SecureBoot options handling."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding


class SecureBootDisabledError(RuntimeError):
    """Raised when SecureBoot is disabled."""

    def __init__(self) -> None:
        super().__init__("secure boot is disabled")


@dataclass
class Options:
    """SecureBoot configuration."""

    enabled: bool = False
    signing_key_path: str = ""
    signing_cert_path: str = ""
    pcr_key_path: str = ""
    azure_key_vault_url: str = ""
    azure_certificate_name: str = ""
    azure_key_name: str = ""


@dataclass
class SigningKeyAndCertificate:
    key_path: str = ""
    cert_path: str = ""
    azure_vault_url: str = ""
    azure_certificate_id: str = ""


@dataclass
class SigningKey:
    key_path: str = ""
    azure_vault_url: str = ""
    azure_key_id: str = ""


@dataclass
class SecureBootAssets:
    secure_boot_signer: SigningKeyAndCertificate = field(default_factory=SigningKeyAndCertificate)
    pcr_signer: SigningKey = field(default_factory=SigningKey)


class Service:
    """Provides SecureBoot assets and the signing certificate."""

    def __init__(self, assets: SecureBootAssets | None = None) -> None:
        self._assets = assets
        self._lock = threading.Lock()
        self._cert_done = False
        self._cert_pem: bytes | None = None
        self._cert_error: Exception | None = None

    def secure_boot_assets(self) -> SecureBootAssets:
        if self._assets is None:
            raise SecureBootDisabledError()
        return self._assets

    def signing_cert_pem(self) -> bytes:
        """Return the SecureBoot signing certificate, PEM-encoded; computed once."""
        with self._lock:
            if not self._cert_done:
                self._cert_done = True
                try:
                    self._cert_pem = self._load_cert()
                except Exception as exc:  # noqa: BLE001
                    self._cert_error = exc
        if self._cert_error is not None:
            raise self._cert_error
        assert self._cert_pem is not None
        return self._cert_pem

    def _load_cert(self) -> bytes:
        if self._assets is None:
            raise SecureBootDisabledError()
        signer = self._assets.secure_boot_signer
        if not signer.cert_path:
            raise RuntimeError(
                "failed to get SecureBoot signing key: key vault signers are not available"
            )
        try:
            cert = x509.load_pem_x509_certificate(Path(signer.cert_path).read_bytes())
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"failed to get SecureBoot signing key: {exc}") from exc
        return cert.public_bytes(Encoding.PEM)


def new_service(options: Options) -> Service:
    """Create a Service from configuration."""
    if not options.enabled:
        return Service()
    if options.signing_key_path and options.signing_cert_path and options.pcr_key_path:
        return Service(
            SecureBootAssets(
                secure_boot_signer=SigningKeyAndCertificate(
                    key_path=options.signing_key_path, cert_path=options.signing_cert_path
                ),
                pcr_signer=SigningKey(key_path=options.pcr_key_path),
            )
        )
    if options.azure_key_vault_url and options.azure_certificate_name and options.azure_key_name:
        return Service(
            SecureBootAssets(
                secure_boot_signer=SigningKeyAndCertificate(
                    azure_vault_url=options.azure_key_vault_url,
                    azure_certificate_id=options.azure_certificate_name,
                ),
                pcr_signer=SigningKey(
                    azure_vault_url=options.azure_key_vault_url,
                    azure_key_id=options.azure_key_name,
                ),
            )
        )
    raise ValueError(f"invalid SecureBoot configuration: {options!r}")