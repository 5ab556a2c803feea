import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from imagefactory.secureboot import (
    Options,
    SecureBootDisabledError,
    SigningKey,
    SigningKeyAndCertificate,
    new_service,
)


def _cert_pem():
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "test")])
    now = datetime.datetime(2024, 1, 1)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(1)
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(Encoding.PEM)


def test_disabled():
    svc = new_service(Options())
    with pytest.raises(SecureBootDisabledError, match="secure boot is disabled"):
        svc.secure_boot_assets()
    with pytest.raises(SecureBootDisabledError):
        svc.signing_cert_pem()


def test_file_based():
    svc = new_service(Options(enabled=True, signing_key_path="sign-key.pem",
                              signing_cert_path="sign-cert.pem", pcr_key_path="pcr-key.pem"))
    assets = svc.secure_boot_assets()
    assert assets.secure_boot_signer == SigningKeyAndCertificate(key_path="sign-key.pem", cert_path="sign-cert.pem")
    assert assets.pcr_signer == SigningKey(key_path="pcr-key.pem")


def test_azure():
    svc = new_service(Options(enabled=True, azure_key_vault_url="https://vault.example.com",
                              azure_certificate_name="cert", azure_key_name="key"))
    assets = svc.secure_boot_assets()
    assert assets.pcr_signer.azure_key_id == "key"
    assert assets.secure_boot_signer.azure_certificate_id == "cert"


def test_invalid():
    with pytest.raises(ValueError, match="invalid SecureBoot configuration"):
        new_service(Options(enabled=True, signing_key_path="x"))


def test_signing_cert(tmp_path):
    pem = _cert_pem()
    (tmp_path / "cert.pem").write_bytes(pem)
    svc = new_service(Options(enabled=True, signing_key_path="k",
                              signing_cert_path=str(tmp_path / "cert.pem"), pcr_key_path="p"))
    assert svc.signing_cert_pem() == pem
    (tmp_path / "cert.pem").unlink()
    assert svc.signing_cert_pem() == pem


def test_signing_cert_missing(tmp_path):
    svc = new_service(Options(enabled=True, signing_key_path="k",
                              signing_cert_path=str(tmp_path / "none.pem"), pcr_key_path="p"))
    with pytest.raises(RuntimeError, match="failed to get SecureBoot signing key"):
        svc.signing_cert_pem()