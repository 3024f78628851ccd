"""Shared fixtures: throwaway CA key pairs and leaf minting for handshake tests."""

from __future__ import annotations

import datetime
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from tlsanchor.ca import RootCAMaterial, generate_root_ca, load_root_ca


@pytest.fixture(autouse=True)
def _clear_tlsanchor_env(monkeypatch):
    """Keep CA overrides from the developer's shell out of the tests."""
    monkeypatch.delenv("TLSANCHOR_CA_BUNDLE_PATH", raising=False)
    monkeypatch.delenv("TLSANCHOR_CA_KEY_PATH", raising=False)


@pytest.fixture(scope="session")
def ec_ca_pem() -> tuple[bytes, bytes]:
    return generate_root_ca(common_name="Test EC CA", key_type="ec")


@pytest.fixture(scope="session")
def other_ec_ca_pem() -> tuple[bytes, bytes]:
    return generate_root_ca(common_name="Other EC CA", key_type="ec")


@pytest.fixture(scope="session")
def rsa_ca_pem() -> tuple[bytes, bytes]:
    return generate_root_ca(common_name="Test RSA CA", key_type="rsa")


@pytest.fixture
def ec_ca(ec_ca_pem) -> RootCAMaterial:
    return load_root_ca(*ec_ca_pem)


def _mint_leaf(material: RootCAMaterial, hostname: str, out_dir: Path) -> tuple[Path, Path]:
    """Sign an RSA leaf for *hostname* with *material*; return (cert_path, key_path).

    Mirrors what the minting side does with a RootCAMaterial.
    """
    leaf_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)]))
        .issuer_name(material.issuer_name)
        .public_key(leaf_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(seconds=60))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(hostname)]), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(material.private_key, material.signature_hash)
    )

    cert_path = out_dir / f"{hostname}.crt"
    key_path = out_dir / f"{hostname}.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM) + material.chain_pem)
    key_path.write_bytes(
        leaf_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


@pytest.fixture
def mint_leaf():
    return _mint_leaf
