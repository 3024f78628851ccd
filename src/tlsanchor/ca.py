"""Root CA loading and validation for TLS interception.

The root CA is loaded once at startup from PEM bytes, either the bundled
material shipped in ``tlsanchor/data`` or an operator-supplied bundle, and
checked before anything else runs:

- the certificate PEM must hold at least one certificate (the chain),
- the key PEM must hold exactly one unencrypted RSA, ECDSA or Ed25519 key,
- the key must match the public key of the first certificate,
- the first certificate must decode completely.

The resulting :class:`RootCAMaterial` is immutable.  The leaf-minting side
reads ``private_key``/``signature_hash`` to sign per-host certificates and
``issuer_name`` to fill in their issuer field.
"""

from __future__ import annotations

import base64
import binascii
import datetime
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import NameOID

from .errors import CertificateParseError, FailureReason, TrustMaterialError

logger = logging.getLogger(__name__)

# File names within a CA directory (bundled package data and `generate` output).
CA_CERT_FILE = "ca.crt"
CA_KEY_FILE = "ca.key"

CAPrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey]
LeafCertificate = x509.Certificate

_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN ([A-Z0-9 ]+)-----\r?\n(.*?)-----END \1-----",
    re.DOTALL,
)

# Private key type -> public key type it must pair with.
_KEY_PAIRS: tuple[tuple[type, type], ...] = (
    (rsa.RSAPrivateKey, rsa.RSAPublicKey),
    (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey),
    (ed25519.Ed25519PrivateKey, ed25519.Ed25519PublicKey),
)


@dataclass(frozen=True)
class RootCAMaterial:
    """A validated root CA: signing key, DER chain, and the parsed CA cert."""

    private_key: CAPrivateKey
    chain: tuple[bytes, ...]  # DER; chain[0] is the CA certificate
    leaf: LeafCertificate

    @property
    def issuer_name(self) -> x509.Name:
        """Name to use as the issuer of certificates signed by this CA."""
        return self.leaf.subject

    @property
    def signature_hash(self) -> hashes.HashAlgorithm | None:
        """Digest to pass to ``CertificateBuilder.sign`` with ``private_key``.

        Ed25519 signs without a separate digest, so it gets ``None``.
        """
        if isinstance(self.private_key, ed25519.Ed25519PrivateKey):
            return None
        return hashes.SHA256()

    @property
    def cert_pem(self) -> bytes:
        return self.leaf.public_bytes(serialization.Encoding.PEM)

    @property
    def chain_pem(self) -> bytes:
        return b"".join(
            x509.load_der_x509_certificate(der).public_bytes(serialization.Encoding.PEM)
            for der in self.chain
        )

    @property
    def fingerprint(self) -> str:
        """SHA-256 fingerprint of the CA certificate, colon-separated hex."""
        return ":".join(f"{b:02X}" for b in self.leaf.fingerprint(hashes.SHA256()))


# ── Load / ParseLeaf ──────────────────────────────────────────────────────────


def load_root_ca(cert_pem: bytes, key_pem: bytes) -> RootCAMaterial:
    """Parse a PEM certificate chain and private key into a RootCAMaterial.

    Blocks of other types are skipped in both inputs, so a single combined
    bundle may be passed as ``cert_pem`` and ``key_pem`` alike.

    Raises:
        TrustMaterialError: PEM cannot be decoded, the chain is empty, the key
            is missing/duplicated/unsupported, or the pair does not match.
        CertificateParseError: the first certificate is not valid DER.
    """
    chain = _certificate_ders(cert_pem)
    if not chain:
        raise TrustMaterialError(
            "no certificate found in certificate PEM", FailureReason.EMPTY_CHAIN
        )

    private_key = _load_private_key(key_pem)
    leaf = _parse_der(chain[0])
    _check_key_pair(private_key, leaf)

    logger.debug(
        "RootCA: loaded %d-certificate chain for %s", len(chain), leaf.subject.rfc4514_string()
    )
    return RootCAMaterial(private_key=private_key, chain=chain, leaf=leaf)


def parse_leaf(material: RootCAMaterial) -> LeafCertificate:
    """Decode the first certificate of ``material.chain`` into a certificate.

    Raises:
        CertificateParseError: the DER is malformed or a field cannot be decoded.
    """
    if not material.chain:
        raise CertificateParseError("certificate chain is empty")
    return _parse_der(material.chain[0])


def bundled_ca_pem() -> tuple[bytes, bytes]:
    """Return the (cert_pem, key_pem) of the CA shipped with the package."""
    data = resources.files("tlsanchor").joinpath("data")
    return (
        data.joinpath(CA_CERT_FILE).read_bytes(),
        data.joinpath(CA_KEY_FILE).read_bytes(),
    )


# ── Helpers ──────────────────────────────────────────────────────────────────


def _pem_blocks(data: bytes) -> list[tuple[bytes, bytes, bytes]]:
    """Return (label, body, raw_block) for every PEM block in *data*."""
    return [(m.group(1), m.group(2), m.group(0)) for m in _PEM_BLOCK_RE.finditer(data)]


def _certificate_ders(cert_pem: bytes) -> tuple[bytes, ...]:
    # Only certificate bodies are decoded here; key blocks may carry
    # RFC 1421 headers and go to cryptography as-is.
    ders = []
    for label, body, _ in _pem_blocks(cert_pem):
        if label != b"CERTIFICATE":
            continue
        try:
            ders.append(base64.b64decode(b"".join(body.split()), validate=True))
        except (binascii.Error, ValueError) as exc:
            raise TrustMaterialError(
                f"invalid base64 in certificate PEM block: {exc}", FailureReason.DECODE
            ) from exc
    return tuple(ders)


def _load_private_key(key_pem: bytes) -> CAPrivateKey:
    key_blocks = [raw for label, _, raw in _pem_blocks(key_pem) if label.endswith(b"PRIVATE KEY")]
    if len(key_blocks) != 1:
        raise TrustMaterialError(
            f"expected exactly one private key in key PEM, found {len(key_blocks)}",
            FailureReason.DECODE,
        )

    try:
        key = serialization.load_pem_private_key(key_blocks[0], password=None)
    except TypeError as exc:
        # Raised for encrypted keys when no password is supplied.
        raise TrustMaterialError(
            f"private key is encrypted: {exc}", FailureReason.UNSUPPORTED_KEY
        ) from exc
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise TrustMaterialError(
            f"failed to decode private key: {exc}", FailureReason.DECODE
        ) from exc

    if not isinstance(key, tuple(priv for priv, _ in _KEY_PAIRS)):
        raise TrustMaterialError(
            f"unsupported private key type {type(key).__name__}",
            FailureReason.UNSUPPORTED_KEY,
        )
    return key  # type: ignore[return-value]


def _parse_der(der: bytes) -> LeafCertificate:
    try:
        cert = x509.load_der_x509_certificate(der)
        # Decoding is partly lazy; touch every field so a bad certificate
        # fails here rather than in the minting path.
        _ = (
            cert.subject,
            cert.issuer,
            cert.serial_number,
            cert.not_valid_before_utc,
            cert.not_valid_after_utc,
            cert.public_key(),
            list(cert.extensions),
        )
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise CertificateParseError(f"failed to parse CA certificate: {exc}") from exc
    return cert


def _check_key_pair(private_key: CAPrivateKey, leaf: LeafCertificate) -> None:
    public_key = leaf.public_key()
    for priv_type, pub_type in _KEY_PAIRS:
        if isinstance(private_key, priv_type):
            if not isinstance(public_key, pub_type):
                raise TrustMaterialError(
                    "private key type does not match public key type",
                    FailureReason.KEY_MISMATCH,
                )
            break

    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    der = serialization.Encoding.DER
    if private_key.public_key().public_bytes(der, spki) != public_key.public_bytes(der, spki):
        raise TrustMaterialError(
            "private key does not match public key", FailureReason.KEY_MISMATCH
        )


# ── Custom CA generation ─────────────────────────────────────────────────────


def generate_root_ca(
    common_name: str = "tlsanchor interception CA",
    organization: str = "tlsanchor",
    organizational_unit: str = "tlsanchor",
    validity_days: int = 365,
    key_type: str = "ec",
) -> tuple[bytes, bytes]:
    """Create a self-signed root CA suitable for ``load_root_ca``.

    Returns (cert_pem, key_pem), both as bytes.
    """
    key: CAPrivateKey
    if key_type == "ec":
        key = ec.generate_private_key(ec.SECP256R1())
    elif key_type == "rsa":
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    else:
        raise ValueError(f"unsupported key type: {key_type!r}")

    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, organizational_unit),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )

    now = datetime.datetime.now(datetime.timezone.utc)
    # Backdate not_valid_before by 1 minute to tolerate clock skew.
    not_before = now - datetime.timedelta(seconds=60)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(now + datetime.timedelta(days=validity_days))
        .add_extension(
            x509.BasicConstraints(ca=True, path_length=0),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_cert_sign=True,
                crl_sign=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return cert_pem, key_pem


def write_root_ca(out_dir: str | Path, cert_pem: bytes, key_pem: bytes) -> tuple[Path, Path]:
    """Write a CA pair as ``ca.crt``/``ca.key`` into *out_dir*.

    Refuses to overwrite an existing key.  Returns (cert_path, key_path).
    """
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True, mode=0o700)
    cert_path = out / CA_CERT_FILE
    key_path = out / CA_KEY_FILE
    if key_path.exists():
        raise FileExistsError(f"CA key already exists: {key_path}")

    # Write key (owner-only permissions).
    key_path.write_bytes(key_pem)
    os.chmod(str(key_path), 0o600)

    # Write cert (world-readable, installed into client trust stores).
    cert_path.write_bytes(cert_pem)
    os.chmod(str(cert_path), 0o644)

    logger.info("RootCA: wrote new CA to %s", out)
    return cert_path, key_path
