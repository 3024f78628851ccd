"""Hardened TLS policy profiles for the interception proxy.

One cipher policy is shared by two role-keyed profiles:

- ``upstream-client``: the proxy dials the real destination server.
- ``downstream-server``: the proxy presents a minted leaf certificate to
  an intercepted client.

Peer verification is ``skip`` for both.  The interception engine makes the
trust decision for upstream certificates itself; the TLS layer does not.

Cipher order, high to low priority:

1. AEAD suites (GCM, ChaCha20-Poly1305) before CBC+HMAC-SHA1.
2. ECDHE key exchange before static RSA.
3. AES before ChaCha20, fixed (no hardware-AES detection).

3DES is excluded.  It is never selected against a compliant TLS 1.2 peer,
but security scanners report it.

SHA256/SHA384 CBC variants are left out: they are vulnerable to Lucky13
in common implementations and offer nothing over the GCM suites above them.
"""

from __future__ import annotations

import ssl
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class PolicyRole(str, Enum):
    UPSTREAM_CLIENT = "upstream-client"
    DOWNSTREAM_SERVER = "downstream-server"


class PeerVerification(str, Enum):
    SKIP = "skip"
    ENFORCE = "enforce"


@dataclass(frozen=True)
class CipherSuite:
    """A TLS 1.2 cipher suite, by IANA name, code point and OpenSSL name."""

    iana_name: str
    code: int
    openssl_name: str
    key_exchange: str  # "ECDHE" or "RSA"
    authentication: str  # "RSA" or "ECDSA"
    cipher: str
    mac: str  # "AEAD" for GCM/ChaCha20-Poly1305

    @property
    def forward_secret(self) -> bool:
        return self.key_exchange == "ECDHE"

    @property
    def aead(self) -> bool:
        return self.mac == "AEAD"


def _suite(
    iana_name: str, code: int, openssl_name: str, kx: str, auth: str, cipher: str, mac: str
) -> CipherSuite:
    return CipherSuite(iana_name, code, openssl_name, kx, auth, cipher, mac)


HARDENED_CIPHER_SUITES: tuple[CipherSuite, ...] = (
    _suite("TLS_ECDHE_RSA_WITH_AES_128_GCM_SHA256", 0xC02F,
           "ECDHE-RSA-AES128-GCM-SHA256", "ECDHE", "RSA", "AES-128-GCM", "AEAD"),
    _suite("TLS_ECDHE_RSA_WITH_AES_256_GCM_SHA384", 0xC030,
           "ECDHE-RSA-AES256-GCM-SHA384", "ECDHE", "RSA", "AES-256-GCM", "AEAD"),
    _suite("TLS_ECDHE_ECDSA_WITH_AES_128_GCM_SHA256", 0xC02B,
           "ECDHE-ECDSA-AES128-GCM-SHA256", "ECDHE", "ECDSA", "AES-128-GCM", "AEAD"),
    _suite("TLS_ECDHE_ECDSA_WITH_AES_256_GCM_SHA384", 0xC02C,
           "ECDHE-ECDSA-AES256-GCM-SHA384", "ECDHE", "ECDSA", "AES-256-GCM", "AEAD"),
    _suite("TLS_ECDHE_RSA_WITH_CHACHA20_POLY1305_SHA256", 0xCCA8,
           "ECDHE-RSA-CHACHA20-POLY1305", "ECDHE", "RSA", "CHACHA20-POLY1305", "AEAD"),
    _suite("TLS_ECDHE_ECDSA_WITH_CHACHA20_POLY1305_SHA256", 0xCCA9,
           "ECDHE-ECDSA-CHACHA20-POLY1305", "ECDHE", "ECDSA", "CHACHA20-POLY1305", "AEAD"),
    _suite("TLS_ECDHE_RSA_WITH_AES_128_CBC_SHA", 0xC013,
           "ECDHE-RSA-AES128-SHA", "ECDHE", "RSA", "AES-128-CBC", "SHA1"),
    _suite("TLS_ECDHE_ECDSA_WITH_AES_128_CBC_SHA", 0xC009,
           "ECDHE-ECDSA-AES128-SHA", "ECDHE", "ECDSA", "AES-128-CBC", "SHA1"),
    _suite("TLS_ECDHE_RSA_WITH_AES_256_CBC_SHA", 0xC014,
           "ECDHE-RSA-AES256-SHA", "ECDHE", "RSA", "AES-256-CBC", "SHA1"),
    _suite("TLS_ECDHE_ECDSA_WITH_AES_256_CBC_SHA", 0xC00A,
           "ECDHE-ECDSA-AES256-SHA", "ECDHE", "ECDSA", "AES-256-CBC", "SHA1"),
    _suite("TLS_RSA_WITH_AES_128_GCM_SHA256", 0x009C,
           "AES128-GCM-SHA256", "RSA", "RSA", "AES-128-GCM", "AEAD"),
    _suite("TLS_RSA_WITH_AES_256_GCM_SHA384", 0x009D,
           "AES256-GCM-SHA384", "RSA", "RSA", "AES-256-GCM", "AEAD"),
    _suite("TLS_RSA_WITH_AES_128_CBC_SHA", 0x002F,
           "AES128-SHA", "RSA", "RSA", "AES-128-CBC", "SHA1"),
    _suite("TLS_RSA_WITH_AES_256_CBC_SHA", 0x0035,
           "AES256-SHA", "RSA", "RSA", "AES-256-CBC", "SHA1"),
)  # fmt: skip

POLICY_MINIMUM_VERSION = ssl.TLSVersion.TLSv1_2


@dataclass(frozen=True)
class CipherPolicy:
    cipher_suites: tuple[CipherSuite, ...]
    minimum_version: ssl.TLSVersion
    prefer_server_ciphers: bool

    @property
    def openssl_cipher_string(self) -> str:
        """Colon-joined OpenSSL names, in priority order (for ``set_ciphers``)."""
        return ":".join(s.openssl_name for s in self.cipher_suites)


HARDENED_POLICY = CipherPolicy(
    cipher_suites=HARDENED_CIPHER_SUITES,
    minimum_version=POLICY_MINIMUM_VERSION,
    prefer_server_ciphers=True,
)


@dataclass(frozen=True)
class TLSPolicyProfile:
    """A named, immutable TLS configuration for one handshake role."""

    role: PolicyRole
    peer_verification: PeerVerification
    policy: CipherPolicy

    @property
    def cipher_suites(self) -> tuple[CipherSuite, ...]:
        return self.policy.cipher_suites

    @property
    def minimum_version(self) -> ssl.TLSVersion:
        return self.policy.minimum_version

    @property
    def prefer_server_ciphers(self) -> bool:
        return self.policy.prefer_server_ciphers


UPSTREAM_CLIENT_PROFILE = TLSPolicyProfile(
    role=PolicyRole.UPSTREAM_CLIENT,
    peer_verification=PeerVerification.SKIP,
    policy=HARDENED_POLICY,
)

DOWNSTREAM_SERVER_PROFILE = TLSPolicyProfile(
    role=PolicyRole.DOWNSTREAM_SERVER,
    peer_verification=PeerVerification.SKIP,
    policy=HARDENED_POLICY,
)

PROFILES: Mapping[PolicyRole, TLSPolicyProfile] = MappingProxyType(
    {
        PolicyRole.UPSTREAM_CLIENT: UPSTREAM_CLIENT_PROFILE,
        PolicyRole.DOWNSTREAM_SERVER: DOWNSTREAM_SERVER_PROFILE,
    }
)


def get_profile(role: PolicyRole | str) -> TLSPolicyProfile:
    return PROFILES[PolicyRole(role)]


def build_ssl_context(profile: TLSPolicyProfile) -> ssl.SSLContext:
    """Create a fresh ``ssl.SSLContext`` configured from *profile*.

    Each call returns a new context.  Server contexts still need a leaf
    certificate loaded with ``load_cert_chain`` before use.  With
    ``ENFORCE`` on the server side, the caller also loads the client CAs.
    """
    if profile.role is PolicyRole.UPSTREAM_CLIENT:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        if profile.peer_verification is PeerVerification.SKIP:
            # check_hostname must be cleared before verify_mode can drop to CERT_NONE.
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        else:
            ctx.load_default_certs(ssl.Purpose.SERVER_AUTH)
    else:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        if profile.peer_verification is PeerVerification.ENFORCE:
            ctx.verify_mode = ssl.CERT_REQUIRED

    ctx.minimum_version = profile.minimum_version
    # Only governs TLS 1.2; TLS 1.3 suites are all AEAD and use OpenSSL's defaults.
    ctx.set_ciphers(profile.policy.openssl_cipher_string)
    if profile.prefer_server_ciphers:
        ctx.options |= ssl.OP_CIPHER_SERVER_PREFERENCE
    return ctx
