"""Fail-fast startup for the interception trust anchor.

States::

    UNINITIALIZED ──load──► (ok) ──parse leaf──► READY
          │                                  │
          └──────────── any error ───────────┴──► FATAL

A :class:`TrustContext` is published only on reaching READY.  FATAL is
terminal: the caller must not start accepting connections.  The entry point
calls :func:`initialize` once and passes the context to the minting and
connection-handling code explicitly.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable

from .ca import RootCAMaterial, bundled_ca_pem, load_root_ca, parse_leaf
from .config import TrustConfig
from .errors import BootstrapError, FailureReason, TrustMaterialError
from .policy import (
    DOWNSTREAM_SERVER_PROFILE,
    UPSTREAM_CLIENT_PROFILE,
    PolicyRole,
    TLSPolicyProfile,
)

logger = logging.getLogger(__name__)


class BootstrapState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FATAL = "fatal"


@dataclass(frozen=True)
class TrustContext:
    """Read-only state shared with every connection after startup."""

    root_ca: RootCAMaterial
    upstream: TLSPolicyProfile = UPSTREAM_CLIENT_PROFILE
    downstream: TLSPolicyProfile = DOWNSTREAM_SERVER_PROFILE

    def profile(self, role: PolicyRole | str) -> TLSPolicyProfile:
        if PolicyRole(role) is PolicyRole.UPSTREAM_CLIENT:
            return self.upstream
        return self.downstream


class TrustBootstrap:
    """Runs the CA startup sequence exactly once.

    Usage::

        boot = TrustBootstrap()
        ctx = boot.run_from_config(config)   # raises on failure
        # boot.state is READY; boot.context is ctx
    """

    def __init__(self) -> None:
        self._state = BootstrapState.UNINITIALIZED
        self._context: TrustContext | None = None
        self._error: BootstrapError | None = None

    @property
    def state(self) -> BootstrapState:
        return self._state

    @property
    def error(self) -> BootstrapError | None:
        return self._error

    @property
    def context(self) -> TrustContext:
        if self._state is not BootstrapState.READY or self._context is None:
            raise RuntimeError(f"trust context not available (state={self._state.value})")
        return self._context

    def run(self, cert_pem: bytes, key_pem: bytes) -> TrustContext:
        """Load and validate the CA from PEM bytes, then publish the context."""
        self._begin()
        return self._load_and_publish(lambda: load_root_ca(cert_pem, key_pem))

    def run_from_config(self, config: TrustConfig) -> TrustContext:
        """Resolve the material named by *config* and run the startup sequence."""
        self._begin()
        return self._load_and_publish(lambda: load_root_ca(*read_ca_material(config)))

    def _begin(self) -> None:
        if self._state is not BootstrapState.UNINITIALIZED:
            raise RuntimeError(f"bootstrap already ran (state={self._state.value})")

    def _load_and_publish(self, load: Callable[[], RootCAMaterial]) -> TrustContext:
        try:
            material = load()
            material = replace(material, leaf=parse_leaf(material))
        except BootstrapError as exc:
            self._fail(exc)
            raise
        return self._publish(material)

    def _fail(self, exc: BootstrapError) -> None:
        self._state = BootstrapState.FATAL
        self._error = exc
        logger.error(
            "TrustBootstrap: %s step failed (%s): %s", exc.step, exc.reason.value, exc
        )

    def _publish(self, material: RootCAMaterial) -> TrustContext:
        _warn_if_outside_validity(material)
        self._context = TrustContext(root_ca=material)
        self._state = BootstrapState.READY
        logger.info(
            "TrustBootstrap: root CA ready (subject=%s, sha256=%s)",
            material.leaf.subject.rfc4514_string(),
            material.fingerprint,
        )
        return self._context


def read_ca_material(config: TrustConfig) -> tuple[bytes, bytes]:
    """Return (cert_pem, key_pem) from the configured source.

    A bundle without a separate key file must contain the key as well; the
    same bytes are then used for both halves.
    """
    try:
        if config.uses_bundled_ca:
            return bundled_ca_pem()
        cert_pem = Path(config.ca_bundle_path).read_bytes()  # type: ignore[arg-type]
        if config.ca_key_path:
            return cert_pem, Path(config.ca_key_path).read_bytes()
        return cert_pem, cert_pem
    except OSError as exc:
        raise TrustMaterialError(
            f"cannot read CA material: {exc}", FailureReason.SOURCE_UNREADABLE
        ) from exc


def initialize(config: TrustConfig | None = None) -> TrustContext:
    """Bootstrap the trust anchor once, for a process entry point.

    Raises:
        TrustMaterialError: CA material unreadable, malformed, or mismatched.
        CertificateParseError: CA certificate DER cannot be decoded.
    """
    return TrustBootstrap().run_from_config(config or TrustConfig())


def _warn_if_outside_validity(material: RootCAMaterial) -> None:
    now = datetime.datetime.now(datetime.timezone.utc)
    leaf = material.leaf
    if now < leaf.not_valid_before_utc:
        logger.warning(
            "TrustBootstrap: root CA is not valid until %s", leaf.not_valid_before_utc.isoformat()
        )
    elif now > leaf.not_valid_after_utc:
        logger.warning(
            "TrustBootstrap: root CA expired at %s; clients will reject minted certificates",
            leaf.not_valid_after_utc.isoformat(),
        )
