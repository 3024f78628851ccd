"""Error types raised while bootstrapping the root CA.

Both error kinds are fatal to startup.  Callers surface them and stop; there
is no retry path because the input is static configuration.
"""

from __future__ import annotations

from enum import Enum


class FailureReason(str, Enum):
    """Why a bootstrap step rejected its input."""

    SOURCE_UNREADABLE = "source-unreadable"
    DECODE = "decode"
    EMPTY_CHAIN = "empty-chain"
    UNSUPPORTED_KEY = "unsupported-key"
    KEY_MISMATCH = "key-mismatch"
    MALFORMED_CERTIFICATE = "malformed-certificate"


class BootstrapError(Exception):
    """Base class for CA bootstrap failures.

    ``step`` names the startup step that failed and ``reason`` narrows it
    down, so an operator can tell a corrupt file from a mismatched pair.
    """

    step = "bootstrap"

    def __init__(self, message: str, reason: FailureReason) -> None:
        super().__init__(message)
        self.reason = reason


class TrustMaterialError(BootstrapError):
    """Certificate/key bytes are malformed, empty, or not a matching pair."""

    step = "load"


class CertificateParseError(BootstrapError):
    """The CA certificate's DER structure could not be decoded."""

    step = "parse-leaf"

    def __init__(
        self, message: str, reason: FailureReason = FailureReason.MALFORMED_CERTIFICATE
    ) -> None:
        super().__init__(message, reason)
