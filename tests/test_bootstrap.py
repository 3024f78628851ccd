"""Tests for the fail-fast CA startup sequence."""

from __future__ import annotations

import base64
import dataclasses
import logging
from pathlib import Path

import pytest

from tlsanchor.bootstrap import (
    BootstrapState,
    TrustBootstrap,
    TrustContext,
    initialize,
    read_ca_material,
)
from tlsanchor.ca import bundled_ca_pem, parse_leaf
from tlsanchor.config import TrustConfig
from tlsanchor.errors import CertificateParseError, FailureReason, TrustMaterialError
from tlsanchor.policy import (
    DOWNSTREAM_SERVER_PROFILE,
    UPSTREAM_CLIENT_PROFILE,
    PeerVerification,
    PolicyRole,
)


def _flip_key_byte(key_pem: bytes) -> bytes:
    lines = key_pem.split(b"\n")
    line = bytearray(lines[10])
    line[20] = ord("B") if line[20] != ord("B") else ord("C")
    lines[10] = bytes(line)
    return b"\n".join(lines)


# -- State machine ------------------------------------------------------------


class TestTrustBootstrap:
    def test_starts_uninitialized(self):
        boot = TrustBootstrap()
        assert boot.state is BootstrapState.UNINITIALIZED
        assert boot.error is None
        with pytest.raises(RuntimeError, match="not available"):
            boot.context

    def test_bundled_ca_reaches_ready(self):
        boot = TrustBootstrap()
        ctx = boot.run(*bundled_ca_pem())
        assert boot.state is BootstrapState.READY
        assert boot.context is ctx
        assert ctx.upstream is UPSTREAM_CLIENT_PROFILE
        assert ctx.downstream is DOWNSTREAM_SERVER_PROFILE

    def test_flipped_key_byte_is_fatal(self, caplog):
        cert_pem, key_pem = bundled_ca_pem()
        boot = TrustBootstrap()
        with caplog.at_level(logging.ERROR, logger="tlsanchor.bootstrap"):
            with pytest.raises(TrustMaterialError):
                boot.run(cert_pem, _flip_key_byte(key_pem))
        assert boot.state is BootstrapState.FATAL
        assert isinstance(boot.error, TrustMaterialError)
        assert "load step failed" in caplog.text
        with pytest.raises(RuntimeError):
            boot.context

    def test_mismatch_reported_with_reason(self, ec_ca_pem, other_ec_ca_pem, caplog):
        boot = TrustBootstrap()
        with caplog.at_level(logging.ERROR, logger="tlsanchor.bootstrap"):
            with pytest.raises(TrustMaterialError):
                boot.run(ec_ca_pem[0], other_ec_ca_pem[1])
        assert boot.error.reason is FailureReason.KEY_MISMATCH
        assert "(key-mismatch)" in caplog.text

    def test_empty_chain_is_fatal(self, ec_ca_pem):
        boot = TrustBootstrap()
        with pytest.raises(TrustMaterialError):
            boot.run(b"", ec_ca_pem[1])
        assert boot.state is BootstrapState.FATAL
        assert boot.error.reason is FailureReason.EMPTY_CHAIN

    def test_malformed_der_never_reaches_ready(self, ec_ca_pem):
        der = b"\x30\x03\x02\x01\x00"
        bad_cert = (
            b"-----BEGIN CERTIFICATE-----\n"
            + base64.b64encode(der)
            + b"\n-----END CERTIFICATE-----\n"
        )
        boot = TrustBootstrap()
        with pytest.raises(CertificateParseError):
            boot.run(bad_cert, ec_ca_pem[1])
        assert boot.state is BootstrapState.FATAL
        assert boot.error.step == "parse-leaf"

    def test_publishes_leaf_from_parse_step(self, ec_ca_pem, monkeypatch):
        parsed = []

        def recording_parse_leaf(material):
            leaf = parse_leaf(material)
            parsed.append(leaf)
            return leaf

        monkeypatch.setattr("tlsanchor.bootstrap.parse_leaf", recording_parse_leaf)
        ctx = TrustBootstrap().run(*ec_ca_pem)

        assert len(parsed) == 1
        assert ctx.root_ca.leaf is parsed[0]

    def test_runs_only_once(self, ec_ca_pem):
        boot = TrustBootstrap()
        boot.run(*ec_ca_pem)
        with pytest.raises(RuntimeError, match="already ran"):
            boot.run(*ec_ca_pem)
        assert boot.state is BootstrapState.READY

    def test_fatal_is_terminal(self, ec_ca_pem):
        boot = TrustBootstrap()
        with pytest.raises(TrustMaterialError):
            boot.run(b"", b"")
        with pytest.raises(RuntimeError):
            boot.run(*ec_ca_pem)
        assert boot.state is BootstrapState.FATAL

    def test_expired_ca_warns(self, caplog):
        # The bundled CA expired in 2022; loading still succeeds.
        with caplog.at_level(logging.WARNING, logger="tlsanchor.bootstrap"):
            TrustBootstrap().run(*bundled_ca_pem())
        assert "expired" in caplog.text

    def test_current_ca_does_not_warn(self, ec_ca_pem, caplog):
        with caplog.at_level(logging.WARNING, logger="tlsanchor.bootstrap"):
            TrustBootstrap().run(*ec_ca_pem)
        assert "expired" not in caplog.text


# -- TrustContext -------------------------------------------------------------


class TestTrustContext:
    def test_profile_lookup(self, ec_ca):
        ctx = TrustContext(root_ca=ec_ca)
        assert ctx.profile(PolicyRole.UPSTREAM_CLIENT) is UPSTREAM_CLIENT_PROFILE
        assert ctx.profile("downstream-server") is DOWNSTREAM_SERVER_PROFILE

    def test_upstream_profile_skips_verification(self, ec_ca):
        ctx = TrustContext(root_ca=ec_ca)
        assert ctx.upstream.peer_verification is PeerVerification.SKIP

    def test_context_frozen(self, ec_ca):
        ctx = TrustContext(root_ca=ec_ca)
        with pytest.raises(dataclasses.FrozenInstanceError):
            ctx.upstream = DOWNSTREAM_SERVER_PROFILE  # type: ignore[misc]


# -- Config-driven startup ------------------------------------------------------


class TestInitialize:
    def test_default_uses_bundled_ca(self):
        ctx = initialize()
        assert ctx.root_ca.leaf.serial_number == 0x029EBC5EFBEE33069309E4108C6C4711984970F8

    def test_separate_cert_and_key_files(self, tmp_path: Path, ec_ca_pem):
        (tmp_path / "ca.crt").write_bytes(ec_ca_pem[0])
        (tmp_path / "ca.key").write_bytes(ec_ca_pem[1])
        config = TrustConfig(
            ca_bundle_path=str(tmp_path / "ca.crt"), ca_key_path=str(tmp_path / "ca.key")
        )
        ctx = initialize(config)
        assert ctx.root_ca.cert_pem == ec_ca_pem[0]

    def test_combined_bundle_file(self, tmp_path: Path, ec_ca_pem):
        bundle = tmp_path / "ca.pem"
        bundle.write_bytes(ec_ca_pem[0] + ec_ca_pem[1])
        ctx = initialize(TrustConfig(ca_bundle_path=str(bundle)))
        assert len(ctx.root_ca.chain) == 1

    def test_missing_file_is_fatal(self, tmp_path: Path):
        boot = TrustBootstrap()
        config = TrustConfig(ca_bundle_path=str(tmp_path / "nope.pem"))
        with pytest.raises(TrustMaterialError) as exc_info:
            boot.run_from_config(config)
        assert exc_info.value.reason is FailureReason.SOURCE_UNREADABLE
        assert boot.state is BootstrapState.FATAL

    def test_read_ca_material_bundle_without_key(self, tmp_path: Path):
        bundle = tmp_path / "ca.pem"
        bundle.write_bytes(b"pem bytes")
        cert_pem, key_pem = read_ca_material(TrustConfig(ca_bundle_path=str(bundle)))
        assert cert_pem == key_pem == b"pem bytes"
