"""tlsanchor CLI entry point."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv


def _resolve_config(args):
    from tlsanchor.config import TrustConfig, load_config

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        # pydantic.ValidationError is a ValueError
        print(f"Error: invalid tlsanchor config: {exc}", file=sys.stderr)
        sys.exit(1)
    # Command-line paths beat both the config file and the environment.
    if getattr(args, "ca_bundle", None):
        config = TrustConfig(
            ca_bundle_path=str(args.ca_bundle),
            ca_key_path=str(args.ca_key) if args.ca_key else None,
        )
    elif getattr(args, "ca_key", None):
        print("Error: --ca-key requires --ca-bundle", file=sys.stderr)
        sys.exit(2)
    return config


def _bootstrap_or_exit(args):
    from tlsanchor.bootstrap import initialize
    from tlsanchor.errors import BootstrapError

    config = _resolve_config(args)
    try:
        return initialize(config)
    except BootstrapError as exc:
        print(
            f"Error: CA bootstrap failed at {exc.step} ({exc.reason.value}): {exc}",
            file=sys.stderr,
        )
        sys.exit(1)


def _check(args) -> None:
    """Run the startup sequence and print what it produced."""
    ctx = _bootstrap_or_exit(args)
    leaf = ctx.root_ca.leaf

    print("Root CA: OK")
    print(f"  Subject:     {leaf.subject.rfc4514_string()}")
    print(f"  Issuer:      {leaf.issuer.rfc4514_string()}")
    print(f"  Serial:      {leaf.serial_number:x}")
    print(f"  Not before:  {leaf.not_valid_before_utc.isoformat()}")
    print(f"  Not after:   {leaf.not_valid_after_utc.isoformat()}")
    print(f"  SHA-256:     {ctx.root_ca.fingerprint}")
    print(f"  Chain:       {len(ctx.root_ca.chain)} certificate(s)")

    for profile in (ctx.upstream, ctx.downstream):
        print()
        print(f"Profile {profile.role.value}:")
        print(f"  Peer verification: {profile.peer_verification.value}")
        print(f"  Minimum version:   {profile.minimum_version.name}")
        print(f"  Server preference: {'yes' if profile.prefer_server_ciphers else 'no'}")
        for i, suite in enumerate(profile.cipher_suites, 1):
            print(f"  {i:2d}. {suite.iana_name} (0x{suite.code:04X})")


def _export_ca(args) -> None:
    """Write the CA certificate chain (never the key) for client trust stores."""
    ctx = _bootstrap_or_exit(args)
    out: Path = args.out
    out.write_bytes(ctx.root_ca.chain_pem)
    print(f"Wrote CA certificate to {out}")


def _generate(args) -> None:
    """Create a new custom CA for use via ca-bundle-path / ca-key-path."""
    from tlsanchor.ca import generate_root_ca, write_root_ca

    cert_pem, key_pem = generate_root_ca(
        common_name=args.common_name,
        organization=args.organization,
        validity_days=args.validity_days,
        key_type=args.key_type,
    )
    try:
        cert_path, key_path = write_root_ca(args.out_dir, cert_pem, key_pem)
    except FileExistsError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        print("Remove it first if you want to regenerate the CA.", file=sys.stderr)
        sys.exit(1)

    print(f"Generated CA in {args.out_dir}")
    print(f"  Certificate: {cert_path}")
    print(f"  Key:         {key_path}")
    print()
    print("Next steps:")
    print(f"  1. Install {cert_path} in client trust stores")
    print(f"  2. Set ca-bundle-path: {cert_path} and ca-key-path: {key_path}")


def _add_ca_source_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--ca-bundle", type=Path, help="CA certificate (or combined) PEM file")
    parser.add_argument("--ca-key", type=Path, help="CA private key PEM file")


def main(argv: list[str] | None = None) -> None:
    load_dotenv()

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a tlsanchor YAML config (default: bundled CA)",
    )
    common.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    parser = argparse.ArgumentParser(
        prog="tlsanchor",
        description="tlsanchor: root CA bootstrap and TLS policy for an interception proxy",
    )
    subparsers = parser.add_subparsers(dest="command")

    # tlsanchor check
    check_parser = subparsers.add_parser(
        "check", parents=[common], help="Validate the root CA and show TLS profiles"
    )
    _add_ca_source_args(check_parser)

    # tlsanchor export-ca
    export_parser = subparsers.add_parser(
        "export-ca", parents=[common], help="Write the CA certificate for client trust stores"
    )
    export_parser.add_argument("--out", type=Path, required=True, help="Output PEM path")
    _add_ca_source_args(export_parser)

    # tlsanchor generate
    gen_parser = subparsers.add_parser(
        "generate", parents=[common], help="Generate a custom root CA"
    )
    gen_parser.add_argument("--out-dir", type=Path, required=True, help="Directory for ca.crt/ca.key")
    gen_parser.add_argument("--common-name", default="tlsanchor interception CA")
    gen_parser.add_argument("--organization", default="tlsanchor")
    gen_parser.add_argument(
        "--validity-days", type=int, default=365, help="Validity in days (default: 365)"
    )
    gen_parser.add_argument(
        "--key-type", choices=["ec", "rsa"], default="ec", help="Key type (default: ec)"
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "generate":
        _generate(args)
        return

    if args.command == "export-ca":
        _export_ca(args)
        return

    _check(args)


if __name__ == "__main__":
    main()
