"""hvissuer command-line entry point.

Usage::

    hvissuer -c /etc/hvissuer/config.yaml --validate-only
    hvissuer -c config.yaml --secret-dir /var/run/secrets/hvca check
    hvissuer -c config.yaml --secret-dir /var/run/secrets/hvca policy
    hvissuer -c config.yaml --secret-dir /var/run/secrets/hvca sign --csr req.pem
    python -m hvissuer -c config.yaml ...
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

log = logging.getLogger(__name__)


def _get_version() -> str:
    from hvissuer import __version__

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hvissuer",
        description="hvissuer: issue certificates from an HVCA account",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="YAML or JSON configuration file.",
    )
    parser.add_argument(
        "--secret-dir",
        metavar="DIR",
        default=None,
        help="Directory holding the credentials secret, one file per key.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Verbose bootstrap logging; re-raise errors with tracebacks.",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Load and check the configuration, print a summary, then exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    sign_parser = subparsers.add_parser("sign", help="Issue a certificate for a CSR")
    sign_parser.add_argument("--csr", required=True, metavar="FILE", help="CSR file (PEM or DER)")
    sign_parser.add_argument(
        "--out-cert",
        metavar="FILE",
        default=None,
        help="Write the certificate here instead of stdout.",
    )
    sign_parser.add_argument(
        "--out-chain",
        metavar="FILE",
        default=None,
        help="Write the CA chain here instead of stdout.",
    )

    subparsers.add_parser("check", help="Run the issuer health check")
    subparsers.add_parser("policy", help="Print the account validation policy")

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"hvissuer: error: {message}", file=sys.stderr)  # noqa: T201


def main(argv: list[str] | None = None) -> None:
    """Run the hvissuer command line."""
    args = (parser := _build_parser()).parse_args(argv)

    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # Plain stderr output until the configured handlers are installed.
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        from hvissuer.config import ConfigValidationError, IssuerConfig

        config = IssuerConfig(config_file=str(config_path))
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(1)

    from hvissuer.logging import configure_logging

    configure_logging(config.settings.logging)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    if args.command is None:
        parser.print_usage(sys.stderr)
        _print_error("a subcommand is required (sign, check or policy)")
        sys.exit(2)

    from hvissuer.cli.commands.issue import run_check, run_policy, run_sign
    from hvissuer.errors import IssuerError

    handlers = {"sign": run_sign, "check": run_check, "policy": run_policy}
    try:
        handlers[args.command](config, args)
    except IssuerError as exc:
        if args.debug:
            raise
        _print_error(exc.detail)
        sys.exit(1)


def _print_settings_summary(config) -> None:
    s = config.settings
    lines = [
        f"issuer.url            = {s.issuer.url}",
        f"issuer.timeout        = {s.issuer.timeout_seconds}s",
        f"validity.not_after    = {s.validity.not_after}",
        f"retrieve.poll         = {s.retrieve.poll_attempts} x {s.retrieve.poll_interval_seconds}s",
        f"health_check.probe    = {s.health_check.probe}",
        f"logging               = {s.logging.level}/{s.logging.format}",
    ]
    print("\n".join(lines))  # noqa: T201
