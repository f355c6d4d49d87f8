"""Issuer subcommands: sign, check and policy."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

from hvissuer.cancel import CancelScope
from hvissuer.errors import ConfigurationError
from hvissuer.hvca.client import HvcaClient
from hvissuer.secret_store import load_secret_dir
from hvissuer.signer import (
    IssuerSpec,
    build_hvca_config,
    hvca_health_checker_from_issuer_and_secret_data,
    hvca_signer_from_issuer_and_secret_data,
)

log = logging.getLogger(__name__)


def _spec_and_secret(config, args) -> tuple[IssuerSpec, dict[str, bytes]]:
    if not args.secret_dir:
        msg = "--secret-dir is required for this command"
        raise ConfigurationError(msg)
    spec = IssuerSpec(url=config.settings.issuer.url)
    return spec, load_secret_dir(args.secret_dir)


def _write(data: bytes, target: str | None) -> None:
    if target is None:
        sys.stdout.write(data.decode("ascii"))
        sys.stdout.flush()
        return
    try:
        Path(target).write_bytes(data)
    except OSError as exc:
        msg = f"failed to write '{target}': {exc}"
        raise ConfigurationError(msg) from exc


def run_sign(config, args) -> None:
    """Issue a certificate for ``args.csr`` and write it out."""
    spec, secret = _spec_and_secret(config, args)
    try:
        csr_bytes = Path(args.csr).read_bytes()
    except OSError as exc:
        msg = f"failed to read CSR '{args.csr}': {exc}"
        raise ConfigurationError(msg) from exc

    signer = hvca_signer_from_issuer_and_secret_data(spec, secret, settings=config.settings)
    result = signer.sign(csr_bytes)

    _write(result.certificate_pem, args.out_cert)
    _write(result.chain_pem, args.out_chain)


def run_check(config, args) -> None:
    """Run the health checker and report the outcome."""
    spec, secret = _spec_and_secret(config, args)
    checker = hvca_health_checker_from_issuer_and_secret_data(
        spec,
        secret,
        settings=config.settings,
    )
    checker.check()
    print("healthy")  # noqa: T201


def run_policy(config, args) -> None:
    """Log in and print the account validation policy as JSON."""
    spec, secret = _spec_and_secret(config, args)
    hvca_config = build_hvca_config(spec, secret, config.settings)
    with CancelScope(timeout=config.settings.issuer.timeout_seconds) as scope:
        client = HvcaClient(hvca_config, scope)
        client.login()
        policy = client.policy()
    print(json.dumps(policy.raw, indent=2, sort_keys=True))  # noqa: T201
