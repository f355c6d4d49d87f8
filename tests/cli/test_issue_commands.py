"""Tests for the sign/check/policy subcommand handlers."""

from __future__ import annotations

import json
from argparse import Namespace
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from conftest import HVCA_URL, make_csr, policy_document
from cryptography.hazmat.primitives import serialization

from hvissuer.cli.commands.issue import run_check, run_policy, run_sign
from hvissuer.config.settings import build_settings
from hvissuer.errors import ConfigurationError
from hvissuer.hvca.client import HvcaClient
from hvissuer.signer import SignResult


@pytest.fixture
def config():
    return SimpleNamespace(settings=build_settings({"issuer": {"url": HVCA_URL}}))


@pytest.fixture
def secret_dir(tmp_path, secret_data):
    directory = tmp_path / "secret"
    directory.mkdir()
    for name, value in secret_data.items():
        (directory / name).write_bytes(value)
    return directory


@pytest.fixture
def csr_file(tmp_path, rsa_key):
    path = tmp_path / "req.pem"
    path.write_bytes(make_csr(rsa_key).public_bytes(serialization.Encoding.PEM))
    return path


def _sign_args(secret_dir, csr, out_cert=None, out_chain=None) -> Namespace:
    return Namespace(
        secret_dir=str(secret_dir) if secret_dir else None,
        csr=str(csr),
        out_cert=out_cert,
        out_chain=out_chain,
    )


class TestRunSign:
    def test_writes_certificate_and_chain(self, config, secret_dir, csr_file, tmp_path):
        signer = MagicMock()
        signer.sign.return_value = SignResult(b"CERT-PEM\n", b"CHAIN-PEM\n")
        out_cert, out_chain = tmp_path / "tls.crt", tmp_path / "ca.crt"

        with patch(
            "hvissuer.cli.commands.issue.hvca_signer_from_issuer_and_secret_data",
            return_value=signer,
        ) as build:
            run_sign(config, _sign_args(secret_dir, csr_file, str(out_cert), str(out_chain)))

        spec, secret = build.call_args.args
        assert spec.url == HVCA_URL
        assert set(secret) == {"apikey", "apisecret", "cert", "certkey"}
        signer.sign.assert_called_once_with(csr_file.read_bytes())
        assert out_cert.read_bytes() == b"CERT-PEM\n"
        assert out_chain.read_bytes() == b"CHAIN-PEM\n"

    def test_stdout_when_no_targets(self, config, secret_dir, csr_file, capsys):
        signer = MagicMock()
        signer.sign.return_value = SignResult(b"CERT-PEM\n", b"CHAIN-PEM\n")

        with patch(
            "hvissuer.cli.commands.issue.hvca_signer_from_issuer_and_secret_data",
            return_value=signer,
        ):
            run_sign(config, _sign_args(secret_dir, csr_file))

        assert capsys.readouterr().out == "CERT-PEM\nCHAIN-PEM\n"

    def test_secret_dir_required(self, config, csr_file):
        with pytest.raises(ConfigurationError, match="--secret-dir"):
            run_sign(config, _sign_args(None, csr_file))

    def test_unreadable_csr(self, config, secret_dir, tmp_path):
        with pytest.raises(ConfigurationError, match="failed to read CSR"):
            run_sign(config, _sign_args(secret_dir, tmp_path / "missing.pem"))


class TestRunCheck:
    def test_healthy(self, config, secret_dir, capsys):
        run_check(config, Namespace(secret_dir=str(secret_dir)))
        assert capsys.readouterr().out.strip() == "healthy"


class TestRunPolicy:
    def test_prints_policy(self, config, secret_dir, fake_hvca, capsys):
        with patch(
            "hvissuer.cli.commands.issue.HvcaClient",
            lambda cfg, scope: HvcaClient(cfg, scope, opener=fake_hvca),
        ):
            run_policy(config, Namespace(secret_dir=str(secret_dir)))

        assert json.loads(capsys.readouterr().out) == policy_document()
        assert fake_hvca.paths() == ["POST /login", "GET /validationpolicy"]
