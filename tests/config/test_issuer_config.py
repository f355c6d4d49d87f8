"""Tests for IssuerConfig loading, env resolution and cross-field checks."""

from __future__ import annotations

import dataclasses
import json
import logging
from pathlib import Path

import pytest
import yaml
from conftest import HVCA_URL
from jsonschema import ValidationError, validate

from hvissuer.config.issuer_config import (
    _SCHEMA_PATH,
    ConfigValidationError,
    IssuerConfig,
    get_config,
)
from hvissuer.config.settings import DEFAULT_SETTINGS, build_settings


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))


def _write_config(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return path


def _make_config(tmp_path: Path, **sections) -> IssuerConfig:
    data = {"issuer": {"url": HVCA_URL}}
    for name, value in sections.items():
        data.setdefault(name, {}).update(value)
    return IssuerConfig(config_file=_write_config(tmp_path, data), schema_file=_SCHEMA_PATH)


# ===========================================================================
# Loading
# ===========================================================================


class TestLoading:
    def test_minimal_config_defaults(self, tmp_config_file):
        cfg = IssuerConfig(config_file=tmp_config_file)
        s = cfg.settings

        assert s.issuer.url == HVCA_URL
        assert s.issuer.timeout_seconds == 30.0
        assert s.issuer.ca_cert_path is None
        assert s.secrets.api_key_key == "apikey"
        assert s.secrets.private_key_key == "certkey"
        assert s.validity.not_after == "sentinel"
        assert s.retrieve.poll_attempts == 1
        assert s.health_check.probe is False
        assert s.logging.level == "INFO"
        assert s.logging.format == "json"

    def test_get_config_returns_singleton(self, tmp_config_file):
        cfg = IssuerConfig(config_file=tmp_config_file)
        assert get_config() is cfg

    def test_get_config_before_init(self):
        with pytest.raises(RuntimeError, match="not initialised"):
            get_config()

    def test_settings_are_frozen(self, tmp_config_file):
        cfg = IssuerConfig(config_file=tmp_config_file)
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.settings.issuer.url = "https://other.example.com"  # type: ignore[misc]

    def test_overrides(self, tmp_path):
        cfg = _make_config(
            tmp_path,
            issuer={"timeout_seconds": 12},
            validity={"not_after": "duration", "duration_seconds": 3600},
            retrieve={"poll_attempts": 3, "poll_interval_seconds": 1.5},
            logging={"level": "DEBUG", "format": "text"},
        )
        s = cfg.settings

        assert s.issuer.timeout_seconds == 12.0
        assert s.validity.duration_seconds == 3600
        assert s.retrieve.poll_attempts == 3
        assert s.retrieve.poll_interval_seconds == 1.5
        assert s.logging.format == "text"


class TestEnvResolution:
    def test_env_var_substituted(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HVCA_URL", "https://env.example.com/v2")
        cfg = IssuerConfig(
            config_file=_write_config(tmp_path, {"issuer": {"url": "${HVCA_URL}"}}),
        )
        assert cfg.settings.issuer.url == "https://env.example.com/v2"

    def test_env_default_used(self, tmp_path, monkeypatch):
        monkeypatch.delenv("HVCA_URL", raising=False)
        cfg = IssuerConfig(
            config_file=_write_config(
                tmp_path,
                {"issuer": {"url": "${HVCA_URL:-https://default.example.com}"}},
            ),
        )
        assert cfg.settings.issuer.url == "https://default.example.com"

    def test_unset_env_var_without_default(self, tmp_path, monkeypatch):
        monkeypatch.delenv("HVCA_URL", raising=False)
        with pytest.raises(ConfigValidationError, match="HVCA_URL"):
            IssuerConfig(config_file=_write_config(tmp_path, {"issuer": {"url": "${HVCA_URL}"}}))


# ===========================================================================
# Cross-field validation
# ===========================================================================


class TestAdditionalChecks:
    def test_http_url_rejected(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="https://"):
            _make_config(tmp_path, issuer={"url": "http://hvca.example.com"})

    def test_trailing_slash_rejected(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="must not end with"):
            _make_config(tmp_path, issuer={"url": HVCA_URL + "/"})

    def test_missing_ca_bundle_rejected(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="ca_cert_path"):
            _make_config(tmp_path, issuer={"ca_cert_path": str(tmp_path / "nope.pem")})

    def test_existing_ca_bundle_accepted(self, tmp_path):
        bundle = tmp_path / "ca.pem"
        bundle.write_text("placeholder", encoding="utf-8")
        cfg = _make_config(tmp_path, issuer={"ca_cert_path": str(bundle)})
        assert cfg.settings.issuer.ca_cert_path == str(bundle)

    def test_duration_requires_seconds(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="duration_seconds"):
            _make_config(tmp_path, validity={"not_after": "duration"})

    def test_all_errors_collected(self, tmp_path):
        with pytest.raises(ConfigValidationError) as exc_info:
            _make_config(
                tmp_path,
                issuer={"url": "http://hvca.example.com/"},
                validity={"not_after": "duration"},
            )
        assert len(exc_info.value.errors) == 3

    def test_ignored_duration_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            _make_config(tmp_path, validity={"duration_seconds": 60})
        assert "duration is ignored" in caplog.text

    def test_polling_longer_than_timeout_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            _make_config(
                tmp_path,
                issuer={"timeout_seconds": 5},
                retrieve={"poll_attempts": 10, "poll_interval_seconds": 2},
            )
        assert "retrieve polling" in caplog.text


# ===========================================================================
# Schema
# ===========================================================================


class TestSchema:
    def test_minimal_valid(self, schema):
        validate(instance={"issuer": {"url": HVCA_URL}}, schema=schema)

    def test_url_required(self, schema):
        with pytest.raises(ValidationError, match="'url' is a required property"):
            validate(instance={"issuer": {}}, schema=schema)

    def test_unknown_section(self, schema):
        with pytest.raises(ValidationError, match="Additional properties"):
            validate(instance={"issuer": {"url": HVCA_URL}, "server": {}}, schema=schema)

    def test_unknown_not_after_mode(self, schema):
        with pytest.raises(ValidationError):
            validate(
                instance={"issuer": {"url": HVCA_URL}, "validity": {"not_after": "never"}},
                schema=schema,
            )

    def test_zero_poll_attempts(self, schema):
        with pytest.raises(ValidationError, match="minimum"):
            validate(
                instance={"issuer": {"url": HVCA_URL}, "retrieve": {"poll_attempts": 0}},
                schema=schema,
            )

    def test_non_positive_timeout(self, schema):
        with pytest.raises(ValidationError):
            validate(
                instance={"issuer": {"url": HVCA_URL, "timeout_seconds": 0}},
                schema=schema,
            )


def test_default_settings_match_empty_config():
    assert build_settings({}) == DEFAULT_SETTINGS
