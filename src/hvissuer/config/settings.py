"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the application actually reads.

Access pattern::

    from hvissuer.config import get_config

    issuer = get_config().settings.issuer
    print(issuer.url, issuer.timeout_seconds)
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IssuerSettings:
    """Remote CA endpoint and per-call limits."""

    url: str
    timeout_seconds: float
    ca_cert_path: str | None


def _build_issuer(data: dict | None) -> IssuerSettings:
    d = data or {}
    return IssuerSettings(
        url=d.get("url", ""),
        timeout_seconds=float(d.get("timeout_seconds", 30)),
        ca_cert_path=d.get("ca_cert_path"),
    )


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecretKeySettings:
    """Names of the entries in the credentials secret."""

    api_key_key: str
    api_secret_key: str
    cert_key: str
    private_key_key: str


def _build_secrets(data: dict | None) -> SecretKeySettings:
    d = data or {}
    return SecretKeySettings(
        api_key_key=d.get("api_key_key", "apikey"),
        api_secret_key=d.get("api_secret_key", "apisecret"),
        cert_key=d.get("cert_key", "cert"),
        private_key_key=d.get("private_key_key", "certkey"),
    )


# ---------------------------------------------------------------------------
# Validity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValiditySettings:
    """How the requested expiry is expressed (``sentinel``/``omit``/``duration``)."""

    not_after: str
    duration_seconds: int | None


def _build_validity(data: dict | None) -> ValiditySettings:
    d = data or {}
    return ValiditySettings(
        not_after=d.get("not_after", "sentinel"),
        duration_seconds=d.get("duration_seconds"),
    )


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetrieveSettings:
    """Certificate retrieval polling.  One attempt means a single fetch."""

    poll_attempts: int
    poll_interval_seconds: float


def _build_retrieve(data: dict | None) -> RetrieveSettings:
    d = data or {}
    return RetrieveSettings(
        poll_attempts=d.get("poll_attempts", 1),
        poll_interval_seconds=float(d.get("poll_interval_seconds", 2.0)),
    )


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HealthCheckSettings:
    probe: bool


def _build_health_check(data: dict | None) -> HealthCheckSettings:
    d = data or {}
    return HealthCheckSettings(probe=d.get("probe", False))


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format)."""

    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "json"),
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HvissuerSettings:
    """Root settings tree."""

    issuer: IssuerSettings
    secrets: SecretKeySettings
    validity: ValiditySettings
    retrieve: RetrieveSettings
    health_check: HealthCheckSettings
    logging: LoggingSettings


def build_settings(data: dict) -> HvissuerSettings:
    """Build the full typed settings tree from a validated config dict."""
    return HvissuerSettings(
        issuer=_build_issuer(data.get("issuer")),
        secrets=_build_secrets(data.get("secrets")),
        validity=_build_validity(data.get("validity")),
        retrieve=_build_retrieve(data.get("retrieve")),
        health_check=_build_health_check(data.get("health_check")),
        logging=_build_logging(data.get("logging")),
    )


DEFAULT_SETTINGS = build_settings({})
