"""Issuance orchestrator and health checker for the HVCA issuer.

The signer is built once from the issuer spec and its credentials
secret, then reused across calls::

    signer = hvca_signer_from_issuer_and_secret_data(spec, secret)
    result = signer.sign(csr_pem)
    result.certificate_pem, result.chain_pem

Each :meth:`HvcaSigner.sign` call runs the protocol as a linear sequence
of steps -- open session, parse CSR, fetch policy, build request, submit,
retrieve certificate, retrieve trust chain, encode -- and stops at the
first one that raises.  Nothing is returned on failure.
"""

from __future__ import annotations

import abc
import contextlib
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from hvissuer.cancel import CancelScope
from hvissuer.cert_utils import encode_certificate, encode_chain
from hvissuer.config.settings import DEFAULT_SETTINGS
from hvissuer.csr import parse_csr
from hvissuer.errors import ConfigurationError, IssuerError, RemoteCallError
from hvissuer.hvca.client import STATUS_ISSUED, HvcaClient
from hvissuer.hvca.credentials import HvcaConfig, load_client_certificate, load_client_key
from hvissuer.logging.setup import issuance_context, set_ca_serial
from hvissuer.projection import NotAfterPolicy, build_request, build_validity

if TYPE_CHECKING:
    from collections.abc import Iterator

    from cryptography import x509

    from hvissuer.config.settings import HvissuerSettings
    from hvissuer.csr import ParsedCSR
    from hvissuer.hvca.client import CertInfo
    from hvissuer.hvca.policy import ValidationPolicy
    from hvissuer.hvca.request import CertificateRequest, Validity

    ClientFactory = Callable[[HvcaConfig, CancelScope], HvcaClient]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuerSpec:
    """The part of the issuer resource this package reads."""

    url: str


@dataclass(frozen=True)
class SignResult:
    """Leaf certificate PEM and the concatenated CA chain PEM."""

    certificate_pem: bytes
    chain_pem: bytes


class HealthChecker(abc.ABC):
    """Reports whether the issuer can currently be used."""

    @abc.abstractmethod
    def check(self) -> None:
        """Return ``None`` when healthy.

        Raises
        ------
        IssuerError
            Describing why the issuer is unhealthy.

        """


class Signer(abc.ABC):
    """Turns a CSR into a signed certificate and its chain."""

    @abc.abstractmethod
    def sign(self, csr_bytes: bytes, *, scope: CancelScope | None = None) -> SignResult:
        """Issue a certificate for *csr_bytes*.

        Raises
        ------
        IssuerError
            On any failure; no partial output is produced.

        """


HealthCheckerBuilder = Callable[[IssuerSpec, Mapping[str, bytes]], HealthChecker]
SignerBuilder = Callable[[IssuerSpec, Mapping[str, bytes]], Signer]


# ---------------------------------------------------------------------------
# Bootstrapper
# ---------------------------------------------------------------------------


def _secret_value(secret: Mapping[str, bytes], key: str) -> bytes:
    value = secret.get(key)
    if value is None:
        msg = f"credentials secret is missing key '{key}'"
        raise ConfigurationError(msg)
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def build_hvca_config(
    spec: IssuerSpec,
    secret: Mapping[str, bytes],
    settings: HvissuerSettings = DEFAULT_SETTINGS,
) -> HvcaConfig:
    """Assemble and validate the session configuration.

    Raises
    ------
    ConfigurationError
        If a secret entry is missing, the certificate or key cannot be
        parsed, the key encoding is unrecognised, or validation fails.

    """
    names = settings.secrets
    tls_cert = load_client_certificate(_secret_value(secret, names.cert_key))
    tls_key, key_encoding = load_client_key(_secret_value(secret, names.private_key_key))

    config = HvcaConfig(
        url=spec.url,
        api_key=_secret_value(secret, names.api_key_key).decode("utf-8").strip(),
        api_secret=_secret_value(secret, names.api_secret_key).decode("utf-8").strip(),
        tls_cert=tls_cert,
        tls_key=tls_key,
        key_encoding=key_encoding,
        timeout_seconds=settings.issuer.timeout_seconds,
        ca_cert_path=settings.issuer.ca_cert_path,
    )
    config.validate()
    return config


def hvca_signer_from_issuer_and_secret_data(
    spec: IssuerSpec,
    secret: Mapping[str, bytes],
    *,
    settings: HvissuerSettings = DEFAULT_SETTINGS,
) -> HvcaSigner:
    """Build a signer for *spec* using the credentials in *secret*."""
    return HvcaSigner(build_hvca_config(spec, secret, settings), settings)


def hvca_health_checker_from_issuer_and_secret_data(
    spec: IssuerSpec,
    secret: Mapping[str, bytes],
    *,
    settings: HvissuerSettings = DEFAULT_SETTINGS,
) -> HvcaHealthChecker:
    """Build a health checker for *spec*.

    Without ``health_check.probe`` the checker needs no credentials and
    always reports healthy.  With it, the credentials are parsed here and
    every check performs a login round-trip.
    """
    if not settings.health_check.probe:
        return HvcaHealthChecker(None, settings)
    return HvcaHealthChecker(build_hvca_config(spec, secret, settings), settings)


# ---------------------------------------------------------------------------
# Health checker
# ---------------------------------------------------------------------------


class HvcaHealthChecker(HealthChecker):
    """Health checker; probes the CA only when given a configuration."""

    def __init__(
        self,
        config: HvcaConfig | None,
        settings: HvissuerSettings = DEFAULT_SETTINGS,
        *,
        client_factory: ClientFactory = HvcaClient,
    ) -> None:
        self._config = config
        self._settings = settings
        self._client_factory = client_factory

    def check(self) -> None:
        if self._config is None:
            return
        with CancelScope(timeout=self._settings.issuer.timeout_seconds) as scope:
            self._client_factory(self._config, scope).login()
        log.debug("HVCA health probe succeeded")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class HvcaSigner(Signer, HealthChecker):
    """Issues certificates from an HVCA account.

    Parameters
    ----------
    config:
        Validated session configuration, shared read-only by all calls.
    settings:
        Validity, retrieval and timeout settings.
    client_factory:
        Builds the per-call HVCA client; replaced in tests.

    """

    def __init__(
        self,
        config: HvcaConfig,
        settings: HvissuerSettings = DEFAULT_SETTINGS,
        *,
        client_factory: ClientFactory = HvcaClient,
    ) -> None:
        self._config = config
        self._settings = settings
        self._client_factory = client_factory

    def check(self) -> None:
        return None

    @contextlib.contextmanager
    def _governing_scope(self, scope: CancelScope | None) -> Iterator[CancelScope]:
        if scope is not None:
            yield scope
            return
        with CancelScope(timeout=self._settings.issuer.timeout_seconds) as own:
            yield own

    def sign(self, csr_bytes: bytes, *, scope: CancelScope | None = None) -> SignResult:
        """Run the full issuance protocol for *csr_bytes*.

        A caller-supplied *scope* lets another thread cancel the call;
        it stays owned by the caller.  Otherwise a scope bounded by
        ``issuer.timeout_seconds`` is opened and closed here.

        Raises
        ------
        ConfigurationError
            The CA account policy cannot be satisfied by this issuer.
        CSRParseError
            *csr_bytes* is not a valid CSR.
        PolicyValidationError
            The CSR does not satisfy the CA validation policy.
        RemoteCallError
            A CA call failed or the call was cancelled.

        """
        with issuance_context(uuid.uuid4().hex[:12]), self._governing_scope(scope) as active:
            try:
                return self._run(csr_bytes, active)
            except IssuerError as exc:
                log.warning("Issuance failed: %s", exc.detail)
                raise
            except Exception as exc:
                log.exception("Unexpected error during issuance")
                msg = f"unexpected error during issuance ({type(exc).__name__}): {exc}"
                raise IssuerError(msg) from exc

    def _run(self, csr_bytes: bytes, scope: CancelScope) -> SignResult:
        client = self._open_session(scope)
        parsed = self._parse_csr(csr_bytes)
        policy = self._fetch_policy(client)
        request = self._build_request(parsed, policy)
        serial = self._submit(client, request)
        info = self._retrieve(client, serial, scope)
        chain = self._trust_chain(client)
        return self._encode(info, chain)

    # -- steps ----------------------------------------------------------

    def _open_session(self, scope: CancelScope) -> HvcaClient:
        client = self._client_factory(self._config, scope)
        client.login()
        return client

    @staticmethod
    def _parse_csr(csr_bytes: bytes) -> ParsedCSR:
        parsed = parse_csr(csr_bytes)
        log.debug(
            "Parsed CSR: cn=%r dns=%d ip=%d key=%s",
            parsed.common_name,
            len(parsed.dns_names),
            len(parsed.ip_addresses),
            parsed.public_key_algorithm,
        )
        return parsed

    @staticmethod
    def _fetch_policy(client: HvcaClient) -> ValidationPolicy:
        return client.policy()

    def _validity(self) -> Validity:
        validity = self._settings.validity
        try:
            return build_validity(
                NotAfterPolicy(validity.not_after),
                duration_seconds=validity.duration_seconds,
            )
        except ValueError as exc:
            msg = f"invalid validity settings: {exc}"
            raise ConfigurationError(msg) from exc

    def _build_request(self, parsed: ParsedCSR, policy: ValidationPolicy) -> CertificateRequest:
        return build_request(parsed, policy, self._validity())

    @staticmethod
    def _submit(client: HvcaClient, request: CertificateRequest) -> str:
        serial = client.certificate_request(request)
        set_ca_serial(serial)
        log.info("Submitted certificate request, serial=%s", serial)
        return serial

    def _retrieve(self, client: HvcaClient, serial: str, scope: CancelScope) -> CertInfo:
        retrieve = self._settings.retrieve
        attempts = max(1, retrieve.poll_attempts)
        info = None
        for attempt in range(1, attempts + 1):
            info = client.certificate_retrieve(serial)
            if info.status == STATUS_ISSUED:
                return info
            if attempt < attempts:
                log.info(
                    "Certificate %s not issued yet (status %s), attempt %d/%d",
                    serial,
                    info.status or "unknown",
                    attempt,
                    attempts,
                )
                scope.sleep("retrieve", retrieve.poll_interval_seconds)

        msg = (
            f"certificate {serial} not issued after {attempts} attempt(s) "
            f"(status {info.status or 'unknown'})"
        )
        raise RemoteCallError(msg, step="retrieve", retryable=True)

    @staticmethod
    def _trust_chain(client: HvcaClient) -> list[x509.Certificate]:
        return client.trust_chain()

    @staticmethod
    def _encode(info: CertInfo, chain: list[x509.Certificate]) -> SignResult:
        leaf = info.certificate
        log.info(
            "HVCA issued certificate: subject=%s, chain length=%d",
            leaf.subject.rfc4514_string(),
            len(chain),
        )
        return SignResult(
            certificate_pem=encode_certificate(leaf),
            chain_pem=encode_chain(chain),
        )
