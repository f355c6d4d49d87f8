r"""HVCA REST client over mutual TLS.

One client is opened per issuance call and lives inside that call's
:class:`~hvissuer.cancel.CancelScope`.  Every request runs through
``scope.call`` so the caller can abandon it promptly.

API contract
------------
All paths are relative to the configured ``url``.

**Login** -- ``POST /login``::

    {"api_key": "...", "api_secret": "..."}  ->  {"access_token": "..."}

The token is sent as ``Authorization: Bearer <token>`` on every other
call.

**Policy** -- ``GET /validationpolicy`` returns the account's
validation policy (see :mod:`hvissuer.hvca.policy`).

**Submit** -- ``POST /certificates`` with the request JSON returns
``201 Created``; the ``Location`` header ends in the certificate serial.

**Retrieve** -- ``GET /certificates/{serial}``::

    {"status": "ISSUED", "certificate": "-----BEGIN CERTIFICATE-----\\n...",
     "updated_at": 1700000000}

**Trust chain** -- ``GET /trustchain`` returns a JSON array of PEM
certificates, issuing CA first.
"""

from __future__ import annotations

import contextlib
import json
import logging
import ssl
import tempfile
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cryptography.hazmat.primitives import serialization

from hvissuer.cert_utils import load_certificate
from hvissuer.errors import ConfigurationError, RemoteCallError
from hvissuer.hvca.policy import ValidationPolicy, parse_policy
from hvissuer.logging.sanitize import sanitize_for_logs

if TYPE_CHECKING:
    from cryptography import x509

    from hvissuer.cancel import CancelScope
    from hvissuer.hvca.credentials import HvcaConfig
    from hvissuer.hvca.request import CertificateRequest

log = logging.getLogger(__name__)

_HTTP_OK = 200
_HTTP_CREATED = 201
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR = 500
_AUTH_STATUSES = frozenset({401, 403})

STATUS_ISSUED = "ISSUED"


@dataclass(frozen=True)
class CertInfo:
    """A certificate as reported by ``GET /certificates/{serial}``."""

    status: str
    certificate: x509.Certificate | None
    updated_at: int | None = None


@dataclass(frozen=True)
class _Response:
    status: int
    headers: dict[str, str]
    body: bytes


def build_ssl_context(config: HvcaConfig) -> ssl.SSLContext:
    """Build an SSL context presenting the configured client certificate.

    :meth:`ssl.SSLContext.load_cert_chain` only reads files, so the
    credentials are written to a private temporary directory that is
    removed as soon as they are loaded.

    Raises
    ------
    ConfigurationError
        If the trust bundle or the client credentials cannot be loaded.

    """
    try:
        return _load_ssl_context(config)
    except (ssl.SSLError, OSError) as exc:
        msg = f"unable to set up TLS for {config.url}: {exc}"
        raise ConfigurationError(msg) from exc


def _load_ssl_context(config: HvcaConfig) -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    if config.ca_cert_path:
        ctx.load_verify_locations(config.ca_cert_path)

    with tempfile.TemporaryDirectory(prefix="hvissuer-") as tmp:
        cert_path = Path(tmp) / "client.crt"
        key_path = Path(tmp) / "client.key"
        cert_path.write_bytes(config.tls_cert.public_bytes(serialization.Encoding.PEM))
        key_path.write_bytes(
            config.tls_key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ),
        )
        key_path.chmod(0o600)
        ctx.load_cert_chain(str(cert_path), str(key_path))
    return ctx


class HvcaClient:
    """Authenticated session with the HVCA API.

    Parameters
    ----------
    config:
        Validated session configuration.
    scope:
        The cancel scope governing the current call.
    opener:
        Pre-built URL opener; built from *config* when omitted.

    """

    def __init__(
        self,
        config: HvcaConfig,
        scope: CancelScope,
        *,
        opener: urllib.request.OpenerDirector | None = None,
    ) -> None:
        self._config = config
        self._scope = scope
        self._opener = opener
        self._base_url = config.url.rstrip("/")
        self._token: str | None = None

    def _get_opener(self) -> urllib.request.OpenerDirector:
        if self._opener is None:
            handler = urllib.request.HTTPSHandler(context=build_ssl_context(self._config))
            self._opener = urllib.request.build_opener(handler)
        return self._opener

    # -- transport ------------------------------------------------------

    def _timeout(self) -> float:
        remaining = self._scope.remaining()
        if remaining is None:
            return self._config.timeout_seconds
        return max(0.001, min(self._config.timeout_seconds, remaining))

    def _build_request(
        self,
        method: str,
        path: str,
        payload: dict | None,
    ) -> urllib.request.Request:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(
            f"{self._base_url}{path}",
            data=data,
            method=method,
            headers={"Accept": "application/json"},
        )
        if data is not None:
            req.add_header("Content-Type", "application/json;charset=utf-8")
        if self._token is not None:
            req.add_header("Authorization", f"Bearer {self._token}")
        return req

    def _do_single_request(
        self,
        step: str,
        method: str,
        path: str,
        payload: dict | None,
    ) -> _Response:
        req = self._build_request(method, path, payload)
        url = req.full_url
        opener = self._get_opener()

        try:
            resp = opener.open(req, timeout=self._timeout())
        except urllib.error.HTTPError as exc:
            body = ""
            with contextlib.suppress(Exception):
                body = exc.read().decode("utf-8", errors="replace")[:500]
            if exc.code in _AUTH_STATUSES:
                msg = f"HVCA rejected credentials during {step} (HTTP {exc.code}): {body}"
            else:
                msg = f"HVCA returned HTTP {exc.code} during {step}: {body}"
            raise RemoteCallError(
                msg,
                step=step,
                status=exc.code,
                retryable=exc.code >= _HTTP_SERVER_ERROR or exc.code == _HTTP_TOO_MANY_REQUESTS,
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            msg = f"Failed to reach HVCA at {url} during {step}: {exc}"
            raise RemoteCallError(msg, step=step, retryable=True) from exc

        try:
            body = resp.read()
            headers = {k.lower(): v for k, v in resp.headers.items()}
            status = resp.status
        finally:
            resp.close()
        return _Response(status=status, headers=headers, body=body)

    def _request(
        self,
        step: str,
        method: str,
        path: str,
        payload: dict | None = None,
        *,
        expect: int = _HTTP_OK,
    ) -> _Response:
        if payload is not None:
            log.debug("HVCA %s %s payload=%s", method, path, sanitize_for_logs(payload))
        else:
            log.debug("HVCA %s %s", method, path)
        resp = self._scope.call(step, self._do_single_request, step, method, path, payload)
        if resp.status != expect:
            msg = f"HVCA returned unexpected HTTP {resp.status} during {step}"
            raise RemoteCallError(
                msg,
                step=step,
                status=resp.status,
                retryable=resp.status >= _HTTP_SERVER_ERROR,
            )
        return resp

    @staticmethod
    def _json(resp: _Response, step: str) -> Any:  # noqa: ANN401
        try:
            return json.loads(resp.body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            msg = f"HVCA returned invalid JSON during {step}: {exc}"
            raise RemoteCallError(msg, step=step) from exc

    # -- API ------------------------------------------------------------

    def login(self) -> None:
        """Exchange the API key and secret for a bearer token."""
        self._token = None
        resp = self._request(
            "login",
            "POST",
            "/login",
            {"api_key": self._config.api_key, "api_secret": self._config.api_secret},
        )
        data = self._json(resp, "login")
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            msg = "HVCA login response missing 'access_token'"
            raise RemoteCallError(msg, step="login")
        self._token = token
        log.debug("HVCA login succeeded for %s", self._base_url)

    def policy(self) -> ValidationPolicy:
        """Fetch the account validation policy."""
        resp = self._request("policy", "GET", "/validationpolicy")
        return parse_policy(self._json(resp, "policy"))

    def certificate_request(self, request: CertificateRequest) -> str:
        """Submit *request* and return the serial assigned by the CA."""
        resp = self._request(
            "submit",
            "POST",
            "/certificates",
            request.to_json(),
            expect=_HTTP_CREATED,
        )
        location = resp.headers.get("location", "")
        serial = urllib.parse.urlsplit(location).path.rstrip("/").rpartition("/")[2]
        if not serial:
            msg = "HVCA submit response missing certificate location"
            raise RemoteCallError(msg, step="submit", status=resp.status)
        return serial

    def certificate_retrieve(self, serial: str) -> CertInfo:
        """Fetch the certificate with the given serial."""
        quoted = urllib.parse.quote(serial, safe="")
        resp = self._request("retrieve", "GET", f"/certificates/{quoted}")
        data = self._json(resp, "retrieve")
        if not isinstance(data, dict):
            msg = "HVCA certificate response is not an object"
            raise RemoteCallError(msg, step="retrieve")

        status = str(data.get("status", ""))
        pem = data.get("certificate")
        certificate = load_certificate(pem, step="retrieve") if pem else None
        if status == STATUS_ISSUED and certificate is None:
            msg = f"HVCA reports certificate {serial} issued but returned no certificate"
            raise RemoteCallError(msg, step="retrieve")
        return CertInfo(
            status=status,
            certificate=certificate,
            updated_at=data.get("updated_at"),
        )

    def trust_chain(self) -> list[x509.Certificate]:
        """Fetch the CA trust chain, in the order the CA returns it."""
        resp = self._request("trust_chain", "GET", "/trustchain")
        data = self._json(resp, "trust_chain")
        if not isinstance(data, list):
            msg = "HVCA trust chain response is not a list"
            raise RemoteCallError(msg, step="trust_chain")
        return [load_certificate(pem, step="trust_chain") for pem in data]
