"""Root conftest for the hvissuer test suite."""

from __future__ import annotations

import ipaddress
import json
import sys
import threading
import urllib.error
import urllib.parse
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from io import BytesIO
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from cryptography import x509  # noqa: E402
from cryptography.hazmat.primitives import hashes, serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa  # noqa: E402
from cryptography.x509.oid import NameOID  # noqa: E402

HVCA_URL = "https://hvca.example.com/v2"


# ---------------------------------------------------------------------------
# Key and certificate helpers
# ---------------------------------------------------------------------------


def make_csr(
    key,
    *,
    common_name: str | None = "www.example.com",
    serial_number: str | None = None,
    dns_names: list[str] | None = None,
    ip_addresses: list[str] | None = None,
) -> x509.CertificateSigningRequest:
    """Build and sign a CSR with the given subject and SANs."""
    attrs = []
    if common_name:
        attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    if serial_number:
        attrs.append(x509.NameAttribute(NameOID.SERIAL_NUMBER, serial_number))
    builder = x509.CertificateSigningRequestBuilder().subject_name(x509.Name(attrs))

    general_names: list[x509.GeneralName] = [x509.DNSName(n) for n in dns_names or []]
    general_names += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses or []]
    if general_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName(general_names),
            critical=False,
        )

    algorithm = None if isinstance(key, ed25519.Ed25519PrivateKey) else hashes.SHA256()
    return builder.sign(key, algorithm)


def make_cert(key, common_name: str) -> x509.Certificate:
    """Build a self-signed certificate for *key*."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(UTC)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )


def cert_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def key_pem(key, fmt=serialization.PrivateFormat.PKCS8) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        fmt,
        serialization.NoEncryption(),
    )


def policy_document(**overrides) -> dict:
    """Return an HVCA validation policy document for an RSA account."""
    doc = {
        "subject_dn": {
            "common_name": {"presence": "REQUIRED", "format": "^.*$"},
            "serial_number": {"presence": "FORBIDDEN", "format": ""},
        },
        "san": {
            "dns_names": {"static": False, "list": [], "mincount": 0, "maxcount": 10},
            "ip_addresses": {"static": False, "list": [], "mincount": 0, "maxcount": 0},
        },
        "public_key": {
            "key_type": "RSA",
            "allowed_lengths": [2048, 4096],
            "key_format": "PKCS10",
        },
        "signature": {
            "algorithm": {"presence": "REQUIRED", "list": ["RSA"]},
            "hash_algorithm": {"presence": "REQUIRED", "list": ["SHA-256", "SHA-384"]},
        },
    }
    for section, value in overrides.items():
        if isinstance(value, dict) and isinstance(doc.get(section), dict):
            doc[section].update(value)
        else:
            doc[section] = value
    return doc


# ---------------------------------------------------------------------------
# Fake HVCA endpoint
# ---------------------------------------------------------------------------


@dataclass
class RecordedRequest:
    method: str
    path: str
    body: dict | list | None
    headers: dict[str, str]


class _FakeResponse:
    def __init__(self, status: int, body: bytes, headers: dict[str, str] | None = None) -> None:
        self.status = status
        self.headers = headers or {}
        self._body = body
        self.closed = False

    def read(self) -> bytes:
        return self._body

    def close(self) -> None:
        self.closed = True


class FakeHvca:
    """In-memory HVCA API, usable as the ``opener`` of an HvcaClient."""

    def __init__(self, *, policy: dict, leaf: x509.Certificate, chain: list[x509.Certificate]):
        self.policy = policy
        self.leaf = leaf
        self.chain = chain
        self.serial = "7A3F01"
        self.statuses: list[str] = ["ISSUED"]
        self.failures: dict[tuple[str, str], tuple[int, str]] = {}
        self.blockers: dict[tuple[str, str], threading.Event] = {}
        self.entered = threading.Event()
        self.requests: list[RecordedRequest] = []
        self._prefix = urllib.parse.urlsplit(HVCA_URL).path

    def paths(self) -> list[str]:
        return [f"{r.method} {r.path}" for r in self.requests]

    def _json(self, status: int, data, headers: dict[str, str] | None = None) -> _FakeResponse:
        return _FakeResponse(status, json.dumps(data).encode("utf-8"), headers)

    def open(self, req, timeout=None):  # noqa: ARG002
        path = urllib.parse.urlsplit(req.full_url).path.removeprefix(self._prefix)
        method = req.get_method()
        body = json.loads(req.data) if req.data else None
        self.requests.append(RecordedRequest(method, path, body, dict(req.header_items())))

        key = (method, path)
        if key in self.blockers:
            self.entered.set()
            self.blockers[key].wait(timeout=5)
        if key in self.failures:
            code, text = self.failures[key]
            raise urllib.error.HTTPError(req.full_url, code, "error", {}, BytesIO(text.encode()))

        if key == ("POST", "/login"):
            return self._json(200, {"access_token": "token-123", "token_type": "bearer"})
        if key == ("GET", "/validationpolicy"):
            return self._json(200, self.policy)
        if key == ("POST", "/certificates"):
            location = f"{HVCA_URL}/certificates/{self.serial}"
            return _FakeResponse(201, b"", {"Location": location})
        if method == "GET" and path == f"/certificates/{self.serial}":
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            data = {"status": status, "updated_at": 1700000000}
            if status == "ISSUED":
                data["certificate"] = cert_pem(self.leaf)
            return self._json(200, data)
        if key == ("GET", "/trustchain"):
            return self._json(200, [cert_pem(c) for c in self.chain])
        raise urllib.error.HTTPError(req.full_url, 404, "not found", {}, BytesIO(b"{}"))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def client_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def client_cert(client_key):
    return make_cert(client_key, "hvca-client")


@pytest.fixture(scope="session")
def ca_chain(ec_key):
    return [make_cert(ec_key, "Intermediate CA"), make_cert(ec_key, "Root CA")]


@pytest.fixture()
def secret_data(client_cert, client_key) -> dict[str, bytes]:
    """Credentials secret with a PKCS#1 client key."""
    return {
        "apikey": b"key-abc\n",
        "apisecret": b"secret-xyz\n",
        "cert": cert_pem(client_cert).encode("ascii"),
        "certkey": key_pem(client_key, serialization.PrivateFormat.TraditionalOpenSSL),
    }


@pytest.fixture()
def hvca_config(secret_data):
    from hvissuer.signer import IssuerSpec, build_hvca_config

    return build_hvca_config(IssuerSpec(url=HVCA_URL), secret_data)


@pytest.fixture()
def fake_hvca(rsa_key, ca_chain) -> FakeHvca:
    leaf = make_cert(rsa_key, "www.example.com")
    return FakeHvca(policy=policy_document(), leaf=leaf, chain=ca_chain)


@pytest.fixture()
def minimal_config_data() -> dict:
    """Return a dict containing the minimum required config fields."""
    return {"issuer": {"url": HVCA_URL}}


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# ConfigKit singleton cleanup; autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the IssuerConfig singleton before and after every test."""
    from hvissuer.config.issuer_config import IssuerConfig

    IssuerConfig.reset()
    yield
    IssuerConfig.reset()
