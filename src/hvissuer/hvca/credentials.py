"""mTLS credential parsing and the HVCA session configuration.

The client private key may arrive in either of two PEM encodings; the
PEM label selects the parser through :data:`_KEY_PARSERS`.  Adding an
encoding means adding one :class:`KeyEncoding` member and one parser.
"""

from __future__ import annotations

import re
import ssl
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from hvissuer.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes, PublicKeyTypes

_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN ([A-Z0-9 ]+)-----\r?\n"
    rb"[\s\S]*?"
    rb"-----END \1-----",
)

_CERTIFICATE_LABEL = "CERTIFICATE"


class KeyEncoding(StrEnum):
    """Recognised PEM encodings of the mTLS private key."""

    PKCS1 = "RSA PRIVATE KEY"
    PKCS8 = "PRIVATE KEY"


@dataclass(frozen=True)
class PemBlock:
    label: str
    data: bytes


def decode_pem(data: bytes) -> PemBlock | None:
    """Return the first PEM block in *data*, or ``None`` if there is none."""
    match = _PEM_BLOCK_RE.search(data or b"")
    if match is None:
        return None
    return PemBlock(label=match.group(1).decode("ascii"), data=match.group(0))


# ---------------------------------------------------------------------------
# Key parsers
# ---------------------------------------------------------------------------


def _parse_pkcs1(block: PemBlock) -> PrivateKeyTypes:
    key = serialization.load_pem_private_key(block.data, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        msg = "PKCS#1 private key is not an RSA key"
        raise ValueError(msg)
    return key


def _parse_pkcs8(block: PemBlock) -> PrivateKeyTypes:
    return serialization.load_pem_private_key(block.data, password=None)


_KEY_PARSERS: dict[KeyEncoding, Callable[[PemBlock], PrivateKeyTypes]] = {
    KeyEncoding.PKCS1: _parse_pkcs1,
    KeyEncoding.PKCS8: _parse_pkcs8,
}


def load_client_certificate(data: bytes) -> x509.Certificate:
    """Parse the mTLS client certificate from PEM.

    Raises
    ------
    ConfigurationError
        If no PEM certificate block can be parsed.

    """
    block = decode_pem(data)
    if block is None or block.label != _CERTIFICATE_LABEL:
        msg = "unable to decode the mTLS certificate PEM block"
        raise ConfigurationError(msg)
    try:
        return x509.load_pem_x509_certificate(block.data)
    except ValueError as exc:
        msg = f"unable to parse the mTLS certificate: {exc}"
        raise ConfigurationError(msg) from exc


def load_client_key(data: bytes) -> tuple[PrivateKeyTypes, KeyEncoding]:
    """Parse the mTLS private key, dispatching on its PEM label.

    Raises
    ------
    ConfigurationError
        If the block is missing, its label is not a :class:`KeyEncoding`,
        or the key bytes are invalid.

    """
    block = decode_pem(data)
    if block is None:
        msg = "unable to decode the mTLS private key PEM block"
        raise ConfigurationError(msg)
    try:
        encoding = KeyEncoding(block.label)
    except ValueError:
        msg = "unable to determine the mTLS private key type"
        raise ConfigurationError(msg) from None

    try:
        key = _KEY_PARSERS[encoding](block)
    except (ValueError, TypeError) as exc:
        msg = f"unable to parse the mTLS private key ({encoding.name}): {exc}"
        raise ConfigurationError(msg) from exc
    return key, encoding


# ---------------------------------------------------------------------------
# Session configuration
# ---------------------------------------------------------------------------


def _spki(key: PublicKeyTypes) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _check_trust_bundle(path: str) -> None:
    try:
        ssl.create_default_context().load_verify_locations(path)
    except (ssl.SSLError, OSError) as exc:
        msg = f"unable to load the CA trust bundle '{path}': {exc}"
        raise ConfigurationError(msg) from exc


@dataclass(frozen=True)
class HvcaConfig:
    """Everything needed to open an authenticated session with the CA."""

    url: str
    api_key: str
    api_secret: str
    tls_cert: x509.Certificate
    tls_key: PrivateKeyTypes
    key_encoding: KeyEncoding
    timeout_seconds: float = 30.0
    ca_cert_path: str | None = None

    def validate(self) -> None:
        """Check that the configuration is complete and self-consistent.

        Raises
        ------
        ConfigurationError
            Describing the first problem found.

        """
        if not self.url:
            msg = "no HVCA URL specified"
            raise ConfigurationError(msg)
        if not self.url.lower().startswith("https://"):
            msg = f"HVCA URL must use https: {self.url}"
            raise ConfigurationError(msg)
        if not self.api_key:
            msg = "no API key specified"
            raise ConfigurationError(msg)
        if not self.api_secret:
            msg = "no API secret specified"
            raise ConfigurationError(msg)
        if self.tls_cert is None:
            msg = "no mTLS certificate specified"
            raise ConfigurationError(msg)
        if self.tls_key is None:
            msg = "no mTLS private key specified"
            raise ConfigurationError(msg)
        if self.key_encoding is KeyEncoding.PKCS1 and not isinstance(
            self.tls_key,
            rsa.RSAPrivateKey,
        ):
            msg = "mTLS private key does not match its declared PKCS#1 encoding"
            raise ConfigurationError(msg)
        if _spki(self.tls_cert.public_key()) != _spki(self.tls_key.public_key()):
            msg = "mTLS private key does not match the mTLS certificate"
            raise ConfigurationError(msg)
        if self.timeout_seconds <= 0:
            msg = f"timeout must be positive (got {self.timeout_seconds})"
            raise ConfigurationError(msg)
        if self.ca_cert_path:
            _check_trust_bundle(self.ca_cert_path)

    def __repr__(self) -> str:
        return f"<HvcaConfig url={self.url}>"
