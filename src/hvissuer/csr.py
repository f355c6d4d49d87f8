"""CSR parsing.

PEM is the primary input encoding (``CERTIFICATE REQUEST``, and the
legacy ``NEW CERTIFICATE REQUEST`` label).  Input without a PEM header
is parsed as DER.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from hvissuer.errors import CSRParseError

_PEM_MARKER = b"-----BEGIN "
_LEGACY_LABEL = b"NEW CERTIFICATE REQUEST"


@dataclass(frozen=True)
class ParsedCSR:
    """Immutable view of the CSR fields the issuance policy looks at."""

    csr: x509.CertificateSigningRequest
    pem: str
    common_name: str
    serial_number: str
    dns_names: tuple[str, ...]
    ip_addresses: tuple[ipaddress.IPv4Address | ipaddress.IPv6Address, ...]
    public_key_algorithm: str


def public_key_algorithm_name(csr: x509.CertificateSigningRequest) -> str:
    """Return the CA's name for the CSR key algorithm.

    Example results: ``'RSA'``, ``'ECDSA'``, ``'Ed25519'``.
    """
    try:
        pub_key = csr.public_key()
    except (ValueError, TypeError):
        return "UNKNOWN"
    if isinstance(pub_key, rsa.RSAPublicKey):
        return "RSA"
    if isinstance(pub_key, ec.EllipticCurvePublicKey):
        return "ECDSA"
    if isinstance(pub_key, ed25519.Ed25519PublicKey):
        return "Ed25519"
    if isinstance(pub_key, ed448.Ed448PublicKey):
        return "Ed448"
    if isinstance(pub_key, dsa.DSAPublicKey):
        return "DSA"
    return "UNKNOWN"


def _first_subject_value(csr: x509.CertificateSigningRequest, oid: x509.ObjectIdentifier) -> str:
    attrs = csr.subject.get_attributes_for_oid(oid)
    if not attrs:
        return ""
    return str(attrs[0].value)


def _load(data: bytes) -> x509.CertificateSigningRequest:
    stripped = data.strip()
    if stripped.startswith(_PEM_MARKER):
        if _LEGACY_LABEL in stripped:
            stripped = stripped.replace(_LEGACY_LABEL, b"CERTIFICATE REQUEST")
        return x509.load_pem_x509_csr(stripped)
    return x509.load_der_x509_csr(data)


def parse_csr(data: bytes) -> ParsedCSR:
    """Parse PEM- or DER-encoded CSR bytes.

    Raises
    ------
    CSRParseError
        If *data* is empty, is not a well-formed PKCS#10 request, or
        its self-signature does not verify.

    """
    if not data or not data.strip():
        msg = "CSR is empty"
        raise CSRParseError(msg)

    try:
        csr = _load(data)
    except ValueError as exc:
        msg = f"Failed to parse CSR: {exc}"
        raise CSRParseError(msg) from exc
    if not csr.is_signature_valid:
        msg = "CSR signature is invalid"
        raise CSRParseError(msg)

    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        dns_names = tuple(san.get_values_for_type(x509.DNSName))
        ip_addresses = tuple(san.get_values_for_type(x509.IPAddress))
    except x509.ExtensionNotFound:
        dns_names = ()
        ip_addresses = ()
    except ValueError as exc:
        msg = f"Failed to parse CSR extensions: {exc}"
        raise CSRParseError(msg) from exc

    return ParsedCSR(
        csr=csr,
        pem=csr.public_bytes(Encoding.PEM).decode("ascii"),
        common_name=_first_subject_value(csr, NameOID.COMMON_NAME),
        serial_number=_first_subject_value(csr, NameOID.SERIAL_NUMBER),
        dns_names=dns_names,
        ip_addresses=ip_addresses,
        public_key_algorithm=public_key_algorithm_name(csr),
    )
