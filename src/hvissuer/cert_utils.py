"""PEM helpers for certificates returned by the CA.

Certificates are re-encoded from their DER bytes so the PEM output
decodes back to exactly what the CA issued.
"""

from __future__ import annotations

from collections.abc import Iterable

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from hvissuer.errors import RemoteCallError


def encode_certificate(cert: x509.Certificate) -> bytes:
    """Return the PEM block for *cert*."""
    return cert.public_bytes(Encoding.PEM)


def encode_chain(chain: Iterable[x509.Certificate]) -> bytes:
    """Concatenate PEM blocks for every certificate, preserving order."""
    return b"".join(encode_certificate(cert) for cert in chain)


def load_certificate(pem: str, *, step: str) -> x509.Certificate:
    """Parse a PEM certificate received from the CA.

    Raises
    ------
    RemoteCallError
        If the CA returned something that is not a certificate.

    """
    if not isinstance(pem, str):
        msg = f"CA returned a certificate of type {type(pem).__name__}, expected PEM text"
        raise RemoteCallError(msg, step=step)
    try:
        return x509.load_pem_x509_certificate(pem.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        msg = f"CA returned an unparseable certificate: {exc}"
        raise RemoteCallError(msg, step=step) from exc
