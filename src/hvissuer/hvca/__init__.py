"""HVCA REST API: session credentials, wire types and the HTTP client."""

from hvissuer.hvca.client import STATUS_ISSUED, CertInfo, HvcaClient, build_ssl_context
from hvissuer.hvca.credentials import (
    HvcaConfig,
    KeyEncoding,
    load_client_certificate,
    load_client_key,
)
from hvissuer.hvca.policy import (
    KeyFormat,
    Presence,
    ValidationPolicy,
    parse_policy,
)
from hvissuer.hvca.request import SAN, CertificateRequest, Signature, SubjectDN, Validity

__all__ = [
    "SAN",
    "STATUS_ISSUED",
    "CertInfo",
    "CertificateRequest",
    "HvcaClient",
    "HvcaConfig",
    "KeyEncoding",
    "KeyFormat",
    "Presence",
    "Signature",
    "SubjectDN",
    "ValidationPolicy",
    "Validity",
    "build_ssl_context",
    "load_client_certificate",
    "load_client_key",
    "parse_policy",
]
