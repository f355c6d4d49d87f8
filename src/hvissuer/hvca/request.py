"""Outbound HVCA certificate request.

Built by :func:`hvissuer.projection.build_request` and serialised with
:meth:`CertificateRequest.to_json`.  Only populated fields are emitted,
so nothing reaches the CA that the validation policy did not allow.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class Validity:
    """Requested validity window.

    ``not_after`` of ``None`` leaves the field out of the request;
    ``datetime`` at the epoch is the "CA assigns the expiry" sentinel.
    """

    not_before: datetime
    not_after: datetime | None = None


@dataclass
class SubjectDN:
    common_name: str = ""
    serial_number: str = ""


@dataclass
class SAN:
    dns_names: list[str] = field(default_factory=list)
    ip_addresses: list[ipaddress.IPv4Address | ipaddress.IPv6Address] = field(
        default_factory=list,
    )


@dataclass
class Signature:
    hash_algorithm: str | None = None


@dataclass
class CertificateRequest:
    """A certificate request in the shape the CA policy permits."""

    csr_pem: str
    validity: Validity
    subject: SubjectDN = field(default_factory=SubjectDN)
    san: SAN = field(default_factory=SAN)
    signature: Signature = field(default_factory=Signature)

    def to_json(self) -> dict[str, Any]:
        """Return the JSON body for ``POST /certificates``."""
        validity: dict[str, int] = {"not_before": int(self.validity.not_before.timestamp())}
        if self.validity.not_after is not None:
            validity["not_after"] = int(self.validity.not_after.timestamp())

        body: dict[str, Any] = {
            "validity": validity,
            "public_key": self.csr_pem,
        }

        subject: dict[str, str] = {}
        if self.subject.common_name:
            subject["common_name"] = self.subject.common_name
        if self.subject.serial_number:
            subject["serial_number"] = self.subject.serial_number
        if subject:
            body["subject_dn"] = subject

        san: dict[str, list[str]] = {}
        if self.san.dns_names:
            san["dns_names"] = list(self.san.dns_names)
        if self.san.ip_addresses:
            san["ip_addresses"] = [str(ip) for ip in self.san.ip_addresses]
        if san:
            body["san"] = san

        if self.signature.hash_algorithm:
            body["signature"] = {"hash_algorithm": self.signature.hash_algorithm}

        return body
