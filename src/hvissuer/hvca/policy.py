"""HVCA validation policy model.

The CA publishes one validation policy per account at
``GET /validationpolicy``.  Only the parts the issuer acts on are
modelled; unknown keys are ignored.  Example document::

    {
        "subject_dn": {
            "common_name": {"presence": "REQUIRED", "format": "^.*$"},
            "serial_number": {"presence": "FORBIDDEN", "format": ""}
        },
        "san": {
            "dns_names": {"static": false, "list": [], "mincount": 0, "maxcount": 10},
            "ip_addresses": {"static": false, "list": [], "mincount": 0, "maxcount": 0}
        },
        "public_key": {"key_type": "RSA", "allowed_lengths": [2048], "key_format": "PKCS10"},
        "signature": {
            "algorithm": {"presence": "REQUIRED", "list": ["RSA"]},
            "hash_algorithm": {"presence": "REQUIRED", "list": ["SHA-256"]}
        }
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from hvissuer.errors import RemoteCallError

_STEP = "policy"


class Presence(StrEnum):
    """Whether a request field is forbidden (absent), optional, or required."""

    FORBIDDEN = "FORBIDDEN"
    OPTIONAL = "OPTIONAL"
    REQUIRED = "REQUIRED"


class KeyFormat(StrEnum):
    PKCS10 = "PKCS10"
    JWK = "JWK"


@dataclass(frozen=True)
class FieldPolicy:
    """Presence rule for a single subject DN attribute."""

    presence: Presence
    format: str = ""


@dataclass(frozen=True)
class ListPolicy:
    """Count limits for one SAN type.

    A *static* list is CA-assigned and may not be supplied by the client.
    """

    static: bool
    min_count: int
    max_count: int


@dataclass(frozen=True)
class SubjectDNPolicy:
    common_name: FieldPolicy
    serial_number: FieldPolicy


@dataclass(frozen=True)
class SANPolicy:
    dns_names: ListPolicy
    ip_addresses: ListPolicy


@dataclass(frozen=True)
class PublicKeyPolicy:
    key_type: str
    key_format: str
    allowed_lengths: tuple[int, ...]


@dataclass(frozen=True)
class AlgorithmPolicy:
    presence: Presence
    list: tuple[str, ...]


@dataclass(frozen=True)
class SignaturePolicy:
    hash_algorithm: AlgorithmPolicy


@dataclass(frozen=True)
class ValidationPolicy:
    """The CA account's validation policy, fetched fresh for each issuance."""

    subject_dn: SubjectDNPolicy
    san: SANPolicy
    public_key: PublicKeyPolicy
    signature: SignaturePolicy
    raw: dict[str, Any] = field(repr=False, compare=False)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _malformed(detail: str) -> RemoteCallError:
    return RemoteCallError(f"CA returned a malformed validation policy: {detail}", step=_STEP)


def _section(data: dict, key: str, path: str) -> dict:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _malformed(f"'{path}{key}' is not an object")
    return value


def _presence(value: Any, path: str) -> Presence:
    if value is None:
        return Presence.FORBIDDEN
    try:
        return Presence(str(value).upper())
    except ValueError:
        raise _malformed(f"'{path}' has unknown presence {value!r}") from None


def _count(data: dict, key: str, path: str) -> int:
    value = data.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise _malformed(f"'{path}.{key}' must be a non-negative integer")
    return value


def _field(data: dict, key: str) -> FieldPolicy:
    d = _section(data, key, "subject_dn.")
    return FieldPolicy(
        presence=_presence(d.get("presence"), f"subject_dn.{key}.presence"),
        format=d.get("format", "") or "",
    )


def _list(data: dict, key: str) -> ListPolicy:
    d = _section(data, key, "san.")
    path = f"san.{key}"
    return ListPolicy(
        static=bool(d.get("static", False)),
        min_count=_count(d, "mincount", path),
        max_count=_count(d, "maxcount", path),
    )


def parse_policy(data: Any) -> ValidationPolicy:
    """Build a :class:`ValidationPolicy` from the decoded JSON document.

    Raises
    ------
    RemoteCallError
        If the document does not have the expected shape.

    """
    if not isinstance(data, dict):
        raise _malformed("document is not an object")

    subject = _section(data, "subject_dn", "")
    san = _section(data, "san", "")
    public_key = _section(data, "public_key", "")
    signature = _section(data, "signature", "")
    hash_alg = _section(signature, "hash_algorithm", "signature.")

    key_type = public_key.get("key_type")
    if not key_type:
        raise _malformed("'public_key.key_type' is missing")

    return ValidationPolicy(
        subject_dn=SubjectDNPolicy(
            common_name=_field(subject, "common_name"),
            serial_number=_field(subject, "serial_number"),
        ),
        san=SANPolicy(
            dns_names=_list(san, "dns_names"),
            ip_addresses=_list(san, "ip_addresses"),
        ),
        public_key=PublicKeyPolicy(
            key_type=str(key_type),
            key_format=str(public_key.get("key_format", "")),
            allowed_lengths=tuple(public_key.get("allowed_lengths") or ()),
        ),
        signature=SignaturePolicy(
            hash_algorithm=AlgorithmPolicy(
                presence=_presence(
                    hash_alg.get("presence"),
                    "signature.hash_algorithm.presence",
                ),
                list=tuple(str(v) for v in hash_alg.get("list") or ()),
            ),
        ),
        raw=data,
    )
