"""Project CSR fields onto an HVCA certificate request.

Each step takes the parsed CSR, the CA validation policy and the request
under construction, and either fills in the fields the policy allows or
raises.  :func:`build_request` runs them in order and stops at the first
failure.  The SAN minimum check runs after both SAN steps so that it
sees the post-population counts (a common-name backfill can satisfy a
DNS minimum).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from hvissuer.errors import PolicyValidationError, UnsupportedPolicyError
from hvissuer.hvca.policy import KeyFormat, Presence
from hvissuer.hvca.request import CertificateRequest, Validity

if TYPE_CHECKING:
    from collections.abc import Callable

    from hvissuer.csr import ParsedCSR
    from hvissuer.hvca.policy import FieldPolicy, ListPolicy, ValidationPolicy

log = logging.getLogger(__name__)

EPOCH = datetime.fromtimestamp(0, tz=UTC)


class NotAfterPolicy(StrEnum):
    """How the requested ``not_after`` is filled in.

    ``sentinel`` sends the epoch and lets the CA assign the expiry,
    ``omit`` leaves the field out, ``duration`` asks for a fixed lifetime.
    """

    SENTINEL = "sentinel"
    OMIT = "omit"
    DURATION = "duration"


def build_validity(
    not_after: NotAfterPolicy,
    *,
    duration_seconds: int | None = None,
    now: datetime | None = None,
) -> Validity:
    """Return the validity window for a new request, starting *now*."""
    start = now or datetime.now(UTC)
    if not_after is NotAfterPolicy.SENTINEL:
        return Validity(not_before=start, not_after=EPOCH)
    if not_after is NotAfterPolicy.OMIT:
        return Validity(not_before=start, not_after=None)
    if not duration_seconds or duration_seconds <= 0:
        msg = "validity duration must be a positive number of seconds"
        raise ValueError(msg)
    return Validity(not_before=start, not_after=start + timedelta(seconds=duration_seconds))


# ---------------------------------------------------------------------------
# Subject DN
# ---------------------------------------------------------------------------


def _project_field(value: str, rule: FieldPolicy, field: str, label: str) -> str:
    if rule.presence is Presence.REQUIRED:
        if not value:
            msg = f"validation policy requires subject {label}, but CSR did not contain one"
            raise PolicyValidationError(msg, field=field)
        return value
    if rule.presence is Presence.OPTIONAL:
        return value
    return ""


def project_common_name(
    parsed: ParsedCSR,
    policy: ValidationPolicy,
    request: CertificateRequest,
) -> None:
    request.subject.common_name = _project_field(
        parsed.common_name,
        policy.subject_dn.common_name,
        "subject_dn.common_name",
        "common name",
    )


def project_serial_number(
    parsed: ParsedCSR,
    policy: ValidationPolicy,
    request: CertificateRequest,
) -> None:
    request.subject.serial_number = _project_field(
        parsed.serial_number,
        policy.subject_dn.serial_number,
        "subject_dn.serial_number",
        "serial number",
    )


# ---------------------------------------------------------------------------
# SANs
# ---------------------------------------------------------------------------


def _client_suppliable(rule: ListPolicy) -> bool:
    return not rule.static and rule.max_count > 0


def project_dns_names(
    parsed: ParsedCSR,
    policy: ValidationPolicy,
    request: CertificateRequest,
) -> None:
    """Copy DNS SANs, then backfill the common name if there is room.

    Names are copied only when the CSR has fewer than ``max_count``; the
    common name is appended under the same condition.  A CSR with too
    many names is passed through without its names rather than truncated.
    """
    rule = policy.san.dns_names
    if not _client_suppliable(rule):
        return

    has_room = len(parsed.dns_names) < rule.max_count
    if has_room:
        request.san.dns_names.extend(parsed.dns_names)

    common_name = request.subject.common_name
    if common_name and has_room and common_name not in request.san.dns_names:
        request.san.dns_names.append(common_name)


def project_ip_addresses(
    parsed: ParsedCSR,
    policy: ValidationPolicy,
    request: CertificateRequest,
) -> None:
    rule = policy.san.ip_addresses
    if not _client_suppliable(rule):
        return
    if len(parsed.ip_addresses) < rule.max_count:
        request.san.ip_addresses.extend(parsed.ip_addresses)


def check_san_counts(
    parsed: ParsedCSR,  # noqa: ARG001
    policy: ValidationPolicy,
    request: CertificateRequest,
) -> None:
    dns_min = policy.san.dns_names.min_count
    ip_min = policy.san.ip_addresses.min_count
    dns_count = len(request.san.dns_names)
    ip_count = len(request.san.ip_addresses)
    if dns_min > dns_count or ip_min > ip_count:
        field = "san.dns_names" if dns_min > dns_count else "san.ip_addresses"
        msg = (
            "validation policy requires additional SANs not present in the provided CSR "
            f"(dns_names: {dns_count}/{dns_min}, ip_addresses: {ip_count}/{ip_min})"
        )
        raise PolicyValidationError(
            msg,
            field=field,
            expected=str(dns_min if field == "san.dns_names" else ip_min),
            actual=str(dns_count if field == "san.dns_names" else ip_count),
        )


# ---------------------------------------------------------------------------
# Public key and signature
# ---------------------------------------------------------------------------


def check_key_type(
    parsed: ParsedCSR,
    policy: ValidationPolicy,
    request: CertificateRequest,  # noqa: ARG001
) -> None:
    expected = policy.public_key.key_type
    actual = parsed.public_key_algorithm
    if expected != actual:
        msg = (
            "CSR public key type doesn't match the account public key type: "
            f"CSR - {actual}, CA - {expected}"
        )
        raise PolicyValidationError(
            msg,
            field="public_key.key_type",
            expected=expected,
            actual=actual,
        )


def check_key_format(
    parsed: ParsedCSR,  # noqa: ARG001
    policy: ValidationPolicy,
    request: CertificateRequest,  # noqa: ARG001
) -> None:
    if policy.public_key.key_format != KeyFormat.PKCS10:
        msg = (
            "CA account does not accept the PKCS10 key format "
            f"(requires {policy.public_key.key_format or 'unspecified'}); "
            "update the account configuration"
        )
        raise UnsupportedPolicyError(msg)


def select_hash_algorithm(
    parsed: ParsedCSR,  # noqa: ARG001
    policy: ValidationPolicy,
    request: CertificateRequest,
) -> None:
    """Use the first approved hash algorithm when the policy requires one."""
    rule = policy.signature.hash_algorithm
    if rule.presence is not Presence.REQUIRED:
        return
    if not rule.list:
        msg = "validation policy requires a signature hash algorithm but lists none"
        raise PolicyValidationError(msg, field="signature.hash_algorithm")
    request.signature.hash_algorithm = rule.list[0]


PROJECTION_STEPS: tuple[Callable[[ParsedCSR, ValidationPolicy, CertificateRequest], None], ...] = (
    project_common_name,
    project_serial_number,
    project_dns_names,
    project_ip_addresses,
    check_san_counts,
    check_key_type,
    check_key_format,
    select_hash_algorithm,
)


def build_request(
    parsed: ParsedCSR,
    policy: ValidationPolicy,
    validity: Validity,
) -> CertificateRequest:
    """Validate *parsed* against *policy* and build the outbound request.

    Raises
    ------
    PolicyValidationError
        If the CSR does not satisfy the policy.
    UnsupportedPolicyError
        If the policy requires a key format this issuer never produces.

    """
    request = CertificateRequest(csr_pem=parsed.pem, validity=validity)
    for step in PROJECTION_STEPS:
        step(parsed, policy, request)
    log.debug(
        "Built certificate request: cn=%r dns=%d ip=%d hash=%s",
        request.subject.common_name,
        len(request.san.dns_names),
        len(request.san.ip_addresses),
        request.signature.hash_algorithm,
    )
    return request
