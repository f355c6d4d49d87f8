"""Error taxonomy for the issuer.

Every failure surfaced by the bootstrapper or the issuance orchestrator
is an :class:`IssuerError`.  The subclasses map to the four kinds of
failure a caller has to distinguish:

- :class:`ConfigurationError` -- bad credentials, unknown key encoding,
  a CA account policy this issuer cannot satisfy.
- :class:`CSRParseError` -- the CSR bytes could not be decoded.
- :class:`PolicyValidationError` -- the CSR does not satisfy the CA's
  validation policy.
- :class:`RemoteCallError` -- a call to the CA failed (network, auth,
  CA-side rejection, cancellation).

Errors are raised fresh for every call and never retried here; the
``retryable`` flag is a hint for the reconciliation loop.
"""

from __future__ import annotations


class IssuerError(Exception):
    """Base class for all issuer failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and the operation may be retried
        by the caller.

    """

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class ConfigurationError(IssuerError):
    """Raised when issuer configuration or secret material is unusable."""


class UnsupportedPolicyError(ConfigurationError):
    """Raised when the CA account policy requires something we never produce."""


class CSRParseError(IssuerError):
    """Raised when the supplied CSR bytes cannot be parsed."""


class PolicyValidationError(IssuerError):
    """Raised when a CSR does not satisfy the CA validation policy.

    Parameters
    ----------
    detail:
        Human-readable explanation.
    field:
        Dotted name of the offending policy field
        (e.g. ``subject_dn.common_name``).
    expected:
        Value the policy demands, when applicable.
    actual:
        Value found in the CSR, when applicable.

    """

    def __init__(
        self,
        detail: str,
        *,
        field: str,
        expected: str | None = None,
        actual: str | None = None,
    ) -> None:
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(detail)


class RemoteCallError(IssuerError):
    """Raised when a call to the CA fails.

    Parameters
    ----------
    detail:
        Human-readable description, including the CA's response body
        where one was returned.
    step:
        Name of the protocol step that failed (``login``, ``policy``,
        ``submit``, ``retrieve``, ``trust_chain``).
    status:
        HTTP status code, or ``None`` for transport failures.
    retryable:
        Whether the caller may retry.

    """

    def __init__(
        self,
        detail: str,
        *,
        step: str,
        status: int | None = None,
        retryable: bool = False,
    ) -> None:
        self.step = step
        self.status = status
        super().__init__(detail, retryable=retryable)


class IssuanceCancelled(RemoteCallError):
    """Raised when the governing scope is cancelled or its deadline passes."""

    def __init__(self, detail: str, *, step: str) -> None:
        super().__init__(detail, step=step, retryable=True)
