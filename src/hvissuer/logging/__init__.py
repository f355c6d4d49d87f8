"""Logging subsystem for hvissuer.

Public API::

    from hvissuer.logging import configure_logging

    configure_logging(settings.logging)
"""

from hvissuer.logging.setup import configure_logging, issuance_context

__all__ = ["configure_logging", "issuance_context"]
