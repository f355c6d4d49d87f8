"""hvissuer: certificate signer backed by the HVCA REST API."""

__version__ = "0.1.0"
