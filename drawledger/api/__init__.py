"""HTTP boundary of the ledger services."""

from .app import create_app

__all__ = ["create_app"]
