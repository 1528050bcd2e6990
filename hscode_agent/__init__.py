"""HS code analysis agent: session workflow, result cache and notification ledger."""

__version__ = "0.1.0"
