from __future__ import annotations


class LedgerError(Exception):
    pass


class ManualFlowNotFound(LedgerError, LookupError):
    """Raised when a manual cash flow id does not exist in storage."""


class InvalidFlowError(LedgerError, ValueError):
    """Raised when a manual cash flow fails validation before it is stored."""
