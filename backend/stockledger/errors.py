# Overview: Error taxonomy shared by the stock ledger and workflow services.

from __future__ import annotations

from typing import Any


class StockLedgerError(Exception):
    """Base class; carries a human message and structured details."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": dict(self.details),
        }


class ValidationError(StockLedgerError, ValueError):
    """Malformed input, rejected before any transaction starts."""


class NotFoundError(StockLedgerError):
    """Document, product or location does not exist (or is outside the tenant)."""


class ConflictError(StockLedgerError):
    """Uniqueness or business rule conflict."""


class BatchNumberConflictError(ConflictError):
    """(product, location, batch_number) is already registered."""


class InsufficientStockError(StockLedgerError):
    """Aggregate quantity would drop below zero."""

    @property
    def product_id(self):
        return self.details.get("product_id")


class InsufficientBatchStockError(InsufficientStockError):
    """Eligible (unexpired, active) lots cannot cover the requested quantity."""


class InvalidStateTransitionError(StockLedgerError):
    """Workflow operation called from the wrong document status."""


class LockTimeoutError(StockLedgerError):
    """Row lock not acquired within STOCK_LOCK_TIMEOUT_MS. Safe to retry."""


class ConsistencyViolationError(StockLedgerError):
    """Projection, ledger and batch registry disagree. Never corrected silently."""
