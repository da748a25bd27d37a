"""
Inventory engine errors.

Validation, not-found, invariant and concurrency failures of the stock ledger
are raised as exceptions; routers translate them into HTTP responses.
Reconciliation outcomes (conflict, unmatched, skipped) are never raised, they
are reported in the batch summary.
"""

from typing import Optional


class InventoryError(Exception):
    """Base class for inventory engine failures."""

    code = "InventoryError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidAdjustment(InventoryError):
    code = "InvalidAdjustment"


class ItemNotFound(InventoryError):
    code = "ItemNotFound"

    def __init__(self, item_id):
        super().__init__(f"Inventory item not found: {item_id}")
        self.item_id = item_id


class InsufficientStock(InventoryError):
    code = "InsufficientStock"

    def __init__(self, item_id, current_quantity: int, delta: int):
        super().__init__(
            f"Cannot reduce stock below zero: current={current_quantity}, delta={delta}"
        )
        self.item_id = item_id
        self.current_quantity = current_quantity
        self.delta = delta


class TransactionConflict(InventoryError):
    code = "TransactionConflict"

    def __init__(self, item_id, attempts: int):
        super().__init__(
            f"Stock for item {item_id} was modified concurrently; gave up after {attempts} attempts"
        )
        self.item_id = item_id
        self.attempts = attempts


class StorageUploadError(InventoryError):
    code = "StorageUploadError"

    def __init__(self, path: str, reason: Optional[str] = None):
        super().__init__(f"Failed to upload {path}: {reason}" if reason else f"Failed to upload {path}")
        self.path = path
