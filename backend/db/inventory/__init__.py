"""
Book inventory.

Models:
- InventoryItem (one stocked title; quantity is written only by the stock ledger)
- StockAdjustment (append-only deltas, one per accepted adjustment)
"""
