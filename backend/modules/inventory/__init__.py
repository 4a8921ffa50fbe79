# Inventory module
"""
Inventory lending for the association intranet

EasyVerein is the system of record for stock and confirmed loans. This module
handles:
- Rentals: request / approve / return workflow and direct checkout,
  reconciled with EasyVerein lendings and item custom fields
- Sync: one-way mirror of EasyVerein items into the local inventory_items table

Shared pieces:
- cache: short-lived item list cache, invalidated on every stock mutation
- availability: free units for a date range (remote loans + local requests)
- custom_fields: borrower annotations written back onto EasyVerein items
"""

from .rentals.api import router as rentals_router
from .sync.api import router as sync_router

__all__ = ["rentals_router", "sync_router"]
