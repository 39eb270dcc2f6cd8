"""Selectors for the fulfillment kernel (read side)."""

from fulfillment_kernel.selectors.exception_selector import ExceptionSelector
from fulfillment_kernel.selectors.inventory_selector import InventorySelector
from fulfillment_kernel.selectors.order_selector import OrderSelector

__all__ = [
    "ExceptionSelector",
    "InventorySelector",
    "OrderSelector",
]
