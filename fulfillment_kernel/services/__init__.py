"""Services for the fulfillment kernel (write side)."""

from fulfillment_kernel.services.allocation_service import AllocationService
from fulfillment_kernel.services.exception_resolution import ExceptionResolutionService
from fulfillment_kernel.services.exception_service import ExceptionService
from fulfillment_kernel.services.fulfillment_orchestrator import FulfillmentOrchestrator
from fulfillment_kernel.services.inventory_ledger import InventoryLedger
from fulfillment_kernel.services.order_service import OrderService
from fulfillment_kernel.services.pick_pack_service import PickPackService
from fulfillment_kernel.services.state_change_logger import StateChangeLogger
from fulfillment_kernel.services.worker_lock_service import WorkerLockService

__all__ = [
    "AllocationService",
    "ExceptionResolutionService",
    "ExceptionService",
    "FulfillmentOrchestrator",
    "InventoryLedger",
    "OrderService",
    "PickPackService",
    "StateChangeLogger",
    "WorkerLockService",
]
