"""
Fulfillment Kernel - order lifecycle and inventory allocation core.

A transactional warehouse fulfillment engine with:
- A closed order state machine with per-transition prerequisites
- A row-locked inventory reservation ledger with an append-only log
- Picker/packer workload admission control
- First-class fulfillment exceptions with compensating resolutions
"""

__version__ = "0.1.0"
