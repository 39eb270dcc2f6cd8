"""
Configuration schema (``fulfillment_config.schema``).

Responsibility
--------------
Frozen dataclass describing the operational settings of a fulfillment
site.  These are the parsed, typed form of the YAML file; the kernel never
sees this class, only the ``FulfillmentPolicy`` built from it in
``bridges.py``.

Architecture position
---------------------
**Config layer** -- pure data definitions.  No I/O, no kernel imports.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FulfillmentConfig:
    """Operational settings for one fulfillment site.

    Contract: frozen; ``loader.load_config`` guarantees positive caps and a
    non-empty exception prefix before constructing one.
    """

    config_id: str = "default"
    version: int = 1
    max_active_orders_per_picker: int = 10
    max_active_orders_per_packer: int = 5
    revalidate_on_backorder_release: bool = False
    exception_id_prefix: str = "EXC"

    def to_dict(self) -> dict[str, object]:
        return {
            "config_id": self.config_id,
            "version": self.version,
            "max_active_orders_per_picker": self.max_active_orders_per_picker,
            "max_active_orders_per_packer": self.max_active_orders_per_packer,
            "revalidate_on_backorder_release": self.revalidate_on_backorder_release,
            "exception_id_prefix": self.exception_id_prefix,
        }
