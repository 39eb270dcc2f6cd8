"""
Config -> Kernel Bridges.

Converts a loaded ``FulfillmentConfig`` into the kernel's
``FulfillmentPolicy``.  Lives here because the kernel must NEVER import
fulfillment_config.

Usage:
    from fulfillment_config import get_active_config
    from fulfillment_config.bridges import policy_from_config

    policy = policy_from_config(get_active_config())
    orchestrator = FulfillmentOrchestrator(session, policy=policy)
"""

from __future__ import annotations

from fulfillment_config.schema import FulfillmentConfig
from fulfillment_kernel.domain.policy import FulfillmentPolicy


def policy_from_config(config: FulfillmentConfig) -> FulfillmentPolicy:
    return FulfillmentPolicy(
        max_orders_per_picker=config.max_active_orders_per_picker,
        max_orders_per_packer=config.max_active_orders_per_packer,
        revalidate_on_backorder_release=config.revalidate_on_backorder_release,
        exception_id_prefix=config.exception_id_prefix,
    )
