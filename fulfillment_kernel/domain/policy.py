"""
FulfillmentPolicy -- the tunable knobs the kernel consumes.

The kernel never reads configuration files.  ``fulfillment_config`` builds
this value (see ``fulfillment_config.bridges.policy_from_config``) and the
caller injects it into the orchestrator.  Defaults match the packaged
defaults.yaml so an embedded caller can skip configuration entirely.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FulfillmentPolicy:
    """Admission caps and exception-flow settings.

    Contract: frozen; caps are positive.
    """

    max_orders_per_picker: int = 10
    max_orders_per_packer: int = 5
    revalidate_on_backorder_release: bool = False
    exception_id_prefix: str = "EXC"

    def __post_init__(self) -> None:
        if self.max_orders_per_picker <= 0:
            raise ValueError("max_orders_per_picker must be positive")
        if self.max_orders_per_packer <= 0:
            raise ValueError("max_orders_per_packer must be positive")
        if not self.exception_id_prefix:
            raise ValueError("exception_id_prefix is required")


DEFAULT_POLICY = FulfillmentPolicy()
