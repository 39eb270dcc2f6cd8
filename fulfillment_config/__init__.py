"""
fulfillment_config -- single public entrypoint for fulfillment configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or the ``FULFILLMENT_CONFIG`` environment variable directly.

Architecture position:
    Configuration -- sits above ``fulfillment_kernel``.  The kernel MUST
    NEVER import from ``fulfillment_config``; ``bridges.policy_from_config``
    translates the loaded config into the kernel's ``FulfillmentPolicy``.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful ``get_active_config()`` call logs ``config_loaded``
    with config_id, version, source path and checksum, tying operations
    to the exact settings that governed them.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fulfillment_config.loader import compute_checksum, load_config
from fulfillment_config.schema import FulfillmentConfig

_logger = logging.getLogger("fulfillment_kernel.config")

CONFIG_ENV_VAR = "FULFILLMENT_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> FulfillmentConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``config_path``, then the
    ``FULFILLMENT_CONFIG`` environment variable, then the packaged
    ``defaults.yaml``.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    path = Path(config_path or env_path or DEFAULT_CONFIG_PATH)

    config = load_config(path)
    checksum = compute_checksum(config)

    _logger.info(
        "config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "config_path": str(path),
            "checksum": checksum,
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "FulfillmentConfig",
    "compute_checksum",
    "get_active_config",
    "load_config",
]
