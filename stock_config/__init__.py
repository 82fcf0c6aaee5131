"""
stock_config -- single public entrypoint for stock configuration.

Responsibility:
    Provides the only way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``StockConfig``.

Architecture position:
    Configuration.  Sits above ``stock_kernel``; the kernel never imports
    from ``stock_config``.  The kernel types it carries (FulfillmentPolicy,
    StockMatrixConfig) are handed to kernel services by the caller.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``KeyError`` / ``ValueError`` -- missing or invalid values.

Every successful ``get_active_config()`` call emits a ``config_loaded`` log
record with the config id, version and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from stock_config.loader import load_yaml_file, parse_config
from stock_config.schema import (
    DatabaseConfig,
    FulfillmentPolicy,
    LoggingConfig,
    StockConfig,
    StockMatrixConfig,
)
from stock_kernel.logging_config import configure_logging

_logger = logging.getLogger("stock_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> StockConfig:
    """
    Load, validate and return the configuration.

    Args:
        path: YAML file to load.  Defaults to stock_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(config_path))

    _logger.info(
        "config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(config_path),
            "allow_negative_stock": config.fulfillment.allow_negative_stock,
        },
    )
    return config


def apply_logging_config(config: StockConfig) -> None:
    """Install structured logging at the configured level."""
    configure_logging(level=config.logging.numeric_level)


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DatabaseConfig",
    "FulfillmentPolicy",
    "LoggingConfig",
    "StockConfig",
    "StockMatrixConfig",
    "apply_logging_config",
    "get_active_config",
]
