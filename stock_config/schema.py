"""
StockConfig schema.

Frozen dataclasses the loader builds from YAML.  Each validates itself in
``__post_init__`` so an invalid document fails at load time, not at first
use.

FulfillmentPolicy and StockMatrixConfig are kernel types: the kernel
accepts them but never imports this package.  They are re-exported here so
configuration callers have one import location.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from stock_kernel.domain.policy import FulfillmentPolicy, StockMatrixConfig

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings passed to init_engine_from_config()."""

    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise ValueError("database.url must not be empty")
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(
                f"database.max_overflow must be >= 0, got {self.max_overflow}"
            )
        if self.pool_timeout < 1:
            raise ValueError(
                f"database.pool_timeout must be >= 1, got {self.pool_timeout}"
            )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        level = self.level.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(
                f"logging.level must be one of {', '.join(_LOG_LEVELS)}, got {self.level!r}"
            )
        object.__setattr__(self, "level", level)

    @property
    def numeric_level(self) -> int:
        return logging.getLevelName(self.level)


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockConfig:
    """The complete, validated configuration document."""

    config_id: str
    version: int
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    fulfillment: FulfillmentPolicy = field(default_factory=FulfillmentPolicy)
    stock_matrix: StockMatrixConfig = field(default_factory=StockMatrixConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""


__all__ = [
    "DatabaseConfig",
    "FulfillmentPolicy",
    "LoggingConfig",
    "StockConfig",
    "StockMatrixConfig",
]
