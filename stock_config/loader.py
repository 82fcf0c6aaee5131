"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Loads the YAML configuration document and parses it into the frozen
dataclasses of ``stock_config.schema``.  Runtime callers go through
``stock_config.get_active_config()``; the parse functions are public for
tests and tooling.

Invariants enforced
-------------------
* Unknown top-level sections are rejected, so a typo cannot silently fall
  back to a default.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values  -> ``ValueError`` from the schema ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    DatabaseConfig,
    FulfillmentPolicy,
    LoggingConfig,
    StockConfig,
    StockMatrixConfig,
)

_SECTIONS = frozenset(
    {"config_id", "version", "database", "fulfillment", "stock_matrix", "logging"}
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=str(data.get("url", "sqlite://")),
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 5)),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=int(data.get("pool_timeout", 30)),
    )


def parse_fulfillment(data: dict[str, Any]) -> FulfillmentPolicy:
    value = data.get("allow_negative_stock", True)
    if not isinstance(value, bool):
        raise ValueError(
            f"fulfillment.allow_negative_stock must be true or false, got {value!r}"
        )
    return FulfillmentPolicy(allow_negative_stock=value)


def parse_stock_matrix(data: dict[str, Any]) -> StockMatrixConfig:
    """
    Parse the stock matrix section.

    ``columns`` is the ordered list of canonical values; ``aliases`` maps
    alternative spellings onto them.
    """
    return StockMatrixConfig(
        attribute_names=tuple(str(n) for n in data.get("attribute_names", ("farbe", "color"))),
        column_values=tuple(str(c) for c in data.get("columns", ())),
        aliases={str(k): str(v) for k, v in (data.get("aliases") or {}).items()},
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    return LoggingConfig(level=str(data.get("level", "INFO")))


def parse_config(data: dict[str, Any]) -> StockConfig:
    """
    Parse a complete configuration document.

    Raises:
        KeyError: ``config_id`` or ``version`` missing.
        ValueError: unknown section or invalid value.
    """
    unknown = sorted(set(data) - _SECTIONS)
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(unknown)}")

    return StockConfig(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        database=parse_database(data.get("database") or {}),
        fulfillment=parse_fulfillment(data.get("fulfillment") or {}),
        stock_matrix=parse_stock_matrix(data.get("stock_matrix") or {}),
        logging=parse_logging(data.get("logging") or {}),
        checksum=compute_checksum(data),
    )
