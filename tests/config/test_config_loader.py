"""
stock_config: YAML loading, validation and the get_active_config entrypoint.
"""

import logging
from pathlib import Path

import pytest
import yaml

from stock_config import DEFAULT_CONFIG_PATH, apply_logging_config, get_active_config
from stock_config.loader import compute_checksum, load_yaml_file, parse_config
from stock_config.schema import DatabaseConfig, LoggingConfig


def _write(tmp_path, document) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(document, allow_unicode=True), encoding="utf-8")
    return path


class TestDefaultConfig:

    def test_loads(self):
        config = get_active_config()

        assert config.config_id == "default"
        assert config.version == 1
        assert config.database.url == "sqlite://"
        assert config.fulfillment.allow_negative_stock is True
        assert config.logging.level == "INFO"

    def test_stock_matrix_section(self):
        matrix = get_active_config().stock_matrix

        assert matrix.attribute_names == ("farbe", "color")
        assert matrix.column_values[0] == "Schwarz"
        assert "Neongrün" in matrix.column_values
        assert matrix.canonical_value("weiss") == "Weiß"
        assert matrix.canonical_value("grün") == "Neongrün"

    def test_checksum_is_stable(self):
        assert get_active_config().checksum == get_active_config().checksum
        assert len(get_active_config().checksum) == 64

    def test_emits_config_loaded(self, captured_logs):
        config = get_active_config()

        record = next(r for r in captured_logs() if r["message"] == "config_loaded")
        assert record["checksum"] == config.checksum
        assert record["config_id"] == "default"

    def test_default_path_exists(self):
        assert DEFAULT_CONFIG_PATH.is_file()


class TestParseConfig:

    def test_minimal_document_uses_defaults(self):
        config = parse_config({"config_id": "min", "version": 3})

        assert config.database == DatabaseConfig()
        assert config.fulfillment.allow_negative_stock is True
        assert config.stock_matrix.column_values == ()

    def test_strict_policy(self, tmp_path):
        path = _write(tmp_path, {
            "config_id": "strict",
            "version": 1,
            "fulfillment": {"allow_negative_stock": False},
        })
        assert get_active_config(path).fulfillment.allow_negative_stock is False

    def test_missing_required_key(self):
        with pytest.raises(KeyError):
            parse_config({"version": 1})

    def test_unknown_section_rejected(self):
        with pytest.raises(ValueError, match="fulfilment"):
            parse_config({"config_id": "x", "version": 1, "fulfilment": {}})

    def test_non_boolean_policy_rejected(self):
        with pytest.raises(ValueError):
            parse_config({
                "config_id": "x", "version": 1,
                "fulfillment": {"allow_negative_stock": "no"},
            })

    def test_alias_to_unknown_column_rejected(self):
        with pytest.raises(ValueError):
            parse_config({
                "config_id": "x", "version": 1,
                "stock_matrix": {"columns": ["Rot"], "aliases": {"blau": "Blau"}},
            })

    @pytest.mark.parametrize("field, value", [
        ("url", ""),
        ("pool_size", 0),
        ("max_overflow", -1),
        ("pool_timeout", 0),
    ])
    def test_invalid_database_values(self, field, value):
        with pytest.raises(ValueError):
            parse_config({"config_id": "x", "version": 1, "database": {field: value}})

    def test_logging_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"
        assert LoggingConfig(level="warning").numeric_level == logging.WARNING
        with pytest.raises(ValueError):
            LoggingConfig(level="LOUD")


class TestLoader:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_yaml_file(path)

    def test_empty_document_is_empty_dict(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_yaml_file(path) == {}

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestApplyLoggingConfig:

    @pytest.fixture(autouse=True)
    def _restore_level(self):
        root = logging.getLogger("stock_kernel")
        previous = root.level
        yield
        root.setLevel(previous)

    def test_configured_level_applied(self, tmp_path):
        path = _write(tmp_path, {"config_id": "quiet", "version": 1, "logging": {"level": "warning"}})

        apply_logging_config(get_active_config(path))

        assert logging.getLogger("stock_kernel").level == logging.WARNING
