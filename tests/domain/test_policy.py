"""StockMatrixConfig normalization and value mapping."""

import pytest

from stock_kernel.domain.policy import FulfillmentPolicy, StockMatrixConfig


class TestFulfillmentPolicy:

    def test_default_allows_negative_stock(self):
        assert FulfillmentPolicy().allow_negative_stock is True


class TestStockMatrixConfig:

    def test_attribute_names_lowercased(self):
        config = StockMatrixConfig(attribute_names=("Farbe", " COLOR "))
        assert config.attribute_names == ("farbe", "color")

    def test_requires_attribute_name(self):
        with pytest.raises(ValueError):
            StockMatrixConfig(attribute_names=())

    def test_alias_must_target_known_column(self):
        with pytest.raises(ValueError, match="Neonblau"):
            StockMatrixConfig(column_values=("Rot",), aliases={"blau": "Neonblau"})

    def test_canonical_value_case_insensitive(self):
        config = StockMatrixConfig(column_values=("Weiß", "Rot"))
        assert config.canonical_value("rot") == "Rot"
        assert config.canonical_value("WEIß") == "Weiß"

    def test_canonical_value_through_alias(self):
        config = StockMatrixConfig(
            column_values=("Weiß", "Neongelb"),
            aliases={"Weiss": "Weiß", "gelb": "Neongelb"},
        )
        assert config.canonical_value("weiss") == "Weiß"
        assert config.canonical_value("Gelb") == "Neongelb"

    def test_unknown_value_with_columns(self):
        config = StockMatrixConfig(column_values=("Rot",))
        assert config.canonical_value("Blau") is None

    def test_observed_value_without_columns(self):
        assert StockMatrixConfig().canonical_value(" Blau ") == "Blau"
