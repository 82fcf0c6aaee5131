"""
Policy -- runtime knobs the kernel accepts from configuration.

The kernel never reads configuration files.  ``stock_config`` builds these
frozen objects from YAML and hands them to the FulfillmentEngine and the
StockMatrixProjection.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FulfillmentPolicy:
    """
    Stock policy for decreasing movements.

    allow_negative_stock=True (default): an oversell succeeds and is
    reported as a StockWarning.  False: the whole operation is rejected
    with InsufficientStockError.
    """

    allow_negative_stock: bool = True


@dataclass(frozen=True)
class StockMatrixConfig:
    """
    Layout of the stock matrix.

    attribute_names: variation names (case-insensitive) that designate the
        column attribute, e.g. ("farbe", "color").
    column_values: canonical column values in display order.  Empty means
        "use the sorted distinct values actually found".
    aliases: lower-cased spellings mapped to a canonical value, e.g.
        {"weiss": "Weiß"}.
    """

    attribute_names: tuple[str, ...] = ("farbe", "color")
    column_values: tuple[str, ...] = ()
    aliases: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        names = tuple(name.strip().lower() for name in self.attribute_names)
        if not names or not all(names):
            raise ValueError("StockMatrixConfig needs at least one attribute name")
        object.__setattr__(self, "attribute_names", names)
        object.__setattr__(self, "column_values", tuple(self.column_values))
        object.__setattr__(
            self,
            "aliases",
            {alias.strip().lower(): value for alias, value in self.aliases.items()},
        )

        if self.column_values:
            unknown = sorted(
                value for value in self.aliases.values()
                if value not in self.column_values
            )
            if unknown:
                raise ValueError(
                    f"Aliases point at unknown column values: {', '.join(unknown)}"
                )

    def canonical_value(self, raw: str) -> str | None:
        """
        Map an observed option value onto a column value.

        Returns None when canonical columns are configured and the value
        matches none of them.
        """
        key = raw.strip().lower()
        if key in self.aliases:
            return self.aliases[key]
        if not self.column_values:
            return raw.strip()
        for value in self.column_values:
            if value.lower() == key:
                return value
        return None
