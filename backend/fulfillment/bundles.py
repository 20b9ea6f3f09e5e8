"""
Bundle SKU parsing.

Sale records carry one of three SKU shapes:
  - plain SKU                 "ZP250"
  - SKU with unit suffix      "ZP250-6"
  - bundle of suffixed SKUs   "ZP250-2 + LT100-1"

The suffix after the LAST hyphen counts as a quantity only when it is a
positive integer, so "ABC-X1" is a plain SKU.
"""

import uuid
from dataclasses import dataclass, field

BUNDLE_SEPARATOR = " + "


@dataclass(frozen=True)
class SkuPart:
    sku: str
    quantity: int


@dataclass
class StockRequirement:
    """Units of each product needed to fulfil one sale record."""

    quantities: dict[uuid.UUID, int] = field(default_factory=dict)
    unknown_skus: list[str] = field(default_factory=list)

    def add(self, product_id: uuid.UUID, quantity: int) -> None:
        self.quantities[product_id] = self.quantities.get(product_id, 0) + quantity


def is_bundle_sku(sku: str | None) -> bool:
    return bool(sku) and BUNDLE_SEPARATOR in sku


def parse_sku_part(part: str) -> SkuPart:
    trimmed = part.strip()
    base, sep, suffix = trimmed.rpartition("-")
    if sep and suffix.isdigit() and int(suffix) > 0:
        return SkuPart(sku=base, quantity=int(suffix))
    return SkuPart(sku=trimmed, quantity=1)


def parse_bundle_sku(bundle_sku: str | None) -> list[SkuPart]:
    if not bundle_sku:
        return []
    return [parse_sku_part(part) for part in bundle_sku.split(BUNDLE_SEPARATOR) if part.strip()]


def expand_sku(
    sku: str | None,
    order_quantity: int,
    products_by_sku: dict[str, uuid.UUID],
    fallback_product_id: uuid.UUID | None = None,
) -> StockRequirement:
    """
    Resolve a sale record's SKU into per-product unit counts.

    Every part's quantity is multiplied by the order quantity. When the SKU
    is empty or unknown but the record is linked to a product, that product
    is used with the order quantity.
    """
    requirement = StockRequirement()
    order_quantity = max(int(order_quantity or 0), 0)
    if order_quantity == 0:
        return requirement

    parts = parse_bundle_sku(sku) if sku else []
    for part in parts:
        product_id = products_by_sku.get(part.sku)
        if product_id is None:
            # catalog SKUs may themselves end in "-<digits>"
            product_id = products_by_sku.get(f"{part.sku}-{part.quantity}")
            if product_id is not None:
                requirement.add(product_id, order_quantity)
                continue
            requirement.unknown_skus.append(part.sku)
            continue
        requirement.add(product_id, part.quantity * order_quantity)

    if not requirement.quantities and fallback_product_id is not None:
        requirement.unknown_skus.clear()
        requirement.add(fallback_product_id, order_quantity)
    return requirement
