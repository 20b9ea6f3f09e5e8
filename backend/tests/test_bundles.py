import uuid

from fulfillment.bundles import expand_sku, is_bundle_sku, parse_bundle_sku, parse_sku_part

ZP = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
LT = uuid.UUID("00000000-0000-0000-0000-0000000000a2")
CATALOG = {"ZP250": ZP, "LT100": LT}


def test_parse_sku_part_reads_positive_suffix_only():
    assert parse_sku_part("ZP250-6").quantity == 6
    assert parse_sku_part("ZP250-6").sku == "ZP250"
    assert parse_sku_part("ABC-X1").sku == "ABC-X1"
    assert parse_sku_part("ABC-0").quantity == 1
    assert parse_sku_part(" ZP250 ").sku == "ZP250"


def test_parse_bundle_sku_splits_on_plus():
    parts = parse_bundle_sku("ZP250-2 + LT100-1")
    assert [(p.sku, p.quantity) for p in parts] == [("ZP250", 2), ("LT100", 1)]
    assert parse_bundle_sku("") == []
    assert is_bundle_sku("ZP250-2 + LT100-1")
    assert not is_bundle_sku("ZP250-2")


def test_expand_sku_multiplies_by_order_quantity():
    requirement = expand_sku("ZP250-2 + LT100-1", 3, CATALOG)
    assert requirement.quantities == {ZP: 6, LT: 3}
    assert requirement.unknown_skus == []


def test_expand_sku_plain_sku_uses_order_quantity():
    assert expand_sku("ZP250", 4, CATALOG).quantities == {ZP: 4}


def test_expand_sku_reports_unknown_parts():
    requirement = expand_sku("ZP250-1 + NOPE-2", 1, CATALOG)
    assert requirement.quantities == {ZP: 1}
    assert requirement.unknown_skus == ["NOPE"]


def test_expand_sku_catalog_sku_with_numeric_suffix():
    catalog = {"KIT-12": ZP}
    assert expand_sku("KIT-12", 2, catalog).quantities == {ZP: 2}


def test_expand_sku_falls_back_to_linked_product():
    requirement = expand_sku("Product name, not a sku", 2, CATALOG, fallback_product_id=LT)
    assert requirement.quantities == {LT: 2}
    assert requirement.unknown_skus == []
    assert expand_sku(None, 2, CATALOG, fallback_product_id=LT).quantities == {LT: 2}


def test_expand_sku_zero_quantity_needs_nothing():
    assert expand_sku("ZP250-2", 0, CATALOG).quantities == {}
