from __future__ import annotations

import xml.etree.ElementTree as ET
from decimal import Decimal

import pytest

from conftest import FIXED_NOW

from lottery_ops.naxml.builder import NAXML_NAMESPACES, NaxmlBuildError, PriceBookBuilder, PriceBookItem

NS = {"n": NAXML_NAMESPACES["3.4"]}


def _item(**overrides) -> PriceBookItem:
    values = {
        "item_code": "056330050000",
        "description": "Lucky 7s #000",
        "department_code": "LOTTERY",
        "unit_price": Decimal("20"),
        "tax_rate_code": "NOTAX",
        "is_active": True,
        "short_description": "Lucky 7s",
    }
    values.update(overrides)
    return PriceBookItem(**values)


def test_document_structure():
    xml = PriceBookBuilder("3.4", lambda: FIXED_NOW).build_price_book(
        "STORE-9", [_item(), _item(item_code="056330050017", action="Delete", is_active=False)]
    )
    assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>\n')
    root = ET.fromstring(xml.split("\n", 1)[1])
    assert root.tag == f"{{{NS['n']}}}NAXMLPriceBookMaintenance"
    assert root.get("version") == "3.4"
    assert root.findtext("n:MaintenanceHeader/n:StoreLocationID", namespaces=NS) == "STORE-9"
    assert root.findtext("n:MaintenanceHeader/n:MaintenanceDate", namespaces=NS) == FIXED_NOW.isoformat()
    assert root.findtext("n:MaintenanceHeader/n:MaintenanceType", namespaces=NS) == "Incremental"

    items = root.findall("n:Items/n:Item", NS)
    assert [i.get("Action") for i in items] == ["AddUpdate", "Delete"]
    first = items[0]
    assert first.findtext("n:ItemCode", namespaces=NS) == "056330050000"
    assert first.findtext("n:UnitPrice", namespaces=NS) == "20.00"
    assert first.findtext("n:IsActive", namespaces=NS) == "Y"
    assert first.findtext("n:ShortDescription", namespaces=NS) == "Lucky 7s"
    assert items[1].findtext("n:IsActive", namespaces=NS) == "N"


def test_short_description_omitted_when_empty():
    xml = PriceBookBuilder().build_price_book("S1", [_item(short_description=None)])
    assert "ShortDescription" not in xml


def test_version_4_namespace():
    xml = PriceBookBuilder("4.0").build_price_book("S1", [_item()])
    assert NAXML_NAMESPACES["4.0"] in xml
    assert 'version="4.0"' in xml


def test_invalid_inputs_raise():
    with pytest.raises(NaxmlBuildError):
        PriceBookBuilder("9.9")
    with pytest.raises(NaxmlBuildError):
        PriceBookBuilder().build_price_book("S1", [_item(action="Upsert")])
    with pytest.raises(NaxmlBuildError):
        PriceBookBuilder().build_price_book("", [_item()])
    with pytest.raises(NaxmlBuildError):
        PriceBookBuilder().build_price_book("S1", [_item()], maintenance_type="Partial")


def test_text_is_escaped():
    xml = PriceBookBuilder().build_price_book("S1", [_item(description="Cash & <Prizes>")])
    assert "Cash &amp; &lt;Prizes&gt;" in xml
