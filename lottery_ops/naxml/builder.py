from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from lottery_ops.services.clock import Clock, utc_now

"""NAXML price-book maintenance document builder.

Only the PriceBookMaintenance document is produced:

    <?xml version="1.0" encoding="UTF-8"?>
    <NAXMLPriceBookMaintenance version="3.4" xmlns="...">
      <MaintenanceHeader>StoreLocationID / MaintenanceDate / MaintenanceType</MaintenanceHeader>
      <Items>
        <Item Action="AddUpdate|Delete">ItemCode Description ShortDescription?
             DepartmentCode UnitPrice TaxRateCode IsActive(Y|N)</Item>
      </Items>
    </NAXMLPriceBookMaintenance>
"""

__all__ = [
    "NAXML_NAMESPACES",
    "NaxmlBuildError",
    "PriceBookItem",
    "PriceBookBuilder",
]

NAXML_NAMESPACES = {
    "3.2": "http://www.naxml.org/POSBO/Vocabulary/2003-10-16",
    "3.4": "http://www.naxml.org/POSBO/Vocabulary/2003-10-16",
    "4.0": "http://www.naxml.org/POSBO/Vocabulary/2020-01-01",
}

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'
ITEM_ACTIONS = ("AddUpdate", "Delete")
MAINTENANCE_TYPES = ("Full", "Incremental")


class NaxmlBuildError(Exception):
    pass


@dataclass(frozen=True)
class PriceBookItem:
    item_code: str
    description: str
    department_code: str
    unit_price: Decimal
    tax_rate_code: str
    is_active: bool
    action: str = "AddUpdate"
    short_description: str | None = None


def _yn(value: bool) -> str:
    return "Y" if value else "N"


def _money(value: Decimal) -> str:
    return str(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class PriceBookBuilder:
    def __init__(self, version: str = "3.4", clock: Clock = utc_now) -> None:
        if version not in NAXML_NAMESPACES:
            raise NaxmlBuildError(f"unsupported NAXML version: {version}")
        self.version = version
        self.clock = clock

    def _header(self, parent: ET.Element, store_location_id: str, maintenance_type: str) -> None:
        header = ET.SubElement(parent, "MaintenanceHeader")
        ET.SubElement(header, "StoreLocationID").text = store_location_id
        now: datetime = self.clock()
        ET.SubElement(header, "MaintenanceDate").text = now.isoformat()
        ET.SubElement(header, "MaintenanceType").text = maintenance_type

    @staticmethod
    def _item(parent: ET.Element, item: PriceBookItem) -> None:
        if item.action not in ITEM_ACTIONS:
            raise NaxmlBuildError(f"invalid item action: {item.action}")
        el = ET.SubElement(parent, "Item", {"Action": item.action})
        ET.SubElement(el, "ItemCode").text = item.item_code
        ET.SubElement(el, "Description").text = item.description
        if item.short_description:
            ET.SubElement(el, "ShortDescription").text = item.short_description
        ET.SubElement(el, "DepartmentCode").text = item.department_code
        ET.SubElement(el, "UnitPrice").text = _money(item.unit_price)
        ET.SubElement(el, "TaxRateCode").text = item.tax_rate_code
        ET.SubElement(el, "IsActive").text = _yn(item.is_active)

    def build_price_book(
        self,
        store_location_id: str,
        items: list[PriceBookItem],
        maintenance_type: str = "Incremental",
    ) -> str:
        """Serialize a price-book maintenance document (pretty-printed, UTF-8 declaration)."""
        if maintenance_type not in MAINTENANCE_TYPES:
            raise NaxmlBuildError(f"invalid maintenance type: {maintenance_type}")
        if not store_location_id:
            raise NaxmlBuildError("store location id is required")
        root = ET.Element(
            "NAXMLPriceBookMaintenance",
            {"version": self.version, "xmlns": NAXML_NAMESPACES[self.version]},
        )
        self._header(root, store_location_id, maintenance_type)
        items_el = ET.SubElement(root, "Items")
        for item in items:
            self._item(items_el, item)
        ET.indent(root, space="  ")
        body = ET.tostring(root, encoding="unicode")
        return f"{XML_DECLARATION}\n{body}\n"
