"""Test CSV export of extracted attributes."""

import csv
import io

import pytest

from app.core.errors import ExportError
from app.models.schemas import Attribute, Product, ProductStatus
from app.services.export_service import export_csv


def read_csv(text):
    return list(csv.reader(io.StringIO(text)))


def test_width_follows_largest_attribute_count(done_product):
    rows = read_csv(export_csv([done_product(0, 2), done_product(1, 4)]))

    assert rows[0] == [
        "SKU ID", "Part Number", "Product Link",
        "Attribute 1", "Value 1", "Attribute 2", "Value 2",
        "Attribute 3", "Value 3", "Attribute 4", "Value 4",
    ]
    assert rows[1][3:7] == ["A0", "V0", "A1", "V1"]
    assert rows[1][7:] == ["", "", "", ""]
    assert rows[2][3:] == ["A0", "V0", "A1", "V1", "A2", "V2", "A3", "V3"]
    assert all(len(row) == 11 for row in rows)


def test_unprocessed_products_are_exported_blank(done_product, products):
    failed = Product(id=9, sku="SKU-9", link="https://example.com/9", status=ProductStatus.ERROR, error="boom")
    rows = read_csv(export_csv([products[1], done_product(0, 1), failed]))

    assert rows[1] == ["SKU-1", "PN-1", "https://example.com/p/1", "", ""]
    assert rows[3] == ["SKU-9", "", "https://example.com/9", "", ""]


def test_every_cell_is_quoted_and_escaped():
    product = Product(
        id=0,
        sku='SKU "A", 1',
        link="https://example.com/a",
        status=ProductStatus.DONE,
        attributes=[Attribute(attribute="Size", value='15.6"')],
    )
    text = export_csv([product])
    lines = text.split("\n")

    assert lines[0] == '"SKU ID","Part Number","Product Link","Attribute 1","Value 1"'
    assert lines[1] == '"SKU ""A"", 1","","https://example.com/a","Size","15.6"""'


def test_nothing_processed_raises(products):
    with pytest.raises(ExportError):
        export_csv(products)
