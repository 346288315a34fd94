import csv
import io
from typing import List

from app.core.errors import ExportError
from app.models.schemas import Product, ProductStatus

BASE_HEADERS = ["SKU ID", "Part Number", "Product Link"]


def export_csv(products: List[Product]) -> str:
    """Flatten products into CSV, one Attribute N / Value N column pair per attribute.

    The number of pairs is the largest attribute count among Done products;
    every row is padded or truncated to that width and every cell is quoted.
    """
    processed = [p for p in products if p.status == ProductStatus.DONE and p.attributes is not None]
    if not processed:
        raise ExportError("No processed products to export. Fetch attributes first.")

    max_attributes = max(len(p.attributes) for p in processed)
    headers = list(BASE_HEADERS)
    for i in range(1, max_attributes + 1):
        headers.extend([f"Attribute {i}", f"Value {i}"])

    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)

    width = len(headers)
    for product in products:
        row = [product.sku, product.part_number, product.link]
        if product.status == ProductStatus.DONE and product.attributes:
            for attr in product.attributes:
                row.extend([attr.attribute, attr.value])
        row = (row + [""] * width)[:width]
        writer.writerow(row)

    return output.getvalue()
