"""
Spreadsheet parsing for product uploads.

The first sheet's first row holds the headers. Each logical column (SKU ID,
Part Number, Product Link) is matched case-insensitively against a list of
header synonyms seen in supplier files; the first synonym that matches wins.
"""

import io
import logging
import math
from typing import Any, Dict, List, Optional

import pandas as pd

from app.core.errors import SpreadsheetError
from app.models.schemas import Product, ProductStatus

logger = logging.getLogger(__name__)


COLUMN_SYNONYMS: Dict[str, List[str]] = {
    "SKU ID": [
        "sku id", "sku", "sku_id", "product sku", "item id", "product id", "identifier",
        "hgg product code (internal sku)", "supplier sku", "hginternalcode",
    ],
    "Part Number": [
        "part number", "part no", "part #", "part_number", "model", "model number", "mpn",
        "manufacturers part number (mpn)", "pt_mpn_1",
    ],
    "Product Link": [
        "product link", "link", "url", "product url", "product_link", "product page", "website",
        "pt_data source url_1", "pt_data source url_2", "pt_third party url 1",
    ],
}

CSV_EXTENSIONS = (".csv",)

# .xlsx and unnamed uploads let pandas sniff the format
EXCEL_ENGINES = {
    ".xls": "xlrd",
    ".ods": "odf",
}


def find_header_index(headers: List[str], possible_names: List[str]) -> int:
    """Index of the first header matching any synonym (synonym order wins), else -1"""
    lowered = [h.lower() for h in headers]
    for name in possible_names:
        if name.lower() in lowered:
            return lowered.index(name.lower())
    return -1


def cell_text(value: Any) -> str:
    """Render a spreadsheet cell as text ('' for blanks, 12345 not 12345.0)"""
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def read_rows(content: bytes, filename: Optional[str] = None) -> List[List[Any]]:
    """Read the first sheet (or the CSV) as a list of raw rows, header row included"""
    buffer = io.BytesIO(content)
    name = (filename or "").lower()
    # NA detection off: a SKU of "NA" or a part number of "null" is data
    try:
        if name.endswith(CSV_EXTENSIONS):
            frame = pd.read_csv(buffer, header=None, dtype=object, keep_default_na=False, na_filter=False)
        else:
            engine = next((e for ext, e in EXCEL_ENGINES.items() if name.endswith(ext)), None)
            frame = pd.read_excel(
                buffer,
                sheet_name=0,
                header=None,
                dtype=object,
                engine=engine,
                keep_default_na=False,
                na_filter=False,
            )
    except pd.errors.EmptyDataError:
        return []
    except Exception as e:
        raise SpreadsheetError(f"Could not read the uploaded file as a spreadsheet: {e}") from e

    return frame.values.tolist()


def map_products(rows: List[List[Any]]) -> List[Product]:
    """Map raw rows to products, dropping rows without a SKU or link.

    Raises:
        SpreadsheetError: No data rows, missing required columns, or no usable rows
    """
    if len(rows) < 2:
        raise SpreadsheetError("Excel sheet is empty or has no data rows.")

    headers = [cell_text(h) for h in rows[0]]
    indexes = {column: find_header_index(headers, names) for column, names in COLUMN_SYNONYMS.items()}

    missing = [column for column, index in indexes.items() if index == -1]
    if missing:
        found = "', '".join(headers)
        raise SpreadsheetError(
            "Invalid Excel format. Could not find required column(s): "
            f"{', '.join(repr(m) for m in missing)}. Please check the headers in your file. "
            f"Headers found: ['{found}']",
            missing_columns=missing,
            headers_found=headers,
        )

    def cell(row: List[Any], column: str) -> str:
        index = indexes[column]
        return cell_text(row[index]) if index < len(row) else ""

    products = []
    for ordinal, row in enumerate(rows[1:]):
        sku = cell(row, "SKU ID")
        link = cell(row, "Product Link")
        if not sku or not link:
            continue
        products.append(Product(
            id=ordinal,
            sku=sku,
            part_number=cell(row, "Part Number"),
            link=link,
            status=ProductStatus.PENDING,
        ))

    if not products:
        raise SpreadsheetError(
            "No valid product rows with both a SKU and a Product Link could be found in the uploaded file."
        )

    logger.info("Parsed %d products from %d data rows", len(products), len(rows) - 1)
    return products


def parse_spreadsheet(content: bytes, filename: Optional[str] = None) -> List[Product]:
    """Parse an uploaded .xlsx/.xls/.ods/.csv file into pending products"""
    return map_products(read_rows(content, filename))
