"""Shared test fixtures for the attribute extractor test suite."""

import io
import json
from unittest.mock import MagicMock

import pytest
from openpyxl import Workbook

from app.models.schemas import Attribute, Product, ProductStatus
from app.services.credential_store import InMemoryStore
from app.services.session import ExtractionSession

GEMINI_KEY = "AIzaSyTestKey0000000000000000000000000"
PERPLEXITY_KEY = "pplx-test-key-000000"


def build_workbook(headers, rows) -> bytes:
    """Create an .xlsx file in memory."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(headers)
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def fake_response(status_code=200, json_data=None, text=None):
    """Create a stand-in for requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    response.text = text if text is not None else json.dumps(json_data)
    return response


def chat_completion(content):
    """Perplexity chat-completion envelope around ``content``."""
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def workbook_bytes():
    return build_workbook(
        ["SKU ID", "Part Number", "Product Link"],
        [
            ["SKU-1", "PN-1", "https://example.com/p/1"],
            ["SKU-2", "PN-2", "https://example.com/p/2"],
            ["SKU-3", "PN-3", "https://example.com/p/3"],
        ],
    )


@pytest.fixture
def products():
    return [
        Product(id=i, sku=f"SKU-{i}", part_number=f"PN-{i}", link=f"https://example.com/p/{i}")
        for i in range(4)
    ]


@pytest.fixture
def laptop_schema():
    return {
        "Laptops": {
            "type": "object",
            "properties": {
                "Processor": {"type": "string"},
                "RAM": {"type": "string"},
                "Screen Size": {"type": "string"},
            },
        },
        "Monitors": {
            "type": "object",
            "properties": {"Refresh Rate": {"type": "string"}, "Panel Type": {"type": "string"}},
        },
    }


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def session(store, products):
    """Session with products loaded, on-the-fly mode, and a validated key."""
    session = ExtractionSession(store)
    session.load_products(products)
    session.choose_on_the_fly()
    session.save_credential(PERPLEXITY_KEY)
    session.credential_validated = True
    return session


@pytest.fixture
def done_product():
    def _make(product_id, attribute_count):
        return Product(
            id=product_id,
            sku=f"SKU-{product_id}",
            part_number=f"PN-{product_id}",
            link=f"https://example.com/p/{product_id}",
            status=ProductStatus.DONE,
            attributes=[Attribute(attribute=f"A{i}", value=f"V{i}") for i in range(attribute_count)],
        )
    return _make
