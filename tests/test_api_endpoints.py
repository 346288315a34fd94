"""Test API endpoints across the upload -> schema -> fetch -> export flow."""

import csv
import io
import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.api.routes import get_orchestrator, get_session
from app.core.config import settings
from app.core.errors import ExtractionError
from app.main import app
from app.models.schemas import Attribute
from app.services.credential_store import InMemoryStore
from app.services.orchestrator import FetchOrchestrator
from app.services.session import ExtractionSession
from conftest import PERPLEXITY_KEY, build_workbook, chat_completion, fake_response

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def fake_extract(link, credential, schema=None, category=None):
    if link.endswith("/2"):
        raise ExtractionError("Failed to fetch attributes from Perplexity: Perplexity API request failed with status 500.")
    count = 4 if link.endswith("/3") else 2
    return [Attribute(attribute=f"Attr {i}", value=f"{link} #{i}") for i in range(count)]


@pytest.fixture
def api_session():
    return ExtractionSession(InMemoryStore())


@pytest.fixture
def client(api_session):
    app.dependency_overrides[get_session] = lambda: api_session
    app.dependency_overrides[get_orchestrator] = lambda: FetchOrchestrator(fake_extract)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def upload(client, content, filename="products.xlsx"):
    return client.post("/products/upload", files={"file": (filename, content, XLSX)})


@pytest.fixture
def ready_client(client, api_session, workbook_bytes):
    """Products uploaded, on-the-fly mode chosen, key saved and validated."""
    assert upload(client, workbook_bytes).status_code == 200
    assert client.post("/schema/on-the-fly").status_code == 200
    client.put("/api-key", json={"api_key": PERPLEXITY_KEY})
    api_session.credential_validated = True
    return client


class TestInfoEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["docs"] == "/docs"


class TestUpload:

    def test_upload_loads_products(self, client, workbook_bytes):
        response = upload(client, workbook_bytes)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["product_count"] == 3
        assert [p["status"] for p in data["products"]] == ["Pending"] * 3

        session = client.get("/products").json()
        assert session["workflow_step"] == "schema_choice"

    def test_missing_columns_are_reported(self, client):
        content = build_workbook(["Name", "Link"], [["A", "https://example.com"]])
        response = upload(client, content)

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert "'SKU ID'" in detail and "'Part Number'" in detail
        assert "'Product Link'" not in detail

    def test_oversize_file_is_rejected(self, client, monkeypatch):
        monkeypatch.setattr(settings, "max_file_size", 10)
        response = upload(client, b"x" * 11)
        assert response.status_code == 400
        assert "too large" in response.json()["detail"]


class TestSchemaSteps:

    def test_schema_master_flow(self, client, workbook_bytes, laptop_schema):
        upload(client, workbook_bytes)
        assert client.post("/schema/master").json()["workflow_step"] == "schema_master"

        response = client.post("/schema", json={"schema_text": json.dumps(laptop_schema)})
        assert response.json()["categories"] == ["Laptops", "Monitors"]

        response = client.post("/schema/category", json={"category": "Laptops"})
        assert response.status_code == 200
        assert response.json()["workflow_step"] == "table_view"
        assert response.json()["schema_fragment"] == laptop_schema["Laptops"]

    def test_schema_file_upload(self, client, workbook_bytes):
        upload(client, workbook_bytes)
        client.post("/schema/master")
        response = client.post(
            "/schema/upload", files={"file": ("schema.json", b'{"Chairs": {"Color": ""}}', "application/json")}
        )
        assert response.json()["categories"] == ["Chairs"]

    def test_invalid_schema(self, client, workbook_bytes):
        upload(client, workbook_bytes)
        client.post("/schema/master")
        response = client.post("/schema", json={"schema_text": "{}"})
        assert response.status_code == 400
        assert "categories" in response.json()["detail"]

    def test_unknown_category(self, client, workbook_bytes, laptop_schema):
        upload(client, workbook_bytes)
        client.post("/schema/master")
        client.post("/schema", json={"schema_text": json.dumps(laptop_schema)})
        assert client.post("/schema/category", json={"category": "Tablets"}).status_code == 400

    def test_schema_before_upload(self, client):
        assert client.post("/schema/on-the-fly").status_code == 409


class TestApiKey:

    def test_save_resets_validation(self, client, api_session):
        api_session.credential_validated = True
        response = client.put("/api-key", json={"api_key": "AIzaSomething"})

        assert response.json() == {"has_key": True, "provider": "Gemini", "validated": False}
        assert api_session.store.get("apiKey") == "AIzaSomething"

    def test_save_refused_while_processing(self, ready_client, api_session):
        api_session.is_processing = True

        response = ready_client.put("/api-key", json={"api_key": "AIzaSomething"})

        assert response.status_code == 409
        assert "in progress" in response.json()["detail"]
        assert api_session.store.get("apiKey") == PERPLEXITY_KEY
        assert api_session.credential_validated is True

    @patch("app.services.extraction_service.requests.post")
    def test_validate_saved_key(self, mock_post, client, api_session):
        mock_post.return_value = fake_response(200, chat_completion("Hi"))
        client.put("/api-key", json={"api_key": PERPLEXITY_KEY})

        response = client.post("/api-key/validate")

        assert response.json()["is_valid"] is True
        assert response.json()["provider"] == "Perplexity"
        assert api_session.credential_validated is True

    @patch("app.services.extraction_service.requests.post")
    def test_validate_rejected_key(self, mock_post, client, api_session):
        mock_post.return_value = fake_response(401, {"error": {"message": "Invalid API key"}})
        client.put("/api-key", json={"api_key": PERPLEXITY_KEY})

        data = client.post("/api-key/validate").json()

        assert data["is_valid"] is False
        assert "Invalid API key" in data["message"]
        assert api_session.credential_validated is False

    @patch("app.services.extraction_service.requests.post")
    def test_validate_empty_key_makes_no_call(self, mock_post, client):
        data = client.post("/api-key/validate", json={"api_key": ""}).json()
        assert data["is_valid"] is False
        assert data["message"] == "API key is empty."
        mock_post.assert_not_called()


class TestFetchAndExport:

    def test_fetch_requires_validated_key(self, client, api_session, workbook_bytes):
        upload(client, workbook_bytes)
        client.post("/schema/on-the-fly")
        client.put("/api-key", json={"api_key": PERPLEXITY_KEY})

        response = client.post("/products/fetch", json={"product_ids": [0]})

        assert response.status_code == 400
        assert "validate" in response.json()["detail"]
        assert all(p.status.value == "Pending" for p in api_session.products)

    def test_fetch_requires_selection(self, ready_client):
        response = ready_client.post("/products/fetch", json={"product_ids": []})
        assert response.status_code == 400

    def test_fetch_before_schema_choice(self, client, api_session, workbook_bytes):
        upload(client, workbook_bytes)
        api_session.save_credential(PERPLEXITY_KEY)
        api_session.credential_validated = True
        assert client.post("/products/fetch", json={"select_all": True}).status_code == 409

    def test_fetch_while_processing(self, ready_client, api_session):
        api_session.is_processing = True
        assert ready_client.post("/products/fetch", json={"select_all": True}).status_code == 409

    def test_fetch_mixed_results(self, ready_client):
        response = ready_client.post("/products/fetch", json={"product_ids": [0, 1]})

        assert response.status_code == 200
        data = response.json()
        assert data["done_count"] == 1
        assert data["error_count"] == 1
        statuses = {p["id"]: p["status"] for p in data["products"]}
        assert statuses == {0: "Done", 1: "Error", 2: "Pending"}
        failed = next(p for p in data["products"] if p["id"] == 1)
        assert "status 500" in failed["error"]
        assert failed["attributes"] is None

    def test_export_after_fetch(self, ready_client):
        # ids 0..2 map to links /p/1../p/3; /p/3 yields four attributes
        ready_client.post("/products/fetch", json={"select_all": True})

        response = ready_client.get("/products/export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "product_attributes.csv" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0][-2:] == ["Attribute 4", "Value 4"]
        assert len(rows) == 4
        assert all(len(row) == 11 for row in rows)
        assert rows[2][3:] == [""] * 8

    def test_export_without_results(self, ready_client):
        assert ready_client.get("/products/export").status_code == 400
