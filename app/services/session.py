"""
Extraction session: the state one user builds up while walking the wizard.

upload -> schema choice (on the fly, or schema master -> category) -> fetch -> export

The session owns the product collection and the credential. Products are only
ever replaced as a whole list, so readers always see one consistent snapshot.
"""

import logging
from typing import Any, List, Optional

from app.core.config import settings
from app.core.errors import SchemaFileError, WorkflowError
from app.models.schemas import CredentialValidation, ExtractionSchema, Product, WorkflowStep
from app.services.credential_store import KeyValueStore

logger = logging.getLogger(__name__)


class ExtractionSession:
    def __init__(self, store: KeyValueStore, credential_key: str = None):
        self.store = store
        self.credential_key = credential_key or settings.credential_key

        self.products: List[Product] = []
        self.workflow_step = WorkflowStep.FILE_UPLOAD
        self.schema: Optional[ExtractionSchema] = None
        self.category: Optional[str] = None
        self.loaded_schema: Optional[ExtractionSchema] = None

        # Read once; only save_credential writes it back
        self.credential: str = store.get(self.credential_key) or ""
        self.credential_validated = False
        self.is_processing = False

    @property
    def schema_fragment(self) -> Optional[Any]:
        if self.schema is None or self.category is None:
            return None
        return self.schema.get(self.category)

    def product_ids(self) -> List[int]:
        return [p.id for p in self.products]

    def load_products(self, products: List[Product]) -> None:
        """Start over with a freshly uploaded product list"""
        if self.is_processing:
            raise WorkflowError("A fetch is in progress. Wait for it to finish before uploading a new file.")
        self.products = list(products)
        self.schema = None
        self.category = None
        self.loaded_schema = None
        self.workflow_step = WorkflowStep.SCHEMA_CHOICE

    def _require_products(self) -> None:
        if not self.products:
            raise WorkflowError("Upload a product spreadsheet first.")

    def choose_on_the_fly(self) -> None:
        self._require_products()
        self.schema = None
        self.category = None
        self.workflow_step = WorkflowStep.TABLE_VIEW

    def choose_schema_master(self) -> None:
        self._require_products()
        self.loaded_schema = None
        self.workflow_step = WorkflowStep.SCHEMA_MASTER

    def load_schema(self, schema: ExtractionSchema) -> List[str]:
        """Remember a parsed schema and return its categories"""
        if self.workflow_step != WorkflowStep.SCHEMA_MASTER:
            raise WorkflowError("Choose 'Schema Master' before providing a schema.")
        self.loaded_schema = schema
        return list(schema.keys())

    def apply_category(self, category: str) -> None:
        if self.workflow_step != WorkflowStep.SCHEMA_MASTER or self.loaded_schema is None:
            raise WorkflowError("Provide a schema before choosing a category.")
        if category not in self.loaded_schema:
            raise SchemaFileError(
                f"Category '{category}' is not defined in the schema. "
                f"Available categories: {', '.join(self.loaded_schema.keys())}"
            )
        self.schema = self.loaded_schema
        self.category = category
        self.workflow_step = WorkflowStep.TABLE_VIEW

    def save_credential(self, credential: str) -> None:
        """Store a new key; it has to be validated again before fetching"""
        if self.is_processing:
            raise WorkflowError("A fetch is in progress. Wait for it to finish before changing the API key.")
        self.credential = credential
        self.store.set(self.credential_key, credential)
        self.credential_validated = False

    def record_validation(self, credential: str, result: CredentialValidation) -> bool:
        """Mark the stored key validated when ``credential`` is that key and it passed"""
        if credential.strip() != self.credential.strip():
            return False
        self.credential_validated = result.is_valid
        return self.credential_validated
