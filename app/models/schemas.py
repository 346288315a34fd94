from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProductStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    DONE = "Done"
    ERROR = "Error"


class ProviderIdentity(str, Enum):
    GEMINI = "Gemini"
    PERPLEXITY = "Perplexity"


class WorkflowStep(str, Enum):
    FILE_UPLOAD = "file_upload"
    SCHEMA_CHOICE = "schema_choice"
    SCHEMA_MASTER = "schema_master"
    TABLE_VIEW = "table_view"


class Attribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    attribute: str = Field(description="Attribute name, e.g. Color or Screen Size")
    value: str = Field(description="Attribute value, e.g. Midnight Black or 6.7 inches")


class Product(BaseModel):
    """One spreadsheet row to enrich.

    ``attributes`` is only set when the product is Done and ``error`` only when
    it is in Error; a Pending or Processing product carries neither.
    """

    id: int
    sku: str
    part_number: str = ""
    link: str
    status: ProductStatus = ProductStatus.PENDING
    attributes: Optional[List[Attribute]] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def check_status_payload(self) -> "Product":
        if self.attributes is not None and self.status != ProductStatus.DONE:
            raise ValueError(f"attributes are only allowed on Done products, not {self.status.value}")
        if self.error is not None and self.status != ProductStatus.ERROR:
            raise ValueError(f"error is only allowed on Error products, not {self.status.value}")
        if self.status == ProductStatus.DONE and self.attributes is None:
            raise ValueError("Done products must carry attributes")
        if self.status == ProductStatus.ERROR and not self.error:
            raise ValueError("Error products must carry an error message")
        return self


class ExtractionOutcome(BaseModel):
    id: int
    status: ProductStatus
    attributes: Optional[List[Attribute]] = None
    error: Optional[str] = None

    @classmethod
    def done(cls, product_id: int, attributes: List[Attribute]) -> "ExtractionOutcome":
        return cls(id=product_id, status=ProductStatus.DONE, attributes=attributes)

    @classmethod
    def failed(cls, product_id: int, error: str) -> "ExtractionOutcome":
        return cls(id=product_id, status=ProductStatus.ERROR, error=error)


class CredentialValidation(BaseModel):
    is_valid: bool
    provider: Optional[ProviderIdentity] = None
    error: Optional[str] = None


# Request bodies

class ApiKeyRequest(BaseModel):
    api_key: str


class ValidateKeyRequest(BaseModel):
    api_key: Optional[str] = None


class SchemaTextRequest(BaseModel):
    schema_text: str


class CategoryRequest(BaseModel):
    category: str


class FetchRequest(BaseModel):
    product_ids: List[int] = Field(default_factory=list)
    select_all: bool = False


# Responses

class ApiKeyStatusResponse(BaseModel):
    has_key: bool
    provider: Optional[ProviderIdentity] = None
    validated: bool


class ValidationResponse(BaseModel):
    is_valid: bool
    provider: Optional[ProviderIdentity] = None
    message: str


class UploadResponse(BaseModel):
    success: bool
    message: str
    product_count: int
    products: List[Product]


class SessionResponse(BaseModel):
    workflow_step: WorkflowStep
    category: Optional[str] = None
    is_processing: bool
    products: List[Product]


class SchemaResponse(BaseModel):
    success: bool
    message: str
    categories: List[str]


class WorkflowResponse(BaseModel):
    workflow_step: WorkflowStep
    category: Optional[str] = None
    schema_fragment: Optional[Any] = None


class FetchResponse(BaseModel):
    success: bool
    message: str
    requested_count: int
    done_count: int
    error_count: int
    results: List[ExtractionOutcome]
    products: List[Product]


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str


# category name -> attribute template, as loaded from the schema JSON
ExtractionSchema = Dict[str, Any]
