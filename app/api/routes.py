import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from app.core.config import settings
from app.core.errors import (
    CredentialError,
    ExportError,
    SchemaFileError,
    SelectionError,
    SpreadsheetError,
    WorkflowError,
)
from app.models.schemas import (
    ApiKeyRequest,
    ApiKeyStatusResponse,
    CategoryRequest,
    FetchRequest,
    FetchResponse,
    HealthResponse,
    ProductStatus,
    SchemaResponse,
    SchemaTextRequest,
    SessionResponse,
    UploadResponse,
    ValidateKeyRequest,
    ValidationResponse,
    WorkflowResponse,
    WorkflowStep,
)
from app.services.credential_store import JsonFileStore
from app.services.export_service import export_csv
from app.services.extraction_service import route, validate_api_key
from app.services.orchestrator import FetchOrchestrator
from app.services.schema_service import parse_schema
from app.services.session import ExtractionSession
from app.services.spreadsheet_service import parse_spreadsheet

logger = logging.getLogger(__name__)

router = APIRouter()

_session = ExtractionSession(JsonFileStore(settings.credential_store_path))
_orchestrator = FetchOrchestrator()


def get_session() -> ExtractionSession:
    return _session


def get_orchestrator() -> FetchOrchestrator:
    return _orchestrator


def _workflow(session: ExtractionSession) -> WorkflowResponse:
    return WorkflowResponse(
        workflow_step=session.workflow_step,
        category=session.category,
        schema_fragment=session.schema_fragment,
    )


@router.get("/api-key", response_model=ApiKeyStatusResponse)
def api_key_status(session: ExtractionSession = Depends(get_session)):
    """Whether a key is saved, which provider it looks like, and if it was validated"""
    has_key = bool(session.credential.strip())
    return ApiKeyStatusResponse(
        has_key=has_key,
        provider=route(session.credential) if has_key else None,
        validated=session.credential_validated,
    )


@router.put("/api-key", response_model=ApiKeyStatusResponse)
def save_api_key(request: ApiKeyRequest, session: ExtractionSession = Depends(get_session)):
    """Save the API key; it has to be validated again before fetching"""
    if not request.api_key.strip():
        raise HTTPException(status_code=400, detail="API key is empty.")
    try:
        session.save_credential(request.api_key)
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return ApiKeyStatusResponse(has_key=True, provider=route(request.api_key), validated=False)


@router.post("/api-key/validate", response_model=ValidationResponse)
async def validate_key(request: Optional[ValidateKeyRequest] = None, session: ExtractionSession = Depends(get_session)):
    """Validate the given key, or the saved one, with one tiny provider call"""
    credential = request.api_key if request and request.api_key is not None else session.credential

    try:
        result = await run_in_threadpool(validate_api_key, credential)
    except Exception as e:
        logger.exception("API key validation crashed")
        return ValidationResponse(is_valid=False, message=f"An unexpected error occurred during validation: {str(e)}")

    if not result.is_valid:
        session.record_validation(credential, result)
        return ValidationResponse(is_valid=False, provider=result.provider, message=result.error or "Validation failed.")

    message = f"Successfully validated with {result.provider.value}."
    if not session.record_validation(credential, result):
        message += " Save this key to use it for fetching."
    return ValidationResponse(is_valid=True, provider=result.provider, message=message)


@router.post("/products/upload", response_model=UploadResponse)
async def upload_products(file: UploadFile = File(...), session: ExtractionSession = Depends(get_session)):
    """Parse a product spreadsheet and start a new session"""
    try:
        content = await file.read()
        if len(content) > settings.max_file_size:
            raise HTTPException(
                status_code=400,
                detail=f"File is too large. Maximum size is {settings.max_file_size} bytes."
            )

        products = parse_spreadsheet(content, file.filename)
        session.load_products(products)

        return UploadResponse(
            success=True,
            message=f"Loaded {len(products)} product{'s' if len(products) != 1 else ''} from {file.filename}.",
            product_count=len(products),
            products=products
        )

    except HTTPException:
        raise
    except SpreadsheetError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except Exception as e:
        logger.exception("Unexpected error processing %s", file.filename)
        return UploadResponse(
            success=False,
            message=f"An unknown error occurred while processing the file: {str(e)}",
            product_count=0,
            products=[]
        )


@router.get("/products", response_model=SessionResponse)
def list_products(session: ExtractionSession = Depends(get_session)):
    return SessionResponse(
        workflow_step=session.workflow_step,
        category=session.category,
        is_processing=session.is_processing,
        products=session.products
    )


@router.post("/schema/on-the-fly", response_model=WorkflowResponse)
def choose_on_the_fly(session: ExtractionSession = Depends(get_session)):
    try:
        session.choose_on_the_fly()
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return _workflow(session)


@router.post("/schema/master", response_model=WorkflowResponse)
def choose_schema_master(session: ExtractionSession = Depends(get_session)):
    try:
        session.choose_schema_master()
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return _workflow(session)


@router.post("/schema", response_model=SchemaResponse)
def load_schema(request: SchemaTextRequest, session: ExtractionSession = Depends(get_session)):
    """Load a schema pasted as text"""
    return _load_schema(request.schema_text, session)


@router.post("/schema/upload", response_model=SchemaResponse)
async def upload_schema(file: UploadFile = File(...), session: ExtractionSession = Depends(get_session)):
    """Load a schema from an uploaded JSON file"""
    return _load_schema(await file.read(), session)


def _load_schema(text, session: ExtractionSession) -> SchemaResponse:
    try:
        categories = session.load_schema(parse_schema(text))
    except SchemaFileError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=e.message)

    return SchemaResponse(
        success=True,
        message=f"Schema loaded with {len(categories)} categor{'ies' if len(categories) != 1 else 'y'}.",
        categories=categories
    )


@router.post("/schema/category", response_model=WorkflowResponse)
def apply_category(request: CategoryRequest, session: ExtractionSession = Depends(get_session)):
    try:
        session.apply_category(request.category)
    except SchemaFileError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return _workflow(session)


@router.post("/products/fetch", response_model=FetchResponse)
async def fetch_attributes(
    request: FetchRequest,
    session: ExtractionSession = Depends(get_session),
    orchestrator: FetchOrchestrator = Depends(get_orchestrator),
):
    """Extract attributes for the selected products in one concurrent batch"""
    if session.is_processing:
        raise HTTPException(status_code=409, detail="A fetch is already in progress.")
    if session.workflow_step != WorkflowStep.TABLE_VIEW:
        raise HTTPException(status_code=409, detail="Choose how attributes should be extracted before fetching.")

    selected_ids = session.product_ids() if request.select_all else request.product_ids

    try:
        outcomes = await orchestrator.fetch_all(session, selected_ids)
    except (CredentialError, SelectionError) as e:
        raise HTTPException(status_code=400, detail=e.message)
    except Exception as e:
        logger.exception("Unexpected error during fetch")
        return FetchResponse(
            success=False,
            message=f"An unexpected error occurred while fetching attributes: {str(e)}",
            requested_count=len(selected_ids),
            done_count=0,
            error_count=0,
            results=[],
            products=session.products
        )

    results = list(outcomes.values())
    done_count = sum(1 for r in results if r.status == ProductStatus.DONE)
    error_count = len(results) - done_count

    message_parts = [f"Fetched attributes for {done_count} of {len(results)} product{'s' if len(results) != 1 else ''}"]
    if error_count > 0:
        message_parts.append(f"{error_count} failed")

    return FetchResponse(
        success=done_count > 0,
        message=", ".join(message_parts) + ".",
        requested_count=len(results),
        done_count=done_count,
        error_count=error_count,
        results=results,
        products=session.products
    )


@router.get("/products/export")
def export_products(session: ExtractionSession = Depends(get_session)):
    """Download the processed products as CSV"""
    if session.is_processing:
        raise HTTPException(status_code=409, detail="Wait for the running fetch to finish before exporting.")
    try:
        content = export_csv(session.products)
    except ExportError as e:
        raise HTTPException(status_code=400, detail=e.message)

    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{settings.export_filename}"'}
    )


@router.get("/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="healthy",
        service="Product Attribute Extractor API",
        version="1.0.0"
    )


@router.get("/")
def root():
    """API information and documentation links"""
    return {
        "service": "Product Attribute Extractor API",
        "version": "1.0.0",
        "description": "Extract product attributes from product pages with Gemini or Perplexity",
        "docs": "/docs",
        "health": "/health"
    }
