"""
Exceptions for the product attribute extractor.

Input errors (spreadsheet, schema) block the wizard step that raised them,
credential and selection errors block a fetch before any network call, and
extraction errors are isolated to the product they belong to.
"""

from typing import Any, Dict, List, Optional


class AttributeExtractorError(Exception):
    """Base exception for all extractor errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class SpreadsheetError(AttributeExtractorError):
    """The uploaded product spreadsheet could not be mapped to products."""

    def __init__(
        self,
        message: str,
        missing_columns: Optional[List[str]] = None,
        headers_found: Optional[List[str]] = None,
    ) -> None:
        self.missing_columns = missing_columns or []
        self.headers_found = headers_found or []
        super().__init__(
            message,
            {"missing_columns": self.missing_columns, "headers_found": self.headers_found},
        )


class SchemaFileError(AttributeExtractorError):
    """The extraction schema is not a usable category mapping."""

    pass


class CredentialError(AttributeExtractorError):
    """The API key is missing or has not been validated."""

    pass


class SelectionError(AttributeExtractorError):
    """No products, or unknown products, were selected for a fetch."""

    pass


class WorkflowError(AttributeExtractorError):
    """An action was requested out of wizard order or while a batch is running."""

    pass


class ExtractionError(AttributeExtractorError):
    """A single product's attribute extraction failed."""

    pass


class ResponseFormatError(ExtractionError):
    """The provider answered with JSON that is not a list of attribute/value objects."""

    pass


class AuthenticationError(ExtractionError):
    """The provider rejected the API key; the message is shown to the user as is."""

    pass


class ExportError(AttributeExtractorError):
    """There is nothing to export."""

    pass
