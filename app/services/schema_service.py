import json
from typing import Union

from app.core.errors import SchemaFileError
from app.models.schemas import ExtractionSchema


def parse_schema(text: Union[str, bytes]) -> ExtractionSchema:
    """Parse a schema document whose top-level keys are category names.

    Raises:
        SchemaFileError: Invalid JSON, a non-object root, or no categories
    """
    try:
        schema = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise SchemaFileError(f"Schema Error: Invalid JSON format: {e}") from e

    if not isinstance(schema, dict):
        raise SchemaFileError("Schema Error: Schema must be a JSON object with categories as keys.")
    if not schema:
        raise SchemaFileError("Schema Error: Schema JSON is empty or does not contain any categories.")

    return schema
