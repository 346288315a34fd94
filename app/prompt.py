"""
Prompt construction for product attribute extraction.

A prompt is either unconstrained ("on the fly"), where the model decides which
attributes matter, or constrained to one category of a user-supplied schema.
Both kinds ask for the same response shape: a JSON array of objects with
string fields ``attribute`` and ``value``.
"""

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from app.core.errors import SchemaFileError
from app.models.schemas import ExtractionSchema


ATTRIBUTE_LIST_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "attribute": {
                "type": "string",
                "description": "The name of the product attribute (e.g., Color, Size).",
            },
            "value": {
                "type": "string",
                "description": "The value of the product attribute (e.g., Red, Large).",
            },
        },
        "required": ["attribute", "value"],
    },
}


OUTPUT_FORMAT_RULES = """**Output Format:**
- You MUST return a valid JSON array.
- Each element in the array must be an object with two string keys: "attribute" and "value".
- Do not include any explanatory text, markdown formatting (like ```json), or anything outside of the JSON array itself."""


ON_THE_FLY_INSTRUCTION = f"""
You are an expert AI assistant specializing in e-commerce product data extraction. Your primary function is to analyze a product page URL and extract its key specifications into a structured JSON format.

**Your Goal:**
Create a comprehensive list of product attributes and their corresponding values based on the content of the provided URL.

**Extraction Guidelines:**
- **FOCUS ON:** Technical specifications (e.g., CPU, RAM), physical properties (e.g., dimensions, weight, material), features (e.g., Screen Type, Resolution), and other core product details.
- **Be Specific:** For dimensions, use the format "Height x Width x Depth". For weight, include units (e.g., "5.2 kg").
- **DO NOT INCLUDE:**
    - Pricing, discounts, or sale information.
    - Shipping details, delivery times, or return policies.
    - Stock status, availability, or "in stock" messages.
    - Customer reviews, ratings, or Q&A sections.
    - Marketing jargon, slogans, or promotional text.
    - Information about related or recommended products.
- Capitalize the first letter of every word in attribute names.
- When an attribute has multiple values, join them into one value separated by commas.
- Never repeat an attribute name within the same product.
- Capture values only from the provided source link and nothing beyond it. Do not guess or invent values.

{OUTPUT_FORMAT_RULES}

**Example of correct output:**
[
  {{ "attribute": "Color", "value": "Midnight Black" }},
  {{ "attribute": "Screen Size", "value": "6.7 inches" }},
  {{ "attribute": "Material", "value": "Aluminum, Glass" }}
]
"""


SCHEMA_INSTRUCTION = """You are an expert AI assistant specializing in e-commerce product data extraction. Your task is to analyze a product page URL and extract its key specifications into a structured JSON format, strictly following the provided structure for the category "{category}".

**Extraction Guidelines:**
- **FOCUS ON:** Only the attributes defined in the provided JSON structure.
- **DO NOT INCLUDE:** Any attributes not present in the structure. Do not include pricing, shipping, reviews, etc. unless they are part of the structure.
- Capture values only from the provided source link and nothing beyond it. Do not guess or invent values.

{output_rules}

**JSON Structure for Category "{category}":**
{fragment}
"""


@dataclass(frozen=True)
class Unconstrained:
    """Free-form extraction, no schema selected."""


@dataclass(frozen=True)
class SchemaConstrained:
    """Extraction limited to the attributes of one schema category."""

    category: str
    fragment: Any


PromptConstraint = Union[Unconstrained, SchemaConstrained]


@dataclass(frozen=True)
class Prompt:
    instruction: str
    request: str
    constraint: PromptConstraint
    response_schema: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(ATTRIBUTE_LIST_SCHEMA))


def resolve_constraint(schema: Optional[ExtractionSchema], category: Optional[str]) -> PromptConstraint:
    """Pick the category fragment out of a full schema, or go unconstrained."""
    if not schema or not category:
        return Unconstrained()
    if category not in schema:
        raise SchemaFileError(
            f"Category '{category}' is not defined in the schema. "
            f"Available categories: {', '.join(schema.keys())}"
        )
    return SchemaConstrained(category=category, fragment=schema[category])


def schema_attribute_names(fragment: Any) -> List[str]:
    """Best-effort list of attribute names a schema fragment defines.

    Understands JSON-schema style ``properties``/``items`` nesting, plain
    ``{name: description}`` mappings, and lists of names or ``{"name": ...}``
    objects. Returns an empty list when no names can be found.
    """
    names: List[str] = []

    if isinstance(fragment, dict):
        if isinstance(fragment.get("properties"), dict):
            names.extend(fragment["properties"].keys())
        elif "items" in fragment:
            names.extend(schema_attribute_names(fragment["items"]))
        elif "type" not in fragment:
            names.extend(fragment.keys())
    elif isinstance(fragment, list):
        for item in fragment:
            if isinstance(item, str):
                names.append(item)
            elif isinstance(item, dict):
                name = item.get("name") or item.get("attribute")
                if isinstance(name, str):
                    names.append(name)

    # de-dupe, keep order
    return list(dict.fromkeys(str(n) for n in names if str(n).strip()))


def build_prompt(
    product_link: str,
    schema: Optional[ExtractionSchema] = None,
    category: Optional[str] = None,
) -> Prompt:
    """Build the extraction prompt for one product link.

    Args:
        product_link: URL of the product page
        schema: Full category -> fragment mapping, if the user chose one
        category: Selected category key of ``schema``

    Returns:
        Prompt with the instruction (system message), the request (user
        message) and the JSON schema the response must follow

    Raises:
        SchemaFileError: If ``category`` is not a key of ``schema``
    """
    constraint = resolve_constraint(schema, category)

    if isinstance(constraint, Unconstrained):
        return Prompt(
            instruction=ON_THE_FLY_INSTRUCTION,
            request=f"Capture the possible attributes and values from the selected link. URL: {product_link}",
            constraint=constraint,
        )

    instruction = SCHEMA_INSTRUCTION.format(
        category=constraint.category,
        output_rules=OUTPUT_FORMAT_RULES,
        fragment=json.dumps(constraint.fragment, indent=2, ensure_ascii=False),
    )

    response_schema = copy.deepcopy(ATTRIBUTE_LIST_SCHEMA)
    names = schema_attribute_names(constraint.fragment)
    if names:
        response_schema["items"]["properties"]["attribute"]["enum"] = names

    return Prompt(
        instruction=instruction,
        request=(
            f'Using the provided structure, extract attributes for the category '
            f'"{constraint.category}" from the URL: {product_link}'
        ),
        constraint=constraint,
        response_schema=response_schema,
    )
