import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from app.core.config import settings
from app.core.errors import AuthenticationError, ExtractionError, ResponseFormatError
from app.models.schemas import Attribute, CredentialValidation, ExtractionSchema, ProviderIdentity
from app.prompt import Prompt, build_prompt

logger = logging.getLogger(__name__)

# Gemini API keys start with 'AIza'
GEMINI_KEY_PREFIX = "AIza"

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*|```", re.IGNORECASE)


def route(credential: str) -> ProviderIdentity:
    """Guess the provider from the shape of the API key"""
    if credential.strip().startswith(GEMINI_KEY_PREFIX):
        return ProviderIdentity.GEMINI
    return ProviderIdentity.PERPLEXITY


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences wrapped around a JSON payload"""
    return CODE_FENCE_PATTERN.sub("", text).strip()


def _coerce_value(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
        return ", ".join(str(v) for v in value)
    return None


def parse_attribute_payload(text: str, provider_name: str) -> List[Attribute]:
    """Parse the raw model text into attributes.

    Raises:
        ResponseFormatError: Valid JSON that isn't a list of attribute/value objects
        ExtractionError: Empty content or malformed JSON
    """
    if not text or not text.strip():
        raise ExtractionError(f"No content returned from {provider_name} API.")

    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ExtractionError(f"{provider_name} API returned malformed JSON: {e.msg}") from e

    format_error = ResponseFormatError(f"{provider_name} API returned data in an unexpected format.")
    if not isinstance(parsed, list):
        raise format_error

    attributes = []
    for item in parsed:
        if not isinstance(item, dict) or "attribute" not in item or "value" not in item:
            raise format_error
        name = _coerce_value(item["attribute"])
        value = _coerce_value(item["value"])
        if name is None or value is None:
            raise format_error
        attributes.append(Attribute(attribute=name, value=value))

    return attributes


class ExtractionProvider(ABC):
    """One completion service able to extract attributes from a product link"""

    identity: ProviderIdentity

    @property
    def name(self) -> str:
        return self.identity.value

    def extract(
        self,
        product_link: str,
        credential: str,
        schema: Optional[ExtractionSchema] = None,
        category: Optional[str] = None,
    ) -> List[Attribute]:
        """Extract attributes for one product; every failure is an ExtractionError"""
        prompt = build_prompt(product_link, schema, category)
        try:
            text = self.complete(prompt, credential.strip())
            return parse_attribute_payload(text, self.name)
        except ExtractionError as e:
            logger.error("%s extraction failed for %s: %s", self.name, product_link, e)
            if isinstance(e, AuthenticationError):
                raise
            raise e.__class__(f"Failed to fetch attributes from {self.name}: {e.message}") from e

    def validate_credential(self, credential: str) -> CredentialValidation:
        try:
            self.ping(credential.strip())
        except ExtractionError as e:
            logger.warning("%s API key validation failed: %s", self.name, e)
            return CredentialValidation(
                is_valid=False,
                provider=self.identity,
                error=f"{self.name} validation failed: {e.message}",
            )
        logger.info("%s API key validated", self.name)
        return CredentialValidation(is_valid=True, provider=self.identity)

    @abstractmethod
    def complete(self, prompt: Prompt, credential: str) -> str:
        """Send the prompt and return the raw text payload"""

    @abstractmethod
    def ping(self, credential: str) -> None:
        """Make the cheapest possible call that proves the key is accepted"""


class GeminiProvider(ExtractionProvider):
    identity = ProviderIdentity.GEMINI

    def _llm(self, credential: str, **kwargs) -> ChatGoogleGenerativeAI:
        return ChatGoogleGenerativeAI(
            model=settings.gemini_model,
            google_api_key=credential,
            temperature=0,
            timeout=settings.request_timeout,
            max_retries=settings.provider_max_retries,
            **kwargs,
        )

    def complete(self, prompt: Prompt, credential: str) -> str:
        llm = self._llm(
            credential,
            response_mime_type="application/json",
            response_schema=prompt.response_schema,
        )
        messages = [
            SystemMessage(content=prompt.instruction),
            HumanMessage(content=prompt.request),
        ]
        try:
            response = llm.invoke(messages)
        except Exception as e:
            # google-genai and langchain raise a mix of exception types
            raise ExtractionError(str(e) or e.__class__.__name__) from e
        return _message_text(response.content)

    def ping(self, credential: str) -> None:
        try:
            self._llm(credential).invoke([HumanMessage(content="Hi")])
        except Exception as e:
            raise ExtractionError(str(e) or e.__class__.__name__) from e


def _message_text(content: Any) -> str:
    """Flatten LangChain message content (str or list of parts) to text"""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class PerplexityProvider(ExtractionProvider):
    identity = ProviderIdentity.PERPLEXITY

    @property
    def endpoint(self) -> str:
        return f"{settings.perplexity_api_url.rstrip('/')}/chat/completions"

    def _post(self, credential: str, payload: dict) -> requests.Response:
        headers = {
            'Content-Type': 'application/json',
            'Authorization': f'Bearer {credential}'
        }
        try:
            return requests.post(
                self.endpoint,
                headers=headers,
                json=payload,
                timeout=settings.request_timeout
            )
        except requests.exceptions.RequestException as e:
            raise ExtractionError(f"Network error contacting {self.name} API: {e}") from e

    def complete(self, prompt: Prompt, credential: str) -> str:
        response = self._post(credential, {
            "model": settings.perplexity_model,
            "messages": [
                {"role": "system", "content": prompt.instruction},
                {"role": "user", "content": prompt.request}
            ]
        })

        if response.status_code == 401:
            raise AuthenticationError("Authentication failed. Please check your Perplexity API key.")
        if not response.ok:
            logger.error("Perplexity API error response: %s", response.text)
            raise ExtractionError(f"Perplexity API request failed with status {response.status_code}.")

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            content = None

        if not content:
            raise ExtractionError("No content returned from Perplexity API.")
        return content

    def ping(self, credential: str) -> None:
        response = self._post(credential, {
            "model": settings.perplexity_model,
            "messages": [{"role": "user", "content": "Hi"}],
            "max_tokens": settings.validation_max_tokens
        })
        if response.ok:
            return

        try:
            message = response.json().get("error", {}).get("message")
        except (ValueError, AttributeError):
            message = None
        raise ExtractionError(message or f"API returned status {response.status_code}")


PROVIDERS: Dict[ProviderIdentity, ExtractionProvider] = {
    ProviderIdentity.GEMINI: GeminiProvider(),
    ProviderIdentity.PERPLEXITY: PerplexityProvider(),
}


def get_provider(identity: ProviderIdentity) -> ExtractionProvider:
    return PROVIDERS[identity]


def fetch_product_attributes(
    product_link: str,
    credential: str,
    schema: Optional[ExtractionSchema] = None,
    category: Optional[str] = None,
) -> List[Attribute]:
    """Extract attributes for one product with whichever provider the key belongs to"""
    if not credential or not credential.strip():
        raise ExtractionError("API key is not configured. Please enter and save your API key.")
    return get_provider(route(credential)).extract(product_link, credential, schema, category)


def validate_api_key(credential: str) -> CredentialValidation:
    """Check that the provider accepts the key (costs one tiny completion)"""
    if not credential or not credential.strip():
        return CredentialValidation(is_valid=False, error="API key is empty.")
    return get_provider(route(credential)).validate_credential(credential)
