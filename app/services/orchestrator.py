import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List

from app.core.errors import CredentialError, ExtractionError, SelectionError
from app.models.schemas import ExtractionOutcome, Product, ProductStatus
from app.services.extraction_service import fetch_product_attributes
from app.services.session import ExtractionSession

logger = logging.getLogger(__name__)


def mark_processing(products: List[Product], ids: Iterable[int]) -> List[Product]:
    ids = set(ids)
    return [
        p.model_copy(update={"status": ProductStatus.PROCESSING, "attributes": None, "error": None})
        if p.id in ids else p
        for p in products
    ]


def merge_outcomes(products: List[Product], outcomes: Dict[int, ExtractionOutcome]) -> List[Product]:
    merged = []
    for product in products:
        outcome = outcomes.get(product.id)
        if outcome is None:
            merged.append(product)
        elif outcome.status == ProductStatus.DONE:
            merged.append(product.model_copy(
                update={"status": ProductStatus.DONE, "attributes": outcome.attributes, "error": None}
            ))
        else:
            merged.append(product.model_copy(
                update={"status": ProductStatus.ERROR, "attributes": None, "error": outcome.error}
            ))
    return merged


class FetchOrchestrator:
    """Runs one extraction per selected product, all at once, and merges the results.

    Calls are never retried, cancelled or ordered; a failing product never stops
    the rest of the batch. Results are published only after every call settles.
    """

    def __init__(self, extract: Callable = fetch_product_attributes):
        self.extract = extract

    def check_preconditions(self, session: ExtractionSession, selected_ids: List[int]) -> None:
        if not session.credential or not session.credential.strip():
            raise CredentialError("Please enter and save an API key before fetching attributes.")
        if not session.credential_validated:
            raise CredentialError("Please validate your API key before fetching attributes.")
        if not selected_ids:
            raise SelectionError("Select at least one product to fetch.")

        unknown = sorted(set(selected_ids) - set(session.product_ids()))
        if unknown:
            raise SelectionError(f"Unknown product id(s): {', '.join(str(i) for i in unknown)}")

    def _settle(self, product_id: int, result) -> ExtractionOutcome:
        if isinstance(result, ExtractionError):
            return ExtractionOutcome.failed(product_id, result.message)
        if isinstance(result, BaseException):
            logger.exception("Unexpected error extracting product %s", product_id, exc_info=result)
            return ExtractionOutcome.failed(product_id, f"Unknown API error: {result}")
        return ExtractionOutcome.done(product_id, result)

    async def fetch_all(self, session: ExtractionSession, selected_ids: List[int]) -> Dict[int, ExtractionOutcome]:
        """Extract attributes for the selected products and merge them into the session.

        Raises:
            CredentialError: No key saved, or the key wasn't validated
            SelectionError: Nothing selected, or ids not in the session
        """
        selected_ids = list(dict.fromkeys(selected_ids))
        self.check_preconditions(session, selected_ids)

        credential = session.credential
        schema, category = session.schema, session.category
        by_id = {p.id: p for p in session.products}
        targets = [by_id[i] for i in selected_ids]

        session.products = mark_processing(session.products, selected_ids)
        session.is_processing = True
        logger.info("Fetching attributes for %d products", len(targets))

        loop = asyncio.get_running_loop()
        try:
            with ThreadPoolExecutor(max_workers=len(targets)) as executor:
                results = await asyncio.gather(
                    *(
                        loop.run_in_executor(executor, self.extract, p.link, credential, schema, category)
                        for p in targets
                    ),
                    return_exceptions=True,
                )
        finally:
            session.is_processing = False

        outcomes = {p.id: self._settle(p.id, r) for p, r in zip(targets, results)}
        session.products = merge_outcomes(session.products, outcomes)

        done = sum(1 for o in outcomes.values() if o.status == ProductStatus.DONE)
        logger.info("Batch finished: %d done, %d failed", done, len(outcomes) - done)
        return outcomes
