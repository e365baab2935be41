"""
Recognition collaborator contract.

The service that turns a page image plus prompt into product records lives
outside this package. This module defines what the batch loop expects from
it, the retry policy for rate limiting, and helpers an adapter uses to map
a client's errors and JSON responses onto that contract.
"""

import json
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError

from engine.config import RetryOptions
from models.engine_types import EncodedImage
from models.pdf_types import ProductData
from utils.validation import AuthenticationFailure, RateLimited, RecognitionError

logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ('429', 'quota', 'rate limit', 'resource_exhausted')
AUTHENTICATION_MARKERS = (
    '401',
    '403',
    'api key',
    'api_key',
    'unauthenticated',
    'permission_denied',
    'invalid credentials',
)

# Field names some models return instead of ours
FIELD_ALIASES = {
    'produto_nome': 'nome',
}


class ProductRecognizer(Protocol):
    """
    Anything that extracts product records from one whole-page image.

    Implementations raise AuthenticationFailure for rejected credentials,
    RateLimited when asked to slow down, and RecognitionError (or any other
    exception) for everything else. An empty list means "no products".
    """

    def recognize(self, image: EncodedImage, prompt: str) -> List[ProductData]:
        ...


def error_message(error: BaseException) -> str:
    """Best human-readable message, unwrapping a JSON error body if present."""
    message = str(error)
    try:
        nested = json.loads(message)
    except (TypeError, ValueError):
        return message

    if isinstance(nested, dict) and isinstance(nested.get('error'), dict):
        return str(nested['error'].get('message') or message)
    return message


def classify_recognition_error(error: BaseException) -> RecognitionError:
    """
    Map a client exception onto the recognition error taxonomy.

    Already-classified errors are returned unchanged.
    """
    if isinstance(error, RecognitionError):
        return error

    message = error_message(error)
    haystack = f"{error} {message}".lower()

    if any(marker in haystack for marker in RATE_LIMIT_MARKERS):
        classified: RecognitionError = RateLimited(message)
    elif any(marker in haystack for marker in AUTHENTICATION_MARKERS):
        classified = AuthenticationFailure(message)
    else:
        classified = RecognitionError(message)

    classified.__cause__ = error
    return classified


def parse_products_response(text: Optional[str]) -> List[ProductData]:
    """
    Parse a `{"products": [...]}` JSON response into ProductData records.

    An empty or malformed response yields no products; individual records
    that fail validation are logged and dropped.
    """
    if not text:
        logger.warning("Recognition service returned an empty response")
        return []

    try:
        payload = json.loads(text)
    except ValueError as e:
        logger.warning(f"Recognition response is not valid JSON: {e}")
        return []

    items = payload.get('products') if isinstance(payload, dict) else None
    if not isinstance(items, list):
        logger.warning("Recognition response is not in the expected format")
        return []

    products = []
    for item in items:
        if not isinstance(item, dict):
            continue
        record: Dict[str, Any] = {FIELD_ALIASES.get(key, key): value for key, value in item.items()}
        record['especificacoes'] = record.get('especificacoes') or []
        record['avisos'] = record.get('avisos') or []
        try:
            products.append(ProductData.model_validate(record))
        except ValidationError as e:
            logger.warning(f"Dropping malformed product record: {e.error_count()} error(s)")
    return products


class RetryingRecognizer:
    """
    Wraps a recognizer with exponential backoff on RateLimited.

    The delay before retry n (1-based) is base * 2**n plus uniform jitter in
    [0, max_jitter]. After max_attempts the last RateLimited propagates.
    Other errors are not retried.
    """

    def __init__(
        self,
        recognizer: ProductRecognizer,
        options: Optional[RetryOptions] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.recognizer = recognizer
        self.options = options or RetryOptions()
        self.sleep = sleep
        self.rng = rng or random.Random()

        if not self.options.validate():
            raise ValueError("Invalid RetryOptions")

    def backoff_delay(self, attempt: int) -> float:
        jitter = self.rng.uniform(0, self.options.max_jitter_seconds)
        return self.options.base_delay_seconds * (2 ** attempt) + jitter

    def recognize(self, image: EncodedImage, prompt: str) -> List[ProductData]:
        max_attempts = self.options.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                return list(self.recognizer.recognize(image, prompt))
            except RateLimited:
                if attempt >= max_attempts:
                    logger.error(f"Page {image.page}: still rate limited after {max_attempts} attempts")
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"Pausing for {delay:.1f}s to manage rate limits "
                    f"(attempt {attempt}/{max_attempts})"
                )
                self.sleep(delay)

        # max_attempts >= 1, so the loop always returns or raises
        raise RecognitionError("Recognition retry loop exited without a result")
