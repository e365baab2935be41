"""
Catalog Processing Components

Stateful components built on top of the engine:

- CatalogBatchProcessor: sequential page loop over uploaded catalogs
- RetryingRecognizer: rate-limit backoff around the recognition collaborator
- ProductRecognizer: the collaborator contract itself

These differ from utils/ which contains pure, stateless functions.
"""

from processors.recognition import (
    ProductRecognizer,
    RetryingRecognizer,
    classify_recognition_error,
    parse_products_response,
)
from processors.catalog_batch import (
    BatchSummary,
    CatalogBatchProcessor,
    CatalogFile,
    PageError,
)

__version__ = "1.0.0"
__all__ = [
    'ProductRecognizer',
    'RetryingRecognizer',
    'classify_recognition_error',
    'parse_products_response',
    'BatchSummary',
    'CatalogBatchProcessor',
    'CatalogFile',
    'PageError',
]
