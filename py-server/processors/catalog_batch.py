"""
Catalog Batch Processor

Sequential page loop over a set of catalog PDFs: render each selected page,
send it for recognition, then extract an image for every recognized product
region on that page.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Tuple, Union

from engine.config import EngineConfig, PageSelection
from engine.pdf_engine import PDFEngine, PageHandle
from models.engine_types import EncodedImage
from models.pdf_types import Origin, ProductData
from processors.recognition import ProductRecognizer, RetryingRecognizer
from utils.validation import (
    AuthenticationFailure,
    CorruptDocument,
    RateLimited,
    RenderFailure,
    ResourceManager,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class CatalogFile:
    """One uploaded PDF and the pages selected in it."""
    filename: str
    content: bytes = field(repr=False)
    pages: Union[PageSelection, Iterable[int], str, None] = None

    def __post_init__(self):
        if not isinstance(self.pages, PageSelection):
            self.pages = PageSelection.parse(self.pages)


@dataclass
class PageError:
    filename: str
    page: int
    error: str


@dataclass
class BatchSummary:
    """Outcome of a batch; results of completed pages are kept even when aborted."""
    products: List[ProductData] = field(default_factory=list)
    pages_with_data: List[Tuple[str, int]] = field(default_factory=list)
    pages_without_data: List[Tuple[str, int]] = field(default_factory=list)
    pages_errored: List[PageError] = field(default_factory=list)
    files_failed: List[Tuple[str, str]] = field(default_factory=list)
    pages_processed: int = 0
    total_pages: int = 0
    cancelled: bool = False
    aborted_error: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.aborted_error is not None

    def to_dict(self) -> dict:
        return {
            'products': len(self.products),
            'pages_with_data': len(self.pages_with_data),
            'pages_without_data': len(self.pages_without_data),
            'pages_errored': len(self.pages_errored),
            'files_failed': len(self.files_failed),
            'pages_processed': self.pages_processed,
            'total_pages': self.total_pages,
            'cancelled': self.cancelled,
            'aborted_error': self.aborted_error,
        }


class _BatchAborted(Exception):
    """Internal signal to unwind out of every file after an authentication failure."""


def attach_page_metadata(products: List[ProductData], page_image: EncodedImage, source: str) -> None:
    info = page_image.to_image_info()
    for product in products:
        product.imagens = [info]
        product.origem = Origin(source_pdf=source, page=page_image.page)


class CatalogBatchProcessor:
    """
    Processes catalog files one page at a time, in file order and ascending
    page order.

    Failure scope:
    - CorruptDocument skips the file.
    - AuthenticationFailure stops the whole batch.
    - Anything else fails only the page (or, during region extraction, only
      that product's image).

    Example:
        >>> processor = CatalogBatchProcessor(my_recognizer)
        >>> summary = processor.process([CatalogFile('a.pdf', data, '1-3')])
    """

    def __init__(
        self,
        recognizer: ProductRecognizer,
        config: Optional[EngineConfig] = None,
        cancel_event: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.config = config or EngineConfig.default()
        retry_kwargs = {'sleep': sleep} if sleep is not None else {}
        self.recognizer = RetryingRecognizer(recognizer, self.config.retry, **retry_kwargs)
        self.cancel_event = cancel_event or threading.Event()
        self.progress = progress

    def cancel(self) -> None:
        """Stop before the next page; finished pages are kept."""
        logger.info("Cancelling batch")
        self.cancel_event.set()

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def process(self, files: Iterable[CatalogFile]) -> BatchSummary:
        summary = BatchSummary()
        queued = [f for f in files if not f.pages.is_empty]

        if not queued:
            logger.info("No pages selected for processing")
            return summary

        summary.total_pages = sum(self._estimate_pages(f.pages) for f in queued)
        logger.info(f"Starting batch: {len(queued)} file(s), ~{summary.total_pages} page(s)")

        with ResourceManager() as resources:
            try:
                for catalog_file in queued:
                    if self.is_cancelled:
                        break
                    self._process_file(catalog_file, summary)
            except _BatchAborted:
                pass

        summary.cancelled = self.is_cancelled
        if summary.aborted:
            logger.error(f"Batch aborted: {summary.aborted_error}")
        elif summary.cancelled:
            logger.info("Batch cancelled")
        else:
            logger.info(
                f"Batch done: {len(summary.pages_with_data)} page(s) with products, "
                f"{len(summary.pages_without_data)} without, "
                f"{len(summary.pages_errored)} errored, "
                f"{len(summary.files_failed)} file(s) failed in {resources.elapsed_seconds:.1f}s"
            )
        return summary

    @staticmethod
    def _estimate_pages(selection: PageSelection) -> int:
        # Open-ended selections are counted once the document is loaded
        return 0 if selection.open_start is not None else len(selection)

    def _process_file(self, catalog_file: CatalogFile, summary: BatchSummary) -> None:
        estimated = self._estimate_pages(catalog_file.pages)
        logger.info(f"Rendering file: {catalog_file.filename}")

        try:
            engine = PDFEngine.load(catalog_file.content, catalog_file.filename, config=self.config)
        except CorruptDocument as e:
            logger.error(f"Skipping {catalog_file.filename}: {e}")
            summary.files_failed.append((catalog_file.filename, str(e)))
            summary.total_pages -= estimated
            self._report(summary)
            return

        with engine:
            page_numbers = catalog_file.pages.resolve(engine.get_page_count())
            logger.info(
                f"{catalog_file.filename}: {len(page_numbers)} of {engine.get_page_count()} page(s) selected "
                f"({engine.get_file_size_mb():.1f}MB)"
            )
            summary.total_pages += len(page_numbers) - estimated

            for page_number in page_numbers:
                if self.is_cancelled:
                    return
                try:
                    self._process_page(engine, engine.get_page(page_number), summary)
                finally:
                    summary.pages_processed += 1
                    self._report(summary)

    def _process_page(self, engine: PDFEngine, page: PageHandle, summary: BatchSummary) -> None:
        filename = engine.filename
        logger.info(f"Extracting page {page.page_number} of {filename}")

        try:
            page_image = engine.rasterizer.render_page_image(page)
            products = self.recognizer.recognize(page_image, self.config.prompt)
        except AuthenticationFailure as e:
            summary.aborted_error = str(e)
            raise _BatchAborted() from e
        except RateLimited as e:
            logger.error(f"Page {page.page_number} of {filename}: rate limit retries exhausted: {e}")
            summary.pages_errored.append(PageError(filename, page.page_number, str(e)))
            return
        except Exception as e:
            logger.error(f"Page {page.page_number} of {filename}: {e}")
            summary.pages_errored.append(PageError(filename, page.page_number, str(e)))
            return

        if not products:
            logger.info(f"No products found on page {page.page_number}")
            summary.pages_without_data.append((filename, page.page_number))
            return

        attach_page_metadata(products, page_image, filename)
        self._extract_product_images(engine, page, products)

        summary.products.extend(products)
        summary.pages_with_data.append((filename, page.page_number))
        logger.info(f"Found {len(products)} product(s) on page {page.page_number}")

    def _extract_product_images(self, engine: PDFEngine, page: PageHandle, products: List[ProductData]) -> None:
        for region_index, product in enumerate(products, start=1):
            if not product.bounding_box:
                continue
            try:
                image = engine.region_extractor.extract_region_image(page, product.bounding_box, region_index)
            except RenderFailure as e:
                logger.warning(f"Page {page.page_number}: no image for product {region_index}: {e}")
                continue

            if image is not None:
                product.imagem_produto_base64 = image.data_uri

    def _report(self, summary: BatchSummary) -> None:
        if self.progress is not None:
            self.progress(summary.pages_processed, summary.total_pages)
