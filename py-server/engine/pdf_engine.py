"""
PDF Processing Engine - Core Coordinator

The PDFEngine owns one loaded PDF (the document handle) for as long as the
caller processes that file's selected pages. It keeps a pikepdf view for
structure and content streams, a PyMuPDF view for rasterization, and the
processors that render pages and extract region images.

Usage:
    >>> from engine.pdf_engine import PDFEngine
    >>>
    >>> with PDFEngine(content, 'catalog.pdf') as engine:
    ...     page = engine.get_page(1)
    ...     image = engine.rasterizer.render_page_image(page)
"""

import io
import logging
from dataclasses import dataclass, field
from typing import Optional, Any, Dict, TYPE_CHECKING

import fitz
import pikepdf

from constants.pdf_operators import DEFAULT_OPERATOR_TABLE, OperatorTable
from engine.config import EngineConfig
from engine.base_processor import ProcessorRegistry
from utils.validation import (
    PdfValidationError,
    CorruptDocument,
    PageOutOfRange,
    DocumentReleased,
    validate_file_content,
)

if TYPE_CHECKING:
    from engine.page_rasterizer import PageRasterizer
    from engine.region_renderer import RegionCropRenderer
    from engine.image_processor import NativeImageExtractor
    from engine.region_extractor import ExtractionOrchestrator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageHandle:
    """
    One page of an open document.

    Width and height are the unscaled visible page size in points. The
    handle is only valid while its engine is open.
    """
    page_number: int
    width: float
    height: float
    engine: 'PDFEngine' = field(repr=False, compare=False)

    @property
    def index(self) -> int:
        """0-based index into the document's page list."""
        return self.page_number - 1

    @property
    def source_name(self) -> str:
        return self.engine.filename


class PDFEngine:
    """
    Document handle with resource management and processor coordination.

    Loading happens in open() (or on entering the context manager); every
    failure to parse the bytes surfaces as CorruptDocument. release() frees
    both parsed views exactly once; afterwards every call raises
    DocumentReleased.

    Example:
        >>> engine = PDFEngine.load(content, 'catalog.pdf')
        >>> try:
        ...     total_pages = engine.get_page_count()
        ... finally:
        ...     engine.release()
    """

    def __init__(
        self,
        content: bytes,
        filename: str = 'document.pdf',
        config: Optional[EngineConfig] = None,
        operator_table: Optional[OperatorTable] = None,
    ):
        """
        Initialize engine with raw bytes and optional configuration.

        Note: Document is not parsed until open() or __enter__.

        Args:
            content: Raw PDF bytes
            filename: Source name used for output filenames and logs
            config: Engine configuration (uses defaults if None)
            operator_table: Operator classification shared by the scanner and
                the text filter (uses DEFAULT_OPERATOR_TABLE if None)

        Raises:
            PdfValidationError: If configuration is invalid
        """
        self.content = content
        self.filename = filename
        self.config = config or EngineConfig.default()
        self.operator_table = operator_table or DEFAULT_OPERATOR_TABLE

        if not self.config.validate():
            raise PdfValidationError("Invalid engine configuration")

        # Resource handles (initialized in open)
        self._pikepdf_doc: Optional[pikepdf.Pdf] = None
        self._fitz_doc: Optional[fitz.Document] = None
        self._is_open = False
        self._released = False

        self._processors = ProcessorRegistry()

        self._page_count: Optional[int] = None
        self._file_size_mb = len(content or b'') / (1024 * 1024)

        logger.debug(f"PDFEngine initialized for: {filename}")

    @classmethod
    def load(
        cls,
        content: bytes,
        filename: str = 'document.pdf',
        config: Optional[EngineConfig] = None,
        operator_table: Optional[OperatorTable] = None,
    ) -> 'PDFEngine':
        """
        Parse bytes into an open engine.

        Raises:
            CorruptDocument: If the bytes are empty, not a PDF, encrypted,
                or cannot be parsed
        """
        return cls(content, filename, config=config, operator_table=operator_table).open()

    def open(self) -> 'PDFEngine':
        """
        Parse the document and initialize processors.

        Returns:
            Self, so load/open can be chained

        Raises:
            CorruptDocument: If the PDF cannot be opened
            DocumentReleased: If this engine was already released
        """
        if self._released:
            raise DocumentReleased(f"{self.filename} has already been released")
        if self._is_open:
            return self

        logger.info(f"Opening PDF: {self.filename}")

        if self.config.validate_on_open:
            is_valid, error_message = validate_file_content(self.content, self.config.max_file_size_mb)
            if not is_valid:
                raise CorruptDocument(error_message)
        elif not self.content:
            raise CorruptDocument("File is empty")

        try:
            self._pikepdf_doc = pikepdf.open(io.BytesIO(self.content))
            self._fitz_doc = fitz.open(stream=self.content, filetype='pdf')

            if self._fitz_doc.needs_pass:
                raise CorruptDocument("PDF is encrypted")

            self._page_count = len(self._pikepdf_doc.pages)
            if self._page_count == 0:
                raise CorruptDocument("PDF has no pages")

            self._is_open = True
            self._initialize_processors()

        except CorruptDocument:
            self._cleanup_resources()
            raise
        except pikepdf.PasswordError:
            self._cleanup_resources()
            raise CorruptDocument("PDF is encrypted")
        except Exception as e:
            logger.error(f"Failed to open PDF {self.filename}: {e}")
            self._cleanup_resources()
            raise CorruptDocument(f"Failed to open PDF: {str(e)}") from e

        logger.info(
            f"PDF opened successfully: {self._page_count} pages, "
            f"{self._file_size_mb:.2f} MB"
        )
        return self

    def __enter__(self) -> 'PDFEngine':
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        """
        Exit context manager - release the document unless the caller already did.
        """
        if not self._released:
            self.release()

        if exc_type is not None:
            logger.debug(f"Exception during engine operation: {exc_val}")

        # Don't suppress exceptions
        return False

    def release(self) -> None:
        """
        Free all parsed state. Must be called exactly once.

        Raises:
            DocumentReleased: If called a second time
        """
        if self._released:
            raise DocumentReleased(f"{self.filename} has already been released")

        logger.info(f"Releasing PDF: {self.filename}")
        self._cleanup_resources()
        self._released = True

    def _initialize_processors(self) -> None:
        """Build processors bottom-up; the orchestrator depends on the other two extractors."""
        from engine.content_scanner import ContentStreamScanner
        from engine.content_modifier import TextSuppressionFilter
        from engine.page_rasterizer import PageRasterizer
        from engine.region_renderer import RegionCropRenderer
        from engine.image_processor import NativeImageExtractor
        from engine.region_extractor import ExtractionOrchestrator

        scanner = ContentStreamScanner(self.operator_table)
        text_filter = TextSuppressionFilter(self.operator_table)

        rasterizer = PageRasterizer(self, self.config.rasterizer)
        cropper = RegionCropRenderer(self, self.config.region_crop, scanner, text_filter)
        native = NativeImageExtractor(self, self.config.native_image, scanner)

        self._processors.register('rasterizer', rasterizer)
        self._processors.register('crop', cropper)
        self._processors.register('native', native)
        self._processors.register('regions', ExtractionOrchestrator(self, native, cropper))

        self._processors.initialize_all()

    def _cleanup_resources(self) -> None:
        """
        Clean up processors and both document views.

        Idempotent and safe to call after a partial open.
        """
        self._processors.cleanup_all()
        self._processors.clear()

        if self._fitz_doc is not None:
            try:
                self._fitz_doc.close()
            except Exception as e:
                logger.warning(f"Error closing PyMuPDF document: {e}")
            finally:
                self._fitz_doc = None

        if self._pikepdf_doc is not None:
            try:
                self._pikepdf_doc.close()
            except Exception as e:
                logger.warning(f"Error closing pikepdf document: {e}")
            finally:
                self._pikepdf_doc = None

        self._is_open = False

    def _ensure_open(self) -> None:
        if self._released:
            raise DocumentReleased(f"{self.filename} has been released")
        if not self._is_open:
            raise RuntimeError("Engine not opened - call open() or use within context manager")

    # Public API - Document Information

    def get_page_count(self) -> int:
        """
        Get total number of pages in document.

        Raises:
            DocumentReleased: If the document was released
        """
        self._ensure_open()
        return self._page_count

    def get_file_size_mb(self) -> float:
        self._ensure_open()
        return self._file_size_mb

    def get_page(self, page_number: int) -> PageHandle:
        """
        Get a handle for a 1-based page number.

        Raises:
            PageOutOfRange: If page_number is outside [1, page_count]
            DocumentReleased: If the document was released
        """
        self._ensure_open()

        if not isinstance(page_number, int) or page_number < 1 or page_number > self._page_count:
            raise PageOutOfRange(
                f"Page {page_number} out of range (1-{self._page_count}) in {self.filename}"
            )

        rect = self._fitz_doc[page_number - 1].rect
        return PageHandle(
            page_number=page_number,
            width=float(rect.width),
            height=float(rect.height),
            engine=self,
        )

    # Public API - Resource Access (for processors)

    @property
    def pikepdf_document(self) -> pikepdf.Pdf:
        self._ensure_open()
        return self._pikepdf_doc

    @property
    def document_bytes(self) -> bytes:
        """Raw bytes of the open document, for scratch copies."""
        self._ensure_open()
        return self.content

    @property
    def fitz_document(self) -> fitz.Document:
        self._ensure_open()
        return self._fitz_doc

    def pikepdf_page(self, page: PageHandle) -> pikepdf.Page:
        """pikepdf page for content stream and resource access."""
        self._ensure_open()
        return self._pikepdf_doc.pages[page.index]

    def render_page(self, page: PageHandle) -> fitz.Page:
        """PyMuPDF page for rasterization."""
        self._ensure_open()
        return self._fitz_doc[page.index]

    # Public API - Processor Access

    def _processor(self, name: str):
        self._ensure_open()
        return self._processors.require(name)

    @property
    def rasterizer(self) -> 'PageRasterizer':
        return self._processor('rasterizer')

    @property
    def region_renderer(self) -> 'RegionCropRenderer':
        return self._processor('crop')

    @property
    def native_extractor(self) -> 'NativeImageExtractor':
        return self._processor('native')

    @property
    def region_extractor(self) -> 'ExtractionOrchestrator':
        return self._processor('regions')

    # Status and Debugging

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def is_released(self) -> bool:
        return self._released

    def get_status(self) -> Dict[str, Any]:
        """
        Get engine status information.

        Returns:
            Dictionary with status information
        """
        return {
            'is_open': self._is_open,
            'is_released': self._released,
            'filename': self.filename,
            'page_count': self._page_count,
            'file_size_mb': self._file_size_mb,
            'processors': self._processors.processor_names,
            'processors_ready': self._is_open and self._processors.validate_all(),
            'config': self.config.to_dict()
        }

    def __repr__(self) -> str:
        if self._released:
            status = "released"
        else:
            status = "open" if self._is_open else "closed"
        pages = f"{self._page_count} pages" if self._page_count else "unknown pages"
        return f"PDFEngine({self.filename}, {status}, {pages})"
