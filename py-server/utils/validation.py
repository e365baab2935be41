"""
PDF Validation, Error Taxonomy and Resource Checks
Content validation, bounding box checks, memory guards and the exception
classes shared by the engine, the batch loop and the HTTP layer.
"""

import math
import time
import psutil
from typing import Optional, Sequence, Tuple, Union
import logging

from models.pdf_types import NormalizedBox

logger = logging.getLogger(__name__)

MB = 1024 * 1024

VALIDATION_CONSTANTS = {
    'PDF_SIGNATURE': b'%PDF',
    'SIGNATURE_SEARCH_BYTES': 1024,
    'MAX_FILE_SIZE_MB': 50,
    'MAX_PROCESSING_TIME_SECONDS': 300,
    'MIN_FREE_MEMORY_MB': 100,
    'BOX_SCALE': 1000,
}


class PdfValidationError(Exception):
    """Uploaded bytes are not an acceptable PDF"""
    pass

class CorruptDocument(PdfValidationError):
    """Bytes could not be parsed as a usable PDF document"""
    pass

class PageOutOfRange(IndexError):
    """Requested page number is outside [1, page_count]"""
    pass

class DocumentReleased(RuntimeError):
    """Document was used after release()"""
    pass

class InvalidBox(ValueError):
    """Bounding box is malformed or empty after clamping"""
    pass

class UnsupportedPixelFormat(ValueError):
    """Raster uses a byte layout with no conversion path"""
    pass

class RenderFailure(RuntimeError):
    """The rasterization step failed for a page or region"""
    pass

class RecognitionError(Exception):
    """Base class for failures surfaced by the recognition collaborator"""
    pass

class AuthenticationFailure(RecognitionError):
    """Credentials were rejected; the remaining batch cannot succeed"""
    pass

class RateLimited(RecognitionError):
    """The collaborator asked us to slow down; retryable"""
    pass


def validate_file_content(content: bytes, max_size_mb: Optional[int] = None) -> Tuple[bool, Optional[str]]:
    """
    Cheap checks on raw bytes before any parser sees them.

    Returns:
        (True, None) when the bytes look like a PDF within the size limit,
        otherwise (False, reason)
    """
    limit_mb = VALIDATION_CONSTANTS['MAX_FILE_SIZE_MB'] if max_size_mb is None else max_size_mb

    if not content:
        return False, "File is empty"

    signature = VALIDATION_CONSTANTS['PDF_SIGNATURE']
    if len(content) < len(signature):
        return False, f"File too small to be a valid PDF ({len(content)} bytes)"

    megabytes = len(content) / MB
    if megabytes > limit_mb:
        return False, f"File too large: {megabytes:.1f}MB exceeds the {limit_mb}MB limit"

    # Some producers emit junk before the header; readers accept it within the first 1KB
    if signature not in content[:VALIDATION_CONSTANTS['SIGNATURE_SEARCH_BYTES']]:
        return False, "Invalid PDF signature in uploaded content"

    return True, None


def clamp_box(box: Union[NormalizedBox, Sequence[float]]) -> Tuple[float, float, float, float]:
    """
    Clamp a [ymin, xmin, ymax, xmax] box to the 0-1000 scale and validate it.

    Raises:
        InvalidBox: wrong arity, non-numeric values, or an empty box after clamping
    """
    if isinstance(box, NormalizedBox):
        box = box.as_list()

    if box is None or len(box) != 4:
        raise InvalidBox(f"Bounding box must have 4 coordinates, got {box!r}")

    scale = VALIDATION_CONSTANTS['BOX_SCALE']
    try:
        values = [float(v) for v in box]
    except (TypeError, ValueError):
        raise InvalidBox(f"Bounding box coordinates must be numeric, got {box!r}")

    if any(math.isnan(v) for v in values):
        raise InvalidBox(f"Bounding box contains NaN: {box!r}")

    ymin, xmin, ymax, xmax = (min(max(v, 0.0), float(scale)) for v in values)

    if xmax <= xmin or ymax <= ymin:
        raise InvalidBox(
            f"Empty bounding box after clamping: "
            f"[{ymin}, {xmin}, {ymax}, {xmax}]"
        )

    return ymin, xmin, ymax, xmax


def _available_memory_mb() -> float:
    return psutil.virtual_memory().available / MB


def _process_rss_mb() -> float:
    return psutil.Process().memory_info().rss / MB


def validate_processing_environment() -> Tuple[bool, Optional[str]]:
    """(ready, reason): whether enough memory is free to start on a document."""
    floor_mb = VALIDATION_CONSTANTS['MIN_FREE_MEMORY_MB']
    try:
        free_mb = _available_memory_mb()
    except (psutil.Error, OSError) as e:
        return False, f"Could not read system memory: {e}"

    if free_mb < floor_mb:
        return False, f"Only {free_mb:.1f}MB of memory free, {floor_mb}MB required"

    logger.debug(f"{free_mb:.1f}MB free, processing allowed")
    return True, None


def ensure_render_memory(width: int, height: int, channels: int = 3) -> None:
    """
    Refuse to allocate a pixel buffer that would not fit in available memory.

    Raises:
        RenderFailure: if the buffer plus the safety floor exceeds free memory
    """
    required_mb = (width * height * channels) / MB
    try:
        available_mb = _available_memory_mb()
    except (psutil.Error, OSError) as e:
        logger.warning(f"Could not check memory before render: {e}")
        return

    if required_mb + VALIDATION_CONSTANTS['MIN_FREE_MEMORY_MB'] > available_mb:
        raise RenderFailure(
            f"Not enough memory for a {width}x{height} buffer: "
            f"{required_mb:.1f}MB needed, {available_mb:.1f}MB available"
        )


class ResourceManager:
    """
    Measures wall time and resident memory across a `with` block.

    The batch loop reads `elapsed_seconds` for its summary line; the
    totals are logged when the block exits.
    """

    def __init__(self, label: str = "batch"):
        self.label = label
        self._started_at: Optional[float] = None
        self._rss_at_start: Optional[float] = None

    def __enter__(self) -> 'ResourceManager':
        self._started_at = time.monotonic()
        self._rss_at_start = _process_rss_mb()
        logger.debug(f"{self.label}: starting at {self._rss_at_start:.1f}MB resident")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._started_at is None:
            return False
        growth_mb = _process_rss_mb() - self._rss_at_start
        logger.info(f"{self.label}: {self.elapsed_seconds:.2f}s, resident memory {growth_mb:+.1f}MB")
        return False

    @property
    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at


__all__ = [
    'validate_file_content',
    'clamp_box',
    'validate_processing_environment',
    'ensure_render_memory',
    'ResourceManager',
    'PdfValidationError',
    'CorruptDocument',
    'PageOutOfRange',
    'DocumentReleased',
    'InvalidBox',
    'UnsupportedPixelFormat',
    'RenderFailure',
    'RecognitionError',
    'AuthenticationFailure',
    'RateLimited',
    'VALIDATION_CONSTANTS'
]
