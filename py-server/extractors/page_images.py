"""
Page and Region Image Module

Public API for the server and library callers: whole-page JPEG renders for
recognition and the best PNG image of a product region.
Uses the PDFEngine processor architecture.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Union

from engine import PDFEngine, EngineConfig, PageSelection
from models.engine_types import EncodedImage

logger = logging.getLogger(__name__)


def render_pdf_pages(
        content: bytes,
        filename: str,
        pages: Union[PageSelection, Iterable[int], str, None] = None,
        config: Optional[EngineConfig] = None
) -> List[EncodedImage]:
    """
    Render the selected pages of a PDF to JPEG, in ascending page order.

    Args:
        content: Raw PDF bytes.
        filename: Source name, used in the output filenames.
        pages: Page selection ("1-3,5", page numbers, or None for all pages).
        config: Engine configuration.

    Returns:
        One EncodedImage per rendered page.

    Raises:
        CorruptDocument: If the PDF cannot be loaded.
        RenderFailure: If a page fails to render.
    """
    selection = pages if isinstance(pages, PageSelection) else PageSelection.parse(pages)

    with PDFEngine(content, filename, config=config) as engine:
        page_numbers = selection.resolve(engine.get_page_count())
        logger.info(f"Rendering {len(page_numbers)} page(s) of {filename}")

        images = []
        for page_number in page_numbers:
            page = engine.get_page(page_number)
            images.append(engine.rasterizer.render_page_image(page))

    return images


def extract_region_image(
        content: bytes,
        filename: str,
        page_number: int,
        box: Sequence[float],
        config: Optional[EngineConfig] = None,
        region_index: int = 1
) -> Optional[EncodedImage]:
    """
    Best PNG image of a [ymin, xmin, ymax, xmax] 0-1000 box on one page.

    Returns:
        EncodedImage, or None when the box is invalid.

    Raises:
        CorruptDocument: If the PDF cannot be loaded.
        PageOutOfRange: If page_number is outside the document.
        RenderFailure: If the fallback render fails.
    """
    with PDFEngine(content, filename, config=config) as engine:
        page = engine.get_page(page_number)
        return engine.region_extractor.extract_region_image(page, box, region_index)
