"""Region Crop Renderer for PDFEngine

High-resolution, text-free renders of a normalized bounding box.
"""

import io
import logging
from typing import Optional, Sequence, TYPE_CHECKING

import fitz

from engine.base_processor import BaseProcessor
from engine.config import RegionCropOptions
from engine.content_modifier import TextFreePageBuilder, TextSuppressionFilter
from engine.content_scanner import ContentStreamScanner
from engine.page_rasterizer import pixmap_to_image
from models.engine_types import EncodedImage, Viewport
from utils.pdf_transforms import box_to_crop_rect, cap_scale, region_image_filename
from utils.validation import InvalidBox, RenderFailure, ensure_render_memory

if TYPE_CHECKING:
    from engine.pdf_engine import PDFEngine, PageHandle

logger = logging.getLogger(__name__)


class RegionCropRenderer(BaseProcessor):
    """
    Renders only the crop rectangle of a page, with text suppressed, to PNG.

    The device surface is sized to the crop, never the whole page, and each
    side is capped at options.max_dimension pixels by lowering the scale.
    """

    options_class = RegionCropOptions

    def __init__(
        self,
        engine: 'PDFEngine',
        options: Optional[RegionCropOptions],
        scanner: ContentStreamScanner,
        text_filter: TextSuppressionFilter,
    ):
        super().__init__(engine, options)
        self.page_builder = TextFreePageBuilder(scanner, text_filter)

    def crop_render(
        self,
        page: 'PageHandle',
        box: Sequence[float],
        target_scale: Optional[float] = None,
        region_index: int = 1,
    ) -> EncodedImage:
        """
        Render the [ymin, xmin, ymax, xmax] 0-1000 box of a page.

        Output is floor(crop_width * s) x floor(crop_height * s) pixels where
        s is target_scale after capping.

        Raises:
            InvalidBox: If the box is empty after clamping (nothing is rendered)
            RenderFailure: If the renderer fails or memory is insufficient
        """
        if target_scale is None:
            target_scale = self.options.default_scale

        rect = box_to_crop_rect(box, page.width, page.height)
        scale = cap_scale(rect.width, rect.height, target_scale, self.options.max_dimension)
        if scale < target_scale:
            logger.debug(
                f"Page {page.page_number}: capped crop scale {target_scale} -> {scale:.3f} "
                f"for {rect.width:.1f}x{rect.height:.1f}pt region"
            )

        viewport = Viewport.for_crop(rect.x, rect.y, rect.width, rect.height, scale)
        if viewport.width < 1 or viewport.height < 1:
            raise InvalidBox(
                f"Region {rect.width:.2f}x{rect.height:.2f}pt is below one pixel at scale {scale:.3f}"
            )

        ensure_render_memory(viewport.width, viewport.height, channels=3)
        content = self.engine.document_bytes

        try:
            text_free_pdf = self.page_builder.build(content, page.index)
            with fitz.open(stream=text_free_pdf, filetype='pdf') as doc:
                pixmap = doc[0].get_pixmap(
                    matrix=fitz.Matrix(scale, scale),
                    clip=rect.to_fitz(),
                    alpha=False,
                )
                image = pixmap_to_image(pixmap, viewport.width, viewport.height)
                del pixmap
        except Exception as e:
            raise RenderFailure(f"Failed to render region on page {page.page_number}: {e}") from e

        output = io.BytesIO()
        image.save(output, format='PNG')
        logger.debug(f"Page {page.page_number}: region rendered at {viewport.width}x{viewport.height}")

        return EncodedImage.from_bytes(
            output.getvalue(),
            mime_type='image/png',
            page=page.page_number,
            filename=region_image_filename(page.source_name, page.page_number, region_index),
        )
