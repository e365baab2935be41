"""Page Rasterizer for PDFEngine

Renders whole pages to RGB buffers and encodes them as JPEG for the
recognition service.
"""

import io
import logging
from typing import Optional, TYPE_CHECKING

import fitz
from PIL import Image

from engine.base_processor import BaseProcessor
from engine.config import RasterizerOptions
from models.engine_types import EncodedImage, PixelFormat, RasterBuffer, Viewport
from utils.pdf_transforms import page_image_filename
from utils.validation import RenderFailure, ensure_render_memory

if TYPE_CHECKING:
    from engine.pdf_engine import PageHandle

logger = logging.getLogger(__name__)


def pixmap_to_image(pixmap: fitz.Pixmap, width: int, height: int) -> Image.Image:
    """
    Wrap PyMuPDF pixmap samples in a PIL image of exactly width x height.

    PyMuPDF rounds the device rectangle itself, which can be one pixel off
    the requested size; the difference is padded with white or cropped.
    """
    image = Image.frombytes('RGB', (pixmap.width, pixmap.height), pixmap.samples)
    if image.size == (width, height):
        return image

    logger.debug(f"Fitting {image.size[0]}x{image.size[1]} render to {width}x{height}")
    fitted = Image.new('RGB', (width, height), (255, 255, 255))
    fitted.paste(image.crop((0, 0, min(width, image.width), min(height, image.height))), (0, 0))
    return fitted


class PageRasterizer(BaseProcessor):
    """
    Whole-page renderer.

    render() hands the caller a RasterBuffer it owns; encode() consumes and
    releases it, so only the compressed JPEG outlives the call.
    """

    options_class = RasterizerOptions

    def render(self, page: 'PageHandle', scale: Optional[float] = None) -> RasterBuffer:
        """
        Render a page to an RGB buffer of ceil(width*scale) x ceil(height*scale).

        Raises:
            ValueError: If scale is not positive
            RenderFailure: If rendering fails or the buffer would not fit in memory
        """
        if scale is None:
            scale = self.options.page_scale
        if scale <= 0:
            raise ValueError(f"Render scale must be positive, got {scale}")

        viewport = Viewport.for_page(page.width, page.height, scale)
        ensure_render_memory(viewport.width, viewport.height, channels=3)
        fitz_page = self.engine.render_page(page)

        try:
            pixmap = fitz_page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
            image = pixmap_to_image(pixmap, viewport.width, viewport.height)
            del pixmap
        except Exception as e:
            raise RenderFailure(f"Failed to render page {page.page_number}: {e}") from e

        logger.debug(f"Page {page.page_number}: rendered {viewport.width}x{viewport.height} at {scale}x")
        return RasterBuffer(viewport.width, viewport.height, PixelFormat.RGB, image.tobytes())

    def encode(
        self,
        buffer: RasterBuffer,
        page: 'PageHandle',
        quality: Optional[float] = None,
    ) -> EncodedImage:
        """
        JPEG-encode a page buffer, then release it.

        Args:
            buffer: RGB buffer from render()
            page: Page the buffer came from, for the filename
            quality: 0-1 JPEG quality (defaults to options.jpeg_quality)
        """
        if quality is None:
            quality = self.options.jpeg_quality

        with buffer:
            image = Image.frombytes('RGB', (buffer.width, buffer.height), buffer.pixels)
            output = io.BytesIO()
            image.save(output, format='JPEG', quality=max(1, min(100, round(quality * 100))))

        return EncodedImage.from_bytes(
            output.getvalue(),
            mime_type='image/jpeg',
            page=page.page_number,
            filename=page_image_filename(page.source_name, page.page_number),
        )

    def render_page_image(self, page: 'PageHandle') -> EncodedImage:
        """Render at the configured scale and encode in one step."""
        return self.encode(self.render(page), page)
