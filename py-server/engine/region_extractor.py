"""
Region Extractor

Two-tier image extraction for a detected product region: lift the embedded
bitmap when it matches confidently, otherwise re-render the region.
"""

import logging
from typing import Optional, Sequence, TYPE_CHECKING

from engine.base_processor import BaseProcessor
from engine.image_processor import NativeImageExtractor
from engine.region_renderer import RegionCropRenderer
from models.engine_types import EncodedImage, ExtractionResult, ExtractionStatus
from utils.validation import InvalidBox, clamp_box

if TYPE_CHECKING:
    from engine.pdf_engine import PDFEngine, PageHandle

logger = logging.getLogger(__name__)

STRATEGY_NATIVE = 'native'
STRATEGY_CROP = 'crop'


def choose_strategy(result: ExtractionResult) -> str:
    """Which strategy supplies the region image, decided by result status alone."""
    if result.status is ExtractionStatus.MATCH:
        return STRATEGY_NATIVE
    return STRATEGY_CROP


class ExtractionOrchestrator(BaseProcessor):
    """Native extraction first, crop render as fallback."""

    def __init__(
        self,
        engine: 'PDFEngine',
        native: NativeImageExtractor,
        cropper: RegionCropRenderer,
        fallback_scale: Optional[float] = None,
    ):
        super().__init__(engine)
        self.native = native
        self.cropper = cropper
        self.fallback_scale = fallback_scale

    def extract_region_image(
        self,
        page: 'PageHandle',
        box: Sequence[float],
        region_index: int = 1,
    ) -> Optional[EncodedImage]:
        """
        Best image for a [ymin, xmin, ymax, xmax] 0-1000 box.

        Returns:
            PNG EncodedImage, or None when the box is invalid

        Raises:
            RenderFailure: If the fallback render fails
        """
        try:
            clamp_box(box)
        except InvalidBox as e:
            logger.warning(f"Page {page.page_number}: skipping region {region_index}: {e}")
            return None

        result = self.native.extract_best(page, box, region_index=region_index)

        if choose_strategy(result) == STRATEGY_NATIVE:
            return result.image

        logger.info(
            f"Page {page.page_number}: region {region_index} falling back to crop render "
            f"({result.status.value}: {result.reason})"
        )
        try:
            return self.cropper.crop_render(
                page,
                box,
                target_scale=self.fallback_scale,
                region_index=region_index,
            )
        except InvalidBox as e:
            logger.warning(f"Page {page.page_number}: region {region_index} has no image: {e}")
            return None
