"""Native Image Extractor for PDFEngine

Finds the embedded bitmap that best matches a product's bounding box and
lifts it at native resolution, instead of re-rendering the region.
"""

import io
import logging
from typing import Iterator, List, Optional, Sequence, Set, Tuple, TYPE_CHECKING

from PIL import Image
from pikepdf import Name, PdfImage, PdfInlineImage

from constants.pdf_keys import (
    KEY_HEIGHT,
    KEY_RESOURCES,
    KEY_SUBTYPE,
    KEY_WIDTH,
    KEY_XOBJECT,
    VAL_FORM,
    VAL_IMAGE,
)
from constants.pdf_operators import OperatorKind
from engine.base_processor import BaseProcessor
from engine.config import NativeImageOptions
from engine.content_scanner import ContentStreamScanner
from models.engine_types import (
    EncodedImage,
    ExtractionCandidate,
    ExtractionResult,
    PixelFormat,
    RasterBuffer,
)
from utils.color_conversion import to_rgba
from utils.pdf_transforms import box_aspect, find_ancestor_value, region_image_filename
from utils.validation import InvalidBox, UnsupportedPixelFormat

if TYPE_CHECKING:
    from engine.pdf_engine import PDFEngine, PageHandle

logger = logging.getLogger(__name__)

# PIL modes the decoder hands over as-is
PIL_MODE_FORMATS = {
    'RGB': PixelFormat.RGB,
    'RGBA': PixelFormat.RGBA,
    'CMYK': PixelFormat.CMYK,
}
# Single-channel modes expanded to RGB while decoding
PIL_EXPANDED_MODES = {'L', 'P'}


def raster_from_pil(image: Image.Image) -> RasterBuffer:
    """
    Wrap decoded pixels in a RasterBuffer.

    Raises:
        UnsupportedPixelFormat: For bilevel, 16-bit, float and other modes
    """
    if image.mode in PIL_EXPANDED_MODES:
        image = image.convert('RGB')

    pixel_format = PIL_MODE_FORMATS.get(image.mode)
    if pixel_format is None:
        raise UnsupportedPixelFormat(f"Unsupported image mode '{image.mode}'")

    return RasterBuffer(image.width, image.height, pixel_format, image.tobytes())


def _xobject_table(resources):
    if resources is None or KEY_XOBJECT not in resources:
        return None
    return resources[KEY_XOBJECT]


class NativeImageExtractor(BaseProcessor):
    """
    Scores a page's embedded images against a target box.

    Scoring uses only aspect ratio and pixel count, not where the image is
    placed on the page, so two same-aspect images can be confused.
    """

    options_class = NativeImageOptions

    def __init__(
        self,
        engine: 'PDFEngine',
        options: Optional[NativeImageOptions],
        scanner: ContentStreamScanner,
    ):
        super().__init__(engine, options)
        self.scanner = scanner

    def score(self, width: int, height: int, target_aspect: float) -> Optional[tuple]:
        """
        Score one candidate size against the target aspect.

        Returns:
            (score, aspect_difference), or None if the candidate is too small
            or its aspect is too far from the target
        """
        if width < self.options.min_width or height < self.options.min_height:
            return None

        difference = abs(width / height - target_aspect)
        if difference > self.options.max_aspect_difference:
            return None

        score = (1.0 - difference) * 100.0
        if width * height > self.options.large_image_pixels:
            score += self.options.large_image_bonus
        return score, difference

    def extract_best(
        self,
        page: 'PageHandle',
        box: Sequence[float],
        region_index: int = 1,
    ) -> ExtractionResult:
        """
        Return the best embedded image for the box as PNG, or a result
        asking the caller to fall back.
        """
        try:
            target_aspect = box_aspect(box, page.width, page.height)
        except InvalidBox as e:
            return ExtractionResult.failed(str(e))

        try:
            candidates = list(self._collect_candidates(page, target_aspect))
        except Exception as e:
            logger.warning(f"Page {page.page_number}: could not scan for embedded images: {e}")
            return ExtractionResult.failed(f"scan failed: {e}")

        # Stable sort: equal scores keep content stream order
        ranked = sorted(candidates, key=lambda c: c.score, reverse=True)
        best_score = ranked[0].score if ranked else None
        undecodable = 0

        for candidate in ranked:
            if candidate.score < self.options.confidence_threshold:
                break
            try:
                image = self._encode_candidate(candidate, page, region_index)
            except UnsupportedPixelFormat as e:
                logger.warning(f"Page {page.page_number}: skipping image {candidate.name}: {e}")
                undecodable += 1
                continue
            except Exception as e:
                logger.warning(f"Page {page.page_number}: failed to decode image {candidate.name}: {e}")
                undecodable += 1
                continue

            logger.info(
                f"Page {page.page_number}: using embedded image {candidate.name} "
                f"({candidate.width}x{candidate.height}, score {candidate.score:.1f})"
            )
            return ExtractionResult.matched(image, candidate.score)

        if best_score is None:
            reason = "no embedded image fits the box"
        elif undecodable:
            reason = f"{undecodable} matching image(s) could not be decoded"
        else:
            reason = f"best score {best_score:.1f} below {self.options.confidence_threshold}"
        return ExtractionResult.low_confidence(best_score, reason)

    def _collect_candidates(self, page: 'PageHandle', target_aspect: float) -> Iterator[ExtractionCandidate]:
        pike_page = self.engine.pikepdf_page(page)
        tables = (
            _xobject_table(pike_page.obj.get(KEY_RESOURCES)),
            _xobject_table(find_ancestor_value(pike_page.obj, KEY_RESOURCES)),
        )
        return self._scan_for_images(page, page, tables, target_aspect, prefix='', visited_forms=set())

    def _scan_for_images(
        self,
        page: 'PageHandle',
        source,
        tables: Tuple,
        target_aspect: float,
        prefix: str,
        visited_forms: Set[Tuple[int, int]],
    ) -> Iterator[ExtractionCandidate]:
        """
        Candidates painted by one content stream, descending into form XObjects.

        Names are scoped to the stream that paints them; images inside a form
        are reported as "/Fm1/Im1".
        """
        seen: set = set()

        for operation in self.scanner.scan(source):
            if operation.kind is OperatorKind.PAINT_XOBJECT:
                name = operation.xobject_name
                if name is None or name in seen:
                    continue
                seen.add(name)

                xobject = self._resolve(name, *tables)
                if xobject is None:
                    continue
                subtype = xobject.get(KEY_SUBTYPE)
                if subtype == Name(VAL_FORM):
                    yield from self._scan_form(page, xobject, tables, target_aspect, prefix + name, visited_forms)
                    continue
                if subtype != Name(VAL_IMAGE):
                    continue
                image_object = xobject
                name = prefix + name
                width = int(image_object.get(KEY_WIDTH, 0))
                height = int(image_object.get(KEY_HEIGHT, 0))

            elif operation.kind is OperatorKind.PAINT_INLINE_IMAGE:
                if not operation.operands or not isinstance(operation.operands[0], PdfInlineImage):
                    continue
                image_object = operation.operands[0]
                name = f"{prefix}inline#{operation.index}"
                width, height = int(image_object.width), int(image_object.height)

            else:
                continue

            scored = self.score(width, height, target_aspect)
            if scored is None:
                logger.debug(f"Page {page.page_number}: rejected {name} ({width}x{height})")
                continue

            score, difference = scored
            candidate = ExtractionCandidate(
                name=name,
                width=width,
                height=height,
                score=score,
                aspect_difference=difference,
                image_object=image_object,
            )
            logger.debug(
                f"Page {page.page_number}: candidate {name} {width}x{height} "
                f"({candidate.resolution} px) score {score:.1f}"
            )
            yield candidate

    def _scan_form(self, page: 'PageHandle', form, tables: Tuple, target_aspect: float,
                   name: str, visited_forms: Set[Tuple[int, int]]) -> Iterator[ExtractionCandidate]:
        # Each form object is scanned once per page, which also stops self-referencing forms
        key = form.objgen
        if key != (0, 0):
            if key in visited_forms:
                return
            visited_forms.add(key)

        # A form without /Resources uses the resources of whatever paints it
        form_tables = (_xobject_table(form.get(KEY_RESOURCES)),) + tables
        try:
            yield from self._scan_for_images(page, form, form_tables, target_aspect, name + '/', visited_forms)
        except Exception as e:
            logger.warning(f"Page {page.page_number}: could not scan form {name}: {e}")

    @staticmethod
    def _resolve(name: str, *tables):
        """Page-local table first, then the shared one inherited from the page tree."""
        for table in tables:
            if table is not None and name in table:
                return table[name]
        return None

    def _encode_candidate(self, candidate: ExtractionCandidate, page: 'PageHandle', region_index: int) -> EncodedImage:
        source = candidate.image_object
        if isinstance(source, PdfInlineImage):
            pil_image = source.as_pil_image()
        else:
            pil_image = PdfImage(source).as_pil_image()

        candidate.buffer = raster_from_pil(pil_image)
        try:
            with to_rgba(candidate.buffer) as rgba:
                image = Image.frombytes('RGBA', (rgba.width, rgba.height), rgba.pixels)
                output = io.BytesIO()
                image.save(output, format='PNG')
        finally:
            candidate.buffer.release()

        return EncodedImage.from_bytes(
            output.getvalue(),
            mime_type='image/png',
            page=page.page_number,
            filename=region_image_filename(page.source_name, page.page_number, region_index),
        )

    def list_candidates(self, page: 'PageHandle', box: Sequence[float]) -> List[ExtractionCandidate]:
        """Scored candidates in content stream order, for diagnostics."""
        return list(self._collect_candidates(page, box_aspect(box, page.width, page.height)))
