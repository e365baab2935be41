"""
Internal value types for the page/region image engine.

Raster buffers, encoded images, draw operations and the result type the
region extractor dispatches on. Pydantic API models live in pdf_types.
"""

import base64
import hashlib
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Tuple

from pikepdf import ContentStreamInstruction, Operator

from constants.pdf_operators import OperatorKind
from models.pdf_types import ImageInfo


class PixelFormat(str, Enum):
    """Byte layouts a RasterBuffer can carry"""
    RGB = "RGB"
    RGBA = "RGBA"
    CMYK = "CMYK"

    @property
    def bytes_per_pixel(self) -> int:
        return 3 if self is PixelFormat.RGB else 4


@dataclass
class RasterBuffer:
    """
    Decoded pixel data with explicit ownership.

    The producer hands the buffer to exactly one consumer, which calls
    release() (or uses the buffer as a context manager) once it has been
    encoded. Reading pixels after release is an error.
    """
    width: int
    height: int
    pixel_format: PixelFormat
    data: Optional[bytes] = field(default=None, repr=False)

    def __post_init__(self):
        if self.data is not None:
            expected = self.width * self.height * self.pixel_format.bytes_per_pixel
            if len(self.data) != expected:
                raise ValueError(
                    f"{self.pixel_format.value} buffer {self.width}x{self.height} "
                    f"needs {expected} bytes, got {len(self.data)}"
                )

    @property
    def pixels(self) -> bytes:
        if self.data is None:
            raise RuntimeError("RasterBuffer already released")
        return self.data

    @property
    def is_released(self) -> bool:
        return self.data is None

    @property
    def byte_size(self) -> int:
        return self.width * self.height * self.pixel_format.bytes_per_pixel

    def release(self) -> None:
        self.data = None

    def __enter__(self) -> 'RasterBuffer':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


@dataclass(frozen=True)
class EncodedImage:
    """Compressed image artifact; the final output unit of the engine"""
    mime_type: str
    data: bytes = field(repr=False)
    page: int
    filename: str
    content_hash: str

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str, page: int, filename: str) -> 'EncodedImage':
        return cls(
            mime_type=mime_type,
            data=data,
            page=page,
            filename=filename,
            content_hash=hashlib.sha256(data).hexdigest(),
        )

    @property
    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode('ascii')
        return f"data:{self.mime_type};base64,{encoded}"

    def to_image_info(self) -> ImageInfo:
        return ImageInfo(
            filename=self.filename,
            page=self.page,
            hash=self.content_hash,
            base64=self.data_uri,
        )


@dataclass(frozen=True)
class Viewport:
    """Scale plus translation from page points to device pixels"""
    scale: float
    offset_x: float
    offset_y: float
    width: int
    height: int

    @classmethod
    def for_page(cls, page_width: float, page_height: float, scale: float) -> 'Viewport':
        return cls(
            scale=scale,
            offset_x=0.0,
            offset_y=0.0,
            width=math.ceil(page_width * scale),
            height=math.ceil(page_height * scale),
        )

    @classmethod
    def for_crop(cls, crop_x: float, crop_y: float,
                 crop_width: float, crop_height: float, scale: float) -> 'Viewport':
        # Crop top-left lands on device pixel (0, 0)
        return cls(
            scale=scale,
            offset_x=-crop_x * scale,
            offset_y=-crop_y * scale,
            width=math.floor(crop_width * scale),
            height=math.floor(crop_height * scale),
        )

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class DrawOperation:
    """One entry of a page's drawing program: operator kind, raw code, operands"""
    kind: OperatorKind
    code: bytes
    operands: Tuple[Any, ...] = ()
    index: int = 0
    source: Any = field(default=None, repr=False, compare=False)

    @property
    def xobject_name(self) -> Optional[str]:
        if self.kind is not OperatorKind.PAINT_XOBJECT or not self.operands:
            return None
        return str(self.operands[0])

    def with_operands(self, operands: Tuple[Any, ...]) -> 'DrawOperation':
        return replace(self, operands=tuple(operands), source=None)

    def to_instruction(self):
        """Convert back to something pikepdf.unparse_content_stream accepts."""
        if self.source is not None:
            return self.source
        return ContentStreamInstruction(list(self.operands), Operator(self.code.decode('latin-1')))


@dataclass
class ExtractionCandidate:
    """
    Embedded image scored against a target box.

    Scoring only needs the declared /Width and /Height, so pixels are
    decoded into `buffer` for the winning candidate alone.
    """
    name: str
    width: int
    height: int
    score: float
    aspect_difference: float
    image_object: Any = field(default=None, repr=False, compare=False)
    buffer: Optional[RasterBuffer] = field(default=None, repr=False)

    @property
    def resolution(self) -> int:
        return self.width * self.height


class ExtractionStatus(str, Enum):
    MATCH = "match"
    LOW_CONFIDENCE = "low_confidence"
    FAILURE = "failure"


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of native extraction; the fallback decision reads only the status"""
    status: ExtractionStatus
    image: Optional[EncodedImage] = None
    score: Optional[float] = None
    reason: Optional[str] = None

    @classmethod
    def matched(cls, image: EncodedImage, score: float) -> 'ExtractionResult':
        return cls(ExtractionStatus.MATCH, image=image, score=score)

    @classmethod
    def low_confidence(cls, score: Optional[float], reason: str) -> 'ExtractionResult':
        return cls(ExtractionStatus.LOW_CONFIDENCE, score=score, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> 'ExtractionResult':
        return cls(ExtractionStatus.FAILURE, reason=reason)

    @property
    def needs_fallback(self) -> bool:
        return self.status is not ExtractionStatus.MATCH
