"""Geometry helpers mapping normalized boxes onto pages and device pixels."""

from dataclasses import dataclass
from typing import Optional, Sequence

import fitz

from constants.pdf_keys import KEY_PARENT
from utils.validation import VALIDATION_CONSTANTS, clamp_box

# Guard against walking a cyclic /Parent chain in a damaged page tree
MAX_PAGE_TREE_DEPTH = 64


@dataclass(frozen=True)
class CropRect:
    """Crop rectangle in unscaled page units, origin at the top-left."""
    x: float
    y: float
    width: float
    height: float

    def to_fitz(self) -> fitz.Rect:
        return fitz.Rect(self.x, self.y, self.x + self.width, self.y + self.height)


def box_to_crop_rect(box: Sequence[float], page_width: float, page_height: float) -> CropRect:
    """Clamp a 0-1000 [ymin, xmin, ymax, xmax] box and map it onto the page.

    Raises:
        InvalidBox: if the box is empty after clamping
    """
    ymin, xmin, ymax, xmax = clamp_box(box)
    scale = VALIDATION_CONSTANTS['BOX_SCALE']
    return CropRect(
        x=xmin / scale * page_width,
        y=ymin / scale * page_height,
        width=(xmax - xmin) / scale * page_width,
        height=(ymax - ymin) / scale * page_height,
    )


def cap_scale(crop_width: float, crop_height: float, requested_scale: float, max_dimension: int) -> float:
    """Largest scale <= requested_scale keeping both crop sides within max_dimension pixels."""
    if requested_scale <= 0:
        raise ValueError(f"Scale must be positive, got {requested_scale}")

    scale = requested_scale
    if crop_width * scale > max_dimension:
        scale = max_dimension / crop_width
    if crop_height * scale > max_dimension:
        scale = max_dimension / crop_height
    return scale


def box_aspect(box: Sequence[float], page_width: float, page_height: float) -> float:
    """Width/height of the box as it appears on the page."""
    rect = box_to_crop_rect(box, page_width, page_height)
    return rect.width / rect.height


def find_inherited(obj, key: str):
    """Look up key on a page dictionary, then up its /Parent chain.

    Returns None when no ancestor defines it.
    """
    node = obj
    for _ in range(MAX_PAGE_TREE_DEPTH):
        if node is None:
            return None
        if key in node:
            return node[key]
        node = node.get(KEY_PARENT)
    return None


def find_ancestor_value(obj, key: str) -> Optional[object]:
    """Like find_inherited but skips the object itself: the shared (inherited) entry only."""
    parent = obj.get(KEY_PARENT)
    if parent is None:
        return None
    return find_inherited(parent, key)


def page_image_filename(source: str, page_number: int) -> str:
    return f"{source}-page-{page_number}.jpg"


def region_image_filename(source: str, page_number: int, region_index: int) -> str:
    return f"{source}-page-{page_number}-region-{region_index}.png"
