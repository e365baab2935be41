"""
Shared fixtures: small catalog-like PDFs built with pikepdf.

Pages are 600x800 points unless stated otherwise. Images are unfiltered
8-bit streams so their pixel values are known exactly.
"""

import io
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pikepdf
import pytest
from pikepdf import Dictionary, Name

PAGE_WIDTH = 600
PAGE_HEIGHT = 800

COLOR_SPACES = {
    'rgb': (Name.DeviceRGB, 3),
    'cmyk': (Name.DeviceCMYK, 4),
    'gray': (Name.DeviceGray, 1),
}


@dataclass
class ImageSpec:
    """Embedded image: name, pixel size, colour space and a solid fill value."""
    name: str
    width: int
    height: int
    colorspace: str = 'rgb'
    fill: tuple = (200, 40, 40)
    bits: int = 8


@dataclass
class PageSpec:
    images: List[ImageSpec] = field(default_factory=list)
    content: bytes = b''
    text: Optional[str] = None
    width: int = PAGE_WIDTH
    height: int = PAGE_HEIGHT
    form_text: Optional[str] = None
    form_images: List[ImageSpec] = field(default_factory=list)
    form_content: bytes = b''
    inherit_resources: bool = False


def _image_stream(pdf: pikepdf.Pdf, spec: ImageSpec) -> pikepdf.Stream:
    colorspace, channels = COLOR_SPACES[spec.colorspace]
    if spec.bits == 1:
        # bilevel rows are padded to whole bytes
        data = b"\xff" * (((spec.width + 7) // 8) * spec.height)
    else:
        data = bytes(tuple(spec.fill)[:channels]) * (spec.width * spec.height)
    stream = pikepdf.Stream(pdf, data)
    stream.Type = Name.XObject
    stream.Subtype = Name.Image
    stream.Width = spec.width
    stream.Height = spec.height
    stream.ColorSpace = colorspace
    stream.BitsPerComponent = spec.bits
    return stream


def build_pdf(pages: List[PageSpec]) -> bytes:
    pdf = pikepdf.new()
    font = pdf.make_indirect(Dictionary(
        Type=Name.Font,
        Subtype=Name.Type1,
        BaseFont=Name.Helvetica,
    ))

    for spec in pages:
        pdf.add_blank_page(page_size=(spec.width, spec.height))
        page = pdf.pages[-1]

        xobjects: Dict[str, pikepdf.Object] = {}
        for image in spec.images:
            xobjects['/' + image.name] = pdf.make_indirect(_image_stream(pdf, image))

        content = spec.content
        if spec.form_text is not None or spec.form_images:
            form_body = spec.form_content
            if spec.form_text is not None:
                form_body += f"\nBT /F1 24 Tf 10 10 Td ({spec.form_text}) Tj ET".encode()
            form_xobjects = {'/' + image.name: pdf.make_indirect(_image_stream(pdf, image)) for image in spec.form_images}
            form = pikepdf.Stream(pdf, form_body)
            form.Type = Name.XObject
            form.Subtype = Name.Form
            form.BBox = [0, 0, spec.width, spec.height]
            form.Resources = Dictionary(Font=Dictionary(F1=font), XObject=Dictionary(form_xobjects))
            xobjects['/Fm1'] = pdf.make_indirect(form)
            content += b"\nq /Fm1 Do Q"
        if spec.text is not None:
            content += f"\nBT /F1 24 Tf 72 72 Td ({spec.text}) Tj ET".encode()

        resources = Dictionary(Font=Dictionary(F1=font), XObject=Dictionary(xobjects))
        if spec.inherit_resources:
            pdf.Root.Pages.Resources = resources
            if '/Resources' in page.obj:
                del page.obj['/Resources']
        else:
            page.obj.Resources = resources
        page.obj.Contents = pdf.make_stream(content)

    output = io.BytesIO()
    pdf.save(output)
    return output.getvalue()


def paint(name: str, x: float, y: float, width: float, height: float) -> bytes:
    """Content snippet placing an image XObject at (x, y) in PDF user space."""
    return f"q {width} 0 0 {height} {x} {y} cm /{name} Do Q\n".encode()


@pytest.fixture
def text_only_pdf() -> bytes:
    return build_pdf([PageSpec(text="Hello catalog")])


@pytest.fixture
def product_pdf() -> bytes:
    """One page with a single 400x300 RGB photo filling the top-left quadrant-ish area, plus text."""
    return build_pdf([PageSpec(
        images=[ImageSpec('Im1', 400, 300)],
        content=paint('Im1', 100, 400, 400, 300),
        text="Product A",
    )])


@pytest.fixture
def three_page_pdf() -> bytes:
    return build_pdf([PageSpec(text=f"Page {n}") for n in range(1, 4)])
