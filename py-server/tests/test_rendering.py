import io

import pytest
from PIL import Image

from engine import EngineConfig, PDFEngine, RegionCropOptions
from models.engine_types import PixelFormat
from utils.pdf_transforms import cap_scale
from utils.validation import InvalidBox

from conftest import ImageSpec, PageSpec, build_pdf, paint

# Box around the "Hello catalog" text drawn at (72, 72) in 24pt
TEXT_BOX = [862.5, 100, 931.25, 500]


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


class TestPageRasterizer:
    def test_dimensions_round_up(self):
        content = build_pdf([PageSpec(width=301, height=201)])
        with PDFEngine(content) as engine:
            buffer = engine.rasterizer.render(engine.get_page(1), scale=1.5)

        assert (buffer.width, buffer.height) == (452, 302)
        assert buffer.pixel_format is PixelFormat.RGB
        assert len(buffer.pixels) == 452 * 302 * 3

    def test_default_scale_comes_from_config(self, text_only_pdf):
        with PDFEngine(text_only_pdf) as engine:
            buffer = engine.rasterizer.render(engine.get_page(1))
        assert (buffer.width, buffer.height) == (900, 1200)

    @pytest.mark.parametrize("scale", [0, -1.0])
    def test_non_positive_scale_is_rejected(self, text_only_pdf, scale):
        with PDFEngine(text_only_pdf) as engine:
            with pytest.raises(ValueError):
                engine.rasterizer.render(engine.get_page(1), scale=scale)

    def test_text_is_rendered(self, text_only_pdf):
        with PDFEngine(text_only_pdf) as engine:
            buffer = engine.rasterizer.render(engine.get_page(1), scale=1.0)
            image = Image.frombytes('RGB', (buffer.width, buffer.height), buffer.pixels)

        text_area = image.crop((60, 690, 300, 745)).convert('L')
        assert text_area.getextrema()[0] < 128

    def test_encode_produces_jpeg_and_releases_buffer(self, text_only_pdf):
        with PDFEngine(text_only_pdf, 'cat.pdf') as engine:
            page = engine.get_page(1)
            buffer = engine.rasterizer.render(page)
            image = engine.rasterizer.encode(buffer, page)

        assert buffer.is_released
        assert image.mime_type == 'image/jpeg'
        assert image.filename == 'cat.pdf-page-1.jpg'
        assert image.data[:3] == b'\xff\xd8\xff'
        assert _open(image.data).size == (900, 1200)
        assert image.data_uri.startswith('data:image/jpeg;base64,')

    def test_lower_quality_is_smaller(self, product_pdf):
        with PDFEngine(product_pdf) as engine:
            page = engine.get_page(1)
            high = engine.rasterizer.encode(engine.rasterizer.render(page), page, quality=1.0)
            low = engine.rasterizer.encode(engine.rasterizer.render(page), page, quality=0.1)
        assert len(low.data) < len(high.data)


class TestRegionCropRenderer:
    def test_output_is_floor_of_scaled_crop(self, product_pdf):
        # 399.996x300pt region at 4x
        with PDFEngine(product_pdf, 'p.pdf') as engine:
            image = engine.region_renderer.crop_render(engine.get_page(1), [125, 166.67, 500, 833.33])

        assert image.mime_type == 'image/png'
        assert image.data[:8] == b'\x89PNG\r\n\x1a\n'
        assert image.filename == 'p.pdf-page-1-region-1.png'
        width, height = _open(image.data).size
        assert (width, height) == (1599, 1200)

    def test_fractional_sizes_round_down(self, text_only_pdf):
        # 60.075x80.1pt at 1.25x
        with PDFEngine(text_only_pdf) as engine:
            image = engine.region_renderer.crop_render(engine.get_page(1), [0, 0, 100.125, 100.125], target_scale=1.25)
        assert _open(image.data).size == (75, 100)

    def test_each_side_is_capped(self, text_only_pdf):
        config = EngineConfig.default()
        config.region_crop = RegionCropOptions(max_dimension=256)
        with PDFEngine(text_only_pdf, config=config) as engine:
            image = engine.region_renderer.crop_render(engine.get_page(1), [0, 0, 1000, 1000], target_scale=10)

        width, height = _open(image.data).size
        assert max(width, height) <= 256
        assert height >= 255
        assert width == pytest.approx(192, abs=1)

    def test_empty_box_is_rejected_before_rendering(self, text_only_pdf, monkeypatch):
        with PDFEngine(text_only_pdf) as engine:
            renderer = engine.region_renderer
            monkeypatch.setattr(renderer.page_builder, 'build', lambda *a: pytest.fail("rendered"))
            with pytest.raises(InvalidBox):
                renderer.crop_render(engine.get_page(1), [0, 0, 0, 0])

    def test_sub_pixel_region_is_invalid(self, text_only_pdf):
        with PDFEngine(text_only_pdf) as engine:
            with pytest.raises(InvalidBox):
                engine.region_renderer.crop_render(engine.get_page(1), [0, 0, 0.5, 0.5], target_scale=1.0)

    def test_text_is_suppressed(self, text_only_pdf):
        with PDFEngine(text_only_pdf) as engine:
            image = engine.region_renderer.crop_render(engine.get_page(1), TEXT_BOX)
        assert _open(image.data).convert('L').getextrema() == (255, 255)

    def test_form_text_is_suppressed(self):
        content = build_pdf([PageSpec(form_text="Inside")])
        # form draws its text at (10, 10) in 24pt
        with PDFEngine(content) as engine:
            image = engine.region_renderer.crop_render(engine.get_page(1), [950, 0, 1000, 200])
        assert _open(image.data).convert('L').getextrema() == (255, 255)

    def test_images_are_kept(self, product_pdf):
        with PDFEngine(product_pdf) as engine:
            image = engine.region_renderer.crop_render(engine.get_page(1), [200, 300, 400, 700], target_scale=1.0)

        pixel = _open(image.data).convert('RGB').getpixel((10, 10))
        assert pixel[0] > 150 and pixel[1] < 100

    def test_region_index_names_the_file(self, product_pdf):
        with PDFEngine(product_pdf, 'p.pdf') as engine:
            image = engine.region_renderer.crop_render(engine.get_page(1), [0, 0, 500, 500], region_index=3)
        assert image.filename == 'p.pdf-page-1-region-3.png'

    def test_source_document_keeps_its_text(self, text_only_pdf):
        with PDFEngine(text_only_pdf) as engine:
            page = engine.get_page(1)
            engine.region_renderer.crop_render(page, TEXT_BOX)
            buffer = engine.rasterizer.render(page, scale=1.0)
            image = Image.frombytes('RGB', (buffer.width, buffer.height), buffer.pixels)

        assert image.crop((60, 690, 300, 745)).convert('L').getextrema()[0] < 128


@pytest.mark.parametrize("width, height, requested, expected", [
    (100, 100, 4.0, 4.0),
    (2000, 100, 4.0, 4096 / 2000),
    (100, 2000, 4.0, 4096 / 2000),
    (5000, 6000, 1.0, 4096 / 6000),
])
def test_cap_scale(width, height, requested, expected):
    assert cap_scale(width, height, requested, 4096) == pytest.approx(expected)


def test_cap_scale_rejects_non_positive():
    with pytest.raises(ValueError):
        cap_scale(10, 10, 0, 4096)


def test_large_page_stays_within_default_cap():
    content = build_pdf([PageSpec(
        width=1200, height=1200,
        images=[ImageSpec('Im1', 120, 120)],
        content=paint('Im1', 0, 0, 1200, 1200),
    )])
    with PDFEngine(content) as engine:
        image = engine.region_renderer.crop_render(engine.get_page(1), [0, 0, 1000, 1000])
    assert max(_open(image.data).size) <= 4096
