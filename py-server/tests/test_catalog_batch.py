import threading

import pytest

from engine import EngineConfig
from engine.region_extractor import ExtractionOrchestrator
from models.pdf_types import ProductData
from processors import CatalogBatchProcessor, CatalogFile
from utils.validation import AuthenticationFailure, RateLimited, RenderFailure

from conftest import PageSpec, build_pdf

PRODUCT_BOX = [125, 1000 / 6, 500, 5000 / 6]


class FakeRecognizer:
    """Returns scripted results per (filename, page) and records every call."""

    def __init__(self, script=None, default=None):
        self.script = script or {}
        self.default = default if default is not None else []
        self.calls = []

    def recognize(self, image, prompt):
        key = (image.filename.split('-page-')[0], image.page)
        self.calls.append(key)
        outcome = self.script.get(key, self.default)
        if callable(outcome):
            outcome = outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return [ProductData(**record) for record in outcome]


@pytest.fixture
def two_page_pdf():
    return build_pdf([PageSpec(text="one"), PageSpec(text="two")])


@pytest.fixture
def sleeps():
    return []


def _processor(recognizer, sleeps, **kwargs):
    return CatalogBatchProcessor(recognizer, sleep=sleeps.append, **kwargs)


class TestBatchOrder:
    def test_files_in_order_pages_ascending(self, two_page_pdf, three_page_pdf, sleeps):
        recognizer = FakeRecognizer()
        _processor(recognizer, sleeps).process([
            CatalogFile('a.pdf', three_page_pdf, '3,1'),
            CatalogFile('b.pdf', two_page_pdf),
        ])
        assert recognizer.calls == [('a.pdf', 1), ('a.pdf', 3), ('b.pdf', 1), ('b.pdf', 2)]

    def test_pages_without_products_are_recorded(self, two_page_pdf, sleeps):
        summary = _processor(FakeRecognizer(), sleeps).process([CatalogFile('a.pdf', two_page_pdf)])

        assert summary.products == []
        assert summary.pages_without_data == [('a.pdf', 1), ('a.pdf', 2)]
        assert summary.pages_processed == 2

    def test_out_of_range_pages_are_dropped(self, two_page_pdf, sleeps):
        recognizer = FakeRecognizer()
        _processor(recognizer, sleeps).process([CatalogFile('a.pdf', two_page_pdf, [2, 9])])
        assert recognizer.calls == [('a.pdf', 2)]

    def test_empty_selection_skips_file(self, two_page_pdf, sleeps):
        recognizer = FakeRecognizer()
        summary = _processor(recognizer, sleeps).process([CatalogFile('a.pdf', two_page_pdf, [])])
        assert recognizer.calls == []
        assert summary.pages_processed == 0


class TestProducts:
    def test_products_get_page_and_region_images(self, product_pdf, sleeps):
        recognizer = FakeRecognizer(default=[{'nome': 'Chair', 'bounding_box': PRODUCT_BOX}])
        summary = _processor(recognizer, sleeps).process([CatalogFile('p.pdf', product_pdf)])

        assert summary.pages_with_data == [('p.pdf', 1)]
        product = summary.products[0]
        assert product.nome == 'Chair'
        assert product.origem.source_pdf == 'p.pdf'
        assert product.origem.page == 1
        assert product.imagens[0].filename == 'p.pdf-page-1.jpg'
        assert product.imagens[0].base64.startswith('data:image/jpeg;base64,')
        assert product.imagem_produto_base64.startswith('data:image/png;base64,')

    def test_products_without_box_have_no_region_image(self, product_pdf, sleeps):
        recognizer = FakeRecognizer(default=[{'nome': 'Chair'}, {'nome': 'Lamp', 'bounding_box': [0, 0, 0, 0]}])
        summary = _processor(recognizer, sleeps).process([CatalogFile('p.pdf', product_pdf)])

        assert [p.imagem_produto_base64 for p in summary.products] == [None, None]
        assert summary.pages_with_data == [('p.pdf', 1)]

    def test_region_render_failure_only_skips_that_image(self, product_pdf, sleeps, monkeypatch):
        def broken(self, page, box, region_index=1):
            raise RenderFailure("renderer crashed")

        monkeypatch.setattr(ExtractionOrchestrator, 'extract_region_image', broken)
        recognizer = FakeRecognizer(default=[{'nome': 'Chair', 'bounding_box': PRODUCT_BOX}])
        summary = _processor(recognizer, sleeps).process([CatalogFile('p.pdf', product_pdf)])

        assert summary.products[0].imagem_produto_base64 is None
        assert summary.pages_with_data == [('p.pdf', 1)]
        assert summary.pages_errored == []


class TestFailureScopes:
    def test_authentication_failure_aborts_whole_batch(self, two_page_pdf, sleeps):
        recognizer = FakeRecognizer(
            script={
                ('file1.pdf', 1): [{'nome': 'Kept'}],
                ('file1.pdf', 2): AuthenticationFailure("API key not valid"),
            },
            default=[{'nome': 'Never'}],
        )
        summary = _processor(recognizer, sleeps).process([
            CatalogFile('file1.pdf', two_page_pdf, [1, 2]),
            CatalogFile('file2.pdf', two_page_pdf, [1]),
        ])

        assert summary.aborted
        assert "API key" in summary.aborted_error
        assert [p.nome for p in summary.products] == ['Kept']
        assert ('file2.pdf', 1) not in recognizer.calls
        assert recognizer.calls == [('file1.pdf', 1), ('file1.pdf', 2)]

    def test_corrupt_file_is_skipped(self, two_page_pdf, sleeps):
        recognizer = FakeRecognizer()
        summary = _processor(recognizer, sleeps).process([
            CatalogFile('broken.pdf', b'%PDF-1.4 nothing useful', [1]),
            CatalogFile('good.pdf', two_page_pdf, [1]),
        ])

        assert summary.files_failed[0][0] == 'broken.pdf'
        assert recognizer.calls == [('good.pdf', 1)]
        assert not summary.aborted

    def test_other_errors_fail_only_the_page(self, two_page_pdf, sleeps):
        recognizer = FakeRecognizer(script={('a.pdf', 1): ValueError("unexpected response")})
        summary = _processor(recognizer, sleeps).process([CatalogFile('a.pdf', two_page_pdf)])

        assert [(e.filename, e.page) for e in summary.pages_errored] == [('a.pdf', 1)]
        assert summary.pages_without_data == [('a.pdf', 2)]

    def test_rate_limit_is_retried_with_backoff(self, two_page_pdf, sleeps):
        outcomes = iter([RateLimited("429"), RateLimited("429"), [{'nome': 'Late'}]])
        recognizer = FakeRecognizer(script={('a.pdf', 1): lambda: next(outcomes)})
        summary = _processor(recognizer, sleeps).process([CatalogFile('a.pdf', two_page_pdf, [1])])

        assert [p.nome for p in summary.products] == ['Late']
        assert len(sleeps) == 2
        assert 2.0 <= sleeps[0] <= 3.0
        assert 4.0 <= sleeps[1] <= 5.0

    def test_exhausted_rate_limit_errors_the_page(self, two_page_pdf, sleeps):
        recognizer = FakeRecognizer(script={('a.pdf', 1): RateLimited("quota exceeded")})
        summary = _processor(recognizer, sleeps).process([CatalogFile('a.pdf', two_page_pdf)])

        assert recognizer.calls.count(('a.pdf', 1)) == 5
        assert len(sleeps) == 4
        assert summary.pages_errored[0].page == 1
        assert summary.pages_without_data == [('a.pdf', 2)]

    def test_retry_attempts_follow_config(self, two_page_pdf, sleeps):
        config = EngineConfig.from_dict({'retry': {'max_attempts': 2}})
        recognizer = FakeRecognizer(script={('a.pdf', 1): RateLimited("429")})
        _processor(recognizer, sleeps, config=config).process([CatalogFile('a.pdf', two_page_pdf, [1])])

        assert len(recognizer.calls) == 2
        assert len(sleeps) == 1


class TestCancellationAndProgress:
    def test_cancel_stops_before_next_page(self, three_page_pdf, two_page_pdf, sleeps):
        event = threading.Event()

        class CancellingRecognizer(FakeRecognizer):
            def recognize(self, image, prompt):
                products = super().recognize(image, prompt)
                event.set()
                return products

        recognizer = CancellingRecognizer(default=[{'nome': 'First'}])
        summary = _processor(recognizer, sleeps, cancel_event=event).process([
            CatalogFile('a.pdf', three_page_pdf),
            CatalogFile('b.pdf', two_page_pdf),
        ])

        assert summary.cancelled
        assert recognizer.calls == [('a.pdf', 1)]
        assert [p.nome for p in summary.products] == ['First']

    def test_cancel_before_start_processes_nothing(self, two_page_pdf, sleeps):
        recognizer = FakeRecognizer()
        processor = _processor(recognizer, sleeps)
        processor.cancel()
        summary = processor.process([CatalogFile('a.pdf', two_page_pdf)])

        assert summary.cancelled
        assert recognizer.calls == []

    def test_progress_reports_every_page(self, two_page_pdf, three_page_pdf, sleeps):
        reports = []
        _processor(FakeRecognizer(), sleeps, progress=lambda done, total: reports.append((done, total))).process([
            CatalogFile('a.pdf', two_page_pdf, '1-2'),
            CatalogFile('b.pdf', three_page_pdf),
        ])
        assert reports == [(1, 2), (2, 2), (3, 5), (4, 5), (5, 5)]

    def test_progress_total_drops_skipped_files(self, two_page_pdf, sleeps):
        reports = []
        _processor(FakeRecognizer(), sleeps, progress=lambda done, total: reports.append((done, total))).process([
            CatalogFile('broken.pdf', b'not a pdf', [1, 2]),
            CatalogFile('a.pdf', two_page_pdf, [1]),
        ])
        assert reports == [(0, 1), (1, 1)]


def test_summary_to_dict(two_page_pdf, sleeps):
    summary = _processor(FakeRecognizer(), sleeps).process([CatalogFile('a.pdf', two_page_pdf, '1')])
    assert summary.to_dict() == {
        'products': 0,
        'pages_with_data': 0,
        'pages_without_data': 1,
        'pages_errored': 0,
        'files_failed': 0,
        'pages_processed': 1,
        'total_pages': 1,
        'cancelled': False,
        'aborted_error': None,
    }


def test_catalog_file_parses_page_strings():
    assert CatalogFile('a.pdf', b'', '1-3').pages.pages == {1, 2, 3}
    with pytest.raises(ValueError):
        CatalogFile('a.pdf', b'', '3-1')
