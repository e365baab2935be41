"""
Catalog Image Engine

Core engine module: the PDFEngine document handle and the processors that
render pages and extract product region images.
"""

__version__ = "1.0.0"

from engine.pdf_engine import PDFEngine, PageHandle
from engine.config import (
    EngineConfig,
    ProcessorOptions,
    RasterizerOptions,
    RegionCropOptions,
    NativeImageOptions,
    RetryOptions,
    PageSelection,
    DEFAULT_EXTRACTION_PROMPTS,
)
from engine.base_processor import BaseProcessor, ProcessorProtocol
from engine.content_scanner import ContentStreamScanner
from engine.content_modifier import TextSuppressionFilter, TextFreePageBuilder
from engine.page_rasterizer import PageRasterizer
from engine.region_renderer import RegionCropRenderer
from engine.image_processor import NativeImageExtractor
from engine.region_extractor import ExtractionOrchestrator

__all__ = [
    'PDFEngine',
    'PageHandle',
    'EngineConfig',
    'ProcessorOptions',
    'RasterizerOptions',
    'RegionCropOptions',
    'NativeImageOptions',
    'RetryOptions',
    'PageSelection',
    'DEFAULT_EXTRACTION_PROMPTS',
    'BaseProcessor',
    'ProcessorProtocol',
    'ContentStreamScanner',
    'TextSuppressionFilter',
    'TextFreePageBuilder',
    'PageRasterizer',
    'RegionCropRenderer',
    'NativeImageExtractor',
    'ExtractionOrchestrator',
]
