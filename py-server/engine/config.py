"""
Configuration system for the Catalog Image Engine.

Provides structured configuration using dataclasses with clear defaults,
type safety, and dict round-tripping for the HTTP layer.
"""

from dataclasses import dataclass, field, fields
from typing import Optional, Dict, Any, Iterable, List, Union
import logging

logger = logging.getLogger(__name__)

# Highest page number a selection may name; ranges are expanded up front
MAX_SELECTABLE_PAGE = 100_000


DEFAULT_EXTRACTION_PROMPTS: Dict[str, str] = {
    'en': (
        "Analyze the catalog page image. Extract detailed information for each product listed. "
        "Return the data in the provided JSON schema. If a field isn't found, use `null`. "
        "Keep specification values exactly as they are in the original text. "
        "The product name (`nome`) is mandatory. For each product, return `bounding_box` as "
        "[ymin, xmin, ymax, xmax] on a 0-1000 scale around the product photo."
    ),
    'pt': (
        "Analise a imagem da página do catálogo. Extraia informações detalhadas para cada produto listado. "
        "Retorne os dados no esquema JSON fornecido. Se um campo não for encontrado, use `null`. "
        "Mantenha os valores de especificação exatamente como estão no texto original. "
        "O nome do produto (`nome`) é obrigatório. Para cada produto, retorne `bounding_box` como "
        "[ymin, xmin, ymax, xmax] em escala 0-1000 ao redor da foto do produto."
    ),
}


def _filter_known_keys(cls, config: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys the dataclass does not declare, warning about each one."""
    valid_keys = {f.name for f in fields(cls)}
    filtered = {}
    for key, value in config.items():
        if key in valid_keys:
            filtered[key] = value
        else:
            logger.warning(f"Unknown config key '{key}' for {cls.__name__} will be ignored")
    return filtered


@dataclass
class ProcessorOptions:
    """
    Base class for processor-specific configuration options.

    All processor option classes inherit from this to provide
    consistent interface and common functionality.
    """
    enabled: bool = True
    timeout_seconds: Optional[int] = None  # Override engine timeout if set

    def validate(self) -> bool:
        """
        Validate configuration options.

        Returns:
            True if configuration is valid, False otherwise
        """
        if self.timeout_seconds is not None and self.timeout_seconds < 0:
            logger.error("timeout_seconds must be non-negative")
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, config: Dict[str, Any]):
        """Create options from dictionary, ignoring unknown keys."""
        return cls(**_filter_known_keys(cls, config or {}))


@dataclass
class RasterizerOptions(ProcessorOptions):
    """Whole-page render settings for the recognition image."""
    page_scale: float = 1.5
    jpeg_quality: float = 0.9  # 0-1, converted to Pillow's 1-100

    def validate(self) -> bool:
        if not super().validate():
            return False
        if self.page_scale <= 0:
            logger.error("page_scale must be positive")
            return False
        if not 0.0 < self.jpeg_quality <= 1.0:
            logger.error("jpeg_quality must be in (0, 1]")
            return False
        return True


@dataclass
class RegionCropOptions(ProcessorOptions):
    """High-resolution, text-free region render settings."""
    default_scale: float = 4.0
    max_dimension: int = 4096  # device pixels, per side

    def validate(self) -> bool:
        if not super().validate():
            return False
        if self.default_scale <= 0:
            logger.error("default_scale must be positive")
            return False
        if self.max_dimension < 1:
            logger.error("max_dimension must be at least 1 pixel")
            return False
        return True


@dataclass
class NativeImageOptions(ProcessorOptions):
    """
    Scoring knobs for lifting an embedded bitmap instead of re-rendering.

    score = (1 - |candidate_aspect - box_aspect|) * 100, plus a flat bonus
    for candidates above large_image_pixels.
    """
    min_width: int = 100
    min_height: int = 100
    max_aspect_difference: float = 0.5
    large_image_pixels: int = 1_000_000
    large_image_bonus: float = 50.0
    confidence_threshold: float = 70.0

    def validate(self) -> bool:
        if not super().validate():
            return False
        if self.min_width < 1 or self.min_height < 1:
            logger.error("min_width and min_height must be at least 1")
            return False
        if self.max_aspect_difference < 0:
            logger.error("max_aspect_difference must be non-negative")
            return False
        return True


@dataclass
class RetryOptions:
    """Backoff for rate-limited recognition calls: base * 2**attempt + U(0, jitter)."""
    max_attempts: int = 5
    base_delay_seconds: float = 1.0
    max_jitter_seconds: float = 1.0

    def validate(self) -> bool:
        if self.max_attempts < 1:
            logger.error("max_attempts must be at least 1")
            return False
        if self.base_delay_seconds < 0 or self.max_jitter_seconds < 0:
            logger.error("retry delays must be non-negative")
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'RetryOptions':
        return cls(**_filter_known_keys(cls, config or {}))


@dataclass
class EngineConfig:
    """
    Central configuration for PDFEngine and the processors built on it.

    Example:
        >>> config = EngineConfig(max_file_size_mb=20)
        >>> with PDFEngine(content, 'catalog.pdf', config=config) as engine:
        ...     print(engine.get_page_count())
    """
    rasterizer: RasterizerOptions = field(default_factory=RasterizerOptions)
    region_crop: RegionCropOptions = field(default_factory=RegionCropOptions)
    native_image: NativeImageOptions = field(default_factory=NativeImageOptions)
    retry: RetryOptions = field(default_factory=RetryOptions)

    # Resource management
    max_file_size_mb: int = 50
    validate_on_open: bool = True

    # Recognition
    language: str = 'en'
    extraction_prompt: Optional[str] = None  # None means DEFAULT_EXTRACTION_PROMPTS[language]

    # Logging
    log_level: str = "INFO"

    def validate(self) -> bool:
        """
        Validate configuration values.

        Returns:
            True if all values are valid, False otherwise
        """
        if self.max_file_size_mb < 1:
            logger.error("max_file_size_mb must be at least 1 MB")
            return False

        if self.extraction_prompt is None and self.language not in DEFAULT_EXTRACTION_PROMPTS:
            logger.error(f"No default extraction prompt for language '{self.language}'")
            return False

        return all([
            self.rasterizer.validate(),
            self.region_crop.validate(),
            self.native_image.validate(),
            self.retry.validate(),
        ])

    @property
    def prompt(self) -> str:
        """The prompt sent to the recognizer with each page image."""
        if self.extraction_prompt:
            return self.extraction_prompt
        return DEFAULT_EXTRACTION_PROMPTS[self.language]

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert configuration to dictionary.

        Useful for serialization, logging, and debugging.
        """
        return {
            'rasterizer': self.rasterizer.to_dict(),
            'region_crop': self.region_crop.to_dict(),
            'native_image': self.native_image.to_dict(),
            'retry': self.retry.to_dict(),
            'max_file_size_mb': self.max_file_size_mb,
            'validate_on_open': self.validate_on_open,
            'language': self.language,
            'extraction_prompt': self.extraction_prompt,
            'log_level': self.log_level,
        }

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'EngineConfig':
        """
        Create EngineConfig from dictionary.

        Nested option sections may be given as dicts.
        Unknown keys are ignored with a warning.

        Args:
            config: Dictionary of configuration values

        Returns:
            EngineConfig instance
        """
        nested = {
            'rasterizer': RasterizerOptions,
            'region_crop': RegionCropOptions,
            'native_image': NativeImageOptions,
            'retry': RetryOptions,
        }
        filtered_config = _filter_known_keys(cls, config or {})
        for key, options_cls in nested.items():
            value = filtered_config.get(key)
            if isinstance(value, dict):
                filtered_config[key] = options_cls.from_dict(value)

        return cls(**filtered_config)

    @classmethod
    def default(cls) -> 'EngineConfig':
        """Create configuration with default values."""
        return cls()

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"EngineConfig("
            f"page_scale={self.rasterizer.page_scale}, "
            f"crop_scale={self.region_crop.default_scale}, "
            f"threshold={self.native_image.confidence_threshold}, "
            f"max_file={self.max_file_size_mb}MB)"
        )


@dataclass
class PageSelection:
    """
    Set of 1-based page numbers selected for one file.

    Example:
        >>> PageSelection.parse("1-3, 5").pages
        {1, 2, 3, 5}
        >>> PageSelection.parse("2-").resolve(4)
        [2, 3, 4]
    """

    pages: set = field(default_factory=set)
    open_start: Optional[int] = None  # "N-" means N through the last page

    def __post_init__(self):
        """Validate selection on construction."""
        invalid = [p for p in self.pages if not isinstance(p, int) or p < 1]
        if invalid:
            raise ValueError(f"page numbers must be integers >= 1, got {sorted(invalid, key=str)}")
        if self.open_start is not None and self.open_start < 1:
            raise ValueError(f"open range start must be >= 1, got {self.open_start}")
        highest = max([*self.pages, self.open_start or 0], default=0)
        if highest > MAX_SELECTABLE_PAGE:
            raise ValueError(f"page {highest} exceeds the maximum of {MAX_SELECTABLE_PAGE}")

    @classmethod
    def parse(cls, selection: Union[str, Iterable[int], None]) -> 'PageSelection':
        """
        Parse "1-3,5,9-" or an iterable of page numbers.

        Empty, "all" or None selects every page.
        """
        if selection is None:
            return cls.all_pages()

        if not isinstance(selection, str):
            return cls(pages={int(p) for p in selection})

        selection = selection.strip()
        if not selection or selection.lower() == 'all':
            return cls.all_pages()

        pages = set()
        open_start = None
        for part in selection.split(','):
            part = part.strip()
            if not part:
                continue
            if '-' in part:
                start_str, end_str = (s.strip() for s in part.split('-', 1))
                try:
                    start = int(start_str)
                    end = int(end_str) if end_str else None
                except ValueError:
                    raise ValueError(f"Invalid page range '{part}'")
                if end is None:
                    open_start = start if open_start is None else min(open_start, start)
                    continue
                if end < start:
                    raise ValueError(f"end page ({end}) must be >= start page ({start})")
                if end > MAX_SELECTABLE_PAGE:
                    raise ValueError(f"page range '{part}' exceeds the maximum page {MAX_SELECTABLE_PAGE}")
                pages.update(range(start, end + 1))
            else:
                try:
                    pages.add(int(part))
                except ValueError:
                    raise ValueError(f"Invalid page number '{part}'")

        return cls(pages=pages, open_start=open_start)

    @classmethod
    def all_pages(cls) -> 'PageSelection':
        """Selection representing every page in the document."""
        return cls(pages=set(), open_start=1)

    @property
    def is_empty(self) -> bool:
        return not self.pages and self.open_start is None

    def resolve(self, total_pages: int) -> List[int]:
        """
        Convert to ascending in-range page numbers.

        Out-of-range pages are logged and dropped.
        """
        if total_pages < 1:
            return []

        selected = set(self.pages)
        if self.open_start is not None:
            selected.update(range(self.open_start, total_pages + 1))

        out_of_range = sorted(p for p in selected if p > total_pages)
        if out_of_range:
            logger.warning(
                f"Ignoring pages {out_of_range}: document has {total_pages} pages"
            )

        return sorted(p for p in selected if p <= total_pages)

    def __len__(self) -> int:
        """Number of explicit pages; open ranges need resolve()."""
        if self.open_start is not None:
            raise ValueError("Cannot get length of an open-ended selection")
        return len(self.pages)

    def __repr__(self) -> str:
        """String representation for debugging."""
        parts = [str(p) for p in sorted(self.pages)]
        if self.open_start is not None:
            parts.append(f"{self.open_start}-")
        return f"PageSelection({','.join(parts) or 'none'})"
