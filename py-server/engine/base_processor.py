"""
Processor base class and registry.

Every renderer and extractor attached to a PDFEngine derives from
BaseProcessor: it holds the engine reference and its validated options
object, and follows the engine's lifetime (started when the document
opens, stopped when it is released).
"""

from abc import ABC
from typing import Any, ClassVar, Dict, List, Optional, Protocol, Type, TYPE_CHECKING
import logging

if TYPE_CHECKING:
    from engine.pdf_engine import PDFEngine

logger = logging.getLogger(__name__)


class BaseProcessor(ABC):
    """
    Common plumbing for engine processors.

    Subclasses with settings set `options_class`; the options passed in (or
    a default instance) are validated once here, so a processor never runs
    with values its own validate() rejects.
    """

    options_class: ClassVar[Optional[Type[Any]]] = None

    def __init__(self, engine: 'PDFEngine', options: Optional[Any] = None):
        self.engine = engine
        self._active = False

        if self.options_class is not None:
            self.options = options if options is not None else self.options_class()
            if not self.options.validate():
                raise ValueError(f"Invalid {type(self.options).__name__} for {self.name}")
        else:
            self.options = options

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def initialize(self) -> None:
        """Called by the engine once the document is open."""
        if self._active:
            logger.warning(f"{self.name} started twice")
            return
        self._active = True
        logger.debug(f"{self.name} ready")

    def cleanup(self) -> None:
        """Called by the engine on release. Safe to call when not started."""
        if self._active:
            self._active = False
            logger.debug(f"{self.name} stopped")

    @property
    def is_initialized(self) -> bool:
        return self._active

    def validate_state(self) -> bool:
        if self.engine is None:
            logger.error(f"{self.name} is detached from its engine")
            return False
        if not self._active:
            logger.error(f"{self.name} used before the document was opened")
            return False
        return True

    def __repr__(self) -> str:
        return f"{self.name}({'active' if self._active else 'inactive'})"


class ProcessorProtocol(Protocol):
    """What the registry needs from a processor."""

    def initialize(self) -> None:
        ...

    def cleanup(self) -> None:
        ...

    def validate_state(self) -> bool:
        ...


class ProcessorRegistry:
    """
    Named processors of one engine.

    Started in registration order and stopped in reverse, so the region
    extractor is stopped before the renderers it delegates to.
    """

    def __init__(self):
        self._by_name: Dict[str, ProcessorProtocol] = {}

    def register(self, name: str, processor: ProcessorProtocol) -> None:
        if name in self._by_name:
            logger.warning(f"Replacing processor '{name}'")
            del self._by_name[name]
        self._by_name[name] = processor

    def get(self, name: str) -> Optional[ProcessorProtocol]:
        return self._by_name.get(name)

    def require(self, name: str) -> ProcessorProtocol:
        processor = self._by_name.get(name)
        if processor is None:
            raise RuntimeError(f"Processor '{name}' not initialized")
        return processor

    def initialize_all(self) -> None:
        for name, processor in self._by_name.items():
            try:
                processor.initialize()
            except Exception as e:
                logger.error(f"Processor '{name}' failed to start: {e}")
                raise

    def cleanup_all(self) -> None:
        # Stop everything even if one processor misbehaves
        for name, processor in reversed(list(self._by_name.items())):
            try:
                processor.cleanup()
            except Exception as e:
                logger.warning(f"Processor '{name}' failed to stop cleanly: {e}")

    def clear(self) -> None:
        self._by_name.clear()

    def validate_all(self) -> bool:
        invalid = [name for name, processor in self._by_name.items() if not processor.validate_state()]
        if invalid:
            logger.error(f"Processors not ready: {invalid}")
        return not invalid

    @property
    def processor_names(self) -> List[str]:
        return list(self._by_name)

    def __len__(self) -> int:
        return len(self._by_name)

    def __repr__(self) -> str:
        return f"ProcessorRegistry({self.processor_names})"
