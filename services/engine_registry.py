# services/engine_registry.py
"""Category -> engine lookup, validated once at startup."""
import logging
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from config import settings
from core.domain import MissingEngineError
from core.formats import FormatCategory
from core.interfaces import IConversionEngine
from infrastructure.container_engines import (
    ArchiveConversionEngine,
    EbookConversionEngine,
    EmailConversionEngine,
    PresentationConversionEngine,
)
from infrastructure.conversion_engines import (
    DocumentConversionEngine,
    MarkupConversionEngine,
    PlainTextConversionEngine,
    SpreadsheetConversionEngine,
)
from infrastructure.image_engine import ImageConversionEngine

logger = logging.getLogger(settings.LOGGER_NAME)


class EngineRegistry:
    """
    Read-only mapping from format category to the engine that owns it.

    Construction fails with MissingEngineError when a category has no engine
    or when two engines claim the same one, so the gap surfaces at startup
    rather than on the first conversion.
    """

    def __init__(
        self,
        engines: Iterable[IConversionEngine],
        categories: Optional[Iterable[FormatCategory]] = None,
    ):
        table = {}
        for engine in engines:
            if engine.category in table:
                raise MissingEngineError(
                    f"Category '{engine.category.value}' claimed by both "
                    f"{type(table[engine.category]).__name__} and {type(engine).__name__}"
                )
            table[engine.category] = engine

        required = list(categories) if categories is not None else list(FormatCategory)
        missing = [c.value for c in required if c not in table]
        if missing:
            available = ", ".join(c.value for c in table) or "none"
            raise MissingEngineError(f"No conversion engine for: {', '.join(missing)}. Available: {available}")

        self._engines: Mapping[FormatCategory, IConversionEngine] = MappingProxyType(table)
        logger.info(f"[ENGINE] Registry ready with {len(table)} engines")

    @property
    def engines(self) -> Mapping[FormatCategory, IConversionEngine]:
        return self._engines

    def get_engine(self, category: FormatCategory) -> IConversionEngine:
        engine = self._engines.get(category)
        if engine is None:
            raise MissingEngineError(f"No conversion engine for: {category.value}")
        return engine


def default_engine_registry() -> EngineRegistry:
    """Wire one engine per catalog category."""
    return EngineRegistry([
        DocumentConversionEngine(),
        SpreadsheetConversionEngine(),
        PresentationConversionEngine(),
        EmailConversionEngine(),
        ImageConversionEngine(ocr_languages=settings.OCR_LANGUAGES),
        MarkupConversionEngine(),
        EbookConversionEngine(),
        ArchiveConversionEngine(),
        PlainTextConversionEngine(),
    ])
