# infrastructure/image_utils.py
"""
Image utilities for document thumbnails.
"""
import asyncio
import io
import logging
from pathlib import Path
from typing import Optional

from PIL import Image

from config import settings
from core.formats import FormatCategory, DocumentFormat
from infrastructure.pdf_converters import PyMuPDFRenderer

logger = logging.getLogger(settings.LOGGER_NAME)


class ImageProcessor:
    """Thumbnail generation for uploaded documents."""

    THUMB_QUALITY = 85

    def __init__(self, renderer: Optional[PyMuPDFRenderer] = None, max_dimension: Optional[int] = None):
        self.renderer = renderer or PyMuPDFRenderer()
        self.max_dimension = max_dimension or settings.THUMBNAIL_MAX_DIMENSION

    def create_thumbnail(self, image: Image.Image) -> Image.Image:
        """
        Create thumbnail respecting aspect ratio.
        Scales image so longest dimension = max_dimension
        """
        width, height = image.size
        if width == 0 or height == 0:
            return image.copy()

        if width > height:
            new_w = self.max_dimension
            new_h = max(1, int(height * (new_w / width)))
        else:
            new_h = self.max_dimension
            new_w = max(1, int(width * (new_h / height)))

        thumb = image.copy()
        thumb.thumbnail((new_w, new_h), Image.Resampling.LANCZOS)
        return thumb

    def _thumbnail_bytes(self, file_path: Path, document_format: DocumentFormat) -> Optional[bytes]:
        if document_format.id == "pdf":
            source = self.renderer.render_page(str(file_path), 0)
        elif document_format.category == FormatCategory.IMAGE:
            with Image.open(file_path) as image:
                source = image.convert("RGBA" if "A" in image.getbands() else "RGB")
        else:
            return None

        thumbnail = self.create_thumbnail(source)
        buffer = io.BytesIO()
        thumbnail.save(buffer, format="WEBP", quality=self.THUMB_QUALITY, method=6)
        return buffer.getvalue()

    async def thumbnail_for(self, file_path: Path, document_format: DocumentFormat) -> Optional[bytes]:
        """WebP thumbnail bytes for PDFs and images; None for other formats or unreadable files."""
        try:
            data = await asyncio.to_thread(self._thumbnail_bytes, Path(file_path), document_format)
        except (OSError, RuntimeError, ValueError) as e:
            logger.warning(f"[IMAGE] Thumbnail failed for {Path(file_path).name}: {e}")
            return None
        if data:
            logger.info(f"[IMAGE] Thumbnail for {Path(file_path).name}: {len(data) / 1024:.0f}KB")
        return data
