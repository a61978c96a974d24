# infrastructure/image_engine.py
"""Raster image conversion with Pillow and OCR text extraction with Tesseract."""
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from PIL import Image, ImageSequence

from config import settings
from core.domain import (
    CompressionLevel,
    ConversionOptions,
    DocumentContent,
    DocumentConversionError,
    DocumentImage,
    DocumentMetadata,
    ErrorCode,
    ExtractionOptions,
)
from core.formats import DocumentFormat, FormatCategory
from infrastructure.conversion_engines import BaseConversionEngine
from infrastructure.text_readers import PAGE_BREAK, build_content
from infrastructure.writers import write_docx

logger = logging.getLogger(settings.LOGGER_NAME)

PIL_FORMATS = {
    "jpg": "JPEG",
    "png": "PNG",
    "tiff": "TIFF",
    "bmp": "BMP",
    "webp": "WEBP",
    "gif": "GIF",
    "pdf": "PDF",
}
MULTI_FRAME_TARGETS = {"pdf", "tiff", "gif", "webp"}

JPEG_QUALITY = {
    CompressionLevel.NONE: 95,
    CompressionLevel.LOW: 90,
    CompressionLevel.MEDIUM: 80,
    CompressionLevel.HIGH: 60,
}
PNG_COMPRESS_LEVEL = {
    CompressionLevel.NONE: 0,
    CompressionLevel.LOW: 3,
    CompressionLevel.MEDIUM: 6,
    CompressionLevel.HIGH: 9,
}

# EXIF tag ids
EXIF_DESCRIPTION = 0x010E
EXIF_SOFTWARE = 0x0131
EXIF_DATETIME = 0x0132
EXIF_ARTIST = 0x013B


def _load_frames(path: Path) -> List[Image.Image]:
    with Image.open(path) as image:
        return [frame.copy() for frame in ImageSequence.Iterator(image)]


def _prepare_frame(frame: Image.Image, target_id: str) -> Image.Image:
    if target_id in ("jpg", "pdf"):
        has_alpha = frame.mode in ("RGBA", "LA") or (frame.mode == "P" and "transparency" in frame.info)
        if has_alpha:
            # JPEG has no alpha channel: flatten onto white
            rgba = frame.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            return background
        return frame if frame.mode in ("RGB", "L") else frame.convert("RGB")
    if target_id == "bmp" and frame.mode not in ("1", "L", "P", "RGB"):
        return frame.convert("RGB")
    if target_id == "webp" and frame.mode not in ("RGB", "RGBA"):
        return frame.convert("RGBA" if "transparency" in frame.info else "RGB")
    return frame


class ImageConversionEngine(BaseConversionEngine):
    """
    Raster-to-raster and raster-to-PDF by re-encoding with Pillow.
    Text targets (txt, docx) go through OCR.
    """
    category = FormatCategory.IMAGE
    RASTER_TARGETS = ("jpg", "png", "tiff", "bmp", "webp", "gif")
    OCR_TARGETS = ("txt", "docx")

    def __init__(self, ocr_languages: Optional[List[str]] = None):
        self.ocr_languages = ocr_languages or settings.OCR_LANGUAGES

    def supports_conversion(self, source_format: DocumentFormat, target_format: DocumentFormat) -> bool:
        if source_format.category != self.category or not target_format.is_output_supported:
            return False
        return target_format.id in PIL_FORMATS or target_format.id in self.OCR_TARGETS

    def _convert(self, input_path, output_path, source_format, target_format, options, monitor) -> None:
        if target_format.id in PIL_FORMATS:
            self._save_raster(input_path, output_path, target_format, options, monitor)
            return

        text = self.recognize_text(input_path, monitor)
        if target_format.id == "txt":
            output_path.write_text(text + "\n", encoding="utf-8")
            return

        extraction = ExtractionOptions.for_conversion(options)
        images = [self._as_document_image(input_path, source_format)] if options.preserve_images else []
        content = build_content(text.split("\n"), [], extraction, images=images, pages=1)
        metadata = self._conversion_metadata(input_path, source_format, options)
        write_docx(content, metadata, output_path, options, monitor.span(0.8, 1.0))

    def _save_params(self, target_id: str, options: ConversionOptions, exif: Optional[bytes]) -> Dict[str, Any]:
        level = options.compression_level
        params: Dict[str, Any] = {}
        if target_id == "jpg":
            params.update(quality=JPEG_QUALITY[level], optimize=level != CompressionLevel.NONE)
        elif target_id == "png":
            params.update(compress_level=PNG_COMPRESS_LEVEL[level])
        elif target_id == "webp":
            params.update(lossless=level == CompressionLevel.NONE, quality=JPEG_QUALITY[level])
        elif target_id == "tiff" and level != CompressionLevel.NONE:
            params.update(compression="tiff_lzw")
        elif target_id == "gif":
            params.update(optimize=level != CompressionLevel.NONE)
        elif target_id == "pdf":
            params.update(resolution=float(settings.RENDER_DPI))
        if exif and options.preserve_metadata and target_id in ("jpg", "png", "webp"):
            params["exif"] = exif
        return params

    def _save_raster(self, input_path: Path, output_path: Path, target_format: DocumentFormat,
                     options: ConversionOptions, monitor) -> None:
        with Image.open(input_path) as image:
            exif = image.getexif()
            exif_bytes = exif.tobytes() if len(exif) else None
        frames = _load_frames(input_path)
        monitor.report(0.3)

        prepared = []
        for index, frame in enumerate(frames):
            monitor.step(index, len(frames), 0.3, 0.8)
            prepared.append(_prepare_frame(frame, target_format.id))

        params = self._save_params(target_format.id, options, exif_bytes)
        pil_format = PIL_FORMATS[target_format.id]
        if len(prepared) > 1 and target_format.id in MULTI_FRAME_TARGETS:
            prepared[0].save(output_path, format=pil_format, save_all=True, append_images=prepared[1:], **params)
        else:
            prepared[0].save(output_path, format=pil_format, **params)
        monitor.report(0.9)

    def recognize_text(self, input_path: Path, monitor=None) -> str:
        """OCR every frame; frames are separated by page breaks."""
        try:
            import pytesseract
        except ImportError as e:
            raise DocumentConversionError("OCR is unavailable: pytesseract is not installed", ErrorCode.OCR_UNAVAILABLE) from e

        language = "+".join(self.ocr_languages)
        frames = _load_frames(input_path)
        texts = []
        for index, frame in enumerate(frames):
            if monitor:
                monitor.step(index, len(frames), 0.1, 0.8)
            try:
                texts.append(pytesseract.image_to_string(frame.convert("RGB"), lang=language).strip())
            except pytesseract.TesseractNotFoundError as e:
                raise DocumentConversionError(f"OCR is unavailable: {e}", ErrorCode.OCR_UNAVAILABLE) from e
        logger.info(f"[OCR] Recognized {sum(len(t) for t in texts)} characters in {Path(input_path).name}")
        return f"\n{PAGE_BREAK}\n".join(texts)

    @staticmethod
    def _as_document_image(input_path: Path, document_format: DocumentFormat) -> DocumentImage:
        with Image.open(input_path) as image:
            width, height = image.size
        return DocumentImage(
            id=Path(input_path).stem,
            data=Path(input_path).read_bytes(),
            mime_type=document_format.mime_type,
            width=width,
            height=height,
        )

    def extract_content(
        self, input_path: Path, document_format: DocumentFormat, options: ExtractionOptions
    ) -> DocumentContent:
        try:
            frames = len(_load_frames(input_path))
            image = self._as_document_image(input_path, document_format)
        except OSError as e:
            raise DocumentConversionError(f"Failed to read image: {e}", ErrorCode.EXTRACTION_FAILED) from e

        text = ""
        if options.extract_text:
            try:
                text = self.recognize_text(input_path)
            except (DocumentConversionError, OSError, RuntimeError) as e:
                logger.warning(f"[OCR] Text extraction skipped for {Path(input_path).name}: {e}")
        return build_content(text.split("\n") if text else [], [], options, images=[image], pages=frames)

    def extract_metadata(self, input_path: Path, document_format: DocumentFormat) -> DocumentMetadata:
        try:
            with Image.open(input_path) as image:
                exif = image.getexif()
                frames = getattr(image, "n_frames", 1)
                properties = {
                    "width": str(image.width),
                    "height": str(image.height),
                    "mode": image.mode,
                    "format": image.format or "",
                }
        except OSError as e:
            raise DocumentConversionError(f"Failed to read image metadata: {e}", ErrorCode.EXTRACTION_FAILED) from e

        created = None
        if exif.get(EXIF_DATETIME):
            try:
                created = datetime.strptime(str(exif[EXIF_DATETIME]), "%Y:%m:%d %H:%M:%S")
            except ValueError:
                logger.debug(f"[ENGINE] Unparseable EXIF date: {exif[EXIF_DATETIME]}")
        return DocumentMetadata(
            title=str(exif[EXIF_DESCRIPTION]).strip() or None if exif.get(EXIF_DESCRIPTION) else None,
            author=str(exif[EXIF_ARTIST]).strip() or None if exif.get(EXIF_ARTIST) else None,
            creator=str(exif[EXIF_SOFTWARE]).strip() or None if exif.get(EXIF_SOFTWARE) else None,
            creation_date=created,
            page_count=frames,
            properties=properties,
        )
