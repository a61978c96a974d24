# infrastructure/pdf_converters.py
"""PDF page rendering to PIL images, used for thumbnails and visual comparison."""
from typing import Optional

import fitz  # PyMuPDF
from PIL import Image

from config import settings


class PyMuPDFRenderer:
    """
    PyMuPDF-based page renderer.

    - Thread-safe (opens the PDF per call)
    - No intermediate PNG bytes
    """

    def __init__(self, default_dpi: Optional[int] = None):
        self.default_dpi = default_dpi or settings.RENDER_DPI

    def render_page(self, file_path: str, page_number: int = 0, dpi: Optional[int] = None) -> Image.Image:
        """Render a single page (0-based) to an RGB image."""
        dpi = dpi or self.default_dpi
        with fitz.open(file_path) as doc:
            if not 0 <= page_number < doc.page_count:
                raise ValueError(f"Page {page_number} out of range (document has {doc.page_count})")
            page = doc.load_page(page_number)
            mat = fitz.Matrix(dpi / 72, dpi / 72)
            pix = page.get_pixmap(matrix=mat, alpha=False)  # type: ignore

            # alpha=False above, so samples are always RGB
            return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
