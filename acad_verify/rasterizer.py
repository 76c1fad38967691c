"""
Document rasterization: turn an uploaded certificate (image or PDF) into a
pixel buffer the QR decoder can read, plus a preview image for display.
"""

import io
import logging
from typing import Optional

import numpy as np
import pytesseract
from PIL import Image, UnidentifiedImageError
from pdf2image import convert_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFSyntaxError,
)

from .config import (
    ALLOWED_MIME_TYPES,
    DEFAULT_PDF_RENDER_SCALE,
    PDF_BASE_DPI,
    PREVIEW_JPEG_QUALITY,
)
from .errors import UnsupportedFormat

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = 'application/pdf'


class RasterizedDocument:
    """Pixel buffer and preview produced from one document.

    Owned resource: use it as a context manager (or call ``close``) so the
    buffers are released on every exit path.
    """

    def __init__(self, pixels: np.ndarray, preview_image: Optional[bytes],
                 preview_mime: Optional[str], text: Optional[str] = None,
                 source_mime: Optional[str] = None):
        self.pixels = pixels
        self.preview_image = preview_image
        self.preview_mime = preview_mime
        self.text = text
        self.source_mime = source_mime
        self.closed = False

    @property
    def size(self):
        if self.pixels is None:
            return (0, 0)
        height, width = self.pixels.shape[:2]
        return (width, height)

    def close(self):
        self.pixels = None
        self.preview_image = None
        self.text = None
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """Lowercase and strip parameters such as ``; charset=binary``"""
    if not mime_type:
        return ''
    return mime_type.split(';', 1)[0].strip().lower()


class DocumentRasterizer:
    """Rasterize certificate images and the first page of PDFs"""

    def __init__(self, pdf_render_scale: float = DEFAULT_PDF_RENDER_SCALE, extract_text: bool = True):
        if pdf_render_scale < 2.0:
            raise ValueError("PDF render scale must be at least 2x for reliable QR decoding")
        self.pdf_render_scale = pdf_render_scale
        self.extract_text = extract_text

    @property
    def pdf_dpi(self) -> int:
        return int(round(PDF_BASE_DPI * self.pdf_render_scale))

    def rasterize(self, document: bytes, mime_type: str) -> RasterizedDocument:
        mime = normalize_mime_type(mime_type)
        if mime not in ALLOWED_MIME_TYPES:
            raise UnsupportedFormat(mime_type or 'unknown')
        if not document:
            raise UnsupportedFormat(mime, 'empty document')

        if mime == PDF_MIME_TYPE:
            return self._rasterize_pdf(document)
        return self._rasterize_image(document, mime)

    def _rasterize_image(self, document: bytes, mime: str) -> RasterizedDocument:
        try:
            with Image.open(io.BytesIO(document)) as img:
                img.load()
                pixels = np.array(img.convert('RGB'))
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            logger.warning(f"Image decode failed: {e}")
            raise UnsupportedFormat(mime, str(e)) from e

        logger.info(f"Decoded {mime} image ({pixels.shape[1]}x{pixels.shape[0]})")
        # Original bytes double as the preview
        return RasterizedDocument(pixels, document, mime, source_mime=mime)

    def _rasterize_pdf(self, document: bytes) -> RasterizedDocument:
        try:
            pages = convert_from_bytes(document, dpi=self.pdf_dpi, first_page=1, last_page=1)
        except PDFInfoNotInstalledError as e:
            logger.error(f"Poppler is not installed, cannot render PDF: {e}")
            raise UnsupportedFormat(PDF_MIME_TYPE, 'poppler not installed') from e
        except (PDFPageCountError, PDFSyntaxError, Image.DecompressionBombError) as e:
            logger.warning(f"PDF conversion failed: {e}")
            raise UnsupportedFormat(PDF_MIME_TYPE, str(e)) from e

        if not pages:
            raise UnsupportedFormat(PDF_MIME_TYPE, 'document has no pages')

        page = pages[0].convert('RGB')
        try:
            pixels = np.array(page)
            buffer = io.BytesIO()
            page.save(buffer, format='JPEG', quality=PREVIEW_JPEG_QUALITY)
            text = self._page_text(page) if self.extract_text else None
        finally:
            for p in pages:
                p.close()
            page.close()

        logger.info(f"Rendered PDF page 1 at {self.pdf_dpi} dpi ({pixels.shape[1]}x{pixels.shape[0]})")
        return RasterizedDocument(pixels, buffer.getvalue(), 'image/jpeg', text=text,
                                  source_mime=PDF_MIME_TYPE)

    def _page_text(self, page: Image.Image) -> Optional[str]:
        """Best-effort text layer for the identifier search fallback"""
        try:
            return pytesseract.image_to_string(page, config='--oem 3 --psm 3')
        except pytesseract.TesseractNotFoundError:
            logger.warning("Tesseract OCR not found - skipping page text extraction")
        except pytesseract.TesseractError as e:
            logger.warning(f"Page text extraction failed: {e}")
        return None
