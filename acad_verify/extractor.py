"""
Certificate identifier extraction.

Stages run in a fixed order and each one only runs if the previous stage
found nothing:

1. QR payload   - JSON object with a finalized ``id`` (only source of a payload)
2. QR text      - identifier-shaped token inside non-JSON QR text
3. Page text    - identifier-shaped token in the document's text
4. Filename     - identifier-shaped token in the uploaded filename

Everything here is pure: no network, no storage.
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np
from pyzbar import pyzbar
from pyzbar.pyzbar import ZBarSymbol

from .errors import DecodeFailure, NoIdentifierFound
from .models import IDENTIFIER_PATTERN, DocumentPayload

logger = logging.getLogger(__name__)

SOURCE_QR_PAYLOAD = 'qr-payload'
SOURCE_QR_TEXT = 'qr-text'
SOURCE_DOCUMENT_TEXT = 'document-text'
SOURCE_FILENAME = 'filename'


@dataclass(frozen=True)
class ExtractionResult:
    identifier: Optional[str] = None
    payload: Optional[DocumentPayload] = None
    source: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.identifier is not None

    def require(self) -> str:
        """Return the identifier or raise NoIdentifierFound"""
        if self.identifier is None:
            raise NoIdentifierFound()
        return self.identifier


def search_identifier(text: Optional[str]) -> Optional[str]:
    """First identifier-shaped token in ``text``"""
    if not text:
        return None
    match = IDENTIFIER_PATTERN.search(text)
    return match.group(0) if match else None


def _to_gray(pixels: np.ndarray) -> np.ndarray:
    if pixels.ndim == 2:
        return pixels
    if pixels.shape[2] == 4:
        return cv2.cvtColor(pixels, cv2.COLOR_RGBA2GRAY)
    return cv2.cvtColor(pixels, cv2.COLOR_RGB2GRAY)


def decode_qr_texts(pixels: np.ndarray) -> List[str]:
    """Decode QR symbols with several image passes.

    Raises DecodeFailure when no pass yields a symbol.
    """
    if pixels is None or pixels.size == 0:
        raise DecodeFailure("empty pixel buffer")

    if pixels.dtype != np.uint8:
        pixels = pixels.astype(np.uint8)

    gray = _to_gray(pixels)
    passes = [
        ('original', pixels),
        ('grayscale', gray),
        ('enhanced', cv2.convertScaleAbs(gray, alpha=1.5, beta=30)),
    ]

    texts = []
    for method, image in passes:
        for obj in pyzbar.decode(image, symbols=[ZBarSymbol.QRCODE]):
            data = obj.data.decode('utf-8', errors='ignore')
            if data and data not in texts:
                logger.debug(f"QR decoded via {method} pass")
                texts.append(data)

    if not texts:
        raise DecodeFailure("no QR code found in document")
    return texts


def parse_payload(text: str) -> Optional[dict]:
    """Parse QR text as a JSON object, or None if it is not structured data"""
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class IdentifierExtractor:
    """Recover a certificate identifier (and QR payload) from a document"""

    def extract(self, pixels: Optional[np.ndarray] = None, raw_text: Optional[str] = None,
                filename: Optional[str] = None) -> ExtractionResult:
        texts = []
        if pixels is not None:
            try:
                texts = decode_qr_texts(pixels)
            except DecodeFailure as e:
                logger.info(f"QR scan failed ({e}), falling back to text search")

        structured = [(text, parse_payload(text)) for text in texts]

        # 1. Structured payload with a finalized id
        for _, data in structured:
            if data is None:
                continue
            payload = DocumentPayload.from_qr_json(data)
            if payload.id:
                logger.info(f"Certificate ID decoded from embedded QR: {payload.id}")
                return ExtractionResult(payload.id, payload, SOURCE_QR_PAYLOAD)

        # 2. Unstructured QR text
        for text, data in structured:
            if data is not None:
                continue
            identifier = search_identifier(text)
            if identifier:
                logger.info(f"Certificate ID extracted from QR text: {identifier}")
                return ExtractionResult(identifier, None, SOURCE_QR_TEXT)

        # 3. Document text
        identifier = search_identifier(raw_text)
        if identifier:
            logger.info(f"Certificate ID detected from document text: {identifier}")
            return ExtractionResult(identifier, None, SOURCE_DOCUMENT_TEXT)

        # 4. Filename
        identifier = search_identifier(filename)
        if identifier:
            logger.info(f"Certificate ID detected from filename: {identifier}")
            return ExtractionResult(identifier, None, SOURCE_FILENAME)

        logger.info("No digital ID found in document")
        return ExtractionResult()
