"""Shared fixtures for the ACAD verification test suite."""

import io
import os
from datetime import datetime, timezone

import numpy as np
import pytest
from PIL import Image

# Keep stray config lookups away from any real database
os.environ.setdefault("DATABASE_URL", "sqlite://")

from acad_verify.history import VerificationHistoryRecorder
from acad_verify.integrity import record_fingerprint
from acad_verify.issuance import build_payload, generate_qr_code, payload_text
from acad_verify.models import CanonicalRecord, DocumentPayload
from acad_verify.records import InMemoryRecordStore


@pytest.fixture
def jane_record():
    """Scenario record: Jane Doe, BSc CS, valid."""
    return CanonicalRecord(
        id="abc1234567",
        recipient_name="Jane Doe",
        title="BSc CS",
        issuer_name="Registrar",
        institution="University of Technology",
        issued_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
        status="valid",
    )


@pytest.fixture
def jane_payload(jane_record):
    """Payload as printed on Jane's genuine certificate."""
    return DocumentPayload(
        id="abc1234567",
        recipient_name="Jane Doe",
        program="BSc CS",
        content_hash=record_fingerprint(jane_record),
    )


@pytest.fixture
def store(jane_record):
    return InMemoryRecordStore([jane_record])


@pytest.fixture
def history():
    return VerificationHistoryRecorder("sqlite://")


def png_bytes(image):
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def qr_png(text, box_size=8):
    """QR code image for arbitrary text, framed on a white page."""
    qr = Image.open(io.BytesIO(generate_qr_code(text, box_size=box_size))).convert("RGB")
    page = Image.new("RGB", (qr.width + 200, qr.height + 200), "white")
    page.paste(qr, (100, 100))
    return png_bytes(page)


def to_pixels(document):
    with Image.open(io.BytesIO(document)) as img:
        return np.array(img.convert("RGB"))


@pytest.fixture
def blank_png():
    return png_bytes(Image.new("RGB", (320, 240), "white"))


@pytest.fixture
def certificate_png(jane_record):
    """A rendered certificate carrying the issuance QR payload."""
    return qr_png(payload_text(build_payload(jane_record)))


@pytest.fixture
def make_qr_png():
    return qr_png


@pytest.fixture
def pixels_of():
    return to_pixels
