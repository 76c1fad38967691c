"""
Issuance side of the embedded QR contract.

Builds the JSON payload printed on a certificate and renders it as a QR
image. Minting and storing the record itself belongs to the ledger service.
"""

import base64
import io
import json

import qrcode

from .integrity import record_fingerprint
from .models import CanonicalRecord, DocumentPayload


def build_payload(record: CanonicalRecord) -> DocumentPayload:
    """Payload exactly as the certificate template embeds it"""
    return DocumentPayload(
        id=record.id,
        recipient_name=record.recipient_name,
        program=record.title,
        registration_number=record.expected_registration_number,
        content_hash='0x' + record_fingerprint(record),
        institution=record.institution or record.issuer_name or None,
        issued_date=record.issued_at.date().isoformat() if record.issued_at else None,
    )


def payload_text(payload: DocumentPayload) -> str:
    return json.dumps(payload.to_qr_json(), separators=(',', ':'))


def generate_qr_code(data: str, box_size: int = 10, border: int = 4) -> bytes:
    """Render ``data`` as a QR code PNG"""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


def render_payload_qr(record: CanonicalRecord) -> bytes:
    return generate_qr_code(payload_text(build_payload(record)))


def render_payload_qr_b64(record: CanonicalRecord) -> str:
    return base64.b64encode(render_payload_qr(record)).decode()
