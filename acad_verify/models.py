"""
Value objects flowing through the verification pipeline.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Wire contract with the issuance side
IDENTIFIER_PATTERN = re.compile(r'[a-f0-9]{10}')
PENDING_SENTINEL = 'PENDING'

STATUS_VALID = 'valid'
STATUS_REVOKED = 'revoked'

# Date-only strings written by JavaScript toLocaleDateString()
LOCALE_DATE_FORMATS = ('%m/%d/%Y', '%d/%m/%Y', '%d.%m.%Y', '%Y/%m/%d')


class Outcome(str, Enum):
    AUTHENTIC = 'Authentic'
    TAMPERED = 'Tampered'
    INVALID = 'Invalid'

    @property
    def history_status(self) -> str:
        """Status string stored with history entries"""
        return {
            Outcome.AUTHENTIC: 'verified',
            Outcome.TAMPERED: 'tampered',
            Outcome.INVALID: 'invalid',
        }[self]


def is_identifier(value: Optional[str]) -> bool:
    return bool(value) and IDENTIFIER_PATTERN.fullmatch(value) is not None


def _clean(value: Any) -> Optional[str]:
    """Normalise an optional wire value to a non-empty string or None"""
    if value is None:
        return None
    text = str(value)
    return text if text != '' else None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Millisecond epoch as emitted by JavaScript clients
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    text = str(value).strip()
    iso = text[:-1] + '+00:00' if text.endswith('Z') else text
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        pass
    for fmt in LOCALE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    logger.warning(f"Unrecognised timestamp {text!r}, ignoring")
    return None


@dataclass(frozen=True)
class DocumentPayload:
    """Fields asserted by the QR code printed on the document (untrusted)"""
    id: Optional[str] = None
    recipient_name: Optional[str] = None
    program: Optional[str] = None
    registration_number: Optional[str] = None
    content_hash: Optional[str] = None
    institution: Optional[str] = None
    issued_date: Optional[str] = None

    @classmethod
    def from_qr_json(cls, data: Dict[str, Any]) -> 'DocumentPayload':
        identifier = _clean(data.get('id'))
        if identifier == PENDING_SENTINEL:
            identifier = None
        return cls(
            id=identifier,
            recipient_name=_clean(data.get('name')),
            program=_clean(data.get('program')),
            registration_number=_clean(data.get('regNo')),
            content_hash=_clean(data.get('hash')),
            institution=_clean(data.get('institution') or data.get('issuer')),
            issued_date=_clean(data.get('date')),
        )

    def to_qr_json(self) -> Dict[str, Any]:
        data = {
            'id': self.id or PENDING_SENTINEL,
            'regNo': self.registration_number,
            'name': self.recipient_name,
            'program': self.program,
            'date': self.issued_date,
            'hash': self.content_hash,
            'issuer': self.institution,
        }
        return {key: value for key, value in data.items() if value is not None}

    @property
    def is_empty(self) -> bool:
        return not any([self.recipient_name, self.program,
                        self.registration_number, self.content_hash])


@dataclass(frozen=True)
class CanonicalRecord:
    """Authoritative certificate record owned by the ledger service"""
    id: str
    recipient_name: str
    title: str
    issuer_name: str = ''
    issued_at: Optional[datetime] = None
    status: str = STATUS_VALID
    institution: Optional[str] = None
    year: Optional[str] = None
    grade: Optional[str] = None
    registration_number: Optional[str] = None
    transaction_hash: Optional[str] = None

    @property
    def is_revoked(self) -> bool:
        return self.status == STATUS_REVOKED

    @property
    def expected_registration_number(self) -> str:
        """Registration number as printed at issuance, falling back to the short ID"""
        if self.registration_number:
            return self.registration_number
        return self.id[:8].upper()

    @property
    def display_institution(self) -> str:
        return self.institution or self.issuer_name or 'Institution'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CanonicalRecord':
        """Build from either the record service's storage keys or its public keys"""
        if 'status' in data and data['status']:
            status = str(data['status']).lower()
        else:
            status = STATUS_REVOKED if data.get('revoked') else STATUS_VALID
        if status not in (STATUS_VALID, STATUS_REVOKED):
            status = STATUS_REVOKED if data.get('revoked') else STATUS_VALID

        identifier = _clean(data.get('id') or data.get('_id'))
        if identifier is None:
            raise ValueError("certificate record has no id")

        return cls(
            id=identifier,
            recipient_name=_clean(data.get('recipientName', data.get('name'))) or '',
            title=_clean(data.get('title', data.get('course'))) or '',
            issuer_name=_clean(data.get('issuerName', data.get('issuedBy'))) or '',
            issued_at=_parse_timestamp(data.get('issuedAt')),
            status=status,
            institution=_clean(data.get('institution')),
            year=_clean(data.get('year')),
            grade=_clean(data.get('grade')),
            registration_number=_clean(data.get('registrationNumber')),
            transaction_hash=_clean(data.get('transactionHash')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'recipientName': self.recipient_name,
            'title': self.title,
            'issuerName': self.issuer_name,
            'institution': self.institution,
            'issuedAt': self.issued_at.isoformat() if self.issued_at else None,
            'status': self.status,
            'year': self.year,
            'grade': self.grade,
            'registrationNumber': self.registration_number,
            'transactionHash': self.transaction_hash,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Verdict:
    identifier: str
    outcome: Outcome
    reasons: Tuple[str, ...]
    record: Optional[CanonicalRecord] = None
    computed_at: datetime = field(default_factory=_utcnow)
    retryable: bool = False

    def __post_init__(self):
        # Accept any sequence of reasons but store it immutably
        if not isinstance(self.reasons, tuple):
            object.__setattr__(self, 'reasons', tuple(self.reasons))

    @property
    def is_authentic(self) -> bool:
        return self.outcome is Outcome.AUTHENTIC

    def summary(self) -> Tuple[Outcome, Tuple[str, ...]]:
        """Content of the verdict without its timestamp"""
        return self.outcome, self.reasons

    def to_dict(self) -> Dict[str, Any]:
        return {
            'identifier': self.identifier,
            'outcome': self.outcome.value,
            'reasons': list(self.reasons),
            'record': self.record.to_dict() if self.record else None,
            'computedAt': self.computed_at.isoformat(),
            'retryable': self.retryable,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Verdict':
        record = data.get('record')
        return cls(
            identifier=data['identifier'],
            outcome=Outcome(data['outcome']),
            reasons=tuple(data.get('reasons') or ()),
            record=CanonicalRecord.from_dict(record) if record else None,
            computed_at=_parse_timestamp(data.get('computedAt')) or _utcnow(),
            retryable=bool(data.get('retryable', False)),
        )


@dataclass(frozen=True)
class HistoryEntry:
    """One verification event in a caller's audit trail"""
    id: int
    caller_id: str
    identifier: str
    verdict: Verdict
    created_at: datetime

    @property
    def status(self) -> str:
        return self.verdict.outcome.history_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'callerId': self.caller_id,
            'certificateId': self.identifier,
            'status': self.status,
            'reasons': list(self.verdict.reasons),
            'result': self.verdict.to_dict(),
            'createdAt': self.created_at.isoformat(),
        }
