"""
Tamper detection: cross-check the fields printed on a certificate against
the canonical record and recompute the content fingerprint.

Checks run in a fixed priority order and the first mismatch wins, so a
forged name is reported as an identity mismatch rather than as a generic
fingerprint failure.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from .models import CanonicalRecord, DocumentPayload, Outcome, Verdict

logger = logging.getLogger(__name__)

FINGERPRINT_DELIMITER = '|'

REVOKED_REASON = "Certificate has been revoked by the issuing institution."
FINGERPRINT_MISMATCH_REASON = (
    "Cryptographic Fingerprint Mismatch: the certificate's security hash has been "
    "altered or re-issued without authority."
)
DEFAULT_NOT_FOUND_REASON = "Certificate not found"


@dataclass(frozen=True)
class CheckPassed:
    line: str


@dataclass(frozen=True)
class Mismatch:
    reason: str


CheckResult = Union[CheckPassed, Mismatch]
Check = Callable[[DocumentPayload, CanonicalRecord], Optional[CheckResult]]


# =====================
# FINGERPRINT
# =====================

def compute_fingerprint(recipient_name: Optional[str], title: Optional[str], year: Optional[str],
                        grade: Optional[str], identifier: Optional[str],
                        registration_number: Optional[str]) -> str:
    """SHA-256 hex digest of the pipe-joined certificate fields (missing fields are empty)"""
    fields = [recipient_name, title, year, grade, identifier, registration_number]
    raw = FINGERPRINT_DELIMITER.join('' if value is None else str(value) for value in fields)
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()


def record_fingerprint(record: CanonicalRecord) -> str:
    """Fingerprint computed from canonical values only"""
    return compute_fingerprint(
        record.recipient_name,
        record.title,
        record.year,
        record.grade,
        record.id,
        record.expected_registration_number,
    )


def _strip_hex_prefix(value: str) -> str:
    # Issuance emits 0x-prefixed digests
    return value[2:] if value.startswith('0x') else value


def _normalize(text: str) -> str:
    return text.strip().lower()


# =====================
# FIELD CHECKS
# =====================

def check_identity(payload: DocumentPayload, record: CanonicalRecord) -> Optional[CheckResult]:
    if not payload.recipient_name:
        return None
    if _normalize(payload.recipient_name) != _normalize(record.recipient_name):
        return Mismatch(
            f"Identity Mismatch: printed name ('{payload.recipient_name}') does not match "
            f"the official record ('{record.recipient_name}')."
        )
    return CheckPassed("Recipient identity matches the official record.")


def check_program(payload: DocumentPayload, record: CanonicalRecord) -> Optional[CheckResult]:
    if not payload.program:
        return None
    if _normalize(payload.program) != _normalize(record.title):
        return Mismatch(
            f"Course/Program Mismatch: document shows '{payload.program}' but the official "
            f"record holds '{record.title}'."
        )
    return CheckPassed("Course/Program details match the official record.")


def check_registration_number(payload: DocumentPayload, record: CanonicalRecord) -> Optional[CheckResult]:
    if not payload.registration_number:
        return None
    expected = record.expected_registration_number
    # Case-sensitive on purpose
    if payload.registration_number != expected:
        return Mismatch(
            f"Registration Number Mismatch: document shows '{payload.registration_number}' "
            f"but the official record holds '{expected}'."
        )
    return CheckPassed("Security registration number verified.")


def check_content_hash(payload: DocumentPayload, record: CanonicalRecord) -> Optional[CheckResult]:
    if not payload.content_hash:
        return None
    expected = record_fingerprint(record)
    if _strip_hex_prefix(payload.content_hash) != expected:
        return Mismatch(FINGERPRINT_MISMATCH_REASON)
    return CheckPassed("Cryptographic content hash integrity confirmed.")


DEFAULT_CHECKS: List[Check] = [
    check_identity,
    check_program,
    check_registration_number,
    check_content_hash,
]


# =====================
# VERIFIER
# =====================

class IntegrityVerifier:
    """Produce a Verdict from a document payload and its canonical record"""

    def __init__(self, checks: Optional[List[Check]] = None):
        self.checks = list(checks) if checks is not None else list(DEFAULT_CHECKS)

    def run_checks(self, payload: Optional[DocumentPayload], record: CanonicalRecord):
        """Return (passed lines, first mismatch or None)"""
        passed = []
        if payload is None:
            return passed, None
        for check in self.checks:
            result = check(payload, record)
            if result is None:
                continue
            if isinstance(result, Mismatch):
                logger.warning(f"Check {check.__name__} failed for {record.id}: {result.reason}")
                return passed, result
            passed.append(result.line)
        return passed, None

    def verify(self, identifier: str, payload: Optional[DocumentPayload],
               record: CanonicalRecord) -> Verdict:
        passed, mismatch = self.run_checks(payload, record)

        if record.is_revoked:
            reasons = [REVOKED_REASON]
            if mismatch is not None:
                reasons.append(mismatch.reason)
            logger.info(f"Certificate {identifier} is revoked")
            # Unusable, but not evidence of tampering
            return Verdict(identifier, Outcome.INVALID, reasons, record=record)

        if mismatch is not None:
            return Verdict(identifier, Outcome.TAMPERED, [mismatch.reason], record=record)

        reasons = list(passed)
        if record.transaction_hash:
            reasons.append(f"Ledger anchor present (transaction {record.transaction_hash}).")
        reasons.append(f"Authenticity verified for {record.display_institution}.")
        logger.info(f"Certificate {identifier} verified: {len(passed)} document check(s) passed")
        return Verdict(identifier, Outcome.AUTHENTIC, reasons, record=record)

    def invalid(self, identifier: str, message: Optional[str] = None, retryable: bool = False) -> Verdict:
        """Verdict for a lookup that never produced a record"""
        return Verdict(identifier, Outcome.INVALID, [message or DEFAULT_NOT_FOUND_REASON],
                       retryable=retryable)

    def unavailable(self, identifier: str, detail: str) -> Verdict:
        """Verdict for a lookup that failed for infrastructure reasons"""
        return self.invalid(identifier, f"Record service unavailable: {detail}. Please try again.",
                            retryable=True)
