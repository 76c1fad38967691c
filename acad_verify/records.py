"""
Access to the authoritative certificate record store.

The record service (ledger-backed registrar database) is an external
collaborator. Every verification re-fetches, nothing is cached here, so a
revocation is visible on the very next verification.
"""

import dataclasses
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Optional

import httpx

from .config import DEFAULT_FETCH_TIMEOUT
from .errors import NotFound, RecordServiceError, Timeout
from .models import STATUS_REVOKED, CanonicalRecord, is_identifier

logger = logging.getLogger(__name__)

INVALID_ID_MESSAGE = "Invalid certificate ID format"


class CanonicalRecordClient(ABC):
    """Fetch the canonical record for a certificate identifier"""

    @abstractmethod
    def fetch(self, identifier: str, timeout: Optional[float] = None) -> CanonicalRecord:
        """Return the record or raise NotFound / Timeout / RecordServiceError"""


class HttpRecordClient(CanonicalRecordClient):
    """Client for ``GET /certificates/verify/{id}`` on the record service"""

    def __init__(self, base_url: str, timeout: float = DEFAULT_FETCH_TIMEOUT,
                 headers: Optional[Dict[str, str]] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.headers = headers or {}

    def _url(self, identifier: str) -> str:
        return f"{self.base_url}/certificates/verify/{identifier}"

    def fetch(self, identifier: str, timeout: Optional[float] = None) -> CanonicalRecord:
        if not is_identifier(identifier):
            raise NotFound(identifier, INVALID_ID_MESSAGE)

        timeout = self.timeout if timeout is None else timeout
        url = self._url(identifier)
        try:
            resp = httpx.get(url, headers=self.headers, timeout=timeout)
        except httpx.TimeoutException as e:
            logger.warning(f"Record lookup for {identifier} timed out after {timeout}s")
            raise Timeout(identifier, timeout) from e
        except httpx.HTTPError as e:
            logger.error(f"Record lookup for {identifier} failed: {e}")
            raise RecordServiceError(str(e)) from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code in (400, 404):
            message = body.get('error') if isinstance(body, dict) else None
            raise NotFound(identifier, message or "Certificate not found")
        if resp.status_code >= 400:
            logger.error(f"Record service returned HTTP {resp.status_code} for {identifier}")
            raise RecordServiceError(f"record service returned HTTP {resp.status_code}")
        if not isinstance(body, dict):
            raise RecordServiceError("record service returned a non-JSON response")

        certificate = body.get('certificate')
        if not certificate:
            raise NotFound(identifier, body.get('error') or "Certificate not found")

        try:
            record = CanonicalRecord.from_dict(certificate)
        except (ValueError, TypeError, AttributeError, OverflowError) as e:
            logger.error(f"Malformed certificate record for {identifier}: {e}")
            raise RecordServiceError(f"record service returned a malformed certificate: {e}") from e
        # Revoked certificates come back as valid=false with the record attached
        if body.get('valid') is False and str(body.get('status', '')).lower() == STATUS_REVOKED:
            record = dataclasses.replace(record, status=STATUS_REVOKED)
        return record


class InMemoryRecordStore(CanonicalRecordClient):
    """Dict-backed record store for local runs and tests"""

    def __init__(self, records: Optional[Iterable[CanonicalRecord]] = None):
        self._records: Dict[str, CanonicalRecord] = {}
        for record in records or []:
            self.add(record)

    def add(self, record: CanonicalRecord):
        self._records[record.id] = record

    def revoke(self, identifier: str):
        record = self._records.get(identifier)
        if record is None:
            raise NotFound(identifier)
        self._records[identifier] = dataclasses.replace(record, status=STATUS_REVOKED)

    def fetch(self, identifier: str, timeout: Optional[float] = None) -> CanonicalRecord:
        record = self._records.get(identifier)
        if record is None:
            raise NotFound(identifier)
        return record

    def __len__(self):
        return len(self._records)

    @classmethod
    def from_json_file(cls, path) -> 'InMemoryRecordStore':
        """Load a JSON list of records, or an object keyed by id"""
        with open(Path(path), 'r', encoding='utf-8') as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = [dict(value, id=value.get('id', key)) for key, value in data.items()]
        store = cls(CanonicalRecord.from_dict(item) for item in data)
        logger.info(f"Loaded {len(store)} certificate record(s) from {path}")
        return store
