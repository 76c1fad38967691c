"""
End-to-end verification: document -> identifier -> canonical record ->
verdict -> history.
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .config import DEFAULT_FETCH_TIMEOUT, Settings
from .errors import NotFound, RecordLookupError, UnsupportedFormat, VerificationCancelled
from .extractor import ExtractionResult, IdentifierExtractor
from .history import VerificationHistoryRecorder
from .integrity import IntegrityVerifier
from .models import DocumentPayload, HistoryEntry, Verdict
from .rasterizer import DocumentRasterizer
from .records import CanonicalRecordClient, HttpRecordClient

logger = logging.getLogger(__name__)

CANCEL_POLL_INTERVAL = 0.05


class CancelToken:
    """Lets a caller abandon a verification from another thread"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise VerificationCancelled("verification abandoned by caller")


@dataclass
class PipelineResult:
    extraction: ExtractionResult
    verdict: Optional[Verdict] = None
    history_entry: Optional[HistoryEntry] = None
    preview_image: Optional[bytes] = None
    preview_mime: Optional[str] = None

    @property
    def manual_entry_required(self) -> bool:
        return self.verdict is None


def _close_quietly(future):
    # Release the buffer of a rasterization nobody is waiting for any more
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()


class VerificationPipeline:
    """Wire the extraction, lookup, integrity and history stages together"""

    def __init__(self, record_client: CanonicalRecordClient,
                 history: Optional[VerificationHistoryRecorder] = None,
                 rasterizer: Optional[DocumentRasterizer] = None,
                 extractor: Optional[IdentifierExtractor] = None,
                 verifier: Optional[IntegrityVerifier] = None,
                 fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.record_client = record_client
        self.history = history
        self.rasterizer = rasterizer or DocumentRasterizer()
        self.extractor = extractor or IdentifierExtractor()
        self.verifier = verifier or IntegrityVerifier()
        self.fetch_timeout = fetch_timeout
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix='acad-worker')

    @classmethod
    def from_settings(cls, settings: Settings, record_client: Optional[CanonicalRecordClient] = None,
                      history: Optional[VerificationHistoryRecorder] = None) -> 'VerificationPipeline':
        if record_client is None:
            if not settings.record_api_url:
                raise ValueError("RECORD_API_URL is not configured")
            record_client = HttpRecordClient(settings.record_api_url, timeout=settings.record_fetch_timeout)
        if history is None:
            history = VerificationHistoryRecorder(settings.database_url)
        return cls(
            record_client,
            history=history,
            rasterizer=DocumentRasterizer(pdf_render_scale=settings.pdf_render_scale),
            fetch_timeout=settings.record_fetch_timeout,
        )

    def close(self):
        if self._owns_executor:
            self.executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # =====================
    # STAGES
    # =====================

    def _wait(self, future, cancel: Optional[CancelToken], stage: str, on_abandon=None):
        """Block on a worker future, giving up as soon as the caller cancels"""
        while True:
            try:
                return future.result(timeout=CANCEL_POLL_INTERVAL)
            except FutureTimeout:
                if cancel is not None and cancel.cancelled:
                    if not future.cancel() and on_abandon is not None:
                        future.add_done_callback(on_abandon)
                    logger.info(f"{stage} abandoned by caller")
                    raise VerificationCancelled("verification abandoned by caller")

    def _rasterize(self, document: bytes, mime_type: str, cancel: Optional[CancelToken]):
        """Rasterize on a worker thread; None when the format is unusable"""
        future = self.executor.submit(self.rasterizer.rasterize, document, mime_type)
        try:
            return self._wait(future, cancel, "Rasterization", on_abandon=_close_quietly)
        except UnsupportedFormat as e:
            logger.warning(f"{e} - falling back to filename search")
            return None

    def _lookup(self, identifier: str, payload: Optional[DocumentPayload],
                cancel: Optional[CancelToken] = None) -> Verdict:
        future = self.executor.submit(self.record_client.fetch, identifier, timeout=self.fetch_timeout)
        try:
            record = self._wait(future, cancel, "Record lookup")
        except NotFound as e:
            logger.info(f"Certificate {identifier} not found: {e.message}")
            return self.verifier.invalid(identifier, e.message)
        except RecordLookupError as e:
            logger.error(f"Record lookup for {identifier} failed: {e}")
            return self.verifier.unavailable(identifier, str(e))
        return self.verifier.verify(identifier, payload, record)

    def _record(self, caller_id: Optional[str], verdict: Verdict, invocation_id: str) -> Optional[HistoryEntry]:
        if self.history is None or caller_id is None:
            return None
        try:
            return self.history.record(caller_id, verdict, invocation_id=invocation_id)
        except SQLAlchemyError as e:
            # The verdict stands even if the audit trail is unavailable
            logger.error(f"Failed to save verification history: {e}")
            return None

    # =====================
    # ENTRY POINTS
    # =====================

    def verify_identifier(self, identifier: str, caller_id: Optional[str] = None,
                          payload: Optional[DocumentPayload] = None,
                          cancel: Optional[CancelToken] = None,
                          invocation_id: Optional[str] = None) -> Verdict:
        """Verify a bare identifier (or one recovered from a document)"""
        verdict, _ = self._verify(identifier.strip(), caller_id, payload, cancel,
                                  invocation_id or str(uuid.uuid4()))
        return verdict

    def _verify(self, identifier, caller_id, payload, cancel, invocation_id):
        if cancel is not None:
            cancel.raise_if_cancelled()
        logger.info(f"Verifying certificate {identifier}")
        verdict = self._lookup(identifier, payload, cancel)
        if cancel is not None:
            cancel.raise_if_cancelled()
        entry = self._record(caller_id, verdict, invocation_id)
        logger.info(f"Verification of {identifier} complete: {verdict.outcome.value}")
        return verdict, entry

    def verify_document(self, document: bytes, mime_type: str, filename: Optional[str] = None,
                        caller_id: Optional[str] = None, raw_text: Optional[str] = None,
                        cancel: Optional[CancelToken] = None) -> PipelineResult:
        """Verify an uploaded certificate image or PDF"""
        invocation_id = str(uuid.uuid4())
        if cancel is not None:
            cancel.raise_if_cancelled()

        raster = self._rasterize(document, mime_type, cancel)
        with raster if raster is not None else nullcontext():
            if cancel is not None:
                cancel.raise_if_cancelled()
            pixels = raster.pixels if raster is not None else None
            text = raw_text or (raster.text if raster is not None else None)
            extraction = self.extractor.extract(pixels=pixels, raw_text=text, filename=filename)
            preview_image = raster.preview_image if raster is not None else None
            preview_mime = raster.preview_mime if raster is not None else None

        result = PipelineResult(extraction, preview_image=preview_image, preview_mime=preview_mime)
        if not extraction.found:
            return result

        result.verdict, result.history_entry = self._verify(
            extraction.identifier, caller_id, extraction.payload, cancel, invocation_id)
        return result
