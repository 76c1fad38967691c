"""
ACAD - certificate authenticity and tamper-detection pipeline.
"""

__version__ = '0.3.0'

from .errors import (
    DecodeFailure,
    NoIdentifierFound,
    NotFound,
    RecordServiceError,
    Timeout,
    UnsupportedFormat,
    VerificationCancelled,
    VerificationError,
)
from .extractor import ExtractionResult, IdentifierExtractor
from .history import VerificationHistoryRecorder
from .integrity import IntegrityVerifier, compute_fingerprint
from .models import (
    CanonicalRecord,
    DocumentPayload,
    HistoryEntry,
    Outcome,
    Verdict,
)
from .pipeline import CancelToken, PipelineResult, VerificationPipeline
from .rasterizer import DocumentRasterizer, RasterizedDocument
from .records import CanonicalRecordClient, HttpRecordClient, InMemoryRecordStore
