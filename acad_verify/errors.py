"""
Error taxonomy for the verification pipeline.

Only record lookup failures ever reach a Verdict (as ``Invalid``); every
extraction failure is recovered by the fallback chain.
"""


class VerificationError(Exception):
    """Base class for all pipeline errors"""


class UnsupportedFormat(VerificationError):
    """Document could not be turned into a pixel buffer"""

    def __init__(self, mime_type, detail=None):
        self.mime_type = mime_type
        self.detail = detail
        message = f"Unsupported document format: {mime_type}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class DecodeFailure(VerificationError):
    """No machine-readable code could be decoded from the page"""


class NoIdentifierFound(VerificationError):
    """Every extraction stage came up empty; ask the caller for manual entry"""

    def __init__(self, message="No certificate ID found in document. Please enter ID manually."):
        super().__init__(message)


class RecordLookupError(VerificationError):
    """Base class for canonical record fetch failures"""

    retryable = False


class NotFound(RecordLookupError):
    """The record store has no certificate for the identifier"""

    def __init__(self, identifier, message="Certificate not found"):
        self.identifier = identifier
        self.message = message
        super().__init__(message)


class Timeout(RecordLookupError):
    """The record store did not answer within the caller's timeout"""

    retryable = True

    def __init__(self, identifier, timeout):
        self.identifier = identifier
        self.timeout = timeout
        super().__init__(f"record lookup timed out after {timeout}s")


class RecordServiceError(RecordLookupError):
    """Transport or server failure talking to the record store"""

    retryable = True


class VerificationCancelled(VerificationError):
    """The caller abandoned the verification before it completed"""
