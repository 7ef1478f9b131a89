"""
Exception hierarchy.

Only InputValidationError and DocumentExtractionError ever leave
convert_claim_documents(); the rest are raised and handled inside the
OCR client, the enrichment step and the FHIR mapper.
"""

from __future__ import annotations

from typing import Any

import httpx


class ClaimFlowError(RuntimeError):
    """Base class for all claim-flow errors."""

    code = "CLAIM_FLOW_ERROR"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class InputValidationError(ClaimFlowError):
    """Malformed batch request. Raised before any document is touched."""

    code = "INVALID_INPUT"

    def __init__(self, violations: list[str]) -> None:
        self.violations = list(violations)
        super().__init__(f"Input validation failed: {', '.join(self.violations)}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "violations": self.violations}


class DocumentExtractionError(ClaimFlowError):
    """A document produced a fatal extraction outcome; the whole batch aborts."""

    code = "DOCUMENT_EXTRACTION_FAILED"

    def __init__(self, file_name: str | None, reason: str, metadata: dict[str, Any] | None = None) -> None:
        self.file_name = file_name
        self.reason = reason
        self.metadata = metadata or {}
        super().__init__(f"document_extraction_failed:{reason}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "file_name": self.file_name, "reason": self.reason}


class OcrRequestError(ClaimFlowError):
    """The OCR backend answered with a non-success status."""

    code = "OCR_REQUEST_FAILED"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        details: str = "",
        endpoint: str | None = None,
        mode: str | None = None,
    ) -> None:
        self.status = status
        self.details = details
        self.endpoint = endpoint
        self.mode = mode
        super().__init__(message)

    @property
    def is_model_missing(self) -> bool:
        text = f"{self} {self.details}".lower()
        return "model" in text and ("not found" in text or "pull" in text)


class OcrTimeoutError(ClaimFlowError):
    code = "OCR_TIMEOUT"


RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
_CONNECTIVITY_MARKERS = ("fetch failed", "econnrefused", "connection refused", "timed out", "network")


def is_retryable_ocr_error(exc: BaseException) -> bool:
    """True for connectivity failures, timeouts and transient HTTP statuses."""
    if isinstance(exc, (OcrTimeoutError, TimeoutError, httpx.TransportError)):
        return True
    if isinstance(exc, OcrRequestError) and exc.status in RETRYABLE_STATUSES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _CONNECTIVITY_MARKERS)


class EnrichmentError(ClaimFlowError):
    """LLM enrichment failed. Always absorbed by the enrichment step."""

    code = "ENRICHMENT_FAILED"
    retryable = True


class BundleMappingError(ClaimFlowError, ValueError):
    """The FHIR mapper was called with a missing claim id or unsupported hi-type."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str, violations: list[dict[str, str]] | None = None) -> None:
        self.field = field
        self.violations = violations or [{"field": field, "message": message}]
        super().__init__(message)
