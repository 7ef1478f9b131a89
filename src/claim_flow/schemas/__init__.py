from claim_flow.schemas.claim import (
    AuditEvent,
    AuditTrail,
    BundleValidation,
    ClaimConversionOutput,
    ComplianceReport,
    EnrichmentResult,
    HiType,
    PipelineDocumentResult,
    QualityReport,
    ValidationReport,
)
from claim_flow.schemas.document import (
    Attempt,
    DiagnosticBundle,
    Document,
    ExtractionMetadata,
    ExtractionMode,
    ExtractionResult,
    OcrOutput,
)
from claim_flow.schemas.outcome import Fatal, Ok, Outcome, Recoverable

__all__ = [
    "AuditEvent",
    "AuditTrail",
    "BundleValidation",
    "ClaimConversionOutput",
    "ComplianceReport",
    "EnrichmentResult",
    "HiType",
    "PipelineDocumentResult",
    "QualityReport",
    "ValidationReport",
    "Attempt",
    "DiagnosticBundle",
    "Document",
    "ExtractionMetadata",
    "ExtractionMode",
    "ExtractionResult",
    "OcrOutput",
    "Fatal",
    "Ok",
    "Outcome",
    "Recoverable",
]
