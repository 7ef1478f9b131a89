"""Schemas for claim conversion output: quality, validation, compliance, audit."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class HiType(StrEnum):
    DISCHARGE_SUMMARY = "discharge_summary"
    DIAGNOSTIC_REPORT = "diagnostic_report"
    UNKNOWN = "unknown"


SUPPORTED_HI_TYPES = (HiType.DISCHARGE_SUMMARY, HiType.DIAGNOSTIC_REPORT)


class QualityStatus(StrEnum):
    PASS = "pass"
    WARNING = "warning"


class QualityReport(BaseModel):
    hi_type: HiType
    status: QualityStatus
    missing_required_fields: list[str] = Field(default_factory=list)
    confidence_score: float = Field(ge=0.0, le=1.0)
    low_confidence: bool


class BundleIssue(BaseModel):
    code: str
    message: str
    path: str


class BundleValidation(BaseModel):
    status: str  # pass | fail
    errors: list[BundleIssue] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == "pass"


class BundleReport(BundleValidation):
    bundle_index: int


class ValidationReport(BaseModel):
    status: str
    bundle_reports: list[BundleReport] = Field(default_factory=list)


class ComplianceCheck(BaseModel):
    rule_id: str
    title: str
    status: str


class ComplianceReport(BaseModel):
    overall_status: str
    checks: list[ComplianceCheck] = Field(default_factory=list)


class EnrichmentResult(BaseModel):
    hi_type: HiType
    extracted: dict[str, Any] = Field(default_factory=dict)
    diagnostics: dict[str, Any] = Field(default_factory=dict)


class AuditEvent(BaseModel):
    action: str
    actor: str = "system"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    document: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class AuditTrail:
    """
    Append-only event log shared by every worker of one batch.

    Appends happen on the event loop thread, so list.append is enough.
    Only per-document causal order is meaningful.
    """

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []

    def record(self, action: str, **fields: Any) -> AuditEvent:
        event = AuditEvent(action=action, **fields)
        self._events.append(event)
        return event

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    def actions(self) -> set[str]:
        return {e.action for e in self._events}

    def __len__(self) -> int:
        return len(self._events)


class SourceDocumentRef(BaseModel):
    sha256: str
    file_name: str


class ExtractionSummary(BaseModel):
    text_length: int
    source_mode: str  # provided | missing | an ExtractionMode value
    metadata: dict[str, Any] | None = None


class PipelineDocumentResult(BaseModel):
    bundle: dict[str, Any]
    hi_type: HiType
    source_document: SourceDocumentRef
    extraction: ExtractionSummary
    extracted: dict[str, Any] = Field(default_factory=dict)
    quality: QualityReport
    enriched: bool = False
    validation: BundleValidation
    compliance: ComplianceReport


class ConversionMetadata(BaseModel):
    claim_id: str
    hospital_id: str
    template_id: str
    documents_count: int
    successful_count: int
    failed_count: int


class ClaimConversionOutput(BaseModel):
    bundles: list[dict[str, Any]]
    metadata: ConversionMetadata
    results: list[PipelineDocumentResult]
    audit_log: list[AuditEvent]
    validation_report: ValidationReport
    compliance_report: ComplianceReport
