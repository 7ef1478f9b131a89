"""Document quality scoring against the hospital template's required fields."""

from __future__ import annotations

from typing import Any

from claim_flow.config import settings
from claim_flow.schemas.claim import HiType, QualityReport, QualityStatus
from claim_flow.templates import DEFAULT_TEMPLATE, HospitalTemplate

# Satisfied by a non-empty observations list on diagnostic reports.
_OBSERVATION_FIELDS = frozenset({"testName", "resultValue"})


def evaluate_document_quality(
    hi_type: HiType | str,
    extracted: dict[str, Any] | None,
    text: str | None = None,
    template: HospitalTemplate | None = None,
) -> QualityReport:
    hi_type = HiType(hi_type)
    if hi_type == HiType.UNKNOWN:
        return QualityReport(
            hi_type=hi_type,
            status=QualityStatus.WARNING,
            missing_required_fields=["hiTypeDetection"],
            confidence_score=0.0,
            low_confidence=True,
        )

    extracted = extracted or {}
    template = template or DEFAULT_TEMPLATE
    required = template.required_fields.get(hi_type, [])
    has_observations = bool(extracted.get("observations"))

    missing = []
    for field in required:
        if hi_type == HiType.DIAGNOSTIC_REPORT and field in _OBSERVATION_FIELDS and has_observations:
            continue
        if extracted.get(field) in (None, ""):
            missing.append(field)

    score = 1.0 if not required else round((len(required) - len(missing)) / len(required), 2)
    no_text = text is not None and not text.strip()

    return QualityReport(
        hi_type=hi_type,
        status=QualityStatus.PASS if not missing else QualityStatus.WARNING,
        missing_required_fields=missing,
        confidence_score=score,
        low_confidence=score < settings.low_confidence_threshold or no_text,
    )
