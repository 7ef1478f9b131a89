"""
Health-information type detection.

Explicit document titles win; otherwise weighted keyword hints are
scored, with a boost for lab-result shaped text. Ties go to
discharge_summary.
"""

from __future__ import annotations

import re

from claim_flow.schemas.claim import HiType

_DISCHARGE_TITLES = [
    re.compile(r"\bdischarge\s*(summary|card|note|advice)\b", re.I),
    re.compile(r"\bclinical\s*summary\b", re.I),
]
_DIAGNOSTIC_TITLES = [
    re.compile(r"\bdiagnostic\s*report\b", re.I),
    re.compile(r"\b(?:laboratory|lab)\s*report\b", re.I),
    re.compile(r"\binvestigation\s*report\b", re.I),
    re.compile(r"\bpathology\s*report\b", re.I),
    re.compile(r"\becho\s*cardio(?:graphy|gram)\s*report\b", re.I),
]

_DISCHARGE_HINTS: list[tuple[re.Pattern[str], int]] = [
    (re.compile(r"\bdischarge\s*(summary|card|note|advice)\b", re.I), 3),
    (re.compile(r"\bdate\s*of\s*discharge\b", re.I), 2),
    (re.compile(r"\bdate\s*of\s*admission\b", re.I), 2),
    (re.compile(r"\badmission\s*date\b", re.I), 2),
    (re.compile(r"\bfinal\s*diagnosis\b", re.I), 2),
    (re.compile(r"\bdiagnosis\s*at\s*discharge\b", re.I), 2),
    (re.compile(r"\bcondition\s*at\s*discharge\b", re.I), 2),
    (re.compile(r"\bhospital\s*course\b", re.I), 2),
    (re.compile(r"\bchief\s*complaints?\b", re.I), 1),
    (re.compile(r"\bmedications?\s*on\s*discharge\b", re.I), 2),
]
_DIAGNOSTIC_HINTS: list[tuple[re.Pattern[str], int]] = [
    (re.compile(r"\bdiagnostic\s*report\b", re.I), 3),
    (re.compile(r"\b(?:laboratory|lab)\s*report\b", re.I), 3),
    (re.compile(r"\binvestigation\s*report\b", re.I), 2),
    (re.compile(r"\btest\s*name\b", re.I), 2),
    (re.compile(r"\breference\s*(?:range|interval)\b", re.I), 2),
    (re.compile(r"\bobservation\s*date\b", re.I), 1),
    (re.compile(r"\binvestigation\s*result\b", re.I), 2),
    (re.compile(r"\bparameter\s+result\s+unit\b", re.I), 3),
    (re.compile(r"\b(?:biochemistry|hematology|haematology|microbiology)\b", re.I), 2),
    (re.compile(r"\b(?:renal|liver|thyroid)\s*function\s*test\b", re.I), 2),
    (re.compile(r"\b(?:cbc|complete\s*blood\s*count)\b", re.I), 2),
    (re.compile(r"\bspecimen\b", re.I), 1),
    (re.compile(r"\becho\s*cardio(?:graphy|gram)\b", re.I), 3),
    (re.compile(r"\bcolour\s*doppler\b", re.I), 2),
    (re.compile(r"\blvef\b", re.I), 2),
    (re.compile(r"\bdiastolic\s*dysfunction\b", re.I), 1),
]

_LAB_UNIT = re.compile(r"\b(?:mg/dl|g/dl|iu/l|mmol/l|ng/ml|cells/cumm|pg/ml)\b|%", re.I)
_LAB_CONTEXT = re.compile(r"\breference\s*(?:range|interval)|investigation|result\b", re.I)


def _score(text: str, hints: list[tuple[re.Pattern[str], int]]) -> int:
    return sum(weight for pattern, weight in hints if pattern.search(text))


def detect_hi_type(text: str | None) -> HiType:
    t = (text or "").lower()

    discharge_title = any(p.search(t) for p in _DISCHARGE_TITLES)
    diagnostic_title = any(p.search(t) for p in _DIAGNOSTIC_TITLES)
    if discharge_title:
        return HiType.DISCHARGE_SUMMARY
    if diagnostic_title:
        return HiType.DIAGNOSTIC_REPORT

    discharge = _score(t, _DISCHARGE_HINTS)
    diagnostic = _score(t, _DIAGNOSTIC_HINTS)
    if _LAB_UNIT.search(t) and _LAB_CONTEXT.search(t):
        diagnostic += 2

    if discharge > diagnostic and discharge > 0:
        return HiType.DISCHARGE_SUMMARY
    if diagnostic > discharge and diagnostic > 0:
        return HiType.DIAGNOSTIC_REPORT
    if discharge > 0 and diagnostic > 0:
        return HiType.DISCHARGE_SUMMARY
    return HiType.UNKNOWN
