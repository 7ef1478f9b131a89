"""
Label-driven structured extraction of clinical fields.

Field values are the text following a template label on the same line.
Diagnostic reports additionally get lab observations parsed from
``<name> <value> <unit>`` shaped lines.

The returned mapping uses the camelCase field names of the hospital
template (patientName, patientLocalId, ...) plus an ``observations`` list
of ``{"name", "value", "unit", "raw"}`` dicts.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from typing import Any

from claim_flow.schemas.claim import HiType
from claim_flow.templates import DEFAULT_TEMPLATE, HospitalTemplate

_SEPARATOR = r"\s*(?::|\||\+|=|-)?\s*"
_DATE = r"([0-9]{4}-[0-9]{2}-[0-9]{2}|[0-9]{2}-[0-9]{2}-[0-9]{4}|[0-9]{2}/[0-9]{2}/[0-9]{4})"

_TRAILING_LABELS = re.compile(
    r"\b(?:Patient\s*(?:ID|\|D)|UHID|Age|Gender|Sample\s*Date|Report\s*Date|Ref\.?\s*Doctor|Collected\s*On)\b.*$",
    re.I,
)

TITLE_TOKENS = frozenset({"mr", "mrs", "ms", "miss", "dr", "shri", "smt", "kumari", "baby", "master"})
INVALID_NAME_TOKENS = frozenset(
    {"age", "gender", "male", "female", "unknown", "na", "n/a", "patient", "id", "uhid"}
)
INVALID_ID_TOKENS = frozenset(
    {"age", "gender", "male", "female", "unknown", "na", "n/a", "patient", "name", "id"}
)

_NON_CLINICAL_NAME = re.compile(
    r"\b(?:regn|registration|doctor|consultant|mobile|phone|address|email|ref\.?\s*doctor|fax|contact)\b", re.I
)
_NON_CLINICAL_RESULT = re.compile(
    r"\b(?:regn|registration|doctor|consultant|mobile|phone|address|email|fax|contact)\b", re.I
)
_OBSERVATION_LINE = re.compile(
    r"^([A-Za-z][A-Za-z0-9()./%\s-]{1,50}?)\s+([<>]?-?\d+(?:[.,]\d+)?)\s+([A-Za-z0-9/%^][A-Za-z0-9/%^.-]*)\b"
)
_TABLE_HEADER = re.compile(
    r"^(parameter|investigation|result|unit|biological|reference|comments|end of report|patientname|patient id|age|gender)\b",
    re.I,
)
_SHORT_UNITS = frozenset({"pg", "fl", "%", "iu", "ng", "mm"})

_NAME_CANDIDATES = [
    re.compile(
        r"Patient\s*Name" + _SEPARATOR
        + r"([^\n\r]+?)(?=\s+(?:Patient\s*(?:ID|\|D)|UHID|Age|Gender|Sample\s*Date|Report\s*Date)|$)",
        re.I | re.M,
    ),
    re.compile(
        r"\bName" + _SEPARATOR
        + r"([^\n\r]+?)(?=\s+(?:Patient\s*(?:ID|\|D)|UHID|Age|Gender|Sample\s*Date|Report\s*Date|DATE)|$)",
        re.I | re.M,
    ),
]
_ID_CANDIDATES = [
    re.compile(r"Patient\s*(?:ID|\|D)" + _SEPARATOR + r"([^\n\r]+)", re.I),
    re.compile(r"\b(?:UHID|IP\s*No|Lab\s*No|Reg\s*No|Local\s*ID)" + _SEPARATOR + r"([^\n\r]+)", re.I),
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_structured_data(
    hi_type: HiType | str,
    text: str | None,
    template: HospitalTemplate | None = None,
) -> dict[str, Any]:
    template = template or DEFAULT_TEMPLATE
    text = text or ""
    if hi_type == HiType.DISCHARGE_SUMMARY:
        labels = template.extractors.get(HiType.DISCHARGE_SUMMARY) or DEFAULT_TEMPLATE.extractors[HiType.DISCHARGE_SUMMARY]
        return _extract_discharge_summary(text, labels)
    if hi_type == HiType.DIAGNOSTIC_REPORT:
        labels = template.extractors.get(HiType.DIAGNOSTIC_REPORT) or DEFAULT_TEMPLATE.extractors[HiType.DIAGNOSTIC_REPORT]
        return _extract_diagnostic_report(text, labels)
    return {"observations": []}


def parse_observations(text: str) -> list[dict[str, str]]:
    """Lab observations from ``<name> <value> <unit>`` lines, de-duplicated."""
    observations: list[dict[str, str]] = []
    seen: set[tuple[str, str, str]] = set()

    for raw_line in (text or "").splitlines():
        line = re.sub(r"\s+", " ", raw_line).strip()
        if not line or _TABLE_HEADER.match(line):
            continue
        match = _OBSERVATION_LINE.match(line)
        if not match:
            continue

        name = re.sub(r"\s{2,}", " ", match.group(1).strip())
        value = match.group(2).replace(",", ".")
        unit = match.group(3).strip()
        if len(name) < 2 or not _is_clinical_name(name) or not _is_clinical_unit(unit):
            continue

        key = (name.lower(), value, unit.lower())
        if key in seen:
            continue
        seen.add(key)
        observations.append({"name": name, "value": value, "unit": unit, "raw": line})

    return observations


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _label_regex(labels: Iterable[str]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(label) for label in labels)
    return re.compile(f"(?:{alternatives})" + _SEPARATOR + r"([^\n\r]+)", re.I)


def _pick(text: str, pattern: re.Pattern[str]) -> str | None:
    match = pattern.search(text)
    if not match:
        return None
    return match.group(1).strip() or None


def _collect(text: str, pattern: re.Pattern[str]) -> list[str]:
    return [m.group(1).strip() for m in pattern.finditer(text)]


def _extract_date(text: str, labels: list[str]) -> str | None:
    alternatives = "|".join(re.escape(label) for label in labels)
    return _pick(text, re.compile(f"(?:{alternatives})" + _SEPARATOR + _DATE, re.I))


def _clean_inline(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = re.sub(r"\s{2,}", " ", value)
    cleaned = _TRAILING_LABELS.sub("", cleaned).strip()
    return cleaned or None


def _normalize_name(value: str) -> str | None:
    cleaned = _clean_inline(value)
    if not cleaned:
        return None
    cleaned = re.sub(r"^[^A-Za-z0-9]+|[^A-Za-z0-9.\s-]+$", "", cleaned).strip()
    if not cleaned or re.search(r"\d", cleaned):
        return None

    tokens = [re.sub(r"^[^A-Za-z0-9]+|[^A-Za-z0-9]+$", "", t) for t in cleaned.split()]
    tokens = [t for t in tokens if t]
    if not tokens or all(t.lower() in INVALID_NAME_TOKENS for t in tokens):
        return None
    meaningful = [t for t in tokens if re.search(r"[A-Za-z]", t) and t.lower() not in TITLE_TOKENS]
    if not any(len(t) >= 2 for t in meaningful):
        return None
    return cleaned


def _score_name(value: str) -> int:
    tokens = value.split()
    score = sum(1 for t in tokens if t.lower() not in TITLE_TOKENS)
    return score + (1 if len(value) >= 6 else 0)


def _normalize_patient_id(value: str) -> str | None:
    cleaned = _clean_inline(value)
    if not cleaned:
        return None
    cleaned = re.sub(r"^[^A-Za-z0-9]+|[^A-Za-z0-9/_-]+$", "", cleaned).strip()

    for raw in cleaned.split():
        token = re.sub(r"^[^A-Za-z0-9]+|[^A-Za-z0-9/_-]+$", "", raw)
        if not token or token.lower() in INVALID_ID_TOKENS:
            continue
        if not re.search(r"\d", token):
            continue
        if re.fullmatch(r"\d{2}-\d{2}-\d{4}|\d{4}-\d{2}-\d{2}", token):
            continue
        if not re.fullmatch(r"[A-Za-z0-9/_-]+", token):
            continue
        return token
    return None


def _score_patient_id(value: str) -> int:
    score = 1 if len(value) >= 4 else 0
    if re.search(r"[A-Za-z]", value):
        score += 1
    if re.search(r"[/-]", value):
        score += 1
    return score


def _best_candidate(
    candidates: list[str],
    normalize: Callable[[str], str | None],
    score: Callable[[str], int],
) -> str | None:
    best: str | None = None
    best_score = float("-inf")
    for candidate in candidates:
        normalized = normalize(candidate)
        if not normalized:
            continue
        candidate_score = score(normalized)
        if candidate_score > best_score:
            best, best_score = normalized, candidate_score
    return best


def _is_clinical_name(name: str) -> bool:
    return bool(name) and not _NON_CLINICAL_NAME.search(name) and bool(re.search(r"[A-Za-z]{2,}", name))


def _is_clinical_unit(unit: str) -> bool:
    compact = (unit or "").strip().lower()
    if not compact or compact in {"ph", "no"}:
        return False
    if len(compact) <= 2 and compact not in _SHORT_UNITS:
        return False
    return bool(re.search(r"[a-z%]", compact))


def _sanitize_test_name(value: str | None) -> str | None:
    cleaned = _clean_inline(value)
    if not cleaned or _NON_CLINICAL_NAME.search(cleaned) or not re.search(r"[A-Za-z]{2,}", cleaned):
        return None
    return cleaned


def _sanitize_result_value(value: str | None) -> str | None:
    cleaned = _clean_inline(value)
    if not cleaned or _NON_CLINICAL_RESULT.search(cleaned):
        return None
    return cleaned


def _extract_discharge_summary(text: str, labels: dict[str, list[str]]) -> dict[str, Any]:
    return {
        "patientName": _clean_inline(_pick(text, _label_regex(labels["patientName"]))),
        "patientLocalId": _clean_inline(_pick(text, _label_regex(labels["patientLocalId"]))),
        "admissionDate": _extract_date(text, labels["admissionDate"]),
        "dischargeDate": _extract_date(text, labels["dischargeDate"]),
        "finalDiagnosis": _pick(text, _label_regex(labels["finalDiagnosis"])),
        "observations": [],
    }


def _extract_diagnostic_report(text: str, labels: dict[str, list[str]]) -> dict[str, Any]:
    name_candidates = [value for pattern in _NAME_CANDIDATES for value in _collect(text, pattern)]
    name_candidates += _collect(text, _label_regex(labels["patientName"]))
    id_candidates = [value for pattern in _ID_CANDIDATES for value in _collect(text, pattern)]
    id_candidates += _collect(text, _label_regex(labels["patientLocalId"]))

    observations = parse_observations(text)
    first = observations[0] if observations else None
    test_name = _sanitize_test_name(_pick(text, _label_regex(labels["testName"])))
    result_value = _sanitize_result_value(_pick(text, _label_regex(labels["resultValue"])))

    return {
        "patientName": _best_candidate(name_candidates, _normalize_name, _score_name),
        "patientLocalId": _best_candidate(id_candidates, _normalize_patient_id, _score_patient_id),
        "testName": test_name or (first["name"] if first else None),
        "resultValue": result_value or (f"{first['value']} {first['unit']}" if first else None),
        "observationDate": _extract_date(text, labels["observationDate"]),
        "observations": observations,
    }
