"""
Extracted clinical fields -> NHCX claim-submission FHIR Bundle.

One bundle per source document:

  Patient, Organization?, Practitioner?, Encounter,
  Condition + Composition        (discharge_summary)
  DiagnosticReport + Observation (diagnostic_report)
  Coverage?, DocumentReference

Missing demographics are inferred and flagged through an
``inferred-demographics`` extension on the Patient.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

from claim_flow.errors import BundleMappingError
from claim_flow.logging import log
from claim_flow.schemas.claim import SUPPORTED_HI_TYPES, HiType

NHCX_CLAIM_BUNDLE_PROFILE = "https://nhcx.abdm.gov.in/fhir/StructureDefinition/NHCX-ClaimBundle"
HSP_SYSTEM = "https://example-hsp.local"
LOINC = "http://loinc.org"
UCUM = "http://unitsofmeasure.org"

PATIENT_ID = "patient-1"
_PATIENT_REF = f"Patient/{PATIENT_ID}"

_LOINC_LAB_REPORT = {"system": LOINC, "code": "11502-2", "display": "Laboratory report"}
_LOINC_DISCHARGE = {"system": LOINC, "code": "34117-2", "display": "Discharge summary"}

_TITLE_TOKENS = frozenset({"mr", "mrs", "ms", "miss", "dr", "shri", "smt", "kumari", "baby", "master"})
_INVALID_ID_TOKENS = frozenset({"unknown", "na", "n/a", "null", "undefined", "age", "gender", "id", "name"})
_MONTHS = {m: i for i, m in enumerate(
    ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1
)}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def map_to_claim_submission_bundle(
    claim_id: str | None,
    hi_type: HiType | str | None,
    extracted: dict[str, Any] | None = None,
    source_document: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the claim bundle. Raises BundleMappingError on a missing claim id or unsupported hi-type."""
    if not claim_id:
        raise BundleMappingError("claimId is required", field="claimId")
    if hi_type not in SUPPORTED_HI_TYPES:
        raise BundleMappingError(
            'hiType must be "discharge_summary" or "diagnostic_report"',
            field="hiType",
            violations=[{"field": "hiType", "message": f"Invalid hiType: {hi_type}"}],
        )
    hi_type = HiType(hi_type)
    extracted = extracted or {}
    source = dict(source_document or {})
    if not source.get("sha256"):
        log.warning("fhir_mapper.sha256_missing", claim_id=claim_id)

    resources: list[dict[str, Any]] = [_patient(extracted, source)]

    organization = _organization(extracted)
    if organization:
        resources.append(organization)
    practitioner = _practitioner(extracted)
    if practitioner:
        resources.append(practitioner)

    resources.append(
        _encounter(
            extracted,
            practitioner_ref="practitioner-1" if practitioner else None,
            organization_ref="organization-1" if organization else None,
        )
    )

    if hi_type == HiType.DISCHARGE_SUMMARY:
        resources.extend(_discharge_resources(extracted, "practitioner-1" if practitioner else None))
    else:
        resources.extend(_diagnostic_resources(extracted))

    coverage = _coverage(extracted)
    if coverage:
        resources.append(coverage)
    resources.append(_document_reference(source, hi_type))

    log.debug(
        "fhir_mapper.bundle_built",
        claim_id=claim_id,
        hi_type=hi_type.value,
        resources=[r["resourceType"] for r in resources],
    )
    return {
        "resourceType": "Bundle",
        "type": "collection",
        "identifier": {"system": f"{HSP_SYSTEM}/claim", "value": claim_id},
        "meta": {"profile": [NHCX_CLAIM_BUNDLE_PROFILE]},
        "entry": [{"resource": r} for r in resources],
    }


def to_fhir_date(value: Any) -> str | None:
    """Normalise the date spellings found in Indian clinical documents to YYYY-MM-DD."""
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()

    if m := re.fullmatch(r"(\d{4})[-/](\d{1,2})[-/](\d{1,2})", s):
        return _iso(int(m[1]), int(m[2]), int(m[3]))
    if m := re.fullmatch(r"(\d{1,2})[-/](\d{1,2})[-/](\d{4})", s):
        # day first, then month first when that is the only valid reading
        return _iso(int(m[3]), int(m[2]), int(m[1])) or _iso(int(m[3]), int(m[1]), int(m[2]))
    if m := re.fullmatch(r"(\d{1,2})\s+([A-Za-z]{3})[A-Za-z]*\.?,?\s+(\d{4})", s):
        month = _MONTHS.get(m[2].lower())
        return _iso(int(m[3]), month, int(m[1])) if month else None
    return None


# ---------------------------------------------------------------------------
# Resource builders
# ---------------------------------------------------------------------------


def _iso(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _patient_identifier(local_id: Any, source: dict[str, Any]) -> tuple[str, bool]:
    if isinstance(local_id, str):
        for token in local_id.split():
            if token.strip().lower() not in _INVALID_ID_TOKENS:
                return token, False
    sha = re.sub(r"[^a-fA-F0-9]", "", str(source.get("sha256") or ""))
    return f"AUTO-{(sha[:12] or 'unknown').upper()}", True


def _patient_name(name: Any) -> tuple[str, bool]:
    if not isinstance(name, str) or not name.strip():
        return "Unknown Patient", True
    cleaned = " ".join(name.split())
    meaningful = [t for t in cleaned.split() if t.lower().strip(".") not in _TITLE_TOKENS and len(t) >= 2]
    if not meaningful:
        return "Unknown Patient", True
    return cleaned, False


def _gender(value: Any) -> tuple[str, bool]:
    if not isinstance(value, str) or not value.strip():
        return "unknown", True
    token = value.strip().lower()
    if token in {"m", "male", "man", "boy"}:
        return "male", False
    if token in {"f", "female", "woman", "girl"}:
        return "female", False
    if token in {"o", "other", "others"}:
        return "other", False
    return "unknown", False


def _patient(extracted: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    identifier, id_inferred = _patient_identifier(extracted.get("patientLocalId"), source)
    name, name_inferred = _patient_name(extracted.get("patientName"))
    gender, gender_inferred = _gender(extracted.get("patientGender"))

    patient: dict[str, Any] = {
        "resourceType": "Patient",
        "id": PATIENT_ID,
        "identifier": [{"system": f"{HSP_SYSTEM}/patient-id", "value": identifier}],
        "name": [{"text": name}],
        "gender": gender,
    }
    birth_date = to_fhir_date(extracted.get("patientDob") or extracted.get("dateOfBirth"))
    if birth_date:
        patient["birthDate"] = birth_date

    address_parts = [
        extracted.get(k) for k in ("patientAddress", "address", "patientPincode", "pincode") if extracted.get(k)
    ]
    if address_parts:
        address: dict[str, Any] = {"text": ", ".join(address_parts)}
        if pin := re.search(r"\b(\d{6})\b", address["text"]):
            address["postalCode"] = pin[1]
        patient["address"] = [address]

    inferred = [
        field
        for field, flag in (
            ("identifier", id_inferred),
            ("name", name_inferred),
            ("gender", gender_inferred),
            ("address", not address_parts),
        )
        if flag
    ]
    if inferred:
        patient["extension"] = [
            {
                "url": f"{HSP_SYSTEM}/fhir/StructureDefinition/inferred-demographics",
                "extension": [{"url": field, "valueBoolean": True} for field in inferred],
            }
        ]
    return patient


def _organization(extracted: dict[str, Any]) -> dict[str, Any] | None:
    name = extracted.get("hospitalName") or extracted.get("facilityName") or extracted.get("organizationName")
    if not name:
        return None
    organization: dict[str, Any] = {
        "resourceType": "Organization",
        "id": "organization-1",
        "identifier": [
            {
                "system": f"{HSP_SYSTEM}/organization-id",
                "value": extracted.get("hospitalId") or extracted.get("facilityId") or "AUTO-ORG-001",
            }
        ],
        "name": name,
    }
    if extracted.get("hospitalAddress"):
        organization["address"] = [{"text": extracted["hospitalAddress"]}]
    return organization


def _practitioner(extracted: dict[str, Any]) -> dict[str, Any] | None:
    name = extracted.get("attendingPhysician") or extracted.get("physicianName") or extracted.get("doctorName")
    reg_no = extracted.get("physicianRegNo") or extracted.get("registrationNumber")
    if not name and not reg_no:
        return None
    practitioner: dict[str, Any] = {"resourceType": "Practitioner", "id": "practitioner-1", "identifier": [], "name": []}
    if reg_no:
        practitioner["identifier"].append({"system": f"{HSP_SYSTEM}/practitioner-reg-no", "value": reg_no})
    if name:
        practitioner["name"].append({"text": name})
    return practitioner


def _encounter(
    extracted: dict[str, Any],
    practitioner_ref: str | None,
    organization_ref: str | None,
) -> dict[str, Any]:
    admitted = to_fhir_date(extracted.get("admissionDate"))
    discharged = to_fhir_date(extracted.get("dischargeDate"))
    emergency = extracted.get("encounterType") == "emergency"

    encounter: dict[str, Any] = {
        "resourceType": "Encounter",
        "id": "encounter-1",
        "status": "finished",
        "class": {
            "system": "http://terminology.hl7.org/CodeSystem/v3-ActCode",
            "code": "EMER" if emergency else "IMP",
            "display": "emergency" if emergency else "inpatient",
        },
        "subject": {"reference": _PATIENT_REF},
        "period": {"start": admitted or date.today().isoformat(), "end": discharged or admitted},
    }
    reason = extracted.get("admissionReason") or extracted.get("finalDiagnosis")
    if reason:
        encounter["reasonCode"] = [{"text": reason}]
    if organization_ref:
        encounter["serviceProvider"] = {"reference": f"Organization/{organization_ref}"}
    if practitioner_ref:
        encounter["participant"] = [
            {
                "type": [
                    {"coding": [{"system": "http://terminology.hl7.org/CodeSystem/v3-ParticipationType", "code": "ATND"}]}
                ],
                "individual": {"reference": f"Practitioner/{practitioner_ref}"},
            }
        ]
    return encounter


def _discharge_resources(extracted: dict[str, Any], practitioner_ref: str | None) -> list[dict[str, Any]]:
    diagnosis = extracted.get("finalDiagnosis") or "Unknown diagnosis"
    condition = {
        "resourceType": "Condition",
        "id": "condition-1",
        "clinicalStatus": {
            "coding": [{"system": "http://terminology.hl7.org/CodeSystem/condition-clinical", "code": "active"}]
        },
        "verificationStatus": {
            "coding": [{"system": "http://terminology.hl7.org/CodeSystem/condition-ver-status", "code": "confirmed"}]
        },
        "subject": {"reference": _PATIENT_REF},
        "code": {"text": diagnosis},
    }

    sections: list[dict[str, Any]] = [
        {
            "title": "Final Diagnosis",
            "text": {"status": "generated", "div": f"<div>{diagnosis}</div>"},
            "entry": [{"reference": "Condition/condition-1"}],
        }
    ]
    for key, title in (("procedureDone", "Procedures Done"), ("medications", "Medications")):
        if extracted.get(key):
            sections.append({"title": title, "text": {"status": "generated", "div": f"<div>{extracted[key]}</div>"}})

    composition = {
        "resourceType": "Composition",
        "id": "composition-1",
        "status": "final",
        "type": {"coding": [_LOINC_DISCHARGE], "text": "Discharge Summary"},
        "subject": {"reference": _PATIENT_REF},
        "date": to_fhir_date(extracted.get("dischargeDate")) or to_fhir_date(extracted.get("admissionDate")) or _now(),
        "title": "Discharge Summary",
        "author": [{"reference": f"Practitioner/{practitioner_ref}"}] if practitioner_ref else [],
        "section": sections,
    }
    return [condition, composition]


def _observation_inputs(extracted: dict[str, Any], limit: int = 50) -> list[dict[str, Any]]:
    observations = extracted.get("observations")
    if isinstance(observations, list) and observations:
        return [o for o in observations[:limit] if isinstance(o, dict)]
    if extracted.get("testName") or extracted.get("resultValue"):
        return [
            {
                "name": extracted.get("testName"),
                "value": extracted.get("resultValue"),
                "unit": extracted.get("resultUnit") or "",
            }
        ]
    return []


def _observation(item: dict[str, Any], index: int, effective: str | None) -> dict[str, Any]:
    observation: dict[str, Any] = {
        "resourceType": "Observation",
        "id": f"observation-{index + 1}",
        "status": "final",
        "subject": {"reference": _PATIENT_REF},
        "code": {"text": item.get("name") or "Unknown test"},
        "effectiveDateTime": effective,
    }
    unit = item.get("unit") or ""
    try:
        quantity = float(str(item.get("value")).replace(",", "."))
    except ValueError:
        quantity = None

    if quantity is not None and unit:
        observation["valueQuantity"] = {"value": quantity, "unit": unit, "system": UCUM, "code": unit}
    else:
        observation["valueString"] = f"{item.get('value') or ''} {unit}".strip() or "Unknown result"
    return observation


def _diagnostic_resources(extracted: dict[str, Any]) -> list[dict[str, Any]]:
    effective = to_fhir_date(extracted.get("observationDate") or extracted.get("testDate"))
    observations = [_observation(item, i, effective) for i, item in enumerate(_observation_inputs(extracted))]

    report: dict[str, Any] = {
        "resourceType": "DiagnosticReport",
        "id": "diagnostic-report-1",
        "status": "final",
        "code": {"coding": [_LOINC_LAB_REPORT], "text": extracted.get("testName") or "Diagnostic Report"},
        "subject": {"reference": _PATIENT_REF},
        "effectiveDateTime": effective,
        "issued": effective or _now(),
        "result": [{"reference": f"Observation/{o['id']}"} for o in observations],
    }
    if extracted.get("resultValue"):
        report["conclusion"] = extracted["resultValue"]
    interpretation = extracted.get("interpretation") or extracted.get("resultInterpretation")
    if interpretation:
        report["interpretation"] = [{"text": interpretation}]
    return [report, *observations]


def _coverage(extracted: dict[str, Any]) -> dict[str, Any] | None:
    payer = extracted.get("payerName") or extracted.get("insuranceCompany") or extracted.get("insuranceProvider")
    policy = extracted.get("policyNumber") or extracted.get("policyNo")
    if not payer and not policy:
        return None
    coverage: dict[str, Any] = {
        "resourceType": "Coverage",
        "id": "coverage-1",
        "status": "active" if extracted.get("coverageStatus") == "active" else "cancelled",
        "beneficiary": {"reference": _PATIENT_REF},
        "payor": [{"text": payer or "Unknown Payer"}],
    }
    if policy:
        coverage["identifier"] = [{"system": f"{HSP_SYSTEM}/policy-number", "value": policy}]
    member = extracted.get("memberId") or extracted.get("patientPolicyId")
    if member:
        coverage["subscriberId"] = member
    return coverage


def _document_reference(source: dict[str, Any], hi_type: HiType) -> dict[str, Any]:
    diagnostic = hi_type == HiType.DIAGNOSTIC_REPORT
    reference: dict[str, Any] = {
        "resourceType": "DocumentReference",
        "id": "source-doc-1",
        "status": "current",
        "type": {
            "coding": [_LOINC_LAB_REPORT if diagnostic else _LOINC_DISCHARGE],
            "text": "Diagnostic Report" if diagnostic else "Discharge Summary",
        },
        "subject": {"reference": _PATIENT_REF},
        "identifier": [{"system": "urn:sha256", "value": source.get("sha256") or "missing-sha256"}],
        "description": source.get("fileName") or "Unknown document",
    }
    if source.get("content"):
        reference["content"] = [
            {"attachment": {"contentType": source.get("contentType") or "application/pdf", "data": source["content"]}}
        ]
    return reference
