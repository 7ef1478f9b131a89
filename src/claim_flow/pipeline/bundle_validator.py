"""
Structural validation of NHCX claim bundles.

Checks are local to one bundle: profile, resource id uniqueness, Patient
and DocumentReference presence, subject references, and the clinical
resources required for the bundle's hi-type. A bundle that carries a
DiagnosticReport is validated as a diagnostic bundle, otherwise as a
discharge bundle.
"""

from __future__ import annotations

from typing import Any

from claim_flow.pipeline.fhir_mapper import NHCX_CLAIM_BUNDLE_PROFILE
from claim_flow.schemas.claim import BundleIssue, BundleReport, BundleValidation, ValidationReport

_CLINICAL_TYPES = ("DiagnosticReport", "Observation", "Condition", "Composition")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_claim_bundle(bundle: dict[str, Any]) -> BundleValidation:
    errors: list[BundleIssue] = []

    if bundle.get("resourceType") != "Bundle":
        _add(errors, "BUNDLE_RESOURCE_TYPE_INVALID", "resourceType must be Bundle", "resourceType")

    profiles = (bundle.get("meta") or {}).get("profile")
    if not isinstance(profiles, list) or NHCX_CLAIM_BUNDLE_PROFILE not in profiles:
        _add(errors, "BUNDLE_PROFILE_MISSING", "NHCX claim bundle profile is missing", "meta.profile")

    _check_duplicate_ids(bundle, errors)
    _check_patient_and_document_reference(bundle, errors)
    _check_diagnostic_resources(bundle, errors)
    _check_discharge_resources(bundle, errors)

    if not any(_resources(bundle, t) for t in _CLINICAL_TYPES):
        _add(
            errors,
            "CLINICAL_RESOURCE_MISSING",
            "At least one clinical resource (DiagnosticReport/Observation/Condition/Composition) is required",
            "entry",
        )

    return BundleValidation(status="fail" if errors else "pass", errors=errors)


def validate_claim_bundles(bundles: list[dict[str, Any]]) -> ValidationReport:
    reports = [
        BundleReport(bundle_index=i, **validate_claim_bundle(bundle).model_dump())
        for i, bundle in enumerate(bundles)
    ]
    return ValidationReport(
        status="pass" if all(r.passed for r in reports) else "fail",
        bundle_reports=reports,
    )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _add(errors: list[BundleIssue], code: str, message: str, path: str) -> None:
    errors.append(BundleIssue(code=code, message=message, path=path))


def _resources(bundle: dict[str, Any], resource_type: str) -> list[dict[str, Any]]:
    return [
        entry["resource"]
        for entry in bundle.get("entry") or []
        if isinstance(entry, dict)
        and isinstance(entry.get("resource"), dict)
        and entry["resource"].get("resourceType") == resource_type
    ]


def _patient_reference(bundle: dict[str, Any]) -> str | None:
    patients = _resources(bundle, "Patient")
    if patients and patients[0].get("id"):
        return f"Patient/{patients[0]['id']}"
    return None


def _subject(resource: dict[str, Any], key: str = "subject") -> str | None:
    return (resource.get(key) or {}).get("reference")


def _check_duplicate_ids(bundle: dict[str, Any], errors: list[BundleIssue]) -> None:
    seen: set[str] = set()
    for entry in bundle.get("entry") or []:
        resource_id = (entry.get("resource") or {}).get("id")
        if not resource_id:
            continue
        if resource_id in seen:
            _add(
                errors,
                "DUPLICATE_RESOURCE_ID",
                f"Duplicate resource id '{resource_id}' found in bundle",
                "entry.resource.id",
            )
        seen.add(resource_id)


def _check_patient_and_document_reference(bundle: dict[str, Any], errors: list[BundleIssue]) -> None:
    patients = _resources(bundle, "Patient")
    if not patients:
        _add(errors, "PATIENT_MISSING", "Patient resource is required", "entry[Patient]")
    else:
        patient = patients[0]
        identifiers = patient.get("identifier") or [{}]
        identifier = identifiers[0].get("value")
        if not identifier or identifier == "UNKNOWN":
            _add(
                errors,
                "PATIENT_IDENTIFIER_MISSING",
                "Patient identifier value is required",
                "Patient.identifier[0].value",
            )
        names = patient.get("name")
        if not isinstance(names, list) or not names or not names[0].get("text"):
            _add(errors, "PATIENT_NAME_MISSING", "Patient name is required", "Patient.name[0].text")

    patient_ref = _patient_reference(bundle)
    doc_refs = _resources(bundle, "DocumentReference")
    if not doc_refs:
        _add(
            errors,
            "DOCUMENT_REFERENCE_MISSING",
            "DocumentReference resource is required",
            "entry[DocumentReference]",
        )
        return

    for i, doc_ref in enumerate(doc_refs):
        identifiers = doc_ref.get("identifier") or [{}]
        if not identifiers[0].get("value"):
            _add(
                errors,
                "DOCUMENT_REFERENCE_SOURCE_MISSING",
                "DocumentReference source hash is required",
                f"DocumentReference[{i}].identifier[0].value",
            )
        if patient_ref and _subject(doc_ref) != patient_ref:
            _add(
                errors,
                "DOCUMENT_REFERENCE_SUBJECT_INVALID",
                "DocumentReference subject must reference the Patient resource",
                f"DocumentReference[{i}].subject.reference",
            )


def _check_diagnostic_resources(bundle: dict[str, Any], errors: list[BundleIssue]) -> None:
    reports = _resources(bundle, "DiagnosticReport")
    if not reports:
        return

    patient_ref = _patient_reference(bundle)
    observations = _resources(bundle, "Observation")
    if not observations:
        _add(
            errors,
            "DIAGNOSTIC_OBSERVATION_MISSING",
            "DiagnosticReport requires at least one Observation",
            "entry[Observation]",
        )
    observation_ids = {o["id"] for o in observations if o.get("id")}

    for i, report in enumerate(reports):
        if patient_ref and _subject(report) != patient_ref:
            _add(
                errors,
                "DIAGNOSTIC_REPORT_SUBJECT_INVALID",
                "DiagnosticReport subject must reference the Patient resource",
                f"DiagnosticReport[{i}].subject.reference",
            )
        results = report.get("result") if isinstance(report.get("result"), list) else []
        if not results:
            _add(
                errors,
                "DIAGNOSTIC_REPORT_RESULT_MISSING",
                "DiagnosticReport.result must contain Observation references",
                f"DiagnosticReport[{i}].result",
            )
        for r, result in enumerate(results):
            ref = (result or {}).get("reference") or ""
            target = ref.removeprefix("Observation/") if ref.startswith("Observation/") else ""
            if not target or target not in observation_ids:
                _add(
                    errors,
                    "DIAGNOSTIC_REPORT_RESULT_REFERENCE_INVALID",
                    "DiagnosticReport.result references must point to existing Observation resources",
                    f"DiagnosticReport[{i}].result[{r}].reference",
                )

    for i, observation in enumerate(observations):
        if patient_ref and _subject(observation) != patient_ref:
            _add(
                errors,
                "OBSERVATION_SUBJECT_INVALID",
                "Observation subject must reference the Patient resource",
                f"Observation[{i}].subject.reference",
            )
        quantity = (observation.get("valueQuantity") or {}).get("value")
        has_quantity = isinstance(quantity, (int, float)) and not isinstance(quantity, bool)
        if not isinstance(observation.get("valueString"), str) and not has_quantity:
            _add(
                errors,
                "OBSERVATION_VALUE_MISSING",
                "Observation must contain valueString or valueQuantity.value",
                f"Observation[{i}]",
            )


def _check_discharge_resources(bundle: dict[str, Any], errors: list[BundleIssue]) -> None:
    if _resources(bundle, "DiagnosticReport"):
        return

    patient_ref = _patient_reference(bundle)
    conditions = _resources(bundle, "Condition")
    if not conditions and not _resources(bundle, "Composition"):
        _add(
            errors,
            "DISCHARGE_CLINICAL_RESOURCE_MISSING",
            "Discharge bundle must include Condition or Composition resource",
            "entry[Condition|Composition]",
        )

    for i, condition in enumerate(conditions):
        if patient_ref and _subject(condition) != patient_ref:
            _add(
                errors,
                "CONDITION_SUBJECT_INVALID",
                "Condition subject must reference the Patient resource",
                f"Condition[{i}].subject.reference",
            )
        if not (condition.get("code") or {}).get("text"):
            _add(errors, "CONDITION_CODE_MISSING", "Condition.code.text is required", f"Condition[{i}].code.text")
