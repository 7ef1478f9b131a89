"""Unit tests for claim bundle structural validation."""

import copy

import pytest

from claim_flow.pipeline.bundle_validator import validate_claim_bundle, validate_claim_bundles
from claim_flow.pipeline.fhir_mapper import map_to_claim_submission_bundle
from claim_flow.schemas.claim import HiType

SOURCE = {"sha256": "f" * 64, "fileName": "doc.pdf"}


@pytest.fixture
def discharge_bundle():
    extracted = {"patientName": "Ravi Kumar", "patientLocalId": "UH-1", "finalDiagnosis": "Fever"}
    return map_to_claim_submission_bundle("CLM-1", HiType.DISCHARGE_SUMMARY, extracted, SOURCE)


@pytest.fixture
def diagnostic_bundle():
    extracted = {
        "patientName": "Anita Sharma",
        "patientLocalId": "LAB1",
        "observations": [{"name": "Hemoglobin", "value": "13.5", "unit": "g/dL"}],
    }
    return map_to_claim_submission_bundle("CLM-1", HiType.DIAGNOSTIC_REPORT, extracted, SOURCE)


def _codes(bundle):
    return [e.code for e in validate_claim_bundle(bundle).errors]


def _resource(bundle, resource_type):
    return next(e["resource"] for e in bundle["entry"] if e["resource"]["resourceType"] == resource_type)


def _drop(bundle, *resource_types):
    bundle["entry"] = [e for e in bundle["entry"] if e["resource"]["resourceType"] not in resource_types]
    return bundle


class TestMappedBundles:
    def test_discharge_bundle_passes(self, discharge_bundle):
        result = validate_claim_bundle(discharge_bundle)
        assert result.status == "pass"
        assert result.passed
        assert result.errors == []

    def test_diagnostic_bundle_passes(self, diagnostic_bundle):
        assert _codes(diagnostic_bundle) == []


class TestBundleLevel:
    def test_wrong_resource_type_and_profile(self, discharge_bundle):
        discharge_bundle["resourceType"] = "Claim"
        discharge_bundle["meta"] = {}
        assert _codes(discharge_bundle) == ["BUNDLE_RESOURCE_TYPE_INVALID", "BUNDLE_PROFILE_MISSING"]

    def test_duplicate_resource_ids(self, discharge_bundle):
        discharge_bundle["entry"].append(copy.deepcopy(discharge_bundle["entry"][-1]))
        assert "DUPLICATE_RESOURCE_ID" in _codes(discharge_bundle)

    def test_no_clinical_resources(self, discharge_bundle):
        _drop(discharge_bundle, "Condition", "Composition")
        codes = _codes(discharge_bundle)
        assert "DISCHARGE_CLINICAL_RESOURCE_MISSING" in codes
        assert codes[-1] == "CLINICAL_RESOURCE_MISSING"


class TestPatientAndSource:
    def test_unknown_identifier(self, discharge_bundle):
        _resource(discharge_bundle, "Patient")["identifier"][0]["value"] = "UNKNOWN"
        assert _codes(discharge_bundle) == ["PATIENT_IDENTIFIER_MISSING"]

    def test_missing_patient(self, discharge_bundle):
        _drop(discharge_bundle, "Patient")
        assert _codes(discharge_bundle) == ["PATIENT_MISSING"]

    def test_missing_document_reference(self, discharge_bundle):
        _drop(discharge_bundle, "DocumentReference")
        assert _codes(discharge_bundle) == ["DOCUMENT_REFERENCE_MISSING"]

    def test_document_reference_hash_and_subject(self, discharge_bundle):
        doc_ref = _resource(discharge_bundle, "DocumentReference")
        doc_ref["identifier"] = []
        doc_ref["subject"] = {"reference": "Patient/other"}
        assert _codes(discharge_bundle) == ["DOCUMENT_REFERENCE_SOURCE_MISSING", "DOCUMENT_REFERENCE_SUBJECT_INVALID"]


class TestDiagnosticResources:
    def test_dangling_result_reference(self, diagnostic_bundle):
        _resource(diagnostic_bundle, "DiagnosticReport")["result"].append({"reference": "Observation/observation-9"})
        result = validate_claim_bundle(diagnostic_bundle)
        assert [e.code for e in result.errors] == ["DIAGNOSTIC_REPORT_RESULT_REFERENCE_INVALID"]
        assert result.errors[0].path == "DiagnosticReport[0].result[1].reference"

    def test_observation_without_value(self, diagnostic_bundle):
        observation = _resource(diagnostic_bundle, "Observation")
        observation.pop("valueQuantity")
        assert _codes(diagnostic_bundle) == ["OBSERVATION_VALUE_MISSING"]

    def test_report_without_observations(self, diagnostic_bundle):
        _drop(diagnostic_bundle, "Observation")
        codes = _codes(diagnostic_bundle)
        assert "DIAGNOSTIC_OBSERVATION_MISSING" in codes
        assert "DIAGNOSTIC_REPORT_RESULT_REFERENCE_INVALID" in codes


class TestValidateClaimBundles:
    def test_report_per_bundle(self, discharge_bundle, diagnostic_bundle):
        diagnostic_bundle["meta"]["profile"] = []
        report = validate_claim_bundles([discharge_bundle, diagnostic_bundle])
        assert report.status == "fail"
        assert [(r.bundle_index, r.status) for r in report.bundle_reports] == [(0, "pass"), (1, "fail")]

    def test_empty(self):
        assert validate_claim_bundles([]).status == "pass"
