"""Unit tests for the NHCX claim bundle mapper."""

import pytest

from claim_flow.errors import BundleMappingError
from claim_flow.pipeline.fhir_mapper import (
    NHCX_CLAIM_BUNDLE_PROFILE,
    map_to_claim_submission_bundle,
    to_fhir_date,
)
from claim_flow.schemas.claim import HiType

SOURCE = {"sha256": "abcdef0123456789ff", "fileName": "doc.pdf"}


def _resources(bundle, resource_type=None):
    resources = [e["resource"] for e in bundle["entry"]]
    if resource_type is None:
        return resources
    return [r for r in resources if r["resourceType"] == resource_type]


class TestDischargeBundle:
    @pytest.fixture
    def bundle(self):
        extracted = {
            "patientName": "Ravi Kumar",
            "patientLocalId": "UH-2024-0042",
            "admissionDate": "10-01-2024",
            "dischargeDate": "15-01-2024",
            "finalDiagnosis": "Community acquired pneumonia",
        }
        return map_to_claim_submission_bundle("CLM-1", HiType.DISCHARGE_SUMMARY, extracted, SOURCE)

    def test_envelope(self, bundle):
        assert bundle["resourceType"] == "Bundle"
        assert bundle["type"] == "collection"
        assert bundle["identifier"]["value"] == "CLM-1"
        assert bundle["meta"]["profile"] == [NHCX_CLAIM_BUNDLE_PROFILE]

    def test_resource_set(self, bundle):
        assert [r["resourceType"] for r in _resources(bundle)] == [
            "Patient",
            "Encounter",
            "Condition",
            "Composition",
            "DocumentReference",
        ]

    def test_patient(self, bundle):
        (patient,) = _resources(bundle, "Patient")
        assert patient["identifier"][0]["value"] == "UH-2024-0042"
        assert patient["name"][0]["text"] == "Ravi Kumar"
        assert patient["gender"] == "unknown"
        inferred = {e["url"] for e in patient["extension"][0]["extension"]}
        assert inferred == {"gender", "address"}

    def test_encounter_period_and_condition(self, bundle):
        (encounter,) = _resources(bundle, "Encounter")
        assert encounter["period"] == {"start": "2024-01-10", "end": "2024-01-15"}
        (condition,) = _resources(bundle, "Condition")
        assert condition["code"]["text"] == "Community acquired pneumonia"
        assert condition["subject"]["reference"] == "Patient/patient-1"

    def test_document_reference(self, bundle):
        (doc_ref,) = _resources(bundle, "DocumentReference")
        assert doc_ref["identifier"] == [{"system": "urn:sha256", "value": "abcdef0123456789ff"}]
        assert doc_ref["type"]["coding"][0]["code"] == "34117-2"
        assert doc_ref["description"] == "doc.pdf"


class TestDiagnosticBundle:
    def test_observations_and_report(self):
        extracted = {
            "patientName": "Anita Sharma",
            "patientLocalId": "LAB12345",
            "testName": "Complete Blood Count",
            "resultValue": "13.5 g/dL",
            "observationDate": "12-02-2024",
            "observations": [
                {"name": "Hemoglobin", "value": "13.5", "unit": "g/dL"},
                {"name": "Dengue NS1", "value": "Positive", "unit": ""},
            ],
        }
        bundle = map_to_claim_submission_bundle("CLM-2", "diagnostic_report", extracted, SOURCE)

        (report,) = _resources(bundle, "DiagnosticReport")
        observations = _resources(bundle, "Observation")
        assert [o["id"] for o in observations] == ["observation-1", "observation-2"]
        assert report["result"] == [
            {"reference": "Observation/observation-1"},
            {"reference": "Observation/observation-2"},
        ]
        assert report["effectiveDateTime"] == "2024-02-12"
        assert report["conclusion"] == "13.5 g/dL"
        assert observations[0]["valueQuantity"]["value"] == 13.5
        assert observations[1]["valueString"] == "Positive"

    def test_single_observation_from_test_fields(self):
        extracted = {"testName": "HbA1c", "resultValue": "6.1 %"}
        bundle = map_to_claim_submission_bundle("CLM-3", HiType.DIAGNOSTIC_REPORT, extracted, SOURCE)
        (observation,) = _resources(bundle, "Observation")
        assert observation["code"]["text"] == "HbA1c"
        assert observation["valueString"] == "6.1 %"


class TestInferredDemographics:
    def test_identifier_from_source_hash(self):
        bundle = map_to_claim_submission_bundle("CLM-1", HiType.DISCHARGE_SUMMARY, {"patientLocalId": "NA"}, SOURCE)
        (patient,) = _resources(bundle, "Patient")
        assert patient["identifier"][0]["value"] == "AUTO-ABCDEF012345"

    def test_title_only_name(self):
        bundle = map_to_claim_submission_bundle("CLM-1", HiType.DISCHARGE_SUMMARY, {"patientName": "Dr."}, SOURCE)
        (patient,) = _resources(bundle, "Patient")
        assert patient["name"][0]["text"] == "Unknown Patient"

    def test_missing_source_hash(self):
        bundle = map_to_claim_submission_bundle("CLM-1", HiType.DISCHARGE_SUMMARY, {}, {"fileName": "x.pdf"})
        (doc_ref,) = _resources(bundle, "DocumentReference")
        (patient,) = _resources(bundle, "Patient")
        assert doc_ref["identifier"][0]["value"] == "missing-sha256"
        assert patient["identifier"][0]["value"] == "AUTO-UNKNOWN"


class TestOptionalResources:
    def test_organization_practitioner_coverage(self):
        extracted = {
            "patientName": "Ravi Kumar",
            "patientLocalId": "UH-1",
            "finalDiagnosis": "Fever",
            "hospitalName": "City Care Hospital",
            "attendingPhysician": "Dr. Meera Shah",
            "payerName": "Star Health",
            "policyNumber": "POL-77",
        }
        bundle = map_to_claim_submission_bundle("CLM-1", HiType.DISCHARGE_SUMMARY, extracted, SOURCE)

        types = [r["resourceType"] for r in _resources(bundle)]
        assert {"Organization", "Practitioner", "Coverage"} <= set(types)
        (encounter,) = _resources(bundle, "Encounter")
        assert encounter["serviceProvider"] == {"reference": "Organization/organization-1"}
        (composition,) = _resources(bundle, "Composition")
        assert composition["author"] == [{"reference": "Practitioner/practitioner-1"}]
        (coverage,) = _resources(bundle, "Coverage")
        assert coverage["identifier"][0]["value"] == "POL-77"


class TestMappingErrors:
    def test_missing_claim_id(self):
        with pytest.raises(BundleMappingError) as excinfo:
            map_to_claim_submission_bundle("", HiType.DISCHARGE_SUMMARY, {}, SOURCE)
        assert excinfo.value.field == "claimId"
        assert excinfo.value.code == "VALIDATION_ERROR"

    def test_unsupported_hi_type(self):
        with pytest.raises(ValueError):
            map_to_claim_submission_bundle("CLM-1", HiType.UNKNOWN, {}, SOURCE)


class TestToFhirDate:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2024-01-15", "2024-01-15"),
            ("15-01-2024", "2024-01-15"),
            ("15/01/2024", "2024-01-15"),
            ("2024/1/5", "2024-01-05"),
            ("01-13-2024", "2024-01-13"),
            ("12 Jan 2024", "2024-01-12"),
            ("3 September, 2023", "2023-09-03"),
            ("31-02-2024", None),
            ("yesterday", None),
            (None, None),
        ],
    )
    def test_formats(self, value, expected):
        assert to_fhir_date(value) == expected
