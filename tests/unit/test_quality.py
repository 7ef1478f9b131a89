"""Unit tests for document quality scoring."""

from claim_flow.pipeline.clinical_extractor import extract_structured_data
from claim_flow.pipeline.quality import evaluate_document_quality
from claim_flow.schemas.claim import HiType, QualityStatus


class TestEvaluateDocumentQuality:
    def test_complete_discharge_passes(self, discharge_text):
        extracted = extract_structured_data(HiType.DISCHARGE_SUMMARY, discharge_text)
        report = evaluate_document_quality(HiType.DISCHARGE_SUMMARY, extracted, discharge_text)
        assert report.status == QualityStatus.PASS
        assert report.missing_required_fields == []
        assert report.confidence_score == 1.0
        assert report.low_confidence is False

    def test_complete_lab_report_passes(self, lab_text):
        extracted = extract_structured_data(HiType.DIAGNOSTIC_REPORT, lab_text)
        report = evaluate_document_quality(HiType.DIAGNOSTIC_REPORT, extracted, lab_text)
        assert report.status == QualityStatus.PASS

    def test_observations_stand_in_for_test_fields(self):
        extracted = {
            "patientName": "Anita Sharma",
            "patientLocalId": "LAB1",
            "observations": [{"name": "Glucose", "value": "98", "unit": "mg/dL"}],
        }
        report = evaluate_document_quality(HiType.DIAGNOSTIC_REPORT, extracted, "text")
        assert report.status == QualityStatus.PASS

    def test_missing_field_lowers_score(self):
        extracted = {"patientName": "Ravi Kumar", "patientLocalId": "UH-1", "finalDiagnosis": None}
        report = evaluate_document_quality(HiType.DISCHARGE_SUMMARY, extracted, "text")
        assert report.status == QualityStatus.WARNING
        assert report.missing_required_fields == ["finalDiagnosis"]
        assert report.confidence_score == 0.67
        assert report.low_confidence is True

    def test_unknown_type(self):
        report = evaluate_document_quality(HiType.UNKNOWN, {"observations": []}, "text")
        assert report.status == QualityStatus.WARNING
        assert report.missing_required_fields == ["hiTypeDetection"]
        assert report.confidence_score == 0.0
        assert report.low_confidence is True

    def test_empty_text_is_low_confidence(self):
        extracted = {"patientName": "Ravi Kumar", "patientLocalId": "UH-1", "finalDiagnosis": "Fever"}
        report = evaluate_document_quality(HiType.DISCHARGE_SUMMARY, extracted, "   ")
        assert report.status == QualityStatus.PASS
        assert report.low_confidence is True
