"""Unit tests for health-information type detection."""

import pytest

from claim_flow.pipeline.classifier import detect_hi_type
from claim_flow.schemas.claim import HiType


class TestTitles:
    def test_discharge_summary(self, discharge_text):
        assert detect_hi_type(discharge_text) == HiType.DISCHARGE_SUMMARY

    def test_laboratory_report(self, lab_text):
        assert detect_hi_type(lab_text) == HiType.DIAGNOSTIC_REPORT

    def test_discharge_title_wins_over_lab_title(self):
        text = "DISCHARGE SUMMARY\nAttached: Lab Report for CBC"
        assert detect_hi_type(text) == HiType.DISCHARGE_SUMMARY

    def test_echo_report(self):
        assert detect_hi_type("2D Echo Cardiography Report\nLVEF 55 %") == HiType.DIAGNOSTIC_REPORT


class TestHints:
    def test_lab_shaped_text(self):
        text = "Biochemistry\nHemoglobin 13.5 g/dL\nReference range 13-17"
        assert detect_hi_type(text) == HiType.DIAGNOSTIC_REPORT

    def test_discharge_shaped_text(self):
        text = "Date of Admission: 01-01-2024\nHospital course was uneventful."
        assert detect_hi_type(text) == HiType.DISCHARGE_SUMMARY

    def test_tie_prefers_discharge(self):
        text = "Chief complaint: fever\nSpecimen: blood"
        assert detect_hi_type(text) == HiType.DISCHARGE_SUMMARY


class TestUnknown:
    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty(self, text):
        assert detect_hi_type(text) == HiType.UNKNOWN

    def test_unrelated_text(self, unknown_text):
        assert detect_hi_type(unknown_text) == HiType.UNKNOWN
