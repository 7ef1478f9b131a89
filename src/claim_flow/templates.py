"""Per-hospital extraction templates: field labels and quality requirements."""

from __future__ import annotations

from pydantic import BaseModel, Field

from claim_flow.schemas.claim import HiType


class HospitalTemplate(BaseModel):
    id: str
    # hi_type -> field -> labels that introduce the field in the document
    extractors: dict[HiType, dict[str, list[str]]] = Field(default_factory=dict)
    # hi_type -> fields that must be present for quality "pass"
    required_fields: dict[HiType, list[str]] = Field(default_factory=dict)


DEFAULT_TEMPLATE = HospitalTemplate(
    id="default",
    extractors={
        HiType.DISCHARGE_SUMMARY: {
            "patientName": ["Patient Name", "Patient's Name", "Pt Name", "PatientName"],
            "patientLocalId": ["UHID", "UHID No", "Local ID", "IP No", "Hospital No", "Reg No"],
            "admissionDate": ["Date of Admission", "Admission Date", "DOA"],
            "dischargeDate": ["Date of Discharge", "Discharge Date", "DOD"],
            "finalDiagnosis": ["Final Diagnosis", "Diagnosis at Discharge", "Provisional Diagnosis"],
        },
        HiType.DIAGNOSTIC_REPORT: {
            "patientName": ["Patient Name", "PatientName", "Patient's Name", "Pt Name"],
            "patientLocalId": [
                "UHID", "UHID No", "Local ID", "Patient ID", "PatientID", "Patient|D", "Reg No", "Lab No",
            ],
            "testName": ["Test Name", "Investigation", "Investigation Name", "Test"],
            "resultValue": ["Result", "Test Result", "Observed Value", "Value"],
            "observationDate": ["Observation Date", "Report Date", "Sample Date", "Collected On", "Reported On"],
        },
    },
    required_fields={
        HiType.DISCHARGE_SUMMARY: ["patientName", "patientLocalId", "finalDiagnosis"],
        HiType.DIAGNOSTIC_REPORT: ["patientName", "patientLocalId", "testName", "resultValue"],
    },
)

_REGISTRY: dict[str, HospitalTemplate] = {DEFAULT_TEMPLATE.id: DEFAULT_TEMPLATE}


def register_template(template: HospitalTemplate) -> None:
    _REGISTRY[template.id] = template


def get_hospital_template(hospital_id: str | None = None) -> HospitalTemplate:
    """Template registered for *hospital_id*, else the default one."""
    return _REGISTRY.get(hospital_id or "", DEFAULT_TEMPLATE)
