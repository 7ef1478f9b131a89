"""
Prompt template for LLM enrichment of partially extracted clinical fields.

The model is asked for a single JSON object of the shape
``{"hiType": ..., "extracted": {...}}``.
"""

from claim_flow.schemas.claim import HiType

_DOCUMENT_TYPES = {
    HiType.DIAGNOSTIC_REPORT: "Diagnostic Report (Lab Report)",
    HiType.DISCHARGE_SUMMARY: "Discharge Summary",
}

ENRICHMENT_PROMPT = """\
You are an expert medical document parser for ABDM/NHCX healthcare interoperability in India.

## TASK
Extract ALL structured clinical data from the document for FHIR R4 bundle generation for claim submission.

## DOCUMENT TYPE
{document_type}

## INPUT DOCUMENT
{text}

## CRITICAL RULES
1. Extract ONLY what is explicitly stated. Do not guess or fabricate.
2. Use null for missing fields. Never use empty strings or placeholder values.
3. All dates must be in ISO format (YYYY-MM-DD).
4. Extract ALL lab observations from diagnostic reports.
5. Preserve original values as shown in the document.

## COMMON FIELDS
- patientName, patientLocalId (UHID / registration / lab id), patientGender (male/female/other),
  patientDob, patientAddress
- hospitalName, hospitalAddress, attendingPhysician, physicianRegNo
- payerName, policyNumber, memberId

## DIAGNOSTIC REPORTS
- testName, resultValue, observationDate, interpretation
- observations: [{{"name": "Hemoglobin", "value": "13.5", "unit": "g/dL"}}]

## DISCHARGE SUMMARIES
- admissionDate, dischargeDate, chiefComplaint, finalDiagnosis, procedureDone, medications

## DATE CONVERSION
Input formats: DD-MM-YYYY, DD/MM/YYYY, YYYY-MM-DD. Output format: YYYY-MM-DD.
Example: 26-01-2026 -> 2026-01-26

## OUTPUT FORMAT
Return ONLY valid JSON, no markdown:
{{"hiType": "diagnostic_report" | "discharge_summary", "extracted": {{...}}}}

Now extract ALL data from the document:"""


def build_enrichment_prompt(text: str, hi_type: HiType | str | None) -> str:
    document_type = _DOCUMENT_TYPES.get(hi_type, "Unknown - determine from document content")
    return ENRICHMENT_PROMPT.format(document_type=document_type, text=text)
