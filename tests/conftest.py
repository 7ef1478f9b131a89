"""
Root test configuration.

Sample document texts and PDF builders shared by the unit tests. No test
needs a running OCR or LLM backend: HTTP is served by httpx.MockTransport.

Text fixtures
─────────────
discharge_text  →  a digital discharge summary that passes quality checks
lab_text        →  a laboratory report with three parseable observations
unknown_text    →  text that matches neither health-information type
"""

import base64

import fitz  # PyMuPDF
import pytest

DISCHARGE_TEXT = """\
CITY CARE HOSPITAL
DISCHARGE SUMMARY
Patient Name: Ravi Kumar
UHID: UH-2024-0042
Date of Admission: 10-01-2024
Date of Discharge: 15-01-2024
Final Diagnosis: Community acquired pneumonia
"""

LAB_TEXT = """\
SRL DIAGNOSTICS
LABORATORY REPORT
Patient Name: Anita Sharma   Age: 34
Patient ID: LAB12345
Report Date: 12-02-2024
Investigation: Complete Blood Count
Hemoglobin 13.5 g/dL
WBC Count 6800 cells/cumm
Platelet Count 250000 /cumm
"""

UNKNOWN_TEXT = "Miscellaneous correspondence regarding hospital parking permits."


# ---------------------------------------------------------------------------
# Text fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def discharge_text() -> str:
    return DISCHARGE_TEXT


@pytest.fixture
def lab_text() -> str:
    return LAB_TEXT


@pytest.fixture
def unknown_text() -> str:
    return UNKNOWN_TEXT


# ---------------------------------------------------------------------------
# PDF fixtures
# ---------------------------------------------------------------------------

def make_pdf_bytes(*pages: str) -> bytes:
    """A small digital PDF with one text line per page."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def pdf_bytes() -> bytes:
    return make_pdf_bytes("Final Diagnosis: Dengue fever", "Date of Discharge: 02-03-2024")


@pytest.fixture
def pdf_base64(pdf_bytes: bytes) -> str:
    return base64.b64encode(pdf_bytes).decode("ascii")


# ---------------------------------------------------------------------------
# Async helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by retry loops; filled by the ``fake_sleep`` fixture."""
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep
