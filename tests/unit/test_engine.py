"""Unit tests for extraction strategy selection and layered fallback."""

import pytest

from claim_flow.extraction.adapters import TextSourceAdapter
from claim_flow.extraction.engine import (
    SCAN_REQUIRES_OCR,
    UNREACHABLE_NO_FALLBACK,
    ExtractionEngine,
    ExtractionStrategy,
)
from claim_flow.schemas.document import (
    DiagnosticBundle,
    DiagnosticStage,
    Document,
    ExtractionMetadata,
    ExtractionMode,
    ExtractionResult,
)
from claim_flow.schemas.outcome import Fatal, Ok, Recoverable


class StubAdapter(TextSourceAdapter):
    def __init__(self, result: ExtractionResult) -> None:
        self.result = result
        self.calls = 0

    async def extract(self, document: Document) -> ExtractionResult:
        self.calls += 1
        return self.result


def _unreachable() -> ExtractionResult:
    diagnostics = DiagnosticBundle(engine="medgemma")
    diagnostics.add_error(DiagnosticStage.OCR_BACKEND_UNREACHABLE, "Unable to reach OCR endpoint")
    return ExtractionResult(
        mode=ExtractionMode.OCR_ERROR,
        metadata=ExtractionMetadata(reason="ocr_backend_unreachable", diagnostics=diagnostics),
    )


def _text(mode: ExtractionMode, text: str) -> ExtractionResult:
    return ExtractionResult(text=text, mode=mode)


PDF_DOC = Document(file_name="claim.pdf", file_path="/claims/claim.pdf")
SCAN_DOC = Document(file_name="scan.pdf", file_path="/claims/scan.pdf", has_text_layer=False)


class TestStrategySelection:
    def _engine(self, ocr_for_all_pdfs=False):
        return ExtractionEngine(
            StubAdapter(_text(ExtractionMode.DIGITAL_EMPTY, "")),
            StubAdapter(_text(ExtractionMode.OCR_EMPTY, "")),
            ocr_for_all_pdfs=ocr_for_all_pdfs,
        )

    def test_default_is_digital_first(self):
        assert self._engine().resolve_strategy(PDF_DOC) == ExtractionStrategy.DIGITAL_FIRST

    def test_scan_only_when_text_layer_absent(self):
        assert self._engine().resolve_strategy(SCAN_DOC) == ExtractionStrategy.SCAN_ONLY

    def test_ocr_first_needs_a_pdf_or_image(self):
        engine = self._engine(ocr_for_all_pdfs=True)
        assert engine.resolve_strategy(PDF_DOC) == ExtractionStrategy.OCR_FIRST
        assert engine.resolve_strategy(Document(file_name="a.txt", text="x")) == ExtractionStrategy.DIGITAL_FIRST

    def test_rejects_non_adapter(self):
        with pytest.raises(TypeError, match="digital_adapter"):
            ExtractionEngine(object(), StubAdapter(_unreachable()))


class TestDigitalFirst:
    async def test_inline_text_passes_through(self):
        ocr = StubAdapter(_unreachable())
        engine = ExtractionEngine(ocr_adapter=ocr)
        doc = Document(file_name="note.txt", text="  Final Diagnosis: Dengue  ")

        result = await engine.extract(doc)

        assert result.text == doc.text
        assert result.mode == ExtractionMode.DIGITAL
        assert ocr.calls == 0

    async def test_blank_digital_text_falls_through_to_ocr(self):
        engine = ExtractionEngine(
            StubAdapter(_text(ExtractionMode.DIGITAL_PDFJS, "   \n ")),
            StubAdapter(_text(ExtractionMode.OCR_WORKER, "OCR TEXT")),
        )
        result = await engine.extract(PDF_DOC)
        assert result.mode == ExtractionMode.OCR_WORKER
        assert isinstance(result.outcome(), Ok)

    async def test_both_empty_and_backend_unreachable_is_fatal(self):
        engine = ExtractionEngine(StubAdapter(_text(ExtractionMode.DIGITAL_PDFJS, "")), StubAdapter(_unreachable()))

        result = await engine.extract(PDF_DOC)

        assert result.mode == ExtractionMode.EXTRACTION_FAILED
        assert result.metadata.fatal is True
        assert result.metadata.reason == UNREACHABLE_NO_FALLBACK
        assert [a.mode for a in result.metadata.attempts] == [ExtractionMode.DIGITAL_PDFJS, ExtractionMode.OCR_ERROR]
        outcome = result.outcome()
        assert isinstance(outcome, Fatal)
        assert outcome.reason == UNREACHABLE_NO_FALLBACK

    async def test_both_empty_without_backend_trouble_is_recoverable(self):
        engine = ExtractionEngine(
            StubAdapter(_text(ExtractionMode.DIGITAL_PDFJS, "")),
            StubAdapter(_text(ExtractionMode.OCR_WORKER, "")),
        )

        result = await engine.extract(PDF_DOC)

        assert result.mode == ExtractionMode.EXTRACTION_EMPTY
        assert result.metadata.fatal is False
        assert isinstance(result.outcome(), Recoverable)


class TestScanOnly:
    async def test_unreachable_backend_is_fatal(self):
        digital = StubAdapter(_text(ExtractionMode.DIGITAL_PDFJS, "should not be read"))
        engine = ExtractionEngine(digital, StubAdapter(_unreachable()))

        result = await engine.extract(SCAN_DOC)

        assert result.metadata.fatal is True
        assert result.metadata.reason == SCAN_REQUIRES_OCR
        assert result.metadata.diagnostics.has_stage(DiagnosticStage.OCR_BACKEND_UNREACHABLE)
        assert digital.calls == 0

    async def test_empty_ocr_is_returned_as_is(self):
        engine = ExtractionEngine(
            StubAdapter(_text(ExtractionMode.DIGITAL_PDFJS, "")),
            StubAdapter(_text(ExtractionMode.OCR_WORKER, "")),
        )
        result = await engine.extract(SCAN_DOC)
        assert result.mode == ExtractionMode.OCR_WORKER
        assert result.metadata.fatal is False


class TestOcrFirst:
    async def test_ocr_text_wins(self):
        digital = StubAdapter(_text(ExtractionMode.DIGITAL_PDFJS, "digital"))
        engine = ExtractionEngine(digital, StubAdapter(_text(ExtractionMode.OCR_WORKER, "ocr")), ocr_for_all_pdfs=True)

        result = await engine.extract(PDF_DOC)

        assert result.text == "ocr"
        assert digital.calls == 0

    async def test_unreachable_falls_back_to_digital_with_provenance(self):
        engine = ExtractionEngine(
            StubAdapter(_text(ExtractionMode.DIGITAL_PDFJS, "digital text")),
            StubAdapter(_unreachable()),
            ocr_for_all_pdfs=True,
        )

        result = await engine.extract(PDF_DOC)

        assert result.text == "digital text"
        assert result.metadata.fatal is False
        assert result.metadata.fallback.reason == "ocr_backend_unreachable"
        assert result.metadata.fallback.from_mode == ExtractionMode.OCR_ERROR
        dumped = result.metadata.model_dump(by_alias=True)
        assert dumped["fallback"]["from"] == ExtractionMode.OCR_ERROR

    async def test_empty_ocr_falls_back_to_digital(self):
        engine = ExtractionEngine(
            StubAdapter(_text(ExtractionMode.DIGITAL_PDFJS, "digital text")),
            StubAdapter(_text(ExtractionMode.OCR_WORKER, "")),
            ocr_for_all_pdfs=True,
        )
        result = await engine.extract(PDF_DOC)
        assert result.metadata.fallback.reason == "ocr_empty_text"

    async def test_nothing_anywhere_but_reachable_is_recoverable(self):
        digital = StubAdapter(_text(ExtractionMode.DIGITAL_EMPTY, ""))
        ocr = StubAdapter(_text(ExtractionMode.OCR_WORKER, "   "))
        engine = ExtractionEngine(digital, ocr, ocr_for_all_pdfs=True)

        result = await engine.extract(PDF_DOC)

        assert result.mode == ExtractionMode.EXTRACTION_EMPTY
        assert result.metadata.fatal is False
        assert result.metadata.reason == "no_text_from_ocr_or_digital"
        assert [a.mode for a in result.metadata.attempts] == [ExtractionMode.OCR_WORKER, ExtractionMode.DIGITAL_EMPTY]
        assert isinstance(result.outcome(), Recoverable)

    async def test_nothing_anywhere_and_unreachable_is_fatal(self):
        engine = ExtractionEngine(
            StubAdapter(_text(ExtractionMode.DIGITAL_EMPTY, "")),
            StubAdapter(_unreachable()),
            ocr_for_all_pdfs=True,
        )
        result = await engine.extract(PDF_DOC)
        assert result.metadata.fatal is True
        assert result.metadata.reason == UNREACHABLE_NO_FALLBACK
