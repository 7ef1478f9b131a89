"""
Multi-strategy text extraction.

Strategy per document:
  - OCR_FIRST:     ocr_for_all_pdfs is on and the document has a PDF/image
                   source. OCR, then the embedded text layer.
  - SCAN_ONLY:     has_text_layer is explicitly False. OCR only.
  - DIGITAL_FIRST: default. Embedded text, then OCR.

Emptiness is judged on trimmed text, never on mode tags. Both sources
empty is fatal only when OCR could not reach its backend.
"""

from __future__ import annotations

from enum import StrEnum

from claim_flow.config import settings
from claim_flow.extraction.adapters import DigitalTextAdapter, OcrAdapter, TextSourceAdapter
from claim_flow.logging import log
from claim_flow.schemas.document import (
    Document,
    ExtractionMetadata,
    ExtractionMode,
    ExtractionResult,
    FallbackProvenance,
)

UNREACHABLE_NO_FALLBACK = "ocr_backend_unreachable_no_text_fallback"
SCAN_REQUIRES_OCR = "scan_requires_ocr_backend_unreachable"


class ExtractionStrategy(StrEnum):
    OCR_FIRST = "ocr_first"
    SCAN_ONLY = "scan_only"
    DIGITAL_FIRST = "digital_first"


class ExtractionEngine:
    def __init__(
        self,
        digital_adapter: TextSourceAdapter | None = None,
        ocr_adapter: TextSourceAdapter | None = None,
        *,
        ocr_for_all_pdfs: bool | None = None,
    ) -> None:
        digital_adapter = digital_adapter if digital_adapter is not None else DigitalTextAdapter()
        ocr_adapter = ocr_adapter if ocr_adapter is not None else OcrAdapter()
        for role, adapter in (("digital_adapter", digital_adapter), ("ocr_adapter", ocr_adapter)):
            if not isinstance(adapter, TextSourceAdapter):
                raise TypeError(f"{role} must be a TextSourceAdapter, got {type(adapter).__name__}")

        self.digital_adapter = digital_adapter
        self.ocr_adapter = ocr_adapter
        self.ocr_for_all_pdfs = settings.ocr_for_all_pdfs if ocr_for_all_pdfs is None else ocr_for_all_pdfs

    def resolve_strategy(self, document: Document) -> ExtractionStrategy:
        if self.ocr_for_all_pdfs and document.has_pdf_or_image:
            return ExtractionStrategy.OCR_FIRST
        if document.has_text_layer is False:
            return ExtractionStrategy.SCAN_ONLY
        return ExtractionStrategy.DIGITAL_FIRST

    async def extract(self, document: Document, strategy: ExtractionStrategy | None = None) -> ExtractionResult:
        strategy = strategy or self.resolve_strategy(document)
        log.debug("engine.strategy", file_name=document.file_name, strategy=strategy.value)

        if strategy == ExtractionStrategy.OCR_FIRST:
            result = await self._ocr_first(document)
        elif strategy == ExtractionStrategy.SCAN_ONLY:
            result = await self._scan_only(document)
        else:
            result = await self._digital_first(document)

        log.info(
            "engine.done",
            file_name=document.file_name,
            strategy=strategy.value,
            mode=result.mode.value,
            text_length=len(result.stripped_text),
            fatal=result.metadata.fatal,
        )
        return result

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _ocr_first(self, document: Document) -> ExtractionResult:
        ocr = await self.ocr_adapter.extract(document)
        if ocr.has_text:
            return ocr

        digital = await self.digital_adapter.extract(document)
        if digital.has_text:
            reason = "ocr_backend_unreachable" if ocr.backend_unreachable else "ocr_empty_text"
            log.info("engine.ocr_fallback_to_digital", file_name=document.file_name, reason=reason)
            provenance = FallbackProvenance(
                from_mode=ocr.mode, reason=reason, ocr_diagnostics=ocr.metadata.diagnostics
            )
            return digital.model_copy(
                update={"metadata": digital.metadata.model_copy(update={"fallback": provenance})}
            )

        if ocr.backend_unreachable:
            return self._failed(UNREACHABLE_NO_FALLBACK, ocr, digital)
        return self._empty("no_text_from_ocr_or_digital", ocr, digital)

    async def _scan_only(self, document: Document) -> ExtractionResult:
        ocr = await self.ocr_adapter.extract(document)
        if ocr.has_text or not ocr.backend_unreachable:
            return ocr
        return self._failed(SCAN_REQUIRES_OCR, ocr)

    async def _digital_first(self, document: Document) -> ExtractionResult:
        digital = await self.digital_adapter.extract(document)
        if digital.has_text:
            return digital

        ocr = await self.ocr_adapter.extract(document)
        if ocr.has_text:
            return ocr

        if ocr.backend_unreachable:
            return self._failed(UNREACHABLE_NO_FALLBACK, digital, ocr)
        return self._empty("no_text_from_digital_or_ocr", digital, ocr)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _failed(reason: str, *results: ExtractionResult) -> ExtractionResult:
        diagnostics = next(
            (r.metadata.diagnostics for r in results if r.backend_unreachable), None
        )
        return ExtractionResult(
            mode=ExtractionMode.EXTRACTION_FAILED,
            metadata=ExtractionMetadata(
                reason=reason,
                fatal=True,
                diagnostics=diagnostics,
                attempts=[r.to_attempt() for r in results],
            ),
        )

    @staticmethod
    def _empty(reason: str, *results: ExtractionResult) -> ExtractionResult:
        return ExtractionResult(
            mode=ExtractionMode.EXTRACTION_EMPTY,
            metadata=ExtractionMetadata(reason=reason, attempts=[r.to_attempt() for r in results]),
        )
