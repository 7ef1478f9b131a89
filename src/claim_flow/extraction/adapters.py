"""
Text source adapters.

Both adapters expose one coroutine, ``extract(document)``, and report
failures as ExtractionResult modes with diagnostics rather than raising.
"""

from __future__ import annotations

import asyncio
import base64
from abc import ABC, abstractmethod
from pathlib import Path

import fitz  # PyMuPDF

from claim_flow.errors import is_retryable_ocr_error
from claim_flow.extraction.ocr_client import OcrBackendClient
from claim_flow.logging import log
from claim_flow.schemas.document import (
    DiagnosticBundle,
    DiagnosticStage,
    Document,
    ExtractionMetadata,
    ExtractionMode,
    ExtractionResult,
)


class TextSourceAdapter(ABC):
    """Interface every text source plugged into the extraction engine implements."""

    name: str = "base"

    @abstractmethod
    async def extract(self, document: Document) -> ExtractionResult:
        """Return text for *document*. Must not raise for unreadable input."""


# ---------------------------------------------------------------------------
# Digital (embedded text layer)
# ---------------------------------------------------------------------------


def read_text_layer(pdf_bytes: bytes | None = None, pdf_path: Path | None = None) -> tuple[str, int]:
    """Embedded text of every page joined with newlines, plus the page count."""
    doc = fitz.open(stream=pdf_bytes, filetype="pdf") if pdf_bytes is not None else fitz.open(str(pdf_path))
    with doc:
        pages = [doc[i].get_text("text") for i in range(len(doc))]
    return "\n".join(p.strip() for p in pages if p.strip()), len(pages)


class DigitalTextAdapter(TextSourceAdapter):
    name = "digital"

    async def extract(self, document: Document) -> ExtractionResult:
        if document.text is not None:
            return ExtractionResult(
                text=document.text,
                mode=ExtractionMode.DIGITAL,
                metadata=ExtractionMetadata(file_name=document.file_name),
            )

        if not document.file_path and not document.base64_pdf:
            return ExtractionResult(
                mode=ExtractionMode.DIGITAL_EMPTY,
                metadata=ExtractionMetadata(reason="no_pdf_source", file_name=document.file_name),
            )

        source = "file_path" if document.file_path else "base64_pdf"
        try:
            if document.file_path:
                text, page_count = await asyncio.to_thread(read_text_layer, pdf_path=Path(document.file_path))
            else:
                pdf_bytes = base64.b64decode(document.base64_pdf or "")
                text, page_count = await asyncio.to_thread(read_text_layer, pdf_bytes=pdf_bytes)
        except Exception as exc:  # noqa: BLE001 - fitz raises several unrelated types for bad input
            log.warning("digital_adapter.parse_failed", file_name=document.file_name, error=str(exc))
            diagnostics = DiagnosticBundle(engine="pymupdf")
            diagnostics.add_error(DiagnosticStage.PDF_PARSING, str(exc) or type(exc).__name__)
            return ExtractionResult(
                mode=ExtractionMode.DIGITAL_ERROR,
                metadata=ExtractionMetadata(
                    reason="pdf_parsing_failed", diagnostics=diagnostics, file_name=document.file_name, source=source
                ),
            )

        log.debug("digital_adapter.done", file_name=document.file_name, pages=page_count, chars=len(text))
        return ExtractionResult(
            text=text,
            mode=ExtractionMode.DIGITAL_PDFJS,
            metadata=ExtractionMetadata(file_name=document.file_name, page_count=page_count, source=source),
        )


# ---------------------------------------------------------------------------
# OCR
# ---------------------------------------------------------------------------


class OcrAdapter(TextSourceAdapter):
    name = "ocr"

    def __init__(self, client: OcrBackendClient | None = None) -> None:
        self.client = client or OcrBackendClient()

    async def extract(self, document: Document) -> ExtractionResult:
        if document.ocr_text is not None:
            return ExtractionResult(
                text=document.ocr_text,
                mode=ExtractionMode.OCR_INLINE,
                metadata=ExtractionMetadata(file_name=document.file_name),
            )

        if not document.has_pdf_or_image:
            return ExtractionResult(
                mode=ExtractionMode.OCR_EMPTY,
                metadata=ExtractionMetadata(reason="no_ocr_source", file_name=document.file_name),
            )

        try:
            output = await self.client.extract(document)
        except Exception as exc:  # noqa: BLE001
            unreachable = is_retryable_ocr_error(exc)
            stage = DiagnosticStage.OCR_BACKEND_UNREACHABLE if unreachable else DiagnosticStage.OCR_PROCESSING
            log.warning("ocr_adapter.failed", file_name=document.file_name, stage=stage.value, error=str(exc))
            diagnostics = DiagnosticBundle(engine="medgemma", base_url=self.client.base_url, model=self.client.model)
            diagnostics.add_error(stage, str(exc) or type(exc).__name__)
            return ExtractionResult(
                mode=ExtractionMode.OCR_ERROR,
                metadata=ExtractionMetadata(reason=stage.value, diagnostics=diagnostics, file_name=document.file_name),
            )

        return ExtractionResult(
            text=output.text,
            mode=ExtractionMode.OCR_WORKER,
            metadata=ExtractionMetadata(
                confidence=output.confidence, diagnostics=output.diagnostics, file_name=document.file_name
            ),
        )
