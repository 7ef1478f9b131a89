"""Schemas for input documents and text extraction output."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from claim_flow.schemas.outcome import Fatal, Ok, Outcome, Recoverable


class Document(BaseModel):
    """
    One source document of a claim.

    Carries at most one primary content source. A document with no
    usable source is still valid: it converts with empty text and is
    flagged low-confidence by quality scoring.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    file_name: str = Field(validation_alias=AliasChoices("file_name", "fileName"))
    text: str | None = None
    file_path: str | None = Field(None, validation_alias=AliasChoices("file_path", "filePath"))
    base64_pdf: str | None = Field(None, validation_alias=AliasChoices("base64_pdf", "base64Pdf"))
    image_base64: str | None = Field(None, validation_alias=AliasChoices("image_base64", "imageBase64"))
    ocr_text: str | None = Field(None, validation_alias=AliasChoices("ocr_text", "ocrText"))
    has_text_layer: bool | None = Field(None, validation_alias=AliasChoices("has_text_layer", "hasTextLayer"))
    sha256: str | None = None
    content_type: str = Field("application/pdf", validation_alias=AliasChoices("content_type", "contentType"))

    @property
    def has_pdf_or_image(self) -> bool:
        return bool(self.file_path or self.base64_pdf or self.image_base64)


class ExtractionMode(StrEnum):
    DIGITAL = "digital"                      # inline text, passed through verbatim
    DIGITAL_PDFJS = "digital_pdfjs"          # embedded text layer read from the PDF
    DIGITAL_EMPTY = "digital_empty"
    DIGITAL_ERROR = "digital_error"
    OCR_INLINE = "ocr_inline"
    OCR_WORKER = "ocr_worker"
    OCR_EMPTY = "ocr_empty"
    OCR_ERROR = "ocr_error"
    EXTRACTION_EMPTY = "extraction_empty"
    EXTRACTION_FAILED = "extraction_failed"


class DiagnosticStage(StrEnum):
    PDF_PARSING = "pdf_parsing"
    PDF_TO_IMAGE = "pdf_to_image"
    PDF_BATCH_OCR = "pdf_batch_ocr"
    PAGE_OCR = "page_ocr"
    PDF_OCR = "pdf_ocr"
    OCR_BACKEND_UNREACHABLE = "ocr_backend_unreachable"
    OCR_PROCESSING = "ocr_processing"
    INPUT_VALIDATION = "input_validation"
    EXTRACT = "extract"


class DiagnosticError(BaseModel):
    model_config = ConfigDict(extra="allow")

    stage: str
    message: str


class DiagnosticBundle(BaseModel):
    engine: str | None = None
    base_url: str | None = None
    model: str | None = None
    effective_model: str | None = None
    errors: list[DiagnosticError] = Field(default_factory=list)

    def add_error(self, stage: str, message: str, **extra: Any) -> None:
        self.errors.append(DiagnosticError(stage=stage, message=message, **extra))

    def has_stage(self, stage: str) -> bool:
        return any(e.stage == stage for e in self.errors)


class Attempt(BaseModel):
    mode: ExtractionMode
    text_length: int
    diagnostics: DiagnosticBundle | None = None


class FallbackProvenance(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_mode: ExtractionMode = Field(alias="from")
    reason: str  # ocr_backend_unreachable | ocr_empty_text
    ocr_diagnostics: DiagnosticBundle | None = None


class ExtractionMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    reason: str | None = None
    fatal: bool = False
    diagnostics: DiagnosticBundle | None = None
    attempts: list[Attempt] = Field(default_factory=list)
    fallback: FallbackProvenance | None = None
    confidence: float | None = Field(None, ge=0.0, le=1.0)
    file_name: str | None = None
    page_count: int | None = None
    source: str | None = None


class ExtractionResult(BaseModel):
    text: str = ""
    mode: ExtractionMode
    metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)

    @property
    def stripped_text(self) -> str:
        return (self.text or "").strip()

    @property
    def has_text(self) -> bool:
        return bool(self.stripped_text)

    @property
    def backend_unreachable(self) -> bool:
        diagnostics = self.metadata.diagnostics
        return diagnostics is not None and diagnostics.has_stage(DiagnosticStage.OCR_BACKEND_UNREACHABLE)

    def to_attempt(self) -> Attempt:
        return Attempt(mode=self.mode, text_length=len(self.stripped_text), diagnostics=self.metadata.diagnostics)

    def outcome(self) -> Outcome[ExtractionResult]:
        if self.metadata.fatal or self.mode == ExtractionMode.EXTRACTION_FAILED:
            return Fatal(
                reason=self.metadata.reason or ExtractionMode.EXTRACTION_FAILED.value,
                metadata=self.metadata.model_dump(mode="json", by_alias=True, exclude_none=True),
            )
        if not self.has_text:
            return Recoverable(reason=self.metadata.reason or self.mode.value, value=self)
        return Ok(self)


class OcrOutput(BaseModel):
    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    diagnostics: DiagnosticBundle = Field(default_factory=DiagnosticBundle)
