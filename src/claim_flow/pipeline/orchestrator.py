"""
Top-level orchestrator: a claim's documents -> NHCX claim bundles.

Each document runs through:

  RESOLVE_TEXT -> HASH -> CLASSIFY -> EXTRACT_STRUCTURED -> SCORE_QUALITY
  -> (ENRICH) -> MAP_TO_BUNDLE -> VALIDATE -> CHECK_COMPLIANCE

Documents fan out over a bounded worker pool. The batch either completes
as a whole or aborts: a fatal extraction in any document stops new work,
lets in-flight documents finish, and re-raises as DocumentExtractionError.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from claim_flow.config import settings
from claim_flow.errors import DocumentExtractionError, InputValidationError
from claim_flow.extraction.engine import ExtractionEngine
from claim_flow.logging import log
from claim_flow.pipeline.bundle_validator import validate_claim_bundle, validate_claim_bundles
from claim_flow.pipeline.classifier import detect_hi_type
from claim_flow.pipeline.clinical_extractor import extract_structured_data
from claim_flow.pipeline.compliance import evaluate_compliance
from claim_flow.pipeline.enrichment import ENRICHABLE_FIELDS, OllamaEnricher, normalize_hi_type
from claim_flow.pipeline.fhir_mapper import map_to_claim_submission_bundle
from claim_flow.pipeline.quality import evaluate_document_quality
from claim_flow.schemas.claim import (
    SUPPORTED_HI_TYPES,
    AuditTrail,
    ClaimConversionOutput,
    ConversionMetadata,
    EnrichmentResult,
    ExtractionSummary,
    HiType,
    PipelineDocumentResult,
    QualityStatus,
    SourceDocumentRef,
)
from claim_flow.schemas.document import Document
from claim_flow.schemas.outcome import Fatal, Ok, Recoverable
from claim_flow.templates import HospitalTemplate, get_hospital_template
from claim_flow.utils.concurrency import map_with_concurrency
from claim_flow.utils.hashing import file_sha256, sha256_text


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def convert_claim_documents(
    claim_id: str,
    documents: Sequence[Document | Mapping[str, Any]],
    hospital_id: str | None = None,
    extraction_engine: ExtractionEngine | None = None,
    llm_fallback: OllamaEnricher | None = None,
    document_concurrency: int | None = None,
) -> ClaimConversionOutput:
    """
    Convert every document of a claim into a validated claim bundle.

    Raises:
        InputValidationError: malformed claim id or document list; nothing is processed.
        DocumentExtractionError: a document's text could not be extracted at all.
    """
    docs = validate_request(claim_id, documents)
    hospital_id = hospital_id or settings.default_hospital_id
    template = get_hospital_template(hospital_id)
    concurrency = document_concurrency or settings.document_concurrency

    audit = AuditTrail()
    audit.record("convert_started", details={"claimId": claim_id, "documentsCount": len(docs)})

    with structlog.contextvars.bound_contextvars(claim_id=claim_id):
        log.info("pipeline.start", documents=len(docs), hospital_id=hospital_id, concurrency=concurrency)

        async def process(document: Document, index: int) -> PipelineDocumentResult:
            return await _process_document(
                claim_id,
                document,
                template=template,
                engine=extraction_engine,
                enricher=llm_fallback,
                audit=audit,
            )

        try:
            results = await map_with_concurrency(docs, concurrency, process)
        except DocumentExtractionError as exc:
            log.error("pipeline.aborted", file_name=exc.file_name, reason=exc.reason)
            raise

        bundles = [r.bundle for r in results]
        validation_report = validate_claim_bundles(bundles)
        compliance_report = evaluate_compliance(bundles, audit.events)
        successful = sum(1 for r in results if r.validation.passed)

        log.info(
            "pipeline.complete",
            documents=len(results),
            successful=successful,
            validation=validation_report.status,
            compliance=compliance_report.overall_status,
        )

    return ClaimConversionOutput(
        bundles=bundles,
        metadata=ConversionMetadata(
            claim_id=claim_id,
            hospital_id=hospital_id,
            template_id=template.id,
            documents_count=len(results),
            successful_count=successful,
            failed_count=len(results) - successful,
        ),
        results=results,
        audit_log=audit.events,
        validation_report=validation_report,
        compliance_report=compliance_report,
    )


def validate_request(claim_id: Any, documents: Any) -> list[Document]:
    """Collect every request violation, then raise them together."""
    violations: list[str] = []
    if not isinstance(claim_id, str) or not claim_id.strip():
        violations.append("claimId must be a non-empty string")

    if isinstance(documents, (str, bytes, Mapping)) or not isinstance(documents, Sequence) or not documents:
        violations.append("documents must be a non-empty array")
        raise InputValidationError(violations)

    parsed: list[Document] = []
    for i, item in enumerate(documents):
        if isinstance(item, Document):
            parsed.append(item)
            continue
        if not isinstance(item, Mapping):
            violations.append(f"documents[{i}] must be an object")
            continue
        file_name = item.get("fileName", item.get("file_name"))
        if not isinstance(file_name, str) or not file_name.strip():
            violations.append(f"documents[{i}] must have a valid fileName")
            continue
        try:
            parsed.append(Document.model_validate(dict(item)))
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            violations.append(f"documents[{i}] has invalid fields: {fields}")

    if violations:
        raise InputValidationError(violations)
    return parsed


def merge_enrichment(extracted: dict[str, Any], enriched: dict[str, Any]) -> dict[str, Any]:
    """Overlay non-empty LLM fields; a non-empty LLM observation list replaces the regex one."""
    merged = dict(extracted)
    for field in ENRICHABLE_FIELDS:
        value = enriched.get(field)
        if isinstance(value, str) and value.strip():
            merged[field] = value.strip()
    observations = enriched.get("observations")
    if isinstance(observations, list) and observations:
        merged["observations"] = observations[: settings.max_observations_per_report]
    return merged


def resolve_enriched_hi_type(current: HiType, candidate: HiType | str | None) -> HiType:
    """The LLM may settle an unknown type but never demote a known one."""
    if candidate is None or not str(candidate).strip():
        return current
    resolved = normalize_hi_type(str(candidate))
    return current if resolved == HiType.UNKNOWN else resolved


# ---------------------------------------------------------------------------
# Per-document steps
# ---------------------------------------------------------------------------


async def _process_document(
    claim_id: str,
    document: Document,
    *,
    template: HospitalTemplate,
    engine: ExtractionEngine | None,
    enricher: OllamaEnricher | None,
    audit: AuditTrail,
) -> PipelineDocumentResult:
    file_name = document.file_name

    # 1. Resolve text (inline, engine, or nothing)
    text, source_mode, extraction_metadata = await _resolve_text(document, engine)

    # 2. Content identity
    sha256 = await _resolve_sha256(claim_id, document, text)

    # 3. Classify + structured extraction + quality
    hi_type = detect_hi_type(text)
    extracted = extract_structured_data(hi_type, text, template)
    quality = evaluate_document_quality(hi_type, extracted, text, template)

    # 4. Optional LLM enrichment for documents that did not pass
    enriched = False
    if _should_enrich(enricher, quality.status, text):
        enrichment = await _enrich(enricher, text, hi_type, file_name)
        if enrichment is not None:
            extracted = merge_enrichment(extracted, enrichment.extracted)
            hi_type = resolve_enriched_hi_type(hi_type, enrichment.hi_type)
            quality = evaluate_document_quality(hi_type, extracted, text, template)
            enriched = True
            audit.record(
                "llm_enrichment_applied",
                document=file_name,
                details={"hiType": hi_type.value, **enrichment.diagnostics},
            )

    # 5. Map to a claim bundle
    mapping_type = hi_type if hi_type in SUPPORTED_HI_TYPES else HiType(settings.fallback_hi_type)
    bundle = map_to_claim_submission_bundle(
        claim_id,
        mapping_type,
        extracted,
        {
            "sha256": sha256,
            "fileName": file_name,
            "contentType": document.content_type,
            "content": document.base64_pdf or document.image_base64,
        },
    )
    audit.record("bundle_generated", document=file_name, details={"hiType": mapping_type.value, "sha256": sha256})

    # 6. Validate + per-document compliance
    validation = validate_claim_bundle(bundle)
    compliance = evaluate_compliance([bundle], audit.events)

    audit.record(
        "document_converted",
        document=file_name,
        details={"hiType": hi_type.value, "enriched": enriched, "validation": validation.status},
    )
    log.info(
        "pipeline.document_converted",
        file_name=file_name,
        hi_type=hi_type.value,
        source_mode=source_mode,
        quality=quality.status.value,
        enriched=enriched,
        validation=validation.status,
    )

    return PipelineDocumentResult(
        bundle=bundle,
        hi_type=hi_type,
        source_document=SourceDocumentRef(sha256=sha256, file_name=file_name),
        extraction=ExtractionSummary(text_length=len(text), source_mode=source_mode, metadata=extraction_metadata),
        extracted=extracted,
        quality=quality,
        enriched=enriched,
        validation=validation,
        compliance=compliance,
    )


async def _resolve_text(
    document: Document,
    engine: ExtractionEngine | None,
) -> tuple[str, str, dict[str, Any] | None]:
    if document.text is not None:
        return document.text, "provided", None
    if engine is None:
        return "", "missing", {"reason": "extraction_engine_missing"}

    result = await engine.extract(document)
    match result.outcome():
        case Fatal(reason=reason, metadata=metadata):
            raise DocumentExtractionError(document.file_name, reason, metadata)
        case Recoverable(reason=reason):
            log.warning("pipeline.no_text_extracted", file_name=document.file_name, reason=reason)
        case Ok():
            pass

    metadata = result.metadata.model_dump(mode="json", by_alias=True, exclude_none=True)
    return result.text, result.mode.value, metadata


async def _resolve_sha256(claim_id: str, document: Document, text: str) -> str:
    if document.sha256 and document.sha256.strip():
        return document.sha256.strip()
    if text:
        return sha256_text(text)
    if document.file_path:
        try:
            return await asyncio.to_thread(file_sha256, Path(document.file_path))
        except OSError as exc:
            log.warning("pipeline.read_file_for_sha256_failed", file_path=document.file_path, error=str(exc))
    if document.base64_pdf:
        return sha256_text(document.base64_pdf)
    if document.image_base64:
        return sha256_text(document.image_base64)

    log.warning("pipeline.sha256_synthetic_seed", file_name=document.file_name)
    return sha256_text(f"{claim_id}:{document.file_name or 'unknown'}:{text}")


def _should_enrich(enricher: OllamaEnricher | None, status: QualityStatus, text: str) -> bool:
    if enricher is None or status == QualityStatus.PASS:
        return False
    return len(text.strip()) >= settings.llm_enrichment_min_text_length


async def _enrich(
    enricher: OllamaEnricher,
    text: str,
    hi_type: HiType,
    file_name: str,
) -> EnrichmentResult | None:
    try:
        return await enricher.enhance(text, hi_type, file_name)
    except Exception as exc:  # noqa: BLE001
        log.warning("pipeline.enrichment_failed", file_name=file_name, error=str(exc))
        return None
