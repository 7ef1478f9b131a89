from claim_flow.pipeline.classifier import detect_hi_type
from claim_flow.pipeline.clinical_extractor import extract_structured_data
from claim_flow.pipeline.quality import evaluate_document_quality
from claim_flow.pipeline.enrichment import OllamaEnricher
from claim_flow.pipeline.fhir_mapper import map_to_claim_submission_bundle
from claim_flow.pipeline.bundle_validator import validate_claim_bundle, validate_claim_bundles
from claim_flow.pipeline.compliance import evaluate_compliance
from claim_flow.pipeline.orchestrator import convert_claim_documents

__all__ = [
    "detect_hi_type",
    "extract_structured_data",
    "evaluate_document_quality",
    "OllamaEnricher",
    "map_to_claim_submission_bundle",
    "validate_claim_bundle",
    "validate_claim_bundles",
    "evaluate_compliance",
    "convert_claim_documents",
]
