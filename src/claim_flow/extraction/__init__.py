from claim_flow.extraction.adapters import DigitalTextAdapter, OcrAdapter, TextSourceAdapter
from claim_flow.extraction.engine import ExtractionEngine, ExtractionStrategy
from claim_flow.extraction.ocr_client import OcrBackendClient, OcrHealth, estimate_confidence

__all__ = [
    "DigitalTextAdapter",
    "OcrAdapter",
    "TextSourceAdapter",
    "ExtractionEngine",
    "ExtractionStrategy",
    "OcrBackendClient",
    "OcrHealth",
    "estimate_confidence",
]
