"""Centralised settings loaded from environment / .env file."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # silently ignore env vars not declared as fields
    )

    # OCR backend (Ollama-compatible vision model)
    ocr_base_url: str = "http://127.0.0.1:11434"
    ocr_model: str = "dcarrascosa/medgemma-1.5-4b-it:Q8_0"
    ocr_max_pages: int = Field(5, ge=1)
    ocr_pdf_dpi: int = Field(300, ge=72)
    ocr_page_concurrency: int = Field(2, ge=1)
    ocr_request_timeout_s: float = Field(180.0, gt=0)
    ocr_page_retries: int = Field(2, ge=0)
    ocr_for_all_pdfs: bool = False  # OCR-first for every PDF/image input

    # Pipeline
    document_concurrency: int = Field(2, ge=1)
    max_observations_per_report: int = 25
    low_confidence_threshold: float = 0.7
    fallback_hi_type: str = "discharge_summary"  # used to map undetected documents
    default_hospital_id: str = "default"

    # LLM enrichment
    llm_enrichment_enabled: bool = True
    llm_base_url: str = "http://127.0.0.1:11434"
    llm_model: str = "gemma3:4b"
    llm_timeout_s: float = 120.0
    llm_retries: int = Field(2, ge=0)
    llm_enrichment_min_text_length: int = 1
    llm_trace_path: Path | None = None

    # Logging
    log_level: str = "INFO"


settings = Settings()  # type: ignore[call-arg]
