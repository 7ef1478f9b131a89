"""
LLM enrichment of weak extractions via an Ollama chat endpoint.

The model's JSON answer is parsed leniently (code fences and surrounding
prose are tolerated), then free-text fields are screened for OCR garbage
before they are merged into the extracted data. enhance() never raises:
any failure is logged and reported as ``None``.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from claim_flow.config import settings
from claim_flow.errors import EnrichmentError
from claim_flow.logging import log
from claim_flow.prompts.enrichment import build_enrichment_prompt
from claim_flow.schemas.claim import EnrichmentResult, HiType
from claim_flow.utils.ollama import build_api_url, normalize_base_url, read_payload, response_text

ENRICHABLE_FIELDS = (
    "patientName",
    "patientLocalId",
    "patientGender",
    "patientDob",
    "patientAddress",
    "hospitalName",
    "hospitalAddress",
    "attendingPhysician",
    "physicianRegNo",
    "admissionDate",
    "dischargeDate",
    "finalDiagnosis",
    "chiefComplaint",
    "procedureDone",
    "medications",
    "testName",
    "resultValue",
    "observationDate",
    "interpretation",
    "payerName",
    "policyNumber",
    "memberId",
)

# Identifiers, dates and values are digit-heavy by nature; only trimmed.
_VERBATIM_FIELDS = frozenset(
    {
        "patientLocalId",
        "patientDob",
        "physicianRegNo",
        "admissionDate",
        "dischargeDate",
        "resultValue",
        "observationDate",
        "policyNumber",
        "memberId",
    }
)

_GARBAGE_PATTERNS = [
    re.compile(r"^[A-Z]{5,}\s+[A-Z]{3,}\s*[A-Z]{3,}"),
    re.compile(r"^[A-Z]{5,}\s+[A-Z]{3,}?:"),
    re.compile(r"\b(Gender|Gendor|Genor)\b.*:", re.I),
    re.compile(r"[0-9]{4,}"),
    re.compile(r"^[^a-zA-Z]*$"),
]
_REPEATED_CHAR = re.compile(r"(.)\1{4,}")
_CODE_FENCE = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$", re.I)

_HI_TYPE_ALIASES = {
    "discharge_summary": HiType.DISCHARGE_SUMMARY,
    "discharge summary": HiType.DISCHARGE_SUMMARY,
    "dischargesummary": HiType.DISCHARGE_SUMMARY,
    "diagnostic_report": HiType.DIAGNOSTIC_REPORT,
    "diagnostic report": HiType.DIAGNOSTIC_REPORT,
    "diagnosticreport": HiType.DIAGNOSTIC_REPORT,
    "lab_report": HiType.DIAGNOSTIC_REPORT,
    "lab report": HiType.DIAGNOSTIC_REPORT,
}


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def looks_garbage(value: Any) -> bool:
    """True for strings that look like garbled OCR rather than a field value."""
    if not isinstance(value, str):
        return False
    trimmed = value.strip()
    if len(trimmed) < 2:
        return False
    if any(p.search(trimmed) for p in _GARBAGE_PATTERNS):
        return True
    uppercase = sum(1 for c in trimmed if "A" <= c <= "Z")
    if uppercase / len(trimmed) > 0.9 and len(trimmed) > 10:
        return True
    return bool(_REPEATED_CHAR.search(trimmed))


def safe_json_parse(raw: str | None) -> Any:
    """Parse *raw* as JSON, tolerating code fences and prose around the object."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    stripped = raw.strip()
    if fenced := _CODE_FENCE.match(stripped):
        stripped = fenced.group(1).strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass
    first, last = stripped.find("{"), stripped.rfind("}")
    if first < 0 or last <= first:
        return None
    try:
        return json.loads(stripped[first : last + 1])
    except json.JSONDecodeError:
        return None


def normalize_hi_type(value: Any) -> HiType:
    if not isinstance(value, str):
        return HiType.UNKNOWN
    return _HI_TYPE_ALIASES.get(value.strip().lower(), HiType.UNKNOWN)


def _clean_string(value: Any, screen: bool = True) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    return None if screen and looks_garbage(value) else value


def _sanitize_observation(item: Any) -> dict[str, str] | None:
    if not isinstance(item, dict):
        return None
    name = item.get("name").strip() if isinstance(item.get("name"), str) else ""
    value = item.get("value")
    value = str(value).strip() if isinstance(value, (str, int, float)) and not isinstance(value, bool) else ""
    unit = item.get("unit").strip() if isinstance(item.get("unit"), str) else ""
    if not name or not value or looks_garbage(name):
        return None
    if looks_garbage(unit) or len(unit) >= 20:
        unit = ""
    return {"name": name, "value": value, "unit": unit}


def sanitize_payload(payload: Any) -> tuple[HiType, dict[str, Any]] | None:
    """Screen a parsed model answer into ``(hi_type, extracted)``; None if unusable."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("extracted") if isinstance(payload.get("extracted"), dict) else payload

    extracted: dict[str, Any] = {
        field: _clean_string(data.get(field), screen=field not in _VERBATIM_FIELDS) for field in ENRICHABLE_FIELDS
    }
    observations = data.get("observations")
    if isinstance(observations, list):
        cleaned = (_sanitize_observation(o) for o in observations)
        extracted["observations"] = [o for o in cleaned if o][: settings.max_observations_per_report]
    else:
        extracted["observations"] = []
    return normalize_hi_type(payload.get("hiType")), extracted


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class OllamaEnricher:
    """Enriches extracted fields with a local Ollama text model."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        *,
        timeout: float | None = None,
        retries: int | None = None,
        trace_path: Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.base_url = normalize_base_url(base_url or settings.llm_base_url)
        self.model = model or settings.llm_model
        self.timeout = timeout if timeout is not None else settings.llm_timeout_s
        self.retries = retries if retries is not None else settings.llm_retries
        self.trace_path = trace_path if trace_path is not None else settings.llm_trace_path
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(transport=transport, timeout=self.timeout)
        self._sleep = sleep

    async def __aenter__(self) -> OllamaEnricher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def chat(self, prompt: str) -> tuple[Any, str]:
        """POST *prompt* to /api/chat in JSON mode; retries transport failures."""
        url = build_api_url(self.base_url, "/api/chat")
        body = {
            "model": self.model,
            "stream": False,
            "format": "json",
            "options": {"temperature": 0, "num_predict": 1024, "top_p": 0.9},
            "messages": [{"role": "user", "content": prompt}],
        }

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(httpx.TransportError),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                log.debug(
                    "enrichment.request",
                    model=self.model,
                    prompt_chars=len(prompt),
                    attempt=attempt.retry_state.attempt_number,
                )
                response = await self._http.post(url, json=body)
                if response.status_code >= 400:
                    raise EnrichmentError(f"Ollama request failed with status {response.status_code}")
                return read_payload(response)
        raise AssertionError("unreachable")  # pragma: no cover

    async def enhance(
        self,
        text: str | None,
        hi_type: HiType | str | None = None,
        source_file_name: str | None = None,
    ) -> EnrichmentResult | None:
        prompt_text = (text or "").replace("\r", "").strip()
        if not prompt_text:
            log.debug("enrichment.skipped_empty_text", file_name=source_file_name)
            return None

        log.info(
            "enrichment.start",
            file_name=source_file_name,
            hi_type=str(hi_type) if hi_type else None,
            chars=len(prompt_text),
            model=self.model,
        )
        try:
            payload, raw = await self.chat(build_enrichment_prompt(prompt_text, hi_type))
            content = response_text(payload, raw)
            sanitized = sanitize_payload(safe_json_parse(content))
            self._write_trace(
                source_file_name=source_file_name,
                hi_type=hi_type,
                prompt_chars=len(prompt_text),
                raw_content=content,
                sanitized=sanitized,
            )
        except Exception as exc:  # noqa: BLE001
            log.warning("enrichment.failed", file_name=source_file_name, error=str(exc))
            return None

        if sanitized is None:
            log.warning("enrichment.invalid_payload", file_name=source_file_name, content_chars=len(content))
            return None

        resolved, extracted = sanitized
        log.info("enrichment.done", file_name=source_file_name, hi_type=resolved.value)
        return EnrichmentResult(
            hi_type=resolved,
            extracted=extracted,
            diagnostics={"provider": "ollama", "model": self.model, "status": "parsed"},
        )

    def _write_trace(
        self,
        *,
        source_file_name: str | None,
        hi_type: HiType | str | None,
        prompt_chars: int,
        raw_content: str,
        sanitized: tuple[HiType, dict[str, Any]] | None,
    ) -> None:
        if self.trace_path is None:
            return
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sourceFileName": source_file_name,
            "model": self.model,
            "hiTypeInput": str(hi_type) if hi_type else None,
            "promptLength": prompt_chars,
            "rawContent": raw_content,
            "sanitizedPayload": {"hiType": sanitized[0], "extracted": sanitized[1]} if sanitized else None,
            "status": "parsed" if sanitized else "invalid_payload",
        }
        try:
            with Path(self.trace_path).open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry) + "\n")
        except OSError as exc:
            log.warning("enrichment.trace_write_failed", path=str(self.trace_path), error=str(exc))
