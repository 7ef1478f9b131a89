"""
OCR backend client for an Ollama-compatible vision model server.

Per OCR call the client walks this state machine:

  1. Model resolution   use the cached operable model, else GET /api/tags and
                        pick the configured model, a known-compatible
                        fallback, or the first listed model.
  2. Mode negotiation   try the last successful request shape (chat or
                        generate) first; a plain 404 falls through to the
                        other shape inside the same attempt.
  3. Attempt loop       page_retries + 1 attempts, each under its own timeout.
  4. Model-missing      force a tag refresh and retry at once with the new
                        model when it differs from the one just tried.
  5. Retry policy       connectivity errors, timeouts and 429/5xx back off
                        linearly (0.6 s x attempt, capped at 2 s); anything
                        else is terminal.

PDFs are rasterized into a temporary directory (always removed), sent as
one multi-image request, and re-sent page by page over a bounded pool when
the batch request yields nothing. Page text is reassembled in page order.

extract() never raises for backend trouble: failures are recorded as
diagnostics and an empty result is returned, leaving the fatal/non-fatal
decision to the extraction engine.
"""

from __future__ import annotations

import asyncio
import base64
import shutil
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from claim_flow.config import settings
from claim_flow.errors import OcrRequestError, OcrTimeoutError, is_retryable_ocr_error
from claim_flow.extraction.rasterizer import Rasterizer, rasterize_pdf
from claim_flow.logging import log
from claim_flow.prompts.ocr import build_ocr_prompt
from claim_flow.schemas.document import DiagnosticBundle, DiagnosticStage, Document, OcrOutput
from claim_flow.utils.concurrency import map_with_concurrency
from claim_flow.utils.ollama import (
    build_api_url,
    error_details,
    model_names,
    normalize_base_url,
    read_payload,
    response_text,
)

# Known-compatible vision models, in preference order.
FALLBACK_MODELS = ("medgemma:4b", "medgemma", "gemma3:4b", "gemma3")

IMAGE_SUFFIXES = frozenset({".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".webp"})

_linear_backoff = wait_incrementing(start=0.6, increment=0.6, max=2.0)


class RequestMode(StrEnum):
    CHAT = "chat"
    GENERATE = "generate"


class OcrHealth(BaseModel):
    ok: bool
    base_url: str
    model: str
    effective_model: str | None = None
    model_fallback: bool = False
    error: str | None = None


class _ModelSwitched(Exception):
    """Internal signal: retry immediately with a freshly resolved model."""

    def __init__(self, previous: str, current: str) -> None:
        self.previous = previous
        self.current = current
        super().__init__(f"model switched from {previous} to {current}")


@dataclass
class _PageResult:
    index: int
    image_path: Path
    text: str
    error: Exception | None = None


def estimate_confidence(text: str) -> float:
    """Rough OCR confidence from the amount of text recovered."""
    length = len((text or "").strip())
    if length == 0:
        return 0.0
    if length > 600:
        return 0.9
    if length > 200:
        return 0.8
    if length > 50:
        return 0.65
    return 0.45


def _normalize_model_name(name: str | None) -> str:
    return (name or "").strip().lower()


def _ocr_wait(retry_state: RetryCallState) -> float:
    outcome = retry_state.outcome
    if outcome is not None and isinstance(outcome.exception(), _ModelSwitched):
        return 0.0
    return _linear_backoff(retry_state)


def _should_retry(exc: BaseException) -> bool:
    return isinstance(exc, _ModelSwitched) or is_retryable_ocr_error(exc)


def _read_base64(path: Path) -> str:
    return base64.b64encode(path.read_bytes()).decode("ascii")


def _is_image_path(path: str) -> bool:
    return Path(path).suffix.lower() in IMAGE_SUFFIXES


class OcrBackendClient:
    """
    Client for one OCR backend.

    model_cache, tags_cache and mode_cache are soft caches shared by every
    call made through this instance. They are not locked: a stale value
    costs at most one extra attempt.
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        *,
        max_pages: int | None = None,
        pdf_dpi: int | None = None,
        page_concurrency: int | None = None,
        request_timeout: float | None = None,
        page_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
        rasterizer: Rasterizer | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.base_url = normalize_base_url(base_url or settings.ocr_base_url)
        self.model = model or settings.ocr_model
        self.max_pages = max_pages if max_pages is not None else settings.ocr_max_pages
        self.pdf_dpi = pdf_dpi if pdf_dpi is not None else settings.ocr_pdf_dpi
        self.page_concurrency = max(
            1, page_concurrency if page_concurrency is not None else settings.ocr_page_concurrency
        )
        self.request_timeout = request_timeout if request_timeout is not None else settings.ocr_request_timeout_s
        self.page_retries = page_retries if page_retries is not None else settings.ocr_page_retries

        self.model_cache: str | None = None
        self.tags_cache: list[str] | None = None
        self.mode_cache: RequestMode = RequestMode.CHAT

        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(transport=transport, timeout=self.request_timeout)
        self._rasterizer = rasterizer or rasterize_pdf
        self._sleep = sleep

    async def __aenter__(self) -> OcrBackendClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Model resolution
    # ------------------------------------------------------------------

    async def fetch_tags(self, force_refresh: bool = False) -> list[str]:
        """Names of the models the backend has pulled (GET /api/tags)."""
        if not force_refresh and self.tags_cache is not None:
            return self.tags_cache
        url = build_api_url(self.base_url, "/api/tags")
        response = await self._http.get(url)
        if response.is_error:
            raise OcrRequestError(f"status_{response.status_code}", status=response.status_code, endpoint=url)
        self.tags_cache = model_names(response.json())
        return self.tags_cache

    def select_model(self, models: list[str]) -> str:
        configured = _normalize_model_name(self.model)
        if configured and any(_normalize_model_name(m) == configured for m in models):
            return self.model
        for candidate in FALLBACK_MODELS:
            for name in models:
                if _normalize_model_name(name) == candidate:
                    return name
        return models[0] if models else self.model

    async def resolve_model(self) -> str:
        """Operable model name, from cache when available."""
        return await self._resolve_model(force_refresh=False)

    async def refresh_model(self) -> str:
        """Re-read the backend's model list and re-select the operable model."""
        return await self._resolve_model(force_refresh=True)

    async def _resolve_model(self, force_refresh: bool) -> str:
        if not force_refresh and self.model_cache:
            return self.model_cache
        try:
            models = await self.fetch_tags(force_refresh=force_refresh)
        except (httpx.HTTPError, OcrRequestError, ValueError) as exc:
            log.warning("ocr_client.tags_unavailable", base_url=self.base_url, error=str(exc))
            self.model_cache = self.model
            return self.model
        self.model_cache = self.select_model(models)
        if self.model_cache != self.model:
            log.info("ocr_client.model_fallback", configured=self.model, effective=self.model_cache)
        return self.model_cache

    async def check_health(self) -> OcrHealth:
        log.info("ocr_client.health_check_started", base_url=self.base_url, model=self.model)
        try:
            models = await self.fetch_tags(force_refresh=True)
        except (httpx.HTTPError, OcrRequestError, ValueError) as exc:
            log.warning("ocr_client.health_check_failed", base_url=self.base_url, error=str(exc))
            return OcrHealth(ok=False, base_url=self.base_url, model=self.model, error=str(exc) or "health_check_failed")

        selected = self.select_model(models)
        self.model_cache = selected
        configured_present = any(_normalize_model_name(m) == _normalize_model_name(self.model) for m in models)
        health = OcrHealth(
            ok=True,
            base_url=self.base_url,
            model=self.model,
            effective_model=selected,
            model_fallback=not configured_present and selected != self.model,
        )
        log.info("ocr_client.health_check_completed", effective_model=selected, model_fallback=health.model_fallback)
        return health

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def ocr_images(self, images: list[str]) -> str:
        """
        OCR one or more base64-encoded images in a single request.

        Raises the last error once the attempt budget is spent or a
        terminal error occurs.
        """
        images = [image for image in images if image]
        if not images:
            return ""

        attempts = max(1, self.page_retries + 1)
        active_model = await self.resolve_model()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=_ocr_wait,
            retry=retry_if_exception(_should_retry),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                log.debug("ocr_client.attempt_started", attempt=number, attempts=attempts, model=active_model)
                try:
                    return await self._timed_request(active_model, images)
                except OcrRequestError as exc:
                    if not exc.is_model_missing or number >= attempts:
                        raise
                    fallback = await self.refresh_model()
                    if not fallback or fallback == active_model:
                        raise
                    previous, active_model = active_model, fallback
                    raise _ModelSwitched(previous, active_model) from exc
        return ""  # unreachable: AsyncRetrying either returns or reraises

    async def _timed_request(self, model: str, images: list[str]) -> str:
        try:
            async with asyncio.timeout(self.request_timeout):
                return await self._request_any_mode(model, images)
        except TimeoutError as exc:
            raise OcrTimeoutError(
                f"OCR request timed out after {int(self.request_timeout * 1000)}ms"
            ) from exc

    async def _request_any_mode(self, model: str, images: list[str]) -> str:
        first = self.mode_cache
        second = RequestMode.GENERATE if first == RequestMode.CHAT else RequestMode.CHAT
        try:
            return await self._request(first, model, images)
        except OcrRequestError as exc:
            if exc.status != 404 or exc.is_model_missing:
                raise
            log.info("ocr_client.mode_fallback", failed_mode=first.value, next_mode=second.value)
        return await self._request(second, model, images)

    async def _request(self, mode: RequestMode, model: str, images: list[str]) -> str:
        prompt = build_ocr_prompt(len(images))
        options = {"temperature": 0}
        if mode == RequestMode.GENERATE:
            url = build_api_url(self.base_url, "/api/generate")
            body = {"model": model, "stream": False, "options": options, "prompt": prompt, "images": images}
        else:
            url = build_api_url(self.base_url, "/api/chat")
            body = {
                "model": model,
                "stream": False,
                "options": options,
                "messages": [{"role": "user", "content": prompt, "images": images}],
            }

        response = await self._http.post(url, json=body)
        payload, raw = read_payload(response)
        if response.is_error:
            details = error_details(payload, raw).strip()
            message = f"OCR request failed (status {response.status_code}, mode {mode.value}, endpoint {url})"
            if details:
                message = f"{message}: {details}"
            raise OcrRequestError(
                message, status=response.status_code, details=details, endpoint=url, mode=mode.value
            )

        self.mode_cache = mode
        return response_text(payload, raw).strip()

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, _ModelSwitched):
            log.info("ocr_client.model_switched", previous=exc.previous, current=exc.current)
            return
        log.warning(
            "ocr_client.retrying",
            attempt=retry_state.attempt_number,
            reason=str(exc) if exc else "retryable_error",
        )

    # ------------------------------------------------------------------
    # Document extraction
    # ------------------------------------------------------------------

    async def extract(self, document: Document) -> OcrOutput:
        """OCR a PDF or image document. Never raises for backend failures."""
        diagnostics = DiagnosticBundle(engine="medgemma", base_url=self.base_url, model=self.model)
        log.info(
            "ocr_client.extract_started",
            file_name=document.file_name,
            has_file_path=bool(document.file_path),
            has_base64_pdf=bool(document.base64_pdf),
            has_image_base64=bool(document.image_base64),
            max_pages=self.max_pages,
            page_concurrency=self.page_concurrency,
        )

        work_dir = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix="claim-flow-ocr-"))
        try:
            diagnostics.effective_model = await self.resolve_model()
            pdf_path = await self._prepare_pdf(document, work_dir)
            if pdf_path is not None:
                text = await self._extract_pdf(pdf_path, work_dir, diagnostics)
            else:
                image_path = await self._prepare_image(document, work_dir)
                if image_path is None:
                    diagnostics.add_error(
                        DiagnosticStage.INPUT_VALIDATION,
                        "No usable file_path/base64_pdf/image_base64 input provided",
                    )
                    return OcrOutput(diagnostics=diagnostics)
                text = await self._extract_image(image_path, diagnostics)
        except Exception as exc:  # noqa: BLE001
            log.warning("ocr_client.extract_failed", file_name=document.file_name, error=str(exc))
            diagnostics.add_error(DiagnosticStage.EXTRACT, str(exc) or type(exc).__name__)
            return OcrOutput(diagnostics=diagnostics)
        finally:
            await asyncio.to_thread(shutil.rmtree, work_dir, ignore_errors=True)

        diagnostics.effective_model = self.model_cache or diagnostics.effective_model
        log.info("ocr_client.extract_done", file_name=document.file_name, text_length=len(text.strip()))
        return OcrOutput(text=text, confidence=estimate_confidence(text), diagnostics=diagnostics)

    async def _prepare_pdf(self, document: Document, work_dir: Path) -> Path | None:
        if document.file_path and not _is_image_path(document.file_path):
            return Path(document.file_path)
        if document.base64_pdf:
            target = work_dir / "input.pdf"
            await asyncio.to_thread(target.write_bytes, base64.b64decode(document.base64_pdf))
            return target
        return None

    async def _prepare_image(self, document: Document, work_dir: Path) -> Path | None:
        if document.image_base64:
            target = work_dir / "input-image.png"
            await asyncio.to_thread(target.write_bytes, base64.b64decode(document.image_base64))
            return target
        if document.file_path:
            return Path(document.file_path)
        return None

    async def _extract_image(self, image_path: Path, diagnostics: DiagnosticBundle) -> str:
        payload = await asyncio.to_thread(_read_base64, image_path)
        try:
            return await self.ocr_images([payload])
        except Exception as exc:
            if not is_retryable_ocr_error(exc):
                raise
            log.warning("ocr_client.image_unreachable", image=image_path.name, error=str(exc))
            diagnostics.add_error(DiagnosticStage.PAGE_OCR, str(exc), image_path=str(image_path))
            diagnostics.add_error(
                DiagnosticStage.OCR_BACKEND_UNREACHABLE, f"Unable to reach OCR endpoint at {self.base_url}"
            )
            return ""

    async def _extract_pdf(self, pdf_path: Path, work_dir: Path, diagnostics: DiagnosticBundle) -> str:
        image_paths = await asyncio.to_thread(self._rasterizer, pdf_path, work_dir, self.pdf_dpi, self.max_pages)
        log.info("ocr_client.pdf_rasterized", pdf=pdf_path.name, pages=len(image_paths))
        if not image_paths:
            diagnostics.add_error(DiagnosticStage.PDF_TO_IMAGE, "No PNG pages generated from PDF")
            return ""

        payloads = await map_with_concurrency(
            image_paths,
            self.page_concurrency,
            lambda path, _index: asyncio.to_thread(_read_base64, path),
        )

        text = ""
        try:
            text = await self.ocr_images(payloads)
        except Exception as exc:  # noqa: BLE001
            log.warning("ocr_client.batch_failed", pages=len(payloads), error=str(exc))
            diagnostics.add_error(DiagnosticStage.PDF_BATCH_OCR, str(exc), pages_tried=len(payloads))

        if text.strip():
            return text

        log.info("ocr_client.page_fallback", pages=len(payloads))

        async def ocr_page(payload: str, index: int) -> _PageResult:
            try:
                page_text = await self.ocr_images([payload])
            except Exception as exc:  # noqa: BLE001
                log.warning("ocr_client.page_failed", page=index + 1, error=str(exc))
                return _PageResult(index, image_paths[index], "", exc)
            return _PageResult(index, image_paths[index], page_text or "")

        results = await map_with_concurrency(payloads, self.page_concurrency, ocr_page)

        unreachable = 0
        for result in results:
            if result.error is not None:
                if is_retryable_ocr_error(result.error):
                    unreachable += 1
                diagnostics.add_error(
                    DiagnosticStage.PAGE_OCR, str(result.error) or "page_ocr_failed", image_path=str(result.image_path)
                )

        # results are index-ordered, whatever order the pages finished in
        text = "\n".join(r.text for r in results if r.text.strip())
        if not text.strip():
            diagnostics.add_error(
                DiagnosticStage.PDF_OCR, "No OCR text extracted from generated pages", pages_tried=len(image_paths)
            )
        if unreachable == len(image_paths):
            diagnostics.add_error(
                DiagnosticStage.OCR_BACKEND_UNREACHABLE, f"Unable to reach OCR endpoint at {self.base_url}"
            )
        return text
