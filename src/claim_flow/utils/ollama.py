"""Helpers shared by the Ollama-backed OCR and enrichment clients."""

from __future__ import annotations

import json
from typing import Any

import httpx


def normalize_base_url(base_url: str) -> str:
    return (base_url or "").strip().rstrip("/")


def build_api_url(base_url: str, path: str) -> str:
    """
    Join *base_url* and an ``/api/...`` *path*.

    Accepts both ``http://host:11434`` and ``http://host:11434/api`` as the
    base without ever producing ``/api/api/...``.
    """
    base = normalize_base_url(base_url)
    if not path.startswith("/"):
        path = "/" + path
    if base.endswith("/api") and path.startswith("/api/"):
        path = path[len("/api"):]
    return base + path


def model_names(payload: Any) -> list[str]:
    """Model names from a ``GET /api/tags`` payload."""
    models = payload.get("models") if isinstance(payload, dict) else None
    if not isinstance(models, list):
        return []
    names = []
    for item in models:
        name = item.get("name") if isinstance(item, dict) else None
        if isinstance(name, str) and name.strip():
            names.append(name.strip())
    return names


def read_payload(response: httpx.Response) -> tuple[Any, str]:
    """Return ``(parsed_json_or_None, raw_text)`` for *response*."""
    raw = response.text
    try:
        return json.loads(raw), raw
    except ValueError:
        return None, raw


def response_text(payload: Any, raw: str = "") -> str:
    """Generated text from a chat or generate payload; *raw* when not JSON."""
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str):
                return content
            if content is not None:
                return json.dumps(content)
        response = payload.get("response")
        if isinstance(response, str):
            return response
        if response is not None:
            return json.dumps(response)
        return ""
    if payload is None:
        return raw
    return ""


def error_details(payload: Any, raw: str) -> str:
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return raw
