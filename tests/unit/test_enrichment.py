"""Unit tests for LLM enrichment: response parsing, screening and the Ollama client."""

import json

import httpx
import pytest

from claim_flow.pipeline.enrichment import (
    OllamaEnricher,
    looks_garbage,
    normalize_hi_type,
    safe_json_parse,
    sanitize_payload,
)
from claim_flow.schemas.claim import HiType

BASE_URL = "http://llm.test"

ANSWER = {
    "hiType": "Discharge Summary",
    "extracted": {
        "patientName": "Ravi Kumar",
        "patientLocalId": "UH-2024-0042",
        "admissionDate": "2024-01-10",
        "finalDiagnosis": "PATIENT NAME: XYZ",
        "observations": [
            {"name": "Hemoglobin", "value": 13.5, "unit": "g/dL"},
            {"name": "12345", "value": "1", "unit": ""},
            {"name": "Glucose", "value": "", "unit": "mg/dL"},
        ],
    },
}


def _chat_reply(content: str) -> httpx.Response:
    return httpx.Response(200, json={"message": {"role": "assistant", "content": content}})


def _enricher(handler, **kwargs) -> OllamaEnricher:
    kwargs.setdefault("trace_path", None)
    return OllamaEnricher(BASE_URL, "gemma-test", transport=httpx.MockTransport(handler), **kwargs)


class TestLooksGarbage:
    @pytest.mark.parametrize("value", ["PATIENT NAME: XYZ", "Gender : M Age:", "aaaaaaa", "--/--", "ABCDEFGHIJKLM"])
    def test_garbage(self, value):
        assert looks_garbage(value)

    @pytest.mark.parametrize("value", ["Ravi Kumar", "Anita Sharma", "Community acquired pneumonia", "x", None])
    def test_clean(self, value):
        assert not looks_garbage(value)


class TestSafeJsonParse:
    def test_code_fence(self):
        assert safe_json_parse('```json\n{"a": 1}\n```') == {"a": 1}

    def test_surrounding_prose(self):
        assert safe_json_parse('Here you go: {"a": {"b": 2}} hope it helps') == {"a": {"b": 2}}

    @pytest.mark.parametrize("raw", [None, "", "no json here", "{broken"])
    def test_unparseable(self, raw):
        assert safe_json_parse(raw) is None


class TestSanitizePayload:
    def test_fields_and_observations(self):
        hi_type, extracted = sanitize_payload(ANSWER)
        assert hi_type == HiType.DISCHARGE_SUMMARY
        assert extracted["patientName"] == "Ravi Kumar"
        # identifiers and dates are kept verbatim
        assert extracted["patientLocalId"] == "UH-2024-0042"
        assert extracted["admissionDate"] == "2024-01-10"
        assert extracted["finalDiagnosis"] is None
        assert extracted["observations"] == [{"name": "Hemoglobin", "value": "13.5", "unit": "g/dL"}]

    def test_flat_payload(self):
        hi_type, extracted = sanitize_payload({"hiType": "lab_report", "testName": "HbA1c"})
        assert hi_type == HiType.DIAGNOSTIC_REPORT
        assert extracted["testName"] == "HbA1c"
        assert extracted["observations"] == []

    def test_not_an_object(self):
        assert sanitize_payload(["a"]) is None

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("discharge_summary", HiType.DISCHARGE_SUMMARY),
            ("DiagnosticReport", HiType.DIAGNOSTIC_REPORT),
            ("prescription", HiType.UNKNOWN),
            (None, HiType.UNKNOWN),
        ],
    )
    def test_normalize_hi_type(self, value, expected):
        assert normalize_hi_type(value) == expected


class TestOllamaEnricher:
    async def test_enhance(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return _chat_reply("```json\n" + json.dumps(ANSWER) + "\n```")

        async with _enricher(handler) as enricher:
            result = await enricher.enhance("DISCHARGE SUMMARY ...", HiType.DISCHARGE_SUMMARY, "a.pdf")

        assert result.hi_type == HiType.DISCHARGE_SUMMARY
        assert result.extracted["patientName"] == "Ravi Kumar"
        assert result.diagnostics == {"provider": "ollama", "model": "gemma-test", "status": "parsed"}
        assert bodies[0]["format"] == "json"
        assert bodies[0]["options"]["temperature"] == 0
        assert "DISCHARGE SUMMARY ..." in bodies[0]["messages"][0]["content"]

    async def test_empty_text_makes_no_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with _enricher(handler) as enricher:
            assert await enricher.enhance("  \r\n ") is None

    async def test_http_error_returns_none(self):
        async with _enricher(lambda request: httpx.Response(500, text="boom")) as enricher:
            assert await enricher.enhance("some text") is None

    async def test_unparseable_answer_returns_none(self):
        async with _enricher(lambda request: _chat_reply("I cannot help with that")) as enricher:
            assert await enricher.enhance("some text") is None

    async def test_transport_errors_are_retried(self, fake_sleep, sleeps):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return _chat_reply(json.dumps(ANSWER))

        async with _enricher(handler, retries=2, sleep=fake_sleep) as enricher:
            result = await enricher.enhance("some text")

        assert result is not None
        assert len(calls) == 2
        assert sleeps == [0.5]

    async def test_retries_exhausted(self, fake_sleep, sleeps):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _enricher(handler, retries=1, sleep=fake_sleep) as enricher:
            assert await enricher.enhance("some text") is None
        assert len(sleeps) == 1

    async def test_trace_file(self, tmp_path):
        trace = tmp_path / "llm-trace.ndjson"
        async with _enricher(lambda request: _chat_reply(json.dumps(ANSWER)), trace_path=trace) as enricher:
            await enricher.enhance("some text", source_file_name="a.pdf")
            await enricher.enhance("other text", source_file_name="b.pdf")

        entries = [json.loads(line) for line in trace.read_text().splitlines()]
        assert [e["sourceFileName"] for e in entries] == ["a.pdf", "b.pdf"]
        assert entries[0]["status"] == "parsed"
        assert entries[0]["sanitizedPayload"]["hiType"] == "discharge_summary"
