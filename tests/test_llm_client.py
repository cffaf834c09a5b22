# tests/test_llm_client.py
"""
Tests for the OpenRouter client and the classification/extraction agents.

HTTP is served by httpx.MockTransport; agents get a mocked client.
"""

import json

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from ai.agents import MAX_TEXT_CHARS, DocumentClassificationAgent, ExtractionAgent
from ai.llm_client import LLMClient, LLMConfig, LLMResult, parse_json_response
from ai.models import ExtractedBillData
from domain.enums import DocumentType


def completion(content: str, prompt_tokens: int = 120, completion_tokens: int = 40) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


def client_for(handler, api_key: str = "test-key") -> LLMClient:
    config = LLMConfig(api_key=api_key, endpoint="https://llm.test/chat", retry_delays=[0, 0])
    return LLMClient(config, transport=httpx.MockTransport(handler))


# ============================================
# parse_json_response
# ============================================

class TestParseJsonResponse:

    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_code_fence(self):
        assert parse_json_response('```json\n{"documentType": "BILL"}\n```') == {"documentType": "BILL"}

    def test_json_inside_prose(self):
        assert parse_json_response('Sure! Here it is: {"a": {"b": 2}} Hope this helps.') == {"a": {"b": 2}}

    @pytest.mark.parametrize("content", [None, "", "no json here", "[1, 2]", "{broken"])
    def test_unparseable(self, content):
        assert parse_json_response(content) is None


# ============================================
# LLMClient
# ============================================

class TestLLMClient:

    @pytest.mark.asyncio
    async def test_successful_completion(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion('{"ok": true}'))

        result = await client_for(handler).complete("fast-model", "system", "user")

        assert result.success
        assert result.content == '{"ok": true}'
        assert result.tokens_in == 120
        assert result.tokens_out == 40
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["model"] == "fast-model"
        assert seen["body"]["messages"][0] == {"role": "system", "content": "system"}
        assert seen["body"]["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_json_mode_off(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion("AUTO_APPROVE"))

        await client_for(handler).complete("m", "s", "u", json_mode=False)
        assert "response_format" not in seen["body"]

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, json={"error": "rate limited"})
            return httpx.Response(200, json=completion("{}"))

        result = await client_for(handler).complete("m", "s", "u")

        assert result.success
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        result = await client_for(handler).complete("m", "s", "u")

        assert not result.success
        assert result.error == "Rate limit exceeded after all retries"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_http_error(self):
        result = await client_for(lambda request: httpx.Response(500, text="upstream exploded")).complete(
            "m", "s", "u"
        )

        assert not result.success
        assert result.error == "HTTP 500: upstream exploded"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = await client_for(handler).complete("m", "s", "u")

        assert not result.success
        assert result.error.startswith("Timeout after")

    @pytest.mark.asyncio
    async def test_missing_api_key_makes_no_request(self):
        handler = MagicMock()
        result = await client_for(handler, api_key="").complete("m", "s", "u")

        assert not result.success
        assert result.error == "OPENROUTER_API_KEY is not set"
        handler.assert_not_called()


# ============================================
# Agents
# ============================================

def mocked_client(content: str = "", success: bool = True) -> MagicMock:
    client = MagicMock()
    client.complete = AsyncMock(return_value=LLMResult(success=success, content=content, error="down"))
    return client


class TestClassificationAgent:

    @pytest.mark.asyncio
    async def test_classifies(self):
        client = mocked_client('{"documentType": "bill", "confidence": 0.93, "reasoning": "Supplier invoice"}')
        result = await DocumentClassificationAgent(client, model="fast").classify("Engie invoice")

        assert result.document_type == DocumentType.BILL
        assert result.confidence == pytest.approx(0.93)
        assert result.reasoning == "Supplier invoice"
        assert client.complete.await_args.args[0] == "fast"

    @pytest.mark.asyncio
    async def test_confidence_is_clamped(self):
        client = mocked_client('{"documentType": "RECEIPT", "confidence": 7}')
        result = await DocumentClassificationAgent(client).classify("text")
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_unparseable_answer_is_unknown(self):
        result = await DocumentClassificationAgent(mocked_client("I think it is a bill")).classify("text")

        assert result.document_type == DocumentType.UNKNOWN
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_failed_call_is_unknown(self):
        result = await DocumentClassificationAgent(mocked_client(success=False)).classify("text")

        assert result.document_type == DocumentType.UNKNOWN
        assert result.reasoning == "down"

    @pytest.mark.asyncio
    async def test_long_documents_are_truncated(self):
        client = mocked_client('{"documentType": "BILL", "confidence": 0.9}')
        await DocumentClassificationAgent(client).classify("x" * (MAX_TEXT_CHARS + 500))

        user_prompt = client.complete.await_args.args[2]
        assert user_prompt == "DOCUMENT:\n" + "x" * MAX_TEXT_CHARS


class TestExtractionAgent:

    @pytest.mark.asyncio
    async def test_extracts_camel_case_fields(self):
        client = mocked_client(json.dumps({
            "supplierName": "Engie",
            "supplierVatNumber": "BE0403170701",
            "amount": "100.00",
            "vatAmount": "21.00",
            "lineItems": [{"description": "Electricity", "quantity": "1", "total": "100.00"}],
            "confidence": 0.88,
        }))
        data = await ExtractionAgent(client).extract(DocumentType.BILL, "text", "expert")

        assert isinstance(data, ExtractedBillData)
        assert data.supplier_name == "Engie"
        assert data.line_items[0].quantity == 1.0
        assert data.confidence == pytest.approx(0.88)

    @pytest.mark.asyncio
    async def test_feedback_is_appended_to_system_prompt(self):
        client = mocked_client('{"supplierName": "Engie"}')
        await ExtractionAgent(client).extract(DocumentType.BILL, "text", "expert", feedback="CORRECTION REQUIRED")

        system_prompt = client.complete.await_args.args[1]
        assert system_prompt.endswith("\n\nCORRECTION REQUIRED")

    @pytest.mark.asyncio
    async def test_failed_call_gives_empty_extraction(self):
        data = await ExtractionAgent(mocked_client(success=False)).extract(DocumentType.BILL, "text", "expert")

        assert isinstance(data, ExtractedBillData)
        assert data.is_empty

    @pytest.mark.asyncio
    async def test_unknown_type_raises(self):
        with pytest.raises(ValueError):
            await ExtractionAgent(mocked_client()).extract(DocumentType.UNKNOWN, "text", "expert")
