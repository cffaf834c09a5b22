# ai/llm_client.py
"""
OpenRouter chat-completions client used by every AI agent.

Handles:
- Retry with backoff on rate limits (HTTP 429)
- JSON response format
- Token and latency accounting per call

Usage:
    client = LLMClient()
    result = await client.complete(AI_FAST_MODEL, system_prompt, user_prompt)
    data = parse_json_response(result.content) if result.success else None
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from config import OPENROUTER_API_KEY, OPENROUTER_ENDPOINT

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


# ============================================
# Configuration
# ============================================

@dataclass
class LLMConfig:
    api_key: str
    endpoint: str = "https://openrouter.ai/api/v1/chat/completions"
    timeout: float = 60.0
    retry_delays: List[int] = field(default_factory=lambda: [2, 5, 10])
    temperature: float = 0.1

    @classmethod
    def from_env(cls) -> "LLMConfig":
        if not OPENROUTER_API_KEY:
            logger.warning("OPENROUTER_API_KEY is not set; AI processing will fail")
        return cls(api_key=OPENROUTER_API_KEY, endpoint=OPENROUTER_ENDPOINT)


# ============================================
# Result
# ============================================

@dataclass
class LLMResult:
    success: bool
    content: str = ""
    error: Optional[str] = None
    tokens_in: int = 0
    tokens_out: int = 0
    elapsed_ms: int = 0


def parse_json_response(content: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Extracts a JSON object from an LLM answer.

    Strips markdown code fences, then falls back to the outermost `{...}`
    block when the model wrapped the JSON in prose. None when nothing parses.
    """
    if not content:
        return None
    text = _CODE_FENCE.sub("", content.strip()).strip()

    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


# ============================================
# Client
# ============================================

class LLMClient:

    def __init__(self, config: Optional[LLMConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or LLMConfig.from_env()
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json; charset=utf-8",
            "X-Title": "Dokus document processing",
        }

    async def complete(self, model: str, system_prompt: str, user_prompt: str,
                       json_mode: bool = True) -> LLMResult:
        if not self.config.api_key:
            return LLMResult(success=False, error="OPENROUTER_API_KEY is not set")

        body = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.config.temperature,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        started = time.time()

        def elapsed() -> int:
            return int((time.time() - started) * 1000)

        for attempt, delay in enumerate(self.config.retry_delays + [None]):
            try:
                async with httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport) as client:
                    response = await client.post(self.config.endpoint, headers=self._headers(), json=body)

                if response.status_code == 429:
                    if delay is None:
                        return LLMResult(success=False, error="Rate limit exceeded after all retries",
                                         elapsed_ms=elapsed())
                    logger.warning(f"[LLM] Rate limited, waiting {delay}s (attempt {attempt + 1})")
                    await asyncio.sleep(delay)
                    continue

                response.raise_for_status()
                data = response.json()
                usage = data.get("usage") or {}
                choices = data.get("choices") or [{}]
                content = (choices[0].get("message") or {}).get("content") or ""

                result = LLMResult(
                    success=True,
                    content=content,
                    tokens_in=usage.get("prompt_tokens", 0),
                    tokens_out=usage.get("completion_tokens", 0),
                    elapsed_ms=elapsed(),
                )
                logger.info(
                    f"[LLM] model={model} in={result.tokens_in}tok out={result.tokens_out}tok "
                    f"total={result.elapsed_ms}ms"
                )
                return result

            except httpx.TimeoutException:
                return LLMResult(success=False, error=f"Timeout after {self.config.timeout}s", elapsed_ms=elapsed())
            except httpx.HTTPStatusError as e:
                return LLMResult(
                    success=False,
                    error=f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                    elapsed_ms=elapsed(),
                )
            except httpx.HTTPError as e:
                logger.error(f"[LLM] Request failed: {e}")
                return LLMResult(success=False, error=str(e), elapsed_ms=elapsed())

        return LLMResult(success=False, error="Failed after all retries", elapsed_ms=elapsed())
