import json
import math
import re

import httpx

from newsbrief.llm.base import GenerationResponse, ModelNotFoundError, RateLimitedError, UpstreamAPIError
from newsbrief.observability.logger import get_logger

log = get_logger("llm.gemini")

RATE_LIMIT_DOCS_URL = "https://ai.google.dev/gemini-api/docs/rate-limits"
INVALID_KEY_MESSAGE = (
    "Gemini APIキーが無効、または未登録の呼び出しとして拒否されました。"
    "Google AI Studio で発行したAPIキーを使用してください。"
)
EMPTY_CANDIDATE_TEXT = "[生成に失敗しました]"

_RETRY_HINT_RES = (re.compile(r"retry in ([\d.]+)s", re.IGNORECASE), re.compile(r"(\d+(?:\.\d+)?)\s*秒"))


def _error_message(body_text: str) -> str:
    try:
        return json.loads(body_text).get("error", {}).get("message", "") or ""
    except (ValueError, AttributeError):
        return ""


def rate_limit_message(body_text: str) -> str:
    """User-facing 429 text, with the retry hint from the upstream message if present."""
    friendly = "無料枠のリクエスト制限に達しました。"
    message = _error_message(body_text)
    for pattern in _RETRY_HINT_RES:
        match = pattern.search(message)
        if match:
            friendly += f" 約{math.ceil(float(match.group(1)))}秒後に再試行してください。"
            break
    else:
        friendly += " しばらく待ってから再試行するか、別のモデルをお試しください。"
    return f"{friendly}\n\n詳細: {RATE_LIMIT_DOCS_URL}"


class GeminiProvider:
    name = "gemini"

    def __init__(self, api_key: str, base_url: str, timeout_seconds: float = 60.0, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout_seconds
        self.transport = transport

    async def generate(self, prompt: str, model: str, temperature: float = 0.7, max_output_tokens: int = 16384) -> GenerationResponse:
        """One generateContent call. Transport errors propagate untouched."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                f"{self.base_url}/models/{model}:generateContent",
                params={"key": self.api_key},
                json={
                    "contents": [{"parts": [{"text": prompt}]}],
                    "generationConfig": {"maxOutputTokens": max_output_tokens, "temperature": temperature},
                },
            )
            body_text = response.text

        if response.status_code == 429:
            log.warning("gemini_rate_limited", model=model)
            raise RateLimitedError(rate_limit_message(body_text))
        if response.status_code == 404:
            log.warning("gemini_model_not_found", model=model)
            raise ModelNotFoundError(f"モデル {model} は利用できません。")
        if not response.is_success:
            message = _error_message(body_text) or body_text or f"Gemini API error: {response.status_code}"
            error_type = "api"
            if response.status_code == 403:
                error_type = "auth"
                if "unregistered callers" in message:
                    message = INVALID_KEY_MESSAGE
            log.error("gemini_error", model=model, status=response.status_code, error=message[:300])
            raise UpstreamAPIError(message, status_code=response.status_code, error_type=error_type)

        try:
            data = json.loads(body_text or "{}")
        except ValueError as e:
            raise UpstreamAPIError(f"Gemini API returned invalid JSON: {e}", status_code=response.status_code) from e

        candidate = (data.get("candidates") or [{}])[0]
        parts = (candidate.get("content") or {}).get("parts") or [{}]
        text = (parts[0].get("text") or "").strip()
        return GenerationResponse(
            content=text or EMPTY_CANDIDATE_TEXT,
            model=model,
            provider=self.name,
            finish_reason=candidate.get("finishReason"),
        )
