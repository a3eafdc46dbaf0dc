"""Briefing script generation with model fallback and retries.

Each request walks an ordered list of models. Every model gets up to
``max_attempts`` tries, retried only for network errors with a linear backoff.
A 429 or 404 moves straight on to the next model. A model that exhausts its
attempts on network errors ends the walk, as does any other upstream error.
The walk ends in one of four outcomes:

- ``success``: a model answered; the text is cleaned and trimmed to length.
- ``exhausted_network``: a model ran out of attempts on network errors; the
  deterministic script built from the headlines is returned instead.
- ``exhausted_other``: every model refused (rate limit, model missing); an
  error-flagged script is returned and the caller decides what to serve.
- ``no_key``: nothing was attempted; a fixed demo string is returned.
"""

import asyncio
import math
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field

from newsbrief.generation.news import NewsItem
from newsbrief.generation.text import (
    clean_description,
    clean_title,
    sanitize_script,
    strip_markdown,
    trim_script_to_target,
)
from newsbrief.llm.base import (
    ModelNotFoundError,
    RateLimitedError,
    format_network_error,
    is_network_error,
)
from newsbrief.observability.logger import get_logger

log = get_logger("script")

DEMO_SCRIPT = "[デモ] Gemini APIキーを設定すると、ここにニュース原稿が生成されます。"
MAX_FALLBACK_ITEMS = 12
MAX_PROMPT_ITEMS = 30


class ScriptOutcome(str, Enum):
    SUCCESS = "success"
    EXHAUSTED_NETWORK = "exhausted_network"
    EXHAUSTED_OTHER = "exhausted_other"
    NO_KEY = "no_key"


class ScriptResult(BaseModel):
    script: str
    is_demo: bool
    outcome: ScriptOutcome
    debug: dict = Field(default_factory=dict)

    @property
    def attempted(self) -> bool:
        return self.outcome != ScriptOutcome.NO_KEY


def greeting_for(now: datetime) -> str:
    if 5 <= now.hour < 12:
        return "おはようございます"
    if 12 <= now.hour < 18:
        return "こんにちは"
    return "こんばんは"


def target_chars_for(duration_seconds: float, chars_per_second: float = 6.5) -> int:
    return math.floor(duration_seconds * chars_per_second)


def build_fallback_script(news_items: list[NewsItem], duration_seconds: float, greeting: str,
                          chars_per_second: float = 6.5) -> str:
    """Readable script assembled from headlines alone, used when no model answered."""
    intro = f"{greeting}。ニュースをお伝えします。"
    if not news_items:
        return f"{intro}\n\n現在、ニュースの取得に失敗しました。通信環境を確認して、もう一度お試しください。"

    items = news_items[:MAX_FALLBACK_ITEMS]
    lines = []
    for index, item in enumerate(items):
        if index == 0:
            lead = "まず"
        elif index == len(items) - 1:
            lead = "最後に"
        else:
            lead = "続いて"
        title = clean_title(item.title) or item.title
        desc = clean_description(item.description)
        lines.append(f"{lead}{title}{' ' + desc if desc else ''}".strip())

    body = "\n\n".join(lines)
    script = f"{intro}\n\n{body}\n\n以上、ニュースでした。"
    if len(script) < math.floor(target_chars_for(duration_seconds, chars_per_second) * 0.6):
        script += "\n\nこのあとも最新情報が入り次第お伝えします。"
    return script


def build_prompt(news_items: list[NewsItem], target_chars: int, greeting: str) -> str:
    entries = []
    for item in news_items[:MAX_PROMPT_ITEMS]:
        title = clean_title(item.title) or item.title
        desc = clean_description(item.description)
        entries.append(f"- {title}" + (f"\n  {desc}" if desc else ""))
    news_list = "\n\n".join(entries)

    return f"""あなたは日本のニュースキャスターです。以下のニュース項目を基に、ラジオで読み上げる「ニュース原稿」を日本語で書いてください。
ルール：
- 文体は「です・ます」調で、聞きやすい口語にする
- 見出しを自然な文にし、必要に応じて補足を加える
- 原稿の総文字数は必ず {target_chars} 字以上にすること。足りない場合は各ニュースの説明を詳しく補足すること
- 冒頭に「{greeting}。ニュースをお伝えします。」という挨拶を必ず入れる（この挨拶をそのまま使用すること）
- 項目の区切りで「続いて」「また」などを使う
- 原稿は最後まで省略せず書き切ること。途中で切れたり「...」で終わらせないこと
- 省略記号（…や...）が含まれる情報は無理に使わず、完結した文だけでまとめる
- マークダウン記号（**や*など）は使わず、普通のテキストのみで書くこと

ニュース項目：
{news_list}

上記のみを出力し、余計な説明は書かないでください。"""


class ScriptGenerator:
    def __init__(
        self,
        provider=None,
        models: list[str] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 1.2,
        chars_per_second: float = 6.5,
        utc_offset_hours: int = 9,
        sleep=asyncio.sleep,
        clock=None,
    ):
        self.provider = provider
        self.models = models or ["gemini-2.0-flash", "gemini-2.0-flash-lite", "gemini-2.5-flash"]
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.chars_per_second = chars_per_second
        self.tz = timezone(timedelta(hours=utc_offset_hours))
        self.sleep = sleep
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def has_key(self) -> bool:
        return self.provider is not None

    def greeting(self) -> str:
        return greeting_for(self.clock().astimezone(self.tz))

    def fallback_script(self, news_items: list[NewsItem], duration_seconds: float) -> str:
        return build_fallback_script(news_items, duration_seconds, self.greeting(), self.chars_per_second)

    def key_debug(self) -> dict:
        key = getattr(self.provider, "api_key", "") or ""
        return {
            "hasGeminiKey": bool(key),
            "geminiKeyLength": len(key),
            "geminiKeyPrefix": f"{key[:10]}..." if key else "none",
        }

    async def generate(self, news_items: list[NewsItem], duration_seconds: float) -> ScriptResult:
        if not self.has_key:
            return ScriptResult(
                script=DEMO_SCRIPT,
                is_demo=True,
                outcome=ScriptOutcome.NO_KEY,
                debug={"hasGeminiKey": False, "geminiKeyLength": 0, "geminiKeyPrefix": "none", "usedModel": ""},
            )

        target_chars = target_chars_for(duration_seconds, self.chars_per_second)
        prompt = build_prompt(news_items, target_chars, self.greeting())

        last_error: Exception | None = None
        last_error_type: str | None = None
        for model in self.models:
            try:
                response = await self._call_with_retries(prompt, model)
            except (RateLimitedError, ModelNotFoundError) as e:
                last_error, last_error_type = e, e.error_type
                continue
            except Exception as e:
                if not is_network_error(e):
                    raise
                log.warning("gemini_model_network_exhausted", model=model, error=str(e))
                last_error, last_error_type = e, "network"
                break

            text = sanitize_script(strip_markdown(response.content))
            text = sanitize_script(trim_script_to_target(text, target_chars))
            log.info("script_generated", model=model, length=len(text), target=target_chars)
            return ScriptResult(
                script=text,
                is_demo=False,
                outcome=ScriptOutcome.SUCCESS,
                debug={**self.key_debug(), "scriptLength": len(text), "usedModel": model},
            )

        log.error("gemini_all_models_failed", error=str(last_error), error_type=last_error_type)
        if last_error_type == "network":
            return ScriptResult(
                script=self.fallback_script(news_items, duration_seconds),
                is_demo=True,
                outcome=ScriptOutcome.EXHAUSTED_NETWORK,
                debug={
                    **self.key_debug(),
                    "error": format_network_error(last_error),
                    "errorType": "network",
                    "usedFallback": True,
                    "usedModel": "",
                },
            )

        message = str(last_error) if last_error else "Gemini API error"
        return ScriptResult(
            script=f"[エラー] 原稿生成に失敗しました: {message}",
            is_demo=True,
            outcome=ScriptOutcome.EXHAUSTED_OTHER,
            debug={
                **self.key_debug(),
                "error": message,
                "errorType": last_error_type or "unknown",
                "usedModel": "",
            },
        )

    async def _call_with_retries(self, prompt: str, model: str):
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.provider.generate(prompt, model=model)
            except Exception as e:
                if attempt < self.max_attempts and is_network_error(e):
                    log.warning("gemini_retry", model=model, attempt=attempt, error=str(e))
                    await self.sleep(self.backoff_seconds * attempt)
                    continue
                raise
