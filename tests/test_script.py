from datetime import datetime, timezone

import httpx
import pytest

from newsbrief.generation.news import NewsItem
from newsbrief.generation.script import (
    DEMO_SCRIPT,
    ScriptGenerator,
    ScriptOutcome,
    build_fallback_script,
    greeting_for,
    target_chars_for,
)
from newsbrief.llm.base import UpstreamAPIError
from newsbrief.llm.providers.gemini import GeminiProvider, rate_limit_message

MODELS = ["model-a", "model-b", "model-c"]
NEWS = [
    NewsItem(title="円相場 一時150円台", description="外国為替市場で円安が進みました", topic="business"),
    NewsItem(title="各地で真夏日", description="", topic="headline"),
]


def _ok(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}]})


def _model_of(request: httpx.Request) -> str:
    return request.url.path.rsplit("/", 1)[-1].split(":")[0]


def _generator(handler, sleeps, **kwargs) -> tuple[ScriptGenerator, list]:
    calls = []

    def recording(request):
        calls.append(_model_of(request))
        return handler(request)

    provider = GeminiProvider("test-key", "https://gemini.test/v1beta", transport=httpx.MockTransport(recording))
    # 03:00 UTC is noon in Tokyo
    clock = lambda: datetime(2026, 5, 1, 3, 0, tzinfo=timezone.utc)  # noqa: E731
    generator = ScriptGenerator(provider=provider, models=MODELS, sleep=sleeps, clock=clock, **kwargs)
    return generator, calls


class TestHelpers:
    def test_greeting_by_hour(self):
        assert greeting_for(datetime(2026, 1, 1, 7)) == "おはようございます"
        assert greeting_for(datetime(2026, 1, 1, 12)) == "こんにちは"
        assert greeting_for(datetime(2026, 1, 1, 18)) == "こんばんは"
        assert greeting_for(datetime(2026, 1, 1, 4)) == "こんばんは"

    def test_target_chars(self):
        assert target_chars_for(900) == 5850
        assert target_chars_for(60, 6.5) == 390

    def test_fallback_script_without_news(self):
        script = build_fallback_script([], 900, "こんにちは")
        assert script.startswith("こんにちは。ニュースをお伝えします。")
        assert "ニュースの取得に失敗しました" in script

    def test_fallback_script_orders_items(self):
        script = build_fallback_script(NEWS, 60, "こんにちは")
        assert "まず円相場 一時150円台 外国為替市場で円安が進みました。" in script
        assert "最後に各地で真夏日" in script
        assert "以上、ニュースでした。" in script

    def test_rate_limit_message_includes_retry_hint(self):
        body = '{"error": {"message": "Quota exceeded. Please retry in 12.3s."}}'
        assert "約13秒後に再試行してください。" in rate_limit_message(body)


@pytest.mark.asyncio
class TestScriptGenerator:
    async def test_no_key_returns_demo_without_calls(self, sleeps):
        result = await ScriptGenerator(provider=None, sleep=sleeps).generate(NEWS, 900)
        assert result.outcome == ScriptOutcome.NO_KEY
        assert result.script == DEMO_SCRIPT
        assert result.is_demo
        assert not result.attempted

    async def test_success_cleans_markdown(self, sleeps):
        generator, calls = _generator(lambda r: _ok("**こんにちは。**ニュースをお伝えします…"), sleeps)
        result = await generator.generate(NEWS, 60)
        assert result.outcome == ScriptOutcome.SUCCESS
        assert not result.is_demo
        assert result.script == "こんにちは。ニュースをお伝えします。"
        assert result.debug["usedModel"] == "model-a"
        assert calls == ["model-a"]

    async def test_rate_limit_falls_through_to_next_model(self, sleeps):
        def handler(request):
            if _model_of(request) == "model-a":
                return httpx.Response(429, json={"error": {"message": "quota"}})
            return _ok("原稿です。")

        generator, calls = _generator(handler, sleeps)
        result = await generator.generate(NEWS, 60)
        assert result.outcome == ScriptOutcome.SUCCESS
        assert result.debug["usedModel"] == "model-b"
        assert calls == ["model-a", "model-b"]
        assert sleeps.calls == []

    async def test_every_model_rate_limited(self, sleeps):
        generator, calls = _generator(lambda r: httpx.Response(429, json={"error": {"message": "quota"}}), sleeps)
        result = await generator.generate(NEWS, 60)
        assert result.outcome == ScriptOutcome.EXHAUSTED_OTHER
        assert result.is_demo
        assert result.script.startswith("[エラー] 原稿生成に失敗しました:")
        assert result.debug["errorType"] == "rate_limit"
        assert calls == MODELS

    async def test_missing_model_is_skipped(self, sleeps):
        def handler(request):
            if _model_of(request) != "model-c":
                return httpx.Response(404, json={"error": {"message": "not found"}})
            return _ok("原稿です。")

        generator, calls = _generator(handler, sleeps)
        result = await generator.generate(NEWS, 60)
        assert result.debug["usedModel"] == "model-c"
        assert calls == MODELS

    async def test_network_errors_retry_with_linear_backoff(self, sleeps):
        attempts = []

        def handler(request):
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return _ok("原稿です。")

        generator, calls = _generator(handler, sleeps, backoff_seconds=1.2)
        result = await generator.generate(NEWS, 60)
        assert result.outcome == ScriptOutcome.SUCCESS
        assert calls == ["model-a"] * 3
        assert sleeps.calls == pytest.approx([1.2, 2.4])

    async def test_network_exhaustion_serves_headline_fallback(self, sleeps):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        generator, calls = _generator(handler, sleeps, max_attempts=2)
        result = await generator.generate(NEWS, 60)
        assert result.outcome == ScriptOutcome.EXHAUSTED_NETWORK
        assert result.is_demo
        assert result.debug["usedFallback"] is True
        assert result.script.startswith("こんにちは。ニュースをお伝えします。")
        assert calls == ["model-a", "model-a"]

    async def test_network_exhaustion_stops_before_later_models(self, sleeps):
        def handler(request):
            if _model_of(request) == "model-a":
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(429, json={"error": {"message": "quota"}})

        generator, calls = _generator(handler, sleeps, max_attempts=2)
        result = await generator.generate(NEWS, 60)
        assert result.outcome == ScriptOutcome.EXHAUSTED_NETWORK
        assert result.debug["errorType"] == "network"
        assert calls == ["model-a", "model-a"]

    async def test_rate_limit_then_network_serves_headline_fallback(self, sleeps):
        def handler(request):
            if _model_of(request) == "model-a":
                return httpx.Response(429, json={"error": {"message": "quota"}})
            raise httpx.ReadTimeout("timed out", request=request)

        generator, calls = _generator(handler, sleeps, max_attempts=2)
        result = await generator.generate(NEWS, 60)
        assert result.outcome == ScriptOutcome.EXHAUSTED_NETWORK
        assert calls == ["model-a", "model-b", "model-b"]

    async def test_other_upstream_error_is_raised(self, sleeps):
        generator, calls = _generator(lambda r: httpx.Response(500, json={"error": {"message": "boom"}}), sleeps)
        with pytest.raises(UpstreamAPIError, match="boom"):
            await generator.generate(NEWS, 60)
        assert calls == ["model-a"]

    async def test_long_answer_is_trimmed_to_target(self, sleeps):
        sentence = "あ" * 29 + "。"
        generator, _ = _generator(lambda r: _ok(sentence * 40), sleeps)
        result = await generator.generate(NEWS, 60)
        target = target_chars_for(60)
        assert len(result.script) <= int(target * 1.05) + 30
        assert len(result.script) >= int(target * 1.02)
