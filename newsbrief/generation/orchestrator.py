import base64
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from newsbrief.generation.news import NewsFetcher
from newsbrief.generation.script import ScriptGenerator, ScriptOutcome, ScriptResult
from newsbrief.generation.speech import SpeechSynthesizer
from newsbrief.generation.text import close_script
from newsbrief.observability.logger import get_logger
from newsbrief.storage.audio import AudioStorage
from newsbrief.storage.briefings import BriefingRepository
from newsbrief.storage.schema import Briefing
from newsbrief.usage.ledger import UsageLedger, now_ms
from newsbrief.usage.quota import QuotaDecision, QuotaGate

log = get_logger("orchestrator")


@dataclass
class GenerateRequest:
    topics: list[str] = field(default_factory=lambda: ["headline"])
    voice: str = "female"
    duration: int = 900


@dataclass
class GenerateResult:
    status_code: int
    body: dict
    headers: dict = field(default_factory=dict)


class _Outcome:
    """Records the generate outcome for one request exactly once."""

    def __init__(self, ledger: UsageLedger, user_id: str):
        self.ledger = ledger
        self.user_id = user_id
        self.recorded = False

    def finish(self, success: bool):
        if not self.recorded:
            self.recorded = True
            self.ledger.record_generate_outcome(self.user_id, success)


class GenerationOrchestrator:
    """quota check -> record attempt -> news -> script -> speech -> audio -> outcome."""

    def __init__(
        self,
        quota: QuotaGate,
        ledger: UsageLedger,
        news: NewsFetcher,
        scripts: ScriptGenerator,
        speech: SpeechSynthesizer,
        audio: AudioStorage,
        briefings: BriefingRepository,
        serve_fallback_on_upstream_failure: bool = True,
        utc_offset_hours: int = 9,
        clock=now_ms,
    ):
        self.quota = quota
        self.ledger = ledger
        self.news = news
        self.scripts = scripts
        self.speech = speech
        self.audio = audio
        self.briefings = briefings
        self.serve_fallback = serve_fallback_on_upstream_failure
        self.tz = timezone(timedelta(hours=utc_offset_hours))
        self.clock = clock

    def denied(self, decision: QuotaDecision) -> GenerateResult:
        headers = {}
        if decision.retry_after_seconds:
            headers["Retry-After"] = str(decision.retry_after_seconds)
        if decision.status == 401:
            return GenerateResult(401, {"error": decision.message or "Unauthorized"})
        return GenerateResult(
            decision.status or 429,
            {
                "error": decision.message or "しばらく待ってからお試しください。",
                "code": decision.code or "GENERATE_LIMIT_EXCEEDED",
                "retryAfterSeconds": decision.retry_after_seconds or 60,
                "limits": {
                    "perMinute": self.quota.per_minute,
                    "perDay": self.quota.per_day,
                    "minuteRemaining": decision.minute_remaining or 0,
                    "dailyRemaining": decision.daily_remaining or 0,
                },
            },
            headers,
        )

    async def run(self, user, request: GenerateRequest) -> GenerateResult:
        decision = self.quota.check(user, self.clock())
        if not decision.allowed:
            log.info("generate_denied", user_id=getattr(user, "id", None), code=decision.code)
            return self.denied(decision)

        # Check and record without an await in between: concurrent requests
        # from one user cannot both pass the same quota window.
        self.ledger.record_generate_attempt(user.id, decision.now)
        outcome = _Outcome(self.ledger, user.id)
        gemini_pending = False

        try:
            news_items = await self.news.fetch(request.topics)

            gemini_pending = self.scripts.has_key
            script_result = await self.scripts.generate(news_items, request.duration)
            if script_result.attempted:
                self.ledger.record_gemini_call(user.id, script_result.outcome == ScriptOutcome.SUCCESS)
            gemini_pending = False

            if script_result.outcome == ScriptOutcome.EXHAUSTED_OTHER:
                if not self.serve_fallback:
                    outcome.finish(False)
                    error = script_result.debug.get("error", "")
                    return GenerateResult(500, {"error": f"Gemini API エラー: {error}", "details": error})
                script_result = self._fallback(script_result, news_items, request.duration)

            script = close_script(script_result.script)
            speech = await self.speech.synthesize(script, request.voice)
            if speech.did_call:
                self.ledger.record_tts_calls(user.id, bool(speech.audio_base64), speech.tts_calls)

            created_at = self.clock()
            briefing_id = f"briefing-{created_at}"
            audio_url = None
            if speech.audio_base64:
                audio_url = await self.audio.save(f"{briefing_id}.mp3", base64.b64decode(speech.audio_base64))

            is_demo = script_result.is_demo or speech.is_demo
            self.briefings.upsert(Briefing(
                id=briefing_id,
                user_id=user.id,
                topics=list(request.topics),
                voice=request.voice,
                duration=request.duration,
                script=script,
                audio_url=audio_url,
                is_demo=is_demo,
                date=datetime.fromtimestamp(created_at / 1000, tz=self.tz).strftime("%Y-%m-%d"),
                created_at=created_at,
            ))

            outcome.finish(True)
            log.info("briefing_generated", user_id=user.id, briefing_id=briefing_id,
                     is_demo=is_demo, news=len(news_items), chars=len(script))
            return GenerateResult(200, {
                "briefingId": briefing_id,
                "audioUrl": audio_url,
                "script": script,
                "duration": request.duration,
                "isDemo": is_demo,
                "debug": self._debug(script_result, speech, news_items, script),
            })
        except Exception as e:
            if gemini_pending:
                self.ledger.record_gemini_call(user.id, False)
            outcome.finish(False)
            log.exception("generate_failed", user_id=user.id, error=str(e))
            return GenerateResult(500, {
                "error": str(e) or "Failed to generate briefing",
                "details": f"{type(e).__name__}: {e}",
            })

    def _fallback(self, result: ScriptResult, news_items, duration: int) -> ScriptResult:
        log.warning("serving_fallback_script", error_type=result.debug.get("errorType"))
        return ScriptResult(
            script=self.scripts.fallback_script(news_items, duration),
            is_demo=True,
            outcome=result.outcome,
            debug={**result.debug, "usedFallback": True},
        )

    def _debug(self, script_result: ScriptResult, speech, news_items, script: str) -> dict:
        tts_key = getattr(self.speech.provider, "api_key", "") or ""
        return {
            **self.scripts.key_debug(),
            "hasTtsKey": bool(tts_key),
            "ttsKeyLength": len(tts_key),
            "ttsError": speech.tts_error,
            "ttsChunks": speech.tts_chunks,
            "ttsCalls": speech.tts_calls,
            "usedModel": script_result.debug.get("usedModel", ""),
            "newsCount": len(news_items),
            "scriptLength": len(script),
            "isDemoScript": script_result.is_demo,
            **script_result.debug,
        }
