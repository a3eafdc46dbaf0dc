import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from newsbrief.api.admin import router as admin_router
from newsbrief.api.auth import NoCacheMiddleware, SessionTokens
from newsbrief.api.auth import router as auth_router
from newsbrief.api.routes import router as api_router
from newsbrief.config import settings
from newsbrief.core.retention import RetentionSweeper
from newsbrief.database import create_engine_and_sessions, default_database_url, init_db
from newsbrief.generation.news import NewsFetcher
from newsbrief.generation.orchestrator import GenerationOrchestrator
from newsbrief.generation.script import ScriptGenerator
from newsbrief.generation.speech import SpeechSynthesizer
from newsbrief.llm.providers.gemini import GeminiProvider
from newsbrief.llm.providers.google_tts import GoogleTTSProvider
from newsbrief.observability.logger import get_logger, setup_logging
from newsbrief.storage.audio import AudioStorage
from newsbrief.storage.briefings import BriefingRepository
from newsbrief.storage.state_store import StateStore
from newsbrief.storage.users import UserRepository
from newsbrief.usage.activity import ActivityTracker
from newsbrief.usage.costs import CostEstimator
from newsbrief.usage.ledger import UsageLedger
from newsbrief.usage.quota import QuotaGate

setup_logging(settings.log_level, settings.log_json)
log = get_logger("main")

# Shared application state, accessed by API routes
app_state = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("newsbrief_starting", data_dir=settings.data_dir)

    # 1. Persistence: local db.json, plus the document store when enabled
    engine = session_factory = None
    if settings.use_database:
        engine, session_factory = create_engine_and_sessions(
            settings.database_url or default_database_url(settings.data_dir)
        )
        await init_db(engine)
        log.info("database_initialized")

    store = StateStore(settings.data_dir, session_factory=session_factory)
    await store.load()
    audio = AudioStorage(settings.data_dir)

    # 2. Accounting
    ledger = UsageLedger(store, window_seconds=settings.quota_window_seconds)
    quota = QuotaGate(ledger, per_minute=settings.generate_limit_per_minute, per_day=settings.generate_limit_per_day)
    activity = ActivityTracker(store)
    users = UserRepository(store)
    briefings = BriefingRepository(store, audio)

    # 3. Upstream providers, only when keys are configured
    gemini = None
    if settings.has_gemini_key:
        gemini = GeminiProvider(settings.gemini_api_key, settings.gemini_base_url, settings.gemini_timeout_seconds)
    tts = None
    if settings.has_tts_key:
        tts = GoogleTTSProvider(settings.google_cloud_tts_api_key, settings.tts_base_url, settings.tts_timeout_seconds)

    scripts = ScriptGenerator(
        provider=gemini,
        models=settings.gemini_model_list,
        max_attempts=settings.gemini_max_attempts,
        backoff_seconds=settings.gemini_backoff_seconds,
        chars_per_second=settings.chars_per_second,
        utc_offset_hours=settings.greeting_utc_offset_hours,
    )
    speech = SpeechSynthesizer(
        provider=tts,
        max_bytes=settings.tts_max_bytes,
        max_attempts=settings.tts_max_attempts,
        retry_pause_seconds=settings.tts_retry_pause_seconds,
    )
    news = NewsFetcher(timeout_seconds=settings.news_timeout_seconds, items_per_feed=settings.news_items_per_feed)
    orchestrator = GenerationOrchestrator(
        quota=quota,
        ledger=ledger,
        news=news,
        scripts=scripts,
        speech=speech,
        audio=audio,
        briefings=briefings,
        serve_fallback_on_upstream_failure=settings.serve_fallback_on_upstream_failure,
        utc_offset_hours=settings.greeting_utc_offset_hours,
    )

    # 4. Store in shared state for API access
    app_state.update({
        "store": store,
        "audio": audio,
        "ledger": ledger,
        "quota": quota,
        "activity": activity,
        "users": users,
        "briefings": briefings,
        "sessions": SessionTokens(settings.session_secret, settings.session_ttl_seconds),
        "scripts": scripts,
        "speech": speech,
        "news": news,
        "orchestrator": orchestrator,
        "costs": CostEstimator(ledger, settings),
    })

    # 5. Retention sweep
    sweeper = RetentionSweeper(briefings, settings.briefing_retention_days, settings.cleanup_interval_seconds)
    sweeper_task = asyncio.create_task(sweeper.run())

    log.info("newsbrief_ready", gemini=scripts.has_key, tts=speech.has_key,
             document_store=store.document_store_enabled, users=len(users.all))

    yield

    # Shutdown
    log.info("newsbrief_shutting_down")
    sweeper_task.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper_task
    await store.close()
    if engine is not None:
        await engine.dispose()


app = FastAPI(title="newsbrief", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(NoCacheMiddleware)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("unhandled_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(auth_router)
app.include_router(api_router)
app.include_router(admin_router)
