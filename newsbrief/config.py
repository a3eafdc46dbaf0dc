from pydantic_settings import BaseSettings

PLACEHOLDER_KEYS = {"your_gemini_api_key", "your_google_cloud_tts_api_key"}


class Settings(BaseSettings):
    # API Keys
    gemini_api_key: str | None = None
    google_cloud_tts_api_key: str | None = None

    # Script generation (Gemini)
    gemini_model: str | None = None  # Single model overrides the fallback list
    gemini_models: str = "gemini-2.0-flash,gemini-2.0-flash-lite,gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout_seconds: float = 60.0
    gemini_max_attempts: int = 3
    gemini_backoff_seconds: float = 1.2
    chars_per_second: float = 6.5

    # Speech synthesis (Cloud TTS)
    tts_base_url: str = "https://texttospeech.googleapis.com/v1"
    tts_timeout_seconds: float = 90.0
    tts_max_attempts: int = 3
    tts_retry_pause_seconds: float = 3.0
    tts_max_bytes: int = 4500

    # News feeds
    news_timeout_seconds: float = 15.0
    news_items_per_feed: int = 15

    # Generation quota
    generate_limit_per_minute: int = 4
    generate_limit_per_day: int = 20
    quota_window_seconds: int = 60

    # Serve the news-based fallback script when every model refused (429/404)
    serve_fallback_on_upstream_failure: bool = True

    # Greeting clock (Asia/Tokyo has no DST)
    greeting_utc_offset_hours: int = 9

    # Logging
    log_level: str = "INFO"
    log_json: bool = True  # False renders colored console lines

    # Data
    data_dir: str = "./data"
    use_database: bool = False
    database_url: str | None = None  # Defaults to sqlite under data_dir

    # Sessions
    session_secret: str = "please-set-a-long-random-session-secret"
    session_ttl_seconds: int = 60 * 60 * 24 * 7

    # Retention
    briefing_retention_days: int = 30
    cleanup_interval_seconds: int = 12 * 60 * 60

    # Cost estimate assumptions
    cost_currency: str = "USD"
    cost_gemini_avg_tokens_per_call: float = 1500
    cost_gemini_price_per_1k_tokens: float = 0.0015
    cost_tts_avg_tokens_per_call: float = 1500
    cost_tts_price_per_1k_tokens: float = 0.0010

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def has_gemini_key(self) -> bool:
        return bool(self.gemini_api_key) and self.gemini_api_key not in PLACEHOLDER_KEYS

    @property
    def has_tts_key(self) -> bool:
        return bool(self.google_cloud_tts_api_key) and self.google_cloud_tts_api_key not in PLACEHOLDER_KEYS

    @property
    def gemini_model_list(self) -> list[str]:
        if self.gemini_model:
            return [self.gemini_model]
        return [m.strip() for m in self.gemini_models.split(",") if m.strip()]


settings = Settings()
