import time
from datetime import datetime, timezone

from newsbrief.observability.logger import get_logger
from newsbrief.storage.schema import UsageCounters, UsageState, UserUsage

log = get_logger("usage")

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


def to_date_key(timestamp_ms: int | None = None) -> str:
    """UTC calendar date (YYYY-MM-DD) of an epoch-millisecond timestamp."""
    if timestamp_ms is None:
        timestamp_ms = now_ms()
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


class UsageLedger:
    """Generation, Gemini and TTS call counters: global, per UTC day, and per user.

    Mutations are synchronous and return immediately; each one enqueues a
    usage-only flush on the state store. Missing user and day records are
    created on first touch. Calls without a user id are ignored.
    """

    def __init__(self, store, window_seconds: int = 60, clock=now_ms):
        self.store = store
        self.window_ms = window_seconds * 1000
        self.clock = clock

    @property
    def usage(self) -> UsageState:
        return self.store.state.usage

    # ── Records ────────────────────────────────────────────────────────────

    def _global_day(self, date_key: str) -> UsageCounters:
        return self.usage.daily.setdefault(date_key, UsageCounters())

    def _user(self, user_id: str) -> UserUsage:
        return self.usage.by_user.setdefault(user_id, UserUsage())

    def _user_day(self, user_id: str, date_key: str) -> UsageCounters:
        return self._user(user_id).daily.setdefault(date_key, UsageCounters())

    def _buckets(self, user_id: str, date_key: str) -> tuple[UsageCounters, ...]:
        return self.usage.totals, self._global_day(date_key), self._user_day(user_id, date_key)

    def _bump(self, user_id: str, field: str, amount: int = 1, at: int | None = None):
        date_key = to_date_key(self.clock() if at is None else at)
        for bucket in self._buckets(user_id, date_key):
            setattr(bucket, field, getattr(bucket, field) + amount)

    def _persist(self):
        self.store.save(users=False, briefings=False, usage=True, activity=False)

    # ── Mutations ──────────────────────────────────────────────────────────

    def record_generate_attempt(self, user_id: str | None, at: int | None = None):
        if not user_id:
            return
        at = self.clock() if at is None else at
        self._bump(user_id, "generate_briefing", at=at)

        user = self._user(user_id)
        user.total += 1
        user.last_call_at = at
        window_start = at - self.window_ms
        user.recent_generate_at = [ts for ts in user.recent_generate_at if ts >= window_start]
        user.recent_generate_at.append(at)

        self._persist()
        log.info("generate_attempt_recorded", user_id=user_id, total=user.total)

    def record_generate_outcome(self, user_id: str | None, success: bool):
        if not user_id:
            return
        self._bump(user_id, "generate_success" if success else "generate_fail")
        self._persist()
        log.info("generate_outcome_recorded", user_id=user_id, success=success)

    def record_gemini_call(self, user_id: str | None, success: bool):
        if not user_id:
            return
        self._bump(user_id, "gemini_calls")
        self._bump(user_id, "gemini_success" if success else "gemini_fail")
        self._persist()

    def record_tts_calls(self, user_id: str | None, success: bool, count: int = 1):
        if not user_id or not count:
            return
        self._bump(user_id, "tts_calls", amount=count)
        self._bump(user_id, "tts_success" if success else "tts_fail")
        self._persist()

    def forget_user(self, user_id: str):
        self.usage.by_user.pop(user_id, None)

    # ── Queries ────────────────────────────────────────────────────────────

    def recent_calls(self, user_id: str, now: int) -> list[int]:
        """Prune the user's generate timestamps to the trailing window and return them."""
        user = self._user(user_id)
        window_start = now - self.window_ms
        user.recent_generate_at = [ts for ts in user.recent_generate_at if ts >= window_start]
        return list(user.recent_generate_at)

    def daily_count(self, user_id: str, date_key: str) -> int:
        user = self.usage.by_user.get(user_id)
        if user is None or date_key not in user.daily:
            return 0
        return user.daily[date_key].generate_briefing

    def get_user_usage(self, user_id: str) -> UserUsage:
        return self.usage.by_user.get(user_id) or UserUsage()

    def get_global_totals(self) -> UsageCounters:
        return self.usage.totals

    def get_day(self, date_key: str) -> UsageCounters:
        return self.usage.daily.get(date_key) or UsageCounters()
