import math
from dataclasses import dataclass

from newsbrief.usage.ledger import DAY_MS, UsageLedger, now_ms, to_date_key

DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
MINUTE_LIMIT_EXCEEDED = "MINUTE_LIMIT_EXCEEDED"

DAILY_LIMIT_MESSAGE = "本日の生成上限に達しました。しばらく待ってからお試しください。"
MINUTE_LIMIT_MESSAGE = "生成リクエストが多いため、しばらく待ってからお試しください。"


@dataclass
class QuotaDecision:
    allowed: bool
    status: int = 200
    code: str | None = None
    message: str | None = None
    retry_after_seconds: int | None = None
    minute_remaining: int | None = None
    daily_remaining: int | None = None
    now: int | None = None
    today: str | None = None


def _ceil_seconds(ms: int) -> int:
    return max(1, math.ceil(ms / 1000))


class QuotaGate:
    """Per-user generate limits: a trailing-window rate and a UTC-day cap.

    The daily cap is checked first; the minute window is only evaluated when
    the daily cap still has room. Admins bypass both.
    """

    def __init__(self, ledger: UsageLedger, per_minute: int = 4, per_day: int = 20, clock=now_ms):
        self.ledger = ledger
        self.per_minute = per_minute
        self.per_day = per_day
        self.clock = clock

    def check(self, user, now: int | None = None) -> QuotaDecision:
        user_id = getattr(user, "id", None)
        if not user_id:
            return QuotaDecision(allowed=False, status=401, message="Unauthorized")
        if getattr(user, "is_admin", False):
            return QuotaDecision(allowed=True)

        now = self.clock() if now is None else now
        today = to_date_key(now)
        recent = self.ledger.recent_calls(user_id, now)
        daily_count = self.ledger.daily_count(user_id, today)

        if daily_count >= self.per_day:
            # Resets at the end of the UTC date key, not local midnight
            day_start = (now // DAY_MS) * DAY_MS
            next_reset_at = day_start + DAY_MS
            return QuotaDecision(
                allowed=False,
                status=429,
                code=DAILY_LIMIT_EXCEEDED,
                message=DAILY_LIMIT_MESSAGE,
                retry_after_seconds=_ceil_seconds(next_reset_at - now),
                minute_remaining=max(0, self.per_minute - len(recent)),
                daily_remaining=0,
                now=now,
                today=today,
            )

        if len(recent) >= self.per_minute:
            oldest = min(recent)
            return QuotaDecision(
                allowed=False,
                status=429,
                code=MINUTE_LIMIT_EXCEEDED,
                message=MINUTE_LIMIT_MESSAGE,
                retry_after_seconds=_ceil_seconds(oldest + self.ledger.window_ms - now),
                minute_remaining=0,
                daily_remaining=max(0, self.per_day - daily_count),
                now=now,
                today=today,
            )

        return QuotaDecision(
            allowed=True,
            minute_remaining=max(0, self.per_minute - len(recent) - 1),
            daily_remaining=max(0, self.per_day - daily_count - 1),
            now=now,
            today=today,
        )
