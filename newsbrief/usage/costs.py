from newsbrief.config import Settings
from newsbrief.usage.ledger import now_ms, to_date_key


def _amount(value: float) -> float:
    return round(value or 0, 6)


class CostEstimator:
    """Rough spend estimate from call counts and average tokens per call."""

    def __init__(self, ledger, settings: Settings):
        self.ledger = ledger
        self.currency = settings.cost_currency
        self.gemini_tokens_per_call = settings.cost_gemini_avg_tokens_per_call
        self.gemini_price_per_1k = settings.cost_gemini_price_per_1k_tokens
        self.tts_tokens_per_call = settings.cost_tts_avg_tokens_per_call
        self.tts_price_per_1k = settings.cost_tts_price_per_1k_tokens

    def assumptions(self) -> dict:
        return {
            "currency": self.currency,
            "geminiAvgTokensPerCall": self.gemini_tokens_per_call,
            "geminiPricePer1kTokens": self.gemini_price_per_1k,
            "ttsAvgTokensPerCall": self.tts_tokens_per_call,
            "ttsPricePer1kTokens": self.tts_price_per_1k,
        }

    def _estimate(self, gemini_calls: int, tts_calls: int) -> dict:
        gemini_tokens = gemini_calls * self.gemini_tokens_per_call
        tts_tokens = tts_calls * self.tts_tokens_per_call
        gemini_cost = (gemini_tokens / 1000) * self.gemini_price_per_1k
        tts_cost = (tts_tokens / 1000) * self.tts_price_per_1k
        return {
            "geminiCalls": gemini_calls,
            "ttsCalls": tts_calls,
            "geminiTokens": gemini_tokens,
            "ttsTokens": tts_tokens,
            "geminiCost": _amount(gemini_cost),
            "ttsCost": _amount(tts_cost),
            "totalCost": _amount(gemini_cost + tts_cost),
        }

    def estimate(self, reference_ms: int | None = None) -> dict:
        today_key = to_date_key(now_ms() if reference_ms is None else reference_ms)
        month_key = today_key[:7]

        today = self.ledger.get_day(today_key)
        month_gemini = month_tts = 0
        for date_key, day in self.ledger.usage.daily.items():
            if date_key.startswith(month_key):
                month_gemini += day.gemini_calls
                month_tts += day.tts_calls

        return {
            "currency": self.currency,
            "assumptions": self.assumptions(),
            "today": self._estimate(today.gemini_calls, today.tts_calls),
            "month": self._estimate(month_gemini, month_tts),
        }
