from newsbrief.config import Settings
from newsbrief.usage.activity import ActivityTracker
from newsbrief.usage.costs import CostEstimator
from newsbrief.usage.ledger import DAY_MS, to_date_key


class TestCostEstimator:
    def test_today_and_month(self, ledger, clock):
        estimator = CostEstimator(ledger, Settings(_env_file=None))
        ledger.record_gemini_call("u1", True)
        ledger.record_gemini_call("u1", False)
        ledger.record_tts_calls("u1", True, count=4)

        estimate = estimator.estimate(clock())
        today = estimate["today"]
        assert estimate["currency"] == "USD"
        assert today["geminiCalls"] == 2
        assert today["geminiTokens"] == 3000
        assert today["geminiCost"] == 0.0045
        assert today["ttsCost"] == 0.006
        assert today["totalCost"] == 0.0105
        assert estimate["month"]["geminiCalls"] == 2

    def test_other_months_are_excluded(self, ledger, clock):
        estimator = CostEstimator(ledger, Settings(_env_file=None))
        ledger.clock = lambda: clock() - 40 * DAY_MS
        ledger.record_gemini_call("u1", True)

        estimate = estimator.estimate(clock())
        assert estimate["today"]["geminiCalls"] == 0
        assert estimate["month"]["geminiCalls"] == 0


class TestActivityTracker:
    def test_first_mark_of_day_persists_once(self, store, clock):
        tracker = ActivityTracker(store)
        tracker.mark_active("u1", clock())
        tracker.mark_active("u1", clock())

        assert tracker.get("u1").active == {to_date_key(clock()): True}
        assert store._queue.qsize() == 1
        request = store._queue.get_nowait()
        assert request.activity and not request.usage

    def test_login_and_active_are_separate(self, store, clock):
        tracker = ActivityTracker(store)
        tracker.mark_login("u1", clock())
        assert tracker.get("u1").login == {to_date_key(clock()): True}
        assert tracker.get("u1").active == {}

    def test_forget_user(self, store, clock):
        tracker = ActivityTracker(store)
        tracker.mark_active("u1", clock())
        tracker.forget_user("u1")
        assert tracker.get("u1").active == {}
