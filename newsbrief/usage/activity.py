from newsbrief.storage.schema import UserActivity
from newsbrief.usage.ledger import to_date_key


class ActivityTracker:
    """Per-user day flags for "was active" and "logged in"."""

    def __init__(self, store):
        self.store = store

    def _user(self, user_id: str) -> UserActivity:
        return self.store.state.activity.by_user.setdefault(user_id, UserActivity())

    def _mark(self, flags: dict[str, bool], date_key: str):
        if not flags.get(date_key):
            flags[date_key] = True
            self.store.save(users=False, briefings=False, usage=False, activity=True)

    def mark_active(self, user_id: str | None, at: int | None = None):
        if user_id:
            self._mark(self._user(user_id).active, to_date_key(at))

    def mark_login(self, user_id: str | None, at: int | None = None):
        if user_id:
            self._mark(self._user(user_id).login, to_date_key(at))

    def get(self, user_id: str) -> UserActivity:
        return self.store.state.activity.by_user.get(user_id) or UserActivity()

    def forget_user(self, user_id: str):
        self.store.state.activity.by_user.pop(user_id, None)
