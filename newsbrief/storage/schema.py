"""Persisted application state.

The on-disk layout is camelCase JSON (``db.json`` and the document store),
while Python code works with snake_case attributes. ``migrate_state`` is the
single place where loosely shaped or older data is brought up to the current
schema; everything downstream can rely on the models being complete.
"""

import json
import math
import time
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = 1


class _Persisted(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UsageCounters(_Persisted):
    generate_briefing: int = 0
    generate_success: int = 0
    generate_fail: int = 0
    gemini_calls: int = 0
    gemini_success: int = 0
    gemini_fail: int = 0
    tts_calls: int = 0
    tts_success: int = 0
    tts_fail: int = 0


class UserUsage(_Persisted):
    total: int = 0
    last_call_at: int | None = None
    daily: dict[str, UsageCounters] = Field(default_factory=dict)
    recent_generate_at: list[int] = Field(default_factory=list)


class UsageState(_Persisted):
    totals: UsageCounters = Field(default_factory=UsageCounters)
    daily: dict[str, UsageCounters] = Field(default_factory=dict)
    by_user: dict[str, UserUsage] = Field(default_factory=dict)


class UserActivity(_Persisted):
    active: dict[str, bool] = Field(default_factory=dict)
    login: dict[str, bool] = Field(default_factory=dict)


class ActivityState(_Persisted):
    by_user: dict[str, UserActivity] = Field(default_factory=dict)


class User(_Persisted):
    id: str
    name: str = ""
    email: str = ""
    password_salt: str = ""
    password_hash: str = ""
    is_admin: bool = False
    is_disabled: bool = False
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    last_login_at: int | None = None
    last_seen_at: int | None = None


class Briefing(_Persisted):
    id: str
    user_id: str = "unknown"
    topics: list[str] = Field(default_factory=list)
    voice: str = "female"
    duration: int = 900
    script: str = ""
    audio_url: str | None = None
    is_demo: bool = False
    date: str | None = None
    created_at: int | None = None

    @property
    def doc_id(self) -> str:
        return f"{self.user_id or 'unknown'}::{self.id or 'unknown'}"


class AppState(_Persisted):
    schema_version: int = SCHEMA_VERSION
    users: list[User] = Field(default_factory=list)
    sessions: list[dict] = Field(default_factory=list)
    briefings: list[Briefing] = Field(default_factory=list)
    usage: UsageState = Field(default_factory=UsageState)
    activity: ActivityState = Field(default_factory=ActivityState)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ── Migration ──────────────────────────────────────────────────────────────

COUNTER_KEYS = [to_camel(name) for name in UsageCounters.model_fields]


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _timestamp(value) -> int | None:
    """Epoch milliseconds from a number or an ISO-8601 string."""
    if _is_number(value):
        return int(value)
    if isinstance(value, str) and value:
        try:
            return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            return None
    return None


def _migrate_counters(raw) -> dict:
    raw = _as_dict(raw)
    return {key: int(raw[key]) if _is_number(raw.get(key)) else 0 for key in COUNTER_KEYS}


def _migrate_daily(raw) -> dict:
    return {str(key): _migrate_counters(value) for key, value in _as_dict(raw).items()}


def _migrate_user_usage(raw) -> dict:
    raw = _as_dict(raw)
    return {
        "total": int(raw["total"]) if _is_number(raw.get("total")) else 0,
        "lastCallAt": _timestamp(raw.get("lastCallAt")),
        "daily": _migrate_daily(raw.get("daily")),
        "recentGenerateAt": [int(ts) for ts in _as_list(raw.get("recentGenerateAt")) if _is_number(ts)],
    }


def _migrate_usage(raw) -> dict:
    raw = _as_dict(raw)
    return {
        "totals": _migrate_counters(raw.get("totals")),
        "daily": _migrate_daily(raw.get("daily")),
        "byUser": {
            str(user_id): _migrate_user_usage(value)
            for user_id, value in _as_dict(raw.get("byUser")).items()
        },
    }


def _migrate_activity(raw) -> dict:
    by_user = {}
    for user_id, value in _as_dict(_as_dict(raw).get("byUser")).items():
        value = _as_dict(value)
        by_user[str(user_id)] = {
            "active": {str(k): bool(v) for k, v in _as_dict(value.get("active")).items()},
            "login": {str(k): bool(v) for k, v in _as_dict(value.get("login")).items()},
        }
    return {"byUser": by_user}


def _migrate_user(raw) -> dict | None:
    raw = _as_dict(raw)
    if not isinstance(raw.get("id"), str) or not raw["id"]:
        return None
    user = {
        "id": raw["id"],
        "name": str(raw.get("name") or ""),
        "email": str(raw.get("email") or ""),
        "passwordSalt": str(raw.get("passwordSalt") or ""),
        "passwordHash": str(raw.get("passwordHash") or ""),
        "isAdmin": bool(raw.get("isAdmin", False)),
        "isDisabled": bool(raw.get("isDisabled", False)),
        "lastLoginAt": _timestamp(raw.get("lastLoginAt")),
        "lastSeenAt": _timestamp(raw.get("lastSeenAt")),
    }
    created_at = _timestamp(raw.get("createdAt"))
    if created_at is not None:
        user["createdAt"] = created_at
    return user


def _migrate_topics(raw) -> list[str]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw or "[]")
        except json.JSONDecodeError:
            return []
    return [str(t) for t in _as_list(raw)]


def _migrate_briefing(raw) -> dict | None:
    raw = _as_dict(raw)
    if not raw.get("id"):
        return None
    duration = raw.get("duration")
    return {
        "id": str(raw["id"]),
        "userId": str(raw.get("userId") or "unknown"),
        "topics": _migrate_topics(raw.get("topics")),
        "voice": str(raw.get("voice") or "female"),
        "duration": int(duration) if _is_number(duration) else 900,
        "script": str(raw.get("script") or ""),
        "audioUrl": raw.get("audioUrl") or None,
        "isDemo": bool(raw.get("isDemo")),
        "date": raw.get("date") if isinstance(raw.get("date"), str) else None,
        "createdAt": _timestamp(raw.get("createdAt")),
    }


def migrate_state(raw: dict | None) -> AppState:
    """Bring any previously persisted state up to the current schema."""
    raw = _as_dict(raw)
    users = [u for u in (_migrate_user(item) for item in _as_list(raw.get("users"))) if u]
    briefings = [b for b in (_migrate_briefing(item) for item in _as_list(raw.get("briefings"))) if b]
    return AppState.model_validate({
        "schemaVersion": SCHEMA_VERSION,
        "users": users,
        "sessions": [s for s in _as_list(raw.get("sessions")) if isinstance(s, dict)],
        "briefings": briefings,
        "usage": _migrate_usage(raw.get("usage")),
        "activity": _migrate_activity(raw.get("activity")),
    })
