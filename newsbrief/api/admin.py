from fastapi import APIRouter, Depends

from newsbrief.api.auth import MIN_PASSWORD_LENGTH, get_app_state, hash_password, require_admin
from newsbrief.api.errors import NotFoundError, ValidationError
from newsbrief.api.schemas import AdminUserPatch, PublicUser
from newsbrief.observability.logger import get_logger
from newsbrief.storage.schema import User, UsageCounters
from newsbrief.usage.ledger import DAY_MS, now_ms, to_date_key

log = get_logger("admin")

router = APIRouter(prefix="/api/admin", tags=["admin"])

SERIES_DAYS = 30


def _date_keys(now: int, days: int) -> list[str]:
    """UTC date keys for the last ``days`` days, oldest first."""
    return [to_date_key(now - i * DAY_MS) for i in range(days - 1, -1, -1)]


def _count_flags(flags: dict[str, bool], now: int, days: int) -> int:
    return sum(1 for key in _date_keys(now, days) if flags.get(key))


def _user_summary(user: User, ledger) -> dict:
    usage = ledger.get_user_usage(user.id)
    return {**PublicUser.of(user), "usageTotal": usage.total, "usageLastCallAt": usage.last_call_at}


@router.get("/overview")
async def overview(admin: User = Depends(require_admin)):
    state = get_app_state()
    ledger = state["ledger"]
    users = state["users"].all
    by_user_activity = state["store"].state.activity.by_user
    totals = ledger.get_global_totals()
    now = now_ms()

    def window(days: int) -> int:
        return sum(ledger.get_day(key).generate_briefing for key in _date_keys(now, days))

    def recently_seen(days: int) -> int:
        return sum(1 for u in users if u.last_seen_at and now - u.last_seen_at <= days * DAY_MS)

    series = {name: [] for name in ("usage", "usageGemini", "usageTts", "registrations", "active", "login")}
    for key in _date_keys(now, SERIES_DAYS):
        day = ledger.get_day(key)
        series["usage"].append({"date": key, "count": day.generate_briefing})
        series["usageGemini"].append({"date": key, "count": day.gemini_calls})
        series["usageTts"].append({"date": key, "count": day.tts_calls})
        series["registrations"].append({
            "date": key,
            "count": sum(1 for u in users if to_date_key(u.created_at or 0) == key),
        })
        series["active"].append({
            "date": key,
            "count": sum(1 for u in users if u.id in by_user_activity and by_user_activity[u.id].active.get(key)),
        })
        series["login"].append({
            "date": key,
            "count": sum(1 for u in users if u.id in by_user_activity and by_user_activity[u.id].login.get(key)),
        })
    series["active3d"] = series["active"][-3:]

    return {
        "totals": {
            "users": len(users),
            "active7": recently_seen(7),
            "active30": recently_seen(30),
            "apiCalls": totals.generate_briefing,
            "geminiCalls": totals.gemini_calls,
            "geminiSuccess": totals.gemini_success,
            "geminiFail": totals.gemini_fail,
            "ttsCalls": totals.tts_calls,
            "ttsSuccess": totals.tts_success,
            "ttsFail": totals.tts_fail,
            "generateSuccess": totals.generate_success,
            "generateFail": totals.generate_fail,
        },
        "windows": {"last24h": window(1), "last7d": window(7), "last30d": window(30)},
        "series": series,
        "costEstimate": state["costs"].estimate(now),
    }


@router.get("/cost-estimate")
async def cost_estimate(admin: User = Depends(require_admin)):
    return get_app_state()["costs"].estimate()


@router.get("/users")
async def list_users(admin: User = Depends(require_admin)):
    state = get_app_state()
    users = [_user_summary(u, state["ledger"]) for u in state["users"].all]
    users.sort(key=lambda u: u["lastSeenAt"] or 0, reverse=True)
    return {"users": users}


@router.get("/users/{user_id}")
async def user_detail(user_id: str, admin: User = Depends(require_admin)):
    state = get_app_state()
    user = state["users"].get(user_id)
    if user is None:
        raise NotFoundError("Not found")

    usage = state["ledger"].get_user_usage(user_id)
    activity = state["activity"].get(user_id)
    now = now_ms()

    api_series, active_series, login_series = [], [], []
    for key in _date_keys(now, SERIES_DAYS):
        day = usage.daily.get(key) or UsageCounters()
        api_series.append({
            "date": key,
            "generate": day.generate_briefing,
            "success": day.generate_success,
            "fail": day.generate_fail,
            "gemini": day.gemini_calls,
            "tts": day.tts_calls,
        })
        active_series.append({"date": key, "count": 1 if activity.active.get(key) else 0})
        login_series.append({"date": key, "count": 1 if activity.login.get(key) else 0})

    repo = state["briefings"]
    return {
        "user": _user_summary(user, state["ledger"]),
        "activity": {
            "active7": _count_flags(activity.active, now, 7),
            "active30": _count_flags(activity.active, now, 30),
            "login7": _count_flags(activity.login, now, 7),
            "login30": _count_flags(activity.login, now, 30),
        },
        "series": {"api": api_series, "active": active_series, "login": login_series},
        "briefings": [await repo.to_api(b) for b in repo.list_for_user(user_id)],
    }


@router.patch("/users/{user_id}")
async def update_user(user_id: str, body: AdminUserPatch, admin: User = Depends(require_admin)):
    state = get_app_state()
    user = state["users"].get(user_id)
    if user is None:
        raise NotFoundError("Not found")

    changed = False
    if body.is_admin is not None:
        user.is_admin = body.is_admin
        changed = True
    if body.is_disabled is not None:
        user.is_disabled = body.is_disabled
        changed = True
    if body.reset_password is not None:
        if len(body.reset_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError("Password must be at least 6 characters")
        user.password_salt, user.password_hash = hash_password(body.reset_password)
        changed = True

    if changed:
        state["users"].save()
        log.info("user_updated", user_id=user_id, by=admin.id)
    return {"user": PublicUser.of(user)}


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, admin: User = Depends(require_admin)):
    state = get_app_state()
    user = state["users"].remove(user_id)
    if user is None:
        raise NotFoundError("Not found")

    state["ledger"].forget_user(user_id)
    state["activity"].forget_user(user_id)
    removed = await state["briefings"].delete_for_user(user_id)
    state["store"].save(users=True, briefings=True, usage=True, activity=True)
    log.info("user_deleted", user_id=user_id, briefings=removed, by=admin.id)
    return {"ok": True, "removed": PublicUser.of(user)}
