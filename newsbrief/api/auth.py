"""Email/password accounts with signed, stateless session tokens."""

import hashlib
import hmac
import re
import secrets
import uuid

from authlib.jose import JsonWebToken
from authlib.jose.errors import JoseError
from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from newsbrief.api.errors import AuthError, ForbiddenError, ValidationError
from newsbrief.api.schemas import LoginRequest, PublicUser, RegisterRequest
from newsbrief.observability.logger import get_logger
from newsbrief.storage.schema import User
from newsbrief.storage.users import normalize_email
from newsbrief.usage.ledger import now_ms

log = get_logger("auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
LAST_SEEN_REFRESH_MS = 60 * 1000

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
    "Vary": "Authorization",
}


def get_app_state():
    from newsbrief.main import app_state

    return app_state


# ── Passwords ──────────────────────────────────────────────────────────────

def _scrypt(password: str, salt: str) -> bytes:
    return hashlib.scrypt(password.encode(), salt=salt.encode(), n=16384, r=8, p=1, dklen=64,
                          maxmem=64 * 1024 * 1024)


def hash_password(password: str) -> tuple[str, str]:
    """Return (salt, hash) as hex strings."""
    salt = secrets.token_hex(16)
    return salt, _scrypt(password, salt).hex()


def verify_password(password: str, salt: str, expected_hash: str) -> bool:
    if not salt or not expected_hash:
        return False
    return hmac.compare_digest(_scrypt(password, salt).hex(), expected_hash)


# ── Session tokens ─────────────────────────────────────────────────────────

bearer_scheme = HTTPBearer(auto_error=False)

TOKEN_CLAIMS = {
    "sub": {"essential": True},
    "exp": {"essential": True},
}


class SessionTokens:
    """HS256 JWTs carrying ``sub`` (user id), ``iat``, ``exp`` and a ``jti`` nonce.

    Nothing is stored server side; logging out is a client-side operation.
    """

    def __init__(self, secret: str, ttl_seconds: int, clock=now_ms):
        self.secret = secret
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.jwt = JsonWebToken(["HS256"])

    def _now(self) -> int:
        return self.clock() // 1000

    def issue(self, user_id: str) -> str:
        now = self._now()
        claims = {"sub": user_id, "iat": now, "exp": now + self.ttl_seconds, "jti": secrets.token_hex(8)}
        return self.jwt.encode({"alg": "HS256"}, claims, self.secret).decode("ascii")

    def verify(self, token: str | None) -> dict | None:
        """Return the claims of a valid, unexpired token, else None."""
        if not token:
            return None
        try:
            claims = self.jwt.decode(token, self.secret, claims_options=TOKEN_CLAIMS)
            claims.validate(now=self._now())
        except (JoseError, ValueError) as e:
            log.debug("session_token_rejected", error=str(e))
            return None
        return dict(claims)


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Auth responses must never be cached."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith("/api/auth"):
            response.headers.update(NO_CACHE_HEADERS)
        return response


# ── Dependencies ───────────────────────────────────────────────────────────

async def require_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> User:
    state = get_app_state()
    claims = state["sessions"].verify(credentials.credentials if credentials else None)
    user = state["users"].get(claims["sub"]) if claims else None
    if user is None:
        raise AuthError("Unauthorized")
    if user.is_disabled:
        raise ForbiddenError("Account disabled")

    now = now_ms()
    if not user.last_seen_at or now - user.last_seen_at > LAST_SEEN_REFRESH_MS:
        user.last_seen_at = now
        state["users"].save()
    state["activity"].mark_active(user.id, now)
    return user


async def require_admin(user: User = Depends(require_user)) -> User:
    if not user.is_admin:
        raise ForbiddenError("Forbidden")
    return user


# ── Routes ─────────────────────────────────────────────────────────────────

@router.post("/register")
async def register(body: RegisterRequest):
    state = get_app_state()
    name = (body.name or "").strip()
    email = normalize_email(body.email)
    password = body.password or ""
    if not name or not email or not password:
        raise ValidationError("名前、メールアドレス、パスワードを入力してください。")
    if not EMAIL_RE.match(email):
        raise ValidationError("正しいメールアドレスを入力してください。")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("パスワードは6文字以上で入力してください。")
    if state["users"].find_by_email(email):
        raise ValidationError("このメールアドレスは既に登録されています。")

    salt, password_hash = hash_password(password)
    user = state["users"].add(User(
        id=f"user-{uuid.uuid4()}",
        name=name,
        email=email,
        password_salt=salt,
        password_hash=password_hash,
    ))
    log.info("user_registered", user_id=user.id)
    return {"user": PublicUser.of(user), "token": state["sessions"].issue(user.id)}


@router.post("/login")
async def login(body: LoginRequest):
    state = get_app_state()
    email = normalize_email(body.email)
    password = body.password or ""
    if not email or not password:
        raise ValidationError("メールアドレスとパスワードを入力してください。")
    if not EMAIL_RE.match(email):
        raise ValidationError("正しいメールアドレスを入力してください。")

    user = state["users"].find_by_email(email)
    if user is None or not verify_password(password, user.password_salt, user.password_hash):
        log.info("login_rejected", email=email)
        raise AuthError("メールアドレスまたはパスワードが違います。")
    if user.is_disabled:
        raise ForbiddenError("Account disabled")

    user.last_login_at = now_ms()
    user.last_seen_at = user.last_login_at
    state["activity"].mark_login(user.id, user.last_login_at)
    state["users"].save()
    log.info("login_success", user_id=user.id)
    return {"user": PublicUser.of(user), "token": state["sessions"].issue(user.id)}


@router.post("/logout")
async def logout(user: User = Depends(require_user)):
    return {"ok": True}


@router.get("/me")
async def me(user: User = Depends(require_user)):
    return {"user": PublicUser.of(user)}
