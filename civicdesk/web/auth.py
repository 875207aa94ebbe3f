"""
Auth helpers for the HTTP service.

Security Features:
- Signed session cookies (itsdangerous), one identity per client
- Time-limited password reset tokens (itsdangerous)
- Rate limiting on login attempts
- Production-ready cookie settings
- CSRF token generation and validation

For production:
- Set CIVICDESK_SESSION_SECRET to a 32+ character random string
- Set CIVICDESK_PRODUCTION=1 for secure cookie settings
"""

import os
import secrets
import time
import warnings
from collections import defaultdict
from threading import Lock
from typing import Iterator, MutableMapping, Optional, Tuple
from uuid import UUID

from fastapi import Request, Response
from itsdangerous import BadData, URLSafeSerializer, URLSafeTimedSerializer

from ..core.session import SESSION_KEY, SessionStore
from ..observability import is_production
from ..schemas import Identity, SessionRecord


# ============================================================
# CONFIGURATION
# ============================================================

SESSION_COOKIE = SESSION_KEY
CSRF_COOKIE = "bhimdatta-csrf"
CSRF_HEADER = "X-CSRF-Token"

SESSION_MAX_AGE_SECONDS = 86400 * 7  # 7 days
RESET_TOKEN_MAX_AGE_SECONDS = 60 * 60  # 1 hour

# Rate limiting: max 5 attempts per 15 minutes per IP
RATE_LIMIT_MAX_ATTEMPTS = 5
RATE_LIMIT_WINDOW_SECONDS = 15 * 60  # 15 minutes

_DEV_SECRET = "dev-insecure-secret-do-not-use-in-production-12345678"


def csrf_required() -> bool:
    """CSRF checks are on in production unless CIVICDESK_REQUIRE_CSRF says otherwise."""
    flag = os.environ.get("CIVICDESK_REQUIRE_CSRF", "").lower()
    if flag:
        return flag in ("1", "true", "yes")
    return is_production()


# ============================================================
# SIGNING
# ============================================================

def _secret() -> str:
    secret = os.environ.get("CIVICDESK_SESSION_SECRET", "")
    if not secret or len(secret) < 16:
        if is_production():
            raise RuntimeError(
                "CIVICDESK_SESSION_SECRET must be set in production. "
                "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )
        warnings.warn(
            "CIVICDESK_SESSION_SECRET not set. Using insecure default.",
            stacklevel=3,
        )
        secret = _DEV_SECRET
    return secret


def session_serializer() -> URLSafeSerializer:
    return URLSafeSerializer(secret_key=_secret(), salt="civicdesk-session-v1")


def _reset_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=_secret(), salt="civicdesk-password-reset-v1")


# ============================================================
# SESSION COOKIES
# ============================================================

class CookieJar(MutableMapping[str, str]):
    """
    Session storage backed by HTTP cookies.

    Reads come from the incoming request; writes and deletes go to the
    outgoing response and are visible to later reads in the same request.
    Every session cookie write also issues a fresh CSRF cookie, and every
    delete removes it.
    """

    def __init__(self, request: Request, response: Response):
        self._request = request
        self._response = response
        self._pending: dict[str, Optional[str]] = {}

    def __getitem__(self, key: str) -> str:
        if key in self._pending:
            value = self._pending[key]
            if value is None:
                raise KeyError(key)
            return value
        return self._request.cookies[key]

    def __setitem__(self, key: str, value: str) -> None:
        self._pending[key] = value
        is_prod = is_production()
        self._response.set_cookie(
            key=key,
            value=value,
            httponly=True,
            samesite="strict" if is_prod else "lax",
            secure=is_prod,  # HTTPS only in production
            path="/",
            max_age=SESSION_MAX_AGE_SECONDS,
        )
        # CSRF token cookie (readable by JavaScript for the request header)
        self._response.set_cookie(
            key=CSRF_COOKIE,
            value=generate_csrf_token(),
            httponly=False,
            samesite="strict" if is_prod else "lax",
            secure=is_prod,
            path="/",
            max_age=SESSION_MAX_AGE_SECONDS,
        )

    def __delitem__(self, key: str) -> None:
        if key not in self:
            raise KeyError(key)
        self._pending[key] = None
        self._request.state.session_cleared = True
        expire_session_cookies(self._response)

    def _keys(self) -> set[str]:
        keys = set(self._request.cookies)
        for key, value in self._pending.items():
            if value is None:
                keys.discard(key)
            else:
                keys.add(key)
        return keys

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys())

    def __len__(self) -> int:
        return len(self._keys())


def expire_session_cookies(response: Response) -> None:
    """Tell the client to drop both the session and the CSRF cookie."""
    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")


def session_was_cleared(request: Request) -> bool:
    """True if this request discarded its session cookie."""
    return getattr(request.state, "session_cleared", False)


def session_store(request: Request, response: Response) -> SessionStore:
    """SessionStore for one request/response pair."""
    return SessionStore(CookieJar(request, response), session_serializer(), key=SESSION_COOKIE)


def peek_session(request: Request) -> Optional[SessionRecord]:
    """
    Read the session record without touching the response.

    Used for log context; an unreadable cookie just yields None here.
    """
    if not request.cookies.get(SESSION_COOKIE):
        return None
    return SessionStore(dict(request.cookies), session_serializer(), key=SESSION_COOKIE).load()


# ============================================================
# PASSWORD RESET TOKENS
# ============================================================

def create_reset_token(identity: Identity, fingerprint: str) -> str:
    """
    Signed, time-limited token naming the identity to reset.

    fingerprint is the identity's current password fingerprint; the token
    stops working once the password changes.
    """
    return _reset_serializer().dumps({"iid": str(identity.id), "pwd": fingerprint})


def read_reset_token(token: str) -> Optional[Tuple[UUID, str]]:
    """
    (identity id, password fingerprint) from a reset token, or None if the
    token is forged, malformed or older than RESET_TOKEN_MAX_AGE_SECONDS.
    """
    if not token:
        return None
    try:
        data = _reset_serializer().loads(token, max_age=RESET_TOKEN_MAX_AGE_SECONDS)
        return UUID(str(data["iid"])), str(data["pwd"])
    except (BadData, KeyError, TypeError, ValueError):
        return None


# ============================================================
# RATE LIMITING
# ============================================================

# In-memory rate limit storage (use Redis for multi-server deployments)
_rate_limit_attempts: dict[str, list[float]] = defaultdict(list)
_rate_limit_lock = Lock()


def _clean_old_attempts(ip: str) -> None:
    """Remove expired rate limit entries."""
    cutoff = time.time() - RATE_LIMIT_WINDOW_SECONDS
    _rate_limit_attempts[ip] = [t for t in _rate_limit_attempts[ip] if t > cutoff]


def check_rate_limit(ip: str) -> Tuple[bool, int]:
    """
    Check if an IP is rate limited.

    Returns:
        Tuple of (is_allowed, retry_after_seconds)
    """
    with _rate_limit_lock:
        _clean_old_attempts(ip)
        attempts = _rate_limit_attempts[ip]
        if len(attempts) >= RATE_LIMIT_MAX_ATTEMPTS:
            retry_after = int(RATE_LIMIT_WINDOW_SECONDS - (time.time() - min(attempts)))
            return False, max(1, retry_after)
    return True, 0


def record_login_attempt(ip: str) -> None:
    """Record a login attempt for rate limiting."""
    with _rate_limit_lock:
        _rate_limit_attempts[ip].append(time.time())


def clear_rate_limit(ip: str) -> None:
    """Clear rate limit on successful login."""
    with _rate_limit_lock:
        _rate_limit_attempts.pop(ip, None)


def reset_rate_limits() -> None:
    with _rate_limit_lock:
        _rate_limit_attempts.clear()


# ============================================================
# CSRF PROTECTION
# ============================================================

def generate_csrf_token() -> str:
    """Generate a cryptographically secure CSRF token."""
    return secrets.token_urlsafe(32)


def validate_csrf_token(cookie_token: Optional[str], header_token: Optional[str]) -> bool:
    """
    Validate CSRF token (double-submit cookie pattern).

    The token in the cookie must match the token in the header.
    """
    if not cookie_token or not header_token:
        return False
    return secrets.compare_digest(cookie_token, header_token)


# ============================================================
# UTILITY FUNCTIONS
# ============================================================

def get_client_ip(request: Request) -> str:
    """Extract client IP from request (handles proxies)."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP", "")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"
