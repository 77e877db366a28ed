"""
=========================================================
Spotify OAuth (authorization-code flow)
=========================================================

Flow:
1. /login issues a one-time CSRF state and redirects the
   browser to Spotify's authorize page
2. Spotify redirects back to /spotify-auth?code=...&state=...
3. The state is consumed, the code is exchanged for tokens
   and the tokens are stored in HttpOnly cookies
4. Protected views use `require_auth`, which refreshes the
   access token shortly before it expires

Tokens never touch disk: spotipy gets a MemoryCacheHandler
per call instead of its default `.cache` file.
=========================================================
"""

# =========================================================
# IMPORTS
# =========================================================
import logging
import secrets
import threading
import time
from datetime import datetime, timezone
from functools import wraps

import requests
from flask import current_app, g, jsonify, redirect, request, url_for
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from likedgrid.config import REFRESH_COOKIE_MAX_AGE, STATE_TTL_SECONDS
from likedgrid.exceptions import (
    ExpiredStateError,
    InvalidStateError,
    TokenExchangeError,
    TokenRefreshError,
)
from likedgrid.track_cache import cache_key

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "spotify_access_token"
REFRESH_COOKIE = "spotify_refresh_token"
EXPIRY_COOKIE = "spotify_token_expiry"

EXPIRY_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

EXTENSION_KEY = "spotify_auth"


# =========================================================
# CSRF STATE
# =========================================================
def generate_state():
    """Random URL-safe token from 16 bytes of OS entropy."""
    return secrets.token_urlsafe(16)


class StateStore:
    """
    In-memory map of issued states to their creation time.

    A state is only valid for one OAuth round trip, so it is
    removed on first use whether or not it validates.
    """

    def __init__(self, ttl_seconds=STATE_TTL_SECONDS, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._states = {}

    def __len__(self):
        with self._lock:
            return len(self._states)

    def issue(self):
        state = generate_state()
        with self._lock:
            self._purge_locked()
            self._states[state] = self._clock()
        return state

    def consume(self, state):
        with self._lock:
            created_at = self._states.pop(state, None) if state else None

        if created_at is None:
            raise InvalidStateError()
        if self._clock() - created_at > self.ttl_seconds:
            raise ExpiredStateError()

    def purge_expired(self):
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self):
        cutoff = self._clock() - self.ttl_seconds
        expired = [s for s, created_at in self._states.items() if created_at < cutoff]
        for s in expired:
            del self._states[s]
        return len(expired)


# =========================================================
# COOKIES
# =========================================================
def format_expiry(expires_at):
    """Epoch seconds -> RFC 3339 UTC string."""
    return datetime.fromtimestamp(int(expires_at), tz=timezone.utc).strftime(EXPIRY_FORMAT)


def parse_expiry(value):
    """RFC 3339 UTC string -> aware datetime, or None if unreadable."""
    if not value:
        return None
    try:
        return datetime.strptime(value, EXPIRY_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def set_token_cookies(response, token_info, secure=False):
    expires = datetime.fromtimestamp(int(token_info["expires_at"]), tz=timezone.utc)
    common = dict(path="/", httponly=True, secure=secure, samesite="Lax")

    response.set_cookie(ACCESS_COOKIE, token_info["access_token"], expires=expires, **common)
    response.set_cookie(EXPIRY_COOKIE, format_expiry(token_info["expires_at"]), expires=expires, **common)

    # Spotify does not always rotate the refresh token
    if token_info.get("refresh_token"):
        response.set_cookie(
            REFRESH_COOKIE, token_info["refresh_token"], max_age=REFRESH_COOKIE_MAX_AGE, **common
        )
    return response


def clear_token_cookies(response):
    for name in (ACCESS_COOKIE, EXPIRY_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/")
    return response


# =========================================================
# SPOTIFY OAUTH CLIENT
# =========================================================
class SpotifyAuth:
    """OAuth glue between Flask and spotipy's SpotifyOAuth."""

    def __init__(self, settings, state_store=None):
        self.settings = settings
        self.states = state_store or StateStore(settings.state_ttl_seconds)

    def init_app(self, app):
        app.extensions[EXTENSION_KEY] = self
        app.after_request(self._persist_refreshed_token)

    def _oauth(self, cache_handler=None):
        return SpotifyOAuth(
            client_id=self.settings.client_id,
            client_secret=self.settings.client_secret,
            redirect_uri=self.settings.redirect_url,
            scope=" ".join(self.settings.scopes),
            cache_handler=cache_handler or MemoryCacheHandler(),
            open_browser=False,
        )

    def authorize_url(self):
        """Issue a state and build the Spotify authorize URL carrying it."""
        state = self.states.issue()
        return self._oauth().get_authorize_url(state=state)

    def exchange_code(self, code):
        """Trade an authorization code for token info (POST /api/token)."""
        cache = MemoryCacheHandler()
        try:
            self._oauth(cache).get_access_token(code, as_dict=False, check_cache=False)
        except (SpotifyOauthError, requests.RequestException) as exc:
            logger.warning("token exchange failed: %s", exc)
            raise TokenExchangeError() from exc

        token_info = cache.get_cached_token()
        if not token_info or not token_info.get("access_token"):
            raise TokenExchangeError()
        return token_info

    def refresh(self, refresh_token):
        try:
            token_info = self._oauth().refresh_access_token(refresh_token)
        except (SpotifyOauthError, requests.RequestException) as exc:
            raise TokenRefreshError(f"Failed to refresh token: {exc}") from exc

        if not token_info or not token_info.get("access_token"):
            raise TokenRefreshError()
        token_info.setdefault("refresh_token", refresh_token)
        return token_info

    def needs_refresh(self, expiry_value, now=None):
        expiry = parse_expiry(expiry_value)
        if expiry is None:
            return True
        now = now or datetime.now(timezone.utc)
        return (expiry - now).total_seconds() < self.settings.refresh_margin_seconds

    def access_token_for_request(self):
        """
        Resolve a usable access token from the request cookies.

        Returns None when the user has to log in again.
        """
        access_token = request.cookies.get(ACCESS_COOKIE)
        if access_token and not self.needs_refresh(request.cookies.get(EXPIRY_COOKIE)):
            return access_token

        refresh_token = request.cookies.get(REFRESH_COOKIE)
        if not refresh_token:
            if access_token:
                logger.info("Token expired and no refresh token, redirecting to login")
            else:
                logger.info("No access token found, redirecting to login")
            return None

        try:
            token_info = self.refresh(refresh_token)
        except TokenRefreshError as exc:
            logger.warning("%s", exc)
            return None

        g.refreshed_token = token_info
        logger.info("Token refreshed successfully")
        return token_info["access_token"]

    def _persist_refreshed_token(self, response):
        token_info = g.pop("refreshed_token", None)
        if token_info is not None:
            set_token_cookies(response, token_info, secure=self.settings.cookie_secure)
        return response


def current_auth():
    return current_app.extensions[EXTENSION_KEY]


def cache_key_for_request():
    """
    Track-cache key for the user behind this request.

    Prefers tokens refreshed during the request, since those are the cookies
    the browser will send from now on.
    """
    refreshed = g.get("refreshed_token") or {}
    return cache_key(
        refresh_token=refreshed.get("refresh_token") or request.cookies.get(REFRESH_COOKIE),
        access_token=refreshed.get("access_token") or request.cookies.get(ACCESS_COOKIE),
    )


# =========================================================
# MIDDLEWARE
# =========================================================
def require_auth(view):
    """
    Only let requests with a valid (possibly refreshed) access token through.

    The token is available to the view as `g.access_token`.
    """

    @wraps(view)
    def wrapped(*args, **kwargs):
        access_token = current_auth().access_token_for_request()
        if access_token is None:
            if request.path.startswith("/api/"):
                return jsonify({"status": "error", "message": "not authenticated"}), 401
            return redirect(url_for("login"), code=307)

        g.access_token = access_token
        return view(*args, **kwargs)

    return wrapped
