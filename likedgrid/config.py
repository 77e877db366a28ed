"""
Runtime configuration
---------------------
Secrets and server options are read from the environment. A `.env` file in
the working directory is loaded first, so local development only needs:

    CLIENT_ID=
    CLIENT_SECRET=
    REDIRECT_URL=http://127.0.0.1:3000/spotify-auth

The redirect URL MUST match the one registered for the app at
https://developer.spotify.com/dashboard
"""

import logging
import os

from dotenv import find_dotenv, load_dotenv

from likedgrid.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_URL = "http://127.0.0.1:3000/spotify-auth"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000

# Library read access plus what the Web Playback SDK and /me/player need
SCOPES = [
    "user-read-private",
    "user-read-email",
    "playlist-read-private",
    "user-library-read",
    "streaming",
    "user-read-playback-state",
    "user-modify-playback-state",
]

# A state only has to survive the OAuth round trip
STATE_TTL_SECONDS = 2 * 60
# Refresh when the access token has less than this left
REFRESH_MARGIN_SECONDS = 5 * 60
REFRESH_COOKIE_MAX_AGE = 60 * 60 * 24 * 30


def _env_int(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _env_flag(name, default=False):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(
        self,
        client_id,
        client_secret,
        redirect_url=DEFAULT_REDIRECT_URL,
        host=DEFAULT_HOST,
        port=DEFAULT_PORT,
        cookie_secure=False,
        track_cache_ttl_seconds=300,
        log_level="INFO",
        scopes=None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url
        self.host = host
        self.port = port
        self.cookie_secure = cookie_secure
        self.track_cache_ttl_seconds = track_cache_ttl_seconds
        self.log_level = log_level
        self.scopes = list(scopes or SCOPES)
        self.state_ttl_seconds = STATE_TTL_SECONDS
        self.refresh_margin_seconds = REFRESH_MARGIN_SECONDS

    @property
    def base_url(self):
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_env(cls, dotenv_path=None):
        """Build settings from `.env` plus the process environment."""
        # search from the working directory, not from this installed module
        if not load_dotenv(dotenv_path or find_dotenv(usecwd=True)):
            logger.warning(".env file not found, using system environment variables")

        client_id = os.getenv("CLIENT_ID", "").strip()
        client_secret = os.getenv("CLIENT_SECRET", "").strip()
        if not client_id or not client_secret:
            raise ConfigError("missing required env vars: CLIENT_ID, CLIENT_SECRET")

        log_level = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ConfigError(f"LOG_LEVEL must be a logging level name, got {log_level!r}")

        return cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_url=os.getenv("REDIRECT_URL") or DEFAULT_REDIRECT_URL,
            host=os.getenv("HOST") or DEFAULT_HOST,
            port=_env_int("PORT", DEFAULT_PORT),
            cookie_secure=_env_flag("COOKIE_SECURE"),
            track_cache_ttl_seconds=_env_int("TRACK_CACHE_TTL_SECONDS", 300),
            log_level=log_level,
        )
