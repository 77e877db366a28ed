from __future__ import annotations

import sys
import time
from pathlib import Path
from urllib.parse import urlencode

import pytest

ROOT = str(Path(__file__).resolve().parents[1])
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from likedgrid import spotify_auth  # noqa: E402
from likedgrid.app import create_app  # noqa: E402
from likedgrid.config import Settings  # noqa: E402
from likedgrid.spotify_auth import (  # noqa: E402
    ACCESS_COOKIE,
    EXPIRY_COOKIE,
    REFRESH_COOKIE,
    format_expiry,
)


class FakeAccounts:
    """Stand-in for accounts.spotify.com behind spotipy's SpotifyOAuth."""

    def __init__(self):
        self.exchange_error = None
        self.refresh_error = None
        self.rotate_refresh_token = False
        self.exchanged_codes = []
        self.refreshed_tokens = []
        self.instances = []

    def __call__(self, **kwargs):
        oauth = _FakeOAuth(self, **kwargs)
        self.instances.append(oauth)
        return oauth


class _FakeOAuth:
    def __init__(self, accounts, **kwargs):
        self.accounts = accounts
        self.kwargs = kwargs
        self.cache_handler = kwargs["cache_handler"]

    def get_authorize_url(self, state=None):
        params = {
            "client_id": self.kwargs["client_id"],
            "response_type": "code",
            "redirect_uri": self.kwargs["redirect_uri"],
            "scope": self.kwargs["scope"],
            "state": state,
        }
        return "https://accounts.spotify.com/authorize?" + urlencode(params)

    def get_access_token(self, code=None, as_dict=True, check_cache=True):
        self.accounts.exchanged_codes.append(code)
        if self.accounts.exchange_error is not None:
            raise self.accounts.exchange_error
        token_info = {
            "access_token": f"access-{code}",
            "refresh_token": "refresh-1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "expires_at": int(time.time()) + 3600,
            "scope": self.kwargs["scope"],
        }
        self.cache_handler.save_token_to_cache(token_info)
        return token_info if as_dict else token_info["access_token"]

    def refresh_access_token(self, refresh_token):
        self.accounts.refreshed_tokens.append(refresh_token)
        if self.accounts.refresh_error is not None:
            raise self.accounts.refresh_error
        token_info = {
            "access_token": "access-refreshed",
            "token_type": "Bearer",
            "expires_in": 3600,
            "expires_at": int(time.time()) + 3600,
        }
        if self.accounts.rotate_refresh_token:
            token_info["refresh_token"] = "refresh-2"
        return token_info


@pytest.fixture
def settings():
    return Settings(client_id="client-id", client_secret="client-secret")


@pytest.fixture
def fake_accounts(monkeypatch):
    accounts = FakeAccounts()
    monkeypatch.setattr(spotify_auth, "SpotifyOAuth", accounts)
    return accounts


@pytest.fixture
def app(settings, fake_accounts):
    app = create_app(settings)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def login_cookies(client, access="access-1", refresh="refresh-1", expires_in=3600):
    """Put the cookies of a logged-in browser into the test client."""
    if access is not None:
        client.set_cookie(ACCESS_COOKIE, access)
    if expires_in is not None:
        client.set_cookie(EXPIRY_COOKIE, format_expiry(time.time() + expires_in))
    if refresh is not None:
        client.set_cookie(REFRESH_COOKIE, refresh)


def set_cookie_headers(response):
    """Set-Cookie headers of a response, keyed by cookie name."""
    return {h.split("=", 1)[0]: h for h in response.headers.getlist("Set-Cookie")}
