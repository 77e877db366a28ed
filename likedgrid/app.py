"""
Liked Grid Web Server
---------------------
A personal Flask app that shows your Spotify liked songs as a grid of
album covers and plays any of them on one of your devices.

Key Features:
 - OAuth login against your personal Spotify account (CSRF state, no disk cache)
 - Access token refreshed automatically from an HttpOnly cookie
 - Liked songs fetched across all pages and cached in memory
 - Playback on a chosen device, or in the browser via the Web Playback SDK

PREREQUISITES:
 1. Register a Spotify App at:
    https://developer.spotify.com/dashboard

 2. Add redirect URI in the Spotify developer portal:
    http://127.0.0.1:3000/spotify-auth

 3. Create `.env` file in the working directory (see .env.example)

 4. Install:
    pip install -e .

 5. Run:
    liked-grid
    then open http://127.0.0.1:3000/login
"""

import logging
import sys
import time

from flask import Flask, g, jsonify, redirect, render_template, request, url_for

from likedgrid import spotify_client
from likedgrid.config import Settings
from likedgrid.exceptions import ConfigError, SpotifyAPIError, StateError, TokenExchangeError
from likedgrid.spotify_auth import (
    SpotifyAuth,
    cache_key_for_request,
    clear_token_cookies,
    current_auth,
    require_auth,
    set_token_cookies,
)
from likedgrid.track_cache import TrackCache

logger = logging.getLogger(__name__)

# Upstream statuses the browser can act on; anything else is a bad gateway
PASSTHROUGH_STATUSES = (401, 403, 404, 429)


def _liked_tracks(app, access_token, force_refresh=False):
    cache = app.extensions["track_cache"]
    key = cache_key_for_request()
    if not force_refresh:
        cached = cache.get(key)
        if cached is not None:
            return cached

    tracks = spotify_client.fetch_liked_tracks(access_token)
    cache.set(key, tracks)
    return tracks


def create_app(settings=None, track_cache=None):
    """Application factory; settings default to the environment."""
    settings = settings or Settings.from_env()

    # ----------------------------------------------------
    # FLASK APP SETUP
    # ----------------------------------------------------
    app = Flask(__name__)
    app.config["SETTINGS"] = settings

    auth = SpotifyAuth(settings)
    auth.init_app(app)
    app.extensions["track_cache"] = track_cache or TrackCache(settings.track_cache_ttl_seconds)

    # ----------------------------------------------------
    # REQUEST LOGGING
    # ----------------------------------------------------
    @app.before_request
    def _start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def _record_status(response):
        g.response_status = response.status_code
        return response

    # teardown also runs when a view raised and after_request was skipped
    @app.teardown_request
    def _log_request(exc):
        started = g.get("request_started")
        duration_ms = (time.perf_counter() - started) * 1000 if started else 0.0
        logger.info(
            "request method=%s path=%s status=%s duration=%.1fms remote=%s",
            request.method,
            request.path,
            g.get("response_status", 500),
            duration_ms,
            request.remote_addr,
        )

    # ----------------------------------------------------
    # ERROR HANDLERS
    # ----------------------------------------------------
    @app.errorhandler(StateError)
    def _state_error(exc):
        return str(exc), 400

    @app.errorhandler(TokenExchangeError)
    def _exchange_error(exc):
        return str(exc), 500

    @app.errorhandler(SpotifyAPIError)
    def _spotify_error(exc):
        logger.error("%s", exc)
        status = exc.status if exc.status in PASSTHROUGH_STATUSES else 502
        return jsonify({"status": "error", "message": str(exc)}), status

    # ----------------------------------------------------
    # PAGES
    # ----------------------------------------------------
    @app.route("/")
    def home():
        """Login prompt, or the grid of liked songs once authenticated."""
        access_token = current_auth().access_token_for_request()
        if access_token is None:
            return render_template("index.html", logged_in=False)

        try:
            tracks = _liked_tracks(app, access_token)
        except SpotifyAPIError as exc:
            logger.error("could not load liked tracks: %s", exc)
            return (
                render_template("index.html", logged_in=True, tracks=[], error=str(exc), spotify_token=access_token),
                502,
            )

        return render_template("index.html", logged_in=True, tracks=tracks, spotify_token=access_token)

    # ----------------------------------------------------
    # OAUTH ROUTES
    # ----------------------------------------------------
    @app.route("/login")
    def login():
        try:
            auth_url = auth.authorize_url()
        except OSError:
            logger.exception("state generation failed")
            return "Failed to generate state", 500
        return redirect(auth_url, code=307)

    @app.route("/spotify-auth")
    def spotify_auth_callback():
        """Redirect URI: validate state, exchange the code, set cookies."""
        error = request.args.get("error")
        if error:
            logger.warning("Spotify authorization failed: %s", error)
            return f"Spotify authorization failed: {error}", 400

        auth.states.consume(request.args.get("state", ""))

        code = request.args.get("code")
        if not code:
            return "Missing authorization code", 400

        token_info = auth.exchange_code(code)
        response = redirect(url_for("home"), code=307)
        set_token_cookies(response, token_info, secure=settings.cookie_secure)
        logger.info("user authenticated")
        return response

    @app.route("/logout")
    def logout():
        app.extensions["track_cache"].invalidate(cache_key_for_request())
        response = redirect(url_for("home"), code=303)
        return clear_token_cookies(response)

    # ----------------------------------------------------
    # JSON API
    # ----------------------------------------------------
    @app.route("/api/tracks")
    @require_auth
    def api_tracks():
        force = request.args.get("refresh") in ("1", "true")
        tracks = _liked_tracks(app, g.access_token, force_refresh=force)
        return jsonify({"tracks": [t.to_dict() for t in tracks], "total": len(tracks)})

    @app.route("/api/devices")
    @require_auth
    def api_devices():
        return jsonify({"devices": spotify_client.list_devices(g.access_token)})

    @app.route("/api/play", methods=["POST"])
    @require_auth
    def api_play():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            body = {}

        track_uri = body.get("track_uri")
        if not isinstance(track_uri, str) or not track_uri.strip():
            return jsonify({"status": "error", "message": "track_uri is required"}), 400

        device_id = body.get("device_id") or ""
        if not isinstance(device_id, str):
            return jsonify({"status": "error", "message": "device_id must be a string"}), 400

        track_uri = track_uri.strip()
        device_id = device_id.strip()
        spotify_client.play_track(g.access_token, device_id, track_uri)
        return "", 204

    @app.route("/api/token")
    @require_auth
    def api_token():
        """Current access token for the Web Playback SDK's getOAuthToken."""
        return jsonify({"access_token": g.access_token})

    return app


# ----------------------------------------------------
# APP ENTRY POINT
# ----------------------------------------------------
def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    logging.getLogger().setLevel(settings.log_level)
    app = create_app(settings)

    logger.info("server starting url=%s", settings.base_url)
    logger.info("authenticate url=%s/login", settings.base_url)
    app.run(host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
