"""
=========================================================
Spotify Web API client
=========================================================

Purpose:
- Fetch every saved ("liked") track of the current user,
  following the paging `next` links
- Normalize the verbose track objects into grid tiles
  (stable URI, name, first artist, small cover image)
- List the user's devices and start playback on one

Every call builds a short-lived spotipy client from the
user's bearer token. spotipy handles headers, JSON and
429 retries; failures are re-raised as SpotifyAPIError.
=========================================================
"""

# =========================================================
# IMPORTS
# =========================================================
import logging
from dataclasses import asdict, dataclass
from typing import List, Optional

import requests
import spotipy
from spotipy.exceptions import SpotifyException

from likedgrid.exceptions import SpotifyAPIError

logger = logging.getLogger(__name__)

SAVED_TRACKS_PAGE_SIZE = 50
THUMBNAIL_SIZE = 64
REQUEST_TIMEOUT_SEC = 10


@dataclass(frozen=True)
class Track:
    """One tile of the liked-tracks grid."""

    id: str  # stable spotify:track: URI, playable via /me/player/play
    name: str
    artist: str
    album_image: str

    def to_dict(self):
        return asdict(self)


def _client(access_token):
    return spotipy.Spotify(auth=access_token, requests_timeout=REQUEST_TIMEOUT_SEC)


def _api_error(exc):
    if isinstance(exc, SpotifyException):
        return SpotifyAPIError(exc.http_status, exc.msg)
    return SpotifyAPIError(None, str(exc))


# =========================================================
# NORMALIZATION
# =========================================================
def stable_track_uri(track):
    """
    URI to use for playback and matching.

    With `market=from_token` Spotify may relink a track to a market-specific
    copy; `linked_from` then holds the URI the user actually saved.
    """
    linked_from = track.get("linked_from") or {}
    return linked_from.get("uri") or track.get("uri") or ""


def pick_album_image(images) -> Optional[str]:
    """Exact 64x64 cover if present, else the last (smallest) one."""
    if not images:
        return None
    for image in images:
        if image.get("height") == THUMBNAIL_SIZE and image.get("width") == THUMBNAIL_SIZE:
            return image.get("url")
    return images[-1].get("url")


def normalize_saved_item(item) -> Optional[Track]:
    track = item.get("track")
    if not track:
        return None

    uri = stable_track_uri(track)
    name = track.get("name") or ""
    album_image = pick_album_image((track.get("album") or {}).get("images") or [])
    if not album_image:
        logger.warning("Track %r (ID: %s) has no album images - skipping", name, uri)
        return None

    artists = track.get("artists") or []
    artist = artists[0].get("name", "") if artists else ""

    return Track(id=uri, name=name, artist=artist, album_image=album_image)


# =========================================================
# API CALLS
# =========================================================
def fetch_liked_tracks(access_token) -> List[Track]:
    """All of the user's saved tracks, in the order the API returns them."""
    sp = _client(access_token)
    tracks: List[Track] = []
    pages = 0

    try:
        page = sp.current_user_saved_tracks(limit=SAVED_TRACKS_PAGE_SIZE, market="from_token")
        while page:
            pages += 1
            for item in page.get("items", []):
                track = normalize_saved_item(item)
                if track is not None:
                    tracks.append(track)
            # next is null on the last page
            page = sp.next(page) if page.get("next") else None
    except (SpotifyException, requests.RequestException) as exc:
        raise _api_error(exc) from exc

    logger.info("fetched %d liked tracks in %d page(s)", len(tracks), pages)
    return tracks


def play_track(access_token, device_id, track_uri):
    """
    Start playback of a single track.

    An empty device_id leaves the choice to Spotify (the active device).
    """
    sp = _client(access_token)
    try:
        sp.start_playback(device_id=device_id or None, uris=[track_uri])
    except (SpotifyException, requests.RequestException) as exc:
        raise _api_error(exc) from exc
    logger.info("playback started on device %s", device_id or "<active>")


def list_devices(access_token):
    sp = _client(access_token)
    try:
        payload = sp.devices() or {}
    except (SpotifyException, requests.RequestException) as exc:
        raise _api_error(exc) from exc

    return [
        {
            "id": d.get("id"),
            "name": d.get("name"),
            "type": d.get("type"),
            "is_active": bool(d.get("is_active")),
            "volume_percent": d.get("volume_percent"),
        }
        for d in payload.get("devices", [])
    ]
