"""
=========================================================
Liked-tracks cache
=========================================================

Walking every page of /me/tracks takes one request per 50
songs, so the normalized grid is kept in memory per user
for a few minutes.

- Keyed by a SHA-256 digest of the user's refresh token
  (access token as fallback); raw tokens are never stored
- Expired entries are dropped on read and swept on write
=========================================================
"""

# =========================================================
# IMPORTS
# =========================================================
import hashlib
import threading
import time
from typing import List, Optional


# =========================================================
# KEYS
# =========================================================
def cache_key(refresh_token=None, access_token=None):
    """
    Key for one user's tracks.

    The refresh token survives access-token refreshes, so it is preferred.
    Only a digest is kept in memory.
    """
    raw = refresh_token or access_token
    if not raw:
        return None
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


# =========================================================
# CACHE
# =========================================================
class TrackCache:
    """In-memory TTL cache of liked tracks per user."""

    def __init__(self, ttl_seconds: int = 300, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries = {}

    def get(self, key) -> Optional[List]:
        if key is None:
            return None
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, tracks = entry
            if now - stored_at > self.ttl_seconds:
                # expired; drop it so the map does not grow
                del self._entries[key]
                return None
            return list(tracks)

    def set(self, key, tracks):
        if key is None:
            return
        now = self._clock()
        with self._lock:
            self._sweep_locked(now)
            self._entries[key] = (now, list(tracks))

    def invalidate(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def _sweep_locked(self, now):
        # entries whose key is never read again would otherwise stay forever
        expired = [k for k, (stored_at, _) in self._entries.items() if now - stored_at > self.ttl_seconds]
        for k in expired:
            del self._entries[k]
        return len(expired)
