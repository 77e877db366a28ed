"""Browse your Spotify liked songs and play them on one of your devices."""

__version__ = "0.1.0"
