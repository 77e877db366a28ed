"""Exception hierarchy for the liked-tracks web app."""


class LikedGridError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(LikedGridError):
    """Missing or malformed environment configuration."""


# ----------------------------------------------------
# OAUTH
# ----------------------------------------------------
class AuthError(LikedGridError):
    pass


class StateError(AuthError):
    """The CSRF state sent back by Spotify did not validate."""


class InvalidStateError(StateError):
    def __init__(self, message="Invalid state parameter"):
        super().__init__(message)


class ExpiredStateError(StateError):
    def __init__(self, message="State token expired"):
        super().__init__(message)


class TokenExchangeError(AuthError):
    def __init__(self, message="Failed to exchange token"):
        super().__init__(message)


class TokenRefreshError(AuthError):
    def __init__(self, message="Failed to refresh token"):
        super().__init__(message)


# ----------------------------------------------------
# WEB API
# ----------------------------------------------------
class SpotifyAPIError(LikedGridError):
    """
    A Spotify Web API call failed.

    `status` is the upstream HTTP status, or None when the request never
    got a response (connection reset, DNS failure, ...).
    """

    def __init__(self, status, message):
        self.status = status
        self.message = message
        super().__init__(f"spotify API error {status}: {message}")
