class XtreamError(Exception):
    """Base class for every error raised by the playlist engine."""


class MissingCredentials(XtreamError):
    def __init__(self, fields):
        self.fields = list(fields)
        super().__init__(f"Missing credentials: {', '.join(self.fields)}")


class InvalidServer(XtreamError):
    def __init__(self, server: str):
        self.server = server
        super().__init__(f"Invalid server URL: {server!r}")


class ConnectionFailure(XtreamError):
    """Upstream unreachable, non-success status or undecodable answer."""


class AuthFailure(XtreamError):
    """Upstream reachable but the credentials were rejected."""


class UpstreamMalformed(XtreamError):
    """A listing call answered with something that is not the expected JSON shape."""


class PlaylistNotFound(XtreamError):
    def __init__(self, playlist_id: str):
        self.playlist_id = playlist_id
        super().__init__(f"Playlist {playlist_id} not found")
