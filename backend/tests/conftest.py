import os
import tempfile

# Must be set before anything imports app.core.config
_tmpdir = tempfile.mkdtemp(prefix="xtream-playlists-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_tmpdir, 'test.db')}")
os.environ.setdefault("UPSTREAM_RETRIES", "1")

import httpx
import pytest

from app.schemas import Credentials
from app.services.xtream import XtreamClient


class FakeXtream:
    """
    Stand-in for a provider's `player_api.php` / `get.php`, served through
    `httpx.MockTransport`.

    `responses` maps `(action, category_id or series_id)` to a JSON payload,
    a raw text body, or an exception to raise. `(action, None)` is the
    fallback for any id.
    """

    def __init__(self):
        self.user_info = {"auth": 1, "username": "u", "status": "Active"}
        self.status_code = 200
        self.responses = {}
        self.export = ""
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        params = request.url.params
        if self.status_code != 200:
            return httpx.Response(self.status_code)
        if request.url.path.endswith("/get.php"):
            return httpx.Response(200, text=self.export)

        action = params.get("action")
        if action == "get_user_info":
            if isinstance(self.user_info, Exception):
                raise self.user_info
            body = {"user_info": self.user_info} if self.user_info is not None else {"error": "nope"}
            return httpx.Response(200, json=body)

        key = (action, params.get("category_id") or params.get("series_id"))
        value = self.responses.get(key, self.responses.get((action, None), []))
        if isinstance(value, Exception):
            raise value
        if isinstance(value, str):
            return httpx.Response(200, text=value)
        return httpx.Response(200, json=value)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def actions(self):
        return [r.url.params.get("action") for r in self.requests]


@pytest.fixture
def fake():
    return FakeXtream()


@pytest.fixture
def credentials():
    return Credentials(server="http://example.com", username="u", password="p")


@pytest.fixture
def client(fake, credentials):
    return XtreamClient(credentials, transport=fake.transport)
