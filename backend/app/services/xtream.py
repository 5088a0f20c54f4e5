import httpx
import re
from typing import List, Dict, Optional, Any
import logging

from app.core.config import settings
from app.core.exceptions import (
    AuthFailure, ConnectionFailure, InvalidServer, MissingCredentials, UpstreamMalformed
)
from app.schemas import Category, ContentKind, Credentials

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")

CATEGORY_ACTIONS = {
    ContentKind.LIVE: "get_live_categories",
    ContentKind.VOD: "get_vod_categories",
    ContentKind.SERIES: "get_series_categories",
}

STREAM_ACTIONS = {
    ContentKind.LIVE: "get_live_streams",
    ContentKind.VOD: "get_vod_streams",
    ContentKind.SERIES: "get_series",
}


def normalize_server(raw: str) -> str:
    """
    Trim the input, add `http://` when no scheme was given and drop trailing
    slashes. An explicit scheme is kept as-is (https is never downgraded).
    """
    url = (raw or "").strip()
    if not _SCHEME_RE.match(url):
        url = f"http://{url}"
    url = url.rstrip("/")

    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError):
        raise InvalidServer(raw)
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InvalidServer(raw)
    return url


def normalize_credentials(server: Optional[str], username: Optional[str], password: Optional[str]) -> Credentials:
    fields = {"server": server, "username": username, "password": password}
    missing = [name for name, value in fields.items() if not value or not str(value).strip()]
    if missing:
        raise MissingCredentials(missing)
    return Credentials(server=normalize_server(server), username=username, password=password)


class XtreamClient:
    def __init__(self, credentials: Credentials, timeout: float = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.credentials = credentials
        self.base_url = normalize_server(credentials.server)
        self.username = credentials.username
        self.password = credentials.password
        self.api_url = f"{self.base_url}/player_api.php"
        self.timeout = timeout if timeout is not None else settings.UPSTREAM_TIMEOUT
        self.transport = transport

    def _get_params(self, action: Optional[str], **kwargs) -> Dict[str, str]:
        params = {
            "username": self.username,
            "password": self.password,
        }
        if action:
            params["action"] = action
        params.update({k: str(v) for k, v in kwargs.items() if v is not None})
        return params

    async def _get(self, url: str, params: Dict[str, str], label: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True,
                                     transport=self.transport) as client:
            try:
                response = await client.get(url, params=params)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                logger.error(f"HTTP error for {label}: {e.response.status_code}")
                raise ConnectionFailure(f"{label} returned HTTP {e.response.status_code}") from e
            except httpx.HTTPError as e:
                logger.error(f"Error fetching {label}: {e!r}")
                raise ConnectionFailure(f"Could not reach server for {label}") from e

    async def _request(self, action: Optional[str], **kwargs) -> Any:
        response = await self._get(self.api_url, self._get_params(action, **kwargs), action or "user_info")
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamMalformed(f"{action} returned a non-JSON body") from e

    async def _request_list(self, action: str, **kwargs) -> List[Dict]:
        try:
            data = await self._request(action, **kwargs)
        except UpstreamMalformed as e:
            logger.warning(f"{e}; treating as empty")
            return []
        if not isinstance(data, list):
            logger.warning(f"{action} returned {type(data).__name__} instead of a list; treating as empty")
            return []
        return [item for item in data if isinstance(item, dict)]

    async def authenticate(self) -> Dict:
        """Check the credentials with the `get_user_info` action and return `user_info`."""
        try:
            data = await self._request("get_user_info")
        except UpstreamMalformed as e:
            raise ConnectionFailure("Server did not answer with JSON") from e

        user_info = data.get("user_info") if isinstance(data, dict) else None
        if not isinstance(user_info, dict) or str(user_info.get("auth", 1)) == "0":
            raise AuthFailure("Invalid credentials")
        return user_info

    async def list_categories(self, kind: ContentKind) -> List[Category]:
        categories = []
        for raw in await self._request_list(CATEGORY_ACTIONS[kind]):
            if raw.get("category_id") is None:
                continue
            categories.append(Category(
                category_id=str(raw["category_id"]),
                category_name=str(raw.get("category_name") or ""),
                kind=kind,
            ))
        return categories

    async def list_streams(self, kind: ContentKind, category_id: Optional[str] = None) -> List[Dict]:
        return await self._request_list(STREAM_ACTIONS[kind], category_id=category_id)

    async def get_live_categories(self) -> List[Category]:
        return await self.list_categories(ContentKind.LIVE)

    async def get_vod_categories(self) -> List[Category]:
        return await self.list_categories(ContentKind.VOD)

    async def get_series_categories(self) -> List[Category]:
        return await self.list_categories(ContentKind.SERIES)

    async def get_live_streams(self, category_id: Optional[str] = None) -> List[Dict]:
        return await self.list_streams(ContentKind.LIVE, category_id)

    async def get_vod_streams(self, category_id: Optional[str] = None) -> List[Dict]:
        return await self.list_streams(ContentKind.VOD, category_id)

    async def get_series(self, category_id: Optional[str] = None) -> List[Dict]:
        return await self.list_streams(ContentKind.SERIES, category_id)

    async def get_series_episodes(self, series_id: str) -> Dict[str, List[Dict]]:
        """Season number -> raw episode records, from `get_series_info`."""
        try:
            data = await self._request("get_series_info", series_id=series_id)
        except UpstreamMalformed as e:
            logger.warning(f"{e}; series {series_id} has no episodes")
            return {}

        episodes = data.get("episodes") if isinstance(data, dict) else None
        # Some panels send a list of seasons instead of a mapping
        if isinstance(episodes, list):
            episodes = {str(i + 1): eps for i, eps in enumerate(episodes)}
        if not isinstance(episodes, dict):
            return {}
        return {
            str(season): [ep for ep in eps if isinstance(ep, dict)]
            for season, eps in episodes.items()
            if isinstance(eps, list)
        }

    async def get_playlist_export(self) -> str:
        """Download the legacy `get.php` m3u_plus export as text."""
        params = self._get_params(None, type="m3u_plus", output="ts")
        response = await self._get(f"{self.base_url}/get.php", params, "get.php")
        return response.text
