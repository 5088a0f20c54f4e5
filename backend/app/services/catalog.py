import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import settings
from app.core.exceptions import ConnectionFailure
from app.schemas import (
    DEFAULT_EXTENSIONS, ContentKind, DiscoveryResponse, SelectedCategory, Stream,
    episode_display_name,
)
from app.services import m3u
from app.services.xtream import XtreamClient

logger = logging.getLogger(__name__)

SeriesEntry = Tuple[Dict[str, Any], SelectedCategory]


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _icon(value: Any) -> Optional[str]:
    # Players choke on relative or empty logo references
    if isinstance(value, str) and value.startswith(("http://", "https://")):
        return value
    return None


def _category_name(raw: Dict, selected: SelectedCategory) -> Optional[str]:
    return selected.category_name or raw.get("category_name") or None


def map_stream(raw: Dict, kind: ContentKind, selected: SelectedCategory) -> Optional[Stream]:
    """Canonical live/vod record, or None when the upstream id is unusable."""
    stream_id = _to_int(raw.get("stream_id"))
    if stream_id is None:
        return None
    extension = None
    if kind == ContentKind.VOD:
        extension = raw.get("container_extension") or DEFAULT_EXTENSIONS[ContentKind.VOD]
    return Stream(
        stream_id=stream_id,
        name=str(raw.get("name") or ""),
        kind=kind,
        stream_icon=_icon(raw.get("stream_icon")),
        category_id=selected.category_id,
        category_name=_category_name(raw, selected),
        container_extension=extension,
    )


def _season_order(season: str):
    number = _to_int(season)
    return (0, number, "") if number is not None else (1, 0, season)


def map_episodes(series: Dict, selected: SelectedCategory, seasons: Dict[str, List[Dict]]) -> List[Stream]:
    """Flatten a `get_series_info` episode map into canonical episode records."""
    streams = []
    series_name = str(series.get("name") or "")
    icon = _icon(series.get("cover"))

    for season_key in sorted(seasons, key=_season_order):
        for position, ep in enumerate(seasons[season_key], start=1):
            episode_id = _to_int(ep.get("id"))
            if episode_id is None:
                continue
            season = _to_int(ep.get("season")) or _to_int(season_key) or 0
            episode = _to_int(ep.get("episode_num"))
            if episode is None:
                episode = position
            title = ep.get("title") or None
            streams.append(Stream(
                stream_id=episode_id,
                name=episode_display_name(series_name, season, episode, title),
                kind=ContentKind.SERIES,
                stream_icon=icon,
                category_id=selected.category_id,
                category_name=_category_name(series, selected),
                container_extension=ep.get("container_extension") or DEFAULT_EXTENSIONS[ContentKind.SERIES],
                season=season,
                episode=episode,
                episode_title=title,
            ))
    return streams


def _dedupe(selection: List[SelectedCategory]) -> List[SelectedCategory]:
    seen = set()
    unique = []
    for selected in selection:
        key = (selected.kind, selected.category_id)
        if key not in seen:
            seen.add(key)
            unique.append(selected)
    return unique


class CatalogAggregator:
    """
    Turns an Xtream account into categories (discovery) or canonical streams
    (materialization).

    Only authentication failures abort; every other failed upstream call is
    logged and contributes nothing. Subclasses decide how streams are fetched.
    """
    name = "base"

    def __init__(self, client: XtreamClient, batch_size: int = None,
                 series_limit: int = None, retries: int = None):
        self.client = client
        self.batch_size = max(1, batch_size or settings.SERIES_BATCH_SIZE)
        self.series_limit = series_limit if series_limit is not None else settings.SERIES_LIMIT
        self.retries = max(1, retries or settings.UPSTREAM_RETRIES)

    async def _retrying(self, func: Callable[..., Awaitable], *args) -> Any:
        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=0.5, max=2),
            retry=retry_if_exception_type(ConnectionFailure),
            reraise=True,
        )
        return await retryer(func, *args)

    async def _safe(self, label: str, func: Callable[..., Awaitable], *args, default=None) -> Any:
        try:
            return await self._retrying(func, *args)
        except Exception as e:
            logger.warning(f"{label} failed, skipping: {e}")
            return [] if default is None else default

    async def discover(self) -> DiscoveryResponse:
        await self.client.authenticate()
        live, vod, series = await asyncio.gather(
            self._safe("live categories", self.client.list_categories, ContentKind.LIVE),
            self._safe("vod categories", self.client.list_categories, ContentKind.VOD),
            self._safe("series categories", self.client.list_categories, ContentKind.SERIES),
        )
        logger.info(f"Discovered {len(live)} live, {len(vod)} vod, {len(series)} series categories")
        return DiscoveryResponse(credentials=self.client.credentials, live=live, vod=vod, series=series)

    async def materialize(self, selection: List[SelectedCategory]) -> List[Stream]:
        await self.client.authenticate()
        streams = await self._collect(_dedupe(selection))
        logger.info(f"[{self.name}] materialized {len(streams)} streams from {len(selection)} categories")
        return streams

    async def _collect(self, selection: List[SelectedCategory]) -> List[Stream]:
        raise NotImplementedError

    async def _expand_series(self, entries: List[SeriesEntry]) -> List[Stream]:
        """
        Fetch episode maps in fixed-size batches. Calls inside a batch run in
        parallel and are all awaited; batches run one after the other.
        """
        if len(entries) > self.series_limit:
            logger.warning(f"Expanding only the first {self.series_limit} of {len(entries)} series")
            entries = entries[:self.series_limit]

        streams = []
        for start in range(0, len(entries), self.batch_size):
            batch = entries[start:start + self.batch_size]
            results = await asyncio.gather(
                *[self._retrying(self.client.get_series_episodes, str(series.get("series_id"))) for series, _ in batch],
                return_exceptions=True,
            )
            for (series, selected), result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.warning(f"Episodes of series {series.get('series_id')} failed: {result}")
                    continue
                if not result:
                    continue
                streams.extend(map_episodes(series, selected, result))
        return streams

    @staticmethod
    def _series_entries(records: List[Dict], selected: SelectedCategory) -> List[SeriesEntry]:
        return [(raw, selected) for raw in records if raw.get("series_id") is not None]


class PerCategoryFetch(CatalogAggregator):
    """One listing call per selected category."""
    name = "per_category"

    async def _collect(self, selection: List[SelectedCategory]) -> List[Stream]:
        listings = await asyncio.gather(*[
            self._safe(f"{s.kind.value} category {s.category_id}", self.client.list_streams, s.kind, s.category_id)
            for s in selection
        ])

        found = {ContentKind.LIVE: [], ContentKind.VOD: []}
        series_entries = []
        for selected, records in zip(selection, listings):
            if selected.kind == ContentKind.SERIES:
                series_entries.extend(self._series_entries(records, selected))
                continue
            for raw in records:
                stream = map_stream(raw, selected.kind, selected)
                if stream:
                    found[selected.kind].append(stream)

        episodes = await self._expand_series(series_entries)
        return found[ContentKind.LIVE] + found[ContentKind.VOD] + episodes


class BulkFetch(CatalogAggregator):
    """One unfiltered listing call per content kind, filtered locally."""
    name = "bulk"

    def __init__(self, client: XtreamClient, vod_limit: int = None, **kwargs):
        super().__init__(client, **kwargs)
        self.vod_limit = vod_limit if vod_limit is not None else settings.BULK_VOD_LIMIT

    async def _collect(self, selection: List[SelectedCategory]) -> List[Stream]:
        wanted = {}
        for selected in selection:
            wanted.setdefault(selected.kind, {})[selected.category_id] = selected

        kinds = [kind for kind in ContentKind if kind in wanted]
        listings = await asyncio.gather(*[
            self._safe(f"{kind.value} streams", self.client.list_streams, kind) for kind in kinds
        ])

        found = {ContentKind.LIVE: [], ContentKind.VOD: []}
        series_entries = []
        for kind, records in zip(kinds, listings):
            for raw in records:
                selected = wanted[kind].get(str(raw.get("category_id")))
                if selected is None:
                    continue
                if kind == ContentKind.SERIES:
                    series_entries.extend(self._series_entries([raw], selected))
                    continue
                stream = map_stream(raw, kind, selected)
                if stream:
                    found[kind].append(stream)

        if len(found[ContentKind.VOD]) > self.vod_limit:
            logger.warning(f"Keeping the first {self.vod_limit} of {len(found[ContentKind.VOD])} vod streams")
            found[ContentKind.VOD] = found[ContentKind.VOD][:self.vod_limit]

        episodes = await self._expand_series(series_entries)
        return found[ContentKind.LIVE] + found[ContentKind.VOD] + episodes


class M3UImportFetch(CatalogAggregator):
    """
    Reads the provider's legacy m3u_plus export instead of the JSON listings.
    The export only carries category names, so selections are matched by
    kind and `category_name`.
    """
    name = "m3u_import"

    async def _collect(self, selection: List[SelectedCategory]) -> List[Stream]:
        wanted = {}
        for selected in selection:
            if not selected.category_name:
                logger.warning(f"Category {selected.category_id} has no name and cannot be matched in the export")
                continue
            wanted[(selected.kind, selected.category_name)] = selected
        if not wanted:
            return []

        text = await self._safe("get.php export", self.client.get_playlist_export, default="")
        found = {kind: [] for kind in ContentKind}
        for stream in m3u.parse(text):
            selected = wanted.get((stream.kind, stream.category_name))
            if selected is None:
                continue
            found[stream.kind].append(stream.model_copy(update={"category_id": selected.category_id}))
        return found[ContentKind.LIVE] + found[ContentKind.VOD] + found[ContentKind.SERIES]


STRATEGIES = {
    PerCategoryFetch.name: PerCategoryFetch,
    BulkFetch.name: BulkFetch,
    M3UImportFetch.name: M3UImportFetch,
}


def get_aggregator(client: XtreamClient, strategy: Optional[str] = None, **kwargs) -> CatalogAggregator:
    name = strategy or settings.AGGREGATION_STRATEGY
    try:
        cls = STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown aggregation strategy: {name}")
    return cls(client, **kwargs)
