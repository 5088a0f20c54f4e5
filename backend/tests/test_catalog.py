import asyncio

import httpx
import pytest

from app.core.exceptions import AuthFailure, ConnectionFailure
from app.schemas import ContentKind, Credentials, SelectedCategory, episode_display_name
from app.services.catalog import (
    BulkFetch, M3UImportFetch, PerCategoryFetch, get_aggregator, map_episodes, map_stream
)


def select(kind, category_id, name=None):
    return SelectedCategory(category_id=category_id, kind=ContentKind(kind), category_name=name)


@pytest.fixture
def catalog(fake):
    """A small provider: two live categories, one vod, one series category."""
    fake.responses.update({
        ("get_live_categories", None): [
            {"category_id": "1", "category_name": "News"},
            {"category_id": "2", "category_name": "Sports"},
        ],
        ("get_vod_categories", None): [{"category_id": "10", "category_name": "Movies"}],
        ("get_series_categories", None): [{"category_id": "20", "category_name": "Drama"}],
        ("get_live_streams", "1"): [
            {"stream_id": 101, "name": "BBC", "stream_icon": "http://i/bbc.png", "category_id": "1"},
            {"stream_id": "102", "name": "CNN", "stream_icon": "", "category_id": "1"},
            {"stream_id": None, "name": "Broken"},
        ],
        ("get_live_streams", "2"): [{"stream_id": 201, "name": "ESPN", "category_id": "2"}],
        ("get_vod_streams", "10"): [
            {"stream_id": 301, "name": "Heat", "container_extension": "mkv", "category_id": "10"},
            {"stream_id": 302, "name": "Ronin", "category_id": "10"},
        ],
        ("get_series", "20"): [
            {"series_id": 401, "name": "Lost", "cover": "http://i/lost.jpg", "category_id": "20"},
            {"series_id": 402, "name": "Empty", "category_id": "20"},
        ],
        ("get_series_info", "401"): {"episodes": {
            "2": [{"id": "5002", "episode_num": 1, "season": 2, "container_extension": "mp4"}],
            "1": [
                {"id": "5001", "episode_num": 1, "title": "Pilot"},
                {"episode_num": 2, "title": "No id"},
            ],
        }},
        ("get_series_info", "402"): {"episodes": {}},
    })
    return fake


class TestDiscovery:
    async def test_lists_categories(self, client, catalog):
        result = await PerCategoryFetch(client).discover()
        assert [c.category_name for c in result.live] == ["News", "Sports"]
        assert [c.category_id for c in result.vod] == ["10"]
        assert [c.kind for c in result.series] == [ContentKind.SERIES]
        assert result.credentials.server == "http://example.com"
        # discovery never touches stream listings
        assert not any(a.endswith("_streams") or a == "get_series" for a in catalog.actions())

    async def test_auth_failure_is_fatal(self, client, catalog):
        catalog.user_info = None
        with pytest.raises(AuthFailure):
            await PerCategoryFetch(client).discover()
        assert catalog.actions() == ["get_user_info"]

    async def test_failed_category_listing_is_empty(self, client, catalog):
        catalog.responses[("get_vod_categories", None)] = httpx.ReadTimeout("slow")
        result = await PerCategoryFetch(client).discover()
        assert result.vod == []
        assert len(result.live) == 2


class TestPerCategoryFetch:
    async def test_order_and_mapping(self, client, catalog):
        selection = [
            select("series", "20", "Drama"),
            select("vod", "10", "Movies"),
            select("live", "2", "Sports"),
            select("live", "1", "News"),
        ]
        streams = await PerCategoryFetch(client).materialize(selection)

        assert [(s.kind.value, s.stream_id) for s in streams] == [
            ("live", 201), ("live", 101), ("live", 102),
            ("vod", 301), ("vod", 302),
            ("series", 5001), ("series", 5002),
        ]
        bbc = streams[1]
        assert bbc.category_name == "News"
        assert bbc.category_id == "1"
        assert bbc.stream_icon == "http://i/bbc.png"
        assert streams[2].stream_icon is None
        assert [s.container_extension for s in streams[3:5]] == ["mkv", "mp4"]

    async def test_series_episode_names(self, client, catalog):
        streams = await PerCategoryFetch(client).materialize([select("series", "20", "Drama")])
        assert [s.name for s in streams] == ["Lost - S01E01 - Pilot", "Lost - S02E01"]
        first = streams[0]
        assert first.container_extension == "mkv"
        assert (first.season, first.episode, first.episode_title) == (1, 1, "Pilot")
        assert first.stream_icon == "http://i/lost.jpg"
        assert first.category_name == "Drama"

    async def test_reauthenticates(self, client, catalog):
        catalog.user_info = None
        with pytest.raises(AuthFailure):
            await PerCategoryFetch(client).materialize([select("live", "1")])

    async def test_connection_failure_on_auth_is_fatal(self, client, catalog):
        catalog.user_info = httpx.ConnectError("refused")
        with pytest.raises(ConnectionFailure):
            await PerCategoryFetch(client).materialize([select("live", "1")])

    async def test_failed_vod_listing_is_isolated(self, client, catalog):
        catalog.responses[("get_vod_streams", "10")] = httpx.ConnectError("reset")
        streams = await PerCategoryFetch(client).materialize([
            select("live", "1", "News"), select("vod", "10", "Movies"), select("series", "20", "Drama"),
        ])
        kinds = [s.kind for s in streams]
        assert ContentKind.VOD not in kinds
        assert kinds.count(ContentKind.LIVE) == 2
        assert kinds.count(ContentKind.SERIES) == 2

    async def test_duplicate_selection_is_fetched_once(self, client, catalog):
        streams = await PerCategoryFetch(client).materialize([select("live", "2"), select("live", "2")])
        assert [s.stream_id for s in streams] == [201]
        assert catalog.actions().count("get_live_streams") == 1

    async def test_missing_category_name_falls_back_to_record(self, client, catalog):
        catalog.responses[("get_live_streams", "2")] = [{"stream_id": 201, "name": "ESPN", "category_name": "Sport"}]
        [stream] = await PerCategoryFetch(client).materialize([select("live", "2")])
        assert stream.category_name == "Sport"

    async def test_retries_connection_failures(self, client, catalog):
        attempts = []

        def flaky(request):
            if request.url.params.get("action") == "get_live_streams" and not attempts:
                attempts.append(1)
                raise httpx.ConnectError("blip")
            return catalog.handler(request)

        client.transport = httpx.MockTransport(flaky)
        aggregator = PerCategoryFetch(client, retries=2)
        streams = await aggregator.materialize([select("live", "2")])
        assert [s.stream_id for s in streams] == [201]


class RecordingClient:
    """Fake client that records when each episode fetch starts and ends."""

    def __init__(self, series_count, failing=()):
        self.credentials = Credentials(server="http://example.com", username="u", password="p")
        self.series_count = series_count
        self.failing = set(failing)
        self.events = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def authenticate(self):
        return {"auth": 1}

    async def list_streams(self, kind, category_id=None):
        return [{"series_id": i, "name": f"Show {i}"} for i in range(self.series_count)]

    async def get_series_episodes(self, series_id):
        series_id = int(series_id)
        self.events.append(("start", series_id))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if series_id in self.failing:
                raise ConnectionFailure("boom")
            # later members of a batch finish last
            await asyncio.sleep(0.001 * (1 + series_id % 10))
            return {"1": [{"id": 1000 + series_id, "episode_num": 1}]}
        finally:
            self.in_flight -= 1
            self.events.append(("end", series_id))


class TestSeriesBatching:
    async def test_three_sequential_batches(self):
        client = RecordingClient(25, failing={3})
        aggregator = PerCategoryFetch(client, batch_size=10, retries=1)
        streams = await aggregator.materialize([select("series", "9")])

        assert len(streams) == 24
        assert client.max_in_flight == 10

        position = {event: i for i, event in enumerate(client.events)}
        batches = [range(0, 10), range(10, 20), range(20, 25)]
        assert len(batches) == 3
        for current, following in zip(batches, batches[1:]):
            last_end = max(position[("end", i)] for i in current)
            first_start = min(position[("start", i)] for i in following)
            assert last_end < first_start

    async def test_series_cap(self):
        client = RecordingClient(30)
        aggregator = PerCategoryFetch(client, batch_size=10, series_limit=12, retries=1)
        streams = await aggregator.materialize([select("series", "9")])
        assert len(streams) == 12
        assert len([e for e in client.events if e[0] == "start"]) == 12


def test_map_episodes_without_title_or_number():
    selected = select("series", "20", "Drama")
    streams = map_episodes({"name": "Show"}, selected, {"3": [{"id": 1, "episode_num": "7"}, {"id": 2}]})
    assert [s.name for s in streams] == ["Show - S03E07", "Show - S03E02"]


def test_episode_display_name():
    assert episode_display_name("Show", 3, 7, "Pilot") == "Show - S03E07 - Pilot"
    assert episode_display_name("Show", 3, 7) == "Show - S03E07"
    assert episode_display_name("Show", 12, 104, "") == "Show - S12E104"


def test_mapped_names_are_single_line():
    selected = select("live", "1", "News\r\n")
    stream = map_stream({"stream_id": 5, "name": "  Late\nNight  "}, ContentKind.LIVE, selected)
    assert (stream.name, stream.category_name) == ("Late Night", "News")
    [episode] = map_episodes({"name": "Two\nLines"}, selected, {"1": [{"id": 9, "title": "A\tB"}]})
    assert episode.name == "Two Lines - S01E01 - A B"


class TestBulkFetch:
    async def test_filters_unfiltered_listings(self, client, catalog):
        catalog.responses[("get_live_streams", None)] = [
            {"stream_id": 1, "name": "A", "category_id": "1"},
            {"stream_id": 2, "name": "B", "category_id": "3"},
            {"stream_id": 3, "name": "C", "category_id": 2},
        ]
        catalog.responses[("get_vod_streams", None)] = [
            {"stream_id": i, "name": f"M{i}", "category_id": "10"} for i in range(5)
        ]
        catalog.responses[("get_series", None)] = catalog.responses[("get_series", "20")]

        aggregator = BulkFetch(client, vod_limit=3)
        streams = await aggregator.materialize([
            select("live", "2", "Sports"), select("live", "1", "News"),
            select("vod", "10", "Movies"), select("series", "20", "Drama"),
        ])

        assert [(s.kind.value, s.stream_id) for s in streams] == [
            ("live", 1), ("live", 3),
            ("vod", 0), ("vod", 1), ("vod", 2),
            ("series", 5001), ("series", 5002),
        ]
        assert streams[1].category_name == "Sports"
        listing_requests = [r for r in catalog.requests if r.url.params.get("action", "").startswith("get_") and r.url.params.get("action") != "get_series_info"]
        assert all("category_id" not in r.url.params for r in listing_requests)


class TestM3UImportFetch:
    async def test_matches_by_kind_and_group(self, client, catalog):
        catalog.export = "\n".join([
            "#EXTM3U",
            '#EXTINF:-1 tvg-id="" tvg-name="BBC" tvg-logo="" group-title="News",BBC',
            "http://example.com/live/u/p/101.ts",
            '#EXTINF:-1 tvg-name="Heat" group-title="Movies",Heat',
            "http://example.com/movie/u/p/301.mkv",
            '#EXTINF:-1 group-title="Sports",ESPN',
            "http://example.com/live/u/p/201.ts",
            '#EXTINF:-1 group-title="News",Not live',
            "http://example.com/movie/u/p/999.mp4",
        ])
        streams = await M3UImportFetch(client).materialize([
            select("vod", "10", "Movies"), select("live", "1", "News"), select("live", "2"),
        ])
        assert [(s.kind.value, s.stream_id, s.category_id) for s in streams] == [
            ("live", 101, "1"), ("vod", 301, "10"),
        ]
        assert streams[0].stream_icon is None

    async def test_failed_export_yields_nothing(self, client, catalog):
        def handler(request):
            if request.url.path.endswith("/get.php"):
                raise httpx.ConnectError("down")
            return catalog.handler(request)

        client.transport = httpx.MockTransport(handler)
        assert await M3UImportFetch(client).materialize([select("live", "1", "News")]) == []


def test_get_aggregator(client):
    assert isinstance(get_aggregator(client, "bulk"), BulkFetch)
    assert isinstance(get_aggregator(client, "m3u_import"), M3UImportFetch)
    assert isinstance(get_aggregator(client), PerCategoryFetch)
    with pytest.raises(ValueError):
        get_aggregator(client, "nope")
