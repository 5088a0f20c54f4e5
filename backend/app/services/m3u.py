"""
M3U playlist codec.

`serialize` renders canonical streams as an extended M3U playlist pointing at
the Xtream media paths, `parse` reads such a playlist back. Both are pure.
"""
import re
import logging
from typing import Iterable, List, Optional

from app.schemas import ContentKind, Credentials, Stream, one_line

logger = logging.getLogger(__name__)

HEADER = "#EXTM3U"
EXTINF = "#EXTINF:"

LOGO_RE = re.compile(r'tvg-logo="([^"]*)"')
GROUP_RE = re.compile(r'group-title="([^"]*)"')
# duration, then any number of key="value" attributes, then ",<title>"
EXTINF_RE = re.compile(r'^#EXTINF:\s*-?\d+(?:\.\d+)?(?:\s+[\w-]+="[^"]*")*\s*,(.*)$')
URL_RE = re.compile(r"/(live|movie|series)/([^/]+)/([^/]+)/([^/.?#]+)\.([A-Za-z0-9]+)(?:[?#].*)?$")

URL_SEGMENTS = {
    ContentKind.LIVE: "live",
    ContentKind.VOD: "movie",
    ContentKind.SERIES: "series",
}
SEGMENT_KINDS = {segment: kind for kind, segment in URL_SEGMENTS.items()}


def _strip_quotes(value: str) -> str:
    # a quote would end an attribute early, a line break would split the entry
    return one_line(value.replace('"', ""))


def stream_url(credentials: Credentials, stream: Stream) -> str:
    base = credentials.server
    path = f"{URL_SEGMENTS[stream.kind]}/{credentials.username}/{credentials.password}/{stream.stream_id}"
    if stream.kind == ContentKind.LIVE:
        return f"{base}/{path}.ts"
    return f"{base}/{path}.{stream.container_extension or 'mp4'}"


def extinf_line(stream: Stream) -> str:
    attrs = ""
    if stream.stream_icon:
        attrs += f' tvg-logo="{_strip_quotes(stream.stream_icon)}"'
    if stream.category_name:
        attrs += f' group-title="{_strip_quotes(stream.category_name)}"'
    return f"{EXTINF}-1{attrs},{_strip_quotes(stream.name)}"


def serialize(credentials: Credentials, streams: Iterable[Stream]) -> str:
    lines = [HEADER]
    for stream in streams:
        lines.append(extinf_line(stream))
        lines.append(stream_url(credentials, stream))
    return "\n".join(lines)


def _parse_extinf(line: str) -> dict:
    logo = LOGO_RE.search(line)
    group = GROUP_RE.search(line)
    match = EXTINF_RE.match(line)
    if match:
        name = match.group(1)
    else:
        name = line.rsplit(",", 1)[1] if "," in line else ""
    # empty attribute values count as absent
    return {
        "stream_icon": (logo.group(1) if logo else None) or None,
        "category_name": (group.group(1) if group else None) or None,
        "name": name.strip(),
    }


def _parse_url(url: str) -> Optional[dict]:
    match = URL_RE.search(url)
    if not match:
        return None
    segment, _user, _password, stream_id, extension = match.groups()
    if not stream_id.isdigit():
        return None
    return {
        "kind": SEGMENT_KINDS[segment],
        "stream_id": int(stream_id),
        "container_extension": extension,
    }


def parse(text: str) -> List[Stream]:
    """
    Read an extended M3U playlist. Entries whose URL does not follow the
    `/{live|movie|series}/<user>/<pass>/<id>.<ext>` layout, or that lack a
    title or numeric id, are dropped.
    """
    streams = []
    pending = None
    dropped = 0

    for raw_line in (text or "").splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith(EXTINF):
            if pending is not None:
                dropped += 1
            pending = _parse_extinf(line)
            continue
        if line.startswith("#"):
            continue
        if pending is None:
            continue

        target = _parse_url(line)
        if target and pending["name"]:
            streams.append(Stream(**pending, **target))
        else:
            dropped += 1
        pending = None

    if pending is not None:
        dropped += 1
    if dropped:
        logger.debug(f"Dropped {dropped} invalid M3U entries")
    return streams
