from __future__ import annotations

import io
import logging
import threading
from typing import Any, Iterable, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import feedparser
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import ChannelConfig, FeedConfig
from .errors import NetworkError, ParseError
from .models import FeedEntry


logger = logging.getLogger(__name__)


def feed_url(channel_id: str, base_url: str = FeedConfig.base_url) -> str:
    return f"{base_url}?{urlencode({'channel_id': channel_id})}"


def build_session(retries: int = 0) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers["User-Agent"] = "lowfi-podcast/1.0"
    return session


def fetch_feed(
    channel_id: str,
    session: Optional[requests.Session] = None,
    timeout: float = 3.0,
    base_url: str = FeedConfig.base_url,
) -> bytes:
    """Download the raw feed document of one channel.

    Raises NetworkError on transport failures and on any non-200 response.
    """
    url = feed_url(channel_id, base_url)
    session = session or build_session()
    try:
        resp = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise NetworkError(f"feed request for {channel_id} failed: {e}") from e
    if resp.status_code != 200:
        raise NetworkError(f"server response status {resp.status_code} {resp.reason} for {channel_id}")
    return resp.content


def _video_id(e: Any) -> str:
    vid = getattr(e, "yt_videoid", "") or ""
    if vid:
        return vid.strip()
    # Fallbacks: "yt:video:<id>" guid or a watch?v=<id> link
    guid = getattr(e, "id", "") or ""
    if guid.startswith("yt:video:"):
        return guid[len("yt:video:"):]
    link = getattr(e, "link", "") or ""
    if link:
        qs = parse_qs(urlparse(link).query)
        if qs.get("v"):
            return qs["v"][0]
    return ""


def parse_feed(data: bytes) -> List[FeedEntry]:
    # A file object keeps feedparser from treating the bytes as a path or URL
    parsed = feedparser.parse(io.BytesIO(data))
    if parsed.bozo:
        if not parsed.entries:
            raise ParseError(f"malformed feed document: {parsed.bozo_exception}")
        logger.warning("Feed parse warning", extra={"detail": str(parsed.bozo_exception)})

    entries: List[FeedEntry] = []
    for e in parsed.entries:
        video_id = _video_id(e)
        if not video_id:
            logger.warning("Feed entry without video id dropped", extra={"title": getattr(e, "title", "")})
            continue
        description = getattr(e, "media_description", "") or getattr(e, "summary", "") or ""
        entries.append(
            FeedEntry(
                title=getattr(e, "title", "") or "",
                video_id=video_id,
                published=getattr(e, "published", "") or getattr(e, "updated", "") or "",
                description=description,
                link=getattr(e, "link", "") or "",
            )
        )
    return entries


def filter_entries(entries: Iterable[FeedEntry], keywords: Optional[Iterable[str]]) -> List[FeedEntry]:
    """Keep entries whose title contains any keyword, ignoring case.

    No keywords (None or empty) keeps everything.
    """
    entries = list(entries)
    lowered = [k.lower() for k in (keywords or ())]
    if not lowered:
        return entries
    return [e for e in entries if any(k in e.title.lower() for k in lowered)]


class FeedFetcher:
    def __init__(self, config: FeedConfig, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self._session = session
        # Sessions are not shared between the scheduler thread and request threads
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = build_session(self.config.retries)
            self._local.session = session
        return session

    def fetch(self, channel_id: str) -> List[FeedEntry]:
        data = fetch_feed(
            channel_id,
            session=self.session,
            timeout=self.config.request_timeout,
            base_url=self.config.base_url,
        )
        return parse_feed(data)

    def entries(self, channel: ChannelConfig) -> List[FeedEntry]:
        items = filter_entries(self.fetch(channel.channel_id), channel.keywords)
        logger.debug(
            "Fetched channel feed",
            extra={"channel": channel.name, "channel_id": channel.channel_id, "count": len(items)},
        )
        return items
