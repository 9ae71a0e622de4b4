"""Last.fm ``user.getRecentTracks`` history source.

API base: http://ws.audioscrobbler.com/2.0/

Response shape (abridged)::

    {"recenttracks": {
        "track": [{"artist": {"#text": "...", "mbid": "..."},
                   "name": "...", "mbid": "...",
                   "album": {"#text": "...", "mbid": "..."},
                   "date": {"uts": "1700000000", "#text": "14 Nov 2023, 22:13"}}],
        "@attr": {"user": "...", "page": "1", "perPage": "200",
                  "totalPages": "12", "total": "2400"}}}

The currently playing track carries ``@attr.nowplaying = "true"`` and no
``date``; it is not a completed scrobble and is skipped.
"""

from __future__ import annotations

import logging

import httpx

from scrobbles.lastfm.base import (
    HistoryPage,
    HistorySource,
    LastfmApiError,
    MalformedResponseError,
    Record,
    TransientFetchError,
)

logger = logging.getLogger("scrobbles.lastfm")

LASTFM_API_URL = "http://ws.audioscrobbler.com/2.0/"
MAX_PAGE_SIZE = 200


class LastfmHistorySource(HistorySource):
    """Fetch recent-track pages for a user from the Last.fm web API."""

    SOURCE_ID = "lastfm"

    def __init__(
        self,
        api_key: str,
        api_url: str = LASTFM_API_URL,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            api_key:     Last.fm API key.
            api_url:     API endpoint.
            timeout:     Per-request timeout in seconds.
            http_client: Optional pre-configured httpx client (shared pool, tests).
        """
        self._api_key = api_key
        self._api_url = api_url
        self._timeout = timeout
        self._http_client = http_client

    # ------------------------------------------------------------------
    # HistorySource interface
    # ------------------------------------------------------------------

    async def fetch_page(self, username: str, page: int, limit: int) -> HistoryPage:
        """Fetch one page of ``user.getRecentTracks``.

        A body that cannot be interpreted is logged and degraded to an empty
        page, which ends the scan without advancing any state.

        Args:
            username: Last.fm username.
            page:     1-based page number.
            limit:    Entries per page (capped at 200).

        Returns:
            HistoryPage.

        Raises:
            TransientFetchError: Network failure, timeout, HTTP 429 or 5xx.
            LastfmApiError:      Error body from the API or other HTTP 4xx.
        """
        params = {
            "method": "user.getrecenttracks",
            "user": username,
            "api_key": self._api_key,
            "page": page,
            "limit": min(limit, MAX_PAGE_SIZE),
            "format": "json",
        }
        payload = await self._get(params)

        try:
            return parse_recent_tracks(payload, requested_page=page)
        except MalformedResponseError as exc:
            logger.warning(
                "Last.fm: malformed page %d for %s, treating as empty: %s",
                page, username, exc,
            )
            return HistoryPage(entries=[], page=page, total_pages=0)

    def parse_entry(self, raw: dict) -> Record | None:
        return parse_entry(raw)

    # ------------------------------------------------------------------
    # Private HTTP helper
    # ------------------------------------------------------------------

    async def _get(self, params: dict) -> object:
        """GET the API endpoint and return the decoded JSON body.

        Returns None when the body is not JSON.
        """
        try:
            if self._http_client:
                response = await self._http_client.get(
                    self._api_url, params=params, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self._api_url, params=params)
        except httpx.TransportError as exc:
            raise TransientFetchError(f"Last.fm request failed: {exc!r}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientFetchError(
                f"Last.fm returned HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict) and "error" in payload:
            code = _safe_int(payload.get("error"))
            message = str(payload.get("message", ""))
            # 8: operation failed, 11: service offline, 16: temporarily unavailable, 29: rate limit
            if code in (8, 11, 16, 29):
                raise TransientFetchError(f"Last.fm error {code}: {message}")
            raise LastfmApiError(code, message)

        if response.status_code >= 400:
            raise LastfmApiError(response.status_code, response.reason_phrase)

        return payload


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_recent_tracks(payload: object, requested_page: int = 1) -> HistoryPage:
    """Extract raw entries and pagination metadata from a response body.

    Args:
        payload:        Decoded JSON body.
        requested_page: Page number used when the body carries none.

    Returns:
        HistoryPage.

    Raises:
        MalformedResponseError: If the recenttracks structure is missing.
    """
    if not isinstance(payload, dict):
        raise MalformedResponseError(f"expected a JSON object, got {type(payload).__name__}")

    recent = payload.get("recenttracks")
    if not isinstance(recent, dict):
        raise MalformedResponseError("missing 'recenttracks' object")

    tracks = recent.get("track", [])
    # A single scrobble comes back as an object rather than a list
    if isinstance(tracks, dict):
        tracks = [tracks]
    if not isinstance(tracks, list):
        raise MalformedResponseError("'recenttracks.track' is not a list")

    attr = recent.get("@attr") or {}
    page = _safe_int(attr.get("page")) or requested_page
    total_pages = _safe_int(attr.get("totalPages"))

    return HistoryPage(
        entries=[t for t in tracks if isinstance(t, dict)],
        page=page,
        total_pages=total_pages,
    )


def parse_entry(raw: dict) -> Record | None:
    """Convert one recent-tracks entry into a Record.

    Returns None for the now-playing entry and for entries whose ``date.uts``
    is missing, zero or unparsable.
    """
    attr = raw.get("@attr")
    if isinstance(attr, dict) and attr.get("nowplaying") == "true":
        return None

    date_info = raw.get("date")
    if not isinstance(date_info, dict):
        return None

    timestamp = _safe_int(date_info.get("uts"))
    if timestamp <= 0:
        return None

    artist_name, artist_mbid = _text_and_mbid(raw.get("artist"))
    album_name, album_mbid = _text_and_mbid(raw.get("album"))

    return Record(
        track=str(raw.get("name") or ""),
        track_mbid=str(raw.get("mbid") or ""),
        album=album_name,
        album_mbid=album_mbid,
        artist=artist_name,
        artist_mbid=artist_mbid,
        date=str(date_info.get("#text") or ""),
        timestamp=timestamp,
    )


def _text_and_mbid(value: object) -> tuple[str, str]:
    if isinstance(value, dict):
        return str(value.get("#text") or value.get("name") or ""), str(value.get("mbid") or "")
    if isinstance(value, str):
        return value, ""
    return "", ""


def _safe_int(value: object) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
