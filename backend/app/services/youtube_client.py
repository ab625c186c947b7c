from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from importlib import import_module
from typing import Any, cast

from backend.app.errors import ApiError, ConfigurationError
from backend.app.services.video_filters import parse_iso8601_duration_seconds

LOGGER = logging.getLogger("playlist_autofill.youtube")

MAX_PAGE_SIZE = 50
VIDEO_DETAILS_BATCH_SIZE = 50


@dataclass(frozen=True)
class ApiKeyAuth:
    key: str | None


@dataclass(frozen=True)
class BearerAuth:
    access_token: str | None


ApiAuth = ApiKeyAuth | BearerAuth


@dataclass(frozen=True)
class VideoSearchResult:
    video_id: str
    title: str
    published_at: str
    thumbnail_url: str | None


@dataclass(frozen=True)
class VideoCandidate:
    id: str
    title: str
    description: str
    published_at: datetime
    thumbnail_url: str | None
    duration_seconds: int


class PageIterator:
    """
    Lazy walk over a YouTube `list` method.

    Every `iter()` starts again from the first page. The walk ends when
    `list_next` has no further page, or when the provider repeats a page token
    it already handed out.
    """

    def __init__(
        self,
        client: YouTubeApiClient,
        resource: str,
        *,
        params: dict[str, Any],
        auth: ApiAuth,
    ) -> None:
        self._client = client
        self._resource = resource
        self._params = dict(params)
        self._auth = auth

    def __iter__(self) -> Iterator[dict[str, Any]]:
        collection = self._client.resource(self._resource, auth=self._auth)
        request: Any = collection.list(**_drop_none(self._params))
        seen_tokens: set[str] = set()
        while request is not None:
            payload = _execute(request, resource=self._resource, method="list")
            for item in _as_list(payload.get("items")):
                yield _as_dict(item)

            next_token = _coerce_nonempty_string(payload.get("nextPageToken"))
            if next_token is None:
                return
            if next_token in seen_tokens:
                LOGGER.warning(
                    "youtube pagination stopped on repeated page token resource=%s",
                    self._resource,
                )
                return
            seen_tokens.add(next_token)
            request = collection.list_next(request, payload)

    def collect(self) -> list[dict[str, Any]]:
        return list(self)


class YouTubeApiClient:
    """
    YouTube Data API v3 access through `googleapiclient`.

    A discovery client is built per call: with `developerKey` for public reads,
    or over a google-auth authorized transport for the user's access token.
    Access tokens are never refreshed here; the caller owns the credential.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        api_endpoint: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_endpoint = api_endpoint
        self._timeout_seconds = timeout_seconds

    @property
    def api_key_auth(self) -> ApiKeyAuth:
        return ApiKeyAuth(self._api_key)

    def resource(self, name: str, *, auth: ApiAuth) -> Any:
        service = self._build_service(auth)
        return getattr(service, name)()

    def call(
        self,
        resource: str,
        method: str = "list",
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        auth: ApiAuth,
    ) -> dict[str, Any]:
        kwargs = _drop_none(params or {})
        if body is not None:
            kwargs["body"] = body
        LOGGER.debug(
            "youtube api call resource=%s method=%s params=%s",
            resource,
            method,
            _drop_none(params or {}),
        )
        collection = self.resource(resource, auth=auth)
        request = getattr(collection, method)(**kwargs)
        return _execute(request, resource=resource, method=method)

    def paginate(
        self,
        resource: str,
        *,
        params: dict[str, Any],
        auth: ApiAuth,
    ) -> PageIterator:
        return PageIterator(self, resource, params=params, auth=auth)

    def _build_service(self, auth: ApiAuth) -> Any:
        try:
            discovery_module = import_module("googleapiclient.discovery")
            httplib2_module = import_module("httplib2")
        except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
            raise ConfigurationError(
                "YouTube access requires the google-api-python-client dependency"
            ) from exc

        build_fn: Any = discovery_module.build
        http: Any = httplib2_module.Http(timeout=self._timeout_seconds)
        options = {"api_endpoint": self._api_endpoint} if self._api_endpoint else None

        if isinstance(auth, ApiKeyAuth):
            if not auth.key:
                raise ConfigurationError("YouTube API key is missing for an API-key call.")
            return build_fn(
                "youtube",
                "v3",
                developerKey=auth.key,
                http=http,
                client_options=options,
                cache_discovery=False,
            )

        if not auth.access_token:
            raise ConfigurationError(
                "YouTube access token is missing for an authenticated call; refresh first."
            )
        credentials_cls: Any = import_module("google.oauth2.credentials").Credentials
        authorized_http_cls: Any = import_module("google_auth_httplib2").AuthorizedHttp
        authorized_http = authorized_http_cls(
            credentials_cls(token=auth.access_token),
            http=http,
            # A rejected token surfaces as a 401 ApiError instead of a refresh attempt.
            refresh_status_codes=(),
        )
        return build_fn(
            "youtube",
            "v3",
            http=authorized_http,
            client_options=options,
            cache_discovery=False,
        )

    def search_channel_videos(
        self,
        channel_id: str,
        *,
        max_results: int,
        published_after: datetime | str | None = None,
    ) -> list[VideoSearchResult]:
        params: dict[str, Any] = {
            "part": "snippet",
            "channelId": channel_id,
            "order": "date",
            "type": "video",
            "maxResults": max(1, min(MAX_PAGE_SIZE, max_results)),
        }
        if isinstance(published_after, datetime):
            params["publishedAfter"] = format_rfc3339(published_after)
        elif published_after:
            params["publishedAfter"] = published_after

        payload = self.call("search", params=params, auth=self.api_key_auth)

        results: list[VideoSearchResult] = []
        for item in _as_list(payload.get("items")):
            item_dict = _as_dict(item)
            video_id = _coerce_nonempty_string(_as_dict(item_dict.get("id")).get("videoId"))
            if video_id is None:
                continue
            snippet = _as_dict(item_dict.get("snippet"))
            results.append(
                VideoSearchResult(
                    video_id=video_id,
                    title=_coerce_text(snippet.get("title")),
                    published_at=_coerce_text(snippet.get("publishedAt")),
                    thumbnail_url=_default_thumbnail_url(snippet),
                )
            )
        return results

    def search_recent_channel_videos(
        self,
        channel_id: str,
        *,
        published_after: datetime,
        max_results: int = 25,
    ) -> list[str]:
        results = self.search_channel_videos(
            channel_id,
            max_results=max_results,
            published_after=published_after,
        )
        return [result.video_id for result in results]

    def list_video_details(self, video_ids: list[str]) -> list[VideoCandidate]:
        if not video_ids:
            return []

        candidates: list[VideoCandidate] = []
        for start in range(0, len(video_ids), VIDEO_DETAILS_BATCH_SIZE):
            chunk = video_ids[start : start + VIDEO_DETAILS_BATCH_SIZE]
            payload = self.call(
                "videos",
                params={"part": "snippet,contentDetails", "id": ",".join(chunk)},
                auth=self.api_key_auth,
            )
            for item in _as_list(payload.get("items")):
                candidate = _video_candidate_from_item(_as_dict(item))
                if candidate is not None:
                    candidates.append(candidate)
        return candidates

    def iter_playlist_video_ids(self, playlist_id: str, *, access_token: str) -> Iterator[str]:
        pages = self.paginate(
            "playlistItems",
            params={"part": "snippet", "playlistId": playlist_id, "maxResults": MAX_PAGE_SIZE},
            auth=BearerAuth(access_token),
        )
        for item in pages:
            resource = _as_dict(_as_dict(item.get("snippet")).get("resourceId"))
            video_id = _coerce_nonempty_string(resource.get("videoId"))
            if video_id is not None:
                yield video_id

    def insert_playlist_item(
        self,
        playlist_id: str,
        video_id: str,
        *,
        access_token: str,
        position: int = 0,
    ) -> dict[str, Any]:
        return self.call(
            "playlistItems",
            "insert",
            params={"part": "snippet"},
            body={
                "snippet": {
                    "playlistId": playlist_id,
                    "position": position,
                    "resourceId": {"kind": "youtube#video", "videoId": video_id},
                }
            },
            auth=BearerAuth(access_token),
        )

    def find_or_create_playlist(
        self,
        title: str,
        *,
        access_token: str,
        description: str,
        privacy_status: str = "private",
    ) -> str:
        auth = BearerAuth(access_token)
        playlists = self.paginate(
            "playlists",
            params={"part": "snippet", "mine": True, "maxResults": MAX_PAGE_SIZE},
            auth=auth,
        )
        for playlist in playlists:
            snippet = _as_dict(playlist.get("snippet"))
            playlist_id = _coerce_nonempty_string(playlist.get("id"))
            if playlist_id is not None and snippet.get("title") == title:
                LOGGER.info("youtube playlist found title=%s playlist_id=%s", title, playlist_id)
                return playlist_id

        created = self.call(
            "playlists",
            "insert",
            params={"part": "snippet,status"},
            body={
                "snippet": {"title": title, "description": description},
                "status": {"privacyStatus": privacy_status},
            },
            auth=auth,
        )
        playlist_id = _coerce_nonempty_string(created.get("id"))
        if playlist_id is None:
            raise ApiError(502, "Playlist creation response did not include an id")
        LOGGER.info("youtube playlist created title=%s playlist_id=%s", title, playlist_id)
        return playlist_id


def format_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def parse_datetime_utc(raw_value: str | None) -> datetime | None:
    if raw_value is None:
        return None

    normalized = raw_value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _execute(request: Any, *, resource: str, method: str) -> dict[str, Any]:
    http_error_cls: Any = import_module("googleapiclient.errors").HttpError
    transport_error_cls: Any = import_module("httplib2").HttpLib2Error
    try:
        response = request.execute()
    except http_error_cls as exc:
        status_code = _http_error_status(exc)
        message = _http_error_message(exc)
        LOGGER.warning(
            "youtube api error resource=%s method=%s status=%s message=%s",
            resource,
            method,
            status_code,
            message,
        )
        raise ApiError(status_code, message) from exc
    except (transport_error_cls, OSError) as exc:
        LOGGER.warning(
            "youtube api transport failure resource=%s method=%s error=%s",
            resource,
            method,
            exc,
        )
        raise ApiError(0, f"YouTube API request failed: {exc}") from exc
    return _as_dict(response)


def _http_error_status(exc: Any) -> int:
    raw_status = getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(raw_status)
    except (TypeError, ValueError):
        return 0


def _http_error_message(exc: Any) -> str:
    content = getattr(exc, "content", b"")
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    message = _extract_error_message(_parse_json_dict(content if isinstance(content, str) else ""))
    if message is not None:
        return message
    reason = _coerce_nonempty_string(getattr(exc, "reason", None))
    return reason or "Unknown API error"


def _drop_none(params: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


def _video_candidate_from_item(item: dict[str, Any]) -> VideoCandidate | None:
    video_id = _coerce_nonempty_string(item.get("id"))
    snippet = _as_dict(item.get("snippet"))
    published_at = parse_datetime_utc(_coerce_nonempty_string(snippet.get("publishedAt")))
    if video_id is None or published_at is None:
        LOGGER.debug("youtube video details skipped incomplete item video_id=%s", video_id)
        return None

    content_details = _as_dict(item.get("contentDetails"))
    return VideoCandidate(
        id=video_id,
        title=_coerce_text(snippet.get("title")),
        description=_coerce_text(snippet.get("description")),
        published_at=published_at,
        thumbnail_url=_default_thumbnail_url(snippet),
        duration_seconds=parse_iso8601_duration_seconds(content_details.get("duration")),
    )


def _default_thumbnail_url(snippet: dict[str, Any]) -> str | None:
    thumbnails = _as_dict(snippet.get("thumbnails"))
    preferred = _coerce_nonempty_string(_as_dict(thumbnails.get("default")).get("url"))
    if preferred is not None:
        return preferred
    for payload in thumbnails.values():
        url_value = _coerce_nonempty_string(_as_dict(payload).get("url"))
        if url_value is not None:
            return url_value
    return None


def _extract_error_message(payload: dict[str, Any]) -> str | None:
    error = payload.get("error")
    if isinstance(error, str) and error.strip():
        description = _coerce_nonempty_string(payload.get("error_description"))
        return description or error.strip()
    return _coerce_nonempty_string(_as_dict(error).get("message"))


def _parse_json_dict(raw_body: str) -> dict[str, Any]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    return _as_dict(parsed)


def _coerce_nonempty_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value
    return None


def _coerce_text(raw_value: object) -> str:
    if isinstance(raw_value, str):
        return raw_value
    return ""


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        raw_list = cast(list[Any], value)
        return list(raw_list)
    return []
