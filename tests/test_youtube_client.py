from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from backend.app.errors import ApiError, ConfigurationError
from backend.app.services.youtube_client import (
    ApiKeyAuth,
    BearerAuth,
    YouTubeApiClient,
    format_rfc3339,
    parse_datetime_utc,
)

if TYPE_CHECKING:
    from tests.conftest import FakeYouTubeApi


def _client(api_key: str | None = "test-api-key") -> YouTubeApiClient:
    return YouTubeApiClient(api_key=api_key, timeout_seconds=5.0)


def test_api_key_auth_builds_client_with_developer_key(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add("videos", "list", {"items": []})

    _client().call("videos", params={"part": "snippet", "id": None}, auth=ApiKeyAuth("k-1"))

    call = youtube_api.calls[0]
    assert call.params == {"part": "snippet"}
    assert call.developer_key == "k-1"
    assert call.access_token is None
    build = youtube_api.builds[0]
    assert (build["service_name"], build["version"]) == ("youtube", "v3")
    assert build["cache_discovery"] is False
    assert build["http"].timeout == 5.0


def test_bearer_auth_uses_authorized_transport(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add("playlistItems", "list", {"items": []})

    _client().call("playlistItems", auth=BearerAuth("access-1"))

    call = youtube_api.calls[0]
    assert call.access_token == "access-1"
    assert call.developer_key is None
    authorized_http = youtube_api.builds[0]["http"]
    assert authorized_http.options == {"refresh_status_codes": ()}
    assert authorized_http.http.timeout == 5.0


def test_api_endpoint_override_is_passed_as_client_option(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add("search", "list", {"items": []})
    client = YouTubeApiClient(api_key="k", api_endpoint="https://yt.example/")

    client.call("search", auth=client.api_key_auth)

    assert youtube_api.builds[0]["client_options"] == {"api_endpoint": "https://yt.example/"}


def test_missing_credentials_raise_configuration_error(youtube_api: FakeYouTubeApi) -> None:
    client = _client(api_key=None)

    with pytest.raises(ConfigurationError):
        client.call("search", auth=client.api_key_auth)
    with pytest.raises(ConfigurationError):
        client.call("playlistItems", auth=BearerAuth(None))
    assert youtube_api.builds == []
    assert youtube_api.calls == []


def test_http_error_uses_provider_error_message(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add(
        "search",
        "list",
        {"error": {"code": 403, "message": "quotaExceeded"}},
        status=403,
    )

    with pytest.raises(ApiError) as exc_info:
        _client().call("search", auth=ApiKeyAuth("k"))

    assert exc_info.value.status == 403
    assert exc_info.value.message == "quotaExceeded"
    assert str(exc_info.value) == "quotaExceeded (status=403)"


def test_http_error_without_body_falls_back_to_reason(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add("search", "list", {}, status=500)

    with pytest.raises(ApiError) as exc_info:
        _client().call("search", auth=ApiKeyAuth("k"))

    assert exc_info.value.status == 500
    assert exc_info.value.message == "Bad Request"


@pytest.mark.parametrize(
    "error",
    [OSError("connection reset"), TimeoutError("timed out")],
)
def test_socket_failure_maps_to_status_zero(
    youtube_api: FakeYouTubeApi,
    error: Exception,
) -> None:
    youtube_api.fail("search", "list", error)

    with pytest.raises(ApiError) as exc_info:
        _client().call("search", auth=ApiKeyAuth("k"))

    assert exc_info.value.status == 0


def test_httplib2_failure_maps_to_status_zero(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.fail(
        "search",
        "list",
        youtube_api.transport_error("Redirected more times than limit"),
    )

    with pytest.raises(ApiError) as exc_info:
        _client().call("search", auth=ApiKeyAuth("k"))

    assert exc_info.value.status == 0
    assert "Redirected" in exc_info.value.message


def test_paginate_follows_list_next_and_restarts(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add("playlistItems", "list", {"items": [{"n": 1}], "nextPageToken": "p2"})
    youtube_api.add("playlistItems", "list", {"items": [{"n": 2}]})

    pages = _client().paginate("playlistItems", params={"maxResults": 50}, auth=BearerAuth("t"))

    assert youtube_api.calls == []
    assert [item["n"] for item in pages] == [1, 2]
    assert youtube_api.calls[1].params == {"maxResults": 50, "pageToken": "p2"}

    # The last registered page keeps being served, so a second walk sees it alone.
    assert [item["n"] for item in pages.collect()] == [2]
    assert "pageToken" not in youtube_api.calls[2].params


def test_paginate_stops_on_repeated_token(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add("playlists", "list", {"items": [{"n": 1}], "nextPageToken": "loop"})
    youtube_api.add("playlists", "list", {"items": [{"n": 2}], "nextPageToken": "loop"})

    items = _client().paginate("playlists", params={}, auth=BearerAuth("t")).collect()

    assert [item["n"] for item in items] == [1, 2]
    assert len(youtube_api.calls) == 2


def test_search_recent_channel_videos_sends_search_filters(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add(
        "search",
        "list",
        {
            "items": [
                {"id": {"videoId": "v1"}, "snippet": {"title": "One"}},
                {"id": {"channelId": "not-a-video"}},
                {"id": {"videoId": "v2"}, "snippet": {"title": "Two"}},
            ]
        },
    )
    cutoff = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    video_ids = _client().search_recent_channel_videos("UC1", published_after=cutoff)

    assert video_ids == ["v1", "v2"]
    call = youtube_api.calls[0]
    assert call.params == {
        "part": "snippet",
        "channelId": "UC1",
        "order": "date",
        "type": "video",
        "maxResults": 25,
        "publishedAfter": "2024-05-01T12:00:00Z",
    }
    assert call.developer_key == "test-api-key"


def test_list_video_details_batches_and_parses(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add(
        "videos",
        "list",
        {
            "items": [
                {
                    "id": "v1",
                    "snippet": {
                        "title": "Talk",
                        "description": "about things",
                        "publishedAt": "2024-05-02T08:30:00Z",
                        "thumbnails": {"default": {"url": "https://img/v1.jpg"}},
                    },
                    "contentDetails": {"duration": "PT1H2M3S"},
                },
                {"id": "broken", "snippet": {"title": "no publish date"}},
            ]
        },
    )
    video_ids = [f"v{index}" for index in range(60)]

    candidates = _client().list_video_details(video_ids)

    requests = youtube_api.calls_to("videos", "list")
    assert len(requests) == 2
    assert requests[0].params["part"] == "snippet,contentDetails"
    assert len(requests[0].params["id"].split(",")) == 50
    assert len(requests[1].params["id"].split(",")) == 10

    first = candidates[0]
    assert first.id == "v1"
    assert first.description == "about things"
    assert first.published_at == datetime(2024, 5, 2, 8, 30, tzinfo=UTC)
    assert first.thumbnail_url == "https://img/v1.jpg"
    assert first.duration_seconds == 3_723
    assert all(candidate.id != "broken" for candidate in candidates)


def test_insert_playlist_item_sends_snippet_body(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add("playlistItems", "insert", {"id": "item-1"})

    result = _client().insert_playlist_item("PL1", "v1", access_token="access")

    assert result == {"id": "item-1"}
    call = youtube_api.calls[0]
    assert call.params == {"part": "snippet"}
    assert call.access_token == "access"
    assert call.body == {
        "snippet": {
            "playlistId": "PL1",
            "position": 0,
            "resourceId": {"kind": "youtube#video", "videoId": "v1"},
        }
    }


def test_iter_playlist_video_ids_reads_resource_ids(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add(
        "playlistItems",
        "list",
        {
            "items": [
                {"snippet": {"resourceId": {"videoId": "a"}}},
                {"snippet": {}},
                {"snippet": {"resourceId": {"videoId": "b"}}},
            ]
        },
    )

    assert list(_client().iter_playlist_video_ids("PL1", access_token="t")) == ["a", "b"]
    assert youtube_api.calls[0].params["playlistId"] == "PL1"
    assert youtube_api.calls[0].params["maxResults"] == 50


def test_find_or_create_playlist_reuses_existing(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add(
        "playlists",
        "list",
        {"items": [{"id": "PL-old", "snippet": {"title": "Daily"}}]},
    )

    playlist_id = _client().find_or_create_playlist("Daily", access_token="t", description="d")

    assert playlist_id == "PL-old"
    assert youtube_api.calls[0].params["mine"] is True
    assert youtube_api.calls_to("playlists", "insert") == []


def test_find_or_create_playlist_creates_private_playlist(youtube_api: FakeYouTubeApi) -> None:
    youtube_api.add("playlists", "list", {"items": [{"id": "x", "snippet": {"title": "Other"}}]})
    youtube_api.add("playlists", "insert", {"id": "PL-new"})

    playlist_id = _client().find_or_create_playlist("Daily", access_token="t", description="d")

    assert playlist_id == "PL-new"
    create_call = youtube_api.calls_to("playlists", "insert")[0]
    assert create_call.params == {"part": "snippet,status"}
    assert create_call.body == {
        "snippet": {"title": "Daily", "description": "d"},
        "status": {"privacyStatus": "private"},
    }


def test_rfc3339_helpers_normalize_to_utc() -> None:
    assert format_rfc3339(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05Z"
    assert parse_datetime_utc("2024-01-02T03:04:05Z") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert parse_datetime_utc("not a date") is None
    assert parse_datetime_utc(None) is None
