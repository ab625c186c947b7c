from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _strip_required_text(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


class ActionRequest(BaseModel):
    """`{action, payload}` envelope shared by the interactive endpoints."""

    model_config = ConfigDict(extra="ignore")

    action: str | None = None
    payload: Any = None


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    details: Any = None


class AuthUrlResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auth_url: str = Field(alias="authUrl")


class SaveChannelConfigResponse(BaseModel):
    success: bool
    message: str


class LoadChannelConfigResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    channels_config: list[dict[str, Any]] = Field(alias="channelsConfig")


class FindOrCreatePlaylistPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    playlist_name: str = Field(alias="playlistName", min_length=1)

    _strip_name = field_validator("playlist_name", mode="before")(_strip_required_text)


class FetchChannelVideosPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    channel_id: str = Field(alias="channelId", min_length=1)
    keywords: str | None = None
    published_after: str | None = Field(default=None, alias="publishedAfter")

    _strip_channel = field_validator("channel_id", mode="before")(_strip_required_text)


class AddVideoToPlaylistPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    playlist_id: str = Field(alias="playlistId", min_length=1)
    video_id: str = Field(alias="videoId", min_length=1)


class GetPlaylistItemsPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    playlist_id: str = Field(alias="playlistId", min_length=1)


class PlaylistIdResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    playlist_id: str = Field(alias="playlistId")


class ChannelVideo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    published_at: str = Field(alias="publishedAt")
    thumbnail: str | None = None


class ChannelVideosResponse(BaseModel):
    videos: list[ChannelVideo]


class AddVideoToPlaylistResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    video_id_added: str = Field(alias="videoIdAdded")
    item: dict[str, Any]


class PlaylistItemsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_ids: list[str] = Field(alias="videoIds")
