from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable
from typing import Annotated, Any, cast
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import ValidationError
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.config import AppSettings
from backend.app.dependencies import (
    get_channel_config_service,
    get_ingestion_pipeline,
    get_oauth_service,
    get_settings,
    get_youtube_client,
)
from backend.app.errors import (
    ApiError,
    AuthError,
    ConfigurationError,
    ParseError,
    PlaylistAutofillError,
)
from backend.app.models.api_contracts import (
    ActionRequest,
    AddVideoToPlaylistPayload,
    AddVideoToPlaylistResponse,
    AuthUrlResponse,
    ChannelVideo,
    ChannelVideosResponse,
    ErrorResponse,
    FetchChannelVideosPayload,
    FindOrCreatePlaylistPayload,
    GetPlaylistItemsPayload,
    LoadChannelConfigResponse,
    PlaylistIdResponse,
    PlaylistItemsResponse,
    SaveChannelConfigResponse,
)
from backend.app.services.channel_config_service import ChannelConfigService
from backend.app.services.ingestion_pipeline import IngestionPipeline
from backend.app.services.oauth_service import OAuthService
from backend.app.services.video_filters import split_keywords
from backend.app.services.youtube_client import YouTubeApiClient

LOGGER = logging.getLogger("playlist_autofill.api")

INTERACTIVE_SEARCH_MAX_RESULTS = 10

router = APIRouter()

YouTubeActionHandler = Callable[[YouTubeApiClient, AppSettings, str, Any], dict[str, Any]]


def _error_response(status_code: int, error: str, *, details: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, details=details).model_dump(exclude_none=True),
    )


async def _read_action_request(request: Request) -> ActionRequest | None:
    raw_body = await request.body()
    try:
        parsed = json.loads(raw_body) if raw_body else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(parsed, dict):
        return None
    try:
        return ActionRequest.model_validate(cast(dict[str, Any], parsed))
    except ValidationError:
        return None


def _bearer_token(authorization: str | None) -> str | None:
    if authorization is None or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer ") :].strip()
    return token or None


@router.post(
    "/jobs/scheduled-video-fetch",
    response_class=PlainTextResponse,
    tags=["jobs"],
    operation_id="scheduled_video_fetch",
)
def scheduled_video_fetch(
    pipeline: Annotated[IngestionPipeline, Depends(get_ingestion_pipeline)],
) -> PlainTextResponse:
    result = pipeline.run()
    return PlainTextResponse(result.message, status_code=result.status_code)


@router.get(
    "/auth/url",
    response_model=AuthUrlResponse,
    tags=["auth"],
    operation_id="auth_url",
)
def auth_url(
    oauth_service: Annotated[OAuthService, Depends(get_oauth_service)],
) -> Response:
    try:
        authorization_url = oauth_service.build_authorization_url()
    except ConfigurationError as exc:
        LOGGER.error("auth url unavailable error=%s", exc)
        return _error_response(500, str(exc))
    return JSONResponse(AuthUrlResponse(auth_url=authorization_url).model_dump(by_alias=True))


@router.get("/auth/callback", tags=["auth"], operation_id="auth_callback")
def auth_callback(
    oauth_service: Annotated[OAuthService, Depends(get_oauth_service)],
    settings: Annotated[AppSettings, Depends(get_settings)],
    code: str | None = None,
) -> Response:
    if not code:
        return _error_response(400, "Missing authorization code from Google.")

    try:
        grant = oauth_service.exchange_code(code)
    except ConfigurationError as exc:
        LOGGER.error("auth callback misconfigured error=%s", exc)
        return _error_response(500, str(exc))
    except AuthError as exc:
        return _error_response(exc.status or 400, str(exc), details=exc.details)

    fragment_values: dict[str, str] = {"access_token": grant.access_token}
    if grant.refresh_token is not None:
        fragment_values["refresh_token"] = grant.refresh_token
    if grant.expires_in is not None:
        fragment_values["expires_in"] = str(grant.expires_in)
    LOGGER.info(
        "auth callback succeeded refresh_token_issued=%s",
        grant.refresh_token is not None,
    )
    return RedirectResponse(
        f"{settings.frontend_app_url}#{urlencode(fragment_values)}",
        status_code=302,
    )


@router.post("/user-settings", tags=["settings"], operation_id="user_settings")
async def user_settings(
    request: Request,
    config_service: Annotated[ChannelConfigService, Depends(get_channel_config_service)],
) -> Response:
    action_request = await _read_action_request(request)
    if action_request is None:
        return _error_response(400, "Invalid JSON in request body.")

    action = action_request.action
    context_tokens = bind_contextvars(settings_action=action)
    try:
        if action == "saveChannelConfig":
            payload = action_request.payload
            if not isinstance(payload, list):
                return _error_response(400, "Invalid payload: channelsConfig must be an array.")
            try:
                await run_in_threadpool(
                    config_service.save_channel_rules,
                    cast(list[Any], payload),
                )
            except ParseError as exc:
                return _error_response(400, str(exc))
            return JSONResponse(
                SaveChannelConfigResponse(
                    success=True,
                    message="Channel configuration saved successfully.",
                ).model_dump()
            )

        if action == "loadChannelConfig":
            rules = await run_in_threadpool(config_service.load_channel_rules)
            return JSONResponse(
                LoadChannelConfigResponse(
                    success=True,
                    channels_config=[rule.to_document() for rule in rules],
                ).model_dump(by_alias=True)
            )

        return _error_response(400, f"Invalid action: {action}")
    except (PlaylistAutofillError, sqlite3.Error, OSError) as exc:
        LOGGER.exception("user settings request failed action=%s", action)
        return _error_response(500, f"An internal error occurred: {exc}")
    finally:
        reset_contextvars(**context_tokens)


@router.post("/youtube", tags=["youtube"], operation_id="youtube_action")
async def youtube_action(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_settings)],
    youtube_client: Annotated[YouTubeApiClient, Depends(get_youtube_client)],
    authorization: Annotated[str | None, Header()] = None,
) -> Response:
    if settings.youtube_api_key is None:
        return _error_response(500, "Server configuration error: Missing YouTube API Key.")

    access_token = _bearer_token(authorization)
    if access_token is None:
        return _error_response(401, "Missing or invalid access token.")

    action_request = await _read_action_request(request)
    if action_request is None:
        return _error_response(400, "Invalid JSON in request body.")

    action = action_request.action
    handler = _YOUTUBE_ACTIONS.get(action or "")
    if handler is None:
        return _error_response(400, "Invalid action.")

    context_tokens = bind_contextvars(youtube_action=action)
    try:
        body = await run_in_threadpool(
            handler,
            youtube_client,
            settings,
            access_token,
            action_request.payload,
        )
    except ValidationError as exc:
        first_error = exc.errors()[0]
        field_path = ".".join(str(part) for part in first_error["loc"]) or "payload"
        return _error_response(
            400,
            f"Invalid payload for {action}: {field_path}: {first_error['msg']}",
        )
    except (ApiError, ConfigurationError) as exc:
        LOGGER.warning("youtube action failed action=%s error=%s", action, exc)
        return _error_response(500, str(exc))
    finally:
        reset_contextvars(**context_tokens)
    return JSONResponse(body)


def _find_or_create_playlist(
    client: YouTubeApiClient,
    settings: AppSettings,
    access_token: str,
    raw_payload: Any,
) -> dict[str, Any]:
    payload = FindOrCreatePlaylistPayload.model_validate(raw_payload)
    playlist_id = client.find_or_create_playlist(
        payload.playlist_name,
        access_token=access_token,
        description=settings.playlist_description,
    )
    return PlaylistIdResponse(playlist_id=playlist_id).model_dump(by_alias=True)


def _fetch_channel_videos(
    client: YouTubeApiClient,
    settings: AppSettings,
    access_token: str,
    raw_payload: Any,
) -> dict[str, Any]:
    _ = (settings, access_token)
    payload = FetchChannelVideosPayload.model_validate(raw_payload)
    results = client.search_channel_videos(
        payload.channel_id,
        max_results=INTERACTIVE_SEARCH_MAX_RESULTS,
        published_after=payload.published_after,
    )

    # The interactive picker only matches on titles.
    keywords = split_keywords(payload.keywords)
    if keywords:
        results = [
            result
            for result in results
            if any(keyword in result.title.lower() for keyword in keywords)
        ]

    videos = [
        ChannelVideo(
            id=result.video_id,
            title=result.title,
            published_at=result.published_at,
            thumbnail=result.thumbnail_url,
        )
        for result in results
    ]
    return ChannelVideosResponse(videos=videos).model_dump(by_alias=True)


def _add_video_to_playlist(
    client: YouTubeApiClient,
    settings: AppSettings,
    access_token: str,
    raw_payload: Any,
) -> dict[str, Any]:
    _ = settings
    payload = AddVideoToPlaylistPayload.model_validate(raw_payload)
    item = client.insert_playlist_item(
        payload.playlist_id,
        payload.video_id,
        access_token=access_token,
        position=0,
    )
    return AddVideoToPlaylistResponse(
        success=True,
        video_id_added=payload.video_id,
        item=item,
    ).model_dump(by_alias=True)


def _get_playlist_items(
    client: YouTubeApiClient,
    settings: AppSettings,
    access_token: str,
    raw_payload: Any,
) -> dict[str, Any]:
    _ = settings
    payload = GetPlaylistItemsPayload.model_validate(raw_payload)
    video_ids = list(client.iter_playlist_video_ids(payload.playlist_id, access_token=access_token))
    return PlaylistItemsResponse(video_ids=video_ids).model_dump(by_alias=True)


_YOUTUBE_ACTIONS: dict[str, YouTubeActionHandler] = {
    "findOrCreatePlaylist": _find_or_create_playlist,
    "fetchChannelVideos": _fetch_channel_videos,
    "addVideoToPlaylist": _add_video_to_playlist,
    "getPlaylistItems": _get_playlist_items,
}
