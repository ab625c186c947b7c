from __future__ import annotations

from functools import lru_cache

from backend.app.config import AppSettings, load_settings, missing_pipeline_settings
from backend.app.models.channel_rules import ChannelRule
from backend.app.repositories.database import Database
from backend.app.repositories.document_repository import DocumentRepository
from backend.app.services.channel_config_service import (
    DEFAULT_CONFIG_DOCUMENT_ID,
    DEFAULT_SETTINGS_COLLECTION,
    ChannelConfigService,
    parse_channel_rules_json,
)
from backend.app.services.ingestion_pipeline import IngestionPipeline
from backend.app.services.oauth_service import OAuthService, TokenStore
from backend.app.services.youtube_client import YouTubeApiClient
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_channel_config_service() -> ChannelConfigService:
    settings = get_settings()
    return ChannelConfigService(
        DocumentRepository(get_database()),
        collection=settings.settings_collection or DEFAULT_SETTINGS_COLLECTION,
        document_id=settings.settings_document or DEFAULT_CONFIG_DOCUMENT_ID,
    )


@lru_cache(maxsize=1)
def get_youtube_client() -> YouTubeApiClient:
    settings = get_settings()
    return YouTubeApiClient(
        api_key=settings.youtube_api_key,
        api_endpoint=settings.youtube_api_endpoint,
        timeout_seconds=settings.http_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_oauth_service() -> OAuthService:
    settings = get_settings()
    return OAuthService(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.redirect_uri,
        token_uri=settings.oauth_token_uri,
        auth_uri=settings.oauth_auth_uri,
    )


@lru_cache(maxsize=1)
def get_token_store() -> TokenStore:
    return TokenStore(get_settings().youtube_token_path)


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def get_ingestion_pipeline() -> IngestionPipeline:
    settings = get_settings()
    inline_rules = settings.channels_config_json

    def load_rules() -> list[ChannelRule]:
        if inline_rules is not None:
            return parse_channel_rules_json(inline_rules)
        return get_channel_config_service().load_channel_rules(strict=True)

    return IngestionPipeline(
        youtube_client=get_youtube_client(),
        oauth_service=get_oauth_service(),
        rule_loader=load_rules,
        playlist_id=settings.target_playlist_id,
        refresh_token=settings.youtube_refresh_token,
        token_store=get_token_store(),
        # The refresh token may come from the token store, so the pipeline checks it itself.
        missing_settings=missing_pipeline_settings(settings, include_refresh_token=False),
        recency_window_days=settings.recency_window_days,
        search_max_results=settings.search_max_results,
        telemetry=get_telemetry(),
    )


def reset_cached_dependencies() -> None:
    get_channel_config_service.cache_clear()
    get_database.cache_clear()
    get_youtube_client.cache_clear()
    get_oauth_service.cache_clear()
    get_token_store.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
