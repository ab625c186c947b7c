from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".playlist-autofill"
ENV_PREFIX = "PLAYLIST_AUTOFILL_"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("youtube_token_path", Path("youtube-token.json")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "scheduler_enabled",
    "telemetry_enabled",
)
_OPTIONAL_TEXT_FIELDS: tuple[str, ...] = (
    "youtube_api_key",
    "youtube_api_endpoint",
    "google_client_id",
    "google_client_secret",
    "redirect_uri",
    "target_playlist_id",
    "youtube_refresh_token",
    "channels_config_json",
    "settings_collection",
    "settings_document",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{PLAYLIST_AUTOFILL_DATA_DIR}}/{relative_path}` when not explicitly set."


def _env_aliases(field_name: str, legacy_name: str) -> AliasChoices:
    return AliasChoices(f"{ENV_PREFIX}{field_name.upper()}", legacy_name)


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option reads from `PLAYLIST_AUTOFILL_*`. Secrets shared with the old
    serverless deployment (`YOUTUBE_API_KEY`, `GOOGLE_CLIENT_ID`, ...) are also
    accepted under their original names.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for local state, logs, and OAuth artifacts.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite document store path. {_data_dir_default_note(Path('state.db'))}",
    )
    youtube_token_path: Path = Field(
        default=_default_in_data_dir(Path("youtube-token.json")),
        description=(
            "JSON file holding the latest refresh token (rotated tokens are persisted here). "
            f"{_data_dir_default_note(Path('youtube-token.json'))}"
        ),
    )

    # Google / YouTube credentials.
    youtube_api_key: str | None = Field(
        default=None,
        validation_alias=_env_aliases("youtube_api_key", "YOUTUBE_API_KEY"),
        description="YouTube Data API key used for public read-only endpoints.",
    )
    google_client_id: str | None = Field(
        default=None,
        validation_alias=_env_aliases("google_client_id", "GOOGLE_CLIENT_ID"),
        description="OAuth client id.",
    )
    google_client_secret: str | None = Field(
        default=None,
        validation_alias=_env_aliases("google_client_secret", "GOOGLE_CLIENT_SECRET"),
        description="OAuth client secret.",
    )
    redirect_uri: str | None = Field(
        default=None,
        validation_alias=_env_aliases("redirect_uri", "REDIRECT_URI"),
        description="OAuth redirect URI; must point at `/auth/callback`.",
    )
    frontend_app_url: str = Field(
        default="/",
        validation_alias=_env_aliases("frontend_app_url", "FRONTEND_APP_URL"),
        description="Browser URL the OAuth callback redirects to with tokens in the fragment.",
    )
    youtube_refresh_token: str | None = Field(
        default=None,
        validation_alias=_env_aliases(
            "youtube_refresh_token", "SCHEDULED_USER_YOUTUBE_REFRESH_TOKEN"
        ),
        description=(
            "Long-lived refresh token for the scheduled run. A token stored at "
            "youtube_token_path takes precedence once a rotation has been persisted."
        ),
    )
    oauth_token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="Identity provider token endpoint.",
    )
    oauth_auth_uri: str = Field(
        default="https://accounts.google.com/o/oauth2/v2/auth",
        description="Identity provider authorization endpoint.",
    )
    youtube_api_endpoint: str | None = Field(
        default=None,
        description=(
            "Override for the YouTube Data API root URL, passed to the discovery client "
            "as `api_endpoint`. Unset uses Google's default endpoint."
        ),
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        description="Socket timeout for YouTube Data API requests (httplib2 transport).",
    )

    # Scheduled ingestion.
    target_playlist_id: str | None = Field(
        default=None,
        validation_alias=_env_aliases(
            "target_playlist_id", "SCHEDULED_USER_TARGET_PLAYLIST_ID"
        ),
        description="Playlist that receives newly discovered videos.",
    )
    channels_config_json: str | None = Field(
        default=None,
        validation_alias=_env_aliases(
            "channels_config_json", "SCHEDULED_USER_CHANNELS_CONFIG"
        ),
        description=(
            "Optional inline JSON array of channel rules. When set, the scheduled run "
            "reads rules from here instead of the document store."
        ),
    )
    settings_collection: str | None = Field(
        default="userAppSettings",
        description="Document store collection holding the channel configuration.",
    )
    settings_document: str | None = Field(
        default="mainConfiguration",
        description="Document id of the channel configuration inside settings_collection.",
    )
    recency_window_days: int = Field(
        default=3,
        ge=1,
        description="Only videos published within this many days are considered.",
    )
    search_max_results: int = Field(
        default=25,
        ge=1,
        le=50,
        description="Maximum search results fetched per channel (capped by the YouTube API).",
    )
    playlist_description: str = Field(
        default="My daily dose of must-see TV!",
        description="Description used when findOrCreatePlaylist creates a new playlist.",
    )

    # Scheduler.
    scheduler_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "PLAYLIST_AUTOFILL_ENABLE_SCHEDULER",
            "PLAYLIST_AUTOFILL_SCHEDULER_ENABLED",
        ),
        description="Run the ingestion pipeline from the in-process background scheduler.",
    )
    scheduler_poll_interval_seconds: int = Field(
        default=3_600,
        description="Cadence of scheduled ingestion runs.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for backend log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("PLAYLIST_AUTOFILL_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("PLAYLIST_AUTOFILL_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("oauth_token_uri", "oauth_auth_uri", mode="before")
    @classmethod
    def _normalize_urls(cls, value: Any, info: ValidationInfo) -> str:
        env_name = f"{ENV_PREFIX}{str(info.field_name).upper()}"
        if not isinstance(value, str):
            raise ValueError(f"{env_name} must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError(f"{env_name} must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator(*_OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def setting_env_name(field_name: str) -> str:
    return f"{ENV_PREFIX}{field_name.upper()}"


def missing_pipeline_settings(
    settings: AppSettings,
    *,
    include_refresh_token: bool = True,
) -> list[str]:
    """Env names of the settings the scheduled run needs but does not have."""
    required: list[tuple[str, str | None]] = [
        ("target_playlist_id", settings.target_playlist_id),
        ("youtube_api_key", settings.youtube_api_key),
        ("google_client_id", settings.google_client_id),
        ("google_client_secret", settings.google_client_secret),
    ]
    if include_refresh_token:
        required.append(("youtube_refresh_token", settings.youtube_refresh_token))
    missing = [setting_env_name(field_name) for field_name, value in required if value is None]

    has_store_source = (
        settings.settings_collection is not None and settings.settings_document is not None
    )
    if settings.channels_config_json is None and not has_store_source:
        missing.append(setting_env_name("channels_config_json"))
    return missing


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
