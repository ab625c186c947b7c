from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Literal

from backend.app.config import setting_env_name
from backend.app.errors import ApiError, ConfigurationError, PlaylistAutofillError
from backend.app.models.channel_rules import ChannelRule
from backend.app.services.oauth_service import OAuthService, RefreshedCredential, TokenStore
from backend.app.services.video_filters import apply_channel_rule
from backend.app.services.youtube_client import VideoCandidate, YouTubeApiClient
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("playlist_autofill.pipeline")

DEFAULT_RECENCY_WINDOW_DAYS = 3
DEFAULT_SEARCH_MAX_RESULTS = 25
NO_CHANNELS_MESSAGE = "No channels configured; nothing to do."

OutcomeStatus = Literal["ok", "skipped", "failed"]


@dataclass(frozen=True)
class ChannelOutcome:
    channel_id: str
    status: OutcomeStatus
    reason: str | None = None
    searched_count: int = 0
    matched_count: int = 0
    duplicate_count: int = 0
    new_videos: tuple[VideoCandidate, ...] = ()


@dataclass(frozen=True)
class InsertOutcome:
    video_id: str
    title: str
    status: OutcomeStatus
    reason: str | None = None


@dataclass(frozen=True)
class PipelineRunResult:
    status_code: int
    message: str
    added_count: int = 0
    channel_outcomes: tuple[ChannelOutcome, ...] = ()
    insert_outcomes: tuple[InsertOutcome, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status_code == 200


def _utc_now() -> datetime:
    return datetime.now(UTC)


class IngestionPipeline:
    """
    One scheduled run: refresh the token, snapshot the playlist, discover and
    filter each channel's recent uploads, then insert new videos at the top.

    Failures before discovery (settings, rules, token) fail the run. Failures
    for a single channel or a single insert are recorded as outcomes and the
    run continues.
    """

    def __init__(
        self,
        *,
        youtube_client: YouTubeApiClient,
        oauth_service: OAuthService,
        rule_loader: Callable[[], list[ChannelRule]],
        playlist_id: str | None,
        refresh_token: str | None,
        token_store: TokenStore | None = None,
        missing_settings: Sequence[str] = (),
        recency_window_days: int = DEFAULT_RECENCY_WINDOW_DAYS,
        search_max_results: int = DEFAULT_SEARCH_MAX_RESULTS,
        telemetry: TelemetryClient | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._youtube_client = youtube_client
        self._oauth_service = oauth_service
        self._rule_loader = rule_loader
        self._playlist_id = playlist_id
        self._refresh_token = refresh_token
        self._token_store = token_store
        self._missing_settings = tuple(missing_settings)
        self._recency_window = timedelta(days=recency_window_days)
        self._search_max_results = search_max_results
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._clock = clock

    def run(self) -> PipelineRunResult:
        LOGGER.info("scheduled video fetch started")
        with self._telemetry.span("pipeline.run") as finish:
            try:
                result = self._run()
            except PlaylistAutofillError as exc:
                LOGGER.error(
                    "scheduled video fetch aborted error_type=%s error=%s",
                    type(exc).__name__,
                    exc,
                )
                result = PipelineRunResult(
                    status_code=500,
                    message=f"Scheduled task failed: {exc}",
                )
            except Exception as exc:
                LOGGER.exception("scheduled video fetch crashed")
                result = PipelineRunResult(
                    status_code=500,
                    message=f"Scheduled task failed: {exc}",
                )
            finish.update(status_code=result.status_code, added_count=result.added_count)

        LOGGER.info(
            "scheduled video fetch completed status_code=%s added=%s",
            result.status_code,
            result.added_count,
        )
        return result

    def _run(self) -> PipelineRunResult:
        refresh_token = self._resolve_refresh_token()
        self._check_preconditions(refresh_token)
        playlist_id = self._playlist_id
        assert playlist_id is not None

        rules = self._rule_loader()
        if not rules:
            LOGGER.info("scheduled video fetch has no channels configured")
            return PipelineRunResult(status_code=200, message=NO_CHANNELS_MESSAGE)

        credential = self._oauth_service.refresh_access_token(refresh_token)
        self._persist_rotated_refresh_token(credential)

        membership = self._snapshot_membership(playlist_id, credential)
        cutoff = self._clock() - self._recency_window

        channel_outcomes: list[ChannelOutcome] = []
        new_videos: list[VideoCandidate] = []
        for rule in rules:
            outcome = self._process_channel(rule, cutoff=cutoff, membership=membership)
            channel_outcomes.append(outcome)
            new_videos.extend(outcome.new_videos)

        insert_outcomes = self._publish(playlist_id, new_videos, credential)
        added_count = sum(1 for outcome in insert_outcomes if outcome.status == "ok")
        return PipelineRunResult(
            status_code=200,
            message=f"Scheduled task executed successfully: added {added_count} video(s).",
            added_count=added_count,
            channel_outcomes=tuple(channel_outcomes),
            insert_outcomes=tuple(insert_outcomes),
        )

    def _resolve_refresh_token(self) -> str | None:
        if self._token_store is not None:
            stored = self._token_store.load_refresh_token(env_refresh_token=self._refresh_token)
            if stored is not None:
                return stored
        return self._refresh_token

    def _check_preconditions(self, refresh_token: str | None) -> None:
        missing = list(self._missing_settings)
        for field_name, value in (
            ("target_playlist_id", self._playlist_id),
            ("youtube_refresh_token", refresh_token),
        ):
            env_name = setting_env_name(field_name)
            if value is None and env_name not in missing:
                missing.append(env_name)
        if missing:
            raise ConfigurationError(
                "Scheduled task configuration error: essential settings missing: "
                + ", ".join(missing)
            )

    def _persist_rotated_refresh_token(self, credential: RefreshedCredential) -> None:
        if not credential.rotated:
            return
        if self._token_store is None:
            LOGGER.warning("oauth provider rotated the refresh token but no token store is set")
            return
        try:
            self._token_store.save_refresh_token(
                credential.refresh_token,
                env_refresh_token=self._refresh_token,
            )
        except OSError:
            LOGGER.error(
                "rotated refresh token could not be persisted path=%s",
                self._token_store.path,
                exc_info=True,
            )

    def _snapshot_membership(self, playlist_id: str, credential: RefreshedCredential) -> set[str]:
        LOGGER.info("playlist snapshot started playlist_id=%s", playlist_id)
        try:
            membership = set(
                self._youtube_client.iter_playlist_video_ids(
                    playlist_id,
                    access_token=credential.access_token,
                )
            )
        except Exception as exc:
            LOGGER.warning(
                "playlist snapshot failed; continuing with empty membership error=%s",
                exc,
                exc_info=not isinstance(exc, ApiError),
            )
            self._telemetry.emit(
                "pipeline.snapshot.degraded",
                status=exc.status if isinstance(exc, ApiError) else None,
                error_type=type(exc).__name__,
            )
            return set()
        LOGGER.info("playlist snapshot finished videos=%s", len(membership))
        return membership

    def _process_channel(
        self,
        rule: ChannelRule,
        *,
        cutoff: datetime,
        membership: set[str],
    ) -> ChannelOutcome:
        LOGGER.info(
            "channel processing started channel_id=%s keywords=%s",
            rule.channel_id,
            rule.keywords or "Any",
        )
        try:
            video_ids = self._youtube_client.search_recent_channel_videos(
                rule.channel_id,
                published_after=cutoff,
                max_results=self._search_max_results,
            )
            if not video_ids:
                LOGGER.info("channel has no recent videos channel_id=%s", rule.channel_id)
                return ChannelOutcome(
                    channel_id=rule.channel_id,
                    status="skipped",
                    reason="no recent videos",
                )

            candidates = [
                candidate
                for candidate in self._youtube_client.list_video_details(video_ids)
                if candidate.published_at >= cutoff
            ]
            matched = apply_channel_rule(candidates, rule)
        except Exception as exc:
            LOGGER.warning(
                "channel processing failed channel_id=%s error=%s",
                rule.channel_id,
                exc,
                exc_info=not isinstance(exc, ApiError),
            )
            return ChannelOutcome(channel_id=rule.channel_id, status="failed", reason=str(exc))

        LOGGER.info(
            "channel filtered channel_id=%s searched=%s matched=%s",
            rule.channel_id,
            len(video_ids),
            len(matched),
        )

        new_videos: list[VideoCandidate] = []
        duplicate_count = 0
        for video in matched:
            if video.id in membership:
                duplicate_count += 1
                LOGGER.info(
                    "video skipped; already in playlist or processed this run video_id=%s title=%s",
                    video.id,
                    video.title,
                )
                continue
            membership.add(video.id)
            new_videos.append(video)

        return ChannelOutcome(
            channel_id=rule.channel_id,
            status="ok",
            searched_count=len(video_ids),
            matched_count=len(matched),
            duplicate_count=duplicate_count,
            new_videos=tuple(new_videos),
        )

    def _publish(
        self,
        playlist_id: str,
        new_videos: list[VideoCandidate],
        credential: RefreshedCredential,
    ) -> list[InsertOutcome]:
        if not new_videos:
            LOGGER.info("no new unique videos to add to the playlist")
            return []

        # Oldest first, each at position 0, leaves the newest video on top.
        ordered = sorted(new_videos, key=lambda video: video.published_at)
        LOGGER.info(
            "adding new videos to playlist playlist_id=%s count=%s",
            playlist_id,
            len(ordered),
        )

        outcomes: list[InsertOutcome] = []
        for video in ordered:
            try:
                self._youtube_client.insert_playlist_item(
                    playlist_id,
                    video.id,
                    access_token=credential.access_token,
                    position=0,
                )
            except Exception as exc:
                LOGGER.warning(
                    "playlist insert failed video_id=%s title=%s error=%s",
                    video.id,
                    video.title,
                    exc,
                    exc_info=not isinstance(exc, ApiError),
                )
                outcomes.append(
                    InsertOutcome(
                        video_id=video.id,
                        title=video.title,
                        status="failed",
                        reason=str(exc),
                    )
                )
                continue

            LOGGER.info("playlist insert succeeded video_id=%s title=%s", video.id, video.title)
            outcomes.append(InsertOutcome(video_id=video.id, title=video.title, status="ok"))
        return outcomes
