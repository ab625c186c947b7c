from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Protocol, TypeVar

from backend.app.models.channel_rules import ChannelRule

ISO8601_DURATION_PATTERN = re.compile(
    r"PT(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?"
)


class FilterableVideo(Protocol):
    @property
    def title(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def duration_seconds(self) -> int: ...


VideoT = TypeVar("VideoT", bound=FilterableVideo)


def parse_iso8601_duration_seconds(raw_value: object) -> int:
    """Whole seconds in a `PT#H#M#S` duration; absent or unmatched input is 0."""
    if not isinstance(raw_value, str) or not raw_value:
        return 0
    matched = ISO8601_DURATION_PATTERN.search(raw_value)
    if matched is None:
        return 0

    hours = int(matched.group("hours") or 0)
    minutes = int(matched.group("minutes") or 0)
    seconds = int(matched.group("seconds") or 0)
    return hours * 3_600 + minutes * 60 + seconds


def split_keywords(raw_keywords: str | None) -> list[str]:
    if raw_keywords is None:
        return []
    return [keyword.strip() for keyword in raw_keywords.lower().split(",") if keyword.strip()]


def matches_any_keyword(video: FilterableVideo, keywords: list[str]) -> bool:
    title = (video.title or "").lower()
    description = (video.description or "").lower()
    return any(keyword in title or keyword in description for keyword in keywords)


def within_duration_bounds(
    duration_seconds: int,
    *,
    min_minutes: float | None,
    max_minutes: float | None,
) -> bool:
    duration_minutes = duration_seconds / 60
    if min_minutes is not None and duration_minutes < min_minutes:
        return False
    if max_minutes is not None and duration_minutes > max_minutes:
        return False
    return True


def apply_channel_rule(
    videos: Iterable[VideoT],
    rule: ChannelRule,
) -> list[VideoT]:
    """Positive keywords, then negative keywords, then duration bounds."""
    filtered = list(videos)

    keywords = split_keywords(rule.keywords)
    if keywords:
        filtered = [video for video in filtered if matches_any_keyword(video, keywords)]

    negative_keywords = split_keywords(rule.negative_keywords)
    if negative_keywords:
        filtered = [
            video for video in filtered if not matches_any_keyword(video, negative_keywords)
        ]

    if rule.min_duration is not None or rule.max_duration is not None:
        filtered = [
            video
            for video in filtered
            if within_duration_bounds(
                video.duration_seconds,
                min_minutes=rule.min_duration,
                max_minutes=rule.max_duration,
            )
        ]

    return filtered
