from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChannelRule(BaseModel):
    """Per-channel filter rule, stored and transferred in camelCase."""

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    channel_id: str = Field(alias="channelId", min_length=1)
    keywords: str | None = None
    negative_keywords: str | None = Field(default=None, alias="negativeKeywords")
    min_duration: float | None = Field(default=None, alias="minDuration")
    max_duration: float | None = Field(default=None, alias="maxDuration")

    @field_validator("channel_id", mode="before")
    @classmethod
    def _strip_channel_id(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("keywords", "negative_keywords", mode="before")
    @classmethod
    def _blank_keywords_to_none(cls, value: Any) -> str | None:
        if not isinstance(value, str) or not value.strip():
            return None
        return value

    # Only real numbers bound the duration; anything else leaves that side open.
    @field_validator("min_duration", "max_duration", mode="before")
    @classmethod
    def _numeric_bounds_only(cls, value: Any) -> float | None:
        if isinstance(value, bool) or not isinstance(value, int | float):
            return None
        return float(value)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
