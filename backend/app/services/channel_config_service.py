from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, cast

from pydantic import ValidationError

from backend.app.errors import ConfigurationError, ParseError
from backend.app.models.channel_rules import ChannelRule
from backend.app.repositories.document_repository import DocumentRepository

LOGGER = logging.getLogger("playlist_autofill.channel_config")

DEFAULT_SETTINGS_COLLECTION = "userAppSettings"
DEFAULT_CONFIG_DOCUMENT_ID = "mainConfiguration"


class ChannelConfigService:
    def __init__(
        self,
        repository: DocumentRepository,
        *,
        collection: str = DEFAULT_SETTINGS_COLLECTION,
        document_id: str = DEFAULT_CONFIG_DOCUMENT_ID,
    ) -> None:
        self._repository = repository
        self._collection = collection
        self._document_id = document_id

    def save_channel_rules(self, raw_rules: Sequence[Any]) -> list[ChannelRule]:
        rules = [_validate_rule(raw_rule, index=index) for index, raw_rule in enumerate(raw_rules)]
        self._repository.merge(
            self._collection,
            self._document_id,
            {
                "channels": [rule.to_document() for rule in rules],
                "lastUpdated": datetime.now(UTC).isoformat(),
            },
        )
        LOGGER.info(
            "channel config saved document=%s/%s channels=%s",
            self._collection,
            self._document_id,
            len(rules),
        )
        return rules

    def load_channel_rules(self, *, strict: bool = False) -> list[ChannelRule]:
        """
        Read the stored channel rules.

        Lenient callers get `[]` for an absent or malformed document, and invalid
        entries are dropped. Strict callers get `ConfigurationError` for a
        missing document or `channels` field, and `ParseError` for an invalid entry.
        """
        document = self._repository.get(self._collection, self._document_id)
        if document is None:
            if strict:
                raise ConfigurationError(
                    f"Channel configuration document {self._collection}/{self._document_id} "
                    "does not exist."
                )
            LOGGER.info(
                "channel config document missing; returning empty config document=%s/%s",
                self._collection,
                self._document_id,
            )
            return []

        raw_channels = document.get("channels")
        if not isinstance(raw_channels, list):
            if strict:
                raise ConfigurationError(
                    "Channel configuration document has no `channels` list."
                )
            LOGGER.warning("channel config `channels` field missing or not a list")
            return []

        entries = cast(list[Any], raw_channels)
        if strict:
            return [_validate_rule(entry, index=index) for index, entry in enumerate(entries)]

        rules: list[ChannelRule] = []
        for index, entry in enumerate(entries):
            try:
                rules.append(_validate_rule(entry, index=index))
            except ParseError:
                LOGGER.warning("channel config entry skipped index=%s", index, exc_info=True)
        LOGGER.info("channel config loaded channels=%s", len(rules))
        return rules


def parse_channel_rules_json(raw_json: str) -> list[ChannelRule]:
    try:
        parsed = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Channels config is not valid JSON: {exc.msg}") from exc
    if not isinstance(parsed, list):
        raise ParseError("Channels config JSON is not an array.")
    entries = cast(list[Any], parsed)
    return [_validate_rule(entry, index=index) for index, entry in enumerate(entries)]


def _validate_rule(raw_rule: Any, *, index: int) -> ChannelRule:
    if isinstance(raw_rule, ChannelRule):
        return raw_rule
    try:
        return ChannelRule.model_validate(raw_rule)
    except ValidationError as exc:
        raise ParseError(f"Invalid channel rule at index {index}: {exc.errors()[0]['msg']}") from exc
