from __future__ import annotations

from pathlib import Path

import pytest

from backend.app.errors import ConfigurationError, ParseError
from backend.app.repositories.database import Database
from backend.app.repositories.document_repository import DocumentRepository
from backend.app.services.channel_config_service import (
    ChannelConfigService,
    parse_channel_rules_json,
)


@pytest.fixture
def repository(tmp_path: Path) -> DocumentRepository:
    db = Database(tmp_path / "state.db")
    db.initialize()
    return DocumentRepository(db)


def test_save_then_load_round_trips_camel_case(repository: DocumentRepository) -> None:
    service = ChannelConfigService(repository)

    service.save_channel_rules(
        [
            {"channelId": "UC1", "keywords": "rust, go", "minDuration": 5},
            {"channelId": "UC2", "negativeKeywords": "shorts"},
        ]
    )

    document = repository.get("userAppSettings", "mainConfiguration")
    assert document is not None
    assert document["channels"] == [
        {"channelId": "UC1", "keywords": "rust, go", "minDuration": 5.0},
        {"channelId": "UC2", "negativeKeywords": "shorts"},
    ]
    assert isinstance(document["lastUpdated"], str)

    rules = service.load_channel_rules(strict=True)
    assert [rule.channel_id for rule in rules] == ["UC1", "UC2"]
    assert rules[0].min_duration == 5.0


def test_save_rejects_invalid_rule(repository: DocumentRepository) -> None:
    service = ChannelConfigService(repository)

    with pytest.raises(ParseError, match="index 1"):
        service.save_channel_rules([{"channelId": "UC1"}, {"keywords": "no channel"}])
    assert repository.get("userAppSettings", "mainConfiguration") is None


def test_save_merges_into_existing_document(repository: DocumentRepository) -> None:
    repository.merge("userAppSettings", "mainConfiguration", {"owner": "me"})

    ChannelConfigService(repository).save_channel_rules([{"channelId": "UC1"}])

    document = repository.get("userAppSettings", "mainConfiguration")
    assert document is not None
    assert document["owner"] == "me"


def test_lenient_load_tolerates_missing_and_malformed_documents(
    repository: DocumentRepository,
) -> None:
    service = ChannelConfigService(repository, collection="c", document_id="d")
    assert service.load_channel_rules() == []

    repository.merge("c", "d", {"channels": "not-a-list"})
    assert service.load_channel_rules() == []

    repository.merge("c", "d", {"channels": [{"channelId": "UC1"}, {"channelId": ""}, 7]})
    assert [rule.channel_id for rule in service.load_channel_rules()] == ["UC1"]


def test_strict_load_raises_for_missing_or_malformed_documents(
    repository: DocumentRepository,
) -> None:
    service = ChannelConfigService(repository, collection="c", document_id="d")
    with pytest.raises(ConfigurationError, match="does not exist"):
        service.load_channel_rules(strict=True)

    repository.merge("c", "d", {"channels": {"channelId": "UC1"}})
    with pytest.raises(ConfigurationError):
        service.load_channel_rules(strict=True)

    repository.merge("c", "d", {"channels": [{"channelId": "UC1"}, {"keywords": "x"}]})
    with pytest.raises(ParseError):
        service.load_channel_rules(strict=True)


def test_parse_channel_rules_json() -> None:
    rules = parse_channel_rules_json('[{"channelId": "UC1", "maxDuration": 30}]')
    assert rules[0].channel_id == "UC1"
    assert rules[0].max_duration == 30.0

    assert parse_channel_rules_json("[]") == []
    with pytest.raises(ParseError, match="not valid JSON"):
        parse_channel_rules_json("[{")
    with pytest.raises(ParseError, match="not an array"):
        parse_channel_rules_json('{"channelId": "UC1"}')
