"""
Tests for session encoding and legacy session migration.
"""

import json
from datetime import datetime, timezone

import pytest

from news_rag.errors import ValidationError
from news_rag.models import SessionRecord
from news_rag.storage.kv import migrate_legacy_format, session_from_hash, session_to_hash


def test_session_hash_round_trip():
    session = SessionRecord(
        id="session_abc",
        created_at=datetime(2024, 3, 14, 8, 30, tzinfo=timezone.utc),
        last_activity=datetime(2024, 3, 14, 9, 0, tzinfo=timezone.utc),
        message_count=4,
        metadata={"client": "web"},
    )

    fields = session_to_hash(session)

    assert all(isinstance(value, str) for value in fields.values())
    assert session_from_hash(fields) == session


def test_session_from_hash_uses_key_id():
    fields = {"created_at": "2024-03-14T08:30:00+00:00", "message_count": "1"}

    assert session_from_hash(fields, session_id="from_key").id == "from_key"


def test_session_from_hash_rejects_bad_count():
    with pytest.raises(ValidationError):
        session_from_hash({"id": "s1", "message_count": "many"})


class TestMigrateLegacyFormat:
    """Tests for migrate_legacy_format."""

    def test_camel_case_fields(self):
        raw = json.dumps(
            {
                "sessionId": "session_old",
                "createdAt": 1710405000000,
                "lastActivity": 1710408600000,
                "messageCount": 12,
            }
        )

        fields = migrate_legacy_format(raw)

        assert fields["id"] == "session_old"
        assert fields["created_at"] == "2024-03-14T08:30:00+00:00"
        assert fields["last_activity"] == "2024-03-14T09:30:00+00:00"
        assert fields["message_count"] == "12"
        assert json.loads(fields["metadata"]) == {}

    def test_unknown_keys_move_to_metadata(self):
        fields = migrate_legacy_format(
            {"id": "s1", "ip": "10.0.0.1", "metadata": {"client": "web"}}
        )

        assert json.loads(fields["metadata"]) == {"ip": "10.0.0.1", "client": "web"}

    def test_missing_id_uses_session_id(self):
        fields = migrate_legacy_format("{}", session_id="from_key")

        assert fields["id"] == "from_key"

    def test_missing_last_activity_uses_created_at(self):
        fields = migrate_legacy_format({"createdAt": "2024-03-14T08:30:00Z"})

        assert fields["last_activity"] == fields["created_at"]

    def test_invalid_count_becomes_zero(self):
        fields = migrate_legacy_format({"id": "s1", "messageCount": "lots"})

        assert fields["message_count"] == "0"

    def test_negative_count_is_clamped(self):
        fields = migrate_legacy_format({"id": "s1", "messageCount": -3})

        assert fields["message_count"] == "0"

    def test_bytes_input(self):
        fields = migrate_legacy_format(b'{"sessionId": "s1"}')

        assert fields["id"] == "s1"

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"just a string"'])
    def test_rejects_non_objects(self, raw):
        with pytest.raises(ValidationError):
            migrate_legacy_format(raw)

    def test_migrated_fields_decode(self):
        fields = migrate_legacy_format({"sessionId": "s1", "messageCount": 2})

        session = session_from_hash(fields)

        assert session.id == "s1"
        assert session.message_count == 2
