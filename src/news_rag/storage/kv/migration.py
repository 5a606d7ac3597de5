"""
Session record encoding.

Sessions are stored as flat string hashes. Older deployments wrote them as a
single JSON string with camelCase keys and epoch-millisecond timestamps; those
are converted by ``migrate_legacy_format`` the first time they are read.
"""

import json
import logging
from typing import Any, Dict, Optional, Union

from news_rag.errors import ValidationError
from news_rag.models import SessionRecord, utc_now
from news_rag.utils.dates import parse_datetime

logger = logging.getLogger(__name__)

SESSION_HASH_FIELDS = ("id", "created_at", "last_activity", "message_count", "metadata")

# Legacy key -> canonical field
LEGACY_FIELD_NAMES = {
    "id": "id",
    "sessionId": "id",
    "createdAt": "created_at",
    "created_at": "created_at",
    "lastActivity": "last_activity",
    "last_activity": "last_activity",
    "messageCount": "message_count",
    "message_count": "message_count",
}


def session_to_hash(session: SessionRecord) -> Dict[str, str]:
    """Encode a session as the canonical string hash."""
    return {
        "id": session.id,
        "created_at": session.created_at.isoformat(),
        "last_activity": session.last_activity.isoformat(),
        "message_count": str(session.message_count),
        "metadata": json.dumps(session.metadata),
    }


def session_from_hash(fields: Dict[str, str], session_id: Optional[str] = None) -> SessionRecord:
    """
    Decode a canonical hash back into a SessionRecord.

    Raises:
        ValidationError: If a field cannot be decoded
    """
    try:
        metadata = json.loads(fields.get("metadata") or "{}")
        return SessionRecord(
            id=fields.get("id") or session_id,
            created_at=parse_datetime(fields.get("created_at")) or utc_now(),
            last_activity=parse_datetime(fields.get("last_activity")) or utc_now(),
            message_count=int(fields.get("message_count") or 0),
            metadata=metadata if isinstance(metadata, dict) else {"value": metadata},
        )
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Malformed session record {session_id}: {e}") from e


def migrate_legacy_format(
    raw: Union[str, bytes, Dict[str, Any]], session_id: Optional[str] = None
) -> Dict[str, str]:
    """
    Convert a legacy JSON session into the canonical hash fields.

    Recognized keys are renamed (``createdAt`` -> ``created_at`` and so on) and
    their values normalized: timestamps become UTC ISO-8601 (epoch
    milliseconds included) and counts become integers. Every other key is
    moved into ``metadata``.

    Args:
        raw: The legacy JSON string, or an already decoded dict
        session_id: Used when the legacy value carries no id

    Returns:
        Hash fields ready for HSET

    Raises:
        ValidationError: If ``raw`` is not a JSON object
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Legacy session is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise ValidationError("Legacy session must be a JSON object")

    canonical: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}
    for key, value in data.items():
        field = LEGACY_FIELD_NAMES.get(key)
        if field is None:
            if key == "metadata" and isinstance(value, dict):
                metadata.update(value)
            else:
                metadata[key] = value
        elif field not in canonical:
            canonical[field] = value

    now = utc_now()
    created_at = parse_datetime(canonical.get("created_at")) or now
    last_activity = parse_datetime(canonical.get("last_activity")) or created_at

    try:
        message_count = max(int(canonical.get("message_count") or 0), 0)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid legacy message count: {canonical.get('message_count')!r}")
        message_count = 0

    session = SessionRecord(
        id=str(canonical.get("id") or session_id or ""),
        created_at=created_at,
        last_activity=last_activity,
        message_count=message_count,
        metadata=metadata,
    )
    return session_to_hash(session)
