# Overview: Append-only entity log; written inside the caller's transaction.

from __future__ import annotations

from ..extensions import db
from ..models import EntityLog


def append_entity_log(
    *,
    entity_type: str,
    entity_id: int,
    user_id: int | None = None,
    user_note: str | None = None,
    system_note: str | None = None,
) -> EntityLog:
    """
    Append an audit row for an entity.

    - No domain logic here.
    - No deletes/updates of existing rows.
    - Flushes only; the caller owns the commit.
    """
    entry = EntityLog(
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        user_note=user_note or "",
        system_note=system_note or "",
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_entity_logs(entity_type: str, entity_id: int) -> list[EntityLog]:
    return (
        db.session.query(EntityLog)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(EntityLog.id.asc())
        .all()
    )
