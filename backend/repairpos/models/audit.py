from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class EntityLog(db.Model):
    """
    Append-only audit note attached to any entity.

    user_note is free text supplied by the acting user; system_note is what
    the service recorded (e.g. "Created adjustment A-0003 of 5").
    Rows are written in the same transaction as the change they describe.
    """
    __tablename__ = "entity_logs"
    __table_args__ = (
        db.Index("ix_entity_logs_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, nullable=True, index=True)

    user_note = db.Column(db.Text, nullable=False, default="")
    system_note = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "user_note": self.user_note,
            "system_note": self.system_note,
            "created_at": to_utc_z(self.created_at),
        }
