from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .monetary import LineItemMixin, MonetaryDocumentMixin


SALE_STATUS_DRAFT = "DRAFT"
SALE_STATUS_POSTED = "POSTED"
SALE_STATUS_VOIDED = "VOIDED"


class Sale(db.Model, MonetaryDocumentMixin):
    """
    Sale document.

    LIFECYCLE:
    - DRAFT: lines may be added, edited and removed; totals are recomputed on every change
    - POSTED: inventoried lines have moved to the "Sold" location; lines are frozen
    - VOIDED: a posted sale whose stock moved on to "Returned", or a cancelled draft
    """
    __tablename__ = "sales"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_DRAFT, index=True)
    notes = db.Column(db.Text, nullable=False, default="")

    created_by_user_id = db.Column(db.Integer, nullable=False, index=True)
    posted_by_user_id = db.Column(db.Integer, nullable=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)

    # Location the stock leaves from when the sale is posted
    location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        lazy=True,
        order_by="SaleLine.id",
    )
    location = db.relationship("InventoryLocation")

    __mapper_args__ = {"version_id_col": version_id}

    def current_lines(self) -> list:
        return [line for line in self.lines if line.deleted_at is None]

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "posted_by_user_id": self.posted_by_user_id,
            "voided_by_user_id": self.voided_by_user_id,
            "location_id": self.location_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "posted_at": to_utc_z(self.posted_at) if self.posted_at else None,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
        }
        data.update(self.reference_fields_dict())
        data.update(self.totals_dict())
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.current_lines()]
        return data


class SaleLine(db.Model, LineItemMixin):
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    # Serial numbers to move at posting, comma-separated
    serial_numbers = db.Column(db.Text, nullable=False, default="")

    # Transfer created when the sale was posted / voided
    sold_transfer_id = db.Column(db.Integer, db.ForeignKey("inventory_transfers.id"), nullable=True)
    returned_transfer_id = db.Column(db.Integer, db.ForeignKey("inventory_transfers.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sale = db.relationship("Sale", back_populates="lines")

    @property
    def serial_list(self) -> list[str]:
        return [s for s in (self.serial_numbers or "").split(",") if s]

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "sale_id": self.sale_id,
            "serial_numbers": self.serial_list,
            "sold_transfer_id": self.sold_transfer_id,
            "returned_transfer_id": self.returned_transfer_id,
            "created_at": to_utc_z(self.created_at),
        }
        data.update(self.monetary_fields_dict())
        return data
