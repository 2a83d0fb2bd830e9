from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# System-use-only locations describe why inventory is where it is.
# They cannot be removed and never appear in user-facing location pickers.
LOCATION_IN_TRANSIT = "In Transit"
LOCATION_TRANSFERRED_OUT = "Transferred Out"
LOCATION_TRANSFERRED_IN = "Transferred In"
LOCATION_STOCK = "Stock"
LOCATION_SOLD = "Sold"
LOCATION_RETURNED = "Returned"
LOCATION_PO_RECEIVE = "Purchase Order Receive"
LOCATION_PO_RETURN = "Purchase Order Return"
LOCATION_UNKNOWN = "Unknown"

SYSTEM_LOCATIONS = (
    LOCATION_IN_TRANSIT,
    LOCATION_TRANSFERRED_OUT,
    LOCATION_TRANSFERRED_IN,
    LOCATION_STOCK,
    LOCATION_SOLD,
    LOCATION_RETURNED,
    LOCATION_PO_RECEIVE,
    LOCATION_PO_RETURN,
    LOCATION_UNKNOWN,
)

# User-visible default location created alongside the system ones
DEFAULT_USER_LOCATION = "Stock"

TRANSFER_TYPE_TRANSFER = "transfer"
TRANSFER_TYPE_ADJUSTMENT = "adjustment"
TRANSFER_TYPE_MULTI_STORE = "multiStoreTransfer"

TRANSFER_TYPES = (TRANSFER_TYPE_TRANSFER, TRANSFER_TYPE_ADJUSTMENT, TRANSFER_TYPE_MULTI_STORE)

TRANSFER_LABEL_PREFIXES = {
    TRANSFER_TYPE_TRANSFER: "T",
    TRANSFER_TYPE_ADJUSTMENT: "A",
    TRANSFER_TYPE_MULTI_STORE: "MST",
}


class InventoryLocation(db.Model):
    """
    A place (or a reason) a product's quantity is recorded against.

    Quantity is never stored here; it is derived from InventoryIncrement rows.
    """
    __tablename__ = "inventory_locations"
    __table_args__ = (
        db.Index("ix_inventory_locations_system", "system_use_only"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(128), nullable=False)
    default_location = db.Column(db.Boolean, nullable=False, default=False)
    system_use_only = db.Column(db.Boolean, nullable=False, default=False)
    can_be_removed = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryLocation id={self.id} name={self.name!r} system={self.system_use_only}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "default_location": self.default_location,
            "system_use_only": self.system_use_only,
            "can_be_removed": self.can_be_removed,
            "created_at": to_utc_z(self.created_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }


class IncrementSerial(db.Model):
    """Pivot linking an increment to each serial number it created, moved or removed."""
    __tablename__ = "inventory_increment_serials"
    __table_args__ = (
        db.UniqueConstraint("increment_id", "serial_number_id", name="uq_increment_serial"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    increment_id = db.Column(db.Integer, db.ForeignKey("inventory_increments.id"), nullable=False, index=True)
    serial_number_id = db.Column(db.Integer, db.ForeignKey("product_serial_numbers.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    increment = db.relationship("InventoryIncrement", backref=db.backref("serial_links", lazy=True))
    serial_number = db.relationship("ProductSerialNumber", backref=db.backref("increment_links", lazy=True))


class InventoryIncrement(db.Model):
    """
    One signed quantity change for a product at a location.

    APPEND-ONLY: rows are never edited. A wrong increment is soft-deleted
    (deleted_at) and replaced; soft-deleted rows are excluded from quantities.
    """
    __tablename__ = "inventory_increments"
    __table_args__ = (
        db.Index("ix_increments_product_location", "product_id", "location_id"),
        db.Index("ix_increments_product_location_occurred", "product_id", "location_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=False, index=True)

    # Positive adds units, negative removes them
    amount = db.Column(db.Integer, nullable=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product")
    location = db.relationship("InventoryLocation", backref=db.backref("increments", lazy=True))

    @property
    def serials(self) -> list:
        return [link.serial_number for link in self.serial_links if link.deleted_at is None]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "amount": self.amount,
            "serials": [serial.serial_number for serial in self.serials],
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }


class ProductSerialNumber(db.Model):
    """
    A tracked unit of a serialized product.

    location_id is the location of the most recent live increment that moved
    the unit in, or NULL once a negative increment removed it from inventory.
    """
    __tablename__ = "product_serial_numbers"
    __table_args__ = (
        db.UniqueConstraint("serial_number", "product_id", name="uq_serial_number_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    serial_number = db.Column(db.String(128), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=True, index=True)
    is_sold = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product")
    location = db.relationship("InventoryLocation")

    def __repr__(self) -> str:
        return f"<ProductSerialNumber {self.serial_number!r} product_id={self.product_id} location_id={self.location_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "is_sold": self.is_sold,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransfer(db.Model):
    """
    A conserved move of quantity between two locations, or an adjustment.

    TYPES:
    - transfer (T-xxxx): from_increment = -|amount| at from_location, to_increment = +|amount| at to_location
    - multiStoreTransfer (MST-xxxx): same pairing as transfer
    - adjustment (A-xxxx): to_increment only; from side is NULL

    Created in a single transaction together with its increments. Edits to an
    adjustment soft-delete this row and point replaced_by_transfer_id at the
    replacement.
    """
    __tablename__ = "inventory_transfers"
    __table_args__ = (
        db.Index("ix_transfers_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    from_location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("inventory_locations.id"), nullable=False)
    from_increment_id = db.Column(db.Integer, db.ForeignKey("inventory_increments.id"), nullable=True)
    to_increment_id = db.Column(db.Integer, db.ForeignKey("inventory_increments.id"), nullable=False)

    # Users are managed outside this package
    user_id = db.Column(db.Integer, nullable=False, index=True)
    notes = db.Column(db.Text, nullable=False, default="")

    replaced_by_transfer_id = db.Column(db.Integer, db.ForeignKey("inventory_transfers.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product")
    from_location = db.relationship("InventoryLocation", foreign_keys=[from_location_id])
    to_location = db.relationship("InventoryLocation", foreign_keys=[to_location_id])
    from_increment = db.relationship("InventoryIncrement", foreign_keys=[from_increment_id])
    to_increment = db.relationship("InventoryIncrement", foreign_keys=[to_increment_id])
    replaced_by = db.relationship("InventoryTransfer", remote_side=[id])

    @property
    def label(self) -> str:
        prefix = TRANSFER_LABEL_PREFIXES.get(self.type, "T")
        return f"{prefix}-{self.id:04d}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "type": self.type,
            "product_id": self.product_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "from_increment": self.from_increment.to_dict() if self.from_increment else None,
            "to_increment": self.to_increment.to_dict() if self.to_increment else None,
            "user_id": self.user_id,
            "notes": self.notes,
            "replaced_by_transfer_id": self.replaced_by_transfer_id,
            "created_at": to_utc_z(self.created_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }
