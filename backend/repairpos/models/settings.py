from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .types import MONEY, decimal_str


class Currency(db.Model):
    """
    ISO 4217 currency with a user-maintained exchange rate.

    The base currency has an exchange rate of exactly 1.0000; every other rate
    is relative to it. Exactly one live currency has is_default=True (enforced
    by settings_service on the write path).

    Documents copy the currency values onto themselves at creation
    (ReferenceMonetaryFieldsMixin), so editing a rate here never changes a
    historical document.
    """
    __tablename__ = "settings_currencies"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_currencies_name"),
        db.Index("ix_currencies_default", "is_default"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(64), nullable=False)
    code = db.Column(db.String(3), nullable=False)
    exchange_rate = db.Column(MONEY, nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Currency id={self.id} code={self.code!r} rate={self.exchange_rate} default={self.is_default}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "exchange_rate": decimal_str(self.exchange_rate),
            "is_default": self.is_default,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }


class Tax(db.Model):
    """
    Rate of taxation, owned by exactly one Currency.

    tax_rate is a fraction (0.0825 = 8.25%). One live tax per currency carries
    default_tax=True; the default currency must always have one.
    """
    __tablename__ = "settings_taxes"
    __table_args__ = (
        db.UniqueConstraint("tax_code", name="uq_taxes_tax_code"),
        db.Index("ix_taxes_currency_default", "currency_id", "default_tax"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    currency_id = db.Column(db.Integer, db.ForeignKey("settings_currencies.id"), nullable=False, index=True)

    tax_code = db.Column(db.String(32), nullable=False)
    tax_rate = db.Column(MONEY, nullable=False)
    default_tax = db.Column(db.Boolean, nullable=False, default=False)
    removable = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    currency = db.relationship("Currency", backref=db.backref("taxes", lazy=True, order_by="Tax.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Tax id={self.id} code={self.tax_code!r} rate={self.tax_rate} default={self.default_tax}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "currency_id": self.currency_id,
            "tax_code": self.tax_code,
            "tax_rate": decimal_str(self.tax_rate),
            "default_tax": self.default_tax,
            "removable": self.removable,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }
