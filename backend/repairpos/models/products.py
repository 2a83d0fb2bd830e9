from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z
from .types import MONEY, decimal_str


class Product(db.Model):
    """
    Product master data.

    Only the fields the monetary engine and the inventory ledger read are
    modeled here: sell price, cost, and the serialized/inventoried flags.
    Line items copy these values at creation (LineItemMixin.snapshot_product).

    inventoried=False opts the product out of the inventory ledger entirely.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_products_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. "MD101LL/A"
    code = db.Column(db.String(64), nullable=False)
    upc = db.Column(db.String(64), nullable=False, default="")
    description = db.Column(db.String(255), nullable=False, default="")

    sell_price = db.Column(MONEY, nullable=False, default=Decimal("0"))

    # When set, the default cost wins over the average
    default_cost_id = db.Column(
        db.Integer,
        db.ForeignKey("product_costs.id", use_alter=True, name="fk_products_default_cost"),
        nullable=True,
    )
    average_cost = db.Column(MONEY, nullable=False, default=Decimal("0"))

    taxable = db.Column(db.Boolean, nullable=False, default=True)
    inventoried = db.Column(db.Boolean, nullable=False, default=True)
    serialized = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    default_cost = db.relationship("ProductCost", foreign_keys=[default_cost_id], post_update=True)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def effective_cost_amount(self) -> Decimal:
        if self.default_cost is not None:
            return self.default_cost.cost
        return self.average_cost if self.average_cost is not None else Decimal("0")

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} inventoried={self.inventoried} serialized={self.serialized}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "upc": self.upc,
            "description": self.description,
            "sell_price": decimal_str(self.sell_price),
            "default_cost_id": self.default_cost_id,
            "average_cost": decimal_str(self.average_cost),
            "effective_cost_amount": decimal_str(self.effective_cost_amount),
            "taxable": self.taxable,
            "inventoried": self.inventoried,
            "serialized": self.serialized,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductCost(db.Model):
    """
    One known cost for a product (per supplier code).

    A product can carry many costs over time; at most one is referenced as
    Product.default_cost_id.
    """
    __tablename__ = "product_costs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    cost = db.Column(MONEY, nullable=False)
    supplier_code = db.Column(db.String(64), nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship(
        "Product",
        foreign_keys=[product_id],
        backref=db.backref("costs", lazy=True, order_by="ProductCost.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "cost": decimal_str(self.cost),
            "supplier_code": self.supplier_code,
            "created_at": to_utc_z(self.created_at),
        }
