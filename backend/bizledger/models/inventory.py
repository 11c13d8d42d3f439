from __future__ import annotations

from ..extensions import db
from bizledger.time_utils import to_utc_z


PRODUCT_UNITS = ("pieces", "boxes", "sets", "kits", "liters", "kg", "meters")

# Movement types accepted by the stock ledger
MOVEMENT_TYPES = ("stock_in", "stock_out", "adjustment", "sale", "purchase")

REFERENCE_MODELS = ("Invoice", "Purchase", "Adjustment")


def money(value) -> float:
    """Numeric columns are Decimal in Python; JSON carries them as numbers."""
    return float(value) if value is not None else 0.0


class Product(db.Model):
    """
    Product master data plus its current stock level.

    STOCK INVARIANT:
    stock_current is only ever written through the stock ledger
    (services.stock_service), which appends a ProductActivity row with
    before/after snapshots in the same unit of work. So at all times:
        stock_current == activity[-1].stock_after  and  stock_current >= 0

    Products are archived rather than deleted; hard delete is refused while
    stock remains on hand.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_category", "category"),
        db.Index("ix_products_active_archived", "is_active", "is_archived"),
        db.CheckConstraint("stock_current >= 0", name="ck_products_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Upper-cased on write
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    brand = db.Column(db.String(120), nullable=True)
    category = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="pieces")

    cost_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    selling_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    stock_current = db.Column(db.Integer, nullable=False, default=0)
    reorder_threshold = db.Column(db.Integer, nullable=False, default=10)
    min_stock = db.Column(db.Integer, nullable=False, default=5)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)
    last_restocked = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy="dynamic"))
    activity = db.relationship(
        "ProductActivity",
        back_populates="product",
        order_by="ProductActivity.id",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_current}>"

    def is_low_stock(self) -> bool:
        return self.stock_current <= self.reorder_threshold

    def is_critical_stock(self) -> bool:
        return self.stock_current <= self.min_stock

    def to_dict(self, *, include_activity: bool = False) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "description": self.description,
            "unit": self.unit,
            "costPrice": money(self.cost_price),
            "sellingPrice": money(self.selling_price),
            "stock": {
                "current": self.stock_current,
                "reorderThreshold": self.reorder_threshold,
                "minStock": self.min_stock,
            },
            "supplierId": self.supplier_id,
            "isActive": self.is_active,
            "isArchived": self.is_archived,
            "isLowStock": self.is_low_stock(),
            "isCriticalStock": self.is_critical_stock(),
            "lastRestocked": to_utc_z(self.last_restocked),
            "createdBy": self.created_by,
            "versionId": self.version_id,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
        if include_activity:
            data["activityLog"] = [a.to_dict() for a in self.activity]
        return data


class ProductActivity(db.Model):
    """
    Append-only stock movement log.

    Rows are immutable: corrections are new rows (type='adjustment'),
    never UPDATEs of existing history.
    """
    __tablename__ = "product_activity"
    __table_args__ = (
        db.Index("ix_product_activity_product_id_id", "product_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    # Magnitude for in/out movements; absolute target for adjustments
    quantity = db.Column(db.Integer, nullable=False)
    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    reference_id = db.Column(db.Integer, nullable=True, index=True)
    reference_model = db.Column(db.String(16), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    user = db.Column(db.String(64), nullable=True)

    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="activity")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "stockBefore": self.stock_before,
            "stockAfter": self.stock_after,
            "reference": self.reference_id,
            "referenceModel": self.reference_model,
            "reason": self.reason,
            "user": self.user,
            "timestamp": to_utc_z(self.timestamp),
        }
