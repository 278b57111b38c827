from __future__ import annotations

from ..extensions import db

PRODUCT_STATUS_ACTIVE = "active"
PRODUCT_STATUS_INACTIVE = "inactive"


class Product(db.Model):
    """
    Product master data with its current on-hand quantity.

    MULTI-TENANT: Products are scoped to branches via branch_id, and carry
    tenant_id so tenant-wide lookups never need a join.

    QUANTITY:
    Product.quantity is the system stock. It is changed by completed sales
    and by stock audit completion (which sets it to the physical count).
    Audit items snapshot it when added; they never re-read it live.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_branch_name", "branch_id", "name"),
        db.Index("ix_products_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, index=True)
    manufacturer_name = db.Column(db.String(255), nullable=True)

    # Current system stock, never negative
    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_ACTIVE)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} branch_id={self.branch_id} quantity={self.quantity}>"
