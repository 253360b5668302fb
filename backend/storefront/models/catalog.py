from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z
from .common import new_concurrency_stamp


PRODUCT_STATUS_INSTOCK = "INSTOCK"
PRODUCT_STATUS_LOW_STOCK = "LOW_STOCK"
PRODUCT_STATUS_OUT_OF_STOCK = "OUT_OF_STOCK"


class Product(db.Model):
    """
    Catalog product.

    STOCK: quantity is the authoritative stock column for products sold
    without variants. When a product has variants, each ProductVariant carries
    its own quantity and this column is not used for ordering.

    Only inventory_service.record_movement() writes quantity/product_status.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_vendor_branch", "vendor_id", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents
    selling_price_cents = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    threshold_stock = db.Column(db.Integer, nullable=False, default=0)
    product_status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_INSTOCK, index=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)

    concurrency_stamp = db.Column(db.String(32), nullable=False)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    vendor = db.relationship("Vendor")
    branch = db.relationship("Branch")
    __mapper_args__ = {"version_id_col": concurrency_stamp, "version_id_generator": new_concurrency_stamp}

    def __repr__(self) -> str:
        return f"<Product id={self.id} title={self.title!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "branch_id": self.branch_id,
            "title": self.title,
            "selling_price_cents": self.selling_price_cents,
            "quantity": self.quantity,
            "threshold_stock": self.threshold_stock,
            "product_status": self.product_status,
            "status": self.status,
            "concurrency_stamp": self.concurrency_stamp,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """
    Sellable variant of a product (size, weight, pack...).

    vendor_id/branch_id are denormalized from the product so ledger rows and
    stock checks never need a join.
    """
    __tablename__ = "product_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    variant_name = db.Column(db.String(255), nullable=False)
    selling_price_cents = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    threshold_stock = db.Column(db.Integer, nullable=False, default=0)
    product_status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_INSTOCK, index=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)

    concurrency_stamp = db.Column(db.String(32), nullable=False)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))
    __mapper_args__ = {"version_id_col": concurrency_stamp, "version_id_generator": new_concurrency_stamp}

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} product_id={self.product_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "vendor_id": self.vendor_id,
            "branch_id": self.branch_id,
            "variant_name": self.variant_name,
            "selling_price_cents": self.selling_price_cents,
            "quantity": self.quantity,
            "threshold_stock": self.threshold_stock,
            "product_status": self.product_status,
            "status": self.status,
            "concurrency_stamp": self.concurrency_stamp,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class VariantComboDiscount(db.Model):
    """
    Bundle price for buying exactly combo_quantity units of a variant.

    discount_type PERCENT: discount_value is a percentage off the set price.
    discount_type FLATOFF: discount_value is cents off the set price.
    """
    __tablename__ = "variant_combo_discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    combo_quantity = db.Column(db.Integer, nullable=False)
    discount_type = db.Column(db.String(16), nullable=False)
    discount_value = db.Column(db.Integer, nullable=False)
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)

    concurrency_stamp = db.Column(db.String(32), nullable=False)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    variant = db.relationship("ProductVariant", backref=db.backref("combo_discounts", lazy=True))
    __mapper_args__ = {"version_id_col": concurrency_stamp, "version_id_generator": new_concurrency_stamp}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "combo_quantity": self.combo_quantity,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "status": self.status,
            "concurrency_stamp": self.concurrency_stamp,
        }


class Promocode(db.Model):
    """Percentage promo code, optionally restricted to one branch."""
    __tablename__ = "promocodes"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_promocodes_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    percentage = db.Column(db.Integer, nullable=False)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)

    concurrency_stamp = db.Column(db.String(32), nullable=False)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": concurrency_stamp, "version_id_generator": new_concurrency_stamp}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "percentage": self.percentage,
            "vendor_id": self.vendor_id,
            "branch_id": self.branch_id,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "status": self.status,
            "concurrency_stamp": self.concurrency_stamp,
        }
