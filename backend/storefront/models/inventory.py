from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from storefront.time_utils import to_utc_z, utcnow


class InventoryMovement(db.Model):
    """
    Append-only stock ledger row.

    INVARIANTS:
    - quantity_after == quantity_before + quantity_change
    - quantity_after equals the stock carrier's quantity right after the
      movement committed (both are written in the same DB transaction)
    - rows are never updated or deleted; corrections are new REVERTED or
      ADJUSTED rows

    product_id is always set; variant_id is set when the stock carrier is a
    ProductVariant, NULL when it is the Product itself.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_invmov_product_variant_id", "product_id", "variant_id", "id"),
        db.Index("ix_invmov_reference", "reference_type", "reference_id"),
        db.Index("ix_invmov_vendor_branch_created", "vendor_id", "branch_id", "created_at"),
        db.CheckConstraint(
            "quantity_after = quantity_before + quantity_change",
            name="ck_invmov_before_after_delta",
        ),
        db.CheckConstraint("quantity_after >= 0", name="ck_invmov_after_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # ADDED, REMOVED, ADJUSTED, REVERTED
    movement_type = db.Column(db.String(16), nullable=False, index=True)

    # Positive for ADDED/REVERTED, negative for REMOVED, either sign for ADJUSTED
    quantity_change = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    # PRODUCT, ORDER, MANUAL; reference_id is the order id for ORDER, product id otherwise
    reference_type = db.Column(db.String(16), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    # REVERTED rows point at the REMOVED row they cancel
    reverts_movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True, unique=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    reverts_movement = db.relationship("InventoryMovement", remote_side=[id])

    def __repr__(self) -> str:
        return (
            f"<InventoryMovement id={self.id} type={self.movement_type} "
            f"{self.quantity_before}{self.quantity_change:+d}={self.quantity_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "vendor_id": self.vendor_id,
            "branch_id": self.branch_id,
            "movement_type": self.movement_type,
            "quantity_change": self.quantity_change,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reverts_movement_id": self.reverts_movement_id,
            "user_id": self.user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(InventoryMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ValueError(f"InventoryMovement {target.id} is immutable")


@event.listens_for(InventoryMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ValueError(f"InventoryMovement {target.id} is immutable")
