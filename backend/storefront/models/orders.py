from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z
from .common import new_concurrency_stamp


class Address(db.Model):
    """Delivery address owned by a customer."""
    __tablename__ = "addresses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    mobile_number = db.Column(db.String(32), nullable=True)
    house_no = db.Column(db.String(64), nullable=True)
    street_details = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(128), nullable=True)
    postal_code = db.Column(db.String(16), nullable=True)

    concurrency_stamp = db.Column(db.String(32), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": concurrency_stamp, "version_id_generator": new_concurrency_stamp}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "mobile_number": self.mobile_number,
            "house_no": self.house_no,
            "street_details": self.street_details,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "concurrency_stamp": self.concurrency_stamp,
            "created_by": self.created_by,
        }


class CartItem(db.Model):
    """
    One line of a customer's cart.

    Cart rows are consumed (deleted) by order placement in the same
    transaction that creates the order.
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        db.Index("ix_cart_items_owner_status", "created_by", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    # With combo_id set, quantity counts combo sets and unit_price_cents is the price of one set
    combo_id = db.Column(db.Integer, db.ForeignKey("variant_combo_discounts.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    concurrency_stamp = db.Column(db.String(32), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")
    __mapper_args__ = {"version_id_col": concurrency_stamp, "version_id_generator": new_concurrency_stamp}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "vendor_id": self.vendor_id,
            "branch_id": self.branch_id,
            "combo_id": self.combo_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.unit_price_cents * self.quantity,
            "status": self.status,
            "concurrency_stamp": self.concurrency_stamp,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Order(db.Model):
    """
    Customer order (document-first).

    LIFECYCLE: status only moves through services.order_status.transition();
    CANCELLED/REJECTED/RETURNED/FAILED/DELIVERED are terminal, orders are never
    deleted.

    IDEMPOTENCY: (created_by, idempotency_key) is unique, so a client that
    resubmits checkout with the same key gets the original order back.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.UniqueConstraint("created_by", "idempotency_key", name="uq_orders_owner_idempotency_key"),
        db.Index("ix_orders_branch_status_created", "branch_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)
    idempotency_key = db.Column(db.String(128), nullable=True)

    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=False)
    promocode_id = db.Column(db.Integer, db.ForeignKey("promocodes.id"), nullable=True)

    # All amounts in cents
    total_amount_cents = db.Column(db.Integer, nullable=False)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_charges_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_status = db.Column(db.String(16), nullable=False, default="NONE")

    status = db.Column(db.String(32), nullable=False, default="PENDING", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID", index=True)
    pickup_status = db.Column(db.String(16), nullable=True, default="OPEN")
    rider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)

    concurrency_stamp = db.Column(db.String(32), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    address = db.relationship("Address")
    branch = db.relationship("Branch")
    __mapper_args__ = {"version_id_col": concurrency_stamp, "version_id_generator": new_concurrency_stamp}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "idempotency_key": self.idempotency_key,
            "vendor_id": self.vendor_id,
            "branch_id": self.branch_id,
            "address_id": self.address_id,
            "promocode_id": self.promocode_id,
            "total_amount_cents": self.total_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "shipping_charges_cents": self.shipping_charges_cents,
            "final_amount_cents": self.final_amount_cents,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_status": self.refund_status,
            "status": self.status,
            "payment_status": self.payment_status,
            "pickup_status": self.pickup_status,
            "rider_id": self.rider_id,
            "notes": self.notes,
            "concurrency_stamp": self.concurrency_stamp,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """
    Order line. price_at_purchase_cents is a snapshot taken at checkout and
    is never recomputed from the catalog.

    quantity is always stock units (the amount the REMOVED movement took).
    For combo lines price_at_purchase_cents is the price of one set and
    combo_sets the number of sets bought.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)

    combo_id = db.Column(db.Integer, db.ForeignKey("variant_combo_discounts.id"), nullable=True)
    combo_sets = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_at_purchase_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # REMOVED movement written when stock was decremented for this line
    inventory_movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    concurrency_stamp = db.Column(db.String(32), nullable=False)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("items", lazy=True, order_by="OrderItem.id"))
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")
    inventory_movement = db.relationship("InventoryMovement", foreign_keys=[inventory_movement_id])
    __mapper_args__ = {"version_id_col": concurrency_stamp, "version_id_generator": new_concurrency_stamp}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "combo_id": self.combo_id,
            "combo_sets": self.combo_sets,
            "quantity": self.quantity,
            "price_at_purchase_cents": self.price_at_purchase_cents,
            "line_total_cents": self.line_total_cents,
            "inventory_movement_id": self.inventory_movement_id,
            "created_at": to_utc_z(self.created_at),
        }


class OrderStatusHistory(db.Model):
    """Append-only trail of order status changes."""
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False)
    previous_status = db.Column(db.String(32), nullable=True)
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    changed_by_role = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("status_history", lazy=True, order_by="OrderStatusHistory.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "previous_status": self.previous_status,
            "changed_by": self.changed_by,
            "changed_by_role": self.changed_by_role,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
