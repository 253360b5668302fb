# Overview: Service-layer operations for orders; coordinates placement, status changes and stock restoration.

"""
Storefront Order Placement Invariants (authoritative)

Placement (one DB transaction):
- Every cart line's stored price is re-checked against the current catalog
  price (or combo set price); any mismatch fails the whole order.
- One Order (PENDING), one OrderItem per line, one REMOVED movement per line
  (reference ORDER / order.id) and one status history row are written, and
  the consumed cart rows are deleted. Any failure rolls all of it back.
- A repeated idempotency_key from the same user returns the original order
  and touches nothing.

Status changes (one DB transaction):
- The order row is loaded against the caller's concurrency stamp; the flush
  is a compare-and-swap on that stamp.
- Entering CANCELLED, REJECTED, RETURNED or FAILED writes one REVERTED
  movement per line that still has an unreverted REMOVED movement, restoring
  exactly the removed quantity.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, false, func
from sqlalchemy.exc import IntegrityError

from flask import current_app

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Address, Branch, CartItem, InventoryMovement, Order, OrderItem, OrderStatusHistory
from ..models.auth import ROLE_RIDER, ROLE_SUPER_ADMIN, ROLE_USER, ROLE_VENDOR_ADMIN
from storefront.time_utils import utcnow
from .cart_service import active_cart_lines
from .concurrency import compare_and_swap, load_for_update, run_in_transaction
from .inventory_service import MOVEMENT_REMOVED, REFERENCE_ORDER, record_movement, revert_movement
from .order_status import (
    STATUS_CANCELLED,
    STATUS_PENDING,
    STATUS_RETURNED,
    STOCK_RESTORING_STATUSES,
    check_transition,
    transition,
)
from .pricing_service import current_line_price, promocode_discount_cents, resolve_promocode

logger = logging.getLogger(__name__)

PAYMENT_UNPAID = "UNPAID"
PAYMENT_PAID = "PAID"
PAYMENT_FAILED = "FAILED"
VALID_PAYMENT_STATUSES = {PAYMENT_UNPAID, PAYMENT_PAID, PAYMENT_FAILED}

PAYMENT_UPDATE_ROLES = frozenset({ROLE_VENDOR_ADMIN, ROLE_RIDER, ROLE_SUPER_ADMIN})

# Unique-constraint races on order_number are retried this many times in total
ORDER_NUMBER_ATTEMPTS = 3


def _next_order_number() -> str:
    """<PREFIX>-YYYYMMDD-NNNNNN, NNNNNN restarting at 000001 every UTC day."""
    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")
    day = utcnow().strftime("%Y%m%d")
    stem = f"{prefix}-{day}-"

    last = db.session.query(func.max(Order.order_number)).filter(Order.order_number.like(f"{stem}%")).scalar()
    seq = int(last.rsplit("-", 1)[1]) + 1 if last else 1
    return f"{stem}{seq:06d}"


def _find_by_idempotency_key(user_id: int, idempotency_key: str | None) -> Order | None:
    if not idempotency_key:
        return None
    return Order.query.filter_by(created_by=user_id, idempotency_key=idempotency_key).first()


def _check_order_scope(order: Order, *, actor_id: int, actor_role: str, actor_vendor_id: int | None) -> None:
    """Tenant scoping: users see their own orders, vendor admins their vendor's."""
    if actor_role == ROLE_USER and order.created_by != actor_id:
        raise NotFoundError("Order not found")
    # A vendor admin without a vendor sees nothing
    if actor_role == ROLE_VENDOR_ADMIN and (actor_vendor_id is None or order.vendor_id != actor_vendor_id):
        raise NotFoundError("Order not found")


def place_order(
    *,
    user_id: int,
    address_id: int,
    branch_id: int,
    promocode_id: int | None = None,
    cart_item_ids: list[int] | None = None,
    idempotency_key: str | None = None,
    shipping_charges_cents: int = 0,
    notes: str | None = None,
) -> Order:
    """
    Turn the user's ACTIVE cart lines for a branch into a PENDING order.

    cart_item_ids restricts the order to those lines; by default every ACTIVE
    line for the branch is ordered.

    Raises:
        ValidationError: empty cart, stale cart price, bad address/promocode
        InsufficientStockError: any line exceeds its stock (nothing written)
    """
    if isinstance(shipping_charges_cents, bool) or not isinstance(shipping_charges_cents, int) or shipping_charges_cents < 0:
        raise ValidationError("shipping_charges_cents must be a non-negative integer")

    existing = _find_by_idempotency_key(user_id, idempotency_key)
    if existing is not None:
        logger.info("Order %s replayed for idempotency key %r", existing.id, idempotency_key)
        return existing

    def _op():
        branch = db.session.get(Branch, branch_id)
        if branch is None:
            raise NotFoundError("Branch not found")

        address = Address.query.filter_by(id=address_id, created_by=user_id).first()
        if address is None:
            raise ValidationError("Address not found or does not belong to you")

        lines = active_cart_lines(user_id=user_id, branch_id=branch_id, cart_item_ids=cart_item_ids)
        if not lines:
            raise ValidationError("No items in the cart")

        priced = []
        for line in lines:
            current = current_line_price(line.product_id, line.variant_id, line.quantity, line.combo_id)
            if current.unit_price_cents != line.unit_price_cents:
                raise ValidationError(
                    "Cart price is out of date, refresh the cart",
                    details={
                        "cart_item_id": line.id,
                        "cart_unit_price_cents": line.unit_price_cents,
                        "current_unit_price_cents": current.unit_price_cents,
                    },
                )
            priced.append((line, current))

        total = sum(p.line_total_cents for _, p in priced)
        promo = resolve_promocode(promocode_id, branch_id) if promocode_id is not None else None
        discount = promocode_discount_cents(total, promo)

        order = Order(
            order_number=_next_order_number(),
            idempotency_key=idempotency_key,
            vendor_id=branch.vendor_id,
            branch_id=branch.id,
            address_id=address.id,
            promocode_id=promo.id if promo else None,
            total_amount_cents=total,
            discount_amount_cents=discount,
            shipping_charges_cents=shipping_charges_cents,
            final_amount_cents=total - discount + shipping_charges_cents,
            refund_amount_cents=0,
            refund_status="NONE",
            status=STATUS_PENDING,
            payment_status=PAYMENT_UNPAID,
            pickup_status="OPEN",
            notes=notes,
            created_by=user_id,
        )
        db.session.add(order)
        db.session.flush()

        db.session.add(OrderStatusHistory(
            order_id=order.id,
            status=STATUS_PENDING,
            previous_status=None,
            changed_by=user_id,
            changed_by_role=ROLE_USER,
        ))

        for line, price in priced:
            movement = record_movement(
                product_id=line.product_id,
                variant_id=line.variant_id,
                movement_type=MOVEMENT_REMOVED,
                quantity_change=-price.stock_units,
                reference_type=REFERENCE_ORDER,
                reference_id=order.id,
                user_id=user_id,
                notes=f"Order {order.order_number}",
            )
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                combo_id=line.combo_id,
                combo_sets=line.quantity if line.combo_id is not None else None,
                quantity=price.stock_units,
                price_at_purchase_cents=line.unit_price_cents,
                line_total_cents=price.line_total_cents,
                inventory_movement_id=movement.id,
                created_by=user_id,
            ))

        consumed = [line.id for line in lines]
        for line in lines:
            db.session.expunge(line)
        db.session.execute(
            delete(CartItem).where(CartItem.id.in_(consumed)).execution_options(synchronize_session=False)
        )

        db.session.flush()
        logger.info(
            "Order %s (%s) placed by user=%s lines=%s final_cents=%s",
            order.id,
            order.order_number,
            user_id,
            len(priced),
            order.final_amount_cents,
        )
        return order

    for attempt in range(ORDER_NUMBER_ATTEMPTS):
        try:
            return run_in_transaction(_op)
        except IntegrityError:
            # Lost a race: same idempotency key placed concurrently, or same order number taken
            existing = _find_by_idempotency_key(user_id, idempotency_key)
            if existing is not None:
                logger.info("Order %s replayed for idempotency key %r", existing.id, idempotency_key)
                return existing
            if attempt >= ORDER_NUMBER_ATTEMPTS - 1:
                raise
            logger.warning("Order number collision, retrying placement (attempt %s)", attempt + 2)


def restore_order_stock(order: Order, *, actor_id: int, notes: str | None = None) -> list[InventoryMovement]:
    """
    Write one REVERTED movement per order line still holding stock.

    Lines without a REMOVED movement, or whose movement was already
    reverted, are skipped; running this twice restores nothing the second time.
    """
    reverted = []
    for item in order.items:
        if item.inventory_movement_id is None:
            continue
        original = db.session.get(InventoryMovement, item.inventory_movement_id)
        if original is None or original.movement_type != MOVEMENT_REMOVED:
            continue
        already = db.session.query(InventoryMovement.id).filter_by(reverts_movement_id=original.id).first()
        if already is not None:
            continue
        reverted.append(revert_movement(
            original,
            user_id=actor_id,
            notes=notes or f"Order {order.order_number} {order.status}",
        ))
    return reverted


def change_order_status(
    *,
    order_id: int,
    target_status: str,
    concurrency_stamp: str | None,
    actor_id: int,
    actor_role: str,
    actor_vendor_id: int | None = None,
    notes: str | None = None,
) -> Order:
    """
    Move an order to target_status as one transaction.

    Order of checks: stale stamp (ConcurrencyError), tenant scope
    (NotFoundError), illegal pair (IllegalTransitionError), role
    (ForbiddenError). Stock-restoring targets also write the REVERTED rows.
    """
    def _op():
        order = load_for_update(Order, order_id, concurrency_stamp)
        _check_order_scope(order, actor_id=actor_id, actor_role=actor_role, actor_vendor_id=actor_vendor_id)
        check_transition(order.status, target_status, actor_role)

        transition(order, target_status, actor_id=actor_id, actor_role=actor_role, notes=notes)
        db.session.flush()

        if target_status in STOCK_RESTORING_STATUSES:
            restored = restore_order_stock(order, actor_id=actor_id)
            if restored:
                logger.info("Order %s restored stock on %s lines", order.id, len(restored))

        db.session.flush()
        return order

    return run_in_transaction(_op)


def cancel_order(
    *,
    order_id: int,
    concurrency_stamp: str | None,
    actor_id: int,
    actor_role: str,
    actor_vendor_id: int | None = None,
    notes: str | None = None,
) -> Order:
    return change_order_status(
        order_id=order_id,
        target_status=STATUS_CANCELLED,
        concurrency_stamp=concurrency_stamp,
        actor_id=actor_id,
        actor_role=actor_role,
        actor_vendor_id=actor_vendor_id,
        notes=notes,
    )


def return_order(
    *,
    order_id: int,
    concurrency_stamp: str | None,
    actor_id: int,
    actor_role: str,
    actor_vendor_id: int | None = None,
    notes: str | None = None,
) -> Order:
    """Complete a return (RETURN -> RETURNED) and put the goods back in stock."""
    return change_order_status(
        order_id=order_id,
        target_status=STATUS_RETURNED,
        concurrency_stamp=concurrency_stamp,
        actor_id=actor_id,
        actor_role=actor_role,
        actor_vendor_id=actor_vendor_id,
        notes=notes,
    )


def update_payment_status(
    *,
    order_id: int,
    payment_status: str,
    concurrency_stamp: str | None,
    actor_id: int,
    actor_role: str,
    actor_vendor_id: int | None = None,
) -> Order:
    """Guarded metadata update; does not go through the status machine."""
    if payment_status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment status '{payment_status}'. Must be one of: {', '.join(sorted(VALID_PAYMENT_STATUSES))}"
        )
    if actor_role not in PAYMENT_UPDATE_ROLES:
        raise ForbiddenError(f"Role {actor_role} may not update payment status")

    def _op():
        order = db.session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        _check_order_scope(order, actor_id=actor_id, actor_role=actor_role, actor_vendor_id=actor_vendor_id)

        compare_and_swap(
            Order,
            order_id,
            concurrency_stamp,
            {"payment_status": payment_status},
            updated_by=actor_id,
        )
        logger.info("Order %s payment status -> %s by user=%s", order_id, payment_status, actor_id)
        return db.session.get(Order, order_id, populate_existing=True)

    return run_in_transaction(_op)


def get_order(order_id: int, *, actor_id: int, actor_role: str, actor_vendor_id: int | None = None) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    _check_order_scope(order, actor_id=actor_id, actor_role=actor_role, actor_vendor_id=actor_vendor_id)
    return order


def get_order_detail(order_id: int, *, actor_id: int, actor_role: str, actor_vendor_id: int | None = None) -> dict:
    """Order with its lines and status history, oldest history first."""
    order = get_order(order_id, actor_id=actor_id, actor_role=actor_role, actor_vendor_id=actor_vendor_id)
    data = order.to_dict()
    data["items"] = [i.to_dict() for i in order.items]
    data["status_history"] = [h.to_dict() for h in order.status_history]
    return data


def list_orders(
    *,
    actor_id: int,
    actor_role: str,
    actor_vendor_id: int | None = None,
    status: str | None = None,
    branch_id: int | None = None,
    page_size: int = 10,
    page_number: int = 1,
) -> dict:
    page_size = max(1, min(int(page_size or 10), 200))
    page_number = max(1, int(page_number or 1))

    q = Order.query
    if actor_role == ROLE_USER:
        q = q.filter(Order.created_by == actor_id)
    elif actor_role == ROLE_VENDOR_ADMIN:
        q = q.filter(Order.vendor_id == actor_vendor_id) if actor_vendor_id is not None else q.filter(false())
    elif actor_role == ROLE_RIDER:
        q = q.filter((Order.rider_id == actor_id) | (Order.rider_id.is_(None)))
    elif actor_role != ROLE_SUPER_ADMIN:
        raise ForbiddenError(f"Role {actor_role} may not list orders")

    if status is not None:
        q = q.filter(Order.status == status)
    if branch_id is not None:
        q = q.filter(Order.branch_id == branch_id)

    total_count = q.order_by(None).with_entities(func.count(Order.id)).scalar()
    rows = (
        q.order_by(Order.created_at.desc(), Order.id.desc())
        .limit(page_size)
        .offset(page_size * (page_number - 1))
        .all()
    )
    return {
        "items": [o.to_dict() for o in rows],
        "pagination": {
            "page_size": page_size,
            "page_number": page_number,
            "total_count": int(total_count or 0),
        },
    }
