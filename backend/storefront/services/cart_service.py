# Overview: Service-layer operations for the shopping cart; rows consumed by order placement.

from __future__ import annotations

import logging

from sqlalchemy import delete

from ..errors import ConcurrencyError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CartItem
from .concurrency import compare_and_swap, prepare_update, run_in_transaction
from .inventory_service import resolve_stock_carrier
from .pricing_service import current_line_price

logger = logging.getLogger(__name__)

CART_ACTIVE = "ACTIVE"


def _owned_cart_item(cart_item_id: int, user_id: int) -> CartItem:
    item = db.session.get(CartItem, cart_item_id, populate_existing=True)
    if item is None or item.created_by != user_id or item.status != CART_ACTIVE:
        raise NotFoundError("Cart item not found")
    return item


def add_cart_item(
    *,
    user_id: int,
    product_id: int,
    variant_id: int | None = None,
    quantity: int,
    combo_id: int | None = None,
) -> CartItem:
    """
    Add a line to the user's cart at the current catalog price.

    Adding the same product/variant/combo again merges into the existing
    ACTIVE row (quantity summed, price refreshed).
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")

    def _op():
        carrier = resolve_stock_carrier(product_id, variant_id)

        existing = CartItem.query.filter_by(
            created_by=user_id,
            product_id=product_id,
            variant_id=variant_id,
            combo_id=combo_id,
            branch_id=carrier.branch_id,
            status=CART_ACTIVE,
        ).first()

        new_quantity = quantity + (existing.quantity if existing else 0)
        price = current_line_price(product_id, variant_id, new_quantity, combo_id)

        if existing is not None:
            existing.quantity = new_quantity
            existing.unit_price_cents = price.unit_price_cents
            existing.updated_by = user_id
            db.session.flush()
            return existing

        item = CartItem(
            product_id=product_id,
            variant_id=variant_id,
            vendor_id=carrier.vendor_id,
            branch_id=carrier.branch_id,
            combo_id=combo_id,
            quantity=quantity,
            unit_price_cents=price.unit_price_cents,
            status=CART_ACTIVE,
            created_by=user_id,
        )
        db.session.add(item)
        db.session.flush()
        logger.info("Cart item %s added for user=%s product=%s variant=%s", item.id, user_id, product_id, variant_id)
        return item

    return run_in_transaction(_op)


def update_cart_item(
    *,
    cart_item_id: int,
    user_id: int,
    quantity: int,
    concurrency_stamp: str | None,
) -> CartItem:
    """Change a line's quantity; guarded by the line's concurrency stamp."""
    def _op():
        item = _owned_cart_item(cart_item_id, user_id)
        price = current_line_price(item.product_id, item.variant_id, quantity, item.combo_id)
        compare_and_swap(
            CartItem,
            item.id,
            concurrency_stamp,
            {"quantity": quantity, "unit_price_cents": price.unit_price_cents},
            updated_by=user_id,
        )
        return _owned_cart_item(cart_item_id, user_id)

    return run_in_transaction(_op)


def remove_cart_item(*, cart_item_id: int, user_id: int, concurrency_stamp: str | None) -> None:
    def _op():
        item = _owned_cart_item(cart_item_id, user_id)
        result = db.session.execute(
            delete(CartItem)
            .where(CartItem.id == cart_item_id, CartItem.concurrency_stamp == concurrency_stamp)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            prepare_update(CartItem, cart_item_id, concurrency_stamp)
            raise ConcurrencyError(details={"entity": "CartItem", "id": cart_item_id})
        db.session.expunge(item)

    run_in_transaction(_op)


def list_cart(*, user_id: int, branch_id: int | None = None) -> dict:
    q = CartItem.query.filter_by(created_by=user_id, status=CART_ACTIVE)
    if branch_id is not None:
        q = q.filter(CartItem.branch_id == branch_id)
    items = q.order_by(CartItem.id.asc()).all()
    return {
        "items": [i.to_dict() for i in items],
        "total_cents": sum(i.unit_price_cents * i.quantity for i in items),
    }


def active_cart_lines(*, user_id: int, branch_id: int, cart_item_ids: list[int] | None = None) -> list[CartItem]:
    """ACTIVE cart rows to be ordered, oldest first."""
    q = CartItem.query.filter_by(created_by=user_id, branch_id=branch_id, status=CART_ACTIVE)
    if cart_item_ids is not None:
        if not cart_item_ids:
            raise ValidationError("cart_item_ids must not be empty")
        q = q.filter(CartItem.id.in_(cart_item_ids))
    lines = q.order_by(CartItem.id.asc()).all()
    if cart_item_ids is not None and len(lines) != len(set(cart_item_ids)):
        raise ValidationError("Some cart items were not found in the active cart")
    return lines
