# Overview: Service-layer operations for the inventory ledger; the only writer of stock columns.

# backend/storefront/services/inventory_service.py

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func, select, update

from ..errors import ConcurrencyError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryMovement, Product, ProductVariant
from ..models.catalog import (
    PRODUCT_STATUS_INSTOCK,
    PRODUCT_STATUS_LOW_STOCK,
    PRODUCT_STATUS_OUT_OF_STOCK,
)
from ..models.common import new_concurrency_stamp
from .concurrency import expire_cached, run_in_transaction
"""
Storefront Inventory Invariants (authoritative)

Inventory model:
- The stock carrier (ProductVariant, or Product when sold without variants)
  holds the authoritative quantity column.
- InventoryMovement is the append-only log of every change to that column.
  The column is a materialized projection of the log.

Business invariants:
- Every quantity write is paired with exactly one movement row in the same
  DB transaction; record_movement() is the only code path that writes it.
- quantity_after = quantity_before + quantity_change on every row, and the
  latest quantity_after equals the live column.
- Quantity never goes negative; a decrement that would is rejected with no
  rows changed.
- ADDED and REVERTED are positive, REMOVED is negative, ADJUSTED may be either.
- REVERTED exactly cancels one earlier REMOVED row (same magnitude), at most once.

Concurrency:
- Deltas are applied as UPDATE ... SET quantity = quantity + :delta
  WHERE id = :id AND quantity + :delta >= 0; the UPDATE takes the row write
  lock, so concurrent decrements on one carrier serialize at the row.
- Target-quantity adjustments compare-and-swap on the quantity read.
"""

logger = logging.getLogger(__name__)

MOVEMENT_ADDED = "ADDED"
MOVEMENT_REMOVED = "REMOVED"
MOVEMENT_ADJUSTED = "ADJUSTED"
MOVEMENT_REVERTED = "REVERTED"
VALID_MOVEMENT_TYPES = {MOVEMENT_ADDED, MOVEMENT_REMOVED, MOVEMENT_ADJUSTED, MOVEMENT_REVERTED}

REFERENCE_PRODUCT = "PRODUCT"
REFERENCE_ORDER = "ORDER"
REFERENCE_MANUAL = "MANUAL"
VALID_REFERENCE_TYPES = {REFERENCE_PRODUCT, REFERENCE_ORDER, REFERENCE_MANUAL}


@dataclass(frozen=True)
class StockCarrier:
    """The row whose quantity column a movement changes."""
    model: type
    id: int
    product_id: int
    variant_id: int | None
    vendor_id: int
    branch_id: int


def derive_product_status(quantity: int, threshold_stock: int = 0) -> str:
    """
    Stock badge for a quantity.

    - quantity <= 0 -> OUT_OF_STOCK
    - threshold set and quantity <= threshold -> LOW_STOCK
    - no threshold and quantity < DEFAULT_LOW_STOCK_THRESHOLD -> LOW_STOCK
    - otherwise INSTOCK
    """
    default_threshold = current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 5)
    threshold = threshold_stock or 0

    if quantity <= 0:
        return PRODUCT_STATUS_OUT_OF_STOCK
    if threshold > 0 and quantity <= threshold:
        return PRODUCT_STATUS_LOW_STOCK
    if threshold == 0 and quantity < default_threshold:
        return PRODUCT_STATUS_LOW_STOCK
    return PRODUCT_STATUS_INSTOCK


def resolve_stock_carrier(product_id: int, variant_id: int | None = None) -> StockCarrier:
    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        if variant is None or variant.product_id != product_id:
            raise NotFoundError("Product variant not found")
        return StockCarrier(
            model=ProductVariant,
            id=variant.id,
            product_id=variant.product_id,
            variant_id=variant.id,
            vendor_id=variant.vendor_id,
            branch_id=variant.branch_id,
        )

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    # A product with variants keeps its stock on the variants
    if product.variants:
        raise ValidationError(f"Product {product_id} has variants; stock is tracked per variant")
    return StockCarrier(
        model=Product,
        id=product.id,
        product_id=product.id,
        variant_id=None,
        vendor_id=product.vendor_id,
        branch_id=product.branch_id,
    )


def get_stock_level(product_id: int, variant_id: int | None = None) -> int:
    carrier = resolve_stock_carrier(product_id, variant_id)
    return int(
        db.session.execute(
            select(carrier.model.quantity).where(carrier.model.id == carrier.id)
        ).scalar_one()
    )


def _validate_movement(movement_type: str, quantity_change: int | None, target_quantity: int | None) -> None:
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}")

    if target_quantity is not None:
        if movement_type != MOVEMENT_ADJUSTED:
            raise ValidationError("target_quantity is only allowed for ADJUSTED movements")
        if quantity_change is not None:
            raise ValidationError("Provide either quantity_change or target_quantity, not both")
        if isinstance(target_quantity, bool) or not isinstance(target_quantity, int):
            raise ValidationError("target_quantity must be an integer")
        if target_quantity < 0:
            raise ValidationError("target_quantity must be >= 0")
        return

    if isinstance(quantity_change, bool) or not isinstance(quantity_change, int):
        raise ValidationError("quantity_change must be an integer")
    if quantity_change == 0:
        raise ValidationError("Quantity change is required and cannot be zero")
    if movement_type in (MOVEMENT_ADDED, MOVEMENT_REVERTED) and quantity_change < 0:
        raise ValidationError(f"Quantity change must be positive for {movement_type} movements")
    if movement_type == MOVEMENT_REMOVED and quantity_change > 0:
        raise ValidationError("Quantity change must be negative for REMOVED movements")


def _apply_delta(carrier: StockCarrier, delta: int) -> int:
    """Atomically add delta to the carrier's quantity. Returns quantity_after."""
    model = carrier.model
    result = db.session.execute(
        update(model)
        .where(model.id == carrier.id, model.quantity + delta >= 0)
        .values(quantity=model.quantity + delta, concurrency_stamp=new_concurrency_stamp())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = db.session.execute(
            select(model.quantity).where(model.id == carrier.id)
        ).scalar_one_or_none()
        if available is None:
            raise NotFoundError("Stock record not found")
        raise InsufficientStockError(
            f"Insufficient stock: {available} available, {-delta} requested",
            product_id=carrier.product_id,
            variant_id=carrier.variant_id,
            available=int(available),
            requested=-delta,
        )

    # Read back under the row lock the UPDATE just took
    return int(db.session.execute(select(model.quantity).where(model.id == carrier.id)).scalar_one())


def _apply_target(carrier: StockCarrier, target_quantity: int) -> tuple[int, int]:
    """Set quantity to target via compare-and-swap. Returns (before, delta)."""
    model = carrier.model
    before = int(db.session.execute(select(model.quantity).where(model.id == carrier.id)).scalar_one())
    delta = target_quantity - before
    if delta == 0:
        raise ValidationError("Stock already at target quantity")

    result = db.session.execute(
        update(model)
        .where(model.id == carrier.id, model.quantity == before)
        .values(quantity=target_quantity, concurrency_stamp=new_concurrency_stamp())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrencyError("Stock changed while adjusting, reload and retry")
    return before, delta


def record_movement(
    *,
    product_id: int,
    variant_id: int | None = None,
    movement_type: str,
    quantity_change: int | None = None,
    target_quantity: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
    notes: str | None = None,
    reverts_movement_id: int | None = None,
) -> InventoryMovement:
    """
    Change a stock carrier's quantity and append the paired ledger row.

    Runs inside the caller's transaction and does not commit: order placement
    records one movement per line and commits them all together.

    ADJUSTED may pass target_quantity instead of quantity_change; the delta is
    then derived as target - quantity_before.

    Raises InsufficientStockError when the result would be negative.
    """
    _validate_movement(movement_type, quantity_change, target_quantity)
    if reference_type is not None and reference_type not in VALID_REFERENCE_TYPES:
        raise ValidationError(f"Invalid reference type: {reference_type}")

    carrier = resolve_stock_carrier(product_id, variant_id)

    if target_quantity is not None:
        before, delta = _apply_target(carrier, target_quantity)
        after = target_quantity
    else:
        delta = quantity_change
        after = _apply_delta(carrier, delta)
        before = after - delta

    threshold = db.session.execute(
        select(carrier.model.threshold_stock).where(carrier.model.id == carrier.id)
    ).scalar_one()
    db.session.execute(
        update(carrier.model)
        .where(carrier.model.id == carrier.id)
        .values(product_status=derive_product_status(after, threshold))
        .execution_options(synchronize_session=False)
    )
    expire_cached(carrier.model, carrier.id)

    movement = InventoryMovement(
        product_id=carrier.product_id,
        variant_id=carrier.variant_id,
        vendor_id=carrier.vendor_id,
        branch_id=carrier.branch_id,
        movement_type=movement_type,
        quantity_change=delta,
        quantity_before=before,
        quantity_after=after,
        reference_type=reference_type,
        reference_id=reference_id,
        reverts_movement_id=reverts_movement_id,
        user_id=user_id,
        notes=notes,
    )
    db.session.add(movement)
    db.session.flush()

    logger.info(
        "Stock movement %s %s product=%s variant=%s %s%+d=%s ref=%s:%s",
        movement.id,
        movement_type,
        carrier.product_id,
        carrier.variant_id,
        before,
        delta,
        after,
        reference_type,
        reference_id,
    )
    return movement


def revert_movement(
    original: InventoryMovement,
    *,
    user_id: int | None = None,
    notes: str | None = None,
) -> InventoryMovement:
    """
    Restore exactly what a REMOVED movement took out.

    The REVERTED row references the original through reverts_movement_id,
    which is unique, so a movement can only ever be reverted once.
    """
    if original.movement_type != MOVEMENT_REMOVED:
        raise ValidationError("Only REMOVED movements can be reverted")

    already = db.session.query(InventoryMovement.id).filter_by(reverts_movement_id=original.id).first()
    if already is not None:
        raise ValidationError(f"Movement {original.id} was already reverted")

    return record_movement(
        product_id=original.product_id,
        variant_id=original.variant_id,
        movement_type=MOVEMENT_REVERTED,
        quantity_change=-original.quantity_change,
        reference_type=original.reference_type,
        reference_id=original.reference_id,
        user_id=user_id,
        notes=notes,
        reverts_movement_id=original.id,
    )


def adjust_inventory(
    *,
    product_id: int,
    variant_id: int | None = None,
    quantity_change: int | None = None,
    target_quantity: int | None = None,
    notes: str | None = None,
    user_id: int | None = None,
    vendor_id: int | None = None,
    branch_id: int | None = None,
) -> InventoryMovement:
    """
    Manual stock correction.

    - quantity_change > 0 records ADDED
    - quantity_change < 0 records ADJUSTED (negative)
    - target_quantity records ADJUSTED with the derived delta

    vendor_id/branch_id, when given (a VENDOR_ADMIN's scope), must match
    the stock carrier.
    """
    if target_quantity is not None:
        movement_type = MOVEMENT_ADJUSTED
    elif isinstance(quantity_change, int) and not isinstance(quantity_change, bool) and quantity_change > 0:
        movement_type = MOVEMENT_ADDED
    else:
        movement_type = MOVEMENT_ADJUSTED

    def _op():
        carrier = resolve_stock_carrier(product_id, variant_id)
        if vendor_id is not None and carrier.vendor_id != vendor_id:
            raise ValidationError("Vendor does not match")
        if branch_id is not None and carrier.branch_id != branch_id:
            raise ValidationError("Branch does not match")

        return record_movement(
            product_id=product_id,
            variant_id=variant_id,
            movement_type=movement_type,
            quantity_change=quantity_change,
            target_quantity=target_quantity,
            reference_type=REFERENCE_MANUAL,
            reference_id=product_id,
            user_id=user_id,
            notes=notes,
        )

    return run_in_transaction(_op)


def list_inventory_movements(
    *,
    product_id: int | None = None,
    variant_id: int | None = None,
    vendor_id: int | None = None,
    branch_id: int | None = None,
    movement_type: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    date_from=None,
    date_to=None,
    page_size: int = 10,
    page_number: int = 1,
) -> dict:
    """
    Read-only movement history, newest first.

    date_from/date_to are inclusive bounds on created_at (UTC-naive datetimes).
    """
    if movement_type is not None and movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}")

    page_size = max(1, min(int(page_size or 10), 500))
    page_number = max(1, int(page_number or 1))

    q = InventoryMovement.query
    if product_id is not None:
        q = q.filter(InventoryMovement.product_id == product_id)
    if variant_id is not None:
        q = q.filter(InventoryMovement.variant_id == variant_id)
    if vendor_id is not None:
        q = q.filter(InventoryMovement.vendor_id == vendor_id)
    if branch_id is not None:
        q = q.filter(InventoryMovement.branch_id == branch_id)
    if movement_type is not None:
        q = q.filter(InventoryMovement.movement_type == movement_type)
    if reference_type is not None:
        q = q.filter(InventoryMovement.reference_type == reference_type)
    if reference_id is not None:
        q = q.filter(InventoryMovement.reference_id == reference_id)
    if date_from is not None:
        q = q.filter(InventoryMovement.created_at >= date_from)
    if date_to is not None:
        q = q.filter(InventoryMovement.created_at <= date_to)

    total_count = q.order_by(None).with_entities(func.count(InventoryMovement.id)).scalar()

    rows = (
        q.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .limit(page_size)
        .offset(page_size * (page_number - 1))
        .all()
    )

    return {
        "items": rows,
        "pagination": {
            "page_size": page_size,
            "page_number": page_number,
            "total_count": int(total_count or 0),
        },
    }


def verify_ledger(product_id: int, variant_id: int | None = None) -> dict:
    """
    Audit one stock carrier's ledger against its live quantity.

    Checks every row's before/after/delta arithmetic, that consecutive rows
    chain (row.before == previous.after) and that the latest after equals
    the live column. Read-only.
    """
    carrier = resolve_stock_carrier(product_id, variant_id)
    q = InventoryMovement.query.filter(InventoryMovement.product_id == carrier.product_id)
    if carrier.variant_id is None:
        q = q.filter(InventoryMovement.variant_id.is_(None))
    else:
        q = q.filter(InventoryMovement.variant_id == carrier.variant_id)
    rows = q.order_by(InventoryMovement.id.asc()).all()

    problems = []
    previous = None
    for row in rows:
        if row.quantity_after != row.quantity_before + row.quantity_change:
            problems.append({"movement_id": row.id, "problem": "arithmetic"})
        if previous is not None and row.quantity_before != previous.quantity_after:
            problems.append({"movement_id": row.id, "problem": "chain_break", "expected_before": previous.quantity_after})
        previous = row

    live = get_stock_level(product_id, variant_id)
    if previous is not None and previous.quantity_after != live:
        problems.append({"movement_id": previous.id, "problem": "live_mismatch", "live_quantity": live})

    return {
        "product_id": carrier.product_id,
        "variant_id": carrier.variant_id,
        "movement_count": len(rows),
        "live_quantity": live,
        "ok": not problems,
        "problems": problems,
    }
