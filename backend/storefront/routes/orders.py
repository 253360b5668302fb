# backend/storefront/routes/orders.py
"""
Order routes.

SECURITY: All routes require an actor established by the auth gateway
headers (see decorators.require_actor). Who may move an order between two
statuses is decided by the order status machine, not here.

Concurrency:
- Updates must present the order's last-read stamp as body
  "concurrencyStamp" or header "x-concurrencystamp".
- Successful writes return the new stamp in the "x-concurrencystamp"
  response header.
"""
from flask import Blueprint, g, request

from ..decorators import require_actor, require_roles
from ..models.auth import ROLE_USER
from ..services import order_service
from ..validation import (
    CONCURRENCY_STAMP_HEADER,
    coerce_int,
    coerce_str,
    json_body,
    page_args,
    presented_concurrency_stamp,
    reject_unknown_fields,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

PLACE_ORDER_FIELDS = {
    "addressId",
    "branchId",
    "promocodeId",
    "cartItemIds",
    "idempotencyKey",
    "shippingCharges",
    "notes",
}


def _order_response(order, status_code: int = 200):
    return order.to_dict(), status_code, {CONCURRENCY_STAMP_HEADER: order.concurrency_stamp}


def _actor_kwargs() -> dict:
    return {"actor_id": g.actor_id, "actor_role": g.actor_role, "actor_vendor_id": g.vendor_id}


@orders_bp.post("")
@require_actor
@require_roles(ROLE_USER)
def place_order_route():
    """
    Place an order from the caller's cart.

    Idempotency-Key header (or body idempotencyKey) makes resubmission safe:
    the same key returns the order created the first time.
    """
    payload = json_body()
    reject_unknown_fields(payload, PLACE_ORDER_FIELDS)

    cart_item_ids = payload.get("cartItemIds")
    if cart_item_ids is not None:
        if not isinstance(cart_item_ids, list):
            return {"error": "cartItemIds must be a list", "code": "VALIDATION_ERROR"}, 400
        cart_item_ids = [coerce_int("cartItemIds", v, required=True) for v in cart_item_ids]

    idempotency_key = coerce_str(
        "idempotencyKey",
        payload.get("idempotencyKey") or request.headers.get("Idempotency-Key"),
        max_length=128,
    )

    order = order_service.place_order(
        user_id=g.actor_id,
        address_id=coerce_int("addressId", payload.get("addressId"), required=True),
        branch_id=coerce_int("branchId", payload.get("branchId"), required=True),
        promocode_id=coerce_int("promocodeId", payload.get("promocodeId")),
        cart_item_ids=cart_item_ids,
        idempotency_key=idempotency_key,
        shipping_charges_cents=coerce_int("shippingCharges", payload.get("shippingCharges")) or 0,
        notes=coerce_str("notes", payload.get("notes")),
    )
    return _order_response(order, 201)


@orders_bp.get("")
@require_actor
def list_orders_route():
    page_size, page_number = page_args()
    return order_service.list_orders(
        status=coerce_str("status", request.args.get("status")),
        branch_id=coerce_int("branchId", request.args.get("branchId")),
        page_size=page_size,
        page_number=page_number,
        **_actor_kwargs(),
    )


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    detail = order_service.get_order_detail(order_id, **_actor_kwargs())
    return detail, 200, {CONCURRENCY_STAMP_HEADER: detail["concurrency_stamp"]}


@orders_bp.patch("/<int:order_id>/status")
@require_actor
def change_order_status_route(order_id: int):
    """
    Move an order to a new status.

    Body: {"status": "...", "concurrencyStamp": "...", "notes": "..."}

    409 stale stamp, 400 ILLEGAL_TRANSITION / FORBIDDEN.
    """
    payload = json_body()
    reject_unknown_fields(payload, {"status", "concurrencyStamp", "notes"})

    order = order_service.change_order_status(
        order_id=order_id,
        target_status=coerce_str("status", payload.get("status"), required=True).upper(),
        concurrency_stamp=presented_concurrency_stamp(payload),
        notes=coerce_str("notes", payload.get("notes")),
        **_actor_kwargs(),
    )
    return _order_response(order)


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    payload = json_body()
    reject_unknown_fields(payload, {"concurrencyStamp", "notes"})

    order = order_service.cancel_order(
        order_id=order_id,
        concurrency_stamp=presented_concurrency_stamp(payload),
        notes=coerce_str("notes", payload.get("notes")),
        **_actor_kwargs(),
    )
    return _order_response(order)


@orders_bp.post("/<int:order_id>/return")
@require_actor
def return_order_route(order_id: int):
    payload = json_body()
    reject_unknown_fields(payload, {"concurrencyStamp", "notes"})

    order = order_service.return_order(
        order_id=order_id,
        concurrency_stamp=presented_concurrency_stamp(payload),
        notes=coerce_str("notes", payload.get("notes")),
        **_actor_kwargs(),
    )
    return _order_response(order)


@orders_bp.patch("/<int:order_id>/payment")
@require_actor
def update_payment_status_route(order_id: int):
    payload = json_body()
    reject_unknown_fields(payload, {"paymentStatus", "concurrencyStamp"})

    order = order_service.update_payment_status(
        order_id=order_id,
        payment_status=coerce_str("paymentStatus", payload.get("paymentStatus"), required=True).upper(),
        concurrency_stamp=presented_concurrency_stamp(payload),
        **_actor_kwargs(),
    )
    return _order_response(order)
