# backend/storefront/routes/cart.py
"""
Cart routes. Customers (role USER) only; every route acts on the caller's own cart.
"""
from flask import Blueprint, g, request

from ..decorators import require_actor, require_roles
from ..models.auth import ROLE_USER
from ..services import cart_service
from ..validation import (
    CONCURRENCY_STAMP_HEADER,
    coerce_int,
    json_body,
    presented_concurrency_stamp,
    reject_unknown_fields,
)


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_actor
@require_roles(ROLE_USER)
def list_cart_route():
    return cart_service.list_cart(
        user_id=g.actor_id,
        branch_id=coerce_int("branchId", request.args.get("branchId")),
    )


@cart_bp.post("")
@require_actor
@require_roles(ROLE_USER)
def add_cart_item_route():
    payload = json_body()
    reject_unknown_fields(payload, {"productId", "variantId", "comboId", "quantity"})

    item = cart_service.add_cart_item(
        user_id=g.actor_id,
        product_id=coerce_int("productId", payload.get("productId"), required=True),
        variant_id=coerce_int("variantId", payload.get("variantId")),
        combo_id=coerce_int("comboId", payload.get("comboId")),
        quantity=coerce_int("quantity", payload.get("quantity"), required=True),
    )
    return item.to_dict(), 201, {CONCURRENCY_STAMP_HEADER: item.concurrency_stamp}


@cart_bp.patch("/<int:cart_item_id>")
@require_actor
@require_roles(ROLE_USER)
def update_cart_item_route(cart_item_id: int):
    payload = json_body()
    reject_unknown_fields(payload, {"quantity", "concurrencyStamp"})

    item = cart_service.update_cart_item(
        cart_item_id=cart_item_id,
        user_id=g.actor_id,
        quantity=coerce_int("quantity", payload.get("quantity"), required=True),
        concurrency_stamp=presented_concurrency_stamp(payload),
    )
    return item.to_dict(), 200, {CONCURRENCY_STAMP_HEADER: item.concurrency_stamp}


@cart_bp.delete("/<int:cart_item_id>")
@require_actor
@require_roles(ROLE_USER)
def remove_cart_item_route(cart_item_id: int):
    cart_service.remove_cart_item(
        cart_item_id=cart_item_id,
        user_id=g.actor_id,
        concurrency_stamp=presented_concurrency_stamp(json_body()),
    )
    return "", 204
