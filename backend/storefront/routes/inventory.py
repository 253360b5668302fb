# backend/storefront/routes/inventory.py
"""
Inventory ledger routes.

SECURITY: VENDOR_ADMIN and SUPER_ADMIN only. Vendor admins are scoped to
their vendor/branch: adjustments must target their own stock and history
queries are filtered to it.

Time semantics:
- dateFrom/dateTo accept ISO-8601 with Z/offsets, normalized to UTC-naive.
- Both bounds are inclusive.
"""
from flask import Blueprint, g, request

from ..decorators import require_actor, require_roles
from ..models.auth import ROLE_SUPER_ADMIN, ROLE_VENDOR_ADMIN
from ..services import inventory_service
from ..validation import (
    coerce_datetime,
    coerce_int,
    coerce_str,
    json_body,
    page_args,
    reject_unknown_fields,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

ADJUST_FIELDS = {"productId", "variantId", "quantityChange", "targetQuantity", "notes"}


def _vendor_scope() -> tuple[int | None, int | None]:
    if g.actor_role == ROLE_VENDOR_ADMIN:
        return g.vendor_id, g.branch_id
    return None, None


@inventory_bp.post("/adjust")
@require_actor
@require_roles(ROLE_VENDOR_ADMIN, ROLE_SUPER_ADMIN)
def adjust_inventory_route():
    """
    Manual stock correction.

    Body: productId, optional variantId, and either a signed quantityChange
    or a targetQuantity; optional notes.
    """
    payload = json_body()
    reject_unknown_fields(payload, ADJUST_FIELDS)

    vendor_id, branch_id = _vendor_scope()
    movement = inventory_service.adjust_inventory(
        product_id=coerce_int("productId", payload.get("productId"), required=True),
        variant_id=coerce_int("variantId", payload.get("variantId")),
        quantity_change=coerce_int("quantityChange", payload.get("quantityChange")),
        target_quantity=coerce_int("targetQuantity", payload.get("targetQuantity")),
        notes=coerce_str("notes", payload.get("notes")),
        user_id=g.actor_id,
        vendor_id=vendor_id,
        branch_id=branch_id,
    )
    return {"movement": movement.to_dict()}, 201


@inventory_bp.get("/movements")
@require_actor
@require_roles(ROLE_VENDOR_ADMIN, ROLE_SUPER_ADMIN)
def list_movements_route():
    page_size, page_number = page_args()
    vendor_id, branch_id = _vendor_scope()

    args = request.args
    result = inventory_service.list_inventory_movements(
        product_id=coerce_int("productId", args.get("productId")),
        variant_id=coerce_int("variantId", args.get("variantId")),
        vendor_id=vendor_id if vendor_id is not None else coerce_int("vendorId", args.get("vendorId")),
        branch_id=branch_id if branch_id is not None else coerce_int("branchId", args.get("branchId")),
        movement_type=coerce_str("movementType", args.get("movementType")),
        reference_type=coerce_str("referenceType", args.get("referenceType")),
        reference_id=coerce_int("referenceId", args.get("referenceId")),
        date_from=coerce_datetime("dateFrom", args.get("dateFrom")),
        date_to=coerce_datetime("dateTo", args.get("dateTo")),
        page_size=page_size,
        page_number=page_number,
    )
    return {
        "items": [m.to_dict() for m in result["items"]],
        "pagination": result["pagination"],
    }


@inventory_bp.get("/stock/<int:product_id>")
@require_actor
@require_roles(ROLE_VENDOR_ADMIN, ROLE_SUPER_ADMIN)
def stock_level_route(product_id: int):
    variant_id = coerce_int("variantId", request.args.get("variantId"))
    return {
        "product_id": product_id,
        "variant_id": variant_id,
        "quantity": inventory_service.get_stock_level(product_id, variant_id),
    }


@inventory_bp.get("/verify/<int:product_id>")
@require_actor
@require_roles(ROLE_SUPER_ADMIN)
def verify_ledger_route(product_id: int):
    variant_id = coerce_int("variantId", request.args.get("variantId"))
    return inventory_service.verify_ledger(product_id, variant_id)
