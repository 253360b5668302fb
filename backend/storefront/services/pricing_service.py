# Overview: Price lookups used to re-validate cart prices at checkout; pure arithmetic over catalog rows.

from __future__ import annotations

import math
from dataclasses import dataclass

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, ProductVariant, Promocode, VariantComboDiscount
from storefront.time_utils import utcnow


DISCOUNT_PERCENT = "PERCENT"
DISCOUNT_FLATOFF = "FLATOFF"


@dataclass(frozen=True)
class LinePrice:
    """
    Current catalog price of a cart line.

    unit_price_cents is per cart unit (one set for combo lines);
    stock_units is what the line takes from stock.
    """
    unit_price_cents: int
    line_total_cents: int
    stock_units: int
    combo_quantity: int | None = None


def combo_set_price_cents(selling_price_cents: int, combo: VariantComboDiscount) -> int:
    """
    Price of one set of combo.combo_quantity units.

    Integer cents throughout; PERCENT rounds half up.
    """
    base = combo.combo_quantity * selling_price_cents
    if combo.discount_type == DISCOUNT_PERCENT:
        return max(0, (base * (100 - combo.discount_value) + 50) // 100)
    if combo.discount_type == DISCOUNT_FLATOFF:
        return max(0, base - combo.discount_value)
    raise ValidationError(f"Unknown combo discount type: {combo.discount_type}")


def get_active_combo(combo_id: int, variant_id: int, *, now=None) -> VariantComboDiscount:
    now = now or utcnow()
    combo = db.session.get(VariantComboDiscount, combo_id)
    if combo is None or combo.variant_id != variant_id:
        raise NotFoundError("Combo discount not found for this variant")
    if combo.status != "ACTIVE" or combo.start_date > now or combo.end_date < now:
        raise ValidationError("Combo discount is no longer available")
    return combo


def current_line_price(
    product_id: int,
    variant_id: int | None,
    quantity: int,
    combo_id: int | None = None,
) -> LinePrice:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")

    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        if variant is None or variant.product_id != product_id:
            raise NotFoundError("Product variant not found")
        if variant.status != "ACTIVE":
            raise ValidationError(f"Variant {variant_id} is not available")

        if combo_id is not None:
            combo = get_active_combo(combo_id, variant.id)
            set_price = combo_set_price_cents(variant.selling_price_cents, combo)
            return LinePrice(
                unit_price_cents=set_price,
                line_total_cents=set_price * quantity,
                stock_units=combo.combo_quantity * quantity,
                combo_quantity=combo.combo_quantity,
            )
        return LinePrice(
            unit_price_cents=variant.selling_price_cents,
            line_total_cents=variant.selling_price_cents * quantity,
            stock_units=quantity,
        )

    if combo_id is not None:
        raise ValidationError("Combo discounts apply to variants only")

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if product.status != "ACTIVE":
        raise ValidationError(f"Product {product_id} is not available")
    if product.variants:
        raise ValidationError(f"Product {product_id} is sold by variant; choose a variant")
    return LinePrice(
        unit_price_cents=product.selling_price_cents,
        line_total_cents=product.selling_price_cents * quantity,
        stock_units=quantity,
    )


def resolve_promocode(promocode_id: int, branch_id: int, *, now=None) -> Promocode:
    """Load a promocode that is ACTIVE, inside its window, and valid for branch_id."""
    now = now or utcnow()
    promo = db.session.get(Promocode, promocode_id)
    if promo is None:
        raise NotFoundError("Promocode not found")
    if promo.status != "ACTIVE":
        raise ValidationError("Promocode is not active")
    if promo.start_date > now or promo.end_date < now:
        raise ValidationError("This promo code is not valid at the moment")
    if promo.branch_id is not None and promo.branch_id != branch_id:
        raise ValidationError("This promo code is not valid for this branch")
    return promo


def promocode_discount_cents(total_cents: int, promo: Promocode | None) -> int:
    if promo is None:
        return 0
    return math.floor(total_cents * promo.percentage / 100)
