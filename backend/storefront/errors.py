# Overview: Domain error taxonomy for the order core and its HTTP translation.

"""
Storefront order-core errors.

Services raise these synchronously and never retry them; each one is a
business decision the caller has to re-evaluate:

- ConcurrencyError:       stale concurrency stamp, refetch and resubmit
- IllegalTransitionError: status graph violation, reload order state
- ForbiddenError:         actor role not allowed for the transition
- InsufficientStockError: decrement exceeds available quantity
- NotFoundError:          entity absent
- ValidationError:        malformed or inconsistent input (stale cart price, ...)

The HTTP layer maps each kind to a status code in register_error_handlers().
"""

from __future__ import annotations

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException


class OrderCoreError(Exception):
    """Base class for every error the order core raises on purpose."""

    code = "ORDER_CORE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(OrderCoreError, ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(OrderCoreError):
    code = "NOT_FOUND"
    http_status = 404


class ConcurrencyError(OrderCoreError):
    """The presented concurrency stamp no longer matches the stored one."""

    code = "CONCURRENCY_ERROR"
    http_status = 409

    def __init__(self, message: str = "Concurrency error", details: dict | None = None):
        super().__init__(message, details)


class IllegalTransitionError(OrderCoreError):
    code = "ILLEGAL_TRANSITION"
    http_status = 400


class ForbiddenError(OrderCoreError):
    code = "FORBIDDEN"
    http_status = 400


class InsufficientStockError(OrderCoreError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(
        self,
        message: str,
        *,
        product_id: int,
        variant_id: int | None,
        available: int,
        requested: int,
    ):
        super().__init__(
            message,
            details={
                "product_id": product_id,
                "variant_id": variant_id,
                "available": available,
                "requested": requested,
                "shortfall": max(0, requested - available),
            },
        )
        self.product_id = product_id
        self.variant_id = variant_id
        self.available = available
        self.requested = requested


def register_error_handlers(app) -> None:
    @app.errorhandler(OrderCoreError)
    def handle_order_core_error(exc: OrderCoreError):
        return jsonify(exc.to_dict()), exc.http_status

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        current_app.logger.exception("Unhandled error: %s", exc)
        return jsonify({"error": "Internal server error"}), 500
