from __future__ import annotations

from typing import Any

from flask import request

from .errors import ValidationError
from storefront.time_utils import parse_iso_datetime


CONCURRENCY_STAMP_HEADER = "x-concurrencystamp"


def coerce_int(key: str, value: Any, *, required: bool = False) -> int | None:
    """
    Strict integer coercion for JSON bodies and query strings.

    Rejects bools, floats, decimals and scientific notation.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{key} is required")
        return None

    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def coerce_str(key: str, value: Any, *, required: bool = False, max_length: int | None = None) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if required and not value:
        raise ValidationError(f"{key} cannot be blank")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return value or None


def coerce_datetime(key: str, value: Any):
    if value is None or value == "":
        return None
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an ISO-8601 datetime")


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def reject_unknown_fields(payload: dict, allowed: set[str]) -> None:
    for k in payload.keys():
        if k not in allowed:
            raise ValidationError(f"Field not allowed: {k}")


def presented_concurrency_stamp(payload: dict | None = None) -> str | None:
    """Stamp the client last read: body concurrencyStamp, else the x-concurrencystamp header."""
    stamp = None
    if payload:
        stamp = payload.get("concurrencyStamp")
    if not stamp:
        stamp = request.headers.get(CONCURRENCY_STAMP_HEADER)
    if stamp is not None and not isinstance(stamp, str):
        raise ValidationError("concurrencyStamp must be a string")
    return stamp or None


def page_args(default_size: int = 10) -> tuple[int, int]:
    page_size = coerce_int("pageSize", request.args.get("pageSize")) or default_size
    page_number = coerce_int("pageNumber", request.args.get("pageNumber")) or 1
    if page_size < 1 or page_number < 1:
        raise ValidationError("pageSize and pageNumber must be >= 1")
    return page_size, page_number
