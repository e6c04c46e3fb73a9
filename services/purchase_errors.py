

# services/purchase_errors.py
from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException

from app.purchases.errors import InvalidTransition, PurchaseError

PURCHASE_ERROR_HTTP_MAP: dict[str, tuple[int, str]] = {
    "INVALID_TRANSITION": (409, "INVALID_TRANSITION"),
    "PURCHASE_NOT_FOUND": (404, "PURCHASE_NOT_FOUND"),
    "ADMIN_REQUIRED": (403, "ADMIN_REQUIRED"),
    "CONCURRENT_MODIFICATION": (409, "CONCURRENT_MODIFICATION"),
}


def _detail(exc: PurchaseError, code: str) -> dict:
    detail: dict = {"code": code, "message": exc.message}
    if isinstance(exc, InvalidTransition):
        detail["current_status"] = exc.current
        detail["expected_status"] = list(exc.expected)
    return detail


def raise_http_from_purchase_error(exc: Exception) -> NoReturn:
    """
    Convert domain errors into HTTP responses; anything unknown fails closed.
    """
    if isinstance(exc, PurchaseError) and exc.code in PURCHASE_ERROR_HTTP_MAP:
        status, code = PURCHASE_ERROR_HTTP_MAP[exc.code]
        raise HTTPException(status_code=status, detail=_detail(exc, code)) from exc

    raise HTTPException(status_code=500, detail="Internal server error") from exc
