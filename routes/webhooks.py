

# routes/webhooks.py
from __future__ import annotations

import hmac
import hashlib
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from app.purchases.errors import InvalidTransition, PurchaseError
from app.purchases.service import TransitionHandler
from deps.purchases import get_handler
from schemas import PaymentSignal
from services.purchase_errors import raise_http_from_purchase_error
from settings import settings


router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger("vibing.webhooks")

SIGNATURE_HEADER = "X-Signature"


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _verify_signature(request: Request, body: bytes) -> None:
    secret = (settings.PAYMENT_WEBHOOK_SECRET or "").strip()
    if not secret:
        if (settings.ENV or "dev") == "dev":
            return
        raise HTTPException(status_code=401, detail="WEBHOOK_SECRET_NOT_CONFIGURED")

    provided = (request.headers.get(SIGNATURE_HEADER) or "").strip().lower()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(secret, body)
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="INVALID_SIGNATURE")


@router.post("/payments")
async def payment_signal(request: Request, handler: TransitionHandler = Depends(get_handler)):
    body = await request.body()
    _verify_signature(request, body)

    try:
        signal = PaymentSignal.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))

    try:
        result = handler.record_payment(signal.purchase_id, succeeded=signal.succeeded, cancelled=signal.cancelled)
    except InvalidTransition as exc:
        # Redelivery of an already-applied signal lands here.
        logger.info("payment signal for purchase=%s not applied: %s", signal.purchase_id, exc)
        raise_http_from_purchase_error(exc)
    except PurchaseError as exc:
        raise_http_from_purchase_error(exc)

    return {
        "ok": True,
        "purchase_id": str(result.purchase.id),
        "status": result.purchase.status,
        "auto_confirm_at": result.purchase.auto_confirm_at,
    }
