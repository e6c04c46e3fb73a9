
# app/purchases/errors.py
from __future__ import annotations

from typing import Iterable, Optional


class PurchaseError(Exception):
    code = "PURCHASE_ERROR"

    def __init__(self, message: str, *, purchase_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.purchase_id = purchase_id


class InvalidTransition(PurchaseError):
    """
    Event not legal from the current status, or its guard does not hold.
    Never retried automatically.
    """

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        event: str,
        current: str,
        expected: Iterable[str],
        *,
        reason: Optional[str] = None,
        purchase_id: Optional[str] = None,
    ):
        self.event = event
        self.current = current
        self.expected = tuple(expected)
        self.reason = reason
        msg = f"Illegal purchase transition: {event} from {current} (expected one of: {', '.join(self.expected)})"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg, purchase_id=purchase_id)


class NotFound(PurchaseError):
    code = "PURCHASE_NOT_FOUND"

    def __init__(self, purchase_id: str):
        super().__init__(f"Purchase not found: {purchase_id}", purchase_id=purchase_id)


class Forbidden(PurchaseError):
    code = "ADMIN_REQUIRED"


class ConcurrentModification(PurchaseError):
    """
    The guarded write lost a race: the stored status is no longer the one read.
    Callers re-read and decide; the losing attempt is discarded.
    """

    code = "CONCURRENT_MODIFICATION"

    def __init__(self, purchase_id: str, expected_status: str):
        self.expected_status = expected_status
        super().__init__(
            f"Purchase {purchase_id} changed concurrently (expected status {expected_status})",
            purchase_id=purchase_id,
        )


class SideEffectFailure(PurchaseError):
    """
    Transition was recorded but a dependent effect failed. Reported, never rolled back.
    """

    code = "SIDE_EFFECT_FAILED"

    def __init__(self, purchase_id: str, effect: str, error: str):
        self.effect = effect
        self.error = error
        super().__init__(f"{effect} failed for purchase {purchase_id}: {error}", purchase_id=purchase_id)

    def as_dict(self) -> dict[str, str]:
        return {"purchase_id": str(self.purchase_id), "effect": self.effect, "error": self.error}
