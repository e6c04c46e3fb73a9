
# app/purchases/effects.py
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable, Optional

from app.collaborators.base import AssetStorage, CollaboratorResult, PaymentsGateway
from app.purchases.errors import SideEffectFailure
from app.purchases.model import Purchase
from app.purchases.state_machine import Effect
from services.metrics import increment_side_effect

logger = logging.getLogger("vibing.effects")


class EffectDispatcher:
    """
    Runs the side effects owed by a recorded transition.

    Only ever called after the status write succeeded. A failing effect is
    logged and reported as SideEffectFailure; it never undoes the transition.
    """

    def __init__(self, payments: PaymentsGateway, storage: AssetStorage, *, max_workers: int = 4):
        self.payments = payments
        self.storage = storage
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="purchase-effects")

    def _run_one(self, purchase: Purchase, effect: Effect) -> Optional[CollaboratorResult]:
        if effect is Effect.RELEASE_FUNDS:
            return self.payments.trigger(str(purchase.id), "confirm")
        if effect is Effect.REFUND:
            return self.payments.trigger(str(purchase.id), "refund")
        if effect is Effect.DELETE_ASSET:
            if not purchase.product_file_ref:
                logger.info("purchase=%s no product file to delete", purchase.id)
                return None
            return self.storage.schedule_deletion(purchase.product_file_ref)
        raise ValueError(f"Unknown effect: {effect!r}")

    def run(self, purchase: Purchase, effects: Iterable[Effect]) -> list[SideEffectFailure]:
        failures: list[SideEffectFailure] = []
        for effect in effects:
            try:
                result = self._run_one(purchase, effect)
            except Exception as exc:
                logger.exception("purchase=%s effect=%s raised", purchase.id, effect.value)
                result = CollaboratorResult(ok=False, error=f"{type(exc).__name__}: {exc}")

            if result is None:
                increment_side_effect(effect.value, "skipped")
                continue

            if result.ok:
                increment_side_effect(effect.value, "ok")
                logger.info("purchase=%s effect=%s dispatched", purchase.id, effect.value)
                continue

            increment_side_effect(effect.value, "failed")
            failure = SideEffectFailure(str(purchase.id), effect.value, result.error or "unknown error")
            logger.warning("%s", failure)
            failures.append(failure)
        return failures

    def submit(self, purchase: Purchase, effects: Iterable[Effect]) -> Future:
        """run() on the effect pool; the future resolves to the failure list."""
        return self._executor.submit(self.run, purchase, tuple(effects))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
