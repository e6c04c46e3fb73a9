
# app/purchases/service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from app.purchases import state_machine as sm
from app.purchases.errors import ConcurrentModification, Forbidden, InvalidTransition, NotFound
from app.purchases.model import Purchase, new_purchase
from app.purchases.store import PurchaseStore
from services.metrics import increment_transition

logger = logging.getLogger("vibing.purchases")


@dataclass(frozen=True)
class Actor:
    user_id: Optional[UUID]
    is_admin: bool = False
    is_system: bool = False

    @property
    def label(self) -> str:
        if self.is_system:
            return "system"
        return str(self.user_id)


SYSTEM_ACTOR = Actor(user_id=None, is_system=True)


@dataclass(frozen=True)
class TransitionResult:
    purchase: Purchase
    previous_status: str
    event: str
    effects: tuple[sm.Effect, ...] = ()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransitionHandler:
    """
    Synchronous driver around the state machine.

    load -> authorize -> apply -> compare-and-swap on status. A rejected event
    writes nothing; a lost race raises ConcurrentModification and is not retried.
    Side effects are returned to the caller, to be dispatched after the write.
    """

    def __init__(self, store: PurchaseStore, *, clock: Callable[[], datetime] = _utcnow, source: str = "request"):
        self.store = store
        self.clock = clock
        self.source = source

    # ----------------------------------------------------------
    # Reads
    # ----------------------------------------------------------

    def load(self, purchase_id: UUID) -> Purchase:
        p = self.store.get(purchase_id)
        if p is None:
            raise NotFound(str(purchase_id))
        return p

    def load_for(self, purchase_id: UUID, actor: Actor) -> Purchase:
        p = self.load(purchase_id)
        if not (actor.is_admin or actor.is_system) and p.buyer_id != actor.user_id:
            raise NotFound(str(purchase_id))
        return p

    # ----------------------------------------------------------
    # Writes
    # ----------------------------------------------------------

    def create_order(
        self,
        actor: Actor,
        *,
        product_id: UUID,
        price_cents: int,
        product_file_ref: Optional[str] = None,
    ) -> Purchase:
        if actor.user_id is None:
            raise Forbidden("Buyer required")
        p = new_purchase(
            buyer_id=actor.user_id,
            product_id=product_id,
            price_cents=price_cents,
            product_file_ref=product_file_ref,
            now=self.clock(),
        )
        created = self.store.create(p)
        logger.info("purchase=%s order=%s created pending", created.id, created.order_id)
        return created

    def _authorize(self, p: Purchase, actor: Actor, event) -> None:
        if isinstance(event, sm.BUYER_EVENTS):
            if actor.user_id is None or p.buyer_id != actor.user_id:
                raise NotFound(str(p.id))
        elif isinstance(event, sm.ADMIN_EVENTS):
            if not actor.is_admin:
                raise Forbidden("Admin access required", purchase_id=str(p.id))
        elif isinstance(event, sm.SYSTEM_EVENTS):
            if not actor.is_system:
                raise Forbidden("System event", purchase_id=str(p.id))
        else:
            raise TypeError(f"Unknown purchase event: {event!r}")

    def handle(self, purchase_id: UUID, actor: Actor, event, *, now: Optional[datetime] = None) -> TransitionResult:
        current = self.load(purchase_id)
        self._authorize(current, actor, event)

        try:
            transition = sm.apply(current, event, now or self.clock())
        except InvalidTransition:
            increment_transition(event.name, self.source, "rejected")
            raise

        if not self.store.compare_and_swap(current.status, transition.after, actor=actor.label, event=event.name):
            increment_transition(event.name, self.source, "conflict")
            raise ConcurrentModification(str(purchase_id), current.status)

        increment_transition(event.name, self.source, "applied")
        logger.info(
            "purchase=%s %s -> %s event=%s actor=%s",
            purchase_id,
            current.status,
            transition.after.status,
            event.name,
            actor.label,
        )
        return TransitionResult(transition.after, current.status, event.name, transition.effects)

    def open_dispute(self, purchase_id: UUID, actor: Actor, reason: str) -> TransitionResult:
        return self.handle(purchase_id, actor, sm.OpenDispute(reason=reason))

    def begin_processing(self, purchase_id: UUID, actor: Actor) -> TransitionResult:
        return self.handle(purchase_id, actor, sm.BeginProcessing())

    def resolve(self, purchase_id: UUID, actor: Actor, resolution: str, refund: bool) -> TransitionResult:
        return self.handle(purchase_id, actor, sm.ResolveDispute(resolution=resolution, refund=refund))

    def force_confirm(self, purchase_id: UUID, actor: Actor) -> TransitionResult:
        return self.handle(purchase_id, actor, sm.ForceConfirm())

    def record_payment(self, purchase_id: UUID, *, succeeded: bool, cancelled: bool = False) -> TransitionResult:
        if succeeded:
            event = sm.PaymentSucceeded()
        elif cancelled:
            event = sm.PaymentCancelled()
        else:
            event = sm.PaymentFailed()
        return self.handle(purchase_id, SYSTEM_ACTOR, event)
