


# app/purchases/state_machine.py
"""
Purchase lifecycle state machine.

Pure decision logic: every transition takes (snapshot, event, now) and returns a
new snapshot plus the side effects the caller owes once the snapshot is durably
written. Nothing here touches the database or the network, so the request path
and the reconciliation sweep share exactly the same guards.

Deadlines are computed once, when the preceding state is entered, and stored as
absolute timestamps. A re-evaluated timer whose transition already happened is
rejected by the status guard, which is what makes the sweep idempotent.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, ClassVar, Optional

from app.purchases.errors import InvalidTransition
from app.purchases.model import Purchase

PENDING = "pending"
FAILED = "failed"
CANCELLED = "cancelled"
COMPLETED = "completed"
DISPUTE_REQUESTED = "dispute_requested"
DISPUTE_PROCESSING = "dispute_processing"
CONFIRMED = "confirmed"
REFUNDED = "refunded"

STATUSES = (PENDING, FAILED, CANCELLED, COMPLETED, DISPUTE_REQUESTED, DISPUTE_PROCESSING, CONFIRMED, REFUNDED)
TERMINAL_STATUSES = frozenset({FAILED, CANCELLED, CONFIRMED, REFUNDED})
OPEN_DISPUTE_STATUSES = (DISPUTE_REQUESTED, DISPUTE_PROCESSING)
# payment taken and not given back
PAID_STATUSES = (COMPLETED, DISPUTE_REQUESTED, DISPUTE_PROCESSING, CONFIRMED)

ALLOWED = {
    PENDING: {COMPLETED, FAILED, CANCELLED},
    COMPLETED: {CONFIRMED, DISPUTE_REQUESTED},
    DISPUTE_REQUESTED: {DISPUTE_PROCESSING, CONFIRMED, REFUNDED},
    DISPUTE_PROCESSING: {CONFIRMED, REFUNDED},
    CONFIRMED: set(),
    REFUNDED: set(),
    FAILED: set(),
    CANCELLED: set(),
}

AUTO_CONFIRM_WINDOW = timedelta(days=7)
ESCALATION_WINDOW = timedelta(days=3)

DISPUTE_REASON_MIN, DISPUTE_REASON_MAX = 10, 500
RESOLUTION_MIN, RESOLUTION_MAX = 10, 1000

DISPLAY_STATUS = {
    PENDING: "Payment pending",
    FAILED: "Payment failed",
    CANCELLED: "Cancelled",
    COMPLETED: "Purchased",
    DISPUTE_REQUESTED: "Dispute requested",
    DISPUTE_PROCESSING: "Under platform review",
    CONFIRMED: "Purchase confirmed",
    REFUNDED: "Refunded",
}


class Effect(str, Enum):
    RELEASE_FUNDS = "release_funds"
    REFUND = "refund"
    DELETE_ASSET = "delete_asset"


# ----------------------------------------------------------
# Events
# ----------------------------------------------------------

@dataclass(frozen=True)
class PaymentSucceeded:
    name: ClassVar[str] = "payment_succeeded"


@dataclass(frozen=True)
class PaymentFailed:
    name: ClassVar[str] = "payment_failed"


@dataclass(frozen=True)
class PaymentCancelled:
    name: ClassVar[str] = "payment_cancelled"


@dataclass(frozen=True)
class AutoConfirmDue:
    name: ClassVar[str] = "auto_confirm_due"


@dataclass(frozen=True)
class ForceConfirm:
    name: ClassVar[str] = "force_confirm"


@dataclass(frozen=True)
class OpenDispute:
    reason: str
    name: ClassVar[str] = "open_dispute"


@dataclass(frozen=True)
class EscalationDue:
    name: ClassVar[str] = "escalation_due"


@dataclass(frozen=True)
class BeginProcessing:
    name: ClassVar[str] = "begin_processing"


@dataclass(frozen=True)
class ResolveDispute:
    resolution: str
    refund: bool
    name: ClassVar[str] = "resolve_dispute"


BUYER_EVENTS = (OpenDispute,)
ADMIN_EVENTS = (BeginProcessing, ResolveDispute, ForceConfirm)
SYSTEM_EVENTS = (PaymentSucceeded, PaymentFailed, PaymentCancelled, AutoConfirmDue, EscalationDue)


@dataclass(frozen=True)
class Transition:
    before: Purchase
    after: Purchase
    event: str
    effects: tuple[Effect, ...] = ()


# ----------------------------------------------------------
# Guards
# ----------------------------------------------------------

def _aware(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def assert_transition(old: str, new: str) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"{old}->{new}", old, sorted(k for k, v in ALLOWED.items() if new in v))


def _require_status(p: Purchase, event: str, *expected: str) -> None:
    if p.status not in expected:
        raise InvalidTransition(event, p.status, expected, purchase_id=str(p.id))


def _reject(p: Purchase, event: str, expected: tuple[str, ...], reason: str):
    raise InvalidTransition(event, p.status, expected, reason=reason, purchase_id=str(p.id))


def _validate_text(value: str, field: str, lo: int, hi: int) -> str:
    text = (value or "").strip()
    if not (lo <= len(text) <= hi):
        raise ValueError(f"{field} must be between {lo} and {hi} characters")
    return text


def can_request_dispute(p: Purchase, now: datetime) -> bool:
    now = _aware(now)
    return (
        p.status == COMPLETED
        and p.dispute_requested_at is None
        and p.auto_confirm_at is not None
        and now < p.auto_confirm_at
    )


def should_auto_confirm(p: Purchase, now: datetime) -> bool:
    now = _aware(now)
    return (
        p.status == COMPLETED
        and p.dispute_requested_at is None
        and p.auto_confirm_at is not None
        and now >= p.auto_confirm_at
    )


def should_platform_intervene(p: Purchase, now: datetime) -> bool:
    now = _aware(now)
    return (
        p.status == DISPUTE_REQUESTED
        and p.platform_intervention_at is not None
        and now >= p.platform_intervention_at
    )


def days_until_auto_confirm(p: Purchase, now: datetime) -> Optional[int]:
    if p.status != COMPLETED or p.auto_confirm_at is None:
        return None
    remaining = p.auto_confirm_at - _aware(now)
    return max(0, remaining.days)


def display_status(p: Purchase) -> str:
    return DISPLAY_STATUS.get(p.status, p.status)


def can_download(p: Purchase) -> bool:
    if p.status != COMPLETED:
        return False
    if p.max_downloads > 0 and p.download_count >= p.max_downloads:
        return False
    return True


# ----------------------------------------------------------
# Transitions
# ----------------------------------------------------------

def _payment_succeeded(p: Purchase, ev: PaymentSucceeded, now: datetime) -> Transition:
    _require_status(p, ev.name, PENDING)
    after = replace(p, status=COMPLETED, auto_confirm_at=now + AUTO_CONFIRM_WINDOW, updated_at=now)
    return Transition(p, after, ev.name)


def _payment_closed(target: str) -> Callable[[Purchase, object, datetime], Transition]:
    def _apply(p: Purchase, ev, now: datetime) -> Transition:
        _require_status(p, ev.name, PENDING)
        after = replace(
            p,
            status=target,
            auto_confirm_at=None,
            platform_intervention_at=None,
            updated_at=now,
        )
        return Transition(p, after, ev.name)

    return _apply


def _auto_confirm_due(p: Purchase, ev: AutoConfirmDue, now: datetime) -> Transition:
    _require_status(p, ev.name, COMPLETED)
    if p.dispute_requested_at is not None:
        _reject(p, ev.name, (COMPLETED,), "dispute already requested")
    if not should_auto_confirm(p, now):
        _reject(p, ev.name, (COMPLETED,), "auto-confirm not yet due")
    after = replace(p, status=CONFIRMED, updated_at=now)
    return Transition(p, after, ev.name, (Effect.RELEASE_FUNDS, Effect.DELETE_ASSET))


def _force_confirm(p: Purchase, ev: ForceConfirm, now: datetime) -> Transition:
    _require_status(p, ev.name, COMPLETED)
    if p.dispute_requested_at is not None:
        _reject(p, ev.name, (COMPLETED,), "dispute already requested")
    after = replace(p, status=CONFIRMED, updated_at=now)
    return Transition(p, after, ev.name, (Effect.RELEASE_FUNDS, Effect.DELETE_ASSET))


def _open_dispute(p: Purchase, ev: OpenDispute, now: datetime) -> Transition:
    reason = _validate_text(ev.reason, "reason", DISPUTE_REASON_MIN, DISPUTE_REASON_MAX)
    _require_status(p, ev.name, COMPLETED)
    if p.dispute_requested_at is not None:
        _reject(p, ev.name, (COMPLETED,), "dispute already requested")
    if not can_request_dispute(p, now):
        _reject(p, ev.name, (COMPLETED,), "dispute window closed")
    after = replace(
        p,
        status=DISPUTE_REQUESTED,
        auto_confirm_at=None,
        dispute_reason=reason,
        dispute_requested_at=now,
        platform_intervention_at=now + ESCALATION_WINDOW,
        updated_at=now,
    )
    return Transition(p, after, ev.name)


def _escalation_due(p: Purchase, ev: EscalationDue, now: datetime) -> Transition:
    _require_status(p, ev.name, DISPUTE_REQUESTED)
    if not should_platform_intervene(p, now):
        _reject(p, ev.name, (DISPUTE_REQUESTED,), "platform intervention not yet due")
    return Transition(p, replace(p, status=DISPUTE_PROCESSING, updated_at=now), ev.name)


def _begin_processing(p: Purchase, ev: BeginProcessing, now: datetime) -> Transition:
    _require_status(p, ev.name, DISPUTE_REQUESTED)
    return Transition(p, replace(p, status=DISPUTE_PROCESSING, updated_at=now), ev.name)


def _resolve_dispute(p: Purchase, ev: ResolveDispute, now: datetime) -> Transition:
    resolution = _validate_text(ev.resolution, "resolution", RESOLUTION_MIN, RESOLUTION_MAX)
    _require_status(p, ev.name, *OPEN_DISPUTE_STATUSES)
    after = replace(
        p,
        status=REFUNDED if ev.refund else CONFIRMED,
        dispute_resolved_at=now,
        dispute_notes=resolution,
        updated_at=now,
    )
    effects = (Effect.REFUND,) if ev.refund else (Effect.DELETE_ASSET,)
    return Transition(p, after, ev.name, effects)


_HANDLERS: dict[type, Callable] = {
    PaymentSucceeded: _payment_succeeded,
    PaymentFailed: _payment_closed(FAILED),
    PaymentCancelled: _payment_closed(CANCELLED),
    AutoConfirmDue: _auto_confirm_due,
    ForceConfirm: _force_confirm,
    OpenDispute: _open_dispute,
    EscalationDue: _escalation_due,
    BeginProcessing: _begin_processing,
    ResolveDispute: _resolve_dispute,
}


def apply(purchase: Purchase, event, now: datetime) -> Transition:
    """
    Validate `event` against `purchase` at `now`.

    Returns the resulting Transition or raises InvalidTransition. The input
    snapshot is never modified, and every status change stays on the ALLOWED
    graph.
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown purchase event: {event!r}")
    transition = handler(purchase, event, _aware(now))
    if transition.after.status != purchase.status:
        assert_transition(purchase.status, transition.after.status)
    return transition


# ----------------------------------------------------------
# Invariants
# ----------------------------------------------------------

def check_invariants(p: Purchase) -> list[str]:
    problems: list[str] = []

    if p.status not in STATUSES:
        return [f"unknown status {p.status!r}"]

    if p.auto_confirm_at is not None and p.dispute_requested_at is not None:
        problems.append("auto_confirm_at set while a dispute exists")

    if p.status in (PENDING, FAILED, CANCELLED):
        if p.auto_confirm_at is not None or p.platform_intervention_at is not None:
            problems.append(f"{p.status} holds a live timer")
        if p.dispute_requested_at is not None:
            problems.append(f"{p.status} has dispute_requested_at")

    if p.status == COMPLETED and p.auto_confirm_at is None:
        problems.append("completed without auto_confirm_at")

    if p.status in OPEN_DISPUTE_STATUSES:
        if p.dispute_requested_at is None or p.platform_intervention_at is None:
            problems.append(f"{p.status} missing dispute timestamps")
        if p.dispute_resolved_at is not None:
            problems.append(f"{p.status} already resolved")

    if p.status == REFUNDED and (p.dispute_requested_at is None or p.dispute_resolved_at is None):
        problems.append("refunded without a resolved dispute")

    if p.status == CONFIRMED:
        auto = p.auto_confirm_at is not None and p.dispute_requested_at is None
        resolved = p.dispute_requested_at is not None and p.dispute_resolved_at is not None
        if not (auto or resolved):
            problems.append("confirmed without auto-confirm or resolution")

    if p.platform_intervention_at is not None:
        if p.dispute_requested_at is None:
            problems.append("platform_intervention_at without dispute_requested_at")
        elif p.platform_intervention_at < p.dispute_requested_at + ESCALATION_WINDOW:
            problems.append("platform_intervention_at earlier than escalation window")

    return problems
