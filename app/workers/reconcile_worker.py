
# app/workers/reconcile_worker.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from app.purchases import state_machine as sm
from app.purchases.effects import EffectDispatcher
from app.purchases.errors import ConcurrentModification, InvalidTransition, NotFound, SideEffectFailure
from app.purchases.service import SYSTEM_ACTOR, TransitionHandler, TransitionResult
from app.purchases.store import PurchaseStore
from services.metrics import record_reconcile_cycle

logger = logging.getLogger("vibing.reconcile")

DEFAULT_INTERVAL_SECONDS = 3600
DEFAULT_BATCH_SIZE = 500

SUMMARY_KEYS = (
    "auto_confirm_candidates",
    "escalation_candidates",
    "auto_confirmed",
    "escalated",
    "skipped",
    "conflicts",
    "errors",
    "side_effect_failures",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _process_candidate(
    handler: TransitionHandler,
    purchase_id,
    event,
    applied_key: str,
    run_at: datetime,
    summary: dict[str, int],
    items: list[dict[str, Any]],
) -> Optional[TransitionResult]:
    # The query result may be stale: handle() re-reads and re-runs the guard.
    try:
        result = handler.handle(purchase_id, SYSTEM_ACTOR, event, now=run_at)
    except (InvalidTransition, NotFound) as exc:
        summary["skipped"] += 1
        logger.warning("purchase=%s skipped %s: %s", purchase_id, event.name, exc)
        items.append({"category": "skipped", "purchase_id": str(purchase_id), "event": event.name, "reason": str(exc)})
        return None
    except ConcurrentModification as exc:
        summary["conflicts"] += 1
        logger.warning("purchase=%s lost race on %s: %s", purchase_id, event.name, exc)
        items.append({"category": "conflict", "purchase_id": str(purchase_id), "event": event.name})
        return None
    except Exception as exc:
        summary["errors"] += 1
        logger.exception("purchase=%s %s failed", purchase_id, event.name)
        items.append(
            {"category": "error", "purchase_id": str(purchase_id), "event": event.name, "error": type(exc).__name__}
        )
        return None

    summary[applied_key] += 1
    items.append(
        {
            "category": applied_key,
            "purchase_id": str(purchase_id),
            "order_id": result.purchase.order_id,
            "from_status": result.previous_status,
            "to_status": result.purchase.status,
        }
    )
    logger.info(
        "purchase=%s order=%s %s -> %s",
        purchase_id,
        result.purchase.order_id,
        result.previous_status,
        result.purchase.status,
    )
    return result


def _effect_failures(result: TransitionResult, exc: Exception) -> list[SideEffectFailure]:
    return [
        SideEffectFailure(str(result.purchase.id), effect.value, f"{type(exc).__name__}: {exc}")
        for effect in result.effects
    ]


def _collect_effects(
    dispatcher: EffectDispatcher,
    applied: list[TransitionResult],
    summary: dict[str, int],
    items: list[dict[str, Any]],
) -> None:
    """
    Fan the owed effects out on the dispatcher's pool and wait for all of them.

    Every status write of the sweep is already durable at this point, so a
    slow collaborator delays the report, never another candidate's transition.
    """
    pending: list[tuple[TransitionResult, Optional[Future], Optional[Exception]]] = []
    for result in applied:
        if not result.effects:
            continue
        try:
            pending.append((result, dispatcher.submit(result.purchase, result.effects), None))
        except RuntimeError as exc:
            # executor already shut down
            logger.error("purchase=%s effects not dispatched: %s", result.purchase.id, exc)
            pending.append((result, None, exc))

    for result, future, submit_error in pending:
        if future is None:
            failures = _effect_failures(result, submit_error)
        else:
            try:
                failures = future.result()
            except Exception as exc:
                logger.exception("purchase=%s effect dispatch crashed", result.purchase.id)
                failures = _effect_failures(result, exc)
        for failure in failures:
            summary["side_effect_failures"] += 1
            items.append({"category": "side_effect_failure", **failure.as_dict()})


def sweep(
    store: PurchaseStore,
    dispatcher: EffectDispatcher,
    *,
    now: Optional[datetime] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    persist: bool = True,
) -> dict[str, Any]:
    """
    One reconciliation pass: auto-confirm due purchases, escalate overdue disputes.

    All transitions are written first; their side effects then run
    concurrently. A failure on one candidate never aborts the rest of the batch.
    """
    run_at = now or _now()
    handler = TransitionHandler(store, clock=lambda: run_at, source="reconcile")
    summary = {k: 0 for k in SUMMARY_KEYS}
    items: list[dict[str, Any]] = []
    applied: list[TransitionResult] = []

    passes = (
        (store.list_due_auto_confirm, sm.AutoConfirmDue(), "auto_confirm_candidates", "auto_confirmed"),
        (store.list_due_escalations, sm.EscalationDue(), "escalation_candidates", "escalated"),
    )
    for query, event, found_key, applied_key in passes:
        try:
            candidates = query(run_at, batch_size)
        except Exception:
            summary["errors"] += 1
            logger.exception("candidate query for %s failed", event.name)
            continue

        summary[found_key] = len(candidates)
        for candidate in candidates:
            result = _process_candidate(handler, candidate.id, event, applied_key, run_at, summary, items)
            if result is not None:
                applied.append(result)

    _collect_effects(dispatcher, applied, summary, items)

    report: dict[str, Any] = {"run_at": run_at.isoformat(), **summary, "items": items}
    if persist:
        try:
            report["id"] = store.save_sweep_report(report)
        except Exception:
            logger.exception("failed to persist reconcile report")

    record_reconcile_cycle(summary)
    logger.info(
        "Reconcile sweep %s | auto_confirmed=%s escalated=%s skipped=%s conflicts=%s errors=%s side_effect_failures=%s",
        report.get("id"),
        summary["auto_confirmed"],
        summary["escalated"],
        summary["skipped"],
        summary["conflicts"],
        summary["errors"],
        summary["side_effect_failures"],
    )
    return report


class ReconcileWorker:
    """
    Runs sweep() once at start, then every `interval_seconds` on its own thread.

    stop() lets an in-flight sweep finish before the thread exits. All
    scheduling state lives in the purchase records, so a restart loses nothing.
    """

    def __init__(
        self,
        store: PurchaseStore,
        dispatcher: EffectDispatcher,
        *,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = _now,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.interval_seconds = max(1, int(interval_seconds))
        self.batch_size = batch_size
        self.clock = clock
        self.cycles = 0
        self.last_report: Optional[dict[str, Any]] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> dict[str, Any]:
        report = sweep(self.store, self.dispatcher, now=self.clock(), batch_size=self.batch_size)
        self.cycles += 1
        self.last_report = report
        return report

    def run_forever(self) -> None:
        logger.info("Reconcile worker started; interval=%ss", self.interval_seconds)
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Reconcile sweep failed")
            if self._stop.wait(self.interval_seconds):
                break
        logger.info("Reconcile worker stopped after %s cycles", self.cycles)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="reconcile-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is None:
            return
        thread.join(timeout)
        # a timed-out join leaves the sweep running; keep tracking it
        if not thread.is_alive():
            self._thread = None
