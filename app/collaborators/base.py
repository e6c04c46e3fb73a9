
# app/collaborators/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional, Protocol

SettlementOutcome = Literal["confirm", "refund"]


@dataclass(frozen=True)
class CollaboratorResult:
    ok: bool
    response: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class PaymentsGateway(Protocol):
    """Fund release / refund. Retries are the gateway's job, not ours."""

    def trigger(self, purchase_id: str, outcome: SettlementOutcome) -> CollaboratorResult: ...


class AssetStorage(Protocol):
    def schedule_deletion(self, product_file_ref: str) -> CollaboratorResult: ...
