# app/collaborators/payments.py
from __future__ import annotations

from app.collaborators.base import CollaboratorResult, SettlementOutcome
from app.collaborators.http import HttpClient, error_text


class HttpPaymentsGateway:
    """
    Settlement calls to the payment collaborator. The idempotency key makes
    a duplicate dispatch for the same purchase/outcome harmless upstream.
    """

    def __init__(self, *, base_url: str, api_key: str, http: HttpClient):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http = http

    def trigger(self, purchase_id: str, outcome: SettlementOutcome) -> CollaboratorResult:
        if outcome not in ("confirm", "refund"):
            raise ValueError(f"Unknown settlement outcome: {outcome}")
        resp = self.http.post(
            f"{self.base_url}/v1/settlements",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Idempotency-Key": f"{purchase_id}:{outcome}",
            },
            json_body={"purchase_id": str(purchase_id), "outcome": outcome},
        )
        if resp.ok:
            return CollaboratorResult(ok=True, response={"http_status": resp.status_code, **(resp.json or {})})
        return CollaboratorResult(ok=False, response={"http_status": resp.status_code}, error=error_text(resp))
