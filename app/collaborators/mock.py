# app/collaborators/mock.py
from __future__ import annotations

import threading

from app.collaborators.base import CollaboratorResult


class RecordingPayments:
    """
    Sandbox/test payments collaborator. Records every call.
    """

    def __init__(self, *, succeed: bool = True):
        self.succeed = succeed
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def trigger(self, purchase_id: str, outcome: str) -> CollaboratorResult:
        with self._lock:
            self.calls.append((str(purchase_id), outcome))
        if self.succeed:
            return CollaboratorResult(ok=True, response={"http_status": 200, "mock": True})
        return CollaboratorResult(ok=False, response={"http_status": 503, "mock": True}, error="Payments unavailable")


class RecordingStorage:
    def __init__(self, *, succeed: bool = True):
        self.succeed = succeed
        self.deleted: list[str] = []
        self._lock = threading.Lock()

    def schedule_deletion(self, product_file_ref: str) -> CollaboratorResult:
        with self._lock:
            self.deleted.append(product_file_ref)
        if self.succeed:
            return CollaboratorResult(ok=True, response={"mock": True})
        return CollaboratorResult(ok=False, response={"mock": True}, error="Storage unavailable")
