# app/collaborators/factory.py
from __future__ import annotations

from typing import Any, Dict

from settings import settings

_CACHE: Dict[str, Any] = {}


def collaborator_mode() -> str:
    return (settings.COLLABORATOR_MODE or "sandbox").strip().lower()


def _http():
    if "http" not in _CACHE:
        from app.collaborators.http import HttpClient
        _CACHE["http"] = HttpClient(timeout_s=settings.COLLABORATOR_HTTP_TIMEOUT_S)
    return _CACHE["http"]


def get_payments_gateway():
    if "payments" in _CACHE:
        return _CACHE["payments"]

    if collaborator_mode() == "real":
        from app.collaborators.payments import HttpPaymentsGateway
        gateway = HttpPaymentsGateway(
            base_url=settings.PAYMENTS_BASE_URL,
            api_key=settings.PAYMENTS_API_KEY,
            http=_http(),
        )
    else:
        from app.collaborators.mock import RecordingPayments
        gateway = RecordingPayments()

    _CACHE["payments"] = gateway
    return gateway


def get_asset_storage():
    if "storage" in _CACHE:
        return _CACHE["storage"]

    if collaborator_mode() == "real":
        from app.collaborators.storage import HttpAssetStorage
        storage = HttpAssetStorage(
            base_url=settings.STORAGE_BASE_URL,
            api_key=settings.STORAGE_API_KEY,
            http=_http(),
        )
    else:
        from app.collaborators.mock import RecordingStorage
        storage = RecordingStorage()

    _CACHE["storage"] = storage
    return storage


def reset_cache() -> None:
    http = _CACHE.pop("http", None)
    if http is not None:
        http.close()
    _CACHE.clear()
