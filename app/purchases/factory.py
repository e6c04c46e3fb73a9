# app/purchases/factory.py
from __future__ import annotations

from app.collaborators.factory import get_asset_storage, get_payments_gateway
from app.purchases.effects import EffectDispatcher
from app.purchases.store import InMemoryPurchaseStore, PurchaseStore
from settings import settings


def build_store() -> PurchaseStore:
    kind = (settings.PURCHASE_STORE or "postgres").strip().lower()
    if kind == "memory":
        return InMemoryPurchaseStore()
    if kind == "postgres":
        from app.purchases.repository import PostgresPurchaseStore
        return PostgresPurchaseStore()
    raise RuntimeError(f"Unknown PURCHASE_STORE: {kind}")


def build_dispatcher() -> EffectDispatcher:
    return EffectDispatcher(
        get_payments_gateway(),
        get_asset_storage(),
        max_workers=settings.EFFECT_WORKERS,
    )
