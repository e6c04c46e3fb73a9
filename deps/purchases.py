
# deps/purchases.py
from fastapi import Request

from app.purchases.effects import EffectDispatcher
from app.purchases.service import TransitionHandler
from app.purchases.store import PurchaseStore


def get_store(request: Request) -> PurchaseStore:
    return request.app.state.purchase_store


def get_dispatcher(request: Request) -> EffectDispatcher:
    return request.app.state.effect_dispatcher


def get_handler(request: Request) -> TransitionHandler:
    return TransitionHandler(request.app.state.purchase_store, clock=request.app.state.clock)
