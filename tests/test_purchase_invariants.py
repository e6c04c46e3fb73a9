
# tests/test_purchase_invariants.py

import uuid
from datetime import timedelta

from hypothesis import given, settings, strategies as st

from app.purchases import state_machine as sm
from app.purchases.errors import InvalidTransition
from app.purchases.model import new_purchase
from tests.conftest import T0


_events = st.one_of(
    st.just(sm.PaymentSucceeded()),
    st.just(sm.PaymentFailed()),
    st.just(sm.PaymentCancelled()),
    st.just(sm.AutoConfirmDue()),
    st.just(sm.ForceConfirm()),
    st.just(sm.EscalationDue()),
    st.just(sm.BeginProcessing()),
    st.builds(sm.OpenDispute, reason=st.sampled_from(["Broken download link here", "short", "x" * 600])),
    st.builds(
        sm.ResolveDispute,
        resolution=st.sampled_from(["Refund approved after review", "no"]),
        refund=st.booleans(),
    ),
)

# minutes between consecutive events; up to ~12 days so every timer can fire
_steps = st.lists(st.tuples(st.integers(min_value=0, max_value=17280), _events), max_size=25)


@settings(max_examples=300, deadline=None)
@given(steps=_steps)
def test_random_event_sequences_preserve_invariants(steps):
    p = new_purchase(buyer_id=uuid.uuid4(), product_id=uuid.uuid4(), price_cents=1000, now=T0)
    now = T0
    refunds = 0

    for minutes, event in steps:
        now = now + timedelta(minutes=minutes)
        before = p
        try:
            t = sm.apply(p, event, now)
        except (InvalidTransition, ValueError):
            assert p == before
            continue

        assert t.before == before
        if before.status in sm.TERMINAL_STATUSES:
            raise AssertionError(f"terminal {before.status} accepted {event.name}")
        if t.after.status != before.status:
            sm.assert_transition(before.status, t.after.status)

        p = t.after
        refunds += t.effects.count(sm.Effect.REFUND)
        assert sm.check_invariants(p) == [], (event.name, p)

    assert refunds <= 1
    if refunds:
        assert p.status == sm.REFUNDED
