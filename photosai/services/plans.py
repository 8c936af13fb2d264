from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from photosai.services.errors import InvalidPlan


@dataclass(frozen=True)
class Plan:
    key: str
    price: int  # minor currency units
    credits: int


PLANS: Dict[str, Plan] = {
    'basic': Plan(key='basic', price=3999, credits=999),
    'premium': Plan(key='premium', price=7999, credits=1999),
}

PAYMENT_METHODS = ('razorpay',)


def get_plan(key: str | None) -> Plan:
    plan = PLANS.get(str(key or '').strip().lower())
    if not plan:
        raise InvalidPlan(f'unknown plan: {key}')
    return plan
