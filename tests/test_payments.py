from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from photosai.db.models import TX_FAILED, TX_PENDING, TX_SUCCESS, CreditHistory, Subscription, Transaction
from photosai.services.errors import InvalidPaymentMethod, InvalidPlan, NoPendingTransaction
from photosai.services.payments import SettlementService
from photosai.services.plans import PLANS
from photosai.services.razorpay import RazorpayError
from photosai.utils.time import utcnow


@pytest.fixture
def settlement(sessionmaker, razorpay, settings):
    return SettlementService(sessionmaker, razorpay, settings)


async def _transactions(sessionmaker, user_id):
    async with sessionmaker() as session:
        result = await session.execute(select(Transaction).where(Transaction.user_id == user_id))
        return list(result.scalars().all())


async def _subscriptions(sessionmaker, user_id):
    async with sessionmaker() as session:
        result = await session.execute(select(Subscription).where(Subscription.user_id == user_id))
        return list(result.scalars().all())


@pytest.mark.parametrize('plan_key', sorted(PLANS))
async def test_create_order_records_pending_transaction(settlement, sessionmaker, razorpay, make_user, plan_key):
    user = await make_user()
    plan = PLANS[plan_key]

    descriptor = await settlement.create_order(user.id, plan_key, 'razorpay')

    rows = await _transactions(sessionmaker, user.id)
    assert len(rows) == 1
    assert rows[0].status == TX_PENDING
    assert rows[0].amount == plan.price
    assert rows[0].order_id == descriptor['order_id']
    assert rows[0].plan == plan_key
    assert razorpay.created[0]['amount'] == plan.price
    assert razorpay.created[0]['notes'] == {'userId': user.id, 'plan': plan_key}
    assert descriptor['key'] == razorpay.key_id
    assert descriptor['amount'] == plan.price


async def test_create_order_rejects_unknown_plan_and_method(settlement, sessionmaker, razorpay, make_user):
    user = await make_user()
    with pytest.raises(InvalidPlan):
        await settlement.create_order(user.id, 'platinum', 'razorpay')
    with pytest.raises(InvalidPaymentMethod):
        await settlement.create_order(user.id, 'basic', 'stripe')
    assert razorpay.created == []
    assert await _transactions(sessionmaker, user.id) == []


async def test_valid_signature_settles_once(settlement, sessionmaker, razorpay, make_user, balance):
    user = await make_user()
    order = await settlement.create_order(user.id, 'basic', 'razorpay')
    order_id = order['order_id']
    signature = razorpay.sign(order_id, 'pay_1')

    result = await settlement.verify_and_settle(
        user_id=user.id, payment_id='pay_1', order_id=order_id, signature=signature, plan_key='basic'
    )

    assert result.verified
    assert result.credits == 999
    assert result.subscription.plan == 'basic'
    [tx] = await _transactions(sessionmaker, user.id)
    assert tx.status == TX_SUCCESS
    assert tx.payment_id == 'pay_1'

    with pytest.raises(NoPendingTransaction):
        await settlement.verify_and_settle(
            user_id=user.id, payment_id='pay_1', order_id=order_id, signature=signature, plan_key='basic'
        )
    assert await balance(user.id) == 999
    assert len(await _subscriptions(sessionmaker, user.id)) == 1


async def test_tampered_signature_never_grants(settlement, sessionmaker, razorpay, make_user, balance):
    user = await make_user()
    order = await settlement.create_order(user.id, 'premium', 'razorpay')
    order_id = order['order_id']

    result = await settlement.verify_and_settle(
        user_id=user.id, payment_id='pay_1', order_id=order_id, signature='deadbeef', plan_key='premium'
    )
    assert not result.verified
    assert result.subscription is None

    for _ in range(3):
        again = await settlement.verify_and_settle(
            user_id=user.id, payment_id='pay_1', order_id=order_id, signature='deadbeef', plan_key='premium'
        )
        assert not again.verified
        assert again.subscription is None

    [tx] = await _transactions(sessionmaker, user.id)
    assert tx.status == TX_FAILED
    assert await _subscriptions(sessionmaker, user.id) == []
    assert await balance(user.id) == 0


async def test_forged_signature_skips_order_lookup(settlement, sessionmaker, razorpay, make_user):
    user = await make_user()

    async def unreachable(order_id):
        raise RazorpayError('fetch_order_failed', 400)

    razorpay.fetch_order = unreachable

    result = await settlement.verify_and_settle(
        user_id=user.id, payment_id='pay_1', order_id='order_bogus', signature='forged', plan_key='basic'
    )

    assert not result.verified
    assert result.credits == 0
    assert await _subscriptions(sessionmaker, user.id) == []


async def test_order_lookup_failure_does_not_block_valid_settlement(settlement, razorpay, make_user, balance):
    user = await make_user()
    order = await settlement.create_order(user.id, 'basic', 'razorpay')
    order_id = order['order_id']

    async def unreachable(order_id):
        raise RazorpayError('fetch_order_failed', 503)

    razorpay.fetch_order = unreachable

    result = await settlement.verify_and_settle(
        user_id=user.id,
        payment_id='pay_1',
        order_id=order_id,
        signature=razorpay.sign(order_id, 'pay_1'),
        plan_key='basic',
    )

    assert result.verified
    assert await balance(user.id) == 999


async def test_unknown_requested_plan_settles_recorded_plan(settlement, razorpay, make_user, balance):
    user = await make_user()
    order = await settlement.create_order(user.id, 'premium', 'razorpay')
    order_id = order['order_id']

    result = await settlement.verify_and_settle(
        user_id=user.id,
        payment_id='pay_1',
        order_id=order_id,
        signature=razorpay.sign(order_id, 'pay_1'),
        plan_key='platinum',
    )

    assert result.subscription.plan == 'premium'
    assert await balance(user.id) == PLANS['premium'].credits


async def test_verification_uses_recorded_plan(settlement, sessionmaker, razorpay, make_user, balance):
    user = await make_user()
    order = await settlement.create_order(user.id, 'basic', 'razorpay')
    order_id = order['order_id']

    result = await settlement.verify_and_settle(
        user_id=user.id,
        payment_id='pay_9',
        order_id=order_id,
        signature=razorpay.sign(order_id, 'pay_9'),
        plan_key='premium',
    )

    assert result.subscription.plan == 'basic'
    assert await balance(user.id) == PLANS['basic'].credits


async def test_other_users_order_is_not_settled(settlement, razorpay, make_user, balance):
    owner = await make_user()
    intruder = await make_user()
    order = await settlement.create_order(owner.id, 'basic', 'razorpay')
    order_id = order['order_id']

    with pytest.raises(NoPendingTransaction):
        await settlement.verify_and_settle(
            user_id=intruder.id,
            payment_id='pay_1',
            order_id=order_id,
            signature=razorpay.sign(order_id, 'pay_1'),
            plan_key='basic',
        )
    assert await balance(intruder.id) == 0


async def test_failed_grant_rolls_back_status_and_subscription(settlement, sessionmaker, razorpay, make_user, balance):
    user = await make_user()
    order = await settlement.create_order(user.id, 'basic', 'razorpay')
    order_id = order['order_id']
    async with sessionmaker() as session:
        session.add(
            CreditHistory(
                user_id=user.id,
                delta=1,
                reason='conflict',
                meta={},
                idempotency_key=f'order:{order_id}',
                created_at=utcnow(),
            )
        )
        await session.commit()

    with pytest.raises(IntegrityError):
        await settlement.verify_and_settle(
            user_id=user.id,
            payment_id='pay_1',
            order_id=order_id,
            signature=razorpay.sign(order_id, 'pay_1'),
            plan_key='basic',
        )

    [tx] = await _transactions(sessionmaker, user.id)
    assert tx.status == TX_PENDING
    assert tx.payment_id is None
    assert await _subscriptions(sessionmaker, user.id) == []
    assert await balance(user.id) == 0


async def test_expire_order_only_touches_pending(settlement, sessionmaker, make_user):
    user = await make_user()
    await settlement.create_order(user.id, 'basic', 'razorpay')
    [tx] = await _transactions(sessionmaker, user.id)

    assert await settlement.expire_order(tx.id)
    assert not await settlement.expire_order(tx.id)
    [tx] = await _transactions(sessionmaker, user.id)
    assert tx.status == TX_FAILED


async def test_subscription_and_transaction_listing(settlement, razorpay, make_user):
    user = await make_user()
    assert await settlement.current_subscription(user.id) is None
    assert await settlement.get_credits(user.id) == (0, None)

    for plan_key in ('basic', 'premium'):
        order = await settlement.create_order(user.id, plan_key, 'razorpay')
        order_id = order['order_id']
        await settlement.verify_and_settle(
            user_id=user.id,
            payment_id=f'pay_{plan_key}',
            order_id=order_id,
            signature=razorpay.sign(order_id, f'pay_{plan_key}'),
            plan_key=plan_key,
        )

    subscription = await settlement.current_subscription(user.id)
    assert subscription.plan == 'premium'
    credits, updated_at = await settlement.get_credits(user.id)
    assert credits == 999 + 1999
    assert updated_at is not None
    transactions = await settlement.list_transactions(user.id)
    assert [t.plan for t in transactions] == ['premium', 'basic']
    assert all(t.status == TX_SUCCESS for t in transactions)
