"""Tests for the tag, forbidden and subscription gates."""

import pytest

from portcullis.core.errors import SubscriptionRequired, TagNotAllowed, UserForbidden
from portcullis.models.subscription import Pricing, Subscription
from portcullis.models.user import USER_TYPE_PAID
from portcullis.signin.outcomes import SelectPlan
from portcullis.signin.policy import PolicyGate


@pytest.mark.asyncio
async def test_tag_gate(db_session, seed):
    gate = PolicyGate(db_session)
    seed.application.tags = ["staff"]
    with pytest.raises(TagNotAllowed):
        gate.check_access(seed.application, seed.alice)

    seed.alice.tag = "staff"
    gate.check_access(seed.application, seed.alice)


@pytest.mark.asyncio
async def test_admin_is_exempt_from_tags(db_session, seed):
    seed.application.tags = ["staff"]
    seed.alice.is_admin = True
    PolicyGate(db_session).check_access(seed.application, seed.alice)


@pytest.mark.asyncio
async def test_forbidden_user(db_session, seed):
    seed.alice.is_forbidden = True
    with pytest.raises(UserForbidden):
        PolicyGate(db_session).check_access(seed.application, seed.alice)


@pytest.mark.asyncio
async def test_normal_user_skips_subscription(db_session, seed):
    assert await PolicyGate(db_session).evaluate(seed.application, seed.alice) is None


@pytest.mark.asyncio
async def test_paid_user_without_pricing(db_session, seed):
    seed.alice.type = USER_TYPE_PAID
    with pytest.raises(SubscriptionRequired):
        await PolicyGate(db_session).check_subscription(seed.application, seed.alice)


@pytest.mark.asyncio
async def test_paid_user_is_offered_default_pricing(db_session, seed):
    seed.alice.type = USER_TYPE_PAID
    db_session.add(
        Pricing(organization="acme", name="pro", application="app-acme", plans=["monthly", "yearly"])
    )
    await db_session.flush()

    outcome = await PolicyGate(db_session).check_subscription(seed.application, seed.alice)
    assert isinstance(outcome, SelectPlan)
    assert outcome.pricing["name"] == "pro"
    assert outcome.pricing["plans"] == ["monthly", "yearly"]
    assert outcome.subscription is None


@pytest.mark.asyncio
async def test_paid_user_with_pending_subscription(db_session, seed):
    seed.alice.type = USER_TYPE_PAID
    db_session.add(Subscription(organization="acme", user="alice", pricing="pro", plan="monthly", state="Pending"))
    await db_session.flush()

    outcome = await PolicyGate(db_session).check_subscription(seed.application, seed.alice)
    assert isinstance(outcome, SelectPlan)
    assert outcome.subscription["state"] == "Pending"
    assert outcome.pricing is None


@pytest.mark.asyncio
async def test_paid_user_with_active_subscription(db_session, seed):
    seed.alice.type = USER_TYPE_PAID
    db_session.add_all(
        [
            Subscription(organization="acme", user="alice", pricing="pro", state="Expired"),
            Subscription(organization="acme", user="alice", pricing="pro", state="Active"),
        ]
    )
    await db_session.flush()
    assert await PolicyGate(db_session).check_subscription(seed.application, seed.alice) is None
