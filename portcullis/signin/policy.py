"""Authorization overlay applied after the principal is identified."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.core.config import get_settings
from portcullis.core.errors import SubscriptionRequired, TagNotAllowed, UserForbidden
from portcullis.core.logging import get_logger
from portcullis.models.application import Application
from portcullis.models.subscription import (
    SUB_STATE_ACTIVE,
    SUB_STATE_PENDING,
    Pricing,
    Subscription,
)
from portcullis.models.user import User
from portcullis.signin.outcomes import SelectPlan

logger = get_logger(__name__)


class PolicyGate:
    """Tag gate, forbidden gate and paid-tier subscription gate, in that order.

    The first two raise. The subscription gate may instead return a
    ``SelectPlan`` outcome that halts the attempt without an error.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    def check_access(self, application: Application, user: User) -> None:
        tags = application.tags or []
        exempt = user.is_admin or user.organization == get_settings().admin_organization
        if tags and not exempt and user.tag not in tags:
            raise TagNotAllowed(
                f"User's tag: {user.tag or ''} is not listed in the application's tags"
            )
        if user.is_forbidden:
            logger.info("Forbidden user refused", user=user.key)
            raise UserForbidden()

    async def default_pricing(self, application: Application) -> Pricing | None:
        result = await self.db.execute(
            select(Pricing)
            .where(Pricing.application == application.name, Pricing.is_enabled.is_(True))
            .order_by(Pricing.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def check_subscription(self, application: Application, user: User) -> SelectPlan | None:
        if not user.is_paid:
            return None

        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.organization == user.organization, Subscription.user == user.name)
            .order_by(Subscription.created_at.desc())
        )
        subscriptions = list(result.scalars())
        if any(sub.state == SUB_STATE_ACTIVE for sub in subscriptions):
            return None

        pending = next((sub for sub in subscriptions if sub.state == SUB_STATE_PENDING), None)
        if pending is not None:
            return SelectPlan(subscription=pending.to_public())

        pricing = await self.default_pricing(application)
        if pricing is None:
            raise SubscriptionRequired(
                f"The paid-user {user.key} does not have an active or pending subscription "
                f"and the application: {application.name} does not have a default pricing"
            )
        return SelectPlan(pricing=pricing.to_public())

    async def evaluate(self, application: Application, user: User) -> SelectPlan | None:
        self.check_access(application, user)
        return await self.check_subscription(application, user)
