"""Object-store lookups shared by the sign-in components.

Lookups return ``None`` when the row is absent; store transport errors
(``SQLAlchemyError``) propagate unchanged.
"""

from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.core.config import get_settings
from portcullis.core.errors import ApplicationNotFound, ProviderNotFound
from portcullis.models.application import Application, ApplicationProvider
from portcullis.models.organization import Organization
from portcullis.models.provider import Provider
from portcullis.models.user import User


async def get_application(
    db: AsyncSession, *, name: str | None = None, client_id: str | None = None
) -> Application:
    """Fetch by client id when given, else by name. Raises ApplicationNotFound."""
    if client_id:
        query = select(Application).where(Application.client_id == client_id)
        label = client_id
    else:
        query = select(Application).where(Application.name == (name or ""))
        label = name
    application = (await db.execute(query)).scalar_one_or_none()
    if application is None:
        raise ApplicationNotFound(f"The application: {label} does not exist")
    return application


async def get_organization(db: AsyncSession, name: str) -> Organization | None:
    result = await db.execute(select(Organization).where(Organization.name == name))
    return result.scalar_one_or_none()


async def get_provider(db: AsyncSession, name: str) -> Provider:
    provider = (
        await db.execute(select(Provider).where(Provider.name == name))
    ).scalar_one_or_none()
    if provider is None:
        raise ProviderNotFound(f"The provider: {name} does not exist")
    return provider


async def get_provider_item(
    db: AsyncSession, application: Application, provider_name: str
) -> ApplicationProvider | None:
    result = await db.execute(
        select(ApplicationProvider).where(
            ApplicationProvider.application_id == application.id,
            ApplicationProvider.provider_name == provider_name,
        )
    )
    return result.scalar_one_or_none()


async def get_provider_items(
    db: AsyncSession, application: Application, category: str | None = None
) -> list[tuple[ApplicationProvider, Provider]]:
    """Provider items of *application* in display order, joined with their provider."""
    query = (
        select(ApplicationProvider, Provider)
        .join(Provider, Provider.name == ApplicationProvider.provider_name)
        .where(ApplicationProvider.application_id == application.id)
        .order_by(ApplicationProvider.position)
    )
    if category:
        query = query.where(Provider.category == category)
    result = await db.execute(query)
    return [(item, provider) for item, provider in result.all()]


async def get_user(db: AsyncSession, organization: str, name: str) -> User | None:
    result = await db.execute(
        select(User).where(User.organization == organization, User.name == name)
    )
    return result.scalar_one_or_none()


async def get_user_by_field(
    db: AsyncSession, organization: str, field: str, value: str
) -> User | None:
    column = getattr(User, field)
    result = await db.execute(
        select(User)
        .where(User.organization == organization, column == value, User.is_deleted.is_(False))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_user_by_fields(db: AsyncSession, organization: str, value: str) -> User | None:
    """Match *value* against name, email, phone or id, in that order of preference."""
    if not value:
        return None
    user = await get_user(db, organization, value)
    if user is not None:
        return user
    result = await db.execute(
        select(User)
        .where(
            User.organization == organization,
            or_(User.email == value, User.phone == value, User.id == value),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_users(db: AsyncSession, organization: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(User).where(User.organization == organization)
    )
    return result.scalar_one()


async def failed_signin_policy(db: AsyncSession, organization: str) -> tuple[int, int]:
    """Return ``(limit, frozen_minutes)`` for *organization*, falling back to settings."""
    settings = get_settings()
    org = await get_organization(db, organization)
    limit = settings.failed_signin_limit
    frozen = settings.failed_signin_frozen_minutes
    if org is not None:
        if org.failed_signin_limit:
            limit = org.failed_signin_limit
        if org.failed_signin_frozen_minutes:
            frozen = org.failed_signin_frozen_minutes
    return limit, frozen
