"""Map a federated identity onto a local account, provisioning one on first sign-up."""

from __future__ import annotations

import secrets

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.core.errors import AlreadyLinkedElsewhere, ProvisioningFailed, SignUpNotAllowed
from portcullis.core.logging import get_logger
from portcullis.idp.base import UserInfo
from portcullis.models.application import Application, ApplicationProvider
from portcullis.models.identity import UserIdentity
from portcullis.models.organization import Organization
from portcullis.models.provider import Provider
from portcullis.models.user import USER_TYPE_NORMAL, User, generate_user_id
from portcullis.signin.identity import capability_for
from portcullis.signin.store import count_users, get_user, get_user_by_field, get_user_by_fields

logger = get_logger(__name__)


class AccountResolver:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_linked(self, provider_type: str, external_id: str) -> User | None:
        result = await self.db.execute(
            select(User)
            .join(UserIdentity, UserIdentity.user_id == User.id)
            .where(
                UserIdentity.provider_type == provider_type,
                UserIdentity.external_id == external_id,
                User.is_deleted.is_(False),
            )
        )
        return result.scalar_one_or_none()

    async def resolve(
        self, application: Application, provider: Provider, info: UserInfo
    ) -> User | None:
        """Existing link, then subject lookup (assertion protocols), then email, then phone."""
        user = await self.find_linked(provider.type, info.id)
        if user is not None:
            return user

        organization = application.organization
        if capability_for(provider.category).lookup_by_subject:
            user = await get_user_by_fields(self.db, organization, info.id)
            if user is not None and not user.is_deleted:
                return user

        if application.enable_link_with_email:
            if info.email:
                user = await get_user_by_field(self.db, organization, "email", info.email)
                if user is not None:
                    return user
            if info.phone:
                user = await get_user_by_field(self.db, organization, "phone", info.phone)
                if user is not None:
                    return user
        return None

    async def _available_username(self, organization: str, desired: str) -> str:
        base = desired or generate_user_id()
        candidate = base
        while await get_user(self.db, organization, candidate) is not None:
            candidate = f"{base}_{secrets.token_hex(2)}"
        return candidate

    async def provision(
        self,
        application: Application,
        organization: Organization | None,
        item: ApplicationProvider | None,
        provider: Provider,
        info: UserInfo,
    ) -> User:
        if not application.enable_signup:
            raise SignUpNotAllowed("The application does not allow to sign up new account")
        if item is None or not item.can_signup:
            raise SignUpNotAllowed(
                f"The account for provider: {provider.type} and username: {info.username} "
                f"does not exist and is not allowed to sign up as new account via {provider.type}"
            )

        org_name = application.organization
        username = await self._available_username(org_name, info.username or info.id)
        user_id = info.id
        if not user_id or await self.db.get(User, user_id) is not None:
            user_id = generate_user_id()
        count = await count_users(self.db, org_name)

        user = User(
            id=user_id,
            organization=org_name,
            name=username,
            display_name=info.display_name or None,
            email=info.email or None,
            phone=info.phone or None,
            country_code=info.country_code or None,
            avatar=info.avatar_url or None,
            type=USER_TYPE_NORMAL,
            score=organization.init_score if organization is not None else 0,
            groups=[],
            properties={"no": str(count + 1)},
            signup_application=application.name,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(user)
                await self.db.flush()
        except IntegrityError as exc:
            logger.warning("User provisioning rejected by store", user=f"{org_name}/{username}")
            raise ProvisioningFailed() from exc

        if item.signup_group:
            user.groups = [*user.groups, item.signup_group]
            await self.db.flush()

        logger.info("Provisioned user", user=user.key, provider=provider.name)
        return user

    async def sync_profile(self, user: User, provider_type: str, info: UserInfo) -> None:
        """Copy provider profile fields onto *user*; local values are never blanked."""
        properties = dict(user.properties or {})
        prefix = f"oauth_{provider_type}_"
        for key, value in (
            ("id", info.id),
            ("username", info.username),
            ("displayName", info.display_name),
            ("email", info.email),
            ("avatarUrl", info.avatar_url),
        ):
            if value:
                properties[prefix + key] = value
        user.properties = properties

        if not user.display_name and info.display_name:
            user.display_name = info.display_name
        if not user.avatar and info.avatar_url:
            user.avatar = info.avatar_url
        if not user.email and info.email:
            user.email = info.email
        if not user.phone and info.phone:
            user.phone = info.phone
        if not user.country_code and info.country_code:
            user.country_code = info.country_code
        await self.db.flush()

    async def link_identity(self, user: User, provider_type: str, info: UserInfo) -> bool:
        """Link ``(provider_type, info.id)`` to *user*. Returns False when already linked to it."""
        result = await self.db.execute(
            select(UserIdentity).where(
                UserIdentity.provider_type == provider_type,
                UserIdentity.external_id == info.id,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            if existing.user_id == user.id:
                return False
            owner = await self.db.get(User, existing.user_id)
            if owner is not None and not owner.is_deleted:
                raise AlreadyLinkedElsewhere(
                    f"The account for provider: {provider_type} and username: {info.username} "
                    f"is already linked to another account: {owner.key}"
                )
            await self.db.delete(existing)
            await self.db.flush()

        try:
            async with self.db.begin_nested():
                self.db.add(
                    UserIdentity(
                        user_id=user.id,
                        provider_type=provider_type,
                        external_id=info.id,
                        username=info.username or None,
                    )
                )
                await self.db.flush()
        except IntegrityError as exc:
            raise AlreadyLinkedElsewhere() from exc

        logger.info("Linked identity", user=user.key, provider_type=provider_type)
        return True
