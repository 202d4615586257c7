"""Tests for account resolution, provisioning and identity linking."""

import pytest
from sqlalchemy import select

from portcullis.core.errors import AlreadyLinkedElsewhere, SignUpNotAllowed
from portcullis.idp.base import UserInfo
from portcullis.models.application import ApplicationProvider
from portcullis.models.identity import UserIdentity
from portcullis.models.user import User
from portcullis.signin.accounts import AccountResolver


async def _item(db, provider_name):
    result = await db.execute(
        select(ApplicationProvider).where(ApplicationProvider.provider_name == provider_name)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_resolve_by_existing_link(db_session, seed):
    accounts = AccountResolver(db_session)
    info = UserInfo(id="gh-1", username="alice-gh")
    assert await accounts.link_identity(seed.alice, "Custom", info)
    assert await accounts.resolve(seed.application, seed.oidc, info) is seed.alice


@pytest.mark.asyncio
async def test_link_is_idempotent(db_session, seed):
    accounts = AccountResolver(db_session)
    info = UserInfo(id="gh-1")
    assert await accounts.link_identity(seed.alice, "Custom", info)
    assert not await accounts.link_identity(seed.alice, "Custom", info)
    rows = (await db_session.execute(select(UserIdentity))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_link_to_another_user_is_refused(db_session, seed):
    accounts = AccountResolver(db_session)
    other = User(organization="acme", name="eve", groups=[], properties={}, recovery_codes=[])
    db_session.add(other)
    await db_session.flush()

    info = UserInfo(id="gh-1", username="shared")
    await accounts.link_identity(seed.alice, "Custom", info)
    with pytest.raises(AlreadyLinkedElsewhere):
        await accounts.link_identity(other, "Custom", info)


@pytest.mark.asyncio
async def test_link_from_deleted_user_is_reassigned(db_session, seed):
    accounts = AccountResolver(db_session)
    ghost = User(organization="acme", name="ghost", is_deleted=True, groups=[], properties={}, recovery_codes=[])
    db_session.add(ghost)
    await db_session.flush()
    info = UserInfo(id="gh-9")
    await accounts.link_identity(ghost, "Custom", info)

    assert await accounts.link_identity(seed.alice, "Custom", info)
    assert await accounts.find_linked("Custom", "gh-9") is seed.alice


@pytest.mark.asyncio
async def test_email_match_requires_link_with_email(db_session, seed):
    accounts = AccountResolver(db_session)
    info = UserInfo(id="ext-7", email="alice@example.com")
    assert await accounts.resolve(seed.application, seed.oidc, info) is None

    seed.application.enable_link_with_email = True
    assert await accounts.resolve(seed.application, seed.oidc, info) is seed.alice


@pytest.mark.asyncio
async def test_saml_subject_lookup(db_session, seed):
    accounts = AccountResolver(db_session)
    assert await accounts.resolve(seed.application, seed.saml, UserInfo(id="alice@example.com")) is seed.alice
    # Subject lookup is for assertion protocols only
    assert await accounts.resolve(seed.application, seed.oidc, UserInfo(id="alice")) is None


@pytest.mark.asyncio
async def test_provision_new_user(db_session, seed):
    accounts = AccountResolver(db_session)
    item = await _item(db_session, "acme-saml")
    info = UserInfo(id="carol-id", username="carol", display_name="Carol", email="carol@example.com")

    user = await accounts.provision(seed.application, seed.organization, item, seed.saml, info)

    assert user.id == "carol-id"
    assert user.name == "carol"
    assert user.organization == "acme"
    assert user.score == 2000
    assert user.groups == ["saml-users"]
    assert user.properties == {"no": "2"}
    assert user.signup_application == "app-acme"


@pytest.mark.asyncio
async def test_provision_avoids_username_collision(db_session, seed):
    accounts = AccountResolver(db_session)
    item = await _item(db_session, "acme-oidc")
    user = await accounts.provision(
        seed.application, seed.organization, item, seed.oidc, UserInfo(id="x-1", username="alice")
    )
    assert user.name.startswith("alice_")
    assert user.id == "x-1"


@pytest.mark.asyncio
async def test_provision_with_taken_id_generates_one(db_session, seed):
    accounts = AccountResolver(db_session)
    item = await _item(db_session, "acme-oidc")
    user = await accounts.provision(
        seed.application, seed.organization, item, seed.oidc, UserInfo(id=seed.alice.id, username="frank")
    )
    assert user.id != seed.alice.id
    assert user.name == "frank"


@pytest.mark.asyncio
async def test_provision_refused(db_session, seed):
    accounts = AccountResolver(db_session)
    item = await _item(db_session, "acme-oidc")
    info = UserInfo(id="z-1", username="zed")

    item.can_signup = False
    with pytest.raises(SignUpNotAllowed):
        await accounts.provision(seed.application, seed.organization, item, seed.oidc, info)

    item.can_signup = True
    seed.application.enable_signup = False
    with pytest.raises(SignUpNotAllowed):
        await accounts.provision(seed.application, seed.organization, item, seed.oidc, info)


@pytest.mark.asyncio
async def test_sync_profile_fills_blanks_only(db_session, seed):
    accounts = AccountResolver(db_session)
    info = UserInfo(id="ext-1", username="al", display_name="Al", email="other@example.com", avatar_url="https://a/p.png")
    await accounts.sync_profile(seed.alice, "GitHub", info)

    assert seed.alice.display_name == "Alice"
    assert seed.alice.email == "alice@example.com"
    assert seed.alice.avatar == "https://a/p.png"
    assert seed.alice.properties["oauth_GitHub_id"] == "ext-1"
    assert seed.alice.properties["oauth_GitHub_username"] == "al"
    assert seed.alice.properties["no"] == "1"
