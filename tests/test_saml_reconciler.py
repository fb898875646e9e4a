"""
Tests for identity reconciliation.

Covers matching an existing linked user, linking an existing unlinked user,
and just-in-time provisioning with the feature on and off.
"""

from unittest.mock import AsyncMock

import pytest

from src.auth.saml.reconciler import JIT_USER_ROLE, IdentityReconciler
from src.storage.user_repository import InMemoryUserRepository
from src.types.saml import AuthIdentity, MappedAttributes, User


def _attributes(**overrides) -> MappedAttributes:
    values = {
        "email": "Ada.Lovelace@Example.com",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "user_principal_name": "ada@example.com",
    }
    values.update(overrides)
    return MappedAttributes(**values)


def _linked_user(provider_id: str = "ada@example.com") -> User:
    user = User(email="ada.lovelace@example.com", first_name="Ada", last_name="Lovelace")
    user.auth_identities.append(AuthIdentity(user_id=user.id, provider_id=provider_id))
    return user


class TestReconcileExistingUser:
    """Tests for users that already exist locally."""

    @pytest.mark.asyncio
    async def test_linked_user_is_returned_without_writes(self):
        """A user with a matching auth identity is returned untouched."""
        user = _linked_user()
        repository = InMemoryUserRepository([user])
        repository.save = AsyncMock(wraps=repository.save)

        result = await IdentityReconciler(repository).reconcile(_attributes())

        assert result.authenticated_user.id == user.id
        assert result.onboarding_required is False
        repository.save.assert_not_called()

    @pytest.mark.asyncio
    async def test_email_match_is_case_insensitive(self):
        """Asserted emails are lower-cased before lookup."""
        repository = InMemoryUserRepository([_linked_user()])

        result = await IdentityReconciler(repository).reconcile(
            _attributes(email="ADA.LOVELACE@EXAMPLE.COM")
        )

        assert result.authenticated_user is not None

    @pytest.mark.asyncio
    async def test_unlinked_user_is_linked_and_updated(self):
        """An existing user without a saml identity gets one."""
        user = User(email="ada.lovelace@example.com")
        repository = InMemoryUserRepository([user])

        result = await IdentityReconciler(repository).reconcile(_attributes())

        updated = result.authenticated_user
        assert updated.id == user.id
        assert updated.first_name == "Ada"
        assert updated.last_name == "Lovelace"
        assert result.onboarding_required is False

        stored = repository.users[0]
        identity = stored.find_auth_identity("saml")
        assert identity is not None
        assert identity.provider_id == "ada@example.com"
        assert identity.user_id == user.id

    @pytest.mark.asyncio
    async def test_stale_identity_is_relinked(self):
        """A saml identity for another UPN is pointed at the asserted one."""
        repository = InMemoryUserRepository([_linked_user(provider_id="old-upn")])

        result = await IdentityReconciler(repository).reconcile(_attributes())

        identities = repository.users[0].auth_identities
        assert len(identities) == 1
        assert identities[0].provider_id == "ada@example.com"
        assert result.authenticated_user is not None

    @pytest.mark.asyncio
    async def test_onboarding_required_when_name_missing(self):
        """Updated users without a full name must complete onboarding."""
        repository = InMemoryUserRepository([User(email="ada.lovelace@example.com")])

        result = await IdentityReconciler(repository).reconcile(_attributes(last_name=None))

        assert result.authenticated_user.last_name is None
        assert result.onboarding_required is True

    @pytest.mark.asyncio
    async def test_missing_claim_keeps_stored_name(self):
        """An absent name claim does not erase the name already on record."""
        user = User(email="ann.lee@example.com", first_name="Ann", last_name="Lee")
        repository = InMemoryUserRepository([user])

        result = await IdentityReconciler(repository).reconcile(
            _attributes(
                email="ann.lee@example.com",
                first_name="Annie",
                last_name=None,
                user_principal_name="ann@example.com",
            )
        )

        stored = repository.users[0]
        assert stored.first_name == "Annie"
        assert stored.last_name == "Lee"
        assert stored.find_auth_identity("saml").provider_id == "ann@example.com"
        assert result.onboarding_required is False


class TestJitProvisioning:
    """Tests for unknown users."""

    @pytest.mark.asyncio
    async def test_jit_disabled_returns_no_user(self):
        """Without JIT nothing is created."""
        repository = InMemoryUserRepository()

        result = await IdentityReconciler(repository, jit_provisioning=False).reconcile(_attributes())

        assert result.authenticated_user is None
        assert result.attributes.email == "Ada.Lovelace@Example.com"
        assert repository.users == []

    @pytest.mark.asyncio
    async def test_jit_enabled_creates_user(self):
        """A new member user is created and linked to the UPN."""
        repository = InMemoryUserRepository()

        result = await IdentityReconciler(repository, jit_provisioning=True).reconcile(_attributes())

        assert result.onboarding_required is True
        created = result.authenticated_user
        assert created.email == "ada.lovelace@example.com"
        assert created.role == JIT_USER_ROLE
        assert created.first_name == "Ada"

        stored = repository.users
        assert len(stored) == 1
        identity = stored[0].find_auth_identity("saml")
        assert identity.provider_id == "ada@example.com"
        assert identity.user_id == created.id

    @pytest.mark.asyncio
    async def test_jit_password_is_random(self):
        """Provisioned users get distinct unusable password hashes."""
        repository = InMemoryUserRepository()
        reconciler = IdentityReconciler(repository)

        first = await reconciler.reconcile(_attributes(email="one@example.com"))
        second = await reconciler.reconcile(_attributes(email="two@example.com"))

        assert first.authenticated_user.password_hash
        assert first.authenticated_user.password_hash != second.authenticated_user.password_hash

    @pytest.mark.asyncio
    async def test_no_email(self):
        """Attributes without an email never match or create a user."""
        repository = InMemoryUserRepository()

        result = await IdentityReconciler(repository).reconcile(_attributes(email=None))

        assert result.authenticated_user is None
        assert repository.users == []
