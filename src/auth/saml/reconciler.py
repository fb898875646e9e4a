"""
Identity reconciliation: match an asserted identity to a local user,
update a partially linked one, or provision a new one just in time.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timezone

from src.storage.user_repository import UserRepository
from src.types.saml import (
    SAML_PROVIDER_TYPE,
    AuthIdentity,
    MappedAttributes,
    ReconcileResult,
    User,
)

logger = logging.getLogger(__name__)

JIT_USER_ROLE = "global:member"


def _unusable_password_hash() -> str:
    # The plaintext is discarded, so the hash can never be matched
    return hashlib.sha256(secrets.token_urlsafe(32).encode()).hexdigest()


class IdentityReconciler:
    """Reconciles mapped SAML attributes against the user store."""

    def __init__(self, user_repository: UserRepository, jit_provisioning: bool = True):
        self._users = user_repository
        self._jit_provisioning = jit_provisioning

    async def reconcile(self, attributes: MappedAttributes) -> ReconcileResult:
        if not attributes.email:
            return ReconcileResult(attributes=attributes)

        email = attributes.email.lower()
        user = await self._users.find_by_email(email)

        if user is not None:
            identity = user.find_auth_identity(SAML_PROVIDER_TYPE)
            if identity and identity.provider_id == attributes.user_principal_name:
                return ReconcileResult(authenticated_user=user, attributes=attributes)

            updated = await self.update_user(user, attributes)
            return ReconcileResult(
                authenticated_user=updated,
                attributes=attributes,
                onboarding_required=not updated.first_name or not updated.last_name,
            )

        if self._jit_provisioning:
            created = await self.create_user(attributes)
            return ReconcileResult(
                authenticated_user=created,
                attributes=attributes,
                onboarding_required=True,
            )

        logger.info("SAML login for unknown user rejected; JIT provisioning is disabled")
        return ReconcileResult(attributes=attributes)

    async def update_user(self, user: User, attributes: MappedAttributes) -> User:
        """Refresh names and link (or relink) the saml auth identity to the UPN."""
        now = datetime.now(timezone.utc)
        provider_id = attributes.user_principal_name or ""

        identity = user.find_auth_identity(SAML_PROVIDER_TYPE)
        if identity is None:
            user.auth_identities.append(
                AuthIdentity(user_id=user.id, provider_id=provider_id)
            )
        else:
            identity.provider_id = provider_id
            identity.updated_at = now

        if attributes.first_name:
            user.first_name = attributes.first_name
        if attributes.last_name:
            user.last_name = attributes.last_name
        user.updated_at = now

        saved = await self._users.save(user)
        logger.info("Linked existing user to SAML identity", extra={"user_id_linked": saved.id})
        return saved

    async def create_user(self, attributes: MappedAttributes) -> User:
        """Provision a user from SAML attributes with a linked auth identity."""
        user = User(
            email=(attributes.email or "").lower(),
            first_name=attributes.first_name,
            last_name=attributes.last_name,
            role=JIT_USER_ROLE,
            password_hash=_unusable_password_hash(),
        )
        user.auth_identities.append(
            AuthIdentity(
                user_id=user.id,
                provider_id=attributes.user_principal_name or "",
            )
        )

        saved = await self._users.save(user)
        logger.info("Provisioned user from SAML attributes", extra={"user_id_created": saved.id})
        return saved
