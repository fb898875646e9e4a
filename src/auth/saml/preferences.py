"""
Federation preferences: in-memory state, merge rules and persistence.

Preferences live in a single settings row (``features.saml``) as camelCase
JSON. The store keeps the validated preferences in memory; the login-enabled
flag and label come from SamlLoginState and are merged into the exposed view.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from src.auth.saml.constants import SAML_PREFERENCES_DB_KEY
from src.auth.saml.errors import InvalidSamlMetadataError, PreferencesParseError
from src.auth.saml.login_state import SamlLoginState
from src.auth.saml.metadata import MetadataResolver
from src.auth.saml.toolkit import SamlToolkit
from src.storage.settings_repository import SettingsRepository
from src.types.saml import (
    FederationPreferences,
    FederationPreferencesPatch,
    SettingsRow,
)

logger = logging.getLogger(__name__)

# Tracked by SamlLoginState rather than stored on the preferences object
_LOGIN_STATE_FIELDS = {"login_enabled", "login_label"}
_METADATA_FIELDS = {"metadata", "metadata_url"}


def merge_preferences(
    current: FederationPreferences,
    patch: FederationPreferencesPatch,
) -> FederationPreferences:
    """
    Merge a partial update into the current preferences.

    Every supplied (non-None) field wins over the current value. Metadata
    sources are mutually exclusive: a supplied ``metadata_url`` is adopted,
    otherwise a supplied ``metadata`` is adopted and ``metadata_url`` cleared.
    """
    updates: Dict[str, Any] = {}
    for name in FederationPreferencesPatch.model_fields:
        if name in _METADATA_FIELDS or name in _LOGIN_STATE_FIELDS:
            continue
        value = getattr(patch, name)
        if value is not None:
            updates[name] = value

    if patch.metadata is not None:
        updates["metadata"] = patch.metadata
    if patch.metadata_url:
        updates["metadata_url"] = patch.metadata_url
    elif patch.metadata:
        updates["metadata_url"] = None

    return current.model_copy(update=updates)


def parse_preferences_row(value: str) -> FederationPreferencesPatch:
    """
    Decode a persisted preferences row.

    Raises:
        PreferencesParseError: If the value is not JSON or not a preferences object
    """
    try:
        return FederationPreferencesPatch.model_validate_json(value)
    except ValidationError as e:
        raise PreferencesParseError(
            f"Stored SAML preferences could not be parsed: {e.error_count()} error(s)",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e


class PreferenceStore:
    """Owner of the federation preferences."""

    def __init__(
        self,
        settings_repository: SettingsRepository,
        login_state: SamlLoginState,
        toolkit: SamlToolkit,
        metadata_resolver: MetadataResolver,
        instance_base_url: str,
    ):
        self._repository = settings_repository
        self._login_state = login_state
        self._toolkit = toolkit
        self._resolver = metadata_resolver
        self._instance_base_url = instance_base_url
        self._preferences = self._defaults()

    def _defaults(self) -> FederationPreferences:
        return FederationPreferences(relay_state=self._instance_base_url)

    @property
    def current(self) -> FederationPreferences:
        """Validated preferences as held in memory, without login state."""
        return self._preferences

    @property
    def preferences(self) -> FederationPreferences:
        """Exposed view: preferences with the live login flag and label."""
        return self._preferences.model_copy(
            update={
                "login_enabled": self._login_state.login_enabled,
                "login_label": self._login_state.login_label,
            }
        )

    async def load_preferences_without_validation(
        self,
        patch: FederationPreferencesPatch,
    ) -> None:
        """Merge into memory without touching the protocol layer."""
        self._preferences = merge_preferences(self._preferences, patch)
        await self._apply_login_state(patch)

    async def set_preferences(
        self,
        patch: FederationPreferencesPatch,
    ) -> FederationPreferences:
        """
        Validate, apply and persist a preferences update.

        Metadata is resolved from the URL when one is supplied, otherwise
        supplied literal metadata is validated. Nothing is changed in memory
        or in storage when resolution, validation or the login switch fails.

        Raises:
            InvalidSamlMetadataError: If supplied metadata is invalid
            SamlBadRequestError: If the metadata URL cannot be resolved, or
                login is enabled while another login method is active
        """
        await self._toolkit.load()

        candidate = merge_preferences(self._preferences, patch)

        if patch.metadata_url:
            metadata = await self._resolver.fetch_from_url(
                candidate.metadata_url,
                ignore_ssl=candidate.ignore_ssl,
            )
            candidate = candidate.model_copy(update={"metadata": metadata})
        elif patch.metadata:
            if not self._resolver.validate_metadata(patch.metadata):
                raise InvalidSamlMetadataError()

        if patch.login_enabled:
            self._login_state.ensure_can_enable()

        if candidate.metadata:
            self._toolkit.get_identity_provider(candidate.metadata, force_recreate=True)
        else:
            self._toolkit.invalidate_identity_provider()

        self._preferences = candidate
        await self._apply_login_state(patch)

        result = await self.save_to_persistence()
        logger.info(
            "SAML preferences updated",
            extra={
                "metadata_source": "url" if candidate.metadata_url else "inline",
                "login_binding": candidate.login_binding.value,
            },
        )
        return result

    async def _apply_login_state(self, patch: FederationPreferencesPatch) -> None:
        if patch.login_enabled is not None:
            await self._login_state.set_login_enabled(patch.login_enabled)
        if patch.login_label is not None:
            self._login_state.set_login_label(patch.login_label)

    async def load_from_persistence(
        self,
        apply: bool = True,
    ) -> Optional[FederationPreferencesPatch]:
        """
        Load the persisted row into memory.

        With ``apply`` the full validated update path runs; without it the
        row is merged passively (protocol layer not required).

        Returns:
            The decoded row, or None when nothing is persisted
        """
        row = await self._repository.get(SAML_PREFERENCES_DB_KEY)
        if row is None:
            return None

        patch = parse_preferences_row(row.value)
        if apply:
            await self.set_preferences(patch)
        else:
            await self.load_preferences_without_validation(patch)
        return patch

    async def save_to_persistence(self) -> FederationPreferences:
        """Upsert the exposed view and return what was stored."""
        saved = await self._repository.save(
            SettingsRow(
                key=SAML_PREFERENCES_DB_KEY,
                value=self.preferences.model_dump_json(by_alias=True),
                load_on_startup=True,
            )
        )
        return FederationPreferences.model_validate_json(saved.value)

    async def delete_from_persistence(self) -> None:
        await self._repository.delete(SAML_PREFERENCES_DB_KEY)

    def reset_to_defaults(self) -> None:
        self._preferences = self._defaults()
        self._toolkit.invalidate_identity_provider()
