"""
Tests for inbound SAML response processing.

Verifies that:
- Every protocol-layer failure becomes SamlAuthenticationError
- Missing claims are reported in a stable order
- Redirect-binding responses are inflated before validation
"""

import base64
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from conftest import (
    EMAIL_CLAIM,
    FIRST_NAME_CLAIM,
    IDP_METADATA,
    LAST_NAME_CLAIM,
    UPN_CLAIM,
    FakeSamlProtocolError,
)
from src.auth.saml.errors import SamlAuthenticationError, SamlBadRequestError
from src.auth.saml.response import (
    PARSE_FAILED_MESSAGE,
    ResponseProcessor,
    map_attributes,
)
from src.auth.saml.service_provider import build_acs_request_data
from src.types.saml import (
    DEFAULT_ATTRIBUTE_MAPPING,
    FederationPreferences,
    FederationPreferencesPatch,
    SamlLoginBinding,
)


@pytest_asyncio.fixture
async def configured_service(saml_service):
    await saml_service.set_preferences(FederationPreferencesPatch(metadata=IDP_METADATA))
    return saml_service


def _post_data(service, saml_response="PHNhbWxwOlJlc3BvbnNlLz4="):
    return build_acs_request_data(
        service.service_provider.acs_url,
        post_data={"SAMLResponse": saml_response},
    )


class TestMapAttributes:
    """Tests for claim mapping."""

    def test_first_value_is_used(self):
        """Multi-valued claims map to their first value."""
        mapped, missing = map_attributes(
            {
                EMAIL_CLAIM: ["a@example.com", "b@example.com"],
                FIRST_NAME_CLAIM: ["Ada"],
                LAST_NAME_CLAIM: "Lovelace",
                UPN_CLAIM: ["ada"],
            },
            DEFAULT_ATTRIBUTE_MAPPING,
        )

        assert mapped.email == "a@example.com"
        assert mapped.last_name == "Lovelace"
        assert missing == []

    def test_missing_claims_in_stable_order(self):
        """Missing claims are listed as email, upn, first name, last name."""
        mapped, missing = map_attributes({LAST_NAME_CLAIM: ["Lovelace"]}, DEFAULT_ATTRIBUTE_MAPPING)

        assert mapped.last_name == "Lovelace"
        assert missing == [EMAIL_CLAIM, UPN_CLAIM, FIRST_NAME_CLAIM]

    def test_empty_values_count_as_missing(self):
        """Empty lists and empty strings do not satisfy a claim."""
        _, missing = map_attributes(
            {EMAIL_CLAIM: [], FIRST_NAME_CLAIM: [""], LAST_NAME_CLAIM: ["x"], UPN_CLAIM: ["y"]},
            DEFAULT_ATTRIBUTE_MAPPING,
        )

        assert missing == [EMAIL_CLAIM, FIRST_NAME_CLAIM]


class TestResponseProcessor:
    """Tests for ResponseProcessor.parse."""

    @pytest.mark.asyncio
    async def test_valid_response(self, configured_service):
        """A verified response yields the mapped attributes."""
        attributes = configured_service.responses.parse(
            _post_data(configured_service), SamlLoginBinding.POST
        )

        assert attributes.email == "Ada.Lovelace@Example.com"
        assert attributes.first_name == "Ada"
        assert attributes.last_name == "Lovelace"
        assert attributes.user_principal_name == "ada@example.com"

    @pytest.mark.asyncio
    async def test_process_response_raises(self, configured_service, protocol):
        """Protocol exceptions are wrapped with the parse failure message."""
        protocol.auth_instance.process_response.side_effect = FakeSamlProtocolError(
            "SAML Response not found"
        )

        with pytest.raises(SamlAuthenticationError) as exc_info:
            configured_service.responses.parse(_post_data(configured_service), SamlLoginBinding.POST)

        assert exc_info.value.message == f"{PARSE_FAILED_MESSAGE} SAML Response not found"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self, configured_service, protocol):
        """Non-protocol failures are normalized as well."""
        protocol.auth_instance.process_response.side_effect = TypeError("bad padding")

        with pytest.raises(SamlAuthenticationError):
            configured_service.responses.parse(_post_data(configured_service), SamlLoginBinding.POST)

    @pytest.mark.asyncio
    async def test_validation_errors_use_last_reason(self, configured_service, protocol):
        """Validation errors surface python3-saml's last error reason."""
        protocol.auth_instance.get_errors.return_value = ["invalid_response"]
        protocol.auth_instance.get_last_error_reason.return_value = "Signature validation failed."

        with pytest.raises(SamlAuthenticationError) as exc_info:
            configured_service.responses.parse(_post_data(configured_service), SamlLoginBinding.POST)

        assert exc_info.value.message == f"{PARSE_FAILED_MESSAGE} Signature validation failed."
        assert exc_info.value.details["errors"] == ["invalid_response"]

    @pytest.mark.asyncio
    async def test_validation_errors_without_reason(self, configured_service, protocol):
        """Without a reason the error codes are joined."""
        protocol.auth_instance.get_errors.return_value = ["invalid_response", "expired"]

        with pytest.raises(SamlAuthenticationError) as exc_info:
            configured_service.responses.parse(_post_data(configured_service), SamlLoginBinding.POST)

        assert exc_info.value.message.endswith("invalid_response, expired")

    @pytest.mark.asyncio
    async def test_not_authenticated(self, configured_service, protocol):
        protocol.auth_instance.is_authenticated.return_value = False

        with pytest.raises(SamlAuthenticationError):
            configured_service.responses.parse(_post_data(configured_service), SamlLoginBinding.POST)

    @pytest.mark.asyncio
    async def test_no_attributes(self, configured_service, protocol):
        """A response with no attribute statement lists every claim as missing."""
        protocol.auth_instance.get_attributes.return_value = {}

        with pytest.raises(SamlAuthenticationError) as exc_info:
            configured_service.responses.parse(_post_data(configured_service), SamlLoginBinding.POST)

        assert exc_info.value.message == (
            "SAML Authentication failed. Invalid SAML response "
            f"(missing attributes: {EMAIL_CLAIM}, {UPN_CLAIM}, {FIRST_NAME_CLAIM}, {LAST_NAME_CLAIM})."
        )
        assert exc_info.value.details["missing_attributes"] == [
            EMAIL_CLAIM,
            UPN_CLAIM,
            FIRST_NAME_CLAIM,
            LAST_NAME_CLAIM,
        ]

    @pytest.mark.asyncio
    async def test_missing_attributes(self, configured_service, protocol):
        """Missing claims are named in the error message."""
        protocol.auth_instance.get_attributes.return_value = {
            FIRST_NAME_CLAIM: ["Ada"],
            UPN_CLAIM: ["ada@example.com"],
        }

        with pytest.raises(SamlAuthenticationError) as exc_info:
            configured_service.responses.parse(_post_data(configured_service), SamlLoginBinding.POST)

        assert exc_info.value.message == (
            "SAML Authentication failed. Invalid SAML response "
            f"(missing attributes: {EMAIL_CLAIM}, {LAST_NAME_CLAIM})."
        )
        assert exc_info.value.details["missing_attributes"] == [EMAIL_CLAIM, LAST_NAME_CLAIM]

    @pytest.mark.asyncio
    async def test_redirect_binding_is_inflated(self, configured_service, protocol):
        """A deflated query-string response is moved into post_data."""
        request_data = build_acs_request_data(
            configured_service.service_provider.acs_url,
            get_data={"SAMLResponse": "fZLLbsIwEEX3", "RelayState": "https://automation.example.com"},
        )

        configured_service.responses.parse(request_data, SamlLoginBinding.REDIRECT)

        protocol.saml_utils.decode_base64_and_inflate.assert_called_once_with("fZLLbsIwEEX3")
        passed = protocol.auth.OneLogin_Saml2_Auth.call_args[0][0]
        assert base64.b64decode(passed["post_data"]["SAMLResponse"]).decode() == "<samlp:Response/>"
        assert passed["post_data"]["RelayState"] == "https://automation.example.com"

    @pytest.mark.asyncio
    async def test_settings_are_strict(self, configured_service, protocol):
        """Responses are validated with strict settings and the old_settings object."""
        configured_service.responses.parse(_post_data(configured_service), SamlLoginBinding.POST)

        settings_dict = protocol.settings.OneLogin_Saml2_Settings.call_args[0][0]
        assert settings_dict["strict"] is True
        _, kwargs = protocol.auth.OneLogin_Saml2_Auth.call_args
        assert kwargs["old_settings"] is protocol.settings.OneLogin_Saml2_Settings.return_value

    @pytest.mark.asyncio
    async def test_no_attribute_mapping(self, ready_toolkit, saml_service):
        """Processing needs an attribute mapping."""
        store = MagicMock()
        store.current = FederationPreferences(mapping=None, metadata=IDP_METADATA)
        processor = ResponseProcessor(store, ready_toolkit, saml_service.service_provider)

        with pytest.raises(SamlBadRequestError) as exc_info:
            processor.parse(_post_data(saml_service), SamlLoginBinding.POST)

        assert exc_info.value.message == "Error fetching SAML Attributes, no Attribute mapping set"
