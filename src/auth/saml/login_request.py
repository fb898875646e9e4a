"""
Outbound SAML authentication requests.

Redirect binding: python3-saml builds the IdP URL (deflated, base64 and,
when requested, signed in the query string). Post binding: the AuthnRequest
XML is optionally signed in-document, base64 encoded and returned together
with the IdP endpoint so the browser can auto-submit it.
"""

import html
import logging
from typing import Optional

from src.auth.saml.errors import SamlBadRequestError
from src.auth.saml.preferences import PreferenceStore
from src.auth.saml.service_provider import (
    ServiceProviderConfig,
    build_acs_request_data,
    build_saml_settings,
)
from src.auth.saml.toolkit import SamlToolkit
from src.types.saml import (
    LoginRequest,
    PostBindingContext,
    RedirectBindingContext,
    SamlLoginBinding,
)

logger = logging.getLogger(__name__)


class LoginRequestBuilder:
    """Builds AuthnRequests in the redirect or post binding."""

    def __init__(
        self,
        store: PreferenceStore,
        toolkit: SamlToolkit,
        service_provider: ServiceProviderConfig,
        instance_base_url: str,
    ):
        self._store = store
        self._toolkit = toolkit
        self._sp = service_provider
        self._instance_base_url = instance_base_url

    def build_request(
        self,
        relay_state: Optional[str] = None,
        binding: Optional[SamlLoginBinding] = None,
    ) -> LoginRequest:
        """
        Build a login request.

        Args:
            relay_state: Value round-tripped through the IdP; defaults to the
                instance base URL
            binding: Wire binding; defaults to the configured login binding

        Raises:
            SamlNotInitializedError: If the protocol layer is not loaded
            SamlBadRequestError: If the IdP has no endpoint for the binding
        """
        self._toolkit.ensure_ready()

        preferences = self._store.current
        if binding is None:
            binding = preferences.login_binding or SamlLoginBinding.REDIRECT
        if relay_state is None:
            relay_state = self._instance_base_url

        idp = self._toolkit.get_identity_provider(preferences.metadata)
        if not idp.supports(binding):
            raise SamlBadRequestError(
                f"Identity provider does not offer a {binding.value} binding endpoint",
                details={"binding": binding.value, "entity_id": idp.entity_id},
            )

        settings = self._toolkit.build_settings(
            build_saml_settings(preferences, self._sp, idp, login_binding=binding)
        )

        if binding == SamlLoginBinding.POST:
            context = self._build_post_context(settings, idp.sso_urls[binding], relay_state)
        else:
            context = self._build_redirect_context(settings, relay_state)

        logger.debug(
            "Built SAML login request",
            extra={"binding": binding.value, "authn_request_id": context.id},
        )
        return LoginRequest(binding=binding, context=context)

    def _build_redirect_context(self, settings, relay_state: str) -> RedirectBindingContext:
        auth_class = self._toolkit.module("auth").OneLogin_Saml2_Auth
        auth = auth_class(build_acs_request_data(self._sp.acs_url), old_settings=settings)
        url = auth.login(return_to=relay_state)
        return RedirectBindingContext(id=auth.get_last_request_id(), context=url)

    def _build_post_context(
        self,
        settings,
        entity_endpoint: str,
        relay_state: str,
    ) -> PostBindingContext:
        request_class = self._toolkit.module("authn_request").OneLogin_Saml2_Authn_Request
        utils = self._toolkit.module("utils").OneLogin_Saml2_Utils

        authn_request = request_class(settings)
        xml = authn_request.get_xml()

        preferences = self._store.current
        if preferences.authn_requests_signed:
            xml = utils.add_sign(
                xml,
                settings.get_sp_key(),
                settings.get_sp_cert(),
                sign_algorithm=preferences.signature_algorithm,
                digest_algorithm=preferences.digest_algorithm,
            )

        return PostBindingContext(
            id=authn_request.get_id(),
            context=utils.b64encode(xml),
            relay_state=relay_state,
            entity_endpoint=entity_endpoint,
        )


def render_post_form(context: PostBindingContext) -> str:
    """Render an auto-submitting HTML form for a post binding context."""
    endpoint = html.escape(context.entity_endpoint, quote=True)
    field = html.escape(context.type, quote=True)
    value = html.escape(context.context, quote=True)
    relay_state = html.escape(context.relay_state, quote=True)

    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head><meta charset=\"utf-8\"><title>Redirecting to identity provider</title></head>\n"
        "<body onload=\"document.forms[0].submit()\">\n"
        f"<form method=\"post\" action=\"{endpoint}\">\n"
        f"<input type=\"hidden\" name=\"{field}\" value=\"{value}\"/>\n"
        f"<input type=\"hidden\" name=\"RelayState\" value=\"{relay_state}\"/>\n"
        "<noscript><button type=\"submit\">Continue</button></noscript>\n"
        "</form>\n"
        "</body>\n"
        "</html>\n"
    )
