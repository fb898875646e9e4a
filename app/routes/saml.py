"""
SAML Federation API Endpoints.

This module provides REST endpoints for SAML 2.0 federation:
- SP metadata for the identity provider
- Federation configuration (admin)
- Login initiation in the redirect or post binding
- Assertion Consumer Service (ACS)

Security Considerations:
- Configuration endpoints require the admin API key
- Responses are verified by python3-saml before any user is matched
- Relay state is only honored when it points back at this instance
- SAML payloads are never logged
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.auth import verify_admin_api_key
from app.dependencies import (
    get_saml_service,
    require_saml_enabled,
    require_saml_licensed,
)
from app.exceptions import SamlAuthenticationFailed
from src.auth.saml.login_request import render_post_form
from src.auth.saml.service import SamlService
from src.auth.saml.service_provider import build_acs_request_data
from src.types.saml import (
    FederationPreferences,
    FederationPreferencesPatch,
    MappedAttributes,
    PostBindingContext,
    ReconcileResult,
    SamlLoginBinding,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sso/saml", tags=["saml"])


# =============================================================================
# Request/Response Models
# =============================================================================


class SamlConfigResponse(FederationPreferences):
    """Preferences view plus the SP identifiers the IdP needs."""

    entity_id: str = Field(..., alias="entityID", description="SP entity ID")
    return_url: str = Field(..., description="SP Assertion Consumer Service URL")


class SamlToggleRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    login_enabled: bool = Field(..., description="Enable or disable SAML login")


class SamlLoginResponse(BaseModel):
    """Outcome of a successful SAML login."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    onboarding_required: bool = False
    attributes: MappedAttributes


# =============================================================================
# Helper Functions
# =============================================================================


def _config_response(service: SamlService) -> SamlConfigResponse:
    return SamlConfigResponse(
        **service.get_preferences().model_dump(),
        entity_id=service.service_provider.entity_id,
        return_url=service.service_provider.acs_url,
    )


def _safe_relay_state(service: SamlService, redirect: Optional[str]) -> Optional[str]:
    """Only accept relay states that point back at this instance."""
    if not redirect:
        return None
    base_url = service.settings.instance_base_url
    if redirect == base_url or redirect.startswith(f"{base_url}/"):
        return redirect
    logger.warning("Ignoring relay state that points outside this instance")
    return None


def _login_response(result: ReconcileResult) -> SamlLoginResponse:
    user = result.authenticated_user
    if user is None:
        raise SamlAuthenticationFailed("SAML Authentication failed")
    return SamlLoginResponse(
        user_id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        onboarding_required=result.onboarding_required,
        attributes=result.attributes,
    )


# =============================================================================
# SAML Endpoints
# =============================================================================


@router.get(
    "/metadata",
    response_class=Response,
    summary="Get SAML SP Metadata",
    description="Return Service Provider (SP) metadata XML for IdP configuration.",
)
async def get_saml_metadata(
    service: SamlService = Depends(get_saml_service),
) -> Response:
    metadata = await service.generate_sp_metadata()
    return Response(
        content=metadata,
        media_type="application/xml",
        headers={"Content-Disposition": 'attachment; filename="sp-metadata.xml"'},
    )


@router.get(
    "/config",
    response_model=SamlConfigResponse,
    summary="Get SAML configuration",
    dependencies=[Depends(verify_admin_api_key)],
)
async def get_saml_config(
    service: SamlService = Depends(require_saml_licensed),
) -> SamlConfigResponse:
    return _config_response(service)


@router.post(
    "/config",
    response_model=SamlConfigResponse,
    summary="Update SAML configuration",
    description="Merge the supplied preferences, validate or fetch metadata, and persist.",
    dependencies=[Depends(verify_admin_api_key)],
)
async def set_saml_config(
    patch: FederationPreferencesPatch,
    service: SamlService = Depends(require_saml_licensed),
) -> SamlConfigResponse:
    await service.set_preferences(patch)
    logger.info("SAML configuration updated via admin API")
    return _config_response(service)


@router.post(
    "/config/toggle",
    response_model=SamlConfigResponse,
    summary="Enable or disable SAML login",
    dependencies=[Depends(verify_admin_api_key)],
)
async def toggle_saml_login(
    body: SamlToggleRequest,
    service: SamlService = Depends(require_saml_licensed),
) -> SamlConfigResponse:
    await service.toggle_login_enabled(body.login_enabled)
    logger.info(f"SAML login {'enabled' if body.login_enabled else 'disabled'} via admin API")
    return _config_response(service)


@router.get(
    "/initsso",
    summary="Initiate SAML Login",
    description="Start the SAML flow: redirect to the IdP or render an auto-submitting form.",
)
async def init_sso(
    redirect: Optional[str] = Query(None, description="Instance URL to return to after login"),
    service: SamlService = Depends(require_saml_enabled),
) -> Response:
    login_request = await service.get_login_request_url(
        relay_state=_safe_relay_state(service, redirect),
    )

    if isinstance(login_request.context, PostBindingContext):
        return HTMLResponse(content=render_post_form(login_request.context))

    return RedirectResponse(
        url=login_request.context.context,
        status_code=status.HTTP_302_FOUND,
    )


@router.post(
    "/acs",
    response_model=SamlLoginResponse,
    summary="SAML Assertion Consumer Service (post binding)",
)
async def saml_acs_post(
    request: Request,
    service: SamlService = Depends(require_saml_licensed),
) -> SamlLoginResponse:
    form_data = await request.form()
    request_data = build_acs_request_data(
        service.service_provider.acs_url,
        post_data={key: str(value) for key, value in form_data.items()},
    )
    result = await service.handle_saml_login(request_data, SamlLoginBinding.POST)
    return _login_response(result)


@router.get(
    "/acs",
    response_model=SamlLoginResponse,
    summary="SAML Assertion Consumer Service (redirect binding)",
)
async def saml_acs_redirect(
    request: Request,
    service: SamlService = Depends(require_saml_licensed),
) -> SamlLoginResponse:
    request_data = build_acs_request_data(
        service.service_provider.acs_url,
        get_data=dict(request.query_params),
    )
    result = await service.handle_saml_login(request_data, SamlLoginBinding.REDIRECT)
    return _login_response(result)
