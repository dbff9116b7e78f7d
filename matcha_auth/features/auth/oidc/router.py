"""Federated login endpoints (Google OpenID Connect)."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from matcha_auth.config.settings import settings
from matcha_auth.database.dependencies import get_db_session

from ..cookies import OIDC_FLOW_COOKIE, clear_flow_cookie, set_flow_cookie, set_session_cookies
from ..exceptions import OIDCFlowException
from ..service import AuthService
from .client import OIDCClient, get_oidc_client
from .flow import FlowState
from .identity import resolve_federated_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def _popup_success_page(frontend_origin: str) -> str:
    # JSON string literal; "<" escaped so the value cannot close the script tag
    target = json.dumps(frontend_origin).replace("<", "\\u003c")
    return f"""<!DOCTYPE html>
<html>
<head><title>Authentication Successful</title></head>
<body>
<script>
window.opener.postMessage({{ type: 'google-auth-success' }}, {target});
window.close();
</script>
</body>
</html>
"""


@router.get("/google")
async def google_login(client: OIDCClient = Depends(get_oidc_client)):
    """Start the federated login flow.

    Stores CSRF token, nonce and PKCE verifier in an encrypted cookie and
    redirects to the provider.
    """
    flow = FlowState.new()
    authorization_url = await client.authorization_url(flow)

    response = RedirectResponse(authorization_url, status_code=307)
    set_flow_cookie(response, flow.to_cookie())
    return response


@router.get("/callback")
async def google_callback(
    request: Request,
    code: str,
    state: str,
    client: OIDCClient = Depends(get_oidc_client),
    session: AsyncSession = Depends(get_db_session),
):
    """Complete the federated login flow and open a session."""
    cookie = request.cookies.get(OIDC_FLOW_COOKIE)
    if not cookie:
        raise OIDCFlowException("No OIDC flow in progress")

    flow = FlowState.from_cookie(cookie)
    if not flow.matches_state(state):
        logger.warning("OIDC callback state does not match the flow cookie")
        raise OIDCFlowException("Invalid CSRF token")

    id_token = await client.exchange_code(code, flow.pkce_verifier)
    identity = await client.verify_id_token(id_token, flow.nonce)

    if not identity.email_verified:
        logger.warning("OIDC login refused: provider reports the email as unverified")
        raise OIDCFlowException("Email not verified")

    user = await resolve_federated_user(
        session,
        external_id=identity.subject,
        email=identity.email,
        name=identity.name,
        picture=identity.picture,
    )
    tokens = await AuthService.issue_session(
        session,
        user,
        device_info=request.headers.get("user-agent"),
        ip_address=get_remote_address(request),
    )
    await session.commit()

    logger.info(f"User {user.id} signed in with Google")

    response = HTMLResponse(_popup_success_page(settings.frontend_url))
    clear_flow_cookie(response)
    set_session_cookies(response, tokens.access_token, tokens.refresh_token)
    return response
