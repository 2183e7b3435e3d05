"""
OIDC RP-Initiated Logout with back-channel notification.
GET/POST /logout: validate id_token_hint and post_logout_redirect_uri, end the login session, notify every
relying party that received tokens under it, then redirect back or show a logged-out page.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, RedirectResponse

from oidc_provider.authorize import error_page
from oidc_provider.backchannel import BackChannelLogoutHandler
from oidc_provider.config import SESSION_COOKIE_NAME
from oidc_provider.entities import LoginSessionEntity
from oidc_provider.exceptions import OidcServerError
from oidc_provider.factories import (
    get_authorization_server,
    get_back_channel_logout_handler,
    get_session_repository,
)
from oidc_provider.grants import make_redirect_uri
from oidc_provider.repositories import SessionRepository
from oidc_provider.request import ServerRequest, get_server_request
from oidc_provider.request_types import LogoutRequest
from oidc_provider.server import AuthorizationServer

logger = logging.getLogger(__name__)
router = APIRouter()

LOGGED_OUT_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Logged out</title></head>
<body>
  <h1>Logged out</h1>
  <p>You are logged out. Close this window or return to the application.</p>
</body>
</html>"""


def _resolve_session(
    server_request: ServerRequest, logout_request: LogoutRequest, sessions: SessionRepository
) -> LoginSessionEntity | None:
    """Session from the cookie; otherwise the sid of the ID token hint, if it belongs to the hinted subject."""
    session = sessions.get_valid_session(server_request.cookies.get(SESSION_COOKIE_NAME))
    if session is not None:
        return session
    hint = logout_request.id_token_hint or {}
    session = sessions.get_valid_session(hint.get("sid"))
    if session is not None and session.user_id == hint.get("sub"):
        return session
    return None


@router.api_route("/logout", methods=["GET", "POST"])
def logout(
    server_request: ServerRequest = Depends(get_server_request),
    server: AuthorizationServer = Depends(get_authorization_server),
    sessions: SessionRepository = Depends(get_session_repository),
    back_channel: BackChannelLogoutHandler = Depends(get_back_channel_logout_handler),
):
    try:
        logout_request = server.validate_logout_request(server_request)
    except OidcServerError as e:
        return error_page(e)

    session = _resolve_session(server_request, logout_request, sessions)
    if session is not None:
        associations = sessions.get_associations(session.identifier)
        back_channel.handle(associations)
        sessions.clear_associations(session.identifier)
        sessions.invalidate_session(session.identifier)
        logger.info("logout: session ended, user_id=%s relying_parties=%d", session.user_id, len(associations))

    if logout_request.post_logout_redirect_uri:
        params = {"state": logout_request.state} if logout_request.state else {}
        url = logout_request.post_logout_redirect_uri
        if params:
            url = make_redirect_uri(url, params)
        response = RedirectResponse(url=url, status_code=302)
    else:
        response = HTMLResponse(LOGGED_OUT_PAGE)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response
