"""
Authorization endpoint and login flow.
GET/POST /authorize: validate the request; show login when there is no usable session, else redirect with
the code or tokens. POST /login: check credentials, start (or refresh) the login session, resume /authorize.
"""
import html
import logging
import time
from urllib.parse import parse_qsl, urlencode

from fastapi import APIRouter, Depends, Form
from fastapi.responses import HTMLResponse, RedirectResponse

from oidc_provider.config import SESSION_COOKIE_NAME, SESSION_COOKIE_SECURE
from oidc_provider.entities import RelyingPartyAssociation
from oidc_provider.exceptions import OidcServerError
from oidc_provider.factories import get_authorization_server, get_session_repository, get_user_repository
from oidc_provider.grants import GET_AND_POST
from oidc_provider.repositories import SessionRepository, UserRepository
from oidc_provider.request import ServerRequest, get_server_request
from oidc_provider.rules import DATA_LOGIN_SESSION
from oidc_provider.server import AuthorizationServer
from oidc_provider.tokens import generate_unique_identifier

logger = logging.getLogger(__name__)
router = APIRouter()

# Dropped when resuming after login so a fresh session satisfies the request
_REAUTH_PARAMS = ("prompt", "max_age")


def _e(s: str | None) -> str:
    return html.escape(s or "")


def error_page(exc: OidcServerError) -> HTMLResponse:
    """Errors that cannot be sent back to the client are shown to the user."""
    return HTMLResponse(
        f"<h1>Invalid request</h1><p>{_e(exc.error_type)}: {_e(exc.description)}</p>",
        status_code=exc.http_status,
    )


def _login_form(
    params: dict[str, str],
    error: str | None = None,
    reauth_session: str | None = None,
    status_code: int = 200,
) -> HTMLResponse:
    error_html = f'<p style="color:red;">{_e(error)}</p>' if error else ""
    reauth_html = f'<input type="hidden" name="reauth_session" value="{_e(reauth_session)}"/>' if reauth_session else ""
    body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Log in</title></head>
<body>
  <h1>Log in</h1>
  {error_html}
  <form method="post" action="/login">
    <input type="hidden" name="return_to" value="{_e(urlencode(params))}"/>
    {reauth_html}
    <label>Username: <input type="text" name="username" required/></label><br/>
    <label>Password: <input type="password" name="password" required/></label><br/>
    <button type="submit">Log in</button>
  </form>
</body>
</html>"""
    return HTMLResponse(body, status_code=status_code)


@router.api_route("/authorize", methods=["GET", "POST"])
def authorize(
    server_request: ServerRequest = Depends(get_server_request),
    server: AuthorizationServer = Depends(get_authorization_server),
    sessions: SessionRepository = Depends(get_session_repository),
    users: UserRepository = Depends(get_user_repository),
):
    """
    OAuth2/OIDC authorization endpoint.
    Protocol errors go back to redirect_uri once it is established; earlier ones render an error page.
    """
    login_session = sessions.get_valid_session(server_request.cookies.get(SESSION_COOKIE_NAME))
    try:
        auth_request = server.validate_authorization_request(
            server_request, data={DATA_LOGIN_SESSION: login_session}
        )
        user = users.get_user_entity_by_identifier(login_session.user_id) if login_session else None

        if user is None or auth_request.requires_authentication:
            if "none" in auth_request.prompt:
                raise OidcServerError.login_required(
                    None, auth_request.redirect_uri, auth_request.state, auth_request.use_fragment
                )
            params = dict(server_request.all_params_for_methods(GET_AND_POST) or {})
            reauth_session = login_session.identifier if user is not None else None
            return _login_form(params, reauth_session=reauth_session)

        auth_request.user = user
        auth_request.session_id = login_session.identifier
        auth_request.auth_time = login_session.authn_instant
        auth_request.is_authorization_approved = True
        location = server.complete_authorization_request(auth_request)
    except OidcServerError as e:
        if e.has_redirect():
            return e.to_response()
        return error_page(e)

    sessions.add_association(
        RelyingPartyAssociation(
            client_id=auth_request.client.identifier,
            user_id=user.identifier,
            session_id=login_session.identifier,
            back_channel_logout_uri=auth_request.client.back_channel_logout_uri,
        )
    )
    logger.info(
        "authorization completed: client_id=%s user_id=%s grant=%s",
        auth_request.client.identifier,
        user.identifier,
        auth_request.grant_type_id,
    )
    return RedirectResponse(url=location, status_code=302)


@router.post("/login")
def login(
    username: str = Form(...),
    password: str = Form(...),
    return_to: str = Form(""),
    reauth_session: str | None = Form(None),
    sessions: SessionRepository = Depends(get_session_repository),
    users: UserRepository = Depends(get_user_repository),
):
    """Check credentials; on success set the session cookie and resume the authorization request."""
    params = dict(parse_qsl(return_to, keep_blank_values=True))
    user = users.get_user_entity_by_credentials(username, password)
    if user is None:
        logger.info("login failed: username=%s", username)
        return _login_form(params, "Invalid username or password.", reauth_session, status_code=401)

    now = int(time.time())
    session = sessions.get_valid_session(reauth_session)
    if session is not None:
        if session.user_id != user.identifier:
            logger.warning("re-authentication as a different user refused: session user_id=%s", session.user_id)
            return error_page(OidcServerError.access_denied("Re-authentication resolved to a different user"))
        sessions.refresh_authn_instant(session.identifier, now)
        session_id = session.identifier
    else:
        session_id = sessions.create_session(generate_unique_identifier(32), user.identifier, now).identifier
    logger.info("login ok: user_id=%s", user.identifier)

    for name in _REAUTH_PARAMS:
        params.pop(name, None)
    response = RedirectResponse(url=f"/authorize?{urlencode(params)}", status_code=302)
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session_id,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return response
