"""
Token endpoint (POST /token): authorization_code and refresh_token grants. OPTIONS /token: CORS preflight.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from oidc_provider.cors import handle_cors
from oidc_provider.factories import get_allowed_origin_repository, get_authorization_server
from oidc_provider.repositories import AllowedOriginRepository
from oidc_provider.request import ServerRequest, get_server_request
from oidc_provider.server import AuthorizationServer

logger = logging.getLogger(__name__)
router = APIRouter()

NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
    "Access-Control-Allow-Origin": "*",
}


@router.post("/token")
def token(
    server_request: ServerRequest = Depends(get_server_request),
    server: AuthorizationServer = Depends(get_authorization_server),
):
    """Exchange a code or refresh token. Protocol errors are rendered by the app-level handler."""
    body = server.respond_to_access_token_request(server_request)
    return JSONResponse(body, headers=NO_STORE_HEADERS)


@router.options("/token")
def token_preflight(
    server_request: ServerRequest = Depends(get_server_request),
    origins: AllowedOriginRepository = Depends(get_allowed_origin_repository),
):
    return handle_cors(server_request, origins)
