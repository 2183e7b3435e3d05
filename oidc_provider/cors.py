"""
CORS preflight for endpoints called from browsers (token, userinfo).
"""
from fastapi import Response

from oidc_provider.exceptions import OidcServerError
from oidc_provider.request import ServerRequest


def handle_cors(request: ServerRequest, allowed_origin_repository) -> Response:
    """204 with CORS headers when Origin is registered for some client; protocol error otherwise."""
    origin = request.get_header("origin")
    if not origin:
        raise OidcServerError.invalid_request("Origin", "CORS error: no Origin header present")
    if not allowed_origin_repository.has(origin):
        raise OidcServerError.access_denied(f"CORS error: origin {origin} is not allowed")
    return Response(
        status_code=204,
        headers={
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Authorization",
            "Access-Control-Allow-Credentials": "true",
        },
    )
