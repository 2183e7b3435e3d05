"""
OpenID Connect Provider.
Authorization, token, userinfo, revocation and logout endpoints, plus discovery. Port 9000.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from oidc_provider.authorize import router as authorize_router
from oidc_provider.database import SessionLocal, init_db
from oidc_provider.exceptions import OidcServerError
from oidc_provider.keys import default_key_store
from oidc_provider.logout import router as logout_router
from oidc_provider.revoke import router as revoke_router
from oidc_provider.seed import seed_from_env
from oidc_provider.token_endpoint import router as token_router
from oidc_provider.userinfo import router as userinfo_router
from oidc_provider.well_known import router as well_known_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, load signing keys, seed user/client from env on startup."""
    init_db()
    default_key_store()
    db = SessionLocal()
    try:
        seed_from_env(db)
    finally:
        db.close()
    yield


app = FastAPI(title="OIDC Provider", version="1.0.0", lifespan=lifespan)
app.include_router(authorize_router, tags=["authorize"])
app.include_router(token_router, tags=["token"])
app.include_router(userinfo_router, tags=["userinfo"])
app.include_router(revoke_router, tags=["revoke"])
app.include_router(logout_router, tags=["logout"])
app.include_router(well_known_router, tags=["well-known"])


@app.exception_handler(OidcServerError)
def oidc_server_error_handler(request: Request, exc: OidcServerError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.error_type, exc.description)
    return exc.to_response()


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "oidc_provider"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "oidc_provider.main:app",
        host="127.0.0.1",
        port=9000,
        reload=True,
    )
