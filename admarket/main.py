import asyncio
import logging
import os

from fastapi import FastAPI, Request
from starlette.middleware.sessions import SessionMiddleware

from admarket.admin.routes import router as admin_router
from admarket.ads.routes import router as ads_router
from admarket.auth.routes import router as auth_router
from admarket.campaigns.routes import router as campaigns_router
from admarket.config import configure_logging, settings
from admarket.db import models
from admarket.db.schema_upgrade import upgrade_schema
from admarket.db.session import ensure_default_executor, get_engine, is_test_database, resolve_database_url
from admarket.errors import CORRELATION_HEADER, error_service, register_error_handlers
from admarket.roles.routes import router as roles_router
from admarket.spaces.routes import publisher_router, router as spaces_router
from admarket.users.routes import router as users_router
from admarket.wallet.routes import router as wallet_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Nostr Ad Marketplace", version="0.1.0")
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    session_cookie=settings.session_cookie_name,
    same_site=settings.session_cookie_same_site,
    max_age=settings.session_cookie_max_age,
    # Plain http in DEBUG, so no Secure flag.
    https_only=settings.session_cookie_https_only and not settings.debug,
)
register_error_handlers(app)
for router in (
    auth_router,
    roles_router,
    admin_router,
    ads_router,
    campaigns_router,
    spaces_router,
    publisher_router,
    wallet_router,
    users_router,
):
    app.include_router(router)


@app.middleware("http")
async def correlation_id(request: Request, call_next):
    cid = request.headers.get(CORRELATION_HEADER) or error_service.new_correlation_id()
    request.state.correlation_id = cid
    error_service.set_trace_context(cid, path=request.url.path, method=request.method)
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = cid
    return response


async def init_models():
    ensure_default_executor()
    url = resolve_database_url()
    if os.getenv("PYTEST_CURRENT_TEST") and not is_test_database(url):
        raise RuntimeError(f"Refusing to initialise non-test database under pytest: {url}")
    engine = get_engine(url)
    await asyncio.to_thread(models.Base.metadata.create_all, engine)
    added = await asyncio.to_thread(upgrade_schema, engine)
    if added:
        logger.info("Schema upgraded: %s", ", ".join(added))


@app.on_event("startup")
async def startup_event():
    await init_models()
    logger.info("Lightning backend: %s (test mode allowed: %s)", settings.lightning_backend, settings.allow_test_mode)


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


def run() -> None:
    """Run the FastAPI development server with autoreload."""

    import uvicorn

    host = os.getenv("APP_HOST", "0.0.0.0")
    port = int(os.getenv("APP_PORT", "8000"))
    uvicorn.run("admarket.main:app", host=host, port=port, reload=settings.debug)
