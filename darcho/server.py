from __future__ import annotations
import logging
import os

import redis.asyncio as redis
from fastapi import Depends, FastAPI, Form, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, ORJSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from .api import admin, auth, buyer, farmer
from .deps import (
    ADMIN_PASSWORD, ADMIN_USERNAME, SESSION_SECRET, SESSION_BACKEND,
    SessionAsync, engine, get_db, is_admin,
)
from .helpers import ct_equal, now_ts, to_iso
from .infra.timings import install_shutdown_log
from .model.authsession import new_store
from .model.db import Base

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

HERE = os.path.dirname(os.path.abspath(__file__))
templates = Jinja2Templates(directory=os.path.join(HERE, "templates"))

SITE_NAME = "Darcho"

app = FastAPI(
    title="Darcho Coffee Marketplace",
    default_response_class=ORJSONResponse,
)
app.mount(
    "/static",
    StaticFiles(directory=os.path.join(HERE, "static")),
    name="static",
)
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET)

app.include_router(auth.router)
app.include_router(farmer.router)
app.include_router(buyer.router)
app.include_router(admin.router)

# log the timing aggregates when the server goes down
install_shutdown_log(app)


# ----------------------------
# Errors: one body shape for everything
# ----------------------------
@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    return ORJSONResponse(
        {"success": False, "error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "Invalid request")
    return ORJSONResponse(
        {"success": False, "error": f"{where}: {msg}" if where else msg},
        status_code=400,
    )


@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method,
                     request.url.path)
    return ORJSONResponse(
        {"success": False, "error": "Internal server error"},
        status_code=500,
    )


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    dialect = engine.dialect.name
    logger.info("=" * 50)
    logger.info("Darcho is starting up...")
    logger.info("   - Database: %s", dialect)
    logger.info("   - Login sessions backend: %s", SESSION_BACKEND)
    logger.info("=" * 50)


@app.on_event("startup")
async def _db_init():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@app.on_event("startup")
async def _redis_start():
    if SESSION_BACKEND == "redis":
        REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
        app.state.redis = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            max_connections=int(os.getenv("REDIS_MAX_CONN", "64")),
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("startup")
async def _purge_sessions():
    if SESSION_BACKEND != "redis":
        async with SessionAsync() as session:
            n = await new_store(db=session).purge_expired()
        if n:
            logger.info("purged %d expired login sessions", n)


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _engine_stop():
    await engine.dispose()


# ----------------------------
# Pages
# ----------------------------
def _page(request: Request, name: str, **ctx):
    ctx["site_name"] = SITE_NAME
    return templates.TemplateResponse(request, name, ctx)


@app.get("/", response_class=HTMLResponse)
async def landing_page(request: Request):
    return _page(
        request, "landing.html",
        tagline="Specialty coffee, straight from the farm.",
    )


@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request):
    return _page(request, "login.html")


@app.get("/register", response_class=HTMLResponse)
async def register_page(request: Request, role: str = "buyer"):
    return _page(request, "register.html", role=role)


@app.get("/forgot-password", response_class=HTMLResponse)
async def forgot_page(request: Request):
    return _page(request, "forgot.html")


@app.get("/farmer", response_class=HTMLResponse)
async def farmer_page(request: Request):
    return _page(request, "farmer.html")


@app.get("/buyer", response_class=HTMLResponse)
async def buyer_page(request: Request):
    return _page(request, "buyer.html")


# ----------------------------
# Admin page
# ----------------------------
@app.get("/admin/login", response_class=HTMLResponse)
async def admin_login_get(request: Request, next: str | None = "/admin"):
    return _page(request, "admin_login.html", next=next, error=None)


@app.post("/admin/login", response_class=HTMLResponse)
async def admin_login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    next: str = Form("/admin"),
):
    ok_user = ct_equal(username.strip(), ADMIN_USERNAME)
    ok_pass = ct_equal(password, ADMIN_PASSWORD)
    if ok_user and ok_pass:
        request.session["admin_user"] = username.strip()
        # only local redirects
        dest = next if next and next.startswith("/") \
            and not next.startswith("//") else "/admin"
        return RedirectResponse(url=dest, status_code=HTTP_303_SEE_OTHER)
    logger.warning("failed admin login for %r", username)
    return templates.TemplateResponse(
        request,
        "admin_login.html",
        {"site_name": SITE_NAME, "next": next, "error": "Invalid credentials."},
        status_code=401,
    )


@app.get("/admin/logout")
async def admin_logout(request: Request):
    request.session.clear()
    return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)


@app.get("/admin", response_class=HTMLResponse)
async def admin_page(request: Request):
    if not is_admin(request):
        dest = request.url.path
        return RedirectResponse(
            url=f"/admin/login?next={dest}",
            status_code=307
        )
    return _page(request, "admin.html",
                 admin_user=request.session.get("admin_user"))


# ----------------------------
# Health
# ----------------------------
@app.get("/api/health")
async def health(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("health check failed: %s", e)
        return ORJSONResponse(
            {"success": False, "status": "error", "error": str(e)},
            status_code=500,
        )
    return {
        "success": True,
        "status": "ok",
        "database": db.bind.dialect.name,
        "time": to_iso(now_ts()),
    }
