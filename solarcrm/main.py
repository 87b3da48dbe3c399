import os
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
import structlog

from .config import settings
from .db import Base, engine, SessionLocal
from .errors import LoginRequired
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.leads import router as leads_router
from .routes.projects import router as projects_router
from .routes.landing import router as landing_router
from .routes.sales import router as sales_router
from .routes.admin import router as admin_router
from .services import email_templates, permissions


def seed_defaults() -> None:
    """Roles, grants and default e-mail templates; safe to run on every start."""
    db = SessionLocal()
    try:
        created = permissions.seed_roles(db)
        templates = email_templates.seed_templates(db)
        db.commit()
        structlog.get_logger().info("seed_completed", templates=templates, **created)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(LoginRequired)
    async def _login_redirect(request: Request, exc: LoginRequired):
        return RedirectResponse(url=exc.login_path, status_code=303)

    # Routers
    app.include_router(auth_router)
    app.include_router(leads_router)
    app.include_router(projects_router)
    app.include_router(landing_router)
    app.include_router(sales_router)
    app.include_router(admin_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    def _startup():
        log = structlog.get_logger()
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("startup_tables_verified")
            seed_defaults()

    return app


app = create_app()
