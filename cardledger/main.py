"""
CardLedger - Card Identification and Consensus Catalog

Main application entry point.

Run with: uvicorn cardledger.main:app
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api import auth_router, install_error_handlers, moderation_router, sync_router
from .config import AuthorityConfig
from .core.authority import CentralAuthority
from .db import StoreConfig, create_store
from .observability import (
    RequestContextMiddleware,
    check_health,
    get_logger,
    get_metrics,
    setup_logging,
)
from .seed import seed_demo_catalog

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)


def build_authority() -> CentralAuthority:
    """Authority wired from environment configuration."""
    config = AuthorityConfig.from_env()
    store_config = StoreConfig.from_env()
    authority = CentralAuthority(store=create_store(store_config), config=config)
    if config.seed_demo_data:
        seed_demo_catalog(authority)
        logger.info("Demo catalog seeded")
    logger.info("Authority created", store_driver=store_config.driver.value)
    return authority


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    if getattr(app.state, "authority", None) is None:
        app.state.authority = build_authority()
    authority: CentralAuthority = app.state.authority

    # Verify audit chain integrity on startup
    if authority.audit.count() > 0:
        if authority.audit.verify_chain():
            logger.info("Audit chain verified OK", entry_count=authority.audit.count())
        else:
            logger.error("Audit chain integrity check FAILED!")

    logger.info("Application startup complete", version=__version__)
    yield
    logger.info("Application shutdown complete")


def create_app(authority: Optional[CentralAuthority] = None) -> FastAPI:
    """
    Build the FastAPI app. Pass an authority to share one with the caller
    (tests); otherwise one is created from the environment on startup.
    """
    app = FastAPI(
        title="CardLedger",
        description="""
## Card identification with a consensus-moderated catalog

Devices scan cards offline against a local catalog snapshot and queue
observations, proposals and drafts. This service is the central authority:

- **Sync**: pull canonical deltas, push queued items, download signed snapshots
- **Consensus**: independent observations become claims; strong claims apply themselves
- **Moderation**: proposals, drafts and open claims are decided by moderators
- **History**: every record change is versioned and audited in a hash chain
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    if authority is not None:
        app.state.authority = authority

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",  # Vite dev server
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_error_handlers(app)
    app.include_router(auth_router)
    app.include_router(sync_router)
    app.include_router(moderation_router)

    @app.get("/health", tags=["System"])
    def health():
        """Liveness only."""
        return {"status": "healthy", "service": "cardledger"}

    @app.get("/health/detailed", tags=["System"])
    def health_detailed(request: Request):
        """
        Checks:
        - Service liveness
        - Store reachability
        - Audit chain integrity

        Returns 200 if healthy, 503 if unhealthy.
        """
        status = check_health(authority=request.app.state.authority)
        return JSONResponse(
            status_code=200 if status.healthy else 503,
            content={
                "status": "healthy" if status.healthy else "unhealthy",
                "checks": status.checks,
                "duration_ms": status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    def metrics():
        """Counters and latency percentiles."""
        return get_metrics().get_summary()

    return app


app = create_app()
