"""FastAPI application for the resident access bridge."""

import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone

import logfire
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError

from .config import MASK, SECRET_KEYS
from .database import SessionLocal, init_db
from .errors import SyncError
from .schemas import (
    ChangeLogEntry,
    ConfigUpdate,
    DeleteResult,
    ResidentCreate,
    ResidentCredential,
    ResidentOut,
    VendorProbe,
    VisitorPass,
)
from .services import Services, build_services
from .vendor import probe_connection

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


def create_app(services: Services | None = None) -> FastAPI:
    """Build the app. Pass `services` to run against fakes (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize database and runtime config on startup."""
        if getattr(app.state, "services", None) is None:
            init_db()
            app.state.services = build_services(SessionLocal)
            app.state.services.config.seed_defaults()
        yield

    app = FastAPI(
        title="Access Bridge API",
        description="Keeps the resident registry in sync with the access-control platform",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.started_at = time.monotonic()

    # Configure Logfire for observability (after app creation)
    if os.getenv("LOGFIRE_TOKEN"):
        logfire.configure()
        logfire.instrument_fastapi(app)
        logfire.instrument_httpx()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError):
        logger.warning(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    _register_routes(app)
    return app


def get_services(request: Request) -> Services:
    return request.app.state.services


# =============================================================================
# Admin auth
# =============================================================================

# Simple bearer token auth for admin endpoints
security = HTTPBearer(auto_error=False)


async def verify_admin(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Verify admin bearer token."""
    admin_token = os.getenv("ADMIN_TOKEN")
    if not credentials:
        raise HTTPException(status_code=401, detail="Admin token required")
    if not admin_token or credentials.credentials != admin_token:
        raise HTTPException(status_code=403, detail="Invalid admin token")
    return True


def _register_routes(app: FastAPI) -> None:

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "Access Bridge API"}

    # =========================================================================
    # Residents
    # =========================================================================

    @app.get("/residents", response_model=list[ResidentOut])
    async def get_residents(
        owner_id: str | None = Query(default=None, max_length=50),
        email: str | None = Query(default=None, max_length=255),
        community: str | None = Query(default=None, max_length=50),
        services: Services = Depends(get_services),
    ):
        """Get one resident by owner_id or email, or all residents."""
        return services.residents.get_residents(owner_id=owner_id, email=email, community=community)

    @app.post("/residents", response_model=ResidentOut, status_code=201)
    async def create_resident(body: ResidentCreate, services: Services = Depends(get_services)):
        """Create a resident on the vendor, then locally."""
        return await services.residents.create(body)

    @app.delete("/residents", response_model=DeleteResult)
    async def delete_resident(
        owner_id: str = Query(max_length=50),
        unit_id: str | None = Query(default=None, max_length=50),
        services: Services = Depends(get_services),
    ):
        """Soft delete a resident. Vendor failure is recorded, not escalated."""
        return await services.residents.delete(owner_id)

    # =========================================================================
    # Credentials
    # =========================================================================

    @app.get("/identity", response_model=ResidentCredential)
    async def get_identity(
        owner_id: str = Query(max_length=50),
        unit_id: str | None = Query(default=None, max_length=50),
        services: Services = Depends(get_services),
    ):
        """Dynamic QR code for a synced resident."""
        return await services.identity.issue_resident_credential(owner_id, unit_id)

    @app.get("/visitor-qr", response_model=VisitorPass)
    async def get_visitor_qr(
        owner_id: str = Query(max_length=50),
        visitor_name: str = Query(min_length=2, max_length=100),
        visit_date: date = Query(),
        unit_id: str | None = Query(default=None, max_length=50),
        services: Services = Depends(get_services),
    ):
        """Register a visitor for a host resident and return its QR code."""
        return await services.identity.issue_visitor_credential(
            owner_id, visitor_name, visit_date, unit_id
        )

    @app.get("/vendor/version", response_model=VendorProbe)
    async def vendor_version(services: Services = Depends(get_services)):
        """Test the connection to the access-control platform."""
        return await probe_connection(services.vendor)

    # =========================================================================
    # ADMIN API: runtime configuration and audit trail
    # =========================================================================

    @app.get("/admin/config", dependencies=[Depends(verify_admin)])
    async def get_config(services: Services = Depends(get_services)):
        """All runtime configuration, secrets masked."""
        config = services.config.all()
        for key in SECRET_KEYS & config.keys():
            config[key]["value"] = MASK
        return {"success": True, "config": config}

    @app.put("/admin/config", dependencies=[Depends(verify_admin)])
    async def update_config(body: ConfigUpdate, services: Services = Depends(get_services)):
        """Update one key. Takes effect on the next vendor call."""
        services.config.set(body.key, body.value, body.type, body.description, changed_by="admin")
        return {"success": True, "message": "Configuration updated successfully"}

    @app.post("/admin/config/reload", dependencies=[Depends(verify_admin)])
    async def reload_config(services: Services = Depends(get_services)):
        """Drop cached configuration so database edits are picked up."""
        services.config.invalidate()
        return {"success": True, "message": "Configuration cache cleared"}

    @app.get("/admin/health", dependencies=[Depends(verify_admin)])
    async def admin_health(request: Request, services: Services = Depends(get_services)):
        """Service health: configuration and audit trail are readable."""
        try:
            config_keys = len(services.config.all())
            recent_changes = len(services.residents.recent_changes(limit=10))
        except SQLAlchemyError as e:
            logger.exception("Health check failed")
            return JSONResponse(
                status_code=500,
                content={"success": False, "health": {"status": "unhealthy", "error": str(e)}},
            )
        return {
            "success": True,
            "health": {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime_seconds": round(time.monotonic() - request.app.state.started_at, 1),
                "config_keys": config_keys,
                "recent_changes": recent_changes,
            },
        }

    @app.get("/admin/audit", response_model=list[ChangeLogEntry], dependencies=[Depends(verify_admin)])
    async def get_audit(
        limit: int = Query(default=100, ge=1, le=1000),
        change_type: str | None = Query(default=None),
        services: Services = Depends(get_services),
    ):
        """Recent audit rows; change_type=inconsistency lists orphans to reconcile."""
        return services.residents.recent_changes(limit=limit, change_type=change_type)


app = create_app()
