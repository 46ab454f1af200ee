from fastapi import FastAPI, APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError
import logging
from datetime import datetime

import config
from dependencies import Services, get_services
from exam_core import RegistrationError
from registration_routes import registration_router, school_router
from payment_routes import payment_router
from admin_routes import admin_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Public callers never see internal failure details
PUBLIC_FAILURE_MESSAGE = "Registration failed, please try again"
PUBLIC_PAYMENT_FAILURE_MESSAGE = "Payment is pending, please contact support"

# Create router with /api prefix
api_router = APIRouter(prefix="/api")


# ============================================
# PUBLIC ENDPOINTS
# ============================================

@api_router.get("/config")
async def get_public_config(services: Services = Depends(get_services)):
    """Enabled exam dates and fee tiers for the registration form"""
    exam_config = await services.exam_config.get_active()
    return {
        "success": True,
        "exam_dates": [d for d in exam_config.get("exam_dates", []) if d.get("enabled", True)],
        "pricing": exam_config.get("pricing", {}),
        "payment_enabled": services.gateway.is_available()
    }


@api_router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow(),
        "version": "1.0.0"
    }


# ============================================
# ERROR HANDLING
# ============================================

def _error_response(request: Request, status_code: int, kind: str, detail: str) -> JSONResponse:
    is_admin = getattr(request.state, "principal", None) is not None
    if status_code >= 500 and not is_admin:
        if request.url.path.startswith("/api/payment"):
            detail = PUBLIC_PAYMENT_FAILURE_MESSAGE
        else:
            detail = PUBLIC_FAILURE_MESSAGE
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": kind, "detail": detail}
    )


async def registration_error_handler(request: Request, exc: RegistrationError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc}")
    return _error_response(request, exc.http_status, exc.kind, str(exc))


async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"{request.method} {request.url.path} database error: {exc}")
    return _error_response(request, 503, "DatabaseUnavailable", "Database operation failed")


# ============================================
# APPLICATION
# ============================================

def create_app(db=None, **service_options) -> FastAPI:
    """
    Build the application.

    Tests pass their own database (and gateway/secrets through
    service_options); production connects with MONGO_URL.
    """
    client = None
    if db is None:
        client = AsyncIOMotorClient(config.MONGO_URL)
        db = client[config.DB_NAME]

    app = FastAPI(
        title="Exam Registration System",
        version="1.0.0",
        description="Exam registration with payment reconciliation"
    )
    app.state.services = Services(db, **service_options)

    app.add_exception_handler(RegistrationError, registration_error_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)

    app.include_router(api_router)
    app.include_router(registration_router)
    app.include_router(school_router)
    app.include_router(payment_router)
    app.include_router(admin_router)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def create_indexes():
        await app.state.services.store.ensure_indexes()
        if not app.state.services.gateway.is_available():
            logger.warning("[GATEWAY] Razorpay credentials not configured; payments disabled")

    @app.on_event("shutdown")
    async def shutdown_db_client():
        if client is not None:
            client.close()

    return app


app = create_app()
