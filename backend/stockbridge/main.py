"""
StockBridge - Main FastAPI Application
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stockbridge.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Square POS inventory cutover: cost extraction, review and opening balance migration",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.on_event("startup")
def run_schema_migrations():
    """Apply missing database/migrations/*.sql before serving requests."""
    try:
        from stockbridge.services.schema_migration_service import run_startup_migrations
        run_startup_migrations()
    except Exception as e:
        logger.exception("Startup migrations failed: %s", e)


# Import and include routers
from stockbridge.api import cutover_router, suppliers_router

app.include_router(cutover_router, prefix="/admin/inventory/cutover", tags=["Inventory Cutover"])
app.include_router(suppliers_router, prefix="/admin/inventory/cutover/suppliers", tags=["Suppliers"])
