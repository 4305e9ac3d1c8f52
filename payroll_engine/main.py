from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from payroll_engine.core.config import settings
from payroll_engine.core.database import engine, Base
from payroll_engine.core.error_handlers import register_error_handlers
from payroll_engine.core.logging_config import init_logging
from payroll_engine.core.middleware import add_middleware
from payroll_engine.core.redis_service import get_cache_service
from payroll_engine.employees.routes import router as employees_router
from payroll_engine.compensation.routes import router as compensation_router
from payroll_engine.attendance.routes import router as attendance_router
from payroll_engine.payrolls.routes import router as payroll_router

init_logging()
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Payroll computation and compensation snapshot engine",
    version="1.0.0",
    debug=settings.debug
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register error handlers
register_error_handlers(app)

# Add middleware
add_middleware(app)

# Include routers
app.include_router(employees_router, prefix="/api/v1")
app.include_router(compensation_router, prefix="/api/v1")
app.include_router(attendance_router, prefix="/api/v1")
app.include_router(payroll_router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    """Initialize database tables on startup."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        if settings.enable_redis_cache and not get_cache_service().is_available():
            logger.warning("Redis not available, compensation previews will not be cached")
    except Exception as e:
        logger.error(f"Error during startup: {e}")
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Application shutting down...")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Payroll Computation & Snapshot Engine API",
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "employees": "/api/v1/employees",
            "compensation": "/api/v1/compensation",
            "attendance": "/api/v1/attendance",
            "payroll": "/api/v1/payroll"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "message": "API is running",
        "redis": get_cache_service().health_check() if settings.enable_redis_cache else "disabled"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "payroll_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
