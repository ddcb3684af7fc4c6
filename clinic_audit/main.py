"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from clinic_audit.config import settings
from clinic_audit.database import engine, Base, SessionLocal
from clinic_audit.api.dependencies import get_session_context
from clinic_audit.api.routes import router
# Import models to register them with SQLAlchemy Base
from clinic_audit.models.audit import AuditLog, UserRole
from clinic_audit.services.errors import record_application_error
from clinic_audit.services.recorder import EventRecorder

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Clinic Audit Log",
    description="Records user actions across the clinic application and serves the admin audit viewer.",
    version=settings.app_version
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api", tags=["Audit"])


def record_server_error(request: Request, exc: Exception) -> str:
    """Blocking: writes to the audit store or the fallback file."""
    db = SessionLocal()
    try:
        return record_application_error(
            EventRecorder(db),
            exc,
            session=get_session_context(request),
            context={"source": "server", "method": request.method, "path": request.url.path}
        )
    finally:
        db.close()


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Record the crash as a critical event, keeping a local copy if the store is down."""
    # Off the event loop: the store may be slow or unreachable when this runs
    error_id = await run_in_threadpool(record_server_error, request, exc)

    logger.error("Unhandled error %s on %s %s", error_id, request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_id": error_id}
    )


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Clinic Audit Log"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
