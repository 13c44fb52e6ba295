import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docsign.config import get_settings
from docsign.create_tables import create_tables
from docsign.logging_config import configure_logging
from docsign.modules.auth.controllers.auth_controller import router as auth_router
from docsign.modules.documents.controllers.document_controller import router as document_router
from docsign.modules.documents.controllers.multi_signature_controller import router as multi_signature_router
from docsign.modules.documents.controllers.verification_controller import router as verification_router
from docsign.modules.documents.errors import DocSignError
from docsign.modules.documents.job.scheduler import start_background_jobs
from docsign.modules.notifications.controllers.notification_controller import router as notification_router

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_format)
    logger.info("Starting %s v%s (%s)", settings.app_name, settings.app_version, settings.environment)
    create_tables()

    scheduler = None
    if settings.enable_background_jobs:
        scheduler = start_background_jobs()
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    logger.info("Application stopped")


app = FastAPI(
    title=settings.app_name,
    description="Document upload, signing, multi-signer coordination and verification",
    version=settings.app_version,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Accept", "Content-Type", "Authorization", "X-Requested-With", "Origin"],
    max_age=86400,
)


@app.exception_handler(DocSignError)
async def docsign_error_handler(request: Request, exc: DocSignError):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed: %s",
        exc.message,
        extra={"error_code": exc.error_code, "path": request.url.path, "status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "message": exc.message, "details": exc.details},
    )


# Routers
app.include_router(auth_router)
app.include_router(notification_router, prefix="/notifications", tags=["notifications"])
app.include_router(document_router)
app.include_router(multi_signature_router)
app.include_router(verification_router)


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok", "version": settings.app_version}


if __name__ == "__main__":
    uvicorn.run("docsign.main:app", host="0.0.0.0", port=8000, reload=True)
