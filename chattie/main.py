"""
Chattie Service - Main FastAPI Application

Answers customers on WhatsApp and email with AI-drafted replies:
- Webhooks for inbound WhatsApp messages (Twilio / Unipile)
- Email poller for new customer mail and owner approval replies
- Follow-up poller for unanswered call attempts
- Admin API for the dashboard
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from chattie import __version__
from chattie.admin import router as admin_router
from chattie.config import load_settings_or_exit
from chattie.models import (
    AlreadyResolvedError,
    ChattieError,
    DeliveryError,
    HealthCheckResponse,
    NotFoundError,
    utc_now,
)
from chattie.scheduler import Scheduler
from chattie.services import Services, build_services
from chattie.webhooks import gmail_router, whatsapp_router

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_scheduler(services: Services) -> Scheduler:
    """Register the interval pollers for the configured channels"""
    settings = services.settings
    scheduler = Scheduler()

    if services.email:
        scheduler.add("email polling", services.check_email, settings.email_poll_interval)
    else:
        logger.info("Email polling disabled (no mailbox configured)")

    scheduler.add("follow-up check", services.follow_up.run_due_follow_ups, settings.follow_up_poll_interval)
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown"""
    logger.info("Starting Chattie service...")

    services = getattr(app.state, "services", None)
    if services is None:
        services = build_services(load_settings_or_exit())
    settings = services.settings
    logging.getLogger().setLevel(settings.log_level.upper())

    try:
        services.db.init_tables()
        services.db.check_connection()
    except SQLAlchemyError as e:
        logger.critical(f"Database unreachable: {e}")
        sys.exit(1)

    app.state.services = services
    scheduler = create_scheduler(services)
    scheduler.start()

    logger.info(f"Chattie service started (mode: {settings.response_mode.value})")

    yield

    logger.info("Shutting down Chattie service...")
    # In-flight ticks finish on their own; only future ticks are cancelled
    scheduler.stop()
    services.db.close()
    logger.info("Chattie service stopped")


app = FastAPI(
    title="Chattie",
    description="AI-assisted WhatsApp and email replies with owner approval",
    version=__version__,
    lifespan=lifespan
)

app.include_router(whatsapp_router)
app.include_router(gmail_router)
app.include_router(admin_router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in error["loc"] if part != "body"), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation error", "details": details})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(AlreadyResolvedError)
async def already_resolved_handler(request: Request, exc: AlreadyResolvedError):
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(DeliveryError)
async def delivery_error_handler(request: Request, exc: DeliveryError):
    return JSONResponse(status_code=502, content={"error": str(exc)})


@app.exception_handler(ChattieError)
async def chattie_error_handler(request: Request, exc: ChattieError):
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Error handling {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request):
    """
    Health check endpoint

    Returns service status and the active response mode
    """
    settings = request.app.state.services.settings
    return HealthCheckResponse(
        status="ok",
        mode=settings.response_mode,
        timestamp=utc_now(),
    )


def run():
    """Console entry point"""
    import uvicorn

    settings = load_settings_or_exit()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
