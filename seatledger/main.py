"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from seatledger.api.v1.router import router as v1_router
from seatledger.config import get_settings
from seatledger.exceptions import ConflictError, ServiceError
from seatledger.redis_client import close_redis, get_redis
from seatledger.tasks import background_tasks


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting SeatLedger API...")

    # Initialize Redis connection
    await get_redis()
    logger.info("Redis connection established")

    # Start reconciliation worker and periodic tasks
    await background_tasks.start()

    yield

    # Shutdown
    logger.info("Shutting down SeatLedger API...")

    await background_tasks.stop()

    # Close Redis connection
    await close_redis()
    logger.info("Redis connection closed")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## SeatLedger API

Seat-type inventory, cart checkout and payment reconciliation.

- **Seat Ledger**: one row per seat type and event day; seats are deducted
  with a conditional update so the count never goes negative
- **Checkout**: all-or-nothing conversion of the cart into pending bookings
- **Payment Callback**: gateway notifications are stored, verified and
  reconciled asynchronously through a Redis Streams queue
- **Tickets**: one shared ticket per shop and event day, rendered as PDF with
  a QR code and e-mailed to the checkout contact

### Authentication
Endpoints require the `X-User-ID` header; `X-User-Role` defaults to `customer`.
The gateway callback at `/api/v1/payments/notify` is authenticated by its signature.

### Workflow
1. Add seats to the cart
2. Check out to create pending bookings
3. Create a payment intent and hand the signed payload to the gateway
4. Tickets are issued when the gateway reports success
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routers
    app.include_router(v1_router, prefix="/api")

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "api_versions": ["v1"],
        }

    @app.exception_handler(ServiceError)
    async def service_exception_handler(request: Request, exc: ServiceError):
        """Map domain errors to their HTTP status."""
        content = {"error": exc.error, "detail": exc.message}
        if isinstance(exc, ConflictError):
            if exc.items:
                content["items"] = exc.items
            content.update(exc.details)
        return JSONResponse(status_code=exc.status_code, content=content)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "detail": str(exc) if settings.DEBUG else None,
            },
        )

    return app


# Create application instance
app = create_app()


def run():
    """Run the application with uvicorn."""
    uvicorn.run(
        "seatledger.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
