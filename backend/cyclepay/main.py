import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cyclepay.core.config import settings
from cyclepay.core.database import init_db
from cyclepay.core.errors import AppError
from cyclepay.routers import drivers, payment_webhooks, subscriptions

logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "Subscriptions", "description": "Driver plans, quota changes, cancellation and charges."},
    {"name": "Drivers", "description": "Driver payout key registration."},
    {"name": "Webhooks", "description": "Inbound Pix payment notifications."},
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db()
    logger.info("%s %s started", settings.APP_NAME, settings.version)
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Recurring driver subscriptions billed through Pix. "
        "Manage plans, passenger charges, payment instructions and payouts."
    ),
    openapi_tags=OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=int(exc.status_code), content=exc.to_dict())


app.include_router(subscriptions.router, prefix="/v1/drivers", tags=["Subscriptions"])
app.include_router(drivers.router, prefix="/v1/drivers", tags=["Drivers"])
app.include_router(payment_webhooks.router, prefix="/v1/webhooks", tags=["Webhooks"])


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "status": "running",
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
