import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cashier.core.config import settings
from cashier.core.database import init_db
from cashier.core.exceptions import BillingError
from cashier.routers import owners, subscriptions, webhooks

logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "Owners", "description": "Billable owners, payment methods, coupons and invoices."},
    {"name": "Subscriptions", "description": "Create, cancel, resume and swap subscriptions."},
    {"name": "Webhooks", "description": "Inbound gateway notifications."},
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db()
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Subscription billing on top of a hosted payment gateway. "
        "The gateway is the system of record; this service mirrors subscription "
        "state locally and reconciles it from gateway webhooks."
    ),
    openapi_tags=OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(owners.router, prefix="/v1/owners", tags=["Owners"])
app.include_router(subscriptions.router, prefix="/v1/subscriptions", tags=["Subscriptions"])
app.include_router(webhooks.router, prefix="/v1/webhooks", tags=["Webhooks"])


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "domain": settings.APP_DOMAIN,
        "status": "running",
    }
