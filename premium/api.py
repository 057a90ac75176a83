"""
HTTP surface for premium listings: gateway webhook, payment landing page,
expiration sweep, listing and analytics queries.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import get_settings
from .errors import (
    ActiveListingConflictError,
    AnalyticsConflictError,
    DatabaseError,
    DuplicateOrderError,
    GatewayError,
    ListingNotFoundError,
    PaymentNotFoundError,
    PlanNotFoundError,
    PremiumError,
    TerminalPaymentError,
    ValidationError,
    WebhookVerificationError,
    WorkflowStateError,
)
from .gateway import CALLBACK_TOKEN_HEADER, available_payment_methods
from .logging_config import configure_logging
from .models import AnalyticsEvent, ListingStatus
from .services import PremiumServices, build_services

logger = logging.getLogger(__name__)

SERVICE_NAME = "premium-listings"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000

ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (WebhookVerificationError, status.HTTP_401_UNAUTHORIZED),
    (PlanNotFoundError, status.HTTP_404_NOT_FOUND),
    (PaymentNotFoundError, status.HTTP_404_NOT_FOUND),
    (ListingNotFoundError, status.HTTP_404_NOT_FOUND),
    (TerminalPaymentError, status.HTTP_409_CONFLICT),
    (DuplicateOrderError, status.HTTP_409_CONFLICT),
    (ActiveListingConflictError, status.HTTP_409_CONFLICT),
    (WorkflowStateError, status.HTTP_409_CONFLICT),
    (AnalyticsConflictError, status.HTTP_409_CONFLICT),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
    (DatabaseError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


class AnalyticsEventRequest(BaseModel):
    kind: AnalyticsEvent
    source: Optional[str] = None


def get_services(request: Request) -> PremiumServices:
    return request.app.state.services


router: APIRouter = APIRouter()


@router.post("/premium/webhook", tags=["payments"])
async def invoice_webhook(
    request: Request,
    x_callback_token: Optional[str] = Header(default=None, alias=CALLBACK_TOKEN_HEADER),
    services: PremiumServices = Depends(get_services),
) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError({"payload": "Body must be JSON"})
    return await services.webhooks.handle(payload, x_callback_token)


@router.get("/payment/success", tags=["payments"])
async def payment_success(
    order_id: Optional[str] = Query(default=None),
    invoice_id: Optional[str] = Query(default=None, alias="id"),
    services: PremiumServices = Depends(get_services),
) -> Dict[str, Any]:
    result = await services.landing.verify(order_id=order_id, invoice_id=invoice_id)
    return result.to_dict()


@router.post("/premium/sweep", tags=["listings"])
async def sweep(services: PremiumServices = Depends(get_services)) -> Dict[str, Any]:
    result = await services.sweeper.sweep_expired()
    return {
        **result.to_dict(),
        "expired_count": len(result.expired),
        "activated_count": len(result.activated),
        "demoted_count": len(result.demoted),
    }


@router.get("/premium/plans", tags=["plans"])
async def list_plans(services: PremiumServices = Depends(get_services)) -> Dict[str, Any]:
    plans = await services.catalog.list_plans()
    return {
        "plans": [p.to_dict() for p in plans],
        "payment_methods": available_payment_methods(),
    }


@router.get("/premium/properties/{property_id}/listing", tags=["listings"])
async def property_listing(property_id: str, services: PremiumServices = Depends(get_services)) -> Dict[str, Any]:
    listing = await services.listings.get_active_listing(property_id)
    if listing is None:
        raise ListingNotFoundError(f"No active premium listing for property {property_id}")
    return listing.to_dict()


@router.get("/premium/users/{user_id}/listings", tags=["listings"])
async def user_listings(user_id: str, services: PremiumServices = Depends(get_services)) -> Dict[str, Any]:
    listings = await services.listings.list_user_listings(user_id)
    return {"listings": [l.to_dict() for l in listings]}


@router.get("/premium/users/{user_id}/payments", tags=["payments"])
async def user_payments(user_id: str, services: PremiumServices = Depends(get_services)) -> Dict[str, Any]:
    payments = await services.user_payments(user_id)
    return {"payments": [p.to_dict() for p in payments]}


@router.post("/premium/properties/{property_id}/events", tags=["analytics"])
async def record_event(
    property_id: str,
    event: AnalyticsEventRequest,
    services: PremiumServices = Depends(get_services),
) -> Dict[str, Any]:
    analytics = await services.analytics.record_event(property_id, event.kind)
    if analytics is not None and event.source:
        analytics = await services.analytics.record_source(property_id, event.source)
    return {
        "recorded": analytics is not None,
        "analytics": analytics.to_dict() if analytics is not None else None,
    }


@router.get("/premium/properties/{property_id}/insights", tags=["analytics"])
async def insights(property_id: str, services: PremiumServices = Depends(get_services)) -> Dict[str, Any]:
    summary = await services.analytics.insights(property_id)
    if summary is None:
        raise ListingNotFoundError(f"No active premium listing for property {property_id}")
    return summary.to_dict()


@router.get("/premium/overview", tags=["admin"])
async def overview(
    listing_status: Optional[ListingStatus] = Query(default=None, alias="status"),
    services: PremiumServices = Depends(get_services),
) -> Dict[str, Any]:
    return await services.overview(listing_status)


async def premium_error_handler(request: Request, exc: PremiumError) -> JSONResponse:
    code = status.HTTP_400_BAD_REQUEST
    for error_type, error_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            code = error_code
            break
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    body: Dict[str, Any] = {"detail": str(exc)}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    return JSONResponse(status_code=code, content=body)


def create_app(services: Optional[PremiumServices] = None) -> FastAPI:
    """Create the FastAPI application around ``services`` (built from settings when omitted)."""

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        yield
        await application.state.services.aclose()

    application = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    application.state.services = services or build_services()
    application.add_exception_handler(PremiumError, premium_error_handler)
    application.include_router(router)
    return application


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(create_app(), host=DEFAULT_HOST, port=DEFAULT_PORT)


if __name__ == "__main__":
    main()
