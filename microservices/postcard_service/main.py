"""
Postcard Service Main Application

FastAPI application for postcard campaigns: campaign and recipient
management, suppression list, sending and delivery tracking.
Port: 8290
"""

import logging
import time
import traceback
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from core.config import LoggingConfig, get_settings, setup_logging
from core.config_manager import ConfigManager

from .factory import PostcardServiceFactory
from .models import (
    ArtworkPreviewRequest,
    ArtworkPreviewResponse,
    CampaignCreateRequest,
    CampaignListResponse,
    CampaignResponse,
    CampaignStatus,
    CampaignUpdateRequest,
    CostEstimate,
    DispatchResult,
    HealthResponse,
    ImportResult,
    LivenessResponse,
    ProfileImportRequest,
    ReadinessResponse,
    ReconcileResult,
    Recipient,
    RecipientCreateRequest,
    RecipientImportRequest,
    RecipientListResponse,
    RecipientStatus,
    ScheduleRequest,
    SuppressionCheckResponse,
    SuppressionEntryCreateRequest,
    SuppressionEntryListResponse,
    SuppressionListEntry,
    TenantSettings,
    TenantSettingsUpdateRequest,
    VendorLogListResponse,
    VendorLogStats,
)
from .protocols import (
    BillingError,
    CampaignNotFoundError,
    CampaignValidationError,
    DispatchInProgressError,
    DispatchSetupError,
    DuplicateSuppressionEntryError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotEditableError,
    NotSendableError,
    PostcardServiceError,
    RecipientNotFoundError,
    RecipientValidationError,
    SuppressionEntryNotFoundError,
    SuppressionEntryValidationError,
    VendorError,
)
from .routes_registry import SERVICE_METADATA, get_route_summary

logger = logging.getLogger(__name__)

# Service configuration
SERVICE_NAME = "postcard_service"
SERVICE_PORT = get_settings().service_port
SERVICE_VERSION = SERVICE_METADATA["version"]

# Track startup time for uptime calculation
startup_time = time.time()

# Global factory instance
factory: Optional[PostcardServiceFactory] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global factory

    logger.info(f"Starting {SERVICE_NAME} on port {SERVICE_PORT}")

    config = ConfigManager(SERVICE_NAME)
    factory = PostcardServiceFactory(config)
    await factory.initialize()

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")
    await factory.close()
    factory = None


# Create FastAPI application
app = FastAPI(
    title="Postcard Service",
    description="Direct-mail postcard campaigns: recipients, suppression, dispatch and tracking",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# ====================
# Exception Handlers
# ====================


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": type(exc).__name__, **extra},
    )


@app.exception_handler(CampaignNotFoundError)
@app.exception_handler(RecipientNotFoundError)
@app.exception_handler(SuppressionEntryNotFoundError)
async def not_found_handler(request: Request, exc: PostcardServiceError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(NotEditableError)
@app.exception_handler(InvalidTransitionError)
@app.exception_handler(DuplicateSuppressionEntryError)
@app.exception_handler(DispatchInProgressError)
async def conflict_handler(request: Request, exc: PostcardServiceError):
    return _error(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(NotSendableError)
async def not_sendable_handler(request: Request, exc: NotSendableError):
    return _error(status.HTTP_409_CONFLICT, exc, reasons=exc.reasons)


@app.exception_handler(RecipientValidationError)
async def recipient_validation_handler(request: Request, exc: RecipientValidationError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc, field=exc.field)


@app.exception_handler(CampaignValidationError)
@app.exception_handler(SuppressionEntryValidationError)
@app.exception_handler(DispatchSetupError)
async def validation_error_handler(request: Request, exc: PostcardServiceError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)


@app.exception_handler(InsufficientBalanceError)
async def insufficient_balance_handler(request: Request, exc: InsufficientBalanceError):
    return _error(status.HTTP_402_PAYMENT_REQUIRED, exc, required_cents=exc.required_cents)


@app.exception_handler(VendorError)
async def vendor_error_handler(request: Request, exc: VendorError):
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": exc.user_message, "type": "VendorError", "cause": exc.cause.value},
    )


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    return _error(status.HTTP_502_BAD_GATEWAY, exc)


@app.exception_handler(PostcardServiceError)
async def service_error_handler(request: Request, exc: PostcardServiceError):
    return _error(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler"""
    logger.error(f"Unhandled exception: {exc}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "type": type(exc).__name__},
    )


# ====================
# Dependencies
# ====================


def get_factory_instance() -> PostcardServiceFactory:
    if not factory:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return factory


def get_service(f: PostcardServiceFactory = Depends(get_factory_instance)):
    """Get campaign service from factory"""
    return f.service


def get_dispatcher(f: PostcardServiceFactory = Depends(get_factory_instance)):
    return f.dispatcher


def get_auth_context(request: Request) -> dict:
    """Extract auth context from request headers"""
    return {
        "user_id": request.headers.get("X-User-ID", "system"),
        "organization_id": request.headers.get("X-Organization-ID"),
        "role": request.headers.get("X-User-Role", "user"),
    }


def get_organization_id(auth: dict = Depends(get_auth_context)) -> str:
    """Tenant scope for every postcard call"""
    if not auth["organization_id"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-ID header is required",
        )
    return auth["organization_id"]


# ====================
# Health Endpoints
# ====================


@app.get("/api/v1/postcards/health", response_model=HealthResponse, tags=["Health"])
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    dependencies = {}

    if factory:
        try:
            db_healthy = await factory.repository.health_check()
            dependencies["postgres"] = "healthy" if db_healthy else "unhealthy"
        except Exception:
            dependencies["postgres"] = "unhealthy"

        if factory.nats_client:
            dependencies["nats"] = "healthy" if factory.nats_client.is_connected else "unhealthy"
        else:
            dependencies["nats"] = "not_configured"

        dependencies["lob"] = "configured" if factory.lob_client.is_configured else "not_configured"

    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        dependencies=dependencies,
    )


@app.get("/health/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check():
    """Readiness check endpoint"""
    checks = {}
    details = {}

    if factory:
        try:
            db_healthy = await factory.repository.health_check()
            checks["database"] = db_healthy
            details["database"] = "Connected" if db_healthy else "Connection failed"
        except Exception as e:
            checks["database"] = False
            details["database"] = str(e)

        if factory.nats_client:
            checks["nats"] = factory.nats_client.is_connected
            details["nats"] = "Connected" if factory.nats_client.is_connected else "Disconnected"
        else:
            checks["nats"] = True  # Optional
            details["nats"] = "Not configured (optional)"
    else:
        checks["factory"] = False
        details["factory"] = "Factory not initialized"

    ready = all(checks.get(k, False) for k in ["database"])

    return ReadinessResponse(ready=ready, checks=checks, details=details)


@app.get("/health/live", response_model=LivenessResponse, tags=["Health"])
async def liveness_check():
    """Liveness check endpoint"""
    return LivenessResponse(alive=True, uptime_seconds=time.time() - startup_time)


@app.get("/api/v1/postcards/info", tags=["Health"])
async def service_info():
    return {**SERVICE_METADATA, **get_route_summary()}


# ====================
# Tenant Settings
# ====================


@app.get("/api/v1/postcards/settings", response_model=TenantSettings, tags=["Settings"])
async def get_tenant_settings(
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.get_tenant_settings(organization_id)


@app.put("/api/v1/postcards/settings", response_model=TenantSettings, tags=["Settings"])
async def update_tenant_settings(
    request: TenantSettingsUpdateRequest,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.update_tenant_settings(organization_id, request)


# ====================
# Campaign Endpoints
# ====================


@app.post(
    "/api/v1/postcards/campaigns",
    response_model=CampaignResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Campaigns"],
)
async def create_campaign(
    request: CampaignCreateRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
    organization_id: str = Depends(get_organization_id),
):
    """Create a campaign in draft status"""
    campaign = await service.create_campaign(
        request=request,
        organization_id=organization_id,
        created_by=auth["user_id"],
    )
    return CampaignResponse.from_campaign(campaign)


@app.get("/api/v1/postcards/campaigns", response_model=CampaignListResponse, tags=["Campaigns"])
async def list_campaigns(
    status_filter: Optional[List[CampaignStatus]] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    campaigns, total = await service.list_campaigns(organization_id, status_filter, limit, offset)
    return CampaignListResponse(campaigns=campaigns, total=total, limit=limit, offset=offset)


@app.get("/api/v1/postcards/campaigns/{campaign_id}", response_model=CampaignResponse, tags=["Campaigns"])
async def get_campaign(
    campaign_id: str,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    campaign = await service.get_campaign(campaign_id, organization_id)
    return CampaignResponse.from_campaign(campaign)


@app.patch("/api/v1/postcards/campaigns/{campaign_id}", response_model=CampaignResponse, tags=["Campaigns"])
async def update_campaign(
    campaign_id: str,
    request: CampaignUpdateRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
    organization_id: str = Depends(get_organization_id),
):
    """Update a draft campaign"""
    campaign = await service.update_campaign(
        campaign_id, request, organization_id, updated_by=auth["user_id"]
    )
    return CampaignResponse.from_campaign(campaign)


@app.delete(
    "/api/v1/postcards/campaigns/{campaign_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Campaigns"],
)
async def delete_campaign(
    campaign_id: str,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    await service.delete_campaign(campaign_id, organization_id)


@app.post(
    "/api/v1/postcards/campaigns/{campaign_id}/estimate",
    response_model=CostEstimate,
    tags=["Campaigns"],
)
async def estimate_cost(
    campaign_id: str,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.estimate_cost(campaign_id, organization_id)


@app.post(
    "/api/v1/postcards/campaigns/{campaign_id}/send",
    response_model=CampaignResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Campaigns"],
)
async def send_campaign(
    campaign_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
    organization_id: str = Depends(get_organization_id),
):
    """Queue the campaign for dispatch and return immediately"""
    campaign = await service.send_now(campaign_id, organization_id, requested_by=auth["user_id"])
    return CampaignResponse.from_campaign(campaign)


@app.post(
    "/api/v1/postcards/campaigns/{campaign_id}/schedule",
    response_model=CampaignResponse,
    tags=["Campaigns"],
)
async def schedule_campaign(
    campaign_id: str,
    request: ScheduleRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
    organization_id: str = Depends(get_organization_id),
):
    campaign = await service.schedule(
        campaign_id, request.scheduled_at, organization_id, actor=auth["user_id"]
    )
    return CampaignResponse.from_campaign(campaign)


@app.post(
    "/api/v1/postcards/campaigns/{campaign_id}/unschedule",
    response_model=CampaignResponse,
    tags=["Campaigns"],
)
async def unschedule_campaign(
    campaign_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
    organization_id: str = Depends(get_organization_id),
):
    campaign = await service.unschedule(campaign_id, organization_id, actor=auth["user_id"])
    return CampaignResponse.from_campaign(campaign)


@app.post(
    "/api/v1/postcards/campaigns/{campaign_id}/cancel",
    response_model=CampaignResponse,
    tags=["Campaigns"],
)
async def cancel_campaign(
    campaign_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
    organization_id: str = Depends(get_organization_id),
):
    campaign = await service.cancel(campaign_id, organization_id, actor=auth["user_id"])
    return CampaignResponse.from_campaign(campaign)


@app.post(
    "/api/v1/postcards/campaigns/{campaign_id}/preview",
    response_model=ArtworkPreviewResponse,
    tags=["Campaigns"],
)
async def preview_artwork(
    campaign_id: str,
    request: ArtworkPreviewRequest,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.preview_artwork(campaign_id, request, organization_id)


@app.post("/api/v1/postcards/campaigns/{campaign_id}/suppression/reevaluate", tags=["Campaigns"])
async def reevaluate_suppression(
    campaign_id: str,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.reevaluate_suppression(campaign_id, organization_id)


# ====================
# Recipient Endpoints
# ====================


@app.post(
    "/api/v1/postcards/campaigns/{campaign_id}/recipients",
    response_model=Recipient,
    status_code=status.HTTP_201_CREATED,
    tags=["Recipients"],
)
async def add_recipient(
    campaign_id: str,
    request: RecipientCreateRequest,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.add_recipient(campaign_id, request, organization_id)


@app.post(
    "/api/v1/postcards/campaigns/{campaign_id}/recipients/import",
    response_model=ImportResult,
    tags=["Recipients"],
)
async def import_recipients(
    campaign_id: str,
    request: RecipientImportRequest,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.import_recipients(campaign_id, request.rows, organization_id)


@app.post(
    "/api/v1/postcards/campaigns/{campaign_id}/recipients/import-profiles",
    response_model=ImportResult,
    tags=["Recipients"],
)
async def import_from_profiles(
    campaign_id: str,
    request: ProfileImportRequest,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.import_from_profiles(campaign_id, request.profile_ids, organization_id)


@app.get(
    "/api/v1/postcards/campaigns/{campaign_id}/recipients",
    response_model=RecipientListResponse,
    tags=["Recipients"],
)
async def list_recipients(
    campaign_id: str,
    status_filter: Optional[List[RecipientStatus]] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    recipients, total = await service.list_recipients(
        campaign_id, organization_id, status_filter, limit, offset
    )
    return RecipientListResponse(recipients=recipients, total=total)


@app.delete(
    "/api/v1/postcards/campaigns/{campaign_id}/recipients/{recipient_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Recipients"],
)
async def remove_recipient(
    campaign_id: str,
    recipient_id: str,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    await service.remove_recipient(campaign_id, recipient_id, organization_id)


@app.post(
    "/api/v1/postcards/recipients/{recipient_id}/validate-address",
    response_model=Recipient,
    tags=["Recipients"],
)
async def validate_recipient_address(
    recipient_id: str,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.validate_recipient_address(recipient_id, organization_id)


@app.post("/api/v1/postcards/recipients/{recipient_id}/reset", response_model=Recipient, tags=["Recipients"])
async def reset_recipient(
    recipient_id: str,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.reset_recipient(recipient_id, organization_id)


@app.post("/api/v1/postcards/recipients/{recipient_id}/retry", response_model=Recipient, tags=["Recipients"])
async def retry_recipient(
    recipient_id: str,
    dispatcher=Depends(get_dispatcher),
    organization_id: str = Depends(get_organization_id),
):
    return await dispatcher.retry_recipient(recipient_id, organization_id)


# ====================
# Suppression List Endpoints
# ====================


@app.post(
    "/api/v1/postcards/suppression-list",
    response_model=SuppressionListEntry,
    status_code=status.HTTP_201_CREATED,
    tags=["Suppression"],
)
async def add_suppression_entry(
    request: SuppressionEntryCreateRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
    organization_id: str = Depends(get_organization_id),
):
    return await service.add_suppression_entry(organization_id, request, created_by=auth["user_id"])


@app.get(
    "/api/v1/postcards/suppression-list",
    response_model=SuppressionEntryListResponse,
    tags=["Suppression"],
)
async def list_suppression_entries(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    entries, total = await service.list_suppression_entries(organization_id, limit, offset)
    return SuppressionEntryListResponse(entries=entries, total=total)


@app.get(
    "/api/v1/postcards/suppression-list/check",
    response_model=SuppressionCheckResponse,
    tags=["Suppression"],
)
async def check_suppressed(
    email: Optional[str] = None,
    address_line1: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    zip_code: Optional[str] = None,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    entry = await service.check_suppressed(
        organization_id,
        email=email,
        address_line1=address_line1,
        city=city,
        state=state,
        zip_code=zip_code,
    )
    return SuppressionCheckResponse(suppressed=entry is not None, entry=entry)


@app.delete(
    "/api/v1/postcards/suppression-list/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Suppression"],
)
async def remove_suppression_entry(
    entry_id: str,
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    await service.remove_suppression_entry(organization_id, entry_id)


# ====================
# Vendor Log Endpoints
# ====================


@app.get("/api/v1/postcards/vendor-logs", response_model=VendorLogListResponse, tags=["Vendor"])
async def list_vendor_logs(
    campaign_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    logs = await service.list_vendor_logs(organization_id, campaign_id, limit, offset)
    return VendorLogListResponse(logs=logs, limit=limit, offset=offset)


@app.get("/api/v1/postcards/vendor-logs/stats", response_model=VendorLogStats, tags=["Vendor"])
async def vendor_log_stats(
    service=Depends(get_service),
    organization_id: str = Depends(get_organization_id),
):
    return await service.get_vendor_log_stats(organization_id)


# ====================
# Internal Task Triggers
# ====================


@app.post(
    "/internal/postcards/dispatch/{campaign_id}",
    response_model=DispatchResult,
    tags=["Internal"],
)
async def trigger_dispatch(campaign_id: str, dispatcher=Depends(get_dispatcher)):
    """Called by task_service for queued dispatches"""
    return await dispatcher.dispatch(campaign_id)


@app.post("/internal/postcards/reconcile", response_model=ReconcileResult, tags=["Internal"])
async def trigger_reconcile(f: PostcardServiceFactory = Depends(get_factory_instance)):
    """Called by task_service on the reconcile schedule"""
    return await f.reconciler.reconcile()


# ====================
# Main Entry Point
# ====================


def main():
    """Run the service"""
    import uvicorn

    setup_logging(LoggingConfig.from_env())
    uvicorn.run(
        "microservices.postcard_service.main:app",
        host="0.0.0.0",
        port=SERVICE_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()
