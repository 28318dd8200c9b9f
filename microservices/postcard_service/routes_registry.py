"""
Postcard Service Routes Registry

Service metadata and route listing, served from /api/v1/postcards/info.
"""

SERVICE_METADATA = {
    "service_name": "postcard_service",
    "version": "1.0.0",
    "tags": ["postcard", "direct-mail", "v1"],
    "capabilities": [
        "postcard_campaigns",
        "recipient_suppression",
        "mail_dispatch",
        "delivery_tracking",
    ],
}

ROUTES = [
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": "/health/ready", "methods": ["GET"], "description": "Readiness check"},
    {"path": "/health/live", "methods": ["GET"], "description": "Liveness check"},
    {"path": "/api/v1/postcards/settings", "methods": ["GET", "PUT"], "description": "Tenant mail settings"},
    {"path": "/api/v1/postcards/campaigns", "methods": ["GET", "POST"], "description": "List/create campaigns"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}", "methods": ["GET", "PATCH", "DELETE"], "description": "Campaign CRUD"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/estimate", "methods": ["POST"], "description": "Estimate postage"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/send", "methods": ["POST"], "description": "Send now"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/schedule", "methods": ["POST"], "description": "Schedule campaign"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/unschedule", "methods": ["POST"], "description": "Return to draft"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/cancel", "methods": ["POST"], "description": "Cancel scheduled campaign"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/preview", "methods": ["POST"], "description": "Artwork preview"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/suppression/reevaluate", "methods": ["POST"], "description": "Re-run suppression"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/recipients", "methods": ["GET", "POST"], "description": "List/add recipients"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/recipients/import", "methods": ["POST"], "description": "Bulk import"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/recipients/import-profiles", "methods": ["POST"], "description": "Import from profiles"},
    {"path": "/api/v1/postcards/campaigns/{campaign_id}/recipients/{recipient_id}", "methods": ["DELETE"], "description": "Remove recipient"},
    {"path": "/api/v1/postcards/recipients/{recipient_id}/validate-address", "methods": ["POST"], "description": "Verify address"},
    {"path": "/api/v1/postcards/recipients/{recipient_id}/reset", "methods": ["POST"], "description": "Reset failed recipient"},
    {"path": "/api/v1/postcards/recipients/{recipient_id}/retry", "methods": ["POST"], "description": "Retry failed recipient"},
    {"path": "/api/v1/postcards/suppression-list", "methods": ["GET", "POST"], "description": "Do-not-mail list"},
    {"path": "/api/v1/postcards/suppression-list/check", "methods": ["GET"], "description": "Do-not-mail membership"},
    {"path": "/api/v1/postcards/suppression-list/{entry_id}", "methods": ["DELETE"], "description": "Remove DNM entry"},
    {"path": "/api/v1/postcards/vendor-logs", "methods": ["GET"], "description": "Vendor API log"},
    {"path": "/api/v1/postcards/vendor-logs/stats", "methods": ["GET"], "description": "Vendor API statistics"},
    {"path": "/internal/postcards/dispatch/{campaign_id}", "methods": ["POST"], "description": "Dispatch trigger"},
    {"path": "/internal/postcards/reconcile", "methods": ["POST"], "description": "Reconcile trigger"},
]


def get_route_summary():
    """Route metadata for the info endpoint"""
    return {
        "route_count": len(ROUTES),
        "routes": [r["path"] for r in ROUTES],
        "api_version": "v1",
        "base_path": "/api/v1/postcards",
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "get_route_summary"]
