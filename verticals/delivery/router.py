"""Delivery API router: storefront estimate endpoints, rule CRUD, health.

The storefront endpoints are public (rate limited per IP) and reachable
directly or through the Shopify app proxy. Rule management is scoped to
the session shop resolved by ShopSessionMiddleware.
"""

import os
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from api.middleware import (
    CORS_HEADERS,
    SOURCE_SESSION_TOKEN,
    get_current_session,
    get_current_shop,
    get_request_id,
)
from verticals.delivery.metafields import MetafieldSync
from verticals.delivery.models.schemas import DeliveryRuleCreate, DeliveryRuleUpdate
from verticals.delivery.repository import (
    DeliveryRuleRepository,
    InvalidRuleUpdate,
    get_rule_repository,
    get_rule_store,
)
from verticals.delivery.resolver import EstimateOutcome, EstimateResolver, RuleStore

router = APIRouter()
proxy_router = APIRouter()

APP_VERSION = os.getenv("APP_VERSION", "0.1.0")
APP_ENV = os.getenv("APP_ENV", "development")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# ============================================================================
# Dependencies
# ============================================================================

def get_resolver(request: Request) -> EstimateResolver:
    return request.app.state.resolver


def get_metafield_sync(request: Request) -> MetafieldSync:
    return request.app.state.metafield_sync


async def require_shop() -> str:
    """Shop from a verified admin session token, or 401.

    App proxy signatures identify storefront traffic and do not grant rule
    management.
    """
    session = get_current_session()
    if session is None or session.source != SOURCE_SESSION_TOKEN:
        raise HTTPException(status_code=401, detail="Shop session required")
    return session.shop


def _outcome_response(outcome: EstimateOutcome) -> JSONResponse:
    return JSONResponse(
        outcome.body,
        status_code=outcome.status_code,
        headers={**CORS_HEADERS, **outcome.headers},
    )


# ============================================================================
# Storefront Estimate Endpoints
# ============================================================================

@router.get("/delivery-estimate")
@proxy_router.get("/delivery-estimate")
async def get_delivery_estimate(
    request: Request,
    resolver: EstimateResolver = Depends(get_resolver),
    rule_store: RuleStore = Depends(get_rule_store),
):
    """Best delivery estimate for a product page.

    Query: productId, country (default US), tags (csv), variantId, shop.
    """
    outcome = await resolver.resolve(
        request.query_params,
        request.headers,
        rule_store,
        session_shop=get_current_shop(),
        request_id=get_request_id(),
    )
    return _outcome_response(outcome)


@router.options("/delivery-estimate")
@router.options("/delivery-estimate/matches")
@proxy_router.options("/delivery-estimate")
async def delivery_estimate_options():
    """CORS preflight: headers only, empty body."""
    return Response(status_code=200, headers={**CORS_HEADERS, "Access-Control-Max-Age": "86400"})


@router.api_route("/delivery-estimate", methods=["POST", "PUT", "PATCH", "DELETE"])
@proxy_router.api_route("/delivery-estimate", methods=["POST", "PUT", "PATCH", "DELETE"])
async def delivery_estimate_method_not_allowed(
    request: Request,
    resolver: EstimateResolver = Depends(get_resolver),
):
    outcome = await resolver.reject_method(
        request.method,
        request.headers,
        session_shop=get_current_shop(),
        request_id=get_request_id(),
    )
    return _outcome_response(outcome)


@router.post("/delivery-estimate/matches")
async def list_matching_estimates(
    request: Request,
    resolver: EstimateResolver = Depends(get_resolver),
    rule_store: RuleStore = Depends(get_rule_store),
):
    """Every rule matching a product, in precedence order.

    Body: {productId, country, tags, variantId, variants[], collections[]}.
    """
    try:
        payload: Any = await request.json()
    except ValueError:
        payload = None
    outcome = await resolver.resolve_matches(
        payload,
        request.headers,
        rule_store,
        session_shop=get_current_shop(),
        request_id=get_request_id(),
    )
    return _outcome_response(outcome)


# ============================================================================
# Rule Endpoints
# ============================================================================

@router.get("/rules")
async def list_rules(
    enabled: bool | None = None,
    target_type: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    shop: str = Depends(require_shop),
    repo: DeliveryRuleRepository = Depends(get_rule_repository),
):
    """List the shop's rules in precedence order."""
    rules, total = await repo.list(
        shop=shop,
        page=page,
        limit=limit,
        filters={"enabled": enabled, "target_type": target_type},
    )
    return {
        "data": rules,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@router.get("/rules/{rule_id}")
async def get_rule(
    rule_id: str,
    shop: str = Depends(require_shop),
    repo: DeliveryRuleRepository = Depends(get_rule_repository),
):
    rule = await repo.get(item_id=rule_id, shop=shop)
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.post("/rules", status_code=201)
async def create_rule(
    request: DeliveryRuleCreate,
    shop: str = Depends(require_shop),
    repo: DeliveryRuleRepository = Depends(get_rule_repository),
    metafields: MetafieldSync = Depends(get_metafield_sync),
):
    """Create a rule. Product rules are linked to their product's metafield."""
    rule = await repo.create(shop=shop, data=request.model_dump(mode="json"))
    rule["metafield_synced"] = await metafields.sync_rule(shop, rule)
    return rule


@router.patch("/rules/{rule_id}")
async def update_rule(
    rule_id: str,
    request: DeliveryRuleUpdate,
    shop: str = Depends(require_shop),
    repo: DeliveryRuleRepository = Depends(get_rule_repository),
    metafields: MetafieldSync = Depends(get_metafield_sync),
):
    """Partial update (days, countries, priority, enabled, default flag...)."""
    updates = request.model_dump(mode="json", exclude_unset=True)
    try:
        rule = await repo.update(item_id=rule_id, shop=shop, data=updates)
    except InvalidRuleUpdate as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    if {"target_type", "target_value"} & updates.keys():
        rule["metafield_synced"] = await metafields.sync_rule(shop, rule)
    return rule


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: str,
    shop: str = Depends(require_shop),
    repo: DeliveryRuleRepository = Depends(get_rule_repository),
):
    deleted = await repo.delete(item_id=rule_id, shop=shop)
    if not deleted:
        raise HTTPException(status_code=404, detail="Rule not found")


# ============================================================================
# Health Endpoint
# ============================================================================

@router.get("/health")
async def health(request: Request):
    """Aggregated health and metrics snapshot. 503 when unhealthy."""
    metrics = request.app.state.metrics
    rate_limiter = request.app.state.rate_limiter

    health_status = metrics.get_health_status()
    limiter_stats = rate_limiter.get_stats()
    stats = metrics.get_stats()
    requests = stats["requests"]
    performance = stats["performance"]

    body = {
        "status": health_status["status"],
        "timestamp": health_status["timestamp"],
        "uptime": stats["uptime"],
        "version": APP_VERSION,
        "environment": APP_ENV,
        "api": {
            "status": health_status["status"],
            "errorRate": health_status["errorRate"],
            "averageResponseTime": health_status["averageResponseTime"],
            "totalRequests": health_status["totalRequests"],
            "issues": health_status["issues"],
        },
        "rateLimiting": {
            "activeIPs": limiter_stats["totalIPs"],
            "windowMs": limiter_stats["windowMs"],
            "maxRequestsPerWindow": limiter_stats["maxRequests"],
            "activeRequests": limiter_stats["activeRequests"],
        },
        "performance": {
            "averageResponseTime": performance["averageDuration"],
            "maxResponseTime": performance["maxDuration"],
            "minResponseTime": performance["minDuration"],
        },
        "requests": {
            "total": requests["total"],
            "success": requests["success"],
            "errors": requests["errors"],
            "successRate": (
                f"{requests['success'] / requests['total'] * 100:.2f}"
                if requests["total"] else "0.00"
            ),
            "byStatus": requests["byStatus"],
            "topShops": metrics.top_shops(5),
        },
        "recentErrors": stats["errors"]["recent"][:5],
    }
    status_code = 503 if health_status["status"] == "unhealthy" else 200
    return JSONResponse(body, status_code=status_code, headers={**CORS_HEADERS, **NO_CACHE_HEADERS})
