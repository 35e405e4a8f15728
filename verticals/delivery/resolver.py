"""Delivery-estimate resolver: the request orchestrator.

One pass per request, no retries:

    rate limit → validate → fetch shop rules → match
      → shop default rule → generic fallback (or noRulesFound)

Every path ends in exactly one terminal EstimateState and produces one
EstimateOutcome (status, JSON body, headers). Every outcome carries the
request id and an ISO-8601 timestamp, and is recorded to metrics and logs.

The rate limiter and metrics collector are injected, so tests and
separate apps never share counters.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Protocol

from core.observability.metrics import MetricsCollector, RequestRecord
from core.observability.otel_setup import create_estimate_span, finish_span
from core.ratelimit import SlidingWindowRateLimiter, client_ip_from_headers
from patterns.domain_config import DeliveryConfig, FallbackMode
from patterns.workflow_states import EstimateState, WorkflowInstance
from verticals.delivery.errors import (
    EstimateError,
    InternalError,
    MethodNotAllowed,
    RateLimited,
    UpstreamFetchError,
)
from verticals.delivery.estimates import format_delivery_estimate
from verticals.delivery.rules import (
    DeliveryRule,
    ProductContext,
    explain_rule,
    match,
    parse_tags,
)
from verticals.delivery.validation import (
    EstimateRequest,
    validate_estimate_request,
    validate_match_payload,
)

logger = logging.getLogger(__name__)

ESTIMATE_ENDPOINT = "/api/delivery-estimate"
MATCHES_ENDPOINT = "/api/delivery-estimate/matches"


class RuleStore(Protocol):
    """Read side of the rule store, scoped to one shop."""

    async def list_enabled_rules(self, shop: str) -> list[DeliveryRule]: ...

    async def get_default_rule(self, shop: str) -> DeliveryRule | None: ...


@dataclass
class EstimateOutcome:
    """Terminal response of one estimate request."""

    status_code: int
    body: dict[str, Any]
    state: EstimateState
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class _RequestContext:
    request_id: str
    workflow: WorkflowInstance
    shop: str | None = None
    product_id: str | None = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class EstimateResolver:
    """Resolves delivery estimates against a shop's rule store."""

    def __init__(
        self,
        config: DeliveryConfig,
        rate_limiter: SlidingWindowRateLimiter,
        metrics: MetricsCollector,
        tracer=None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.config = config
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.tracer = tracer
        self._clock = clock

    # --- Public entry points ---

    async def resolve(
        self,
        query: Mapping[str, Any],
        headers: Mapping[str, str],
        rule_store: RuleStore,
        *,
        session_shop: str | None = None,
        request_id: str | None = None,
    ) -> EstimateOutcome:
        """Best single estimate for a product page (GET query form)."""
        shop_hint = session_shop or _safe_get(query, "shop")

        async def step(ctx: _RequestContext) -> tuple[EstimateState, dict[str, Any]]:
            request = validate_estimate_request(
                query, session_shop, self.config.default_country
            )
            self._validated(ctx, request)
            product = ProductContext.build(
                request.product_id,
                tags=parse_tags(request.tags, self.config.max_tags),
                variant_id=request.variant_id,
            )
            return await self._estimate(ctx, request, product, rule_store)

        return await self._run(ESTIMATE_ENDPOINT, "GET", headers, request_id, shop_hint, step)

    async def resolve_matches(
        self,
        payload: Any,
        headers: Mapping[str, str],
        rule_store: RuleStore,
        *,
        session_shop: str | None = None,
        request_id: str | None = None,
    ) -> EstimateOutcome:
        """Every matching rule in precedence order (POST JSON form)."""
        shop_hint = session_shop or (
            payload.get("shop") if isinstance(payload, dict) else None
        )

        async def step(ctx: _RequestContext) -> tuple[EstimateState, dict[str, Any]]:
            request, product = validate_match_payload(
                payload,
                session_shop,
                self.config.default_country,
                self.config.max_tags,
            )
            self._validated(ctx, request)
            return await self._matches(ctx, request, product, rule_store)

        return await self._run(MATCHES_ENDPOINT, "POST", headers, request_id, shop_hint, step)

    async def reject_method(
        self,
        method: str,
        headers: Mapping[str, str],
        *,
        session_shop: str | None = None,
        request_id: str | None = None,
    ) -> EstimateOutcome:
        """405 for anything but GET/OPTIONS. Recorded, but not rate limited."""

        async def step(ctx: _RequestContext) -> tuple[EstimateState, dict[str, Any]]:
            raise MethodNotAllowed(detail=f"{method} not supported")

        return await self._run(
            ESTIMATE_ENDPOINT, method, headers, request_id, session_shop, step, admit=False
        )

    # --- Pipeline ---

    async def _run(
        self,
        endpoint: str,
        method: str,
        headers: Mapping[str, str],
        request_id: str | None,
        shop_hint: str | None,
        step: Callable[[_RequestContext], Awaitable[tuple[EstimateState, dict[str, Any]]]],
        admit: bool = True,
    ) -> EstimateOutcome:
        started = self._clock()
        request_id = request_id or str(uuid.uuid4())
        ctx = _RequestContext(
            request_id=request_id,
            workflow=WorkflowInstance(workflow_id=request_id),
            shop=shop_hint,
        )
        span = create_estimate_span(self.tracer, ctx.request_id, endpoint)
        extra_headers: dict[str, str] = {}
        error_detail: str | None = None

        try:
            if admit:
                limit = self.rate_limiter.check(client_ip_from_headers(headers))
                if not limit.allowed:
                    raise RateLimited(limit.retry_after or 1, ip=limit.ip)
                ctx.workflow.transition(EstimateState.ADMITTED, actor="rate_limiter")

            state, body = await step(ctx)
            status = 200
        except EstimateError as exc:
            state, status, body = self._error_state(ctx, exc), exc.status_code, exc.to_body()
            error_detail = f"{type(exc).__name__}: {exc.detail}"
            if isinstance(exc, RateLimited):
                extra_headers["Retry-After"] = str(exc.retry_after)
        except Exception as exc:
            internal = InternalError(detail=str(exc))
            state, status, body = self._error_state(ctx, internal), 500, internal.to_body()
            error_detail = f"{type(exc).__name__}: {exc}"
            logger.exception(
                "Unhandled error resolving delivery estimate request_id=%s", ctx.request_id
            )

        body["requestId"] = ctx.request_id
        body["timestamp"] = _now_iso()
        duration_ms = (self._clock() - started) * 1000

        self.metrics.record_request(RequestRecord(
            endpoint=endpoint,
            method=method,
            status=status,
            duration_ms=duration_ms,
            shop=ctx.shop,
            error=error_detail,
            request_id=ctx.request_id,
        ))
        log = logger.info if status < 400 else logger.warning if status < 500 else logger.error
        log(
            "delivery estimate request_id=%s shop=%s product_id=%s status=%d state=%s duration_ms=%.1f%s",
            ctx.request_id, ctx.shop, ctx.product_id, status, state.value, duration_ms,
            f" error={error_detail!r}" if error_detail else "",
        )
        finish_span(span, status, shop=ctx.shop, product_id=ctx.product_id, state=state.value)
        return EstimateOutcome(status_code=status, body=body, state=state, headers=extra_headers)

    def _error_state(self, ctx: _RequestContext, exc: EstimateError) -> EstimateState:
        if isinstance(exc, RateLimited):
            target = EstimateState.RATE_LIMITED
        elif isinstance(exc, UpstreamFetchError):
            target = EstimateState.FETCH_FAILED
        elif exc.status_code in (400, 405):
            target = EstimateState.INVALID
        else:
            target = EstimateState.FAILED
        workflow = ctx.workflow
        if not workflow.is_terminal:
            if not workflow.can_transition(target):
                target = EstimateState.FAILED
            workflow.transition(target, actor="resolver", metadata={"error": exc.detail})
        return workflow.current_state

    def _validated(self, ctx: _RequestContext, request: EstimateRequest) -> None:
        ctx.shop = request.shop
        ctx.product_id = request.product_id
        ctx.workflow.transition(EstimateState.VALIDATED, actor="validator")

    async def _fetch_rules(self, ctx: _RequestContext, rule_store: RuleStore) -> list[DeliveryRule]:
        if not ctx.shop:
            logger.warning(
                "No shop on delivery estimate request_id=%s; skipping rule lookup",
                ctx.request_id,
            )
            return []
        try:
            rules = await asyncio.wait_for(
                rule_store.list_enabled_rules(ctx.shop),
                timeout=self.config.store.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamFetchError(
                detail=f"Rule fetch timed out after {self.config.store.fetch_timeout_seconds}s"
            ) from exc
        except Exception as exc:
            raise UpstreamFetchError(detail=str(exc) or type(exc).__name__) from exc
        ctx.workflow.transition(
            EstimateState.RULES_FETCHED, actor="rule_store", metadata={"count": len(rules)}
        )
        return list(rules)

    async def _fetch_default(self, ctx: _RequestContext, rule_store: RuleStore) -> DeliveryRule | None:
        ctx.workflow.transition(EstimateState.DEFAULT_LOOKUP, actor="resolver")
        if not ctx.shop:
            return None
        try:
            return await asyncio.wait_for(
                rule_store.get_default_rule(ctx.shop),
                timeout=self.config.store.fetch_timeout_seconds,
            )
        except Exception as exc:
            # A failed default lookup degrades to the generic estimate.
            logger.warning(
                "Default rule lookup failed request_id=%s shop=%s error=%r",
                ctx.request_id, ctx.shop, exc,
            )
            return None

    # --- Steps ---

    async def _estimate(
        self,
        ctx: _RequestContext,
        request: EstimateRequest,
        product: ProductContext,
        rule_store: RuleStore,
    ) -> tuple[EstimateState, dict[str, Any]]:
        rules = await self._fetch_rules(ctx, rule_store)
        matched = match(rules, product, request.country)
        if matched:
            best = matched[0]
            ctx.workflow.transition(EstimateState.MATCHED, metadata={"rule_id": best.id})
            return EstimateState.MATCHED, self._estimate_body(
                request,
                best.estimated_min_days,
                best.estimated_max_days,
                best.display_name,
                best.custom_message,
                is_default=False,
            )
        return await self._fallback(ctx, request, rule_store)

    async def _fallback(
        self,
        ctx: _RequestContext,
        request: EstimateRequest,
        rule_store: RuleStore,
    ) -> tuple[EstimateState, dict[str, Any]]:
        fallback = self.config.fallback
        default_rule = await self._fetch_default(ctx, rule_store)
        if default_rule is not None:
            ctx.workflow.transition(
                EstimateState.SHOP_DEFAULT, metadata={"rule_id": default_rule.id}
            )
            return EstimateState.SHOP_DEFAULT, self._estimate_body(
                request,
                default_rule.estimated_min_days,
                default_rule.estimated_max_days,
                fallback.default_rule_name,
                default_rule.custom_message,
                is_default=True,
            )

        if fallback.mode == FallbackMode.NO_RULES:
            ctx.workflow.transition(EstimateState.NO_RULES_FOUND)
            return EstimateState.NO_RULES_FOUND, {
                "noRulesFound": True,
                "productId": request.product_id,
                "country": request.country,
                "isDefault": False,
            }

        ctx.workflow.transition(EstimateState.GENERIC_FALLBACK)
        return EstimateState.GENERIC_FALLBACK, self._estimate_body(
            request,
            fallback.min_days,
            fallback.max_days,
            fallback.rule_name,
            None,
            is_default=True,
        )

    async def _matches(
        self,
        ctx: _RequestContext,
        request: EstimateRequest,
        product: ProductContext,
        rule_store: RuleStore,
    ) -> tuple[EstimateState, dict[str, Any]]:
        rules = await self._fetch_rules(ctx, rule_store)
        matched = match(rules, product, request.country)
        if not matched:
            state, body = await self._fallback(ctx, request, rule_store)
            if state == EstimateState.NO_RULES_FOUND:
                body["estimates"] = []
                return state, body
            entry = {
                "estimate": body["estimate"],
                "minDays": body["minDays"],
                "maxDays": body["maxDays"],
                "ruleName": body["ruleName"],
                "priority": 0,
            }
            if "customMessage" in body:
                entry["customMessage"] = body["customMessage"]
            return state, {
                "estimates": [entry],
                "primaryEstimate": body["estimate"],
                "productId": request.product_id,
                "country": request.country,
                "isDefault": True,
            }

        ctx.workflow.transition(EstimateState.MATCHED, metadata={"rule_id": matched[0].id})
        estimates = []
        for rule in matched:
            explanation = explain_rule(rule, product, request.country)
            entry = {
                "ruleId": rule.id,
                "estimate": format_delivery_estimate(
                    rule.estimated_min_days, rule.estimated_max_days
                ),
                "minDays": rule.estimated_min_days,
                "maxDays": rule.estimated_max_days,
                "ruleName": rule.display_name,
                "priority": rule.priority,
                "matchedBy": [r.to_dict() for r in explanation.results],
            }
            if rule.custom_message is not None:
                entry["customMessage"] = rule.custom_message
            estimates.append(entry)

        return EstimateState.MATCHED, {
            "estimates": estimates,
            "primaryEstimate": estimates[0]["estimate"],
            "productId": request.product_id,
            "country": request.country,
            "isDefault": False,
        }

    def _estimate_body(
        self,
        request: EstimateRequest,
        min_days: int,
        max_days: int,
        rule_name: str,
        custom_message: str | None,
        is_default: bool,
    ) -> dict[str, Any]:
        body = {
            "estimate": format_delivery_estimate(min_days, max_days),
            "minDays": min_days,
            "maxDays": max_days,
            "ruleName": rule_name,
            "productId": request.product_id,
            "country": request.country,
            "isDefault": is_default,
        }
        if custom_message is not None:
            body["customMessage"] = custom_message
        return body


def _safe_get(query: Any, key: str) -> str | None:
    try:
        value = query.get(key)
    except AttributeError:
        return None
    if value is None:
        return None
    return str(value).strip() or None
