"""Shop session and request correlation middleware using ContextVar.

Resolves the authenticated shop making the request and a correlation id,
and stores both in ContextVars so that any downstream code (routers,
repositories, the estimate resolver) can call get_current_shop() /
get_request_id() without explicit parameter passing.
"""

import logging
import uuid
from contextvars import ContextVar
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from core.integrations.signatures import (
    SIGNATURE_PARAM,
    is_valid_shop_domain,
    verify_app_proxy_signature,
    verify_session_token,
)

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

SOURCE_APP_PROXY = "app_proxy"
SOURCE_SESSION_TOKEN = "session_token"

CORS_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOW_HEADERS = ["Content-Type", "X-Requested-With"]

# Storefront-facing responses are readable from any origin.
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": ", ".join(CORS_METHODS),
    "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
}


@dataclass(frozen=True)
class ShopSession:
    """A verified shop identity and how it was proven."""

    shop: str
    source: str


# ---------------------------------------------------------------------------
# Context variables (task-safe request state)
# ---------------------------------------------------------------------------

_current_session: ContextVar[ShopSession | None] = ContextVar("current_session", default=None)
_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_current_session() -> ShopSession | None:
    return _current_session.get()


def get_current_shop() -> str | None:
    """Return the authenticated shop domain for the current request, if any.

    Safe to call from any async context within the request lifecycle::

        shop = get_current_shop()
        rules = await repo.list_enabled_rules(shop)
    """
    session = _current_session.get()
    return session.shop if session else None


def get_request_id() -> str | None:
    """Return the correlation id of the current request."""
    return _request_id.get()


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class ShopSessionMiddleware(BaseHTTPMiddleware):
    """Resolve the session shop and a request id.

    Shop sources, in order:
    1. Shopify app proxy: a ``signature`` query parameter must verify
       against the app secret; the signed ``shop`` parameter is the session
    2. ``Authorization: Bearer <session token>`` (embedded admin callers)
    3. No session

    A signature or token that is present but does not verify is a 401.
    """

    def __init__(self, app, api_secret: str | None = None, api_key: str | None = None):
        super().__init__(app)
        self.api_secret = api_secret or ""
        self.api_key = api_key or None

    def _reject(self, request: Request, request_id: str, error: str) -> JSONResponse:
        logger.warning(
            "Rejected request request_id=%s path=%s: %s",
            request_id, request.url.path, error,
        )
        return JSONResponse(
            {"error": error},
            status_code=401,
            headers={**CORS_HEADERS, REQUEST_ID_HEADER: request_id},
        )

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())

        session = None
        params = request.query_params
        authorization = request.headers.get("Authorization", "")
        if SIGNATURE_PARAM in params:
            shop = params.get("shop")
            if not verify_app_proxy_signature(params.multi_items(), self.api_secret):
                return self._reject(request, request_id, "Invalid signature")
            if not is_valid_shop_domain(shop):
                return self._reject(request, request_id, "Invalid shop domain")
            session = ShopSession(shop=shop.lower(), source=SOURCE_APP_PROXY)
        elif authorization.lower().startswith("bearer "):
            shop = verify_session_token(
                authorization[7:].strip(), self.api_secret, self.api_key
            )
            if not shop:
                return self._reject(request, request_id, "Invalid session token")
            session = ShopSession(shop=shop, source=SOURCE_SESSION_TOKEN)

        session_token = _current_session.set(session)
        request_token = _request_id.set(request_id)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            _current_session.reset(session_token)
            _request_id.reset(request_token)
