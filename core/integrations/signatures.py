"""
Shopify request signatures and session tokens.

App proxy requests arrive with a ``signature`` query parameter: HMAC-SHA256
(hex) over the remaining parameters, sorted by key and concatenated as
``key=value`` with no separator. Repeated keys are joined with commas.

Embedded admin requests carry a session token (``Authorization: Bearer``):
an HS256 JWT signed with the app secret whose ``dest`` claim is the shop.

Shop domains are only trusted in ``<name>.myshopify.com`` form, since they
become Admin API hostnames.
"""
from __future__ import annotations
from typing import Iterable
from urllib.parse import urlparse
import hashlib
import hmac
import logging
import re

import jwt
from jwt.exceptions import InvalidTokenError

logger = logging.getLogger(__name__)

SIGNATURE_PARAM = "signature"
SESSION_TOKEN_ALGORITHM = "HS256"

_SHOP_DOMAIN = re.compile(r"[a-z0-9][a-z0-9-]*\.myshopify\.com")


def is_valid_shop_domain(shop: str | None) -> bool:
    """True for ``acme.myshopify.com`` style domains (case-insensitive)."""
    if not shop:
        return False
    return _SHOP_DOMAIN.fullmatch(shop.lower()) is not None


def _canonical_message(params: Iterable[tuple[str, str]]) -> str:
    grouped: dict[str, list[str]] = {}
    for key, value in params:
        if key == SIGNATURE_PARAM:
            continue
        grouped.setdefault(key, []).append(value)
    return "".join(
        f"{key}={','.join(values)}" for key, values in sorted(grouped.items())
    )


def sign_app_proxy_params(params: Iterable[tuple[str, str]], secret: str) -> str:
    """Hex HMAC-SHA256 of the canonical parameter string."""
    return hmac.new(
        secret.encode("utf-8"),
        _canonical_message(params).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_app_proxy_signature(params: Iterable[tuple[str, str]], secret: str) -> bool:
    """True if the ``signature`` parameter matches the other parameters.

    ``params`` is the raw multi-valued query (e.g. ``request.query_params.multi_items()``).
    Missing signature or missing secret never verifies.
    """
    items = list(params)
    provided = next((v for k, v in items if k == SIGNATURE_PARAM), None)
    if not provided or not secret:
        return False
    expected = sign_app_proxy_params(items, secret)
    return hmac.compare_digest(expected, provided)


def verify_session_token(
    token: str,
    secret: str,
    api_key: str | None = None,
    leeway: float = 5.0,
) -> str | None:
    """Verify a Shopify session token and return its shop domain.

    Checks the signature, ``exp``/``nbf``, the audience (when ``api_key`` is
    set) and that ``iss`` and ``dest`` name the same myshopify.com shop.
    Returns None for anything that does not verify.
    """
    if not token or not secret:
        return None
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[SESSION_TOKEN_ALGORITHM],
            audience=api_key or None,
            leeway=leeway,
            options={
                "require": ["exp", "dest"],
                "verify_aud": bool(api_key),
            },
        )
    except InvalidTokenError as exc:
        logger.info("Session token rejected: %s", exc)
        return None

    shop = urlparse(str(claims["dest"])).hostname
    if not is_valid_shop_domain(shop):
        return None
    issuer = claims.get("iss")
    if issuer and urlparse(str(issuer)).hostname != shop:
        return None
    return shop
