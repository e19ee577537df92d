"""Server-to-server key checks for earning sources and operator endpoints."""

from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status
from loguru import logger

from storefront_api.core.settings import settings


async def require_checkout_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Reject callers without the shared checkout key; open when no key is configured."""

    expected = settings.checkout_api_key
    if not expected:
        return

    if not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        logger.warning("Rejected request with invalid checkout API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
