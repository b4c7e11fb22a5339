"""
API key authentication for the intake routes.

Every /api/email/inbox/* and /api/resume/* request must carry the shared key
configured in API_KEY, either in the X-API-Key header or in the ``apiKey``
query parameter. With no API_KEY configured every request is rejected.
"""

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Header, Query

from app import config

logger = logging.getLogger(__name__)


async def require_api_key(
    x_api_key: Optional[str] = Header(None),
    api_key: Optional[str] = Query(None, alias="apiKey"),
) -> None:
    """
    Verify the caller's API key.

    Raises:
        HTTPException: 401 if the key is missing, unconfigured, or wrong
    """
    expected = config.API_KEY
    if not expected:
        logger.warning("API_KEY is not configured; all intake requests will be rejected")
        raise HTTPException(status_code=401, detail="API key authentication is not configured")

    provided = x_api_key or api_key
    if not provided:
        raise HTTPException(status_code=401, detail="API key required")

    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid API key")
