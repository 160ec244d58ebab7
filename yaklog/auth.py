import logging
from typing import Annotated

from fastapi import Header, Request

from yaklog.errors import ServiceMisconfigured, Unauthorized
from yaklog.utils import extract_token, token_matches

logger = logging.getLogger(__name__)


def require_api_key(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> str:
    """
    Dependency guarding every authenticated route.

    - No keys configured: 503, regardless of what the caller sent
    - Missing or unknown token: 401
    """
    api_keys = request.app.state.settings.api_keys
    if not api_keys:
        logger.error("Rejecting request: YAKLOG_API_KEYS is not configured")
        raise ServiceMisconfigured()

    token = extract_token(authorization, x_api_key)
    if token is None or not token_matches(token, api_keys):
        logger.warning(f"Rejected unauthenticated request to {request.url.path}")
        raise Unauthorized()

    request.state.token = token
    return token
