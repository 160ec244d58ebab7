"""
Shared-secret token helpers used by the auth dependency.
"""

import hmac
import logging
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


def extract_token(authorization: Optional[str], api_key: Optional[str]) -> Optional[str]:
    """
    Pull the caller's token from request headers.

    Args:
        authorization: Value of the Authorization header ("Bearer <token>")
        api_key: Value of the X-API-Key header

    Returns:
        The token, or None if neither header carries one
    """
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
        if token:
            return token

    if api_key and api_key.strip():
        return api_key.strip()

    return None


def token_matches(token: str, allowed: Iterable[str]) -> bool:
    """
    Check a token against the allow-set.

    Every key is compared so the time taken does not depend on which key
    (if any) matched.
    """
    matched = False
    for key in allowed:
        # Use constant-time comparison to prevent timing attacks
        if hmac.compare_digest(key.encode("utf-8"), token.encode("utf-8")):
            matched = True
    logger.debug(f"API token verification: {'valid' if matched else 'invalid'}")
    return matched
