"""
Request identity dependencies

The upstream authentication layer is trusted to set X-Org-Id; this module
only resolves it. Admin endpoints use a shared token.
"""
import hmac
import logging
from typing import Optional
from fastapi import Header

from .config import config
from .exceptions import Unauthenticated

logger = logging.getLogger(__name__)


def get_current_org_id(x_org_id: Optional[str] = Header(None, alias="X-Org-Id")) -> str:
    """
    Resolve the organization id supplied by the authentication layer

    Raises:
        Unauthenticated: If no organization id is present
    """
    org_id = (x_org_id or "").strip()
    if not org_id:
        raise Unauthenticated("Organization context required")
    return org_id


def require_admin(x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")) -> None:
    """
    Require the admin API token

    Raises:
        Unauthenticated: If the token is missing, wrong, or admin access is not configured
    """
    if not config.ADMIN_API_TOKEN:
        logger.warning("Admin endpoint called but ADMIN_API_TOKEN is not configured")
        raise Unauthenticated("Admin access is not configured")
    if not x_admin_token or not hmac.compare_digest(
        x_admin_token.encode("utf-8", "replace"), config.ADMIN_API_TOKEN.encode()
    ):
        raise Unauthenticated("Invalid admin token")
