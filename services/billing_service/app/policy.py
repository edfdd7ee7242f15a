"""Authorization policy for the admin and reset-trigger routes.

The services never decide who is an admin; they only record the actor
metadata these dependencies hand them.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Depends, Header

from .dependencies import Principal, get_current_principal, get_optional_principal, get_settings
from .errors import ForbiddenError, UnauthenticatedError
from .settings import BillingSettings

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class AdminPolicy:
    def __init__(self, admin_user_ids: set[str], cron_secret: str | None = None) -> None:
        self.admin_user_ids = set(admin_user_ids)
        self.cron_secret = cron_secret

    def is_admin(self, principal: Principal) -> bool:
        return principal.user_id in self.admin_user_ids or ADMIN_ROLE in principal.roles

    def is_trusted_trigger(self, secret: str | None) -> bool:
        if not self.cron_secret or not secret:
            return False
        return hmac.compare_digest(secret.encode(), self.cron_secret.encode())


def get_admin_policy(settings: BillingSettings = Depends(get_settings)) -> AdminPolicy:
    return AdminPolicy(settings.admin_ids, settings.cron_secret)


def require_admin(
    principal: Principal = Depends(get_current_principal),
    policy: AdminPolicy = Depends(get_admin_policy),
) -> Principal:
    if not policy.is_admin(principal):
        logger.info("billing.auth.admin_denied", extra={"user_id": principal.user_id})
        raise ForbiddenError("Admin access required")
    return principal


def require_reset_trigger(
    x_cron_secret: str | None = Header(None),
    principal: Principal | None = Depends(get_optional_principal),
    policy: AdminPolicy = Depends(get_admin_policy),
) -> str:
    """Allow the scheduled trigger (shared secret) or an admin; return the trigger name."""
    if policy.is_trusted_trigger(x_cron_secret):
        return "scheduled"
    if principal is None:
        raise UnauthenticatedError("Missing bearer token or cron secret")
    if not policy.is_admin(principal):
        logger.info("billing.auth.reset_trigger_denied", extra={"user_id": principal.user_id})
        raise ForbiddenError("Admin access required")
    return "manual"
