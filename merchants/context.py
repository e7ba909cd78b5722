"""Explicit per-call context objects.

A context is built once by whoever starts a unit of work (a task lease, a
webhook, a balance refresh) and handed down the call chain. Nothing here is
stored globally.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.utils import timezone

from .models import Merchant, MerchantMode, MerchantStatus

logger = logging.getLogger(__name__)


class MerchantConfigurationError(Exception): pass


@dataclass(frozen=True)
class MerchantContext:
    merchant_id: str
    mode: str
    status: str
    gateway_url: str
    gateway_merchant_id: str
    gateway_merchant_key: str
    gateway_api_key: str = ""


@dataclass(frozen=True)
class ApiContext:
    merchant_id: str | None
    merchant_context: MerchantContext | None
    request_timestamp: datetime = field(default_factory=timezone.now)

    def can_access(self, merchant_id) -> bool:
        return self.merchant_id is not None and str(merchant_id) == str(self.merchant_id)


def merchant_context_for(merchant: Merchant, mode: str | None = None) -> MerchantContext:
    """Resolve gateway credentials of an active merchant for ``mode``.

    Raises :class:`MerchantConfigurationError` when the merchant is not
    active or the URL, MID or merchant key for the mode is blank.
    """
    if merchant.status != MerchantStatus.ACTIVE:
        raise MerchantConfigurationError(
            f"Merchant {merchant.pk} is not active (status: {merchant.status})"
        )

    mode = mode or merchant.mode or MerchantMode.TEST
    creds = merchant.gateway_credentials(mode)
    for key, label in (("url", "gateway URL"), ("merchant_id", "gateway merchant ID"), ("merchant_key", "gateway merchant key")):
        if not (creds[key] or "").strip():
            raise MerchantConfigurationError(
                f"Merchant {merchant.pk} has no {label} configured for mode {mode}"
            )

    return MerchantContext(
        merchant_id=str(merchant.pk),
        mode=str(mode),
        status=merchant.status,
        gateway_url=creds["url"],
        gateway_merchant_id=creds["merchant_id"],
        gateway_merchant_key=creds["merchant_key"],
        gateway_api_key=creds["api_key"] or "",
    )


def api_context_for(merchant: Merchant, mode: str | None = None) -> ApiContext:
    merchant_context = merchant_context_for(merchant, mode)
    logger.debug("Built API context for merchant %s in mode %s", merchant.pk, merchant_context.mode)
    return ApiContext(merchant_id=str(merchant.pk), merchant_context=merchant_context)
