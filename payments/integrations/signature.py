"""MD5 signatures for gateway requests and webhooks.

Optional fields that are ``None`` or empty contribute nothing to the clear
text, not even a separator.
"""
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_VERSION = "1.0"


def md5_hex(text: str) -> str:
    return hashlib.md5((text or "").encode("utf-8")).hexdigest()


def _part(value) -> str:
    return "" if value is None else str(value)


def request_signature(*, client_id, order_id, merchant_key, amount, currency,
                      reply_url=None, backoffice_url=None) -> str:
    clear_text = (
        _part(client_id)
        + _part(order_id).lower()
        + md5_hex(merchant_key)
        + _part(amount)
        + _part(currency)
        + _part(reply_url)
        + _part(backoffice_url)
    )
    return md5_hex(clear_text)


def webhook_signature(*, success, client_id, order_id, merchant_key, amount,
                      currency, merchant_id) -> str:
    clear_text = (
        _part(success)
        + _part(client_id)
        + _part(order_id).lower()
        + md5_hex(merchant_key)
        + _part(amount)
        + _part(currency)
        + _part(merchant_id)
    )
    return md5_hex(clear_text)


def sign_reply(reply, merchant_key: str) -> str:
    return webhook_signature(
        success=reply.success,
        client_id=reply.client_id,
        order_id=reply.order_id,
        merchant_key=merchant_key,
        amount=reply.amount,
        currency=reply.currency,
        merchant_id=reply.merchant_id,
    )


def verify_webhook_signature(reply, merchant_key: str) -> bool:
    """True when ``reply.signature`` matches the one computed with ``merchant_key``. Never raises."""
    if reply is None or not merchant_key or not getattr(reply, "signature", None):
        logger.warning("Cannot verify signature: missing required parameters")
        return False
    try:
        expected = sign_reply(reply, merchant_key)
        valid = hmac.compare_digest(expected, str(reply.signature).lower())
    except Exception:
        logger.exception("Error during signature verification")
        return False
    if not valid:
        logger.warning("Signature verification failed for order %s", reply.order_id)
    else:
        logger.debug("Signature verification successful for order %s", reply.order_id)
    return valid
