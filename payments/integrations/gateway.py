import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from urllib.parse import quote

import requests
from django.conf import settings
from requests import RequestException

from .envelope import GatewayEnvelope, parse_envelope
from .errors import GatewayError, GatewayResponseError
from .replies import ClientDetails, PaymentReply, PaymentRequest
from .signature import SIGNATURE_VERSION, request_signature

logger = logging.getLogger(__name__)

COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


@dataclass(frozen=True)
class GatewayConfig:
    base_url: str
    merchant_id: str
    merchant_key: str
    api_key: str = ""
    reply_url: str | None = None
    backoffice_url: str | None = None
    currency: str | None = None
    payment_type: str | None = None

    @classmethod
    def from_context(cls, context, **extra):
        """Build from a :class:`merchants.context.MerchantContext`."""
        return cls(
            base_url=context.gateway_url,
            merchant_id=context.gateway_merchant_id,
            merchant_key=context.gateway_merchant_key,
            api_key=context.gateway_api_key,
            **extra,
        )

    def merchant_url(self, *parts) -> str:
        path = "/".join(quote(str(p), safe="") for p in parts)
        return f"{self.base_url.rstrip('/')}/merchants/{quote(self.merchant_id, safe='')}/{path}"


@dataclass
class GatewayTrace:
    """Request and response of the last exchange, owned by the caller."""
    method: str | None = None
    url: str | None = None
    request_body: str | None = None
    response_body: str | None = None
    status_code: int | None = None

    def record(self, method, url, request_body, response):
        self.method = method
        self.url = url
        self.request_body = request_body
        self.status_code = response.status_code
        self.response_body = response.text


def normalize_amount(amount) -> Decimal:
    """Strip trailing zeros: 10.10 -> 10.1, 100.00 -> 100."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise GatewayError(f"Invalid amount value: {amount!r}") from e
    normalized = value.normalize()
    # normalize() turns 100 into 1E+2; re-read the plain string
    return Decimal(format(normalized, "f"))


class GatewayClient:
    """HTTP client for the card-processing gateway.

    Holds nothing but the transport: a ``requests.Session`` when given,
    otherwise the ``requests`` module itself. Non-2xx answers are logged and
    handed back to the caller, which decides what they mean.
    """

    def __init__(self, session=None, timeout=None):
        self.http = session or requests
        self.timeout = timeout if timeout is not None else getattr(settings, "GATEWAY_HTTP_TIMEOUT", 30)

    def _headers(self, config: GatewayConfig) -> dict:
        return {**COMMON_HEADERS, "x-api-key": config.api_key or ""}

    def _send(self, method, url, config, key, body=None, params=None, trace=None):
        try:
            resp = self.http.request(
                method, url, headers=self._headers(config), data=body, params=params, timeout=self.timeout
            )
        except RequestException as e:
            raise GatewayError(f"Gateway request failed for {key}: {e}") from e
        if trace is not None:
            trace.record(method, url, body, resp)
        if not 200 <= resp.status_code < 300:
            logger.error("Gateway returned HTTP %s for %s: %s", resp.status_code, key, (resp.text or "")[:800])
        return resp

    def place_transaction(self, request: PaymentRequest, config: GatewayConfig, trace: GatewayTrace | None = None) -> str:
        """Sign and submit a payment; returns the raw response body."""
        request.amount = normalize_amount(request.amount)
        request.signature = request_signature(
            client_id=request.client_id,
            order_id=request.order_id,
            merchant_key=config.merchant_key,
            amount=format(request.amount, "f"),
            currency=request.currency,
            reply_url=request.reply_url,
            backoffice_url=request.backoffice_url,
        )
        request.signature_version = SIGNATURE_VERSION
        body = json.dumps(request.to_dict())
        url = config.merchant_url("transactions") + "/"
        logger.info("Placing transaction %s at %s", request.order_id, url)
        resp = self._send("POST", url, config, request.order_id, body=body, trace=trace)
        return resp.text

    def _decode(self, resp, reply_type, key) -> GatewayEnvelope:
        try:
            return parse_envelope(resp.text, reply_type)
        except GatewayResponseError:
            logger.error("Undecodable gateway response (HTTP %s) for %s", resp.status_code, key)
            raise

    def query_transaction(self, order_id: str, config: GatewayConfig, trace: GatewayTrace | None = None) -> GatewayEnvelope:
        url = config.merchant_url("transactions", order_id)
        resp = self._send("GET", url, config, order_id, trace=trace)
        return self._decode(resp, PaymentReply, order_id)

    def get_client_details(self, client_id: str, config: GatewayConfig, trace: GatewayTrace | None = None) -> GatewayEnvelope:
        url = config.merchant_url("clients", client_id)
        resp = self._send("GET", url, config, client_id, trace=trace)
        return self._decode(resp, ClientDetails, client_id)

    def get_client_list(self, next_client_id: str | None, config: GatewayConfig, trace: GatewayTrace | None = None) -> GatewayEnvelope:
        url = config.merchant_url("clients")
        params = {"next": next_client_id} if next_client_id else None
        resp = self._send("GET", url, config, "client list", params=params, trace=trace)
        return self._decode(resp, ClientDetails, "client list")
