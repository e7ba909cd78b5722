"""Gateway response envelope.

Every gateway answer is a JSON object shaped like::

    {"response": {"statusCode": 200, "message": "...", "detail": "...", "reason": "..."},
     "reply": {...} | "<html>..." | [...],
     "next": "..."}

The payload sits under one of ``reply``, ``client`` or ``clients``; the first
one present wins. Anything else at the top level, including payload keys
that lost to an earlier one, ends up in ``extras``.
"""
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from .errors import GatewayResponseError

logger = logging.getLogger(__name__)

PAYLOAD_KEYS = ("reply", "client", "clients")
ENVELOPE_KEYS = frozenset(("response", "next"))


@dataclass
class GatewayMessage:
    status_code: int | None = None
    message: str | None = None
    detail: str | None = None
    reason: str | None = None

    @classmethod
    def from_dict(cls, data: dict):
        status_code = data.get("statusCode")
        try:
            status_code = int(status_code) if status_code is not None else None
        except (TypeError, ValueError):
            logger.warning("Gateway statusCode %r is not a number", status_code)
            status_code = None

        def text(key):
            value = data.get(key)
            return None if value is None else str(value)

        return cls(status_code=status_code, message=text("message"), detail=text("detail"), reason=text("reason"))


@dataclass(frozen=True)
class RawReply:
    """A payload the reply type cannot hold, kept as text."""
    text: str


@dataclass
class GatewayEnvelope:
    response: GatewayMessage | None = None
    reply: object = None
    next: str | None = None
    extras: dict = field(default_factory=dict)

    @property
    def status_code(self) -> int | None:
        return self.response.status_code if self.response else None

    @property
    def is_raw(self) -> bool:
        return isinstance(self.reply, RawReply)


def _decode_payload(node, reply_type):
    if isinstance(node, str):
        if reply_type.RAW_TEXT_FIELD:
            return reply_type.from_text(node)
        return RawReply(node)
    if isinstance(node, dict):
        return reply_type.from_dict(node)
    if isinstance(node, list):
        items = []
        for item in node:
            if isinstance(item, dict):
                items.append(reply_type.from_dict(item))
            else:
                logger.warning("Skipping non-object item in %s list: %r", reply_type.__name__, item)
        return items
    return RawReply(json.dumps(node, default=str))


def parse_envelope(document, reply_type) -> GatewayEnvelope:
    """Decode a gateway response body into a :class:`GatewayEnvelope`.

    ``document`` is the raw body (``str``/``bytes``). Raises
    :class:`GatewayResponseError` when it is not a JSON object; payload shape
    problems only produce warnings.
    """
    try:
        root = json.loads(document, parse_float=Decimal)
    except (TypeError, ValueError) as e:
        raise GatewayResponseError(f"Malformed gateway response: {e}") from e
    if not isinstance(root, dict):
        raise GatewayResponseError(f"Gateway response is not a JSON object: {type(root).__name__}")

    envelope = GatewayEnvelope()

    message = root.get("response")
    if isinstance(message, dict):
        envelope.response = GatewayMessage.from_dict(message)
    elif message is not None:
        logger.warning("Ignoring non-object gateway response message: %r", message)

    payload_key = next((key for key in PAYLOAD_KEYS if key in root), None)
    if payload_key is not None and root[payload_key] is not None:
        envelope.reply = _decode_payload(root[payload_key], reply_type)

    if root.get("next") is not None:
        envelope.next = str(root["next"])

    envelope.extras = {k: v for k, v in root.items() if k not in ENVELOPE_KEYS and k != payload_key}
    return envelope
