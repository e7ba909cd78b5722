"""Gateway payload shapes and their JSON wire names.

Values that cannot be converted to their field type are dropped to ``None``
with a warning, the gateway is not always consistent about formats.
"""
import datetime as dt
import logging
from datetime import timezone as dt_timezone
from decimal import Decimal, InvalidOperation
from typing import ClassVar

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


# ---------- field parsing ----------
def parse_decimal(value):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        logger.warning("Cannot parse decimal from boolean %r", value)
        return None
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        logger.warning("Cannot parse decimal from %r", value)
        return None
    if not number.is_finite():
        logger.warning("Ignoring non-finite decimal %r", value)
        return None
    return number


def parse_gateway_datetime(value):
    """Parse a gateway timestamp; values without an offset are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = parse_datetime(text)
        except ValueError:
            parsed = None
        if parsed is None:
            logger.warning("Cannot parse gateway date-time %r", value)
            return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed.astimezone(dt_timezone.utc)


def parse_gateway_date(value):
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = parse_date(text[:10])
    except ValueError:
        parsed = None
    if parsed is None:
        logger.warning("Cannot parse gateway date %r", value)
    return parsed


def parse_bool(value):
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "y"):
        return True
    if text in ("false", "0", "no", "n"):
        return False
    logger.warning("Cannot parse boolean from %r", value)
    return None


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    # attribute receiving a bare string payload, None when the shape has none
    RAW_TEXT_FIELD: ClassVar[str | None] = None

    @classmethod
    def from_dict(cls, data: dict):
        """Build from a wire object; fields of the wrong shape are left out."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            bad = {err["loc"][0] for err in e.errors() if err["loc"]}
            logger.warning("Dropping unreadable %s fields %s", cls.__name__, sorted(map(str, bad)))
            return cls.model_validate({k: v for k, v in data.items() if k not in bad})

    @classmethod
    def from_text(cls, text: str):
        return cls(**{cls.RAW_TEXT_FIELD: text})

    def to_dict(self) -> dict:
        """Wire representation, fields that are ``None`` left out."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------- client shapes ----------
class BillingAddress(WireModel):
    street_name: str | None = Field(None, alias="streetName")
    street_number: str | None = Field(None, alias="streetNumber")
    street_suffix: str | None = Field(None, alias="streetSuffix")
    city: str | None = None
    state: str | None = None
    post_code: str | None = Field(None, alias="postCode")
    country: str | None = None
    valid: bool | None = None

    @field_validator("valid", mode="before")
    @classmethod
    def parse_bools(cls, value):
        return parse_bool(value)

    def validation_error(self) -> str | None:
        if self.valid is not None:
            return "valid cannot be set"
        return None


class CardDetails(WireModel):
    pan: str | None = None
    expiry: str | None = None
    name: str | None = None
    expiry_month: str | None = Field(None, alias="expiryMonth")
    expiry_year: str | None = Field(None, alias="expiryYear")
    default: bool | None = None
    valid: bool | None = None

    @field_validator("default", "valid", mode="before")
    @classmethod
    def parse_bools(cls, value):
        return parse_bool(value)

    def validation_error(self) -> str | None:
        if self.valid is not None:
            return "valid cannot be set"
        if self.expiry_month is not None:
            return "expiryMonth cannot be set"
        if self.expiry_year is not None:
            return "expiryYear cannot be set"
        return None


class ClientDetails(WireModel):
    client_id: str | None = Field(None, alias="clientID")
    merchant_id: str | None = Field(None, alias="merchantID")
    name: str | None = None
    mobile_number: str | None = Field(None, alias="mobileNumber")
    email_address: str | None = Field(None, alias="emailAddress")
    client_phone: str | None = Field(None, alias="clientPhone")
    billing_address: BillingAddress | None = Field(None, alias="billingAddress")
    cards: list[CardDetails] | None = None

    # set by the gateway
    gateway_id: str | None = Field(None, alias="id")
    black: bool | None = None
    correlated_black: bool | None = Field(None, alias="correlatedBlack")
    merchant_name: str | None = Field(None, alias="merchantName")
    created: str | None = None
    updated: str | None = None
    valid: bool | None = None

    @field_validator("black", "correlated_black", "valid", mode="before")
    @classmethod
    def parse_bools(cls, value):
        return parse_bool(value)

    def validation_error(self) -> str | None:
        gateway_owned = (
            ("valid", self.valid),
            ("black", self.black),
            ("correlatedBlack", self.correlated_black),
            ("created", self.created),
            ("updated", self.updated),
            ("id", self.gateway_id),
        )
        for wire, value in gateway_owned:
            if value is not None:
                return f"{wire} cannot be set"
        if not (self.client_id or "").strip():
            return "clientID cannot be blank"
        if self.cards is not None and len(self.cards) > 3:
            return "max 3 cards allowed"
        if self.billing_address is not None:
            problem = self.billing_address.validation_error()
            if problem:
                return f"billingAddress is not valid ({problem})"
        for card in self.cards or ():
            problem = card.validation_error()
            if problem:
                return f"card is not valid ({problem})"
        return None


# ---------- payment shapes ----------
class PaymentRequest(WireModel):
    client_id: str | None = Field(None, alias="clientID")
    order_id: str | None = Field(None, alias="orderID")
    amount: Decimal | None = None
    currency: str | None = None
    card_type: str | None = Field(None, alias="cardType")
    reply_url: str | None = Field(None, alias="replyURL")
    backoffice_url: str | None = Field(None, alias="backofficeURL")
    echo: str | None = None
    client: ClientDetails | None = None
    send_email: int = Field(0, alias="sendEmail")
    signature: str | None = None
    signature_version: str | None = Field(None, alias="signatureVersion")

    @field_validator("amount", mode="before")
    @classmethod
    def parse_decimals(cls, value):
        return parse_decimal(value)

    def validation_error(self) -> str | None:
        """First problem that keeps this request from being sent, or None.

        A missing ``client_id`` is taken from the nested client.
        """
        if not (self.client_id or "").strip():
            if self.client is None or not (self.client.client_id or "").strip():
                return "clientID cannot be blank"
            self.client_id = self.client.client_id
        if self.client is not None:
            if self.client.client_id != self.client_id:
                return f"clientID mismatch ({self.client_id} and {self.client.client_id})"
            problem = self.client.validation_error()
            if problem:
                return f"client is not valid ({problem})"
        return None


class PaymentReply(WireModel):
    RAW_TEXT_FIELD: ClassVar[str | None] = "html"

    result: str | None = None
    success: str | None = None
    client_id: str | None = Field(None, alias="clientID")
    order_id: str | None = Field(None, alias="orderID")
    amount: Decimal | None = None
    balance: Decimal | None = None
    currency: str | None = None
    merchant_id: str | None = Field(None, alias="merchantID")
    merchant: str | None = None
    date: dt.datetime | None = None
    settlement: dt.date | None = None
    detail: str | None = None
    reason: str | None = None
    url: str | None = None
    html: str | None = None
    signature: str | None = None

    @field_validator("amount", "balance", mode="before")
    @classmethod
    def parse_decimals(cls, value):
        return parse_decimal(value)

    @field_validator("date", mode="before")
    @classmethod
    def parse_timestamp(cls, value):
        return parse_gateway_datetime(value)

    @field_validator("settlement", mode="before")
    @classmethod
    def parse_settlement(cls, value):
        return parse_gateway_date(value)
