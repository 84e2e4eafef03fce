"""Price record model and feed message decoding."""

from __future__ import annotations

import json
import unicodedata
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import MalformedMessageError

MAX_SYMBOL_LENGTH = 32
# Upper bound on significant digits and on the decimal exponent, well inside
# what a PostgreSQL NUMERIC column accepts.
MAX_DECIMAL_DIGITS = 38
MAX_DECIMAL_EXPONENT = 38


class PriceRecord(BaseModel):
    """Latest quote for one ticker symbol.

    Field names follow Python conventions; the wire format uses the aliases
    published on the feed (``changePercent``, ``timestamp``).  Decimals are
    kept at full precision and are emitted as strings in JSON.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    symbol: str = Field(
        ..., min_length=1, max_length=MAX_SYMBOL_LENGTH, examples=["AAPL", "TSLA"]
    )
    price: Decimal
    change: Optional[Decimal] = None
    change_percent: Optional[Decimal] = Field(default=None, alias="changePercent")
    observed_at: Optional[datetime] = Field(default=None, alias="timestamp")

    @field_validator("symbol", mode="before")
    @classmethod
    def _strip_symbol(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("symbol")
    @classmethod
    def _printable_symbol(cls, value: str) -> str:
        # control, format and surrogate code points cannot be stored as text
        if any(unicodedata.category(ch).startswith("C") for ch in value):
            raise ValueError("symbol contains control characters")
        return value

    @field_validator("price", "change", "change_percent", mode="before")
    @classmethod
    def _reject_bool(cls, value):
        # bool is an int subclass and would otherwise coerce to 0/1
        if isinstance(value, bool):
            raise ValueError("boolean is not a valid decimal")
        return value

    @field_validator("price", "change", "change_percent")
    @classmethod
    def _bounded_decimal(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is None:
            return value
        _, digits, exponent = value.as_tuple()
        if len(digits) > MAX_DECIMAL_DIGITS:
            raise ValueError(f"more than {MAX_DECIMAL_DIGITS} significant digits")
        if not -MAX_DECIMAL_EXPONENT <= exponent <= MAX_DECIMAL_EXPONENT:
            raise ValueError("decimal exponent out of range")
        return value

    @field_validator("observed_at", mode="before")
    @classmethod
    def _epoch_decimal(cls, value):
        # fractional epoch seconds arrive as Decimal from decode_price_message
        if isinstance(value, Decimal):
            return float(value)
        return value

    @field_validator("observed_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_wire(self) -> dict:
        """Return the JSON-ready representation using the feed's field names."""

        return self.model_dump(mode="json", by_alias=True)


def decode_price_message(raw: Union[bytes, bytearray, str, None]) -> PriceRecord:
    """Decode one feed message body into a :class:`PriceRecord`.

    JSON numbers are read straight into :class:`~decimal.Decimal`, so a price
    sent as a number keeps every digit it was sent with.

    Raises :class:`~livestock.errors.MalformedMessageError` when the body is
    empty, is not UTF-8 JSON, or does not carry valid ``symbol`` and
    ``price`` fields.
    """

    if raw is None or len(raw) == 0:
        raise MalformedMessageError("empty message body")
    try:
        payload = json.loads(raw, parse_float=Decimal)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedMessageError(f"message body is not JSON: {exc}") from exc
    try:
        return PriceRecord.model_validate(payload)
    except ValidationError as exc:
        raise MalformedMessageError(
            f"invalid price message: {exc.error_count()} error(s): "
            + "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()
            )
        ) from exc


__all__ = ["PriceRecord", "decode_price_message", "MAX_SYMBOL_LENGTH"]
