"""Decoder for the provider's live pricing frames.

Frames carry a base64-encoded ``PricingData`` protobuf message, usually wrapped
as ``{"message": "<base64>"}``. The message type is built at import time from a
descriptor so no generated ``_pb2`` module is needed; field numbers must match
the provider's schema exactly.

Decoding is stateless: the same frame always yields an equal ``StreamUpdate``.
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime, timezone
from typing import Any, Optional, Tuple, Union

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError as ProtobufDecodeError

from yfkit.core.exceptions import DecodeError
from yfkit.core.models import MarketState, StreamUpdate

_F = descriptor_pb2.FieldDescriptorProto

# (name, number, type); every field is optional so presence can be tested.
PRICING_FIELDS: Tuple[Tuple[str, int, int], ...] = (
    ("id", 1, _F.TYPE_STRING),
    ("price", 2, _F.TYPE_FLOAT),
    ("time", 3, _F.TYPE_SINT64),
    ("currency", 4, _F.TYPE_STRING),
    ("exchange", 5, _F.TYPE_STRING),
    ("quote_type", 6, _F.TYPE_INT32),
    ("market_hours", 7, _F.TYPE_INT32),
    ("change_percent", 8, _F.TYPE_FLOAT),
    ("day_volume", 9, _F.TYPE_SINT64),
    ("day_high", 10, _F.TYPE_FLOAT),
    ("day_low", 11, _F.TYPE_FLOAT),
    ("change", 12, _F.TYPE_FLOAT),
    ("short_name", 13, _F.TYPE_STRING),
    ("expire_date", 14, _F.TYPE_SINT64),
    ("open_price", 15, _F.TYPE_FLOAT),
    ("previous_close", 16, _F.TYPE_FLOAT),
    ("strike_price", 17, _F.TYPE_FLOAT),
    ("underlying_symbol", 18, _F.TYPE_STRING),
    ("open_interest", 19, _F.TYPE_SINT64),
    ("options_type", 20, _F.TYPE_INT32),
    ("mini_option", 21, _F.TYPE_SINT64),
    ("last_size", 22, _F.TYPE_SINT64),
    ("bid", 23, _F.TYPE_FLOAT),
    ("bid_size", 24, _F.TYPE_SINT64),
    ("ask", 25, _F.TYPE_FLOAT),
    ("ask_size", 26, _F.TYPE_SINT64),
    ("price_hint", 27, _F.TYPE_SINT64),
    ("vol_24hr", 28, _F.TYPE_SINT64),
    ("vol_all_currencies", 29, _F.TYPE_SINT64),
    ("from_currency", 30, _F.TYPE_STRING),
    ("last_market", 31, _F.TYPE_STRING),
    ("circulating_supply", 32, _F.TYPE_DOUBLE),
    ("market_cap", 33, _F.TYPE_DOUBLE),
)

_MARKET_HOURS = {
    0: MarketState.PRE,
    1: MarketState.REGULAR,
    2: MarketState.POST,
    3: MarketState.EXTENDED,
}


def _build_pricing_class() -> Any:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="yfkit/stream/pricing.proto",
        package="yfkit.stream",
        syntax="proto2",
    )
    message = file_proto.message_type.add(name="PricingData")
    for name, number, kind in PRICING_FIELDS:
        message.field.add(name=name, number=number, type=kind, label=_F.LABEL_OPTIONAL)

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    descriptor = pool.FindMessageTypeByName("yfkit.stream.PricingData")
    return message_factory.GetMessageClass(descriptor)


PricingData = _build_pricing_class()


def _payload_text(frame: Union[str, bytes, bytearray]) -> Optional[str]:
    """The base64 text inside ``frame``; ``None`` when the bytes are not text."""
    if isinstance(frame, (bytes, bytearray)):
        try:
            text = bytes(frame).decode("utf-8")
        except UnicodeDecodeError:
            return None
    else:
        text = frame
    text = text.strip()
    if text.startswith("{"):
        try:
            wrapper = json.loads(text)
        except ValueError:
            return text
        message = wrapper.get("message") if isinstance(wrapper, dict) else None
        if not isinstance(message, str):
            raise DecodeError("stream frame: JSON wrapper without a 'message' string")
        return message.strip()
    return text


def parse_pricing(frame: Union[str, bytes, bytearray]) -> Any:
    """Decode ``frame`` into a ``PricingData`` message.

    Accepts the JSON wrapper, bare base64 text, UTF-8 bytes of either, or raw
    protobuf bytes.
    """
    text = _payload_text(frame)
    if text is None:
        raw = bytes(frame)
    else:
        if not text:
            raise DecodeError("stream frame: empty payload")
        try:
            raw = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            if isinstance(frame, (bytes, bytearray)):
                # raw protobuf that happens to be valid UTF-8
                raw = bytes(frame)
            else:
                raise DecodeError(f"stream frame: invalid base64 ({exc})") from exc

    msg = PricingData()
    try:
        msg.ParseFromString(raw)
    except ProtobufDecodeError as exc:
        raise DecodeError(f"stream frame: invalid protobuf ({exc})") from exc
    return msg


def update_from_pricing(msg: Any) -> StreamUpdate:
    """Map a ``PricingData`` message onto ``StreamUpdate`` field by field."""
    if not msg.HasField("id") or not msg.id:
        raise DecodeError("stream frame: missing instrument id")
    if not msg.HasField("time"):
        raise DecodeError(f"stream frame for {msg.id}: missing time")
    try:
        timestamp = datetime.fromtimestamp(msg.time / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise DecodeError(f"stream frame for {msg.id}: invalid time {msg.time}") from exc

    return StreamUpdate(
        symbol=msg.id.upper(),
        last_price=float(msg.price) if msg.HasField("price") else None,
        timestamp=timestamp,
        # proto3 senders omit market_hours when it is 0 (pre-market)
        market_state=_MARKET_HOURS.get(msg.market_hours, MarketState.UNKNOWN),
        volume=int(msg.day_volume) if msg.HasField("day_volume") else None,
        previous_close=(
            float(msg.previous_close) if msg.HasField("previous_close") else None
        ),
        currency=msg.currency if msg.HasField("currency") else None,
    )


def decode_frame(frame: Union[str, bytes, bytearray]) -> StreamUpdate:
    return update_from_pricing(parse_pricing(frame))


def encode_frame(fields: dict, *, wrap: bool = True) -> str:
    """Inverse of ``decode_frame`` for fixtures and replay tooling."""
    msg = PricingData(**fields)
    text = base64.b64encode(msg.SerializeToString()).decode("ascii")
    return json.dumps({"message": text}) if wrap else text


__all__ = [
    "PRICING_FIELDS",
    "PricingData",
    "decode_frame",
    "encode_frame",
    "parse_pricing",
    "update_from_pricing",
]
