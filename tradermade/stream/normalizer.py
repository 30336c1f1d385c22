"""Normalization helpers for raw feed frames.

Each inbound frame is classified into exactly one `ParsedFrame` kind:

- ``status_line``: text that does not start with ``{`` or ``[`` (e.g. ``PONG``)
- ``connected``: a status notice whose ``status`` is ``"connected"``
- ``quote``: a quote update with a well-formed millisecond timestamp
- ``invalid``: structured text matching neither shape; carries the reason

Status notices are tried before quotes, so a notice never reaches quote
validation.
"""
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from pydantic import ValidationError

from tradermade.common.models import ConnectedMessage, QuoteMessage

CONNECTED_STATUS = "connected"

STATUS_LINE = "status_line"
CONNECTED = "connected"
QUOTE = "quote"
INVALID = "invalid"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ParsedFrame:
    kind: str
    text: str
    connected: Optional[ConnectedMessage] = None
    quote: Optional[QuoteMessage] = None
    timestamp: Optional[str] = None
    reason: Optional[str] = None


def format_timestamp(ts_ms: int, utc: bool = True) -> str:
    """Render epoch milliseconds as ``YYYY-MM-DD HH:MM:SS.mmm``.

    Integer arithmetic keeps the millisecond component exact.
    """
    seconds, millis = divmod(ts_ms, 1000)
    if utc:
        dt = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=seconds)
    else:
        dt = datetime.fromtimestamp(seconds)
    return f"{dt.strftime(TIMESTAMP_FORMAT)}.{millis:03d}"


def parse_timestamp(ts: str) -> int:
    """Parse a base-10 millisecond timestamp; raises ValueError otherwise."""
    text = ts.lstrip("+-")
    if not text or not text.isdigit() or not text.isascii():
        raise ValueError(f"invalid timestamp: {ts!r}")
    return int(ts)


def parse_frame(raw: Union[str, bytes], utc: bool = True) -> ParsedFrame:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    stripped = raw.lstrip()
    if not stripped.startswith(("{", "[")):
        return ParsedFrame(kind=STATUS_LINE, text=raw)

    try:
        payload = json.loads(stripped)
    except json.JSONDecodeError as e:
        return ParsedFrame(kind=INVALID, text=raw, reason=f"malformed JSON: {e}")

    if isinstance(payload, dict) and "status" in payload:
        try:
            notice = ConnectedMessage.model_validate(payload)
        except ValidationError:
            notice = None
        if notice is not None and notice.status == CONNECTED_STATUS:
            return ParsedFrame(kind=CONNECTED, text=raw, connected=notice)

    try:
        quote = QuoteMessage.model_validate(payload)
    except ValidationError as e:
        return ParsedFrame(kind=INVALID, text=raw, reason=f"not a quote: {e.error_count()} field error(s)")

    try:
        ts_ms = parse_timestamp(quote.ts)
        timestamp = format_timestamp(ts_ms, utc=utc)
    except (OverflowError, ValueError, OSError) as e:
        return ParsedFrame(kind=INVALID, text=raw, reason=f"unusable timestamp {quote.ts!r}: {e}")

    return ParsedFrame(kind=QUOTE, text=raw, quote=quote, timestamp=timestamp)


__all__ = ["ParsedFrame", "parse_frame", "format_timestamp", "parse_timestamp", "CONNECTED_STATUS"]
