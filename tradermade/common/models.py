from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# Streaming feed payloads


class ConnectedMessage(BaseModel):
    status: str
    message: str = ""


class QuoteMessage(BaseModel):
    symbol: str
    bid: float = 0.0
    ask: float = 0.0
    mid: float = 0.0
    ts: str  # milliseconds since epoch, sent as text


# REST payloads


class Quote(BaseModel):
    """Live quote for a currency pair or an instrument such as an index."""

    ask: float = 0.0
    bid: float = 0.0
    mid: float = 0.0
    base_currency: Optional[str] = None
    quote_currency: Optional[str] = None
    instrument: Optional[str] = None


class LiveRate(BaseModel):
    endpoint: str = ""
    quotes: List[Quote] = Field(default_factory=list)
    requested_time: str = ""
    timestamp: int = 0


class HistoricalQuote(BaseModel):
    base_currency: str = ""
    quote_currency: str = ""
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0


class HistoricalRate(BaseModel):
    """Daily historical response: one OHLC quote per requested currency."""

    date: str = ""
    endpoint: str = ""
    quotes: List[HistoricalQuote] = Field(default_factory=list)
    request_time: str = ""


class HistoricalData(BaseModel):
    """Single minute or hour bar."""

    endpoint: str = ""
    currency: str = ""
    date_time: str = ""
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    request_time: str = ""


class TimeSeriesQuote(BaseModel):
    date: str = ""
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0


class TimeSeriesRate(BaseModel):
    base_currency: str = ""
    quote_currency: str = ""
    start_date: str = ""
    end_date: str = ""
    endpoint: str = ""
    quotes: List[TimeSeriesQuote] = Field(default_factory=list)
    request_time: str = ""


class ConvertResponse(BaseModel):
    base_currency: str = ""
    quote_currency: str = ""
    quote: float = 0.0
    total: float = 0.0
    requested_time: str = ""
    timestamp: int = 0


class ErrorResponse(BaseModel):
    """Body returned alongside a non-200 status."""

    message: Optional[str] = None
    errors: Optional[Dict[str, Any]] = None


class ErrorResponseOK(BaseModel):
    """Error embedded in a 200 response; `error == 0` means no error."""

    error: int = 0
    message: Optional[str] = None
