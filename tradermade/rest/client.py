"""Lightweight TraderMade REST client.

Provides endpoints:
- GET /live (live quotes for currency pairs and instruments)
- GET /minute_historical, /hour_historical, /historical (historical bars)
- GET /timeseries (daily, hourly or minute series)
- GET /convert (currency conversion)

Every request carries the API key as the `api_key` query parameter. There is
no retry and no state kept between calls. A request fails when the status is
not 200 or when a 200 body carries a non-zero `error` code.

This client uses `httpx` and is async.
"""
from typing import Any, Dict, Iterable, Optional, Type, TypeVar
import logging

import httpx
from pydantic import BaseModel, ValidationError

from tradermade.common import config
from tradermade.common.errors import APIError, ResponseParseError, RestTransportError
from tradermade.common.models import (
    ConvertResponse,
    ErrorResponse,
    ErrorResponseOK,
    HistoricalData,
    HistoricalRate,
    LiveRate,
    TimeSeriesRate,
)

logger = logging.getLogger("tradermade_http")

HOURLY_PERIODS = (1, 2, 4, 6, 8, 24)
MINUTE_PERIODS = (1, 5, 10, 15, 30)

ModelT = TypeVar("ModelT", bound=BaseModel)


class RestClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config.BASE_URL).rstrip("/")
        self.api_key = api_key or config.API_KEY
        self._client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else config.HTTP_TIMEOUT,
            transport=transport,
        )

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def _get(self, path: str, params: Dict[str, Any], model: Type[ModelT]) -> ModelT:
        """GET `path` and decode the body into `model`.

        Raises:
            RestTransportError: no response was received.
            APIError: non-200 status, or a 200 body with a non-zero `error`.
            ResponseParseError: the body does not decode into `model`.
        """
        url = f"{self.base_url}/{path}"
        params = {**params, "api_key": self.api_key}
        try:
            r = await self._client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"Request to /{path} failed: {type(e).__name__}: {e}")
            raise RestTransportError(f"request to /{path} failed: {e}") from e

        body = r.content
        if r.status_code != httpx.codes.OK:
            try:
                err = ErrorResponse.model_validate_json(body)
            except ValidationError:
                logger.error(f"HTTP {r.status_code} from /{path}: {r.text}")
                raise APIError(
                    f"API request failed with status code {r.status_code}: {r.text}",
                    status_code=r.status_code,
                )
            logger.error(f"HTTP {r.status_code} from /{path}: {err.errors or err.message}")
            raise APIError(
                f"API request failed with status code {r.status_code}: {_format_errors(err.errors) or err.message or r.text}",
                status_code=r.status_code,
                errors=err.errors,
            )

        # A 200 response may still carry an error code
        try:
            embedded = ErrorResponseOK.model_validate_json(body)
        except ValidationError:
            embedded = None
        if embedded is not None and embedded.error != 0:
            logger.error(f"API error from /{path}: {embedded.error} - {embedded.message}")
            raise APIError(
                f"API error: {embedded.error} - {embedded.message}",
                status_code=r.status_code,
                error_code=embedded.error,
            )

        try:
            return model.model_validate_json(body)
        except ValidationError as e:
            raise ResponseParseError(f"failed to parse successful response: {e}") from e

    async def get_live_rates(self, currencies: Iterable[str]) -> LiveRate:
        """Fetch live quotes for currency pairs (e.g. "EURUSD") or instruments."""
        return await self._get("live", {"currency": ",".join(currencies)}, LiveRate)

    async def get_historical_rates(self, currency: str, date_time: str, interval: str):
        """Fetch one historical bar.

        Args:
            currency: pair code, e.g. "EURUSD"
            date_time: "YYYY-MM-DD-HH:MM" for minute and hour bars, "YYYY-MM-DD" for day
            interval: "minute", "hour" or "day"

        Returns:
            `HistoricalData` for minute/hour, `HistoricalRate` for day.
        """
        if interval == "minute":
            return await self._get(
                "minute_historical", {"currency": currency, "date_time": date_time}, HistoricalData
            )
        if interval == "hour":
            return await self._get(
                "hour_historical", {"currency": currency, "date_time": date_time}, HistoricalData
            )
        if interval == "day":
            return await self._get("historical", {"currency": currency, "date": date_time}, HistoricalRate)
        raise ValueError(f"invalid interval: {interval}")

    async def get_time_series(
        self,
        currency: str,
        start_date: str,
        end_date: str,
        interval: str = "daily",
        period: Optional[int] = None,
    ) -> TimeSeriesRate:
        """Fetch a time series between two dates.

        Args:
            interval: "daily", "hourly" or "minute" (case-insensitive)
            period: required for hourly (1, 2, 4, 6, 8, 24) and minute (1, 5, 10, 15, 30)
        """
        params: Dict[str, Any] = {
            "currency": currency,
            "start_date": start_date,
            "end_date": end_date,
            "format": "records",
        }
        kind = interval.lower()
        if kind == "daily":
            params["interval"] = "daily"
        elif kind in ("hourly", "minute"):
            if period is None:
                raise ValueError(f"period must be provided for {interval} interval")
            allowed = HOURLY_PERIODS if kind == "hourly" else MINUTE_PERIODS
            if period not in allowed:
                raise ValueError(f"invalid period for {kind} interval: {period}")
            params["interval"] = kind
            params["period"] = period
        else:
            raise ValueError(f"invalid interval: {interval}")
        return await self._get("timeseries", params, TimeSeriesRate)

    async def convert(self, from_currency: str, to_currency: str, amount: float) -> ConvertResponse:
        """Convert `amount` of `from_currency` into `to_currency`."""
        params = {
            "from": from_currency.replace(" ", ""),
            "to": to_currency.replace(" ", ""),
            "amount": f"{amount:f}",
        }
        return await self._get("convert", params, ConvertResponse)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RestClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def _format_errors(errors: Optional[Dict[str, Any]]) -> str:
    if not errors:
        return ""
    return "; ".join(f"{key}: {value}" for key, value in errors.items())


__all__ = ["RestClient"]
