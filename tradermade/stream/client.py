"""Streaming quote feed client for the TraderMade websocket.

One persistent socket per client. After the socket opens, a single credential
frame subscribes to the symbol list given at construction. Inbound frames are
dispatched to callbacks from a background task; when the socket drops the
same task re-opens it with a fixed delay between attempts.

Callbacks run synchronously on the receive task in frame order. A slow
callback delays the frames behind it. Any callback may return an awaitable,
which is awaited before the next frame is read.
"""
import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import websockets
from websockets.exceptions import WebSocketException

from tradermade.common import config
from tradermade.common.errors import (
    FeedAuthenticationError,
    FeedConnectionError,
    FeedProtocolError,
    FeedRetriesExhaustedError,
)
from tradermade.common.models import ConnectedMessage, QuoteMessage
from tradermade.stream.normalizer import CONNECTED, INVALID, QUOTE, STATUS_LINE, parse_frame

logger = logging.getLogger("feed_ws")

TRANSPORT_ERRORS = (WebSocketException, OSError, asyncio.TimeoutError)

Connector = Callable[[str], Awaitable[Any]]


async def _default_connector(url: str):
    return await websockets.connect(url, open_timeout=10, close_timeout=5)


class FeedClient:
    """Websocket client for the real-time quote feed.

    Attributes the caller may set before (or after) connecting:

    - ``on_connected(ConnectedMessage)``: the server accepted the subscription
    - ``on_quote(QuoteMessage, str)``: quote plus human-readable timestamp
    - ``on_reconnect(int)``: a reconnection attempt is starting
    - ``on_error(Exception)``: errors raised inside the receive task, which
      have no other way back to the caller
    - ``max_retries`` / ``retry_interval``: reconnection policy
    - ``auto_reconnect``: re-open the socket after it drops
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        symbols: Union[str, Iterable[str]] = "",
        url: Optional[str] = None,
        utc: Optional[bool] = None,
        connector: Optional[Connector] = None,
    ):
        self.api_key = api_key or config.API_KEY or ""
        if isinstance(symbols, str):
            self.symbol = symbols
        else:
            self.symbol = ",".join(symbols)
        self.url = url or config.WS_URL
        self.utc = utc if utc is not None else config.WS_TIMESTAMP_TZ != "local"
        self._connector = connector or _default_connector

        self.max_retries = config.WS_MAX_RETRIES
        self.retry_interval = config.WS_RETRY_INTERVAL
        self.auto_reconnect = True

        self.on_connected: Optional[Callable[[ConnectedMessage], Any]] = None
        self.on_quote: Optional[Callable[[QuoteMessage, str], Any]] = None
        self.on_reconnect: Optional[Callable[[int], Any]] = None
        self.on_error: Optional[Callable[[Exception], Any]] = None

        self._ws = None
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._reader_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def auth_frame(self) -> str:
        return json.dumps({"userKey": self.api_key, "symbol": self.symbol}, separators=(",", ":"))

    async def connect(self) -> None:
        """Open the socket, start the receive task and send the credential frame.

        Does nothing if a socket is already open. A client that was
        disconnected gets a fresh stop signal, so it can be connected again.

        Raises:
            FeedConnectionError: the socket could not be opened.
            FeedAuthenticationError: the credential frame could not be sent.
                The socket stays installed and the receive task handles the
                broken connection.
        """
        if self._stop.is_set():
            self._stop = asyncio.Event()
        await self._open()

    async def _open(self) -> None:
        async with self._lock:
            if self._ws is not None:
                return

            try:
                ws = await self._connector(self.url)
            except TRANSPORT_ERRORS as e:
                logger.error(f"[feed_ws] Connection to {self.url} failed: {e}")
                raise FeedConnectionError(f"connection to {self.url} failed: {e}") from e

            self._ws = ws
            self._reader_task = asyncio.create_task(self._read_loop(ws, self._stop))
            logger.info(f"[feed_ws] Connected to {self.url}")

            try:
                await ws.send(self.auth_frame())
            except TRANSPORT_ERRORS as e:
                logger.error(f"[feed_ws] Failed to send credentials: {e}")
                raise FeedAuthenticationError(f"failed to send credentials: {e}") from e
            logger.debug(f"[feed_ws] Subscribed to {self.symbol}")

    async def disconnect(self) -> None:
        """Stop reconnecting and close the socket.

        Safe to call more than once. When called from outside the receive
        task, waits for that task to finish.
        """
        self._stop.set()

        async with self._lock:
            ws, self._ws = self._ws, None
            if ws is not None:
                await ws.close()
                logger.info("[feed_ws] Disconnected")

        task = self._reader_task
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

    async def __aenter__(self) -> "FeedClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    async def _read_loop(self, ws, stop: asyncio.Event) -> None:
        # `stop` is the signal live when this socket opened; connect() may install a newer one.
        while True:
            try:
                raw = await ws.recv()
            except TRANSPORT_ERRORS as e:
                error = e
                break
            try:
                await self._dispatch(raw)
            except Exception:
                logger.exception("[feed_ws] Dropped frame after unexpected error")

        async with self._lock:
            if self._ws is ws:
                self._ws = None
                await ws.close()

        if stop.is_set():
            logger.debug("[feed_ws] Receive loop finished after disconnect")
            return

        logger.warning(f"[feed_ws] Read error: {error}")
        await self._notify(self.on_error, FeedConnectionError(f"connection lost: {error}"))

        if self.auto_reconnect:
            await self._reconnect(stop)

    async def _dispatch(self, raw) -> None:
        frame = parse_frame(raw, utc=self.utc)

        if frame.kind == STATUS_LINE:
            logger.info(f"[feed_ws] Status: {frame.text}")
        elif frame.kind == CONNECTED:
            logger.info(f"[feed_ws] Feed connected: {frame.connected.message}")
            await self._notify(self.on_connected, frame.connected)
        elif frame.kind == QUOTE:
            await self._notify(self.on_quote, frame.quote, frame.timestamp)
        elif frame.kind == INVALID:
            logger.warning(f"[feed_ws] Dropped frame ({frame.reason}): {frame.text[:200]}")
            await self._notify(self.on_error, FeedProtocolError(frame.reason, frame.text))

    async def _reconnect(self, stop: asyncio.Event) -> None:
        """Re-open the socket, at most ``max_retries`` times.

        Runs inline on the receive task that saw the socket drop. Waiting
        between attempts is cut short by ``disconnect()``.
        """
        attempt = 0
        while True:
            attempt += 1
            if attempt > self.max_retries:
                logger.error("[feed_ws] Max retries reached. Stopping reconnection attempts.")
                await self._notify(self.on_error, FeedRetriesExhaustedError(self.max_retries))
                return
            if stop.is_set():
                logger.info("[feed_ws] Reconnect stopped.")
                return

            await self._notify(self.on_reconnect, attempt)
            logger.info(f"[feed_ws] Attempting to reconnect... (attempt {attempt}/{self.max_retries})")
            try:
                await self._open()
                logger.info("[feed_ws] Successfully reconnected.")
                return
            except FeedConnectionError:
                pass
            except FeedAuthenticationError:
                # The new receive task owns the broken socket now.
                return

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.retry_interval)
            except asyncio.TimeoutError:
                continue
            logger.info("[feed_ws] Reconnect stopped.")
            return

    async def _notify(self, callback: Optional[Callable[..., Any]], *args) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"[feed_ws] Callback {getattr(callback, '__name__', callback)!r} failed")


__all__ = ["FeedClient"]
