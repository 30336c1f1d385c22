"""
Unit tests for FeedClient.

Tests validate:
- Credential frame sent once per connection, compact JSON
- Frame dispatch to connected / quote callbacks, drop of unknown frames
- Reconnection attempts bounded by max_retries
- disconnect() cutting a pending retry wait short
- connect() after disconnect()
"""
import asyncio
import json

import pytest
import pytest_asyncio

from tradermade.common.errors import (
    FeedAuthenticationError,
    FeedConnectionError,
    FeedProtocolError,
    FeedRetriesExhaustedError,
)
from tradermade.stream.client import FeedClient


class FakeSocket:
    """In-memory stand-in for a websockets connection."""

    def __init__(self, fail_send: bool = False):
        self.sent = []
        self.closed = False
        self.fail_send = fail_send
        self._incoming: asyncio.Queue = asyncio.Queue()

    def feed(self, frame) -> None:
        self._incoming.put_nowait(frame)

    def drop(self) -> None:
        self._incoming.put_nowait(ConnectionResetError("connection reset by peer"))

    async def send(self, data: str) -> None:
        if self.fail_send:
            raise ConnectionResetError("broken pipe")
        self.sent.append(data)

    async def recv(self):
        item = await self._incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(ConnectionResetError("closed"))


class FakeConnector:
    def __init__(self):
        self.calls = 0
        self.failing = False
        self.fail_send = False
        self.sockets = []

    async def __call__(self, url: str):
        self.calls += 1
        if self.failing:
            raise ConnectionRefusedError("connection refused")
        ws = FakeSocket(fail_send=self.fail_send)
        self.sockets.append(ws)
        return ws


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest_asyncio.fixture
async def client(connector):
    c = FeedClient("k1", "EURUSD,GBPUSD", url="wss://feed.test/feedadv", utc=True, connector=connector)
    c.retry_interval = 0.01
    c.quotes = []
    c.notices = []
    c.attempts = []
    c.errors = []
    c.on_quote = lambda quote, ts: c.quotes.append((quote, ts))
    c.on_connected = c.notices.append
    c.on_reconnect = c.attempts.append
    c.on_error = c.errors.append
    yield c
    await c.disconnect()


@pytest.mark.asyncio
async def test_connect_sends_compact_auth_frame(client, connector):
    await client.connect()

    assert client.connected
    assert connector.sockets[0].sent == ['{"userKey":"k1","symbol":"EURUSD,GBPUSD"}']


def test_symbols_iterable_joined_without_spaces():
    c = FeedClient("key", ["EURUSD", "GBPUSD", "XAUUSD"], connector=FakeConnector())
    assert c.symbol == "EURUSD,GBPUSD,XAUUSD"
    assert json.loads(c.auth_frame()) == {"userKey": "key", "symbol": "EURUSD,GBPUSD,XAUUSD"}


@pytest.mark.asyncio
async def test_second_connect_is_noop(client, connector):
    await client.connect()
    task = client._reader_task

    await client.connect()

    assert connector.calls == 1
    assert len(connector.sockets[0].sent) == 1
    assert client._reader_task is task


@pytest.mark.asyncio
async def test_quote_frame_dispatched_with_millisecond_timestamp(client, connector):
    await client.connect()
    connector.sockets[0].feed('{"symbol":"EURUSD","bid":1.1,"ask":1.2,"mid":1.15,"ts":"1700000000123"}')

    await wait_until(lambda: client.quotes)

    quote, ts = client.quotes[0]
    assert quote.symbol == "EURUSD"
    assert quote.bid == 1.1
    assert quote.ask == 1.2
    assert quote.mid == 1.15
    assert ts == "2023-11-14 22:13:20.123"
    assert client.notices == []


@pytest.mark.asyncio
async def test_connected_notice_invokes_connected_callback_only(client, connector):
    await client.connect()
    connector.sockets[0].feed('{"status":"connected","message":"ok"}')

    await wait_until(lambda: client.notices)

    assert client.notices[0].message == "ok"
    assert client.quotes == []


@pytest.mark.asyncio
async def test_unknown_frames_dropped_without_callbacks(client, connector):
    await client.connect()
    ws = connector.sockets[0]
    ws.feed("PONG")
    ws.feed('{"status":"error","message":"bad key"}')
    ws.feed('{"symbol":"EURUSD","bid":1.1,"ask":1.2,"mid":1.15,"ts":"soon"}')
    ws.feed("{not json")
    # Sentinel: frames are processed in order, so once this arrives the rest are done
    ws.feed('{"symbol":"GBPUSD","bid":1.3,"ask":1.4,"mid":1.35,"ts":"1700000000001"}')

    await wait_until(lambda: client.quotes)

    assert [q.symbol for q, _ in client.quotes] == ["GBPUSD"]
    assert client.notices == []
    assert len(client.errors) == 3
    assert all(isinstance(e, FeedProtocolError) for e in client.errors)
    assert client.connected


@pytest.mark.asyncio
async def test_binary_frame_decoded_as_text(client, connector):
    await client.connect()
    connector.sockets[0].feed(b'{"status":"connected","message":"bytes"}')

    await wait_until(lambda: client.notices)

    assert client.notices[0].message == "bytes"


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_receive_loop(client, connector):
    calls = []

    def explode(quote, ts):
        calls.append(quote.symbol)
        raise RuntimeError("handler bug")

    client.on_quote = explode
    await client.connect()
    ws = connector.sockets[0]
    ws.feed('{"symbol":"EURUSD","bid":1,"ask":1,"mid":1,"ts":"1"}')
    ws.feed('{"symbol":"GBPUSD","bid":1,"ask":1,"mid":1,"ts":"2"}')

    await wait_until(lambda: len(calls) == 2)

    assert client.connected


@pytest.mark.asyncio
async def test_async_callback_awaited(client, connector):
    seen = []

    async def on_connected(notice):
        await asyncio.sleep(0)
        seen.append(notice.message)

    client.on_connected = on_connected
    await client.connect()
    connector.sockets[0].feed('{"status":"connected","message":"ok"}')

    await wait_until(lambda: seen)

    assert seen == ["ok"]


@pytest.mark.asyncio
async def test_connect_failure_raises_and_installs_nothing(client, connector):
    connector.failing = True

    with pytest.raises(FeedConnectionError):
        await client.connect()

    assert not client.connected
    assert client._reader_task is None


@pytest.mark.asyncio
async def test_auth_send_failure_raises_but_keeps_socket(client, connector):
    client.auto_reconnect = False
    connector.fail_send = True

    with pytest.raises(FeedAuthenticationError):
        await client.connect()

    assert client.connected
    assert client._reader_task is not None


@pytest.mark.asyncio
async def test_reconnects_after_drop(client, connector):
    await client.connect()
    connector.sockets[0].drop()

    await wait_until(lambda: len(connector.sockets) == 2 and client.connected)

    assert client.attempts == [1]
    assert connector.sockets[0].closed
    assert connector.sockets[1].sent == ['{"userKey":"k1","symbol":"EURUSD,GBPUSD"}']
    assert isinstance(client.errors[0], FeedConnectionError)


@pytest.mark.asyncio
async def test_reconnect_attempts_bounded_by_max_retries(client, connector):
    client.max_retries = 3
    await client.connect()
    connector.failing = True
    connector.sockets[0].drop()

    await wait_until(lambda: any(isinstance(e, FeedRetriesExhaustedError) for e in client.errors))
    await asyncio.sleep(0.05)

    assert client.attempts == [1, 2, 3]
    assert connector.calls == 4
    assert not client.connected
    assert client.errors[-1].attempts == 3


@pytest.mark.asyncio
async def test_disconnect_during_retry_wait_stops_reconnecting(client, connector):
    client.retry_interval = 30
    await client.connect()
    connector.failing = True
    connector.sockets[0].drop()
    await wait_until(lambda: client.attempts == [1])

    await asyncio.wait_for(client.disconnect(), timeout=1.0)
    await asyncio.sleep(0.05)

    assert client.attempts == [1]
    assert connector.calls == 2
    assert client._reader_task is None


@pytest.mark.asyncio
async def test_no_reconnect_when_disabled(client, connector):
    client.auto_reconnect = False
    await client.connect()
    connector.sockets[0].drop()

    await wait_until(lambda: not client.connected)
    await asyncio.sleep(0.05)

    assert client.attempts == []
    assert connector.calls == 1
    assert isinstance(client.errors[0], FeedConnectionError)


@pytest.mark.asyncio
async def test_disconnect_does_not_trigger_reconnect(client, connector):
    await client.connect()
    ws = connector.sockets[0]

    await client.disconnect()
    await client.disconnect()

    assert ws.closed
    assert not client.connected
    assert client.attempts == []
    assert client.errors == []


@pytest.mark.asyncio
async def test_connect_after_disconnect(client, connector):
    await client.connect()
    await client.disconnect()

    await client.connect()

    assert client.connected
    assert connector.calls == 2
    connector.sockets[1].drop()
    await wait_until(lambda: len(connector.sockets) == 3)
    assert client.attempts == [1]


@pytest.mark.asyncio
async def test_disconnect_from_callback(client, connector):
    async def on_connected(notice):
        await client.disconnect()

    client.on_connected = on_connected
    await client.connect()
    connector.sockets[0].feed('{"status":"connected","message":"ok"}')

    await wait_until(lambda: not client.connected)
    await asyncio.sleep(0.05)

    assert client.attempts == []
    assert connector.calls == 1


@pytest.mark.asyncio
async def test_context_manager_connects_and_disconnects(connector):
    async with FeedClient("k1", "EURUSD", connector=connector) as c:
        assert c.connected
    assert not c.connected
    assert connector.sockets[0].closed


@pytest.mark.asyncio
async def test_out_of_range_timestamp_dropped_and_loop_continues(client, connector):
    await client.connect()
    ws = connector.sockets[0]
    ws.feed('{"symbol":"EURUSD","bid":1.1,"ask":1.2,"mid":1.15,"ts":"99999999999999999"}')
    ws.feed('{"symbol":"GBPUSD","bid":1.3,"ask":1.4,"mid":1.35,"ts":"1700000000001"}')

    await wait_until(lambda: client.quotes)

    assert [q.symbol for q, _ in client.quotes] == ["GBPUSD"]
    assert len(client.errors) == 1
    assert isinstance(client.errors[0], FeedProtocolError)
    assert client.connected
    assert not client._reader_task.done()


@pytest.mark.asyncio
async def test_receive_loop_survives_unexpected_dispatch_error(client, connector, monkeypatch):
    import tradermade.stream.client as stream_client

    real_parse = stream_client.parse_frame

    def flaky_parse(raw, utc=True):
        if "BOOM" in raw:
            raise RuntimeError("unexpected")
        return real_parse(raw, utc=utc)

    monkeypatch.setattr(stream_client, "parse_frame", flaky_parse)
    await client.connect()
    ws = connector.sockets[0]
    ws.feed('{"symbol":"BOOM"}')
    ws.feed('{"symbol":"GBPUSD","bid":1.3,"ask":1.4,"mid":1.35,"ts":"1700000000001"}')

    await wait_until(lambda: client.quotes)

    assert client.connected
    assert not client._reader_task.done()


@pytest.mark.asyncio
async def test_restart_from_callback_does_not_reconnect(client, connector):
    restarted = []

    async def on_connected(notice):
        if not restarted:
            restarted.append(True)
            await client.disconnect()
            await client.connect()

    client.on_connected = on_connected
    await client.connect()
    connector.sockets[0].feed('{"status":"connected","message":"ok"}')

    await wait_until(lambda: len(connector.sockets) == 2)
    await asyncio.sleep(0.05)

    assert client.attempts == []
    assert client.errors == []
    assert client.connected
    assert connector.calls == 2
    assert connector.sockets[0].closed
    assert connector.sockets[1].sent == ['{"userKey":"k1","symbol":"EURUSD,GBPUSD"}']
