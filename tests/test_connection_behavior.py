import asyncio
import json
import unittest

from samthing.protocol import ClientMessage, Envelope, ServerMessage
from samthing.ws.connection import Backoff, ConnectionManager, ConnectionState, MessageDroppedError


_DROP = object()


class _FakeSocket:
    def __init__(self):
        """Initialize _FakeSocket state."""
        self.sent = []
        self.closed = False
        self.fail_send = False
        self._inbox = asyncio.Queue()

    async def send(self, raw):
        if self.fail_send:
            raise ConnectionError("send failed")
        self.sent.append(json.loads(raw))

    async def close(self):
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def feed(self, frame):
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self):
        self._inbox.put_nowait(_DROP)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        if item is _DROP:
            self.closed = True
            raise ConnectionError("connection reset by peer")
        return item


class _SlowCloseSocket(_FakeSocket):
    async def close(self):
        # Close handshake takes a few loop turns, like a real websocket.
        await asyncio.sleep(0.01)
        await super().close()


class _FakeConnector:
    def __init__(self, failures=0):
        """Initialize _FakeConnector state."""
        self.urls = []
        self.sockets = []
        self.failures = failures

    async def __call__(self, url):
        self.urls.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError("connection refused")
        socket = _FakeSocket()
        self.sockets.append(socket)
        return socket


async def _wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


def _envelope(name, important_tag="x"):
    return Envelope(type=ClientMessage.MANIFEST, app="server", payload={"name": name, "tag": important_tag})


class ConnectionBehaviorTests(unittest.IsolatedAsyncioTestCase):
    URL = "ws://10.0.0.5:8891"

    async def asyncSetUp(self):
        """Prepare a manager with a fake connector and fast backoff."""
        self.connector = _FakeConnector()
        self.manager = ConnectionManager(
            connector=self.connector,
            backoff=Backoff(initial_s=0.01, max_s=0.05, factor=2.0, jitter=0.0),
        )
        self.statuses = []
        self.manager.add_status_listener(self.statuses.append)

    async def asyncTearDown(self):
        """Release the manager and any pending tasks."""
        self.manager.close()
        await asyncio.sleep(0)

    async def _connected(self):
        self.manager.connect(self.URL)
        await _wait_for(lambda: self.manager.is_connected)
        return self.connector.sockets[-1]

    async def test_connect_transitions_through_connecting_to_connected(self):
        """Validate scenario: connect reports connecting then connected."""
        self.assertIs(self.manager.state, ConnectionState.DISCONNECTED)
        self.manager.connect(self.URL)
        self.assertIs(self.manager.state, ConnectionState.CONNECTING)
        await _wait_for(lambda: self.manager.is_connected)
        self.assertEqual(self.statuses, ["connecting", "connected"])
        self.assertEqual(self.connector.urls, [self.URL])

    async def test_connect_is_idempotent_for_same_url(self):
        """Validate scenario: repeated connect to the same url opens one socket."""
        self.manager.connect(self.URL)
        self.manager.connect(self.URL)
        await _wait_for(lambda: self.manager.is_connected)
        self.manager.connect(self.URL)
        await asyncio.sleep(0.01)
        self.assertEqual(len(self.connector.urls), 1)

    async def test_connect_without_url_does_nothing(self):
        self.manager.connect()
        self.assertIs(self.manager.state, ConnectionState.DISCONNECTED)
        self.assertEqual(self.connector.urls, [])

    async def test_connect_to_new_url_replaces_channel(self):
        """Validate scenario: connecting elsewhere closes the current socket first."""
        first = await self._connected()
        self.manager.connect("ws://10.0.0.6:8891")
        await _wait_for(lambda: self.manager.is_connected and len(self.connector.sockets) == 2)
        self.assertTrue(first.closed)
        self.assertEqual(self.manager.url, "ws://10.0.0.6:8891")

    async def test_important_messages_queued_offline_flush_in_order(self):
        """Validate scenario: queued important sends go out in original order on connect."""
        futures = [self.manager.send(_envelope(name)) for name in ("a", "b", "c")]
        self.assertEqual(self.manager.pending_count, 3)
        socket = await self._connected()
        await asyncio.wait_for(asyncio.gather(*futures), timeout=1.0)
        self.assertEqual([m["payload"]["name"] for m in socket.sent], ["a", "b", "c"])
        self.assertEqual(self.manager.pending_count, 0)

    async def test_sends_while_connected_keep_order_behind_flush(self):
        self.manager.send(_envelope("queued"))
        self.manager.connect(self.URL)
        await _wait_for(lambda: self.manager.is_connected)
        live = self.manager.send(_envelope("live"))
        await asyncio.wait_for(live, timeout=1.0)
        socket = self.connector.sockets[-1]
        self.assertEqual([m["payload"]["name"] for m in socket.sent], ["queued", "live"])

    async def test_unimportant_message_offline_is_dropped_and_rejected(self):
        """Validate scenario: fire-and-forget sends while offline reject instead of queueing."""
        future = self.manager.send(_envelope("ping"), important=False)
        self.assertTrue(future.done())
        self.assertIsInstance(future.exception(), MessageDroppedError)
        socket = await self._connected()
        await asyncio.sleep(0.01)
        self.assertEqual(socket.sent, [])

    async def test_unimportant_message_while_connected_is_sent(self):
        socket = await self._connected()
        future = self.manager.send(_envelope("pong"), important=False)
        await asyncio.wait_for(future, timeout=1.0)
        self.assertEqual(len(socket.sent), 1)

    async def test_unexpected_drop_reconnects_with_backoff(self):
        """Validate scenario: a dropped socket moves to reconnecting and recovers."""
        socket = await self._connected()
        socket.drop()
        await _wait_for(lambda: self.manager.is_reconnecting)
        await _wait_for(lambda: self.manager.is_connected and len(self.connector.sockets) == 2)
        self.assertEqual(self.statuses, ["connecting", "connected", "reconnecting", "connected"])

    async def test_failed_attempts_retry_until_connected(self):
        self.connector.failures = 2
        self.manager.connect(self.URL)
        await _wait_for(lambda: self.manager.is_connected)
        self.assertEqual(len(self.connector.urls), 3)
        self.assertEqual(self.statuses, ["connecting", "reconnecting", "connected"])

    async def test_disconnect_cancels_pending_retry(self):
        """Validate scenario: no retry fires after disconnect."""
        self.manager._backoff = Backoff(initial_s=0.05, max_s=0.05, jitter=0.0)
        self.connector.failures = 5
        self.manager.connect(self.URL)
        await _wait_for(lambda: self.manager.retry_scheduled)
        self.manager.disconnect()
        self.assertFalse(self.manager.retry_scheduled)
        await asyncio.sleep(0.15)
        self.assertEqual(len(self.connector.urls), 1)
        self.assertIs(self.manager.state, ConnectionState.DISCONNECTED)

    async def test_queued_messages_wait_after_disconnect_until_connect(self):
        """Validate scenario: disconnect holds important messages until the next connect."""
        first = await self._connected()
        self.manager.disconnect()
        future = self.manager.send(_envelope("later"))
        await asyncio.sleep(0.02)
        self.assertFalse(future.done())
        self.assertEqual(first.sent, [])
        self.assertEqual(len(self.connector.sockets), 1)

        self.manager.connect()
        await asyncio.wait_for(future, timeout=1.0)
        self.assertEqual(self.connector.sockets[-1].sent[0]["payload"]["name"], "later")

    async def test_disconnect_keeps_listeners(self):
        received = []
        self.manager.add_listener(received.append)
        await self._connected()
        self.manager.disconnect()
        socket = await self._connected()
        socket.feed({"type": "time", "app": "client", "payload": "12:00"})
        await _wait_for(lambda: len(received) == 1)

    async def test_reconnect_reports_reconnecting_then_connects(self):
        first = await self._connected()
        self.manager.reconnect()
        self.assertIs(self.manager.state, ConnectionState.RECONNECTING)
        await _wait_for(lambda: self.manager.is_connected and len(self.connector.sockets) == 2)
        self.assertTrue(first.closed)
        self.assertEqual(self.statuses[-2:], ["reconnecting", "connected"])

    async def test_listeners_receive_in_order_and_faults_are_isolated(self):
        """Validate scenario: a raising listener does not block later listeners."""
        calls = []

        def broken(envelope):
            calls.append("broken")
            raise RuntimeError("boom")

        self.manager.add_listener(lambda env: calls.append("first"))
        self.manager.add_listener(broken)
        self.manager.add_listener(lambda env: calls.append("last"))
        socket = await self._connected()
        socket.feed({"type": "heartbeat", "app": "client"})
        await _wait_for(lambda: len(calls) == 3)
        self.assertEqual(calls, ["first", "broken", "last"])

    async def test_remove_listener_stops_delivery(self):
        received = []
        unsubscribe = self.manager.add_listener(received.append)
        socket = await self._connected()
        unsubscribe()
        socket.feed({"type": "heartbeat"})
        await asyncio.sleep(0.01)
        self.assertEqual(received, [])

    async def test_once_fires_only_for_first_matching_envelope(self):
        """Validate scenario: once listener fires for the first match and unregisters."""
        received = []
        self.manager.once({"type": ServerMessage.TIME}, received.append)
        socket = await self._connected()
        socket.feed({"type": "heartbeat"})
        socket.feed({"type": "time", "payload": 1})
        socket.feed({"type": "time", "payload": 2})
        await asyncio.sleep(0.02)
        self.assertEqual([e.payload for e in received], [1])

    async def test_once_matches_present_fields_only(self):
        received = []
        self.manager.once({"type": "get", "request": "manifest"}, received.append)
        socket = await self._connected()
        socket.feed({"type": "get", "request": "apps", "app": "client"})
        socket.feed({"type": "get", "request": "manifest", "app": "client"})
        await _wait_for(lambda: len(received) == 1)
        self.assertEqual(received[0].request, "manifest")

    async def test_malformed_frames_are_dropped(self):
        received = []
        self.manager.add_listener(received.append)
        socket = await self._connected()
        socket.feed("{not json")
        socket.feed("[1, 2]")
        socket.feed({"payload": "missing type"})
        socket.feed({"type": "heartbeat"})
        await _wait_for(lambda: len(received) == 1)
        self.assertEqual(received[0].type, "heartbeat")
        self.assertTrue(self.manager.is_connected)

    async def test_queue_overflow_drops_oldest(self):
        """Validate scenario: a full outbound queue evicts its oldest entry."""
        manager = ConnectionManager(connector=self.connector, queue_limit=2)
        try:
            first = manager.send(_envelope("a"))
            manager.send(_envelope("b"))
            manager.send(_envelope("c"))
            self.assertIsInstance(first.exception(), MessageDroppedError)
            manager.connect(self.URL)
            await _wait_for(lambda: manager.is_connected and manager.pending_count == 0)
            sent = self.connector.sockets[-1].sent
            self.assertEqual([m["payload"]["name"] for m in sent], ["b", "c"])
        finally:
            manager.close()

    async def test_failed_send_is_held_for_next_connection(self):
        socket = await self._connected()
        socket.fail_send = True
        future = self.manager.send(_envelope("retry-me"))
        await asyncio.sleep(0.01)
        self.assertFalse(future.done())
        socket.drop()
        await asyncio.wait_for(future, timeout=1.0)
        self.assertEqual(self.connector.sockets[-1].sent[0]["payload"]["name"], "retry-me")

    async def test_close_rejects_queued_messages(self):
        future = self.manager.send(_envelope("never"))
        self.manager.close()
        self.assertIsInstance(future.exception(), MessageDroppedError)
        self.assertEqual(self.manager.pending_count, 0)

    async def test_status_listener_fault_does_not_break_connection(self):
        def broken(status):
            raise RuntimeError("listener bug")

        self.manager.add_status_listener(broken)
        await self._connected()
        self.assertTrue(self.manager.is_connected)


class ConnectionShutdownBehaviorTests(unittest.TestCase):
    def test_aclose_finishes_close_handshake_before_loop_exits(self):
        """Validate scenario: shutting down inside asyncio.run leaves the socket fully closed."""
        sockets = []

        async def connector(url):
            socket = _SlowCloseSocket()
            sockets.append(socket)
            return socket

        async def main():
            manager = ConnectionManager(connector=connector)
            manager.connect("ws://10.0.0.5:8891")
            await _wait_for(lambda: manager.is_connected)
            await manager.aclose()
            self.assertIs(manager.state, ConnectionState.DISCONNECTED)

        asyncio.run(main())
        self.assertEqual(len(sockets), 1)
        self.assertTrue(sockets[0].closed)

    def test_aclose_without_socket_returns(self):
        async def main():
            manager = ConnectionManager(connector=_FakeConnector())
            future = manager.send(_envelope("queued"))
            await manager.aclose()
            return future

        future = asyncio.run(main())
        self.assertIsInstance(future.exception(), MessageDroppedError)


class BackoffBehaviorTests(unittest.TestCase):
    def test_delay_grows_exponentially_and_caps(self):
        """Validate scenario: backoff doubles until the cap."""
        backoff = Backoff(initial_s=1.0, max_s=5.0, factor=2.0, jitter=0.0)
        self.assertEqual([backoff.next_delay() for _ in range(5)], [1.0, 2.0, 4.0, 5.0, 5.0])

    def test_reset_restarts_curve(self):
        backoff = Backoff(initial_s=1.0, max_s=5.0, factor=2.0, jitter=0.0)
        backoff.next_delay()
        backoff.next_delay()
        backoff.reset()
        self.assertEqual(backoff.attempts, 0)
        self.assertEqual(backoff.next_delay(), 1.0)

    def test_jitter_stays_within_spread(self):
        low = Backoff(initial_s=2.0, max_s=10.0, factor=2.0, jitter=0.25, rand=lambda: 0.0)
        high = Backoff(initial_s=2.0, max_s=10.0, factor=2.0, jitter=0.25, rand=lambda: 1.0)
        self.assertAlmostEqual(low.next_delay(), 1.5)
        self.assertAlmostEqual(high.next_delay(), 2.5)


if __name__ == "__main__":
    unittest.main()
