import asyncio

import pytest

from flowcore.pubsub import RedisPubSub


class _FakeSubscriberConn:
    def __init__(self, fail_first=0):
        self.subscribed = set()
        self._fail = fail_first

    async def subscribe(self, channel):
        if self._fail:
            self._fail -= 1
            raise ConnectionError("broker down")
        self.subscribed.add(channel)

    async def unsubscribe(self, channel):
        self.subscribed.discard(channel)

    async def get_message(self, timeout=1.0):
        await asyncio.sleep(0.01)
        return None

    async def aclose(self):
        return None


class _FakeClient:
    def __init__(self, fail_first=0):
        self.conn = _FakeSubscriberConn(fail_first)

    def pubsub(self, ignore_subscribe_messages=False):
        return self.conn

    async def publish(self, channel, message):
        return 0


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_failed_subscribe_does_not_leave_handler_behind():  # noqa: D401
    client = _FakeClient(fail_first=1)
    ps = RedisPubSub(client)
    got = []
    with pytest.raises(ConnectionError):
        await ps.subscribe("abort:c1", got.append)
    assert "abort:c1" not in ps._handlers

    unsub = await ps.subscribe("abort:c1", got.append)
    assert "abort:c1" in client.conn.subscribed
    await unsub()
    assert client.conn.subscribed == set()
    await ps.aclose()


@pytest.mark.asyncio
@pytest.mark.timeout(5)
async def test_second_handler_shares_channel_subscription():  # noqa: D401
    client = _FakeClient()
    ps = RedisPubSub(client)
    unsub_a = await ps.subscribe("abort:c2", lambda _m: None)
    unsub_b = await ps.subscribe("abort:c2", lambda _m: None)
    await unsub_a()
    assert "abort:c2" in client.conn.subscribed
    await unsub_b()
    assert "abort:c2" not in client.conn.subscribed
    await ps.aclose()
