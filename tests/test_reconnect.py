import pytest

from wardrobe_chat.client.reconnect import ConnectionState, ReconnectLoop
from wardrobe_chat.services.errors import TransientNetworkError


class FlakyConnect:

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientNetworkError("refused")
        return "socket"


def _loop(connect, **kwargs):
    sleeps: list[float] = []
    states: list[ConnectionState] = []

    async def sleep(delay):
        sleeps.append(delay)

    loop = ReconnectLoop(connect, jitter=0, sleep=sleep, on_state=states.append, **kwargs)
    return loop, sleeps, states


@pytest.mark.asyncio
async def test_connects_first_try():
    loop, sleeps, states = _loop(FlakyConnect(0), attempts=5, base_delay=1.0)
    assert await loop.run() == "socket"
    assert sleeps == []
    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]


@pytest.mark.asyncio
async def test_recovers_after_retries_with_backoff():
    connect = FlakyConnect(2)
    loop, sleeps, states = _loop(connect, attempts=5, base_delay=1.0)

    assert await loop.run() == "socket"
    assert connect.calls == 3
    assert sleeps == [1.0, 2.0]
    assert states[-1] == ConnectionState.CONNECTED
    assert states.count(ConnectionState.RECONNECTING) == 2


@pytest.mark.asyncio
async def test_gives_up_after_bounded_attempts():
    connect = FlakyConnect(100)
    loop, sleeps, states = _loop(connect, attempts=5, base_delay=1.0, max_delay=4.0)

    with pytest.raises(TransientNetworkError):
        await loop.run()

    assert connect.calls == 6
    assert sleeps == [1.0, 2.0, 4.0, 4.0, 4.0]
    assert loop.state == ConnectionState.DISCONNECTED
    assert states[-1] == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_os_errors_count_as_transient():
    calls = []

    async def connect():
        calls.append(1)
        raise ConnectionRefusedError("nope")

    loop, _, _ = _loop(connect, attempts=1, base_delay=0.5)
    with pytest.raises(TransientNetworkError):
        await loop.run()
    assert len(calls) == 2


def test_jitter_stays_within_bound():
    loop = ReconnectLoop(FlakyConnect(0), base_delay=1.0, max_delay=16.0, jitter=0.1)
    for retry in range(6):
        base = min(16.0, 2.0**retry)
        assert base <= loop.delay_for(retry) <= base * 1.1
