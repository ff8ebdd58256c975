import asyncio

import pytest
from websockets.exceptions import ConnectionClosedError


class FakeWebSocket:
    """
    Stand-in for a websockets client connection; feed incoming messages
    with `push`, inspect outgoing ones in `sent`.
    """

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list = []
        self.pings = 0
        self.closed = False
        self.fail_pings = False

    def push(self, message):
        self.incoming.put_nowait(message)

    def drop(self):
        self.incoming.put_nowait(ConnectionClosedError(None, None))

    async def recv(self):
        message = await self.incoming.get()
        if isinstance(message, BaseException):
            raise message
        return message

    async def send(self, message):
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(message)

    async def ping(self):
        self.pings += 1
        if self.fail_pings:
            raise ConnectionClosedError(None, None)
        pong = asyncio.get_running_loop().create_future()
        pong.set_result(0.0)
        return pong

    async def close(self):
        self.closed = True


class FakeConnector:
    """
    Replaces `websockets.asyncio.client.connect`; hands out FakeWebSockets
    or raises the queued failures first.
    """

    def __init__(self, failures=0, error=OSError("connection refused")):
        self.failures = failures
        self.error = error
        self.urls: list[str] = []
        self.sockets: list[FakeWebSocket] = []

    async def __call__(self, url, **kwargs):
        self.urls.append(url)
        if self.failures:
            self.failures -= 1
            raise self.error
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


async def settle(rounds: int = 10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connection_options(connector):
    return {"connector": connector, "settle_delay": 0, "base_delay": 0}


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def hset(self, key, mapping=None):
        self.commands.append(("hset", key, mapping))
        return self

    def sadd(self, key, *values):
        self.commands.append(("sadd", key, *values))
        return self

    async def execute(self):
        if self.client.error is not None:
            raise self.client.error
        self.client.executed.extend(self.commands)
        return [1] * len(self.commands)


class FakeRedis:
    """
    Records what a pipeline executed instead of talking to a server
    """

    def __init__(self, error=None):
        self.error = error
        self.executed: list = []
        self.closed = False

    def pipeline(self):
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True
