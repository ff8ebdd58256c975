class StreamingError(Exception):
    pass


class ConnectionFailed(StreamingError):
    def __init__(self, url: str, underlying: BaseException | None = None):
        self.url = url
        self.underlying = underlying
        super().__init__(f"failed to connect to {url}: {underlying!r}")


class SubscriptionFailed(StreamingError):
    def __init__(self, pair, reason: str):
        self.pair = pair
        self.reason = reason
        super().__init__(f"subscription to {pair.symbol} failed: {reason}")


class RateLimitExceeded(StreamingError):
    pass


class InvalidResponse(StreamingError):
    pass


class Disconnected(StreamingError):
    """
    Raised when sending on a connection that has no open socket
    """


class ReconnectExhausted(Disconnected):
    pass
