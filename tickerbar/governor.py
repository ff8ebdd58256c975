from enum import Enum

from loguru import logger


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    BACKGROUND_PAUSED = "background_paused"


class ConnectionGovernor:
    """
    Bookkeeping for connection and subscription limits.

    limits (defaults):

        - at most 3 concurrent connections
        - at most 200 subscriptions per connection

    Background/foreground transitions only flip `status`; connections are
    neither closed nor reopened here.
    """

    def __init__(self, max_connections: int = 3, max_subscriptions_per_connection: int = 200):
        self.max_connections = max_connections
        self.max_subscriptions_per_connection = max_subscriptions_per_connection

        self.status = ConnectionStatus.DISCONNECTED
        self.last_error: str | None = None
        self.active_connections = 0

    def register_connection(self) -> bool:
        if self.active_connections >= self.max_connections:
            self.last_error = f"Maximum connections reached ({self.max_connections})"
            logger.warning(self.last_error)
            return False

        self.active_connections += 1
        self.status = ConnectionStatus.CONNECTED
        return True

    def unregister_connection(self):
        self.active_connections = max(0, self.active_connections - 1)
        if self.active_connections == 0:
            self.status = ConnectionStatus.DISCONNECTED

    def validate_subscription_count(self, count: int) -> bool:
        if count > self.max_subscriptions_per_connection:
            self.last_error = (
                f"Subscription limit exceeded. Max: {self.max_subscriptions_per_connection}, "
                f"requested: {count}"
            )
            logger.warning(self.last_error)
            return False
        return True

    def report_error(self, error: str):
        self.last_error = error
        self.status = ConnectionStatus.ERROR

    def clear_error(self):
        self.last_error = None
        if self.active_connections > 0:
            self.status = ConnectionStatus.CONNECTED

    def enter_background(self):
        if self.status is not ConnectionStatus.CONNECTED:
            return
        logger.debug("pausing connections for background")
        self.status = ConnectionStatus.BACKGROUND_PAUSED

    def enter_foreground(self):
        if self.status is not ConnectionStatus.BACKGROUND_PAUSED:
            return
        logger.debug("resuming connections")
        self.status = ConnectionStatus.CONNECTED
