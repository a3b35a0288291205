import asyncio
import enum
import logging
import random
from typing import Any, Awaitable, Callable, Optional

from wardrobe_chat import config
from wardrobe_chat.services.errors import TransientNetworkError


logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class ReconnectLoop:
    """Bounded reconnect with exponential backoff.

    ``connect`` is tried once, then up to ``attempts`` more times; after that
    the state settles on ``DISCONNECTED`` and ``TransientNetworkError`` is
    raised for the UI to show.
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[Any]],
        attempts: int = config.RECONNECT_ATTEMPTS,
        base_delay: float = config.RECONNECT_BASE_DELAY_SECONDS,
        max_delay: float = config.RECONNECT_MAX_DELAY_SECONDS,
        jitter: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_state: Optional[Callable[[ConnectionState], None]] = None,
    ) -> None:
        self._connect = connect
        self.attempts = max(0, attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep
        self._on_state = on_state
        self.state = ConnectionState.DISCONNECTED

    def delay_for(self, retry: int) -> float:
        delay = min(self.max_delay, self.base_delay * (2**retry))
        return delay + random.random() * delay * self.jitter

    async def run(self) -> Any:
        self._set_state(ConnectionState.CONNECTING)
        last_error: Optional[Exception] = None
        for attempt in range(self.attempts + 1):
            if attempt:
                self._set_state(ConnectionState.RECONNECTING)
                await self._sleep(self.delay_for(attempt - 1))
            try:
                conn = await self._connect()
            except (TransientNetworkError, OSError) as exc:
                last_error = exc
                logger.warning("realtime_connect_failed attempt=%s error=%s", attempt + 1, exc)
                continue
            self._set_state(ConnectionState.CONNECTED)
            return conn
        self._set_state(ConnectionState.DISCONNECTED)
        raise TransientNetworkError(f"Could not connect after {self.attempts + 1} attempts") from last_error

    def _set_state(self, state: ConnectionState) -> None:
        self.state = state
        if self._on_state is not None:
            self._on_state(state)
