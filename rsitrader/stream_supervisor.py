"""Self-healing streaming subscriptions.

A StreamSupervisor owns exactly one live connection for one logical
subscription (candle closes, price ticks). It runs as a dedicated asyncio
task that:

- opens the connection and resets its backoff counter,
- parses each text frame as JSON and forwards it to the handler,
- answers peer pings and sends its own keepalive ping every keepalive interval,
- reconnects after ``min(step * attempt, cap)`` seconds when the connection
  closes, errors, or the handler reports a delivery failure.
"""
import asyncio
import inspect
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from .logging_setup import logger

KEEPALIVE_SECONDS = 3 * 60.0
RECONNECT_STEP_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 30.0


class FeedError(Exception):
    pass


class StreamConnection(ABC):
    """One open streaming transport carrying text frames."""

    @abstractmethod
    def messages(self) -> AsyncIterator[str]:
        """Yield text frames until the peer closes; raise on transport error."""

    @abstractmethod
    async def send_str(self, data: str) -> None:
        pass

    @abstractmethod
    async def ping(self) -> None:
        """Send a transport-level keepalive ping."""

    @abstractmethod
    async def close(self) -> None:
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass


async def _maybe_await(result):
    if inspect.isawaitable(result):
        return await result
    return result


class StreamSupervisor:
    """Keep one subscription alive with keepalive and linear-capped backoff.

    Args:
        name: Logical subscription name used in log lines
        connect: Async callable opening a new StreamConnection
        on_message: Handler for each parsed message; returning False marks a
            delivery failure and forces a resubscribe
        on_terminal: Optional handler awaited with a reason string every time
            the subscription terminates, before the backoff sleep
        sleep: Awaitable sleep used for the backoff (injectable for tests)
    """

    def __init__(
        self,
        name: str,
        connect: Callable[[], Awaitable[StreamConnection]],
        on_message: Callable[[Any], Any],
        *,
        on_terminal: Optional[Callable[[str], Any]] = None,
        keepalive_seconds: float = KEEPALIVE_SECONDS,
        reconnect_step_seconds: float = RECONNECT_STEP_SECONDS,
        reconnect_max_seconds: float = RECONNECT_MAX_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self._connect = connect
        self._on_message = on_message
        self._on_terminal = on_terminal
        self.keepalive_seconds = keepalive_seconds
        self.reconnect_step_seconds = reconnect_step_seconds
        self.reconnect_max_seconds = reconnect_max_seconds
        self._sleep = sleep

        self.attempt = 0
        self.connections_opened = 0
        self._reconnecting = False
        self._closed = False
        self._conn: Optional[StreamConnection] = None
        self._task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    def reconnect_delay(self, attempt: int) -> float:
        """Seconds to wait before resubscribe number ``attempt`` (1-based)."""
        return min(self.reconnect_step_seconds * attempt, self.reconnect_max_seconds)

    def start(self) -> asyncio.Task:
        """Start the supervisor task; returns immediately."""
        if self._closed:
            raise FeedError(f"{self.name} supervisor is closed")
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def close(self) -> None:
        """Close the subscription and cancel timers. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._stop_keepalive()
        await self._close_connection()
        if self._task is not None and not self._task.done():
            if self._task is not asyncio.current_task():
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
        logger.info(f"{self.name} stream supervisor closed")

    async def _run(self) -> None:
        while not self._closed:
            reason = await self._run_connection()
            if self._closed:
                break
            await self._schedule_resubscribe(reason)

    async def _run_connection(self) -> str:
        try:
            conn = await self._connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name} stream connect failed | error={e!r}")
            return f"connect failed: {e}"

        if self._closed:
            await conn.close()
            return "closed"

        self._conn = conn
        self.attempt = 0
        self.connections_opened += 1
        logger.info(f"{self.name} stream connection opened | connections={self.connections_opened}")
        self._keepalive_task = asyncio.get_running_loop().create_task(self._keepalive(conn))

        try:
            return await self._consume(conn)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name} stream error | error={e!r}")
            return f"error: {e}"
        finally:
            self._stop_keepalive()
            await self._close_connection()

    async def _consume(self, conn: StreamConnection) -> str:
        async for text in conn.messages():
            try:
                payload = json.loads(text)
            except ValueError:
                logger.warning(f"{self.name} stream dropped unparseable message | data={text[:200]!r}")
                continue

            if isinstance(payload, dict) and "ping" in payload:
                await conn.send_str(json.dumps({"pong": payload["ping"]}))
                continue

            try:
                accepted = await _maybe_await(self._on_message(payload))
            except (ValueError, TypeError, KeyError) as e:
                logger.warning(f"{self.name} stream dropped malformed message | error={e}")
                continue

            if accepted is False:
                logger.warning(f"{self.name} stream delivery failure, resubscribing")
                return "delivery failure"
        return "closed by peer"

    async def _schedule_resubscribe(self, reason: str) -> None:
        if self._reconnecting:
            return
        self._reconnecting = True
        try:
            if self._on_terminal is not None:
                try:
                    await _maybe_await(self._on_terminal(reason))
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"{self.name} terminal handler failed | error={e!r}")
            self.attempt += 1
            delay = self.reconnect_delay(self.attempt)
            logger.info(
                f"{self.name} stream closed, resubscribing | reason={reason} attempt={self.attempt} delay={delay:.1f}s"
            )
            await self._sleep(delay)
        finally:
            self._reconnecting = False

    async def _keepalive(self, conn: StreamConnection) -> None:
        try:
            while True:
                await asyncio.sleep(self.keepalive_seconds)
                if not conn.closed:
                    await conn.ping()
                    logger.debug(f"{self.name} stream sent keepalive ping")
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"{self.name} stream keepalive failed | error={e!r}")
            await self._close_connection()

    def _stop_keepalive(self) -> None:
        task = self._keepalive_task
        self._keepalive_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _close_connection(self) -> None:
        conn = self._conn
        self._conn = None
        if conn is not None and not conn.closed:
            await conn.close()


class FeedSubscription:
    """The set of supervisors backing one feed subscription.

    Holds at most one supervisor per logical name; registering a new one for
    a name closes and discards the previous instance first.
    """

    def __init__(self) -> None:
        self.supervisors: Dict[str, StreamSupervisor] = {}

    async def replace(self, supervisor: StreamSupervisor) -> StreamSupervisor:
        previous = self.supervisors.pop(supervisor.name, None)
        if previous is not None:
            await previous.close()
        self.supervisors[supervisor.name] = supervisor
        supervisor.start()
        return supervisor

    def get(self, name: str) -> Optional[StreamSupervisor]:
        return self.supervisors.get(name)

    async def close(self) -> None:
        """Close every supervisor. Safe to call repeatedly."""
        for supervisor in list(self.supervisors.values()):
            await supervisor.close()
