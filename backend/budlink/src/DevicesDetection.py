#DevicesDetection.py

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterable, List, Optional, Protocol, Set

from budlink import config
from budlink.utils.logging import discovery_logger as logger

# Time between issuing the start command and forwarding results. The platform
# starts scanning asynchronously, so early results are held back until then.
SCAN_WARMUP_DELAY = 0.5


class AdapterState(str, Enum):
    UNKNOWN = "unknown"
    UNAVAILABLE = "unavailable"
    UNAUTHORIZED = "unauthorized"
    TURNING_ON = "turning_on"
    ON = "on"
    TURNING_OFF = "turning_off"
    OFF = "off"


class SessionState(str, Enum):
    IDLE = "idle"
    ADAPTER_WAIT = "adapter_wait"
    SCANNING = "scanning"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    ERRORED = "errored"
    CLOSED = "closed"


@dataclass(frozen=True)
class DiscoveredDevice:
    """A peripheral seen during a scan. Two observations are the same device when ids match."""
    id: str
    advertised_name: Optional[str] = field(default=None, compare=False)
    raw_advertisement: Any = field(default=None, compare=False, repr=False)
    rssi: Optional[int] = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.advertised_name or "Unknown",
            "rssi": self.rssi,
        }


class DiscoveryError(Exception):
    """Base class for failures that terminate a scan session."""


class ScanStartError(DiscoveryError):
    """The platform rejected the start-scan call."""


class AdapterStateError(DiscoveryError):
    """The adapter state feed ended before the adapter powered on."""


class ScanSubscription(Protocol):
    def cancel(self) -> None: ...


class ScanPlatform(Protocol):
    """Bluetooth adapter operations a scan session depends on."""

    def adapter_states(self) -> AsyncIterator[AdapterState]: ...

    async def start_scan(self, keywords: List[str]) -> None: ...

    async def stop_scan(self) -> None: ...

    def subscribe(self, listener: Callable[[List[DiscoveredDevice]], None]) -> ScanSubscription: ...


_END = object()


async def wait_for_adapter(platform: ScanPlatform) -> None:
    """Block until the adapter reports ON.

    There is no timeout here: a caller may be waiting for the user to switch
    Bluetooth on from the system settings.
    """
    states = platform.adapter_states()
    try:
        async for state in states:
            if state == AdapterState.ON:
                return
            logger.debug("Adapter not ready (%s), waiting", state.value)
    finally:
        aclose = getattr(states, "aclose", None)
        if aclose is not None:
            await aclose()
    raise AdapterStateError("Adapter state feed ended before the adapter turned on")


class ScanSession:
    """One bounded run of device discovery.

    Iterating the session yields each newly seen DiscoveredDevice once. The
    producer runs as its own task: it waits for the adapter, subscribes to
    the result feed, starts the platform scan and sleeps until the timeout.
    Results are pushed into a queue by the feed listener as they arrive.

    Every exit path (timeout, aclose, consumer cancellation, error) goes
    through _teardown, which stops the scan, cancels the subscription and
    releases the queue, in that order, exactly once.
    """

    def __init__(
        self,
        platform: ScanPlatform,
        filter_keywords: Iterable[str],
        timeout: float,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.platform = platform
        self.filter_keywords = frozenset(filter_keywords)
        self.timeout = float(timeout)
        self.seen_ids: Set[str] = set()
        self.state = SessionState.IDLE
        self.exit_reason: Optional[SessionState] = None
        self.started_at: Optional[float] = None
        self.error: Optional[BaseException] = None

        self._queue: asyncio.Queue = asyncio.Queue()
        self._buffer: List[DiscoveredDevice] = []
        self._forwarding = False
        self._subscription: Optional[ScanSubscription] = None
        self._scan_requested = False
        self._producer: Optional[asyncio.Task] = None
        self._torn_down = False

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.ADAPTER_WAIT, SessionState.SCANNING)

    @property
    def is_closed(self) -> bool:
        return self._torn_down

    def __aiter__(self) -> "ScanSession":
        return self

    async def __anext__(self) -> DiscoveredDevice:
        if self._producer is None and not self._torn_down:
            self.start()
        if self._torn_down and self._queue.empty():
            raise StopAsyncIteration
        try:
            item = await self._queue.get()
        except asyncio.CancelledError:
            await self.aclose()
            raise
        if item is _END:
            error, self.error = self.error, None
            if error is not None:
                raise error
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "ScanSession":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def start(self) -> None:
        """Launch the producer task. Calling it again is a no-op."""
        if self._producer is not None or self._torn_down:
            return
        self._producer = asyncio.get_running_loop().create_task(self._run())

    async def aclose(self) -> None:
        """Close the session, interrupting any wait, and wait for cleanup to finish."""
        if self._producer is None:
            if not self._torn_down:
                self.exit_reason = SessionState.CANCELLED
                await self._teardown()
            return
        if not self._producer.done():
            self._producer.cancel()
        try:
            await self._producer
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        finally:
            # A producer cancelled before its first step never reaches its finally block.
            if not self._torn_down:
                self.exit_reason = self.exit_reason or SessionState.CANCELLED
                await self._teardown()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            self.state = SessionState.ADAPTER_WAIT
            await wait_for_adapter(self.platform)

            self._subscription = self.platform.subscribe(self._on_batch)
            self.state = SessionState.SCANNING
            self.started_at = loop.time()
            self._scan_requested = True
            logger.info(
                "Scan started (keywords=%s, timeout=%ss)",
                sorted(self.filter_keywords), self.timeout,
            )
            deadline = self.started_at + self.timeout
            scan_running = False
            # Start, warm-up and the wait all count against the same window.
            try:
                async with asyncio.timeout_at(deadline):
                    try:
                        await self.platform.start_scan(sorted(self.filter_keywords))
                    except Exception as e:
                        raise ScanStartError(f"Failed to start scan: {e}") from e
                    scan_running = True

                    await asyncio.sleep(min(SCAN_WARMUP_DELAY, deadline - loop.time()))
                    self._flush_buffer()
                    await asyncio.sleep(deadline - loop.time())
            except TimeoutError:
                logger.debug("Scan window of %ss elapsed", self.timeout)
            if scan_running:
                self._flush_buffer()
            self.exit_reason = SessionState.TIMED_OUT
        except asyncio.CancelledError:
            self.exit_reason = SessionState.CANCELLED
            raise
        except Exception as e:
            logger.error("Scan failed: %s", e)
            self.exit_reason = SessionState.ERRORED
            self.error = e
            self._buffer.clear()
        finally:
            await self._teardown()

    def _flush_buffer(self) -> None:
        self._forwarding = True
        for device in self._buffer:
            self._queue.put_nowait(device)
        self._buffer.clear()

    def _on_batch(self, batch: List[DiscoveredDevice]) -> None:
        if self.state != SessionState.SCANNING:
            return
        for device in batch:
            if device.id in self.seen_ids:
                continue
            self.seen_ids.add(device.id)
            logger.debug("Found %s (%s)", device.id, device.advertised_name)
            if self._forwarding:
                self._queue.put_nowait(device)
            else:
                self._buffer.append(device)

    async def _teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self.state = self.exit_reason or SessionState.CANCELLED

        if self._scan_requested:
            try:
                await self.platform.stop_scan()
            except Exception as e:
                logger.warning("stop_scan failed during cleanup: %s", e)

        if self._subscription is not None:
            try:
                self._subscription.cancel()
            except Exception as e:
                logger.warning("Subscription cancel failed during cleanup: %s", e)
            self._subscription = None

        self._forwarding = False
        self._queue.put_nowait(_END)

        self.state = SessionState.CLOSED
        logger.info(
            "Scan closed (%s, %d device(s) seen)",
            self.exit_reason.value if self.exit_reason else "cancelled",
            len(self.seen_ids),
        )


def scan_devices(
    platform: ScanPlatform,
    filter_keywords: Optional[Iterable[str]] = None,
    timeout: Optional[float] = None,
) -> ScanSession:
    """Create a scan session yielding newly discovered devices until the timeout.

    Use it as ``async with scan_devices(...) as devices: async for d in devices``
    so the platform scan is stopped even when the consumer leaves early.
    """
    if filter_keywords is None:
        filter_keywords = config.SCAN_KEYWORDS
    if timeout is None:
        timeout = config.SCAN_TIMEOUT
    return ScanSession(platform, filter_keywords, timeout)


if __name__ == "__main__":
    from budlink.src.BleakPlatform import BleakPlatform

    async def main():
        async with scan_devices(BleakPlatform(), filter_keywords=[], timeout=10.0) as devices:
            async for device in devices:
                print(f"{device.advertised_name or '(no name)'}\t{device.id}")

    asyncio.run(main())
