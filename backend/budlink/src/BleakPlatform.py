#BleakPlatform.py

import asyncio
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from bleak import BleakScanner  # supports async BLE discovery
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from budlink import config
from budlink.src.DevicesDetection import AdapterState, DiscoveredDevice
from budlink.utils.logging import discovery_logger as logger

# How long the adapter probe keeps its scanner running.
PROBE_DURATION = 0.1


class BleakSubscription:
    def __init__(self, platform: "BleakPlatform", listener: Callable[[List[DiscoveredDevice]], None]) -> None:
        self._platform = platform
        self._listener = listener

    def cancel(self) -> None:
        self._platform._remove_listener(self._listener)


class BleakPlatform:
    """Bluetooth adapter backed by bleak.

    Detection callbacks are accumulated per address and every listener gets
    the full list of results seen since start_scan, so the same device shows
    up again in later batches.
    """

    def __init__(self, poll_interval: Optional[float] = None) -> None:
        self.poll_interval = poll_interval if poll_interval is not None else config.ADAPTER_POLL_INTERVAL
        self._scanner: Optional[BleakScanner] = None
        self._keywords: Tuple[str, ...] = ()
        self._results: Dict[str, DiscoveredDevice] = {}
        self._listeners: List[Callable[[List[DiscoveredDevice]], None]] = []

    @property
    def is_scanning(self) -> bool:
        return self._scanner is not None

    async def probe_adapter(self) -> AdapterState:
        """Check adapter power by briefly starting and stopping a scanner."""
        if self._scanner is not None:
            return AdapterState.ON
        scanner = BleakScanner()
        try:
            await scanner.start()
        except BleakError as e:
            logger.debug("Adapter probe failed: %s", e)
            return AdapterState.OFF
        except OSError as e:
            logger.debug("Adapter unavailable: %s", e)
            return AdapterState.UNAVAILABLE
        try:
            await asyncio.sleep(PROBE_DURATION)
        finally:
            try:
                await scanner.stop()
            except (BleakError, OSError) as e:
                logger.debug("Adapter probe stop failed: %s", e)
        return AdapterState.ON

    async def adapter_states(self) -> AsyncIterator[AdapterState]:
        while True:
            yield await self.probe_adapter()
            await asyncio.sleep(self.poll_interval)

    async def start_scan(self, keywords: List[str]) -> None:
        if self._scanner is not None:
            raise BleakError("A scan is already in progress")
        self._keywords = tuple(keywords)
        self._results.clear()
        scanner = BleakScanner(detection_callback=self._on_detection)
        await scanner.start()
        self._scanner = scanner

    async def stop_scan(self) -> None:
        if self._scanner is None:
            return
        scanner, self._scanner = self._scanner, None
        await scanner.stop()

    def subscribe(self, listener: Callable[[List[DiscoveredDevice]], None]) -> BleakSubscription:
        self._listeners.append(listener)
        return BleakSubscription(self, listener)

    def _remove_listener(self, listener: Callable[[List[DiscoveredDevice]], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def matches(self, name: Optional[str]) -> bool:
        if not self._keywords:
            return True
        return bool(name) and any(keyword in name for keyword in self._keywords)

    def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData) -> None:
        name = advertisement.local_name or device.name
        if not self.matches(name):
            return
        self._results[device.address] = DiscoveredDevice(
            id=device.address,
            advertised_name=name,
            raw_advertisement=advertisement,
            rssi=advertisement.rssi,
        )
        batch = list(self._results.values())
        for listener in list(self._listeners):
            listener(batch)
