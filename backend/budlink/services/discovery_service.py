import asyncio
import inspect
from typing import Any, Callable, Dict, Iterable, List, Optional

from budlink.src.BleakPlatform import BleakPlatform
from budlink.src.DevicePairing import PairingOutcome, pair_with_device
from budlink.src.DevicesDetection import (
    DiscoveredDevice,
    DiscoveryError,
    ScanPlatform,
    ScanSession,
    scan_devices,
)
from budlink.utils.logging import discovery_logger as logger


class DiscoveryService:
    """Owns the one scan session the adapter can run at a time.

    Opening a session closes the previous one first, so two platform scans
    never overlap. Devices found by the latest session are kept for pairing.
    """

    def __init__(self, platform_factory: Callable[[], ScanPlatform] = BleakPlatform):
        self.platform_factory = platform_factory
        self._platform: Optional[ScanPlatform] = None
        self.session: Optional[ScanSession] = None
        self.scan_task: Optional[asyncio.Task] = None
        self.devices: Dict[str, DiscoveredDevice] = {}
        self.last_error: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def platform(self) -> ScanPlatform:
        if self._platform is None:
            self._platform = self.platform_factory()
        return self._platform

    async def _open_session(self, keywords: Optional[Iterable[str]], timeout: Optional[float]) -> ScanSession:
        async with self._lock:
            await self.stop_scan()
            self.devices = {}
            self.last_error = None
            self.session = scan_devices(self.platform, keywords, timeout)
            return self.session

    async def scan(self, keywords: Optional[Iterable[str]] = None, timeout: Optional[float] = None) -> List[DiscoveredDevice]:
        """Run a session to completion and return every device it found."""
        session = await self._open_session(keywords, timeout)
        async with session:
            async for device in session:
                self.devices[device.id] = device
        return list(self.devices.values())

    async def start_scan(
        self,
        keywords: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
        on_event: Optional[Callable[[dict], Any]] = None,
    ) -> Dict[str, Any]:
        session = await self._open_session(keywords, timeout)
        session.start()
        self.scan_task = asyncio.create_task(self._run_scan(session, on_event))
        return {
            "success": True,
            "message": "Scan started",
            "timeout": session.timeout,
            "keywords": sorted(session.filter_keywords),
        }

    async def _emit(self, on_event: Optional[Callable[[dict], Any]], event: dict) -> None:
        if on_event is None:
            return
        result = on_event(event)
        if inspect.isawaitable(result):
            await result

    async def _run_scan(self, session: ScanSession, on_event: Optional[Callable[[dict], Any]]) -> None:
        try:
            async for device in session:
                self.devices[device.id] = device
                await self._emit(on_event, {"type": "device_found", "device": device.to_dict()})
        except asyncio.CancelledError:
            await self._emit(on_event, {"type": "scan_stopped", "message": "Scan stopped by user."})
            raise
        except DiscoveryError as e:
            self.last_error = str(e)
            await self._emit(on_event, {"type": "scan_failed", "error": str(e)})
            return
        await self._emit(on_event, {
            "type": "scan_complete",
            "devices": [d.to_dict() for d in self.devices.values()],
        })

    async def stop_scan(self) -> Dict[str, Any]:
        session, task = self.session, self.scan_task
        self.scan_task = None
        stopped = False
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            stopped = True
        if session is not None and not session.is_closed:
            await session.aclose()
            stopped = True
        if stopped:
            logger.info("Active scan stopped")
            return {"success": True, "message": "Scan stopped"}
        return {"success": False, "message": "No active scan"}

    def get_device(self, device_id: str) -> Optional[DiscoveredDevice]:
        return self.devices.get(device_id)

    async def pair(self, device: DiscoveredDevice, channel) -> PairingOutcome:
        return await pair_with_device(device, channel)

    def get_status(self) -> Dict[str, Any]:
        session = self.session
        return {
            "scanning": bool(session and session.is_active),
            "state": session.state.value if session else "idle",
            "seen": len(session.seen_ids) if session else 0,
            "devices": [d.to_dict() for d in self.devices.values()],
            "last_error": self.last_error,
        }


discovery_service = DiscoveryService()
