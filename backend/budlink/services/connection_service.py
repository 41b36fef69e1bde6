import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from bleak import BleakClient
from bleak.exc import BleakError

from budlink import config
from budlink.src.DevicePairing import DEVICE_ID_KEY, DEVICE_SIGNAL
from budlink.src.DevicesDetection import ScanPlatform, wait_for_adapter
from budlink.utils.logging import connection_logger as logger


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionService:
    """Background consumer of the pairing handoff.

    Listens for the device signal on a TaskChannel, reads the persisted id
    and keeps a BleakClient connected to it. A link that drops without
    disconnect() being asked for is re-established in the background.
    """

    def __init__(
        self,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        data_service_uuid: Optional[str] = None,
        data_char_uuid: Optional[str] = None,
        on_data: Optional[Callable[[bytearray], None]] = None,
    ):
        self.max_retries = max_retries if max_retries is not None else config.CONNECT_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else config.CONNECT_RETRY_DELAY
        self.data_service_uuid = data_service_uuid or config.DATA_SERVICE_UUID
        self.data_char_uuid = data_char_uuid or config.DATA_CHAR_UUID
        self.on_data = on_data
        self.state = ConnectionState.DISCONNECTED
        self.device_id: Optional[str] = None
        self.device_name: Optional[str] = None
        self.client: Optional[BleakClient] = None
        self.channel = None
        self.bytes_received = 0
        self.listeners: List[Callable[[dict], Any]] = []
        self._notifying = False
        self._reconnect_task: Optional[asyncio.Task] = None

    def attach(self, channel) -> None:
        self.channel = channel
        channel.add_signal_handler(self.handle_signal)

    def detach(self) -> None:
        if self.channel is not None:
            self.channel.remove_signal_handler(self.handle_signal)
            self.channel = None

    def add_listener(self, listener: Callable[[dict], Any]) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener: Callable[[dict], Any]) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    async def _publish(self, event: dict) -> None:
        for listener in list(self.listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("Connection listener failed: %s", e)

    async def _set_state(self, state: ConnectionState) -> None:
        self.state = state
        logger.info("Connection %s: %s", self.device_id, state.value)
        await self._publish({
            "type": "connection_state",
            "connected": state == ConnectionState.CONNECTED,
            "device_id": self.device_id,
            "device_name": self.device_name,
        })

    async def handle_signal(self, topic: str) -> None:
        if topic != DEVICE_SIGNAL or self.channel is None:
            return
        logger.info("Device signal received")
        try:
            device_id = await self.channel.get_data(DEVICE_ID_KEY)
            if device_id:
                await self.connect(device_id)
        except Exception as e:
            logger.error("Device signal handling failed: %s", e)

    def _handle_disconnect(self, client: BleakClient) -> None:
        if self.client is not client:
            return
        self.client = None
        self._notifying = False
        self.state = ConnectionState.DISCONNECTED
        self._reconnect_task = asyncio.ensure_future(self._reconnect(self.device_id))

    async def _reconnect(self, device_id: str) -> None:
        await self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Connection to %s lost, reconnecting", device_id)
        await asyncio.sleep(self.retry_delay)
        await self.connect(device_id)

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _handle_data(self, sender: Any, data: bytearray) -> None:
        self.bytes_received += len(data)
        if self.on_data:
            self.on_data(data)

    async def connect(self, device_id: str) -> Dict[str, Any]:
        """Connect to device_id, retrying up to max_retries times."""
        self._cancel_reconnect()
        if self.client is not None:
            await self.disconnect()

        self.device_id = device_id
        await self._set_state(ConnectionState.CONNECTING)

        for attempt in range(1, self.max_retries + 1):
            client = BleakClient(device_id, disconnected_callback=self._handle_disconnect)
            try:
                logger.info("Attempt %d: connecting to %s", attempt, device_id)
                await client.connect()
                if not client.is_connected:
                    raise ConnectionError("Failed to connect.")

                self.client = client
                self.device_name = getattr(client, "name", None)
                await self._subscribe_data(client)
                await self._set_state(ConnectionState.CONNECTED)
                return {"success": True, "message": f"Connected to {device_id}"}

            except (BleakError, OSError, asyncio.TimeoutError) as e:
                logger.warning("Connect attempt %d failed: %s", attempt, e)
                self.client = None
                self._notifying = False
                if client.is_connected:
                    try:
                        await client.disconnect()
                    except (BleakError, OSError):
                        pass
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay)

        self.client = None
        await self._set_state(ConnectionState.DISCONNECTED)
        return {
            "success": False,
            "error": f"Failed to connect to {device_id} after {self.max_retries} attempts",
        }

    async def _subscribe_data(self, client: BleakClient) -> None:
        service = client.services.get_service(self.data_service_uuid)
        if service is None:
            logger.info("Data service %s not found", self.data_service_uuid)
            return
        char = service.get_characteristic(self.data_char_uuid)
        if char is None:
            logger.info("Data characteristic %s not found", self.data_char_uuid)
            return
        await client.start_notify(char, self._handle_data)
        self._notifying = True

    async def disconnect(self) -> Dict[str, Any]:
        self._cancel_reconnect()
        client, self.client = self.client, None
        if client is None:
            return {"success": False, "error": "No device connected"}
        try:
            if client.is_connected:
                if self._notifying:
                    await client.stop_notify(self.data_char_uuid)
                await client.disconnect()
        except (BleakError, OSError) as e:
            logger.warning("Disconnect failed: %s", e)
        finally:
            self._notifying = False
        await self._set_state(ConnectionState.DISCONNECTED)
        return {"success": True, "message": "Disconnected"}

    async def restore(self, channel, platform: ScanPlatform) -> Optional[Dict[str, Any]]:
        """Reconnect to the device persisted by an earlier pairing, if any."""
        device_id = await channel.get_data(DEVICE_ID_KEY)
        if not device_id:
            return None
        logger.info("Restoring connection to %s", device_id)
        await wait_for_adapter(platform)
        return await self.connect(device_id)

    async def reset_device(self, channel) -> Dict[str, Any]:
        await channel.remove_data(DEVICE_ID_KEY)
        await self.disconnect()
        self.device_id = None
        self.device_name = None
        await self._publish({"type": "device_reset"})
        return {"success": True, "message": "Paired device removed"}

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "connected": self.state == ConnectionState.CONNECTED,
            "device_id": self.device_id,
            "device_name": self.device_name,
            "bytes_received": self.bytes_received,
        }


connection_service = ConnectionService()
