#DevicePairing.py

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

from budlink.src.DevicesDetection import DiscoveredDevice
from budlink.utils.logging import pairing_logger as logger

DEVICE_ID_KEY = "deviceRemoteId"
DEVICE_SIGNAL = "device"


class PairingOutcome(str, Enum):
    """Only two results. Callers decide between success and failure, nothing more."""
    SUCCESS = "success"
    FAILURE = "failure"


class PairingError(Exception):
    """Persisting or signalling the selected device failed."""


class BackgroundTaskChannel(Protocol):
    async def save_data(self, key: str, value: Any) -> None: ...

    def send_signal(self, topic: str) -> None: ...


@dataclass
class PairingAttempt:
    device: DiscoveredDevice
    outcome: Optional[PairingOutcome] = None

    @property
    def is_pending(self) -> bool:
        return self.outcome is None


async def handoff_device(device: DiscoveredDevice, channel: BackgroundTaskChannel) -> None:
    """Store the device id for the background task and wake it up."""
    try:
        await channel.save_data(DEVICE_ID_KEY, device.id)
        channel.send_signal(DEVICE_SIGNAL)
    except Exception as e:
        raise PairingError(f"Handoff of {device.id} failed: {e}") from e


async def pair_with_device(device: DiscoveredDevice, channel: BackgroundTaskChannel) -> PairingOutcome:
    """Hand the device off to the background task. Never raises; one attempt only."""
    attempt = PairingAttempt(device)
    try:
        await handoff_device(device, channel)
        attempt.outcome = PairingOutcome.SUCCESS
        logger.info("Handed off %s (%s)", device.id, device.advertised_name)
    except PairingError as e:
        attempt.outcome = PairingOutcome.FAILURE
        logger.warning("%s", e)
    return attempt.outcome
