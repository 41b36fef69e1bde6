from fastapi import APIRouter, HTTPException, Query
from typing import List, Optional
from budlink.schemas.ble import (
    ScanRequest, DevicesResponse, PairRequest, PairResponse, StatusResponse,
)
from budlink.services.discovery_service import discovery_service
from budlink.services.connection_service import connection_service
from budlink.services.task_channel import task_channel
from budlink.services.event_hub import event_hub
from budlink.src.DevicePairing import PairingOutcome
from budlink.src.DevicesDetection import DiscoveryError
from budlink.utils.logging import api_logger as logger

router = APIRouter()

@router.get("/devices", response_model=DevicesResponse)
async def list_devices(
    timeout: Optional[float] = Query(default=None, gt=0, le=300),
    keywords: Optional[List[str]] = Query(default=None),
):
    """Scan for BLE devices until the timeout and return what was found."""
    try:
        devices = await discovery_service.scan(keywords, timeout)
        return {"devices": [d.to_dict() for d in devices]}
    except DiscoveryError as e:
        logger.error("Device scan error: %s", e)
        return {"devices": [], "error": str(e)}

@router.post("/scan/start")
async def start_scan(request: ScanRequest):
    return await discovery_service.start_scan(
        request.keywords, request.timeout, on_event=event_hub.broadcast
    )

@router.post("/scan/stop")
async def stop_scan():
    return await discovery_service.stop_scan()

@router.post("/pair", response_model=PairResponse)
async def pair_device(request: PairRequest):
    device = discovery_service.get_device(request.device_id)
    if device is None:
        raise HTTPException(status_code=404, detail=f"Unknown device: {request.device_id}")
    outcome = await discovery_service.pair(device, task_channel)
    name = device.advertised_name or device.id
    if outcome == PairingOutcome.SUCCESS:
        return PairResponse(success=True, device_id=device.id, message=f"Connecting to {name}")
    return PairResponse(success=False, device_id=device.id, message=f"Failed to connect to {name}")

@router.post("/reset")
async def reset_device():
    return await connection_service.reset_device(task_channel)

@router.get("/status", response_model=StatusResponse)
async def get_status():
    return {
        "scan": discovery_service.get_status(),
        "connection": connection_service.get_status(),
    }
