from pydantic import BaseModel, Field
from typing import Optional, List

class ScanRequest(BaseModel):
    keywords: Optional[List[str]] = None
    timeout: Optional[float] = Field(default=None, gt=0, le=300)

class DeviceOut(BaseModel):
    id: str
    name: str
    rssi: Optional[int] = None

class DevicesResponse(BaseModel):
    devices: List[DeviceOut]
    error: Optional[str] = None

class PairRequest(BaseModel):
    device_id: str

class PairResponse(BaseModel):
    success: bool
    device_id: str
    message: str

class ConnectionStatus(BaseModel):
    state: str
    connected: bool
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    bytes_received: int = 0

class ScanStatus(BaseModel):
    scanning: bool
    state: str
    seen: int
    devices: List[DeviceOut]
    last_error: Optional[str] = None

class StatusResponse(BaseModel):
    scan: ScanStatus
    connection: ConnectionStatus
