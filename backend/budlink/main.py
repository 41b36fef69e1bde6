from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from budlink.routers import ble
from budlink.services.connection_service import connection_service
from budlink.services.discovery_service import discovery_service
from budlink.services.event_hub import event_hub
from budlink.services.task_channel import task_channel
from budlink.utils.logging import api_logger as logger
import asyncio
from typing import Optional

restore_task: Optional[asyncio.Task] = None

async def restore_paired_device() -> None:
    """Reconnect to the device paired in an earlier run, once the adapter is on."""
    try:
        result = await connection_service.restore(task_channel, discovery_service.platform)
        if result is not None:
            logger.info("Restore result: %s", result)
    except asyncio.CancelledError:
        logger.info("Restore cancelled.")
        raise
    except Exception as e:
        logger.error("Restore failed: %s", e)

@asynccontextmanager
async def lifespan(app: FastAPI):
    global restore_task
    connection_service.attach(task_channel)
    connection_service.add_listener(event_hub.broadcast)
    restore_task = asyncio.create_task(restore_paired_device())
    try:
        yield
    finally:
        restore_task.cancel()
        try:
            await restore_task
        except asyncio.CancelledError:
            pass
        await discovery_service.stop_scan()
        await connection_service.disconnect()
        connection_service.remove_listener(event_hub.broadcast)
        connection_service.detach()

app = FastAPI(
    title="Budlink API",
    description="BLE discovery and pairing for the companion earbuds",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ble.router, prefix="/api/ble", tags=["BLE"])

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for streaming discovery and connection events to clients."""
    await websocket.accept()
    event_hub.register(websocket)
    try:
        while True:
            await websocket.receive_text()  # To keep connection alive
    except WebSocketDisconnect:
        pass
    finally:
        event_hub.unregister(websocket)

@app.get("/health")
async def health():
    return {"status": "healthy"}

@app.get("/api/{path:path}")
async def api_not_found(path: str):
    return JSONResponse(
        status_code=404,
        content={"error": "API endpoint not found", "path": f"/api/{path}"}
    )
