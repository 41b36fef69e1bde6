import os
from typing import List


def _get_env(name: str, default: str) -> str:
    return os.environ.get(f"BUDLINK_{name}", default)


def _get_env_int(name: str, default: int) -> int:
    try:
        return int(_get_env(name, str(default)))
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    try:
        value = float(_get_env(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def _get_env_list(name: str, default: List[str]) -> List[str]:
    raw = os.environ.get(f"BUDLINK_{name}")
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# Server
HOST = _get_env("HOST", "0.0.0.0")
PORT = _get_env_int("PORT", 8000)
LOG_LEVEL = _get_env("LOG_LEVEL", "INFO").upper()

# Discovery
SCAN_KEYWORDS = _get_env_list("SCAN_KEYWORDS", ["Bud"])
SCAN_TIMEOUT = _get_env_float("SCAN_TIMEOUT", 10.0)
ADAPTER_POLL_INTERVAL = _get_env_float("ADAPTER_POLL_INTERVAL", 1.0)

# Background task storage
DATA_FILE = _get_env(
    "DATA_FILE",
    os.path.join(os.path.dirname(__file__), "..", "output", "task_data.json"),
)

# Connection
CONNECT_MAX_RETRIES = _get_env_int("CONNECT_MAX_RETRIES", 3)
CONNECT_RETRY_DELAY = _get_env_float("CONNECT_RETRY_DELAY", 2.0)
DATA_SERVICE_UUID = _get_env("DATA_SERVICE_UUID", "0000ae00-0000-1000-8000-00805f9b34fb")
DATA_CHAR_UUID = _get_env("DATA_CHAR_UUID", "0000ae03-0000-1000-8000-00805f9b34fb")
