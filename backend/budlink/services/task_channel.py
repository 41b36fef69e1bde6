import asyncio
import inspect
import json
import os
from typing import Any, Callable, Dict, List, Optional, Set

from budlink import config
from budlink.utils.logging import channel_logger as logger


class TaskChannelError(Exception):
    pass


class TaskChannel:
    """Key/value storage shared with the background task, plus a wake signal.

    Values live in a JSON file so the paired device survives restarts.
    Signals are delivered to registered handlers; coroutine handlers run as
    tasks on the current loop.
    """

    def __init__(self, data_file: Optional[str] = None):
        self.data_file = data_file or config.DATA_FILE
        self.handlers: List[Callable[[str], Any]] = []
        self._tasks: Set[asyncio.Task] = set()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.data_file):
            return {}
        try:
            with open(self.data_file, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise TaskChannelError(f"Failed to read {self.data_file}: {e}") from e
        return data if isinstance(data, dict) else {}

    def _dump(self, data: Dict[str, Any]) -> None:
        try:
            payload = json.dumps(data, indent=2)
            output_dir = os.path.dirname(self.data_file)
            if output_dir and not os.path.exists(output_dir):
                os.makedirs(output_dir)
            with open(self.data_file, "w") as f:
                f.write(payload)
        except (OSError, TypeError) as e:
            raise TaskChannelError(f"Failed to write {self.data_file}: {e}") from e

    async def save_data(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    async def get_data(self, key: str) -> Any:
        return self._load().get(key)

    async def remove_data(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._dump(data)

    def add_signal_handler(self, handler: Callable[[str], Any]) -> None:
        if handler not in self.handlers:
            self.handlers.append(handler)

    def remove_signal_handler(self, handler: Callable[[str], Any]) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def send_signal(self, topic: str) -> None:
        logger.debug("Signal %s -> %d handler(s)", topic, len(self.handlers))
        for handler in list(self.handlers):
            result = handler(topic)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Signal handler failed: %s", error)


task_channel = TaskChannel()
