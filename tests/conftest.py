"""Pytest configuration and fixtures."""

import asyncio

import pytest

from budlink.src import DevicesDetection
from budlink.src.DevicesDetection import AdapterState, DiscoveredDevice


def dev(device_id, name=None):
    return DiscoveredDevice(id=device_id, advertised_name=name)


class FakeSubscription:
    def __init__(self, platform, listener):
        self.platform = platform
        self.listener = listener

    def cancel(self):
        self.platform.events.append("cancel")
        self.platform.cancel_calls += 1
        if self.listener in self.platform.listeners:
            self.platform.listeners.remove(self.listener)


class FakePlatform:
    """In-memory scan platform.

    ``batches`` is a list of ``(delay, [devices])`` pushed after start_scan,
    each delay measured from the previous push.
    """

    def __init__(self, states=(AdapterState.ON,), batches=(), start_error=None,
                 stop_error=None, state_delay=0.0, hold=False, batch_on_start=None):
        self.states = list(states)
        self.batches = list(batches)
        self.start_error = start_error
        self.stop_error = stop_error
        self.state_delay = state_delay
        self.hold = hold
        self.batch_on_start = batch_on_start
        self.events = []
        self.listeners = []
        self.start_calls = []
        self.stop_calls = 0
        self.cancel_calls = 0
        self.started_at = None
        self.scanning = False
        self._pusher = None

    async def adapter_states(self):
        for state in self.states:
            self.events.append(("state", state))
            yield state
            if self.state_delay:
                await asyncio.sleep(self.state_delay)
        if self.hold:
            await asyncio.Event().wait()

    async def start_scan(self, keywords):
        self.events.append("start_scan")
        self.start_calls.append(list(keywords))
        if self.scanning:
            raise RuntimeError("concurrent scan")
        if self.batch_on_start:
            self.push(self.batch_on_start)
        if self.start_error is not None:
            raise self.start_error
        self.scanning = True
        self.started_at = asyncio.get_running_loop().time()
        if self.batches:
            self._pusher = asyncio.get_running_loop().create_task(self._push_batches())

    async def _push_batches(self):
        for delay, batch in self.batches:
            await asyncio.sleep(delay)
            self.push(batch)

    async def stop_scan(self):
        self.events.append("stop_scan")
        self.stop_calls += 1
        self.scanning = False
        if self._pusher is not None:
            self._pusher.cancel()
            self._pusher = None
        if self.stop_error is not None:
            raise self.stop_error

    def subscribe(self, listener):
        self.events.append("subscribe")
        self.listeners.append(listener)
        return FakeSubscription(self, listener)

    def push(self, batch):
        for listener in list(self.listeners):
            listener(batch)


@pytest.fixture
def fast_warmup(monkeypatch):
    """Shrink the scan warm-up so timing-insensitive tests run quickly."""
    monkeypatch.setattr(DevicesDetection, "SCAN_WARMUP_DELAY", 0.05)
