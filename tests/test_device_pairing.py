"""Tests for handing a selected device off to the background task."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from budlink.services.task_channel import TaskChannel
from budlink.src.DevicePairing import (
    DEVICE_ID_KEY,
    DEVICE_SIGNAL,
    PairingAttempt,
    PairingError,
    PairingOutcome,
    handoff_device,
    pair_with_device,
)
from conftest import dev


def make_channel():
    channel = MagicMock()
    channel.save_data = AsyncMock()
    channel.send_signal = MagicMock()
    return channel


class TestPairWithDevice:
    @pytest.mark.asyncio
    async def test_success_persists_id_then_signals(self):
        channel = make_channel()
        order = []
        channel.save_data.side_effect = lambda key, value: order.append(("save", key, value))
        channel.send_signal.side_effect = lambda topic: order.append(("signal", topic))

        outcome = await pair_with_device(dev("AA:BB", "Bud Pro"), channel)

        assert outcome == PairingOutcome.SUCCESS
        assert order == [("save", DEVICE_ID_KEY, "AA:BB"), ("signal", DEVICE_SIGNAL)]

    @pytest.mark.asyncio
    async def test_save_failure_returns_failure_without_signalling(self):
        channel = make_channel()
        channel.save_data.side_effect = OSError("disk full")

        outcome = await pair_with_device(dev("AA:BB"), channel)

        assert outcome == PairingOutcome.FAILURE
        channel.send_signal.assert_not_called()

    @pytest.mark.asyncio
    async def test_signal_failure_returns_failure(self):
        channel = make_channel()
        channel.send_signal.side_effect = RuntimeError("task not running")

        assert await pair_with_device(dev("AA:BB"), channel) == PairingOutcome.FAILURE
        channel.save_data.assert_awaited_once_with(DEVICE_ID_KEY, "AA:BB")

    @pytest.mark.asyncio
    async def test_only_one_attempt_is_made(self):
        channel = make_channel()
        channel.save_data.side_effect = OSError("busy")

        await pair_with_device(dev("AA:BB"), channel)

        assert channel.save_data.await_count == 1

    @pytest.mark.asyncio
    async def test_handoff_wraps_errors(self):
        channel = make_channel()
        channel.save_data.side_effect = ValueError("bad value")

        with pytest.raises(PairingError) as excinfo:
            await handoff_device(dev("AA:BB"), channel)
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_outcome_has_two_variants(self):
        assert {o.value for o in PairingOutcome} == {"success", "failure"}

    def test_attempt_starts_pending(self):
        attempt = PairingAttempt(dev("AA:BB"))
        assert attempt.is_pending
        attempt.outcome = PairingOutcome.SUCCESS
        assert not attempt.is_pending


class TestPairWithTaskChannel:
    @pytest.mark.asyncio
    async def test_id_written_to_data_file_and_handler_woken(self, tmp_path):
        data_file = tmp_path / "task_data.json"
        channel = TaskChannel(str(data_file))
        topics = []
        channel.add_signal_handler(topics.append)

        outcome = await pair_with_device(dev("AA:BB"), channel)

        assert outcome == PairingOutcome.SUCCESS
        assert json.loads(data_file.read_text()) == {DEVICE_ID_KEY: "AA:BB"}
        assert topics == [DEVICE_SIGNAL]

    @pytest.mark.asyncio
    async def test_unreadable_store_is_a_failure(self, tmp_path):
        data_file = tmp_path / "task_data.json"
        data_file.write_text("{not json")
        channel = TaskChannel(str(data_file))

        assert await pair_with_device(dev("AA:BB"), channel) == PairingOutcome.FAILURE
