"""Tests for the timer-and-signal join used by every pipeline stage."""

import asyncio
import time

import pytest

from plainly.services.pipeline import PipelinePolicy, StageGate


class TestStageGate:
    async def test_waits_for_floor_when_signal_is_early(self) -> None:
        gate = StageGate(0.05)
        gate.signal()
        started = time.monotonic()
        await gate.wait()
        assert time.monotonic() - started >= 0.045
        assert gate.floor_elapsed_at >= gate.signal_at

    async def test_waits_for_signal_when_floor_is_short(self) -> None:
        gate = StageGate(0.0)

        async def late_signal() -> None:
            await asyncio.sleep(0.05)
            gate.signal()

        task = asyncio.create_task(late_signal())
        await gate.wait()
        await task
        assert gate.signalled
        assert gate.signal_at >= gate.floor_elapsed_at

    async def test_does_not_complete_without_signal(self) -> None:
        gate = StageGate(0.0)
        with pytest.raises(TimeoutError):
            await asyncio.wait_for(gate.wait(), timeout=0.05)

    async def test_signal_is_idempotent(self) -> None:
        ticks = iter([1.0, 2.0, 3.0])
        gate = StageGate(0.0, clock=lambda: next(ticks))
        gate.signal()
        gate.signal()
        assert gate.signal_at == 1.0

    async def test_wait_signal_timeout(self) -> None:
        gate = StageGate(1.0)
        assert await gate.wait_signal(timeout=0.01) is False
        gate.signal()
        assert await gate.wait_signal(timeout=0.01) is True


class TestPipelinePolicy:
    def test_defaults(self) -> None:
        policy = PipelinePolicy()
        stages = policy.build_stages()
        assert [s.index for s in stages] == [0, 1, 2, 3]
        assert [s.min_display_seconds for s in stages] == [2.0, 2.0, 2.0, 1.5]
        assert stages[0].label == "Listening back"

    def test_requires_four_floors(self) -> None:
        with pytest.raises(ValueError):
            PipelinePolicy(stage_min_display_seconds=(1.0, 1.0))

    def test_background_not_below_slow(self) -> None:
        with pytest.raises(ValueError):
            PipelinePolicy(slow_notice_seconds=10, background_notice_seconds=5)
