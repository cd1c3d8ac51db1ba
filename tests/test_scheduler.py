import asyncio

import pytest

from toolchat.services.scheduler import DelayedJobScheduler


class Recorder:
    def __init__(self):
        self.fired = []

    async def __call__(self, key: str) -> None:
        self.fired.append(key)


class TestDelayedJobScheduler:
    @pytest.mark.asyncio
    async def test_job_fires_once_after_delay(self):
        scheduler = DelayedJobScheduler()
        recorder = Recorder()

        scheduler.schedule("whatsapp_1", 0.05, recorder)
        assert scheduler.pending("whatsapp_1")
        await asyncio.sleep(0.15)

        assert recorder.fired == ["whatsapp_1"]
        assert not scheduler.pending("whatsapp_1")

    @pytest.mark.asyncio
    async def test_reschedule_replaces_pending_job(self):
        scheduler = DelayedJobScheduler()
        recorder = Recorder()

        scheduler.schedule("whatsapp_1", 0.1, recorder)
        await asyncio.sleep(0.06)
        scheduler.schedule("whatsapp_1", 0.1, recorder)
        await asyncio.sleep(0.07)
        assert recorder.fired == []

        await asyncio.sleep(0.1)
        assert recorder.fired == ["whatsapp_1"]

    @pytest.mark.asyncio
    async def test_many_rapid_reschedules_fire_once(self):
        scheduler = DelayedJobScheduler()
        recorder = Recorder()

        for _ in range(20):
            scheduler.schedule("whatsapp_1", 0.03, recorder)
        await asyncio.sleep(0.1)

        assert recorder.fired == ["whatsapp_1"]

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        scheduler = DelayedJobScheduler()
        recorder = Recorder()

        scheduler.schedule("a", 0.02, recorder)
        scheduler.schedule("b", 0.04, recorder)
        assert sorted(scheduler.pending_keys()) == ["a", "b"]
        await asyncio.sleep(0.1)

        assert recorder.fired == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cancel(self):
        scheduler = DelayedJobScheduler()
        recorder = Recorder()

        scheduler.schedule("a", 0.02, recorder)
        assert scheduler.cancel("a") is True
        assert scheduler.cancel("a") is False
        await asyncio.sleep(0.05)

        assert recorder.fired == []

    @pytest.mark.asyncio
    async def test_failing_job_is_contained(self):
        scheduler = DelayedJobScheduler()

        async def explode(key):
            raise RuntimeError("summary failed")

        scheduler.schedule("a", 0.01, explode)
        await asyncio.sleep(0.05)

        assert scheduler.pending_keys() == []

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self):
        scheduler = DelayedJobScheduler()
        recorder = Recorder()

        scheduler.schedule("a", 0.02, recorder)
        scheduler.schedule("b", 0.02, recorder)
        await scheduler.shutdown()
        await asyncio.sleep(0.05)

        assert recorder.fired == []
        assert scheduler.pending_keys() == []

    @pytest.mark.asyncio
    async def test_reschedule_keeps_one_job_per_key(self):
        scheduler = DelayedJobScheduler()
        recorder = Recorder()

        for delay in (5, 10, 15):
            scheduler.schedule("whatsapp_1", delay, recorder)

        assert scheduler.pending_keys() == ["whatsapp_1"]
        await scheduler.shutdown()
        assert not scheduler.pending("whatsapp_1")

    @pytest.mark.asyncio
    async def test_cancel_unknown_key_before_start(self):
        scheduler = DelayedJobScheduler()

        assert scheduler.cancel("never-scheduled") is False
        assert scheduler.pending_keys() == []
