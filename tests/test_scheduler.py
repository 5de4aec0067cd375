"""
Tests for the interval pollers
"""
import asyncio
import logging

import pytest

from chattie.scheduler import PeriodicTask, Scheduler


class TestPeriodicTask:
    """Test a single periodic task"""

    def test_runs_until_stopped(self):
        calls = []

        async def tick():
            calls.append(1)

        async def scenario():
            task = PeriodicTask("poll", tick, interval=0.01)
            task.start()
            await asyncio.sleep(0.05)
            task.stop()
            await task.join()
            return task

        task = asyncio.run(scenario())
        assert len(calls) >= 2
        assert task.ticks == len(calls)
        assert task.running is False

    def test_no_ticks_after_stop(self):
        calls = []

        async def tick():
            calls.append(1)

        async def scenario():
            task = PeriodicTask("poll", tick, interval=0.01)
            task.start()
            await asyncio.sleep(0.03)
            task.stop()
            await task.join()
            stopped_at = len(calls)
            await asyncio.sleep(0.03)
            return stopped_at

        stopped_at = asyncio.run(scenario())
        assert len(calls) == stopped_at

    def test_errors_are_logged_and_loop_continues(self, caplog):
        calls = []

        async def failing():
            calls.append(1)
            raise RuntimeError("IMAP down")

        async def scenario():
            task = PeriodicTask("email polling", failing, interval=0.01)
            task.start()
            await asyncio.sleep(0.05)
            task.stop()
            await task.join()

        with caplog.at_level(logging.ERROR, logger="chattie.scheduler"):
            asyncio.run(scenario())

        assert len(calls) >= 2
        assert "Error in email polling task: IMAP down" in caplog.text

    def test_delayed_first_run(self):
        calls = []

        async def tick():
            calls.append(1)

        async def scenario():
            task = PeriodicTask("follow-up check", tick, interval=10, run_immediately=False)
            task.start()
            await asyncio.sleep(0.02)
            task.stop()
            await task.join()

        asyncio.run(scenario())
        assert calls == []

    def test_in_flight_tick_completes(self):
        finished = []

        async def slow():
            await asyncio.sleep(0.03)
            finished.append(1)

        async def scenario():
            task = PeriodicTask("slow", slow, interval=10)
            task.start()
            await asyncio.sleep(0.01)
            task.stop()
            await task.join()

        asyncio.run(scenario())
        assert finished == [1]


class TestScheduler:
    """Test the scheduler registry"""

    def test_duplicate_name_rejected(self):
        async def tick():
            pass

        scheduler = Scheduler()
        scheduler.add("poll", tick, 1)
        with pytest.raises(ValueError):
            scheduler.add("poll", tick, 1)

    def test_unknown_task(self):
        with pytest.raises(KeyError):
            Scheduler().stop("missing")

    def test_stop_one_task(self):
        counts = {"a": 0, "b": 0}

        def counter(key):
            async def tick():
                counts[key] += 1
            return tick

        async def scenario():
            scheduler = Scheduler()
            scheduler.add("a", counter("a"), 0.01)
            scheduler.add("b", counter("b"), 0.01)
            scheduler.start()
            scheduler.stop("a")
            await scheduler.tasks["a"].join()
            stopped_at = counts["a"]
            await asyncio.sleep(0.04)
            scheduler.stop()
            await scheduler.join()
            return stopped_at

        stopped_at = asyncio.run(scenario())
        assert counts["a"] == stopped_at
        assert counts["b"] >= 2
