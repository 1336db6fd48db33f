"""Tests for the per-city cache, single-flight refresh and fan-out."""

import asyncio

import pytest

from app.services.city import CityResolver
from app.services.coordinator import Coordinator

from factories import FakeClock, StubCollector


def make_coordinator(collector, clock=None, update_interval_sec=30.0):
    return Coordinator(
        CityResolver(None),
        collector,
        stale_after_sec=25.0,
        update_interval_sec=update_interval_sec,
        clock=clock or FakeClock(),
    )


class TestCache:
    def test_spellings_share_one_entry(self):
        collector = StubCollector()
        coordinator = make_coordinator(collector)

        async def run():
            first = await coordinator.get_snapshot("Москва")
            second = await coordinator.get_snapshot("moscow")
            third = await coordinator.get_snapshot(" MSK ")
            return first, second, third

        first, second, third = asyncio.run(run())
        assert collector.calls == ["moscow"]
        assert first is second is third

    def test_stale_snapshot_is_refreshed(self):
        collector = StubCollector()
        clock = FakeClock()
        coordinator = make_coordinator(collector, clock)

        async def run():
            await coordinator.get_snapshot("Казань")
            clock.advance(10)
            await coordinator.get_snapshot("Казань")
            clock.advance(20)
            return await coordinator.get_snapshot("Казань")

        latest = asyncio.run(run())
        assert collector.calls == ["kazan", "kazan"]
        assert latest.aggregate.temperature_c == 2.0

    def test_force_always_refreshes(self):
        collector = StubCollector()
        coordinator = make_coordinator(collector)

        async def run():
            await coordinator.get_snapshot("Казань")
            await coordinator.get_snapshot("Казань", force=True)

        asyncio.run(run())
        assert len(collector.calls) == 2


class TestSingleFlight:
    def test_concurrent_forced_refreshes_share_one_cycle(self):
        collector = StubCollector(delay=0.05)
        coordinator = make_coordinator(collector)

        async def run():
            return await asyncio.gather(
                coordinator.get_snapshot("Москва", force=True),
                coordinator.get_snapshot("moscow", force=True),
                coordinator.get_snapshot("Москва"),
            )

        results = asyncio.run(run())
        assert collector.calls == ["moscow"]
        assert results[0] is results[1] is results[2]

    def test_different_cities_run_independently(self):
        collector = StubCollector(delay=0.01)
        coordinator = make_coordinator(collector)

        async def run():
            await asyncio.gather(
                coordinator.get_snapshot("Москва"),
                coordinator.get_snapshot("Казань"),
            )

        asyncio.run(run())
        assert sorted(collector.calls) == ["kazan", "moscow"]

    def test_failure_clears_in_flight_state(self):
        collector = StubCollector(error=RuntimeError("boom"))
        coordinator = make_coordinator(collector)

        async def run():
            with pytest.raises(RuntimeError):
                await coordinator.get_snapshot("Москва")
            state = coordinator.state_for("moscow")
            assert state.refresh_task is None
            assert state.snapshot is None
            collector.error = None
            return await coordinator.get_snapshot("Москва")

        snapshot = asyncio.run(run())
        assert snapshot.city_key == "moscow"
        assert len(collector.calls) == 2


class TestSubscriptions:
    def test_subscriber_gets_cached_snapshot_without_new_cycle(self):
        collector = StubCollector()
        coordinator = make_coordinator(collector)

        async def run():
            cached = await coordinator.get_snapshot("Москва")
            state, queue = coordinator.subscribe("moscow")
            first = await coordinator.prime_subscriber(state, "moscow")
            coordinator.unsubscribe(state, queue)
            return cached, first

        cached, first = asyncio.run(run())
        assert first is cached
        assert collector.calls == ["moscow"]

    def test_subscriber_without_snapshot_triggers_one_refresh(self):
        collector = StubCollector()
        coordinator = make_coordinator(collector)

        async def run():
            state, queue = coordinator.subscribe("Казань")
            first = await coordinator.prime_subscriber(state, "Казань")
            delivered = queue.get_nowait()
            coordinator.unsubscribe(state, queue)
            return first, delivered

        first, delivered = asyncio.run(run())
        assert first is None
        assert delivered.city_key == "kazan"
        assert collector.calls == ["kazan"]

    def test_polling_follows_subscriber_count(self):
        coordinator = make_coordinator(StubCollector())

        async def run():
            state, first = coordinator.subscribe("Москва")
            assert state.polling
            _, second = coordinator.subscribe("moscow")
            poll_task = state.poll_task
            coordinator.unsubscribe(state, first)
            assert state.polling
            coordinator.unsubscribe(state, second)
            assert not state.polling
            await asyncio.gather(poll_task, return_exceptions=True)
            assert poll_task.cancelled()

        asyncio.run(run())

    def test_polling_broadcasts_in_order(self):
        collector = StubCollector()
        coordinator = make_coordinator(collector, update_interval_sec=0.01)

        async def run():
            state, queue = coordinator.subscribe("Москва")
            received = [await asyncio.wait_for(queue.get(), timeout=1) for _ in range(3)]
            coordinator.unsubscribe(state, queue)
            return received

        received = asyncio.run(run())
        markers = [snapshot.aggregate.temperature_c for snapshot in received]
        assert markers == sorted(markers)
        assert len(set(markers)) == 3

    def test_broadcast_reaches_every_subscriber(self):
        coordinator = make_coordinator(StubCollector())

        async def run():
            state, a = coordinator.subscribe("Москва")
            _, b = coordinator.subscribe("Москва")
            snapshot = await coordinator.get_snapshot("Москва", force=True)
            assert a.get_nowait() is snapshot
            assert b.get_nowait() is snapshot
            coordinator.unsubscribe(state, a)
            coordinator.unsubscribe(state, b)

        asyncio.run(run())

    def test_shutdown_stops_polling(self):
        coordinator = make_coordinator(StubCollector())

        async def run():
            state, _ = coordinator.subscribe("Москва")
            task = state.poll_task
            await coordinator.shutdown()
            assert task.cancelled()
            assert state.poll_task is None

        asyncio.run(run())
