"""Tests for SessionPersistence (drift correction) and AutoSaver."""

import pytest

from focusbank.config import LEDGER_KEY, RATES_KEY, REGISTRY_KEY, SOLO_TIMER_KEY
from focusbank.ledger import EnergyLedger
from focusbank.models import EnergyTransaction, TimerState, TransactionType
from focusbank.persistence import AutoSaver, SessionPersistence, drift_seconds
from focusbank.registry import CategoryRates, TimerRegistry
from focusbank.solo import SoloTimer
from focusbank.store import MemoryStore
from support import FakeClock, make_task, run


def make_persistence(clock=None):
    clock = clock or FakeClock()
    return SessionPersistence(MemoryStore(), clock=clock), clock


def running_registry(clock):
    registry = TimerRegistry(clock=clock)
    registry.start(make_task("running", rate=60))
    registry.start(make_task("paused", rate=60))
    for _ in range(100):
        registry.tick()
    registry.pause("paused")
    return registry


# ---- Drift ----

class TestDrift:
    def test_whole_seconds(self):
        clock = FakeClock()
        start = clock.now
        assert drift_seconds(start, clock.advance(90.7)) == 90

    def test_clock_moved_backwards(self):
        clock = FakeClock()
        start = clock.now
        assert drift_seconds(start, clock.advance(-30)) == 0

    def test_missing_timestamp(self):
        assert drift_seconds(None, FakeClock()()) == 0


# ---- Registry record ----

class TestRegistryPersistence:
    def test_running_entries_get_drift(self):
        persistence, clock = make_persistence()
        registry = running_registry(clock)

        async def scenario():
            await persistence.save_registry(registry.timers)
            clock.advance(90)
            return await persistence.load_registry(registry.hourly_rate_for)

        entries = {entry.task_id: entry for entry in run(scenario())}
        assert entries["running"].elapsed_seconds == 190
        assert entries["running"].session_earnings == pytest.approx(190 / 60)
        assert entries["paused"].elapsed_seconds == 100
        assert entries["paused"].state == TimerState.PAUSED

    def test_only_live_entries_saved(self):
        persistence, clock = make_persistence()
        registry = running_registry(clock)
        registry.stop("paused")

        async def scenario():
            await persistence.save_registry(registry.timers)
            return await persistence.store.get(REGISTRY_KEY)

        record = run(scenario())
        assert [timer["task_id"] for timer in record["timers"]] == ["running"]
        assert "last_update_time" in record

    def test_record_removed_when_nothing_live(self):
        persistence, clock = make_persistence()
        registry = running_registry(clock)

        async def scenario():
            await persistence.save_registry(registry.timers)
            registry.stop_all()
            await persistence.save_registry(registry.timers)
            return await persistence.store.get(REGISTRY_KEY)

        assert run(scenario()) is None

    def test_malformed_record_gives_empty(self):
        persistence, _ = make_persistence()

        async def scenario():
            await persistence.store.set(REGISTRY_KEY, {"timers": [{"elapsed_seconds": -4}], "last_update_time": "x"})
            return await persistence.load_registry()

        assert run(scenario()) == []

    def test_restart_continues_where_it_left_off(self):
        persistence, clock = make_persistence()
        registry = running_registry(clock)

        async def scenario():
            await persistence.save_registry(registry.timers)
            clock.advance(30)
            restarted = TimerRegistry(clock=clock)
            restarted.restore(await persistence.load_registry(restarted.hourly_rate_for))
            restarted.tick()
            return restarted

        restarted = run(scenario())
        assert restarted.get("running").elapsed_seconds == 131
        assert restarted.get("paused").elapsed_seconds == 100


# ---- Solo record ----

class TestSoloPersistence:
    def test_running_solo_gets_drift(self):
        persistence, clock = make_persistence()
        solo = SoloTimer(active_task=make_task(rate=60), clock=clock)
        solo.start()
        for _ in range(60):
            solo.tick()

        async def scenario():
            await persistence.save_solo(solo.state)
            clock.advance(60)
            return await persistence.load_solo(solo.hourly_rate_for)

        state = run(scenario())
        assert state.elapsed_seconds == 120
        assert state.session_earnings == pytest.approx(2.0)
        assert state.active_session.duration == 120

    def test_saved_task_prices_the_drift(self):
        persistence, clock = make_persistence()
        rates = CategoryRates({"cat-9": 120})
        solo = SoloTimer(active_task=make_task(category_id="cat-9"), rate_lookup=rates, clock=clock)
        solo.start()
        for _ in range(30):
            solo.tick()

        async def scenario():
            await persistence.save_solo(solo.state)
            clock.advance(30)
            fresh = SoloTimer(rate_lookup=rates, clock=clock)
            return await persistence.load_solo(fresh.hourly_rate_for)

        state = run(scenario())
        assert state.task.id == "task-1"
        assert state.elapsed_seconds == 60
        assert state.session_earnings == pytest.approx(2.0)

    def test_paused_solo_has_no_drift(self):
        persistence, clock = make_persistence()
        solo = SoloTimer(active_task=make_task(), clock=clock)
        solo.start()
        solo.tick()
        solo.pause()

        async def scenario():
            await persistence.save_solo(solo.state)
            clock.advance(600)
            return await persistence.load_solo()

        assert run(scenario()).elapsed_seconds == 1

    def test_nothing_saved(self):
        persistence, _ = make_persistence()
        assert run(persistence.load_solo()) is None


# ---- Category rates record ----

class TestRatesPersistence:
    def test_round_trip(self):
        persistence, _ = make_persistence()

        async def scenario():
            await persistence.save_rates(CategoryRates({"cat-9": 120, "cat-2": 45.5}))
            return await persistence.load_rates()

        assert run(scenario()) == {"cat-9": 120.0, "cat-2": 45.5}

    def test_nothing_saved(self):
        persistence, _ = make_persistence()
        assert run(persistence.load_rates()) == {}

    def test_malformed_record_is_discarded(self):
        persistence, _ = make_persistence()

        async def scenario():
            await persistence.store.set(RATES_KEY, {"cat-9": "lots"})
            return await persistence.load_rates()

        assert run(scenario()) == {}


# ---- Ledger record ----

class TestLedgerPersistence:
    def test_round_trip(self):
        persistence, clock = make_persistence()
        ledger = EnergyLedger(clock=clock)
        ledger.apply(-15, EnergyTransaction.create(TransactionType.TASK_START, -15, now=clock()))

        async def scenario():
            await persistence.save_ledger(ledger)
            return await persistence.load_ledger(clock=clock)

        loaded = run(scenario())
        assert loaded.state.current_energy == 135
        assert len(loaded.transactions) == 1

    def test_malformed_ledger_gives_fresh(self):
        persistence, clock = make_persistence()

        async def scenario():
            await persistence.store.set(LEDGER_KEY, {"state": {"current_energy": "lots"}})
            return await persistence.load_ledger(clock=clock)

        assert run(scenario()).state.current_energy == 150


# ---- AutoSaver ----

class TestAutoSaver:
    def test_registry_changes_are_saved(self):
        persistence, clock = make_persistence()
        registry = TimerRegistry(clock=clock)
        saver = AutoSaver(persistence)
        saver.bind_registry(registry)

        async def scenario():
            registry.start(make_task())
            await saver.flush()
            return await persistence.store.get(REGISTRY_KEY)

        record = run(scenario())
        assert record["timers"][0]["task_id"] == "task-1"

    def test_ticks_are_not_saved(self):
        persistence, clock = make_persistence()
        registry = TimerRegistry(clock=clock)
        saver = AutoSaver(persistence)
        registry.start(make_task())
        saver.bind_registry(registry)
        registry.tick()
        assert saver.pending == set()

    def test_burst_collapses_to_latest_snapshot(self):
        persistence, clock = make_persistence()
        registry = TimerRegistry(clock=clock)
        saver = AutoSaver(persistence)
        saver.bind_registry(registry)

        async def scenario():
            registry.start(make_task())
            registry.tick()
            registry.tick()
            registry.pause("task-1")
            await saver.flush()
            return await persistence.store.get(REGISTRY_KEY)

        record = run(scenario())
        assert record["timers"][0]["state"] == "paused"
        assert record["timers"][0]["elapsed_seconds"] == 2

    def test_stopping_last_timer_removes_record(self):
        persistence, clock = make_persistence()
        registry = TimerRegistry(clock=clock)
        saver = AutoSaver(persistence)
        saver.bind_registry(registry)

        async def scenario():
            registry.start(make_task())
            await saver.flush()
            registry.stop("task-1")
            await saver.flush()
            return await persistence.store.get(REGISTRY_KEY)

        assert run(scenario()) is None

    def test_solo_stop_clears_record(self):
        persistence, clock = make_persistence()
        solo = SoloTimer(active_task=make_task(), clock=clock)
        saver = AutoSaver(persistence)
        saver.bind_solo(solo)

        async def scenario():
            solo.start()
            await saver.flush()
            saved = await persistence.store.get(SOLO_TIMER_KEY)
            await solo.stop()
            await saver.flush()
            return saved, await persistence.store.get(SOLO_TIMER_KEY)

        saved, after = run(scenario())
        assert saved["state"] == "running"
        assert after is None

    def test_ledger_changes_are_saved(self):
        persistence, clock = make_persistence()
        ledger = EnergyLedger(clock=clock)
        saver = AutoSaver(persistence)
        saver.bind_ledger(ledger)

        async def scenario():
            ledger.apply(-20, EnergyTransaction.create(TransactionType.MANUAL_ADJUST, -20, now=clock()))
            await saver.flush()
            return await persistence.store.get(LEDGER_KEY)

        assert run(scenario())["state"]["current_energy"] == 130

    def test_changes_without_loop_wait_for_flush(self):
        persistence, clock = make_persistence()
        registry = TimerRegistry(clock=clock)
        saver = AutoSaver(persistence)
        saver.bind_registry(registry)
        registry.start(make_task())
        assert saver.pending == {REGISTRY_KEY}
        run(saver.flush())
        assert saver.pending == set()
        assert run(persistence.store.get(REGISTRY_KEY)) is not None

    def test_rate_changes_are_saved(self):
        persistence, _ = make_persistence()
        rates = CategoryRates()
        saver = AutoSaver(persistence)
        saver.bind_rates(rates)

        async def scenario():
            rates.set_rate("cat-9", 120)
            await saver.flush()
            return await persistence.store.get(RATES_KEY)

        assert run(scenario()) == {"cat-9": 120}

    def test_save_all_writes_current_elapsed(self):
        persistence, clock = make_persistence()
        registry = TimerRegistry(clock=clock)
        solo = SoloTimer(active_task=make_task("solo-task"), clock=clock)
        saver = AutoSaver(persistence)
        saver.bind_registry(registry)
        saver.bind_solo(solo)

        async def scenario():
            registry.start(make_task())
            solo.start()
            await saver.flush()
            for _ in range(5):
                registry.tick()
                solo.tick()
            await saver.save_all()
            return await persistence.store.get(REGISTRY_KEY), await persistence.store.get(SOLO_TIMER_KEY)

        timers, solo_record = run(scenario())
        assert timers["timers"][0]["elapsed_seconds"] == 5
        assert solo_record["elapsed_seconds"] == 5
        assert solo_record["task"]["id"] == "solo-task"
