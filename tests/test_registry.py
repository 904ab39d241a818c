from __future__ import annotations

import asyncio

from models.records import Collection
from services.store_adapter import StoreAdapter
from support import FlakyStore, RecordingSubscriber, at, build_engine, reading_doc

HISTORY_FULLS = ["alerts-full", "settings-full", "personality-full"]
STATS_EVENTS = {"server-stats", "performance-stats", "data-stats"}


def _quiet_engine(store=None, **overrides):
    # Long intervals so only explicit ticks produce deltas.
    overrides.setdefault("poll_interval_ms", 60_000)
    overrides.setdefault("stats_interval_ms", 60_000)
    return build_engine(store, **overrides)


def _sync_events(subscriber: RecordingSubscriber) -> list:
    return [event for event in subscriber.events() if event not in STATS_EVENTS]


def test_joining_viewer_receives_full_snapshot_first() -> None:
    engine = _quiet_engine()
    engine.store.insert_many(
        Collection.readings,
        [reading_doc("S2", at(1)), reading_doc("S1", at(1)), reading_doc("S1", at(2))],
    )
    engine.store.insert(Collection.alerts, {"sensor_id": "S1", "timestamp": at(1), "alert_reason": "hot"})
    viewer = RecordingSubscriber("viewer")

    async def scenario() -> None:
        await engine.registry.on_connect(viewer)
        await engine.shutdown()

    asyncio.run(scenario())

    assert viewer.events()[:5] == ["sensor-full", "sensor-full", *HISTORY_FULLS]
    sensor_fulls = viewer.payloads("sensor-full")
    assert [batch["sensorId"] for batch in sensor_fulls] == ["S1", "S2"]
    assert len(sensor_fulls[0]["readings"]) == 2
    assert viewer.payloads("alerts-full")[0][0]["reason"] == "hot"
    assert viewer in engine.registry


def test_empty_store_snapshot_still_sends_history_fulls() -> None:
    engine = _quiet_engine()
    viewer = RecordingSubscriber()

    async def scenario() -> None:
        await engine.registry.on_connect(viewer)
        await engine.shutdown()

    asyncio.run(scenario())

    assert viewer.events()[:3] == HISTORY_FULLS
    assert viewer.payloads("sensor-full") == []
    assert viewer.payloads("alerts-full") == [[]]


def test_snapshot_history_uses_snapshot_limit() -> None:
    engine = _quiet_engine(history_snapshot_limit=3)
    engine.store.insert_many(
        Collection.alerts,
        [{"sensor_id": "S1", "timestamp": at(s), "alert_reason": str(s)} for s in range(8)],
    )
    viewer = RecordingSubscriber()

    async def scenario() -> None:
        await engine.registry.on_connect(viewer)
        await engine.shutdown()

    asyncio.run(scenario())

    assert [alert["reason"] for alert in viewer.payloads("alerts-full")[0]] == ["7", "6", "5"]


def test_loops_start_on_first_viewer_and_stop_on_last() -> None:
    engine = _quiet_engine()
    first = RecordingSubscriber("first")
    second = RecordingSubscriber("second")
    observed = {}

    async def scenario() -> None:
        await engine.registry.on_connect(first)
        observed["after_first"] = (engine.scheduler.running, engine.stats.running)
        await engine.registry.on_connect(second)
        observed["count"] = engine.registry.count
        await engine.registry.on_disconnect(first)
        observed["after_one_left"] = (engine.scheduler.running, engine.stats.running)
        await engine.registry.on_disconnect(second)
        observed["after_all_left"] = (engine.scheduler.running, engine.stats.running)
        await engine.registry.on_disconnect(second)
        await engine.shutdown()

    asyncio.run(scenario())

    assert observed["after_first"] == (True, True)
    assert observed["count"] == 2
    assert observed["after_one_left"] == (True, True)
    assert observed["after_all_left"] == (False, False)
    assert engine.registry.count == 0


def test_reconnect_after_idle_resets_watermarks() -> None:
    engine = _quiet_engine()
    engine.store.insert(Collection.readings, reading_doc("S1", at(1)))
    viewer = RecordingSubscriber()

    async def scenario() -> None:
        await engine.registry.on_connect(viewer)
        await engine.scheduler.tick()
        await engine.registry.on_disconnect(viewer)
        assert engine.watermarks.get("S1") == at(1)
        await engine.registry.on_connect(RecordingSubscriber())
        await engine.shutdown()

    asyncio.run(scenario())

    assert engine.watermarks.get("S1") is None


def test_mid_stream_joiner_gets_no_duplicate_delta() -> None:
    engine = _quiet_engine()
    engine.store.insert(Collection.readings, reading_doc("S1", at(1)))
    early = RecordingSubscriber("early")
    late = RecordingSubscriber("late")

    async def scenario() -> None:
        await engine.registry.on_connect(early)
        await engine.scheduler.tick()
        engine.store.insert(Collection.readings, reading_doc("S1", at(2)))
        await engine.registry.on_connect(late)
        await engine.scheduler.tick()
        await engine.scheduler.tick()
        await engine.shutdown()

    asyncio.run(scenario())

    # early already held at(1) from its snapshot, so only the at(2) batch is new to it.
    early_deltas = early.payloads("sensor-delta")
    assert len(early_deltas) == 1
    assert early_deltas[0]["readings"][0]["timestamp"] == "2024-01-01T12:00:02Z"

    assert late.payloads("sensor-delta") == []
    late_full = late.payloads("sensor-full")
    assert len(late_full) == 1
    assert len(late_full[0]["readings"]) == 2
    assert _sync_events(late)[:4] == ["sensor-full", *HISTORY_FULLS]


def test_request_full_sync_resends_snapshot() -> None:
    engine = _quiet_engine()
    engine.store.insert(Collection.readings, reading_doc("S1", at(1)))
    viewer = RecordingSubscriber()

    async def scenario() -> None:
        await engine.registry.on_connect(viewer)
        viewer.clear()
        await engine.registry.on_request_full_sync(viewer)
        await engine.shutdown()

    asyncio.run(scenario())

    assert _sync_events(viewer)[:4] == ["sensor-full", *HISTORY_FULLS]


def test_request_server_stats_is_unicast() -> None:
    engine = _quiet_engine()
    asker = RecordingSubscriber("asker")
    other = RecordingSubscriber("other")

    async def scenario() -> None:
        await engine.registry.on_connect(asker)
        await engine.registry.on_connect(other)
        await asyncio.sleep(0.01)
        asker.clear()
        other.clear()
        await engine.registry.on_request_server_stats(asker)
        await engine.shutdown()

    asyncio.run(scenario())

    assert asker.events() == ["server-stats", "performance-stats", "data-stats"]
    assert asker.payloads("performance-stats")[0]["clientCount"] == 2
    assert other.messages == []


def test_failed_sensor_is_left_out_of_snapshot() -> None:
    store = FlakyStore()
    store.insert_many(Collection.readings, [reading_doc("S1", at(1)), reading_doc("S2", at(1))])
    store.failing_sensors.add("S1")
    store.failing_collections.add(Collection.settings)
    engine = _quiet_engine(store)
    viewer = RecordingSubscriber()

    async def scenario() -> None:
        await engine.registry.on_connect(viewer)
        await engine.shutdown()

    asyncio.run(scenario())

    assert _sync_events(viewer)[:3] == ["sensor-full", "alerts-full", "personality-full"]
    assert viewer.payloads("sensor-full")[0]["sensorId"] == "S2"


def test_join_during_last_leave_keeps_both_loops_running() -> None:
    gate = {}

    class GatedAdapter(StoreAdapter):
        async def recent_personality_changes(self, limit):
            release = gate.get("release")
            if release is not None:
                await release.wait()
            return await super().recent_personality_changes(limit)

    engine = _quiet_engine()
    engine.registry.adapter = GatedAdapter(engine.store)
    first = RecordingSubscriber("first")
    second = RecordingSubscriber("second")

    async def scenario() -> tuple:
        await engine.registry.on_connect(first)
        gate["release"] = asyncio.Event()
        join = asyncio.create_task(engine.registry.on_connect(second))
        await asyncio.sleep(0.01)
        leave = asyncio.create_task(engine.registry.on_disconnect(first))
        await asyncio.sleep(0)
        gate["release"].set()
        await join
        await leave
        state = (engine.registry.count, engine.scheduler.running, engine.stats.running)
        await engine.shutdown()
        return state

    assert asyncio.run(scenario()) == (1, True, True)


def test_join_waits_for_tick_in_flight() -> None:
    gate = {}

    class GatedAdapter(StoreAdapter):
        async def list_sensor_ids(self):
            await gate["release"].wait()
            return await super().list_sensor_ids()

    engine = _quiet_engine()
    engine.store.insert(Collection.readings, reading_doc("S1", at(1)))
    early = RecordingSubscriber("early")
    late = RecordingSubscriber("late")
    observed = {}

    async def scenario() -> None:
        await engine.registry.on_connect(early)
        engine.store.insert(Collection.readings, reading_doc("S1", at(2)))
        gate["release"] = asyncio.Event()
        engine.scheduler.adapter = GatedAdapter(engine.store)
        tick = asyncio.create_task(engine.scheduler.tick())
        await asyncio.sleep(0.01)
        join = asyncio.create_task(engine.registry.on_connect(late))
        await asyncio.sleep(0.01)
        observed["late_before_release"] = list(late.messages)
        gate["release"].set()
        await tick
        await join
        engine.store.insert(Collection.readings, reading_doc("S1", at(3)))
        await engine.scheduler.tick()
        await engine.shutdown()

    asyncio.run(scenario())

    assert observed["late_before_release"] == []
    assert _sync_events(late)[:4] == ["sensor-full", *HISTORY_FULLS]
    assert late.payloads("sensor-full")[0]["readings"][0]["timestamp"] == "2024-01-01T12:00:02Z"
    # Only the at(3) reading is new to the late viewer.
    late_deltas = late.payloads("sensor-delta")
    assert len(late_deltas) == 1
    assert late_deltas[0]["readings"][0]["timestamp"] == "2024-01-01T12:00:03Z"
    early_newest = [delta["readings"][0]["timestamp"] for delta in early.payloads("sensor-delta")]
    assert early_newest == ["2024-01-01T12:00:02Z", "2024-01-01T12:00:03Z"]
