"""Tests for the live tracking state machine."""

from __future__ import annotations

import asyncio

import pytest

from pace_bot.application.tracking import FollowerHub, TrackingEngine
from pace_bot.domain import geo
from pace_bot.domain.errors import ConflictError, InvalidStateError, NotFoundError
from pace_bot.domain.models import (
    ActivityType,
    EventType,
    LocationSample,
    SessionStatus,
    User,
)
from tests.fakes import FlakyActivityStore, FlakyUserStore


def _sample(clock, seconds: float, latitude: float, longitude: float = 2.0, **kwargs):
    return LocationSample(
        latitude=latitude,
        longitude=longitude,
        timestamp=clock.at(seconds),
        **kwargs,
    )


async def _start(engine, clock, owner_id: str = "u1", **kwargs):
    return await engine.start(
        owner_id, ActivityType.RUNNING, _sample(clock, 0, 41.0), **kwargs
    )


@pytest.mark.asyncio()
async def test_start_creates_active_session_with_first_sample(build_stack, clock) -> None:
    hub, engine, _ = build_stack()

    session = await _start(engine, clock)

    assert session.status is SessionStatus.ACTIVE
    assert session.start_time == clock()
    assert session.name == "Running 2024-06-01"
    assert session.body_mass_kg == 60.0
    assert session.sample_count == 1
    assert session.cumulative_distance_meters == 0.0
    assert hub.is_open(session.id)
    assert (await engine.get_active("u1")).id == session.id
    await hub.close()


@pytest.mark.asyncio()
async def test_start_uses_default_body_mass_for_unknown_weight(build_stack, clock) -> None:
    hub, engine, _ = build_stack()

    session = await _start(engine, clock, owner_id="u2", name="Lunch loop")

    assert session.name == "Lunch loop"
    assert session.body_mass_kg == geo.DEFAULT_BODY_MASS_KG
    await hub.close()


@pytest.mark.asyncio()
async def test_second_start_conflicts_and_keeps_first_session(build_stack, clock) -> None:
    hub, engine, _ = build_stack()
    first = await _start(engine, clock)

    with pytest.raises(ConflictError) as excinfo:
        await _start(engine, clock)

    assert excinfo.value.active_session_id == first.id
    assert (await engine.get_active("u1")).id == first.id
    await hub.close()


@pytest.mark.asyncio()
async def test_concurrent_starts_admit_exactly_one(build_stack, clock) -> None:
    hub, engine, _ = build_stack()

    results = await asyncio.gather(
        _start(engine, clock), _start(engine, clock), return_exceptions=True
    )

    conflicts = [r for r in results if isinstance(r, ConflictError)]
    sessions = [r for r in results if not isinstance(r, Exception)]
    assert len(conflicts) == 1
    assert len(sessions) == 1
    assert (await engine.get_active("u1")).id == sessions[0].id
    await hub.close()


@pytest.mark.asyncio()
async def test_update_one_second_later_computes_distance_and_speed(
    build_stack, clock
) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)

    snapshot = await engine.update(session.id, "u1", _sample(clock, 1, 41.0009))

    assert snapshot.distance_meters == pytest.approx(100.08, abs=0.1)
    assert snapshot.current_speed_mps == pytest.approx(100.08, abs=0.1)
    assert snapshot.average_speed_mps == pytest.approx(snapshot.distance_meters)
    assert snapshot.max_speed_mps == snapshot.current_speed_mps
    assert snapshot.elapsed_active_seconds == 1.0
    assert snapshot.sample_count == 2
    await hub.close()


@pytest.mark.asyncio()
async def test_cumulative_distance_is_sum_of_pairwise_distances(
    build_stack, clock
) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)
    route = [(41.0, 2.0), (41.001, 2.0), (41.001, 2.002), (41.0005, 2.003), (41.002, 2.001)]

    for index, (lat, lon) in enumerate(route[1:], start=1):
        snapshot = await engine.update(
            session.id, "u1", _sample(clock, index * 10, lat, lon)
        )

    expected = sum(geo.distance_meters(a, b) for a, b in zip(route, route[1:]))
    assert snapshot.distance_meters == pytest.approx(expected)
    assert snapshot.elapsed_active_seconds == 40.0
    await hub.close()


@pytest.mark.asyncio()
async def test_update_tracks_elevation_heart_rate_and_calories(
    build_stack, clock
) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)

    snapshot = await engine.update(
        session.id,
        "u1",
        _sample(clock, 10, 41.001, altitude=12.5, heart_rate=150, cadence=170),
    )

    speed = geo.distance_meters((41.0, 2.0), (41.001, 2.0)) / 10
    assert snapshot.elevation_gain_meters == 12.5
    assert snapshot.current_heart_rate == 150
    assert snapshot.current_cadence == 170
    assert snapshot.current_pace_min_per_km == pytest.approx(geo.pace_min_per_km(speed))
    assert snapshot.calories_burned == pytest.approx(
        geo.calories_increment(geo.met_value("running", speed), 60.0, 10)
    )
    await hub.close()


@pytest.mark.asyncio()
async def test_update_with_same_timestamp_reports_zero_speed(build_stack, clock) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)
    first = await engine.update(session.id, "u1", _sample(clock, 10, 41.001))

    second = await engine.update(session.id, "u1", _sample(clock, 10, 41.002))

    assert second.current_speed_mps == 0.0
    assert second.current_pace_min_per_km == 0.0
    assert second.calories_burned == first.calories_burned
    assert second.distance_meters > first.distance_meters
    assert second.max_speed_mps == first.max_speed_mps
    await hub.close()


@pytest.mark.asyncio()
async def test_pause_resume_finish_excludes_paused_time(build_stack, clock) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)

    clock.advance(10)
    paused = await engine.pause(session.id, "u1")
    clock.advance(30)
    resumed = await engine.resume(session.id, "u1")
    clock.advance(60)
    outcome = await engine.finish(session.id, "u1")

    assert paused.status is SessionStatus.PAUSED
    assert paused.paused_at == clock.at(10)
    assert resumed.paused_at is None
    assert resumed.accumulated_pause_seconds == 30.0
    assert outcome.session["status"] == "completed"
    assert outcome.session["accumulated_pause_seconds"] == 30.0
    assert outcome.session["duration_seconds"] == 70.0
    assert outcome.session["end_time"] == clock.at(100).isoformat()
    await hub.close()


@pytest.mark.asyncio()
async def test_finish_while_paused_folds_open_pause(build_stack, clock) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)

    clock.advance(10)
    await engine.pause(session.id, "u1")
    clock.advance(40)
    outcome = await engine.finish(session.id, "u1")

    assert outcome.session["accumulated_pause_seconds"] == 40.0
    assert outcome.session["duration_seconds"] == 10.0
    assert outcome.session["paused_at"] is None
    await hub.close()


@pytest.mark.asyncio()
async def test_finish_with_only_start_sample_has_zero_averages(
    build_stack, clock
) -> None:
    hub, engine, _ = build_stack()
    immediate = await _start(engine, clock)
    outcome = await engine.finish(immediate.id, "u1")

    assert outcome.session["duration_seconds"] == 0.0
    assert outcome.session["metrics"]["distance_meters"] == 0.0
    assert outcome.session["metrics"]["average_speed_mps"] == 0.0

    later = await _start(engine, clock)
    clock.advance(30)
    outcome = await engine.finish(later.id, "u1")

    assert outcome.session["duration_seconds"] == 30.0
    assert outcome.session["metrics"]["average_speed_mps"] == 0.0
    await hub.close()


@pytest.mark.asyncio()
async def test_finish_materializes_activity_and_updates_totals(
    build_stack, clock, activity_store, user_store
) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)
    await engine.update(session.id, "u1", _sample(clock, 30, 41.001))
    snapshot = await engine.update(session.id, "u1", _sample(clock, 60, 41.002))
    clock.advance(60)

    outcome = await engine.finish(session.id, "u1")

    assert outcome.materialization_error is None
    activity = await activity_store.get_activity(outcome.materialized_activity_id)
    assert activity is not None
    assert activity.source_session_id == session.id
    assert len(activity.route) == 3
    assert activity.duration_minutes == pytest.approx(1.0)
    assert activity.distance_meters == pytest.approx(snapshot.distance_meters)
    owner = await user_store.get("u1")
    assert owner.total_distance_meters == pytest.approx(snapshot.distance_meters)
    assert owner.total_time_minutes == pytest.approx(1.0)
    assert await activity_store.find_active_by_owner("u1") is None
    await hub.close()


@pytest.mark.asyncio()
async def test_materialization_failure_is_reported_not_raised(clock, transport) -> None:
    store = FlakyActivityStore()
    users = FlakyUserStore([User(id="u1", username="alice")])
    hub = FollowerHub(transport, grace_seconds=0)
    engine = TrackingEngine(store, users, hub, clock=clock)
    session = await _start(engine, clock)
    store.fail_materialize = True
    clock.advance(20)

    outcome = await engine.finish(session.id, "u1")

    assert outcome.session["status"] == "completed"
    assert outcome.materialized_activity_id is None
    assert outcome.materialization_error.stage == "activity"
    assert outcome.to_dict()["materialization_error"]["code"] == "materialization_failed"
    assert engine.get_session(session.id).status is SessionStatus.COMPLETED
    assert (await users.get("u1")).total_time_minutes == 0.0
    await hub.close()


@pytest.mark.asyncio()
async def test_user_totals_failure_keeps_materialized_activity(clock, transport) -> None:
    store = FlakyActivityStore()
    users = FlakyUserStore([User(id="u1", username="alice")])
    hub = FollowerHub(transport, grace_seconds=0)
    engine = TrackingEngine(store, users, hub, clock=clock)
    session = await _start(engine, clock)
    users.fail_totals = True

    outcome = await engine.finish(session.id, "u1")

    assert outcome.materialized_activity_id is not None
    assert outcome.materialization_error.stage == "user_totals"
    assert await store.get_activity(outcome.materialized_activity_id) is not None
    await hub.close()


@pytest.mark.asyncio()
async def test_store_failure_leaves_session_unchanged(clock, transport) -> None:
    store = FlakyActivityStore()
    users = FlakyUserStore([User(id="u1", username="alice")])
    hub = FollowerHub(transport, grace_seconds=0)
    engine = TrackingEngine(store, users, hub, clock=clock)
    session = await _start(engine, clock)
    await hub.join(session.id, "c1", "u2")
    store.fail_writes = True

    with pytest.raises(RuntimeError):
        await engine.update(session.id, "u1", _sample(clock, 5, 41.001))
    with pytest.raises(RuntimeError):
        await engine.pause(session.id, "u1")

    current = engine.get_session(session.id)
    assert current.status is SessionStatus.ACTIVE
    assert current.sample_count == 1
    assert current.cumulative_distance_meters == 0.0
    await hub.flush(session.id)
    assert transport.for_connection("c1") == []

    store.fail_writes = False
    snapshot = await engine.update(session.id, "u1", _sample(clock, 5, 41.001))
    assert snapshot.sample_count == 2
    await hub.close()


@pytest.mark.asyncio()
async def test_failed_start_does_not_register_session(clock, transport) -> None:
    store = FlakyActivityStore()
    users = FlakyUserStore([User(id="u1", username="alice")])
    hub = FollowerHub(transport, grace_seconds=0)
    engine = TrackingEngine(store, users, hub, clock=clock)
    store.fail_writes = True

    with pytest.raises(RuntimeError):
        await _start(engine, clock)

    with pytest.raises(NotFoundError):
        await engine.get_active("u1")
    await hub.close()


@pytest.mark.asyncio()
async def test_illegal_transitions_raise_invalid_state(build_stack, clock) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)

    with pytest.raises(InvalidStateError):
        await engine.resume(session.id, "u1")

    await engine.pause(session.id, "u1")
    with pytest.raises(InvalidStateError):
        await engine.pause(session.id, "u1")
    with pytest.raises(InvalidStateError) as excinfo:
        await engine.update(session.id, "u1", _sample(clock, 5, 41.001))
    assert excinfo.value.status == "paused"
    await hub.close()


@pytest.mark.asyncio()
@pytest.mark.parametrize("terminal", ["finish", "cancel"])
async def test_terminal_sessions_reject_every_transition(
    build_stack, clock, terminal
) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)
    await getattr(engine, terminal)(session.id, "u1")
    expected_status = "completed" if terminal == "finish" else "cancelled"

    for action in ("pause", "resume", "finish", "cancel"):
        with pytest.raises(InvalidStateError) as excinfo:
            await getattr(engine, action)(session.id, "u1")
        assert excinfo.value.status == expected_status
    with pytest.raises(InvalidStateError):
        await engine.update(session.id, "u1", _sample(clock, 5, 41.001))
    with pytest.raises(NotFoundError):
        await engine.get_active("u1")
    await hub.close()


@pytest.mark.asyncio()
async def test_unknown_or_foreign_session_is_not_found(build_stack, clock) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)

    with pytest.raises(NotFoundError):
        await engine.update("missing", "u1", _sample(clock, 5, 41.001))
    with pytest.raises(NotFoundError):
        await engine.update(session.id, "u2", _sample(clock, 5, 41.001))
    with pytest.raises(NotFoundError):
        await engine.finish(session.id, "u2")
    with pytest.raises(NotFoundError):
        await engine.get_active("u2")
    await hub.close()


@pytest.mark.asyncio()
async def test_cancel_discards_session_and_allows_new_start(
    build_stack, clock, activity_store
) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)
    await engine.update(session.id, "u1", _sample(clock, 5, 41.001))
    clock.advance(10)

    cancelled = await engine.cancel(session.id, "u1")

    assert cancelled.status is SessionStatus.CANCELLED
    assert cancelled.end_time == clock.at(10)
    assert activity_store.samples_of(session.id) == []
    assert await activity_store.find_active_by_owner("u1") is None
    assert not hub.is_open(session.id)

    replacement = await _start(engine, clock)
    assert replacement.id != session.id
    await hub.close()


@pytest.mark.asyncio()
async def test_followers_receive_lifecycle_events_in_order(
    build_stack, clock, transport
) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)
    await hub.join(session.id, "c1", "u2")

    await engine.update(session.id, "u1", _sample(clock, 5, 41.0005))
    clock.advance(10)
    await engine.pause(session.id, "u1")
    clock.advance(5)
    await engine.resume(session.id, "u1")
    clock.advance(5)
    await engine.finish(session.id, "u1")
    await hub.flush(session.id)

    assert transport.types_for("c1") == [
        EventType.LOCATION_UPDATE,
        EventType.ACTIVITY_PAUSED,
        EventType.ACTIVITY_MESSAGE,
        EventType.ACTIVITY_RESUMED,
        EventType.ACTIVITY_MESSAGE,
        EventType.ACTIVITY_FINISHED,
        EventType.ACTIVITY_MESSAGE,
    ]
    messages = [
        m.payload for m in transport.for_connection("c1")
        if m.type is EventType.ACTIVITY_MESSAGE
    ]
    assert all(m["sender_id"] == "system" for m in messages)
    assert messages[0]["message"] == "Running 2024-06-01 has been paused."
    assert messages[2]["message"].startswith(
        "Running 2024-06-01 has finished. Total distance: 0.06 km, time: 0m 15s"
    )
    update = transport.for_connection("c1")[0]
    assert update.payload["sample"]["latitude"] == 41.0005
    assert update.payload["metrics"]["sample_count"] == 2
    await hub.close()


@pytest.mark.asyncio()
async def test_milestone_event_published_after_location_update(
    build_stack, clock, transport
) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)
    await hub.join(session.id, "c1", "u2")

    # About 1005 m due north.
    await engine.update(session.id, "u1", _sample(clock, 300, 41.00904))
    await hub.flush(session.id)

    assert transport.types_for("c1") == [
        EventType.LOCATION_UPDATE,
        EventType.MILESTONE_REACHED,
    ]
    payload = transport.for_connection("c1")[1].payload
    assert payload["user_id"] == "u1"
    assert payload["milestone"]["kind"] == "distance"
    assert payload["milestone"]["value"] == 1
    await hub.close()


@pytest.mark.asyncio()
async def test_late_sample_does_not_repeat_duration_milestone(
    build_stack, clock, transport
) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)
    await hub.join(session.id, "c9", "u2")

    await engine.update(session.id, "u1", _sample(clock, 605, 41.0))
    late = await engine.update(session.id, "u1", _sample(clock, 590, 41.0))
    await engine.update(session.id, "u1", _sample(clock, 610, 41.0))
    await hub.flush(session.id)

    assert late.elapsed_active_seconds == 605.0
    assert late.current_speed_mps == 0.0
    milestones = [
        m.payload["milestone"]
        for m in transport.for_connection("c9")
        if m.type is EventType.MILESTONE_REACHED
    ]
    assert [(m["kind"], m["value"]) for m in milestones] == [("duration", 10)]
    assert engine.get_session(session.id).elapsed_active_seconds == 610.0
    await hub.close()


@pytest.mark.asyncio()
async def test_start_subscribes_owner_connection_before_started_event(
    build_stack, clock, transport
) -> None:
    hub, engine, _ = build_stack()

    session = await _start(engine, clock, connection_id="owner-chat")
    await hub.flush(session.id)

    assert transport.types_for("owner-chat") == [EventType.ACTIVITY_STARTED]
    assert transport.for_connection("owner-chat")[0].payload["id"] == session.id
    assert hub.is_subscribed(session.id, "u1")
    await hub.close()


@pytest.mark.asyncio()
async def test_retained_samples_are_bounded_but_store_keeps_route(
    build_stack, clock, activity_store
) -> None:
    hub, engine, _ = build_stack()
    session = await _start(engine, clock)

    for step in range(1, 61):
        await engine.update(
            session.id, "u1", _sample(clock, step, 41.0 + step * 0.00001)
        )

    live = engine.get_session(session.id)
    assert live.sample_count == 61
    assert len(live.samples) == 50
    assert live.samples[-1].latitude == pytest.approx(41.0006)
    assert len(activity_store.samples_of(session.id)) == 61
    await hub.close()


@pytest.mark.asyncio()
async def test_new_engine_adopts_live_session_from_store(
    clock, transport, activity_store, user_store
) -> None:
    hub = FollowerHub(transport, grace_seconds=0)
    engine = TrackingEngine(activity_store, user_store, hub, clock=clock)
    session = await _start(engine, clock)
    first = await engine.update(session.id, "u1", _sample(clock, 10, 41.001))
    await hub.close()

    restarted_hub = FollowerHub(transport, grace_seconds=0)
    restarted = TrackingEngine(activity_store, user_store, restarted_hub, clock=clock)

    restored = await restarted.get_active("u1")
    assert restored.id == session.id
    assert restarted_hub.is_open(session.id)
    with pytest.raises(ConflictError):
        await _start(restarted, clock)

    second = await restarted.update(session.id, "u1", _sample(clock, 20, 41.002))
    assert second.distance_meters == pytest.approx(2 * first.distance_meters, rel=1e-3)
    assert second.sample_count == 3
    await restarted_hub.close()
