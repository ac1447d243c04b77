"""Tests for the expiry sweeper."""

import asyncio
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from database import MessageRecord, RoomRecord
from sweeper import ExpirySweeper, SweepResult, cleanup_expired_rooms, mark_inactive_rooms


def _make_rooms(dual_service, clock):
    short = dual_service.create_room("Alice", 1).code
    dual_service.add_message(short, "Alice", "bye soon")
    long = dual_service.create_room("Bob", 60).code
    return short, long


def test_cleanup_deletes_only_expired_rooms(dual_service, durable, clock):
    short, long = _make_rooms(dual_service, clock)

    result = cleanup_expired_rooms(durable, clock() + timedelta(minutes=2))

    assert result.deleted_count == 1
    assert result.errors == []
    assert not durable.room_exists(short)
    assert durable.room_exists(long)
    with Session(durable.engine) as session:
        assert list(session.scalars(select(MessageRecord).where(MessageRecord.room_code == short))) == []


def test_cleanup_is_idempotent(dual_service, durable, clock):
    _make_rooms(dual_service, clock)
    later = clock() + timedelta(minutes=2)

    assert cleanup_expired_rooms(durable, later).deleted_count == 1
    second = cleanup_expired_rooms(durable, later)
    assert second.deleted_count == 0
    assert second.errors == []


def test_cleanup_nothing_expired(dual_service, durable, clock):
    _make_rooms(dual_service, clock)
    assert cleanup_expired_rooms(durable, clock()).deleted_count == 0


def test_cleanup_collects_per_room_errors(dual_service, durable, clock, mocker):
    first = dual_service.create_room("Alice", 1).code
    second = dual_service.create_room("Bob", 1).code
    real_delete = durable.delete_room

    def flaky_delete(code):
        if code == first:
            raise OperationalError("DELETE", {}, Exception("locked"))
        return real_delete(code)

    mocker.patch.object(durable, "delete_room", side_effect=flaky_delete)

    result = cleanup_expired_rooms(durable, clock() + timedelta(minutes=2))

    assert result.deleted_count == 1
    assert len(result.errors) == 1
    assert first in result.errors[0]
    assert durable.room_exists(first)
    assert not durable.room_exists(second)


def test_cleanup_reports_query_failure(durable, mocker):
    mocker.patch.object(durable, "expired_room_codes", side_effect=OperationalError("SELECT", {}, Exception("down")))

    result = cleanup_expired_rooms(durable)

    assert result.deleted_count == 0
    assert result.errors and "Error during cleanup" in result.errors[0]


def test_mark_inactive_rooms(dual_service, durable, clock):
    short, long = _make_rooms(dual_service, clock)
    later = clock() + timedelta(minutes=2)

    assert mark_inactive_rooms(durable, later) == 1
    assert mark_inactive_rooms(durable, later) == 0
    with Session(durable.engine) as session:
        flags = dict(session.execute(select(RoomRecord.code, RoomRecord.is_active)).all())
    assert flags == {short: False, long: True}


def test_expiry_sweeper_run_once(dual_service, durable, clock):
    _make_rooms(dual_service, clock)
    clock.advance(120)
    sweeper = ExpirySweeper(durable, interval_seconds=3600, clock=clock)

    result = asyncio.run(sweeper.run_once())

    assert result.deleted_count == 1


def test_expiry_sweeper_loop_start_stop(durable, mocker):
    sweeper = ExpirySweeper(durable, interval_seconds=0)
    run_once = mocker.patch.object(sweeper, "run_once", new=mocker.AsyncMock(return_value=SweepResult()))

    async def scenario():
        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

    asyncio.run(scenario())

    assert run_once.await_count >= 1
    assert sweeper._task is None


def test_expiry_sweeper_survives_failed_run(durable, mocker):
    sweeper = ExpirySweeper(durable, interval_seconds=0)
    run_once = mocker.patch.object(sweeper, "run_once", new=mocker.AsyncMock(side_effect=RuntimeError("boom")))

    async def scenario():
        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

    asyncio.run(scenario())

    assert run_once.await_count >= 2
