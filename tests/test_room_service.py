"""Tests for the room lifecycle, messages and presence over Redis alone."""

import json
import re
from datetime import timedelta

import pytest
import redis

from errors import AllocationError, GoneError, NotFoundError, RoomFullError, ValidationError
from redis_keys import REDIS_MESSAGES_KEY, REDIS_ONLINE_KEY
from room_service import generate_room_code

CODE_RE = re.compile(r"^[A-Z0-9]{3}-[A-Z0-9]{3}$")


def test_generate_room_code_format():
    for _ in range(200):
        assert CODE_RE.match(generate_room_code())


@pytest.mark.parametrize("duration,count", [(1, 2), (30, 5), (1440, 50)])
def test_create_room(service, clock, duration, count):
    created = service.create_room("  Alice ", duration, count)

    assert CODE_RE.match(created.code)
    expected = clock() + timedelta(minutes=duration)
    assert abs((created.expires_at - expected).total_seconds()) < 1

    room = service.get_room(created.code)
    assert room.creator == "Alice"
    assert room.participants == ["Alice"]
    assert room.participants_count == count
    assert room.duration == duration
    assert service.is_user_online(created.code, "Alice")
    assert 0 < service.cache.get_ttl(created.code) <= duration * 60


def test_create_room_defaults_to_five_participants(service):
    created = service.create_room("Alice", 10)
    assert service.get_room(created.code).participants_count == 5


@pytest.mark.parametrize("name,duration,count", [
    ("", 10, 5),
    ("x" * 51, 10, 5),
    ("Alice", 0, 5),
    ("Alice", 1441, 5),
    ("Alice", 10, 1),
    ("Alice", 10, 51),
])
def test_create_room_validation(service, name, duration, count):
    with pytest.raises(ValidationError):
        service.create_room(name, duration, count)


def test_create_room_retries_on_collision(service, mocker):
    taken = service.create_room("Alice", 10).code
    mocker.patch("room_service.generate_room_code", side_effect=[taken, taken, "NEW-001"])

    assert service.create_room("Bob", 10).code == "NEW-001"


def test_create_room_gives_up_after_ten_attempts(service, mocker):
    taken = service.create_room("Alice", 10).code
    generator = mocker.patch("room_service.generate_room_code", return_value=taken)

    with pytest.raises(AllocationError, match="unique room code"):
        service.create_room("Bob", 10)
    assert generator.call_count == 10


def test_join_room_appends_participant(service):
    code = service.create_room("Alice", 10, 3).code

    room = service.join_room(code, " Bob ")

    assert room.participants == ["Alice", "Bob"]
    assert service.get_room(code).participants == ["Alice", "Bob"]
    assert service.get_online_users(code) == ["Alice", "Bob"]


def test_join_room_is_idempotent_case_insensitive(service):
    code = service.create_room("Alice", 10, 2).code
    service.join_room(code, "Bob")

    # Room is full now, but known names may come back
    room = service.join_room(code, "bob")
    room = service.join_room(code, "ALICE")

    assert room.participants == ["Alice", "Bob"]


def test_rejoin_with_other_casing_keeps_listed_name_online(service):
    code = service.create_room("Alice", 10, 3).code
    service.join_room(code, "Bob")
    service.leave_room(code, "Bob")

    service.join_room(code, "bob")

    assert service.get_online_users(code) == ["Alice", "Bob"]
    assert service.is_user_online(code, "Bob")
    assert service.get_room(code).participants == ["Alice", "Bob"]


def test_join_room_capacity(service):
    code = service.create_room("Alice", 10, 3).code
    service.join_room(code, "Bob")
    service.join_room(code, "Carol")

    with pytest.raises(RoomFullError, match="Room is full"):
        service.join_room(code, "Dave")
    assert service.get_room(code).participants == ["Alice", "Bob", "Carol"]


def test_join_unknown_room(service):
    with pytest.raises(NotFoundError):
        service.join_room("ZZZ-999", "Bob")


def test_join_rejects_bad_code_format(service):
    with pytest.raises(ValidationError, match="Invalid room code format"):
        service.join_room("zzz999", "Bob")


def test_join_room_gone_when_ttl_lapses(service, mocker):
    code = service.create_room("Alice", 10).code
    mocker.patch.object(service.cache, "get_ttl", return_value=0)

    with pytest.raises(GoneError):
        service.join_room(code, "Bob")


def test_join_keeps_ttls_in_sync(service, redis_client):
    code = service.create_room("Alice", 10).code
    service.add_message(code, "Alice", "hello")
    redis_client.expire(REDIS_MESSAGES_KEY.format(code=code), 5)

    service.join_room(code, "Bob")

    room_ttl = service.cache.get_ttl(code)
    assert abs(redis_client.ttl(REDIS_MESSAGES_KEY.format(code=code)) - room_ttl) <= 1
    assert abs(redis_client.ttl(REDIS_ONLINE_KEY.format(code=code)) - room_ttl) <= 1


def test_leave_room_only_touches_presence(service):
    code = service.create_room("Alice", 10).code
    service.join_room(code, "Bob")

    assert service.leave_room(code, "Bob") is True
    assert not service.is_user_online(code, "Bob")
    assert service.get_room(code).participants == ["Alice", "Bob"]

    # Nothing left to remove is still a success
    assert service.leave_room(code, "Bob") is True


def test_leave_room_swallows_store_errors(service, mocker):
    mocker.patch.object(service.cache, "remove_online_user", side_effect=redis.ConnectionError("down"))
    assert service.leave_room("ABC-123", "Bob") is False


def test_get_room_info(service):
    code = service.create_room("Alice", 10).code
    service.join_room(code, "Bob")
    service.leave_room(code, "Alice")
    service.add_message(code, "Bob", "one")
    service.add_message(code, "Bob", "two")

    info = service.get_room_info(code)

    assert info.code == code
    assert info.participants == ["Alice", "Bob"]
    assert info.online_users == ["Bob"]
    assert info.message_count == 2
    assert 0 < info.remaining_seconds <= 600


def test_get_room_info_missing(service):
    assert service.get_room_info("ZZZ-999") is None


def test_extend_room_time(service, redis_client, clock):
    code = service.create_room("Alice", 10).code
    service.add_message(code, "Alice", "hi")
    before = service.cache.get_ttl(code)

    result = service.extend_room_time(code, 15)

    assert result.success
    after = service.cache.get_ttl(code)
    assert after >= before + 15 * 60 - 1
    assert abs((result.new_expires_at - (clock() + timedelta(seconds=after))).total_seconds()) <= 1
    assert redis_client.ttl(REDIS_MESSAGES_KEY.format(code=code)) >= after - 1
    assert redis_client.ttl(REDIS_ONLINE_KEY.format(code=code)) >= after - 1
    room = service.get_room(code)
    assert room.duration == 25
    assert room.expires_at == result.new_expires_at


def test_extend_room_time_total_ceiling(service):
    code = service.create_room("Alice", 1430).code
    with pytest.raises(ValidationError, match="1440 minutes in total"):
        service.extend_room_time(code, 20)


def test_extend_room_time_without_ceiling(service):
    service.max_total_minutes = 0
    code = service.create_room("Alice", 1430).code

    assert service.extend_room_time(code, 20).success
    assert service.get_room(code).duration == 1450


def test_extend_missing_room(service):
    with pytest.raises(NotFoundError):
        service.extend_room_time("ZZZ-999", 5)


def test_message_round_trip(service):
    code = service.create_room("Alice", 10).code

    sent = service.add_message(code, "Alice", "  hello world ")
    [fetched] = service.get_messages(code, 1)

    assert fetched.user == "Alice"
    assert fetched.message == "hello world"
    assert fetched.id == sent.id


def test_message_ids_are_unique(service):
    code = service.create_room("Alice", 10).code
    ids = {service.add_message(code, "Alice", f"m{i}").id for i in range(20)}
    assert len(ids) == 20


def test_message_window_keeps_last_hundred(service):
    code = service.create_room("Alice", 10).code
    for i in range(150):
        service.add_message(code, "Alice", f"message {i}")

    messages = service.get_messages(code, 100)

    assert [m.message for m in messages] == [f"message {i}" for i in range(50, 150)]
    assert service.count_messages(code) == 100


def test_get_messages_default_limit(service):
    code = service.create_room("Alice", 10).code
    for i in range(60):
        service.add_message(code, "Alice", f"message {i}")

    messages = service.get_messages(code)

    assert len(messages) == 50
    assert messages[-1].message == "message 59"


def test_add_message_to_missing_room(service):
    assert service.add_message("ZZZ-999", "Bob", "hello") is None


def test_add_message_validation(service):
    code = service.create_room("Alice", 10).code
    with pytest.raises(ValidationError, match="cannot be empty"):
        service.add_message(code, "Alice", "   ")
    with pytest.raises(ValidationError, match="too long"):
        service.add_message(code, "Alice", "x" * 1001)


def test_send_message_broadcasts(service, redis_client):
    code = service.create_room("Alice", 10).code
    pubsub = redis_client.pubsub()
    pubsub.subscribe(f"chat-{code}")
    pubsub.get_message(timeout=1)  # subscribe confirmation

    message = service.send_message(code, "Alice", "hello")

    received = pubsub.get_message(timeout=1)
    payload = json.loads(received["data"])
    assert payload["event"] == "incoming-message"
    assert payload["data"]["id"] == message.id
    assert payload["data"]["message"] == "hello"


def test_send_message_survives_broadcast_failure(service, mocker):
    code = service.create_room("Alice", 10).code
    mocker.patch.object(service.notifier, "publish", side_effect=redis.ConnectionError("down"))

    message = service.send_message(code, "Alice", "hello")

    assert message is not None
    assert service.get_messages(code, 1)[0].id == message.id


def test_expired_room_is_gone(service, clock):
    code = service.create_room("Alice", 1).code
    clock.advance(61)

    assert not service.room_exists(code)
    assert service.get_room(code) is None
    assert service.send_message(code, "Alice", "anyone?") is None
    with pytest.raises(NotFoundError):
        service.join_room(code, "Bob")


def test_end_to_end_scenario(service, clock):
    code = service.create_room("Alice", 1, 2).code

    service.join_room(code, "Alice")
    service.join_room(code, "Bob")
    with pytest.raises(RoomFullError):
        service.join_room(code, "Carol")

    service.send_message(code, "Bob", "hi all")
    [latest] = service.get_messages(code, 1)
    assert latest.user == "Bob"
    assert latest.message == "hi all"

    clock.advance(61)
    assert service.room_exists(code) is False
    assert service.send_message(code, "Bob", "still here?") is None
