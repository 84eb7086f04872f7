"""SignalRelay 테스트.

사용법:
    pytest test/test_relay.py
"""

from conftest import drain

from meshroom.modules.rooms import RoomRegistry, SignalRelay


def join(relay, participant_id, room, name):
    relay.dispatch(participant_id, {"type": "join-room", "data": {"room": room, "userName": name}})


def test_connect_announces_assigned_id(relay):
    participant = relay.connect(participant_id="A1")
    assert drain(participant) == [{"type": "connected", "data": {"id": "A1"}}]


def test_connect_generates_id(relay):
    participant = relay.connect()
    assert participant.participant_id
    assert drain(participant)[0]["data"]["id"] == participant.participant_id


def test_join_replies_and_fans_out(relay):
    alice = relay.connect(participant_id="A1")
    bob = relay.connect(participant_id="B1")
    drain(alice), drain(bob)

    join(relay, "A1", "R1", "Alice")
    assert drain(alice) == [{"type": "joined-room", "data": {"you": "A1", "peers": [], "names": {}}}]

    join(relay, "B1", "R1", "Bob")
    assert drain(bob) == [
        {"type": "joined-room", "data": {"you": "B1", "peers": ["A1"], "names": {"A1": "Alice"}}}
    ]
    assert drain(alice) == [{"type": "peer-joined", "data": {"id": "B1", "userName": "Bob"}}]


def test_joined_room_precedes_later_peer_joined(relay):
    alice = relay.connect(participant_id="A1")
    bob = relay.connect(participant_id="B1")
    relay.connect(participant_id="C1")

    join(relay, "A1", "R1", "Alice")
    join(relay, "B1", "R1", "Bob")
    join(relay, "C1", "R1", "Carol")

    types = [m["type"] for m in drain(bob)]
    assert types == ["connected", "joined-room", "peer-joined"]
    assert [m["type"] for m in drain(alice)] == ["connected", "joined-room", "peer-joined", "peer-joined"]


def test_rejoin_does_not_fan_out_again(relay):
    alice = relay.connect(participant_id="A1")
    bob = relay.connect(participant_id="B1")
    join(relay, "A1", "R1", "Alice")
    join(relay, "B1", "R1", "Bob")
    drain(alice), drain(bob)

    join(relay, "B1", "R1", "Bob")

    assert drain(alice) == []
    assert drain(bob)[0]["data"]["peers"] == ["A1"]


def test_signal_is_stamped_with_verified_sender(relay):
    alice = relay.connect(participant_id="A1")
    bob = relay.connect(participant_id="B1")
    drain(alice), drain(bob)
    payload = {"type": "offer", "sdp": {"type": "offer", "sdp": "v=0"}, "extra": [1, 2]}

    relay.dispatch("B1", {"type": "signal", "data": {"to": "A1", "from": "Z9", "payload": payload}})

    assert drain(alice) == [{"type": "signal", "data": {"to": "A1", "from": "B1", "payload": payload}}]
    assert drain(bob) == []


def test_signal_to_departed_participant_is_dropped_silently(relay):
    bob = relay.connect(participant_id="B1")
    drain(bob)

    relay.dispatch("B1", {"type": "signal", "data": {"to": "gone", "payload": {"type": "ice"}}})

    assert drain(bob) == []


def test_signal_to_self_is_rejected(relay):
    bob = relay.connect(participant_id="B1")
    drain(bob)

    relay.dispatch("B1", {"type": "signal", "data": {"to": "B1", "payload": {}}})

    assert [m["type"] for m in drain(bob)] == ["error"]


def test_malformed_messages_are_rejected_without_state_change(relay, registry):
    bob = relay.connect(participant_id="B1")
    drain(bob)

    for message in (
        "join-room",
        {"data": {"room": "R1"}},
        {"type": "dance", "data": {}},
        {"type": "join-room", "data": {}},
        {"type": "join-room", "data": {"room": ""}},
        {"type": "join-room", "data": "R1"},
        {"type": "signal", "data": {"to": "A1"}},
        {"type": "signal", "data": {"to": "A1", "payload": "not-an-object"}},
    ):
        relay.dispatch("B1", message)

    errors = drain(bob)
    assert len(errors) == 8
    assert all(m["type"] == "error" and m["data"]["message"] for m in errors)
    assert registry.rooms == {}


def test_leave_notifies_remaining_members(relay):
    alice = relay.connect(participant_id="A1")
    bob = relay.connect(participant_id="B1")
    join(relay, "A1", "R1", "Alice")
    join(relay, "B1", "R1", "Bob")
    drain(alice), drain(bob)

    relay.dispatch("B1", {"type": "leave-room", "data": {"room": "R1"}})
    relay.dispatch("B1", {"type": "leave-room", "data": {"room": "R1"}})

    assert drain(alice) == [{"type": "peer-left", "data": {"id": "B1"}}]
    assert drain(bob) == []


def test_disconnect_without_leave_notifies_members(relay, registry):
    alice = relay.connect(participant_id="A1")
    relay.connect(participant_id="B1")
    join(relay, "A1", "R1", "Alice")
    join(relay, "B1", "R1", "Bob")
    drain(alice)

    relay.on_disconnect("B1")

    assert drain(alice) == [{"type": "peer-left", "data": {"id": "B1"}}]
    assert registry.get_participant("B1") is None
    assert registry.members("R1") == ["A1"]


def test_second_room_join_is_rejected(relay, registry):
    alice = relay.connect(participant_id="A1")
    join(relay, "A1", "R1", "Alice")
    drain(alice)

    join(relay, "A1", "R2", "Alice")

    assert [m["type"] for m in drain(alice)] == ["error"]
    assert registry.get_participant_rooms("A1") == {"R1"}


def test_switch_policy_announces_departure_from_previous_room():
    relay = SignalRelay(RoomRegistry(switch_policy="switch"))
    alice = relay.connect(participant_id="A1")
    bob = relay.connect(participant_id="B1")
    join(relay, "A1", "R1", "Alice")
    join(relay, "B1", "R1", "Bob")
    drain(alice), drain(bob)

    join(relay, "A1", "R2", "Alice")

    assert drain(bob) == [{"type": "peer-left", "data": {"id": "A1"}}]
    assert drain(alice) == [{"type": "joined-room", "data": {"you": "A1", "peers": [], "names": {}}}]


def test_close_all_disconnects_everyone(relay, registry):
    relay.connect(participant_id="A1")
    relay.connect(participant_id="B1")
    join(relay, "A1", "R1", "Alice")
    join(relay, "B1", "R1", "Bob")

    relay.close_all()

    assert registry.participants == {}
    assert registry.rooms == {}
