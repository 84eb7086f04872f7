"""두 참가자 종단 간 시나리오 테스트.

실제 SignalRelay에 루프백 WebSocket으로 연결된 MeshSession 두 개가
입장, 협상, 채팅, 비정상 종료까지 진행하는 흐름을 검증합니다.

사용법:
    pytest test/test_scenario.py
"""

import asyncio

import pytest
from conftest import LoopbackConnector, settle

from meshroom.modules.shared import MediaDeviceUnavailable
from meshroom.modules.webrtc import LinkRole, LinkState, LocalMediaSession, MeshSession, SyntheticCaptureProvider


def make_session(relay, ids, network, surface):
    connector = LoopbackConnector(relay, ids)
    session = MeshSession(
        "ws://relay.test/ws",
        media=LocalMediaSession(SyntheticCaptureProvider()),
        surface=surface,
        ice_servers=[],
        pc_factory=network.factory,
        connect=connector,
    )
    return session, connector


async def test_alice_and_bob(relay, network, surface):
    alice, alice_conn = make_session(relay, ["A1"], network, surface)
    bob, bob_conn = make_session(relay, ["B1"], network, surface)

    await alice.join("R1", "Alice")
    await alice.wait_joined(timeout=1)
    alice_ws = alice_conn.sockets[0]
    assert alice_ws.events("joined-room") == [{"you": "A1", "peers": [], "names": {}}]

    await bob.join("R1", "Bob")
    await bob.wait_joined(timeout=1)
    await settle(alice.manager, bob.manager)
    bob_ws = bob_conn.sockets[0]

    assert bob_ws.events("joined-room") == [{"you": "B1", "peers": ["A1"], "names": {"A1": "Alice"}}]
    assert alice_ws.events("peer-joined") == [{"id": "B1", "userName": "Bob"}]

    a_link = alice.manager.links["B1"]
    b_link = bob.manager.links["A1"]
    assert b_link.role == LinkRole.INITIATOR
    assert a_link.role == LinkRole.RESPONDER
    assert a_link.state == LinkState.CONNECTED
    assert b_link.state == LinkState.CONNECTED
    assert [s["payload"]["type"] for s in alice_ws.events("signal")] == ["offer"]
    assert [s["from"] for s in bob_ws.events("signal")] == ["A1"]

    assert alice.send_chat("hi") == 1
    assert "[A1] hi" in bob.chat_log.lines
    assert "[me] hi" in alice.chat_log.lines

    bob_ws.abort()
    await settle(alice.manager)

    assert alice_ws.events("peer-left") == [{"id": "B1"}]
    assert a_link.state == LinkState.CLOSED
    assert "B1" not in alice.manager.links
    assert "B1" in surface.detached

    await alice.leave()
    await bob.manager.leave()


async def test_concurrent_joins_produce_one_link_per_pair(relay, network, surface):
    sessions = []
    for participant_id in ("A1", "B1", "C1"):
        session, _ = make_session(relay, [participant_id], network, surface)
        sessions.append(session)

    for session, name in zip(sessions, ("Alice", "Bob", "Carol")):
        await session.join("R1", name)
    await settle(*(s.manager for s in sessions))

    for session in sessions:
        assert len(session.manager.links) == 2
        assert all(link.state == LinkState.CONNECTED for link in session.manager.links.values())
    # one peer connection per side per pair
    assert len(network.created) == 6

    for session in sessions:
        await session.leave()


async def test_leave_then_rejoin_starts_clean(relay, network, surface):
    alice, _ = make_session(relay, ["A1", "A2"], network, surface)
    bob, _ = make_session(relay, ["B1"], network, surface)
    await alice.join("R1", "Alice")
    await bob.join("R1", "Bob")
    await settle(alice.manager, bob.manager)
    old_link = alice.manager.links["B1"]

    await alice.leave()
    await settle(bob.manager)

    assert alice.manager.links == {}
    assert alice.media.started is False
    assert bob.manager.links == {}
    assert old_link.state == LinkState.CLOSED

    await alice.join("R1", "Alice")
    await settle(alice.manager, bob.manager)

    assert list(alice.manager.links) == ["B1"]
    assert alice.manager.links["B1"] is not old_link
    assert alice.manager.links["B1"].state == LinkState.CONNECTED
    assert bob.manager.links["A2"].state == LinkState.CONNECTED

    await alice.leave()
    await bob.leave()


async def test_media_failure_aborts_before_signaling(relay, network, surface):
    class BrokenCamera:
        async def open(self):
            raise MediaDeviceUnavailable("camera busy")

    connector = LoopbackConnector(relay, ["A1"])
    session = MeshSession(
        media=LocalMediaSession(BrokenCamera()),
        pc_factory=network.factory,
        connect=connector,
    )

    with pytest.raises(MediaDeviceUnavailable):
        await session.join("R1", "Alice")

    assert connector.sockets == []
    assert relay.registry.rooms == {}


async def test_second_room_error_is_reported(relay, network, surface):
    alice, alice_conn = make_session(relay, ["A1"], network, surface)
    await alice.join("R1", "Alice")
    await alice.wait_joined(timeout=1)

    await alice.send_signal("A1", {"type": "ice", "candidate": None})
    await alice._send({"type": "join-room", "data": {"room": "R2", "userName": "Alice"}})
    await settle(alice.manager)

    assert len(alice.errors) == 2
    assert relay.registry.get_participant_rooms("A1") == {"R1"}

    await alice.leave()


async def test_connect_failure_stops_local_media(network):
    async def refuse(url):
        raise OSError("connection refused")

    media = LocalMediaSession(SyntheticCaptureProvider())
    session = MeshSession(media=media, pc_factory=network.factory, connect=refuse)

    with pytest.raises(OSError):
        await session.join("R1", "Alice")

    assert media.started is False
    assert session.connected is False
    assert session.room is None


async def test_mute_and_camera_off_reach_every_link(relay, network, surface):
    alice, _ = make_session(relay, ["A1"], network, surface)
    bob, _ = make_session(relay, ["B1"], network, surface)
    carol, _ = make_session(relay, ["C1"], network, surface)
    for session, name in ((alice, "Alice"), (bob, "Bob"), (carol, "Carol")):
        await session.join("R1", name)
    await settle(alice.manager, bob.manager, carol.manager)
    pcs_before = len(network.created)

    alice.set_audio_enabled(False)
    alice.set_video_enabled(False)

    alice_pcs = [link.pc for link in alice.manager.links.values()]
    assert len(alice_pcs) == 2
    for pc in alice_pcs:
        assert all(not track.is_enabled() for track in pc.tracks)
    assert len(network.created) == pcs_before

    alice.set_audio_enabled(True)
    assert all(
        track.is_enabled() for pc in alice_pcs for track in pc.tracks if track.kind == "audio"
    )

    for session in (alice, bob, carol):
        await session.leave()


async def test_peer_left_does_not_stall_signal_handling(relay, network, surface):
    carol, _ = make_session(relay, ["C1"], network, surface)
    await carol.join("R1", "Carol")
    await carol.wait_joined(timeout=1)
    carol.manager.on_peer_joined("A1", "Alice")
    await settle(carol.manager)
    leaving_pc = carol.manager.links["A1"].pc
    release = asyncio.Event()
    original_close = leaving_pc.close

    async def slow_close():
        await release.wait()
        await original_close()

    leaving_pc.close = slow_close

    await asyncio.wait_for(carol.handle_event({"type": "peer-left", "data": {"id": "A1"}}), timeout=0.5)
    await asyncio.wait_for(carol.handle_event({
        "type": "signal",
        "data": {"to": "C1", "from": "B2", "payload": {"type": "offer", "sdp": {"type": "offer", "sdp": "offer:remote"}}},
    }), timeout=0.5)
    await settle(carol.manager.links["B2"])

    assert "A1" not in carol.manager.links
    assert carol.manager.links["B2"].state == LinkState.CONNECTED
    assert leaving_pc.closed is False

    release.set()
    await carol.leave()
    assert leaving_pc.closed is True
