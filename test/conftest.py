"""테스트 공용 fixture와 가짜 객체.

실제 ICE/DTLS 없이 협상 흐름을 검증하기 위해 aiortc RTCPeerConnection과
같은 이벤트 인터페이스(pyee)를 가진 가짜 피어 연결과, 릴레이에 직접 연결되는
루프백 WebSocket을 제공합니다.
"""

import asyncio
import itertools
import json
from typing import Dict, List, Optional

import pytest
from aiortc import RTCSessionDescription
from pyee.asyncio import AsyncIOEventEmitter

from meshroom.modules.rooms import RoomRegistry, SignalRelay
from meshroom.modules.webrtc import LocalMediaSession, SyntheticCaptureProvider


class FakeDataChannel(AsyncIOEventEmitter):
    """RTCDataChannel 대역. peer와 짝지으면 send()가 상대의 message 이벤트가 됩니다."""

    def __init__(self, label: str = "chat", ordered: bool = True):
        super().__init__()
        self.label = label
        self.ordered = ordered
        self.readyState = "connecting"
        self.sent: List[str] = []
        self.peer: Optional["FakeDataChannel"] = None

    def open(self):
        self.readyState = "open"
        self.emit("open")

    def send(self, data):
        if self.readyState != "open":
            raise RuntimeError("data channel is not open")
        self.sent.append(data)
        if self.peer is not None and self.peer.readyState == "open":
            self.peer.emit("message", data)

    def close(self):
        if self.readyState != "closed":
            self.readyState = "closed"
            self.emit("close")


class FakePeerConnection(AsyncIOEventEmitter):
    """RTCPeerConnection 대역.

    SDP 본문에 자기 토큰을 넣어, 상대가 setRemoteDescription할 때 네트워크에서
    짝을 찾습니다. 양쪽 설명이 모두 적용되면 connected가 되고, responder 쪽에서
    데이터 채널을 짝지어 datachannel 이벤트를 발생시킵니다.
    """

    def __init__(self, network: "FakeNetwork", configuration=None):
        super().__init__()
        self.network = network
        self.configuration = configuration
        self.token = f"pc{next(network.counter)}"
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.signalingState = "stable"
        self.connectionState = "new"
        self.tracks = []
        self.channels: List[FakeDataChannel] = []
        self.received_channels: List[FakeDataChannel] = []
        self.candidates = []
        self.remote_pc: Optional["FakePeerConnection"] = None
        self.fail_remote = network.fail_remote
        self.closed = False

    def addTrack(self, track):
        self.tracks.append(track)

    def createDataChannel(self, label, ordered=True):
        channel = FakeDataChannel(label, ordered)
        self.channels.append(channel)
        return channel

    async def createOffer(self):
        return RTCSessionDescription(sdp=f"offer:{self.token}", type="offer")

    async def createAnswer(self):
        return RTCSessionDescription(sdp=f"answer:{self.token}", type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description
        self.signalingState = "have-local-offer" if description.type == "offer" else "stable"
        self._maybe_connect()

    async def setRemoteDescription(self, description):
        if self.fail_remote:
            raise ValueError("malformed session description")
        self.remoteDescription = description
        self.signalingState = "have-remote-offer" if description.type == "offer" else "stable"
        self.remote_pc = self.network.pcs.get(description.sdp.split(":", 1)[-1])
        self._maybe_connect()

    async def addIceCandidate(self, candidate):
        self.candidates.append(candidate)

    async def close(self):
        if self.closed:
            return
        self.closed = True
        self.signalingState = "closed"
        for channel in self.channels + self.received_channels:
            channel.close()
        self.set_connection_state("closed")

    def set_connection_state(self, state: str):
        self.connectionState = state
        self.emit("connectionstatechange")

    def _maybe_connect(self):
        if self.localDescription is None or self.remoteDescription is None:
            return
        if self.signalingState != "stable" or self.connectionState == "connected":
            return
        remote = self.remote_pc
        if remote is not None:
            for channel in remote.channels:
                if channel.peer is None:
                    mirror = FakeDataChannel(channel.label, channel.ordered)
                    mirror.peer, channel.peer = channel, mirror
                    self.received_channels.append(mirror)
                    self.emit("datachannel", mirror)
                    channel.open()
                    mirror.open()
            for track in remote.tracks:
                self.emit("track", track)
        self.set_connection_state("connected")


class FakeNetwork:
    """가짜 피어 연결 팩토리. 생성된 모든 연결을 기록합니다."""

    def __init__(self):
        self.counter = itertools.count(1)
        self.pcs: Dict[str, FakePeerConnection] = {}
        self.created: List[FakePeerConnection] = []
        self.fail_remote = False

    def factory(self, configuration=None) -> FakePeerConnection:
        pc = FakePeerConnection(self, configuration)
        self.pcs[pc.token] = pc
        self.created.append(pc)
        return pc


class RecordingSurface:
    """attach/detach 호출을 기록하는 렌더링 표면."""

    def __init__(self):
        self.attached: List[tuple] = []
        self.detached: List[str] = []

    def attach(self, participant_id, track):
        self.attached.append((participant_id, track.kind))

    def detach(self, participant_id):
        self.detached.append(participant_id)


class LoopbackWebSocket:
    """SignalRelay에 직접 연결되는 클라이언트 WebSocket 대역.

    send()는 릴레이 dispatch로, 수신은 참가자 outbox에서 꺼낸 JSON 문자열입니다.
    """

    def __init__(self, relay: SignalRelay, participant_id: str):
        self.relay = relay
        self.participant = relay.connect(self, participant_id=participant_id)
        self.received: List[dict] = []
        self.closed = False

    @property
    def participant_id(self) -> str:
        return self.participant.participant_id

    async def send(self, raw: str):
        if self.closed:
            raise ConnectionError("socket closed")
        self.relay.dispatch(self.participant_id, json.loads(raw))

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        message = await self.participant.outbox.get()
        if message is None:
            raise StopAsyncIteration
        self.received.append(message)
        return json.dumps(message)

    async def close(self):
        self.abort()

    def abort(self):
        """leave-room 없이 전송 연결이 끊긴 상황."""
        if self.closed:
            return
        self.closed = True
        self.relay.on_disconnect(self.participant_id)
        self.participant.outbox.put_nowait(None)

    def events(self, event_type: str) -> List[dict]:
        return [m["data"] for m in self.received if m["type"] == event_type]


class LoopbackConnector:
    """MeshSession의 connect 대역. 호출 순서대로 지정된 ID를 할당합니다."""

    def __init__(self, relay: SignalRelay, ids):
        self.relay = relay
        self.ids = iter(ids)
        self.sockets: List[LoopbackWebSocket] = []

    async def __call__(self, url: str) -> LoopbackWebSocket:
        ws = LoopbackWebSocket(self.relay, next(self.ids))
        self.sockets.append(ws)
        return ws


async def settle(*parties, rounds: int = 10):
    """이벤트 루프를 돌려 대기 중인 협상 단계와 이벤트 핸들러를 모두 처리합니다."""
    for _ in range(rounds):
        await asyncio.sleep(0.005)
        for party in parties:
            await party.wait_idle()


def drain(participant) -> List[dict]:
    """참가자 outbox에 쌓인 메시지를 모두 꺼냅니다."""
    messages = []
    while not participant.outbox.empty():
        messages.append(participant.outbox.get_nowait())
    return messages


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def relay(registry):
    return SignalRelay(registry)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def media():
    return LocalMediaSession(SyntheticCaptureProvider())
