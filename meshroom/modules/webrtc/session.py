"""메시 세션 모듈.

시그널링 WebSocket 연결, 로컬 미디어, PeerConnectionManager를 묶어
"룸 입장 → 협상 → 채팅 → 퇴장" 흐름을 하나의 객체로 제공합니다.

Workflow:
    1. join(): 로컬 미디어 시작 (실패 시 MediaError, 시그널링 전)
    2. WebSocket 연결 → 수신 루프 시작 → join-room 전송
    3. 수신 이벤트를 PeerConnectionManager로 전달
    4. leave(): leave-room 전송 → 모든 링크 종료 → 로컬 미디어 정지 → 연결 종료

Examples:
    >>> session = MeshSession("ws://localhost:8000/ws")
    >>> await session.join("R1", "Alice")
    >>> session.send_chat("hi")
    >>> await session.leave()
"""
import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import websockets
from aiortc import RTCPeerConnection
from websockets.exceptions import ConnectionClosed

from .chat import ChatLog
from .config import connection_config
from .media import LocalMediaSession
from .peer_manager import PeerConnectionManager
from .surface import RenderingSurface
from ..shared.errors import InvalidRequest, MeshError
from ..shared.messages import (
    CONNECTED,
    ERROR,
    JOIN_ROOM,
    JOINED_ROOM,
    LEAVE_ROOM,
    PEER_JOINED,
    PEER_LEFT,
    SIGNAL,
    Connected,
    ErrorEvent,
    JoinedRoom,
    JoinRoom,
    LeaveRoom,
    PeerJoined,
    PeerLeft,
    SignalEnvelope,
    make_event,
    parse_model,
    split_event,
)

logger = logging.getLogger(__name__)


class MeshSession:
    """룸 하나에 참가하는 클라이언트 세션.

    Attributes:
        url (str): 시그널링 서버 WebSocket 주소
        media (LocalMediaSession): 로컬 미디어 세션
        manager (PeerConnectionManager): 피어 연결 관리자
        room (Optional[str]): 현재 참가 중인 룸
        participant_id (Optional[str]): 릴레이가 할당한 로컬 ID
        errors (List[str]): 릴레이가 보낸 error 메시지
    """

    def __init__(
        self,
        url: Optional[str] = None,
        media: Optional[LocalMediaSession] = None,
        surface: Optional[RenderingSurface] = None,
        ice_servers: Optional[Sequence[Dict[str, str]]] = None,
        pc_factory: Callable[..., RTCPeerConnection] = RTCPeerConnection,
        connect: Callable[[str], Any] = websockets.connect,
    ):
        self.url = url or connection_config.SIGNALING_URL
        self.media = media or LocalMediaSession()
        self.connect = connect
        self.manager = PeerConnectionManager(
            send_signal=self.send_signal,
            media=self.media,
            surface=surface,
            ice_servers=ice_servers,
            pc_factory=pc_factory,
        )

        self.room: Optional[str] = None
        self.participant_id: Optional[str] = None
        self.errors: List[str] = []

        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._joined = asyncio.Event()

    @property
    def chat_log(self) -> ChatLog:
        return self.manager.chat_log

    @property
    def connected(self) -> bool:
        return self._ws is not None

    # ------------------------------------------------------------
    # Join / leave
    # ------------------------------------------------------------

    async def join(self, room: str, user_name: str = "Anon") -> None:
        """룸에 입장합니다.

        Raises:
            MediaAccessDenied, MediaDeviceUnavailable: 로컬 캡처 실패 (시그널링 전에 발생)
            OSError: 시그널링 서버 연결 실패 (로컬 미디어는 정지됨)
        """
        await self.media.start()

        self._joined.clear()
        try:
            self._ws = await self.connect(self.url)
            self._reader = asyncio.ensure_future(self._read_loop())
            self.room = room
            await self._send(make_event(JOIN_ROOM, JoinRoom(room=room, userName=user_name)))
        except Exception:
            logger.error(f"[Session] 룸 '{room}' 입장 실패, 로컬 미디어 정지")
            self.room = None
            await self._close_transport()
            self.media.stop()
            raise
        logger.info(f"[Session] 룸 '{room}' 입장 요청 ({user_name})")

    async def wait_joined(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._joined.wait(), timeout)

    async def leave(self) -> None:
        """룸에서 퇴장하고 모든 연결과 로컬 트랙을 정리합니다."""
        if self._ws is not None and self.room is not None:
            try:
                await self._send(make_event(LEAVE_ROOM, LeaveRoom(room=self.room)))
            except (ConnectionClosed, ConnectionError):
                logger.debug("[Session] leave-room 전송 실패 (이미 연결 끊김)")

        await self.manager.leave()
        await self._close_transport()
        logger.info(f"[Session] 룸 '{self.room}' 퇴장 완료")
        self.room = None
        self._joined.clear()

    async def _close_transport(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------

    async def send_signal(self, to: str, payload: Dict[str, Any]) -> None:
        """협상 payload를 릴레이로 보냅니다. ``from``은 릴레이가 채웁니다."""
        await self._send(make_event(SIGNAL, SignalEnvelope(to=to, payload=payload)))

    def send_chat(self, text: str) -> int:
        return self.manager.broadcast_chat(text)

    def set_audio_enabled(self, enabled: bool) -> None:
        self.media.set_enabled("audio", enabled)

    def set_video_enabled(self, enabled: bool) -> None:
        self.media.set_enabled("video", enabled)

    def toggle_audio(self) -> bool:
        return self.media.toggle("audio")

    def toggle_video(self) -> bool:
        return self.media.toggle("video")

    async def _send(self, message: Dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectionError("signaling connection is not open")
        await self._ws.send(json.dumps(message))

    # ------------------------------------------------------------
    # Incoming
    # ------------------------------------------------------------

    async def _read_loop(self) -> None:
        ws = self._ws
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"[Session] JSON이 아닌 메시지 무시: {raw!r}")
                    continue
                await self.handle_event(message)
        except ConnectionClosed:
            logger.info("[Session] 시그널링 연결 종료")

    async def handle_event(self, message: Any) -> None:
        """릴레이 이벤트 하나를 처리합니다. 잘못된 이벤트는 로그만 남깁니다."""
        try:
            event_type, data = split_event(message)

            if event_type == CONNECTED:
                self.participant_id = parse_model(Connected, data).id
                self.manager.local_id = self.participant_id
                logger.info(f"[Session] 참가자 ID 할당: {self.participant_id}")

            elif event_type == JOINED_ROOM:
                joined = parse_model(JoinedRoom, data)
                self.participant_id = joined.you
                self.manager.on_joined_room(joined.you, joined.peers, joined.names)
                self._joined.set()

            elif event_type == PEER_JOINED:
                peer = parse_model(PeerJoined, data)
                self.manager.on_peer_joined(peer.id, peer.userName)

            elif event_type == PEER_LEFT:
                self.manager.on_peer_left(parse_model(PeerLeft, data).id)

            elif event_type == SIGNAL:
                envelope = parse_model(SignalEnvelope, data)
                if envelope.from_ is None:
                    raise InvalidRequest("signal without sender")
                self.manager.on_signal(envelope.from_, envelope.payload)

            elif event_type == ERROR:
                error = parse_model(ErrorEvent, data)
                self.errors.append(error.message)
                logger.warning(f"[Session] 릴레이 오류: {error.message}")

            else:
                logger.debug(f"[Session] 알 수 없는 이벤트 무시: {event_type}")

        except InvalidRequest as e:
            logger.warning(f"[Session] 잘못된 이벤트 무시: {e}")
        except MeshError as e:
            logger.error(f"[Session] 이벤트 처리 중 오류: {e}")
