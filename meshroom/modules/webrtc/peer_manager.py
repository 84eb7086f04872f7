"""피어 연결 관리 모듈 (클라이언트 측 풀 메시).

이 모듈은 룸의 다른 참가자 각각에 대해 PeerLink 하나를 유지하며,
릴레이로부터 받은 멤버십 이벤트와 signal을 해당 PeerLink로 전달합니다.

주요 기능:
    - joined-room / peer-joined 수신 시 PeerLink 생성 및 협상 시작
    - signal(offer/answer/ice) 라우팅 및 필요 시 PeerLink 지연 생성
    - peer-left 수신 시 PeerLink 종료 및 렌더링 표면 정리
    - 로컬 퇴장 시 모든 PeerLink 종료와 로컬 미디어 정지
    - 채팅 브로드캐스트와 로스터/시스템 메시지 기록

Architecture:
    - Full Mesh: 각 참가자가 다른 모든 참가자와 직접 연결 (N-1개 연결)
    - 결정적 tie-break: 한 쌍에서 ID가 큰 쪽만 offer를 보냄
    - 링크별 inbox: 한 링크의 협상 단계는 직렬, 링크끼리는 독립적으로 진행

Examples:
    >>> manager = PeerConnectionManager(send_signal, media, surface)
    >>> manager.on_joined_room("B1", ["A1"], {"A1": "Alice"})
    >>> manager.on_signal("A1", {"type": "answer", "sdp": {...}})
    >>> manager.on_peer_left("A1")
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from aiortc import RTCPeerConnection

from .chat import ChatLog, ChatMessage
from .config import connection_config, ice_config
from .media import LocalMediaSession
from .peer_link import LinkRole, LinkState, PeerLink, SendSignal, is_designated_initiator
from .surface import BlackholeSurface, RenderingSurface
from ..shared.errors import InvalidRequest
from ..shared.messages import AnswerPayload, IcePayload, OfferPayload, parse_payload

logger = logging.getLogger(__name__)


class PeerConnectionManager:
    """원격 참가자별 PeerLink를 관리하는 클래스.

    Attributes:
        local_id (Optional[str]): 릴레이가 할당한 로컬 참가자 ID
        links (Dict[str, PeerLink]): 원격 참가자 ID → PeerLink
        roster (Dict[str, str]): 원격 참가자 ID → 표시 이름
        chat_log (ChatLog): 채팅/시스템 메시지 로그
        media (LocalMediaSession): 모든 링크가 공유하는 로컬 미디어
        surface (RenderingSurface): 원격 스트림 렌더링 표면

    Note:
        - 참가자 쌍마다 링크는 최대 하나
        - 실패로 닫힌 링크는 목록에서 제거되어, 다음 이벤트에서 새로 시작됨
    """

    def __init__(
        self,
        send_signal: SendSignal,
        media: LocalMediaSession,
        surface: Optional[RenderingSurface] = None,
        ice_servers: Optional[Sequence[Dict[str, str]]] = None,
        pc_factory: Callable[..., RTCPeerConnection] = RTCPeerConnection,
        chat_log: Optional[ChatLog] = None,
    ):
        self.send_signal = send_signal
        self.media = media
        self.surface = surface if surface is not None else BlackholeSurface()
        self.ice_servers = list(ice_servers) if ice_servers is not None else ice_config.ice_servers()
        self.pc_factory = pc_factory
        self.chat_log = chat_log if chat_log is not None else ChatLog(connection_config.CHAT_LOG_SIZE)

        self.local_id: Optional[str] = None
        self.links: Dict[str, PeerLink] = {}
        self.roster: Dict[str, str] = {}
        # peer-left로 닫히는 중인 링크의 RTCPeerConnection 종료 태스크
        self._closing: Set[asyncio.Future] = set()

    # ------------------------------------------------------------
    # Membership events
    # ------------------------------------------------------------

    def on_joined_room(self, you: str, peers: List[str], names: Optional[Dict[str, str]] = None) -> None:
        """입장 확인 처리. 기존 참가자 각각에 대해 링크를 준비합니다."""
        self.local_id = you
        names = names or {}
        logger.info(f"[WebRTC] 룸 입장 완료: 나={you}, 기존 참가자 {len(peers)}명")
        listed = ", ".join(names.get(peer_id, peer_id) for peer_id in peers) or "none"
        self.chat_log.system(f"You joined as {you}. Peers in room: {listed}")
        for peer_id in peers:
            self._add_peer(peer_id, names.get(peer_id))

    def on_peer_joined(self, peer_id: str, user_name: Optional[str] = None) -> None:
        """새 참가자 입장 처리."""
        existing = self.links.get(peer_id)
        if existing is not None and existing.is_active:
            logger.debug(f"[WebRTC] 중복 peer-joined 무시: {peer_id}")
            return
        self.chat_log.system(f"peer joined: {user_name or peer_id}")
        self._add_peer(peer_id, user_name)

    def on_peer_left(self, peer_id: str) -> None:
        """참가자 퇴장 처리. 링크를 닫고 렌더링 표면에서 제거합니다.

        미디어 반납과 렌더링 제거는 즉시 끝나고, RTCPeerConnection 종료는
        백그라운드에서 진행되므로 다른 링크의 signal 처리를 막지 않습니다.
        """
        link = self.links.pop(peer_id, None)
        name = self.roster.pop(peer_id, peer_id)
        if link is not None:
            self._track_closing(link, link.close_soon())
        self.chat_log.system(f"peer left: {name}")
        logger.info(f"[WebRTC] 참가자 {peer_id} 퇴장, 남은 링크 {len(self.links)}개")

    def _track_closing(self, link: PeerLink, task: Optional[asyncio.Future]) -> None:
        if task is None:
            return
        self._closing.add(task)

        def on_done(done: asyncio.Future):
            self._closing.discard(done)
            if not done.cancelled() and done.exception() is not None:
                logger.error(f"[WebRTC] {link.remote_id} 링크 종료 중 오류: {done.exception()}")

        task.add_done_callback(on_done)

    def _add_peer(self, peer_id: str, user_name: Optional[str]) -> None:
        if peer_id == self.local_id:
            return
        if user_name:
            self.roster[peer_id] = user_name
        else:
            self.roster.setdefault(peer_id, peer_id)

        link = self._get_or_create_link(peer_id)
        if link.state != LinkState.IDLE:
            return
        if is_designated_initiator(self.local_id, peer_id):
            link.initiate()
        else:
            logger.info(f"[WebRTC] {peer_id}의 offer 대기 (responder)")

    # ------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------

    def on_signal(self, sender_id: str, payload: Dict[str, Any]) -> None:
        """릴레이가 전달한 협상 payload를 해당 링크로 보냅니다.

        Raises:
            InvalidRequest: payload 형식이 잘못된 경우
        """
        if sender_id == self.local_id:
            raise InvalidRequest("signal from self")
        message = parse_payload(payload)

        if isinstance(message, AnswerPayload):
            link = self.links.get(sender_id)
            if link is None or link.role != LinkRole.INITIATOR:
                logger.warning(f"[WebRTC] 요청하지 않은 answer 무시: {sender_id}")
                return
            link.receive_answer(message.description())

        elif isinstance(message, OfferPayload):
            self._get_or_create_link(sender_id).receive_offer(message.description())

        elif isinstance(message, IcePayload):
            self._get_or_create_link(sender_id).receive_candidate(message.candidate)

    # ------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------

    def broadcast_chat(self, text: str) -> int:
        """열린 모든 채팅 채널로 메시지를 보냅니다.

        Returns:
            int: 메시지를 보낸 피어 수
        """
        self.chat_log.record(ChatMessage(sender="me", text=text))
        return sum(1 for link in list(self.links.values()) if link.chat.send(text))

    def _on_chat(self, message: ChatMessage) -> None:
        self.chat_log.record(message)

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def leave(self) -> None:
        """모든 링크를 닫고 로컬 미디어를 정지합니다.

        반환 시점에는 남은 링크가 없으므로 이후 재입장은 깨끗한 상태에서 시작됩니다.
        """
        links = list(self.links.values())
        self.links.clear()
        results = await asyncio.gather(*(link.close() for link in links), return_exceptions=True)
        for link, result in zip(links, results):
            if isinstance(result, Exception):
                logger.error(f"[WebRTC] {link.remote_id} 링크 종료 중 오류: {result}")
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)
        self.media.stop()
        self.roster.clear()
        logger.info(f"[WebRTC] 모든 링크 종료 ({len(links)}개)")

    async def wait_idle(self) -> None:
        """모든 링크의 대기 중인 협상 단계와 진행 중인 링크 종료를 기다립니다."""
        for link in list(self.links.values()):
            await link.wait_idle()
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

    def get_link(self, peer_id: str) -> Optional[PeerLink]:
        return self.links.get(peer_id)

    def _get_or_create_link(self, peer_id: str) -> PeerLink:
        link = self.links.get(peer_id)
        if link is not None and link.state != LinkState.CLOSED:
            return link

        link = PeerLink(
            local_id=self.local_id,
            remote_id=peer_id,
            send_signal=self.send_signal,
            media=self.media,
            surface=self.surface,
            on_chat=self._on_chat,
            ice_servers=self.ice_servers,
            pc_factory=self.pc_factory,
            on_closed=self._on_link_closed,
        )
        self.links[peer_id] = link
        self.roster.setdefault(peer_id, peer_id)
        return link

    def _on_link_closed(self, link: PeerLink) -> None:
        # A failed link is forgotten so the next event from that peer starts fresh.
        if self.links.get(link.remote_id) is link:
            del self.links[link.remote_id]
