"""원격 참가자 한 명과의 WebRTC 연결 모듈.

PeerLink는 로컬 참가자와 원격 참가자 한 명 사이의 RTCPeerConnection,
채팅 데이터 채널, 그리고 원격 설명(remote description) 적용 전에 도착한
ICE 후보 버퍼를 소유합니다.

상태 전이:
    Idle → Negotiating → Connected → Closed
    (어느 상태에서든 Closed로 갈 수 있으며, Closed는 종료 상태)

협상 규칙:
    - 한 쌍의 참가자 중 ID가 더 큰 쪽이 initiator로 지정됨
    - initiator: 채팅 채널 생성 → offer 생성/설정 → offer 전송 → answer 대기
    - responder: offer 수신 → remote 설정 → 버퍼 후보 적용 → answer 생성/전송
    - 양쪽이 동시에 offer를 보낸 경우(glare) 지정된 initiator는 상대 offer를 버리고,
      상대는 자신의 연결을 버린 뒤 responder로 다시 응답함

동시성:
    모든 협상 단계는 링크별 inbox 큐에 들어가 하나의 worker 태스크에서 순서대로
    실행됩니다. 한 링크의 실패는 그 링크만 닫으며 다른 링크에 영향이 없습니다.

Examples:
    >>> link = PeerLink("B1", "A1", send_signal, media, surface, on_chat)
    >>> link.initiate()
    >>> await link.wait_idle()
    >>> link.state
    <LinkState.NEGOTIATING: 'negotiating'>
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from aiortc import RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from .chat import ChatChannel, ChatMessage
from .config import ConnectionConfig, build_rtc_configuration, connection_config, ice_config
from .media import LocalMediaSession
from .surface import RenderingSurface
from ..shared.errors import NegotiationFailure
from ..shared.messages import IceCandidate, SessionDescription

logger = logging.getLogger(__name__)

SendSignal = Callable[[str, Dict[str, Any]], Awaitable[None]]


class LinkState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


class LinkRole(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


def is_designated_initiator(local_id: Optional[str], remote_id: str) -> bool:
    """이 쌍에서 로컬 참가자가 offer를 보낼 차례인지 판단합니다.

    두 참가자 모두 같은 규칙을 적용하므로 항상 정확히 한 쪽만 True입니다.
    """
    return local_id is not None and local_id > remote_id


class PeerLink:
    """원격 참가자 한 명과의 피어 연결.

    Attributes:
        local_id (Optional[str]): 로컬 참가자 ID
        remote_id (str): 원격 참가자 ID
        state (LinkState): 현재 링크 상태
        role (Optional[LinkRole]): 협상 역할 (협상 시작 전에는 None)
        pc (Optional[RTCPeerConnection]): 현재 피어 연결
        chat (ChatChannel): 채팅 데이터 채널
        pending_candidates (List[IceCandidate]): remote 설정 전에 받은 ICE 후보 (도착 순서)
        remote_description_applied (bool): remote 설정 완료 여부
    """

    def __init__(
        self,
        local_id: Optional[str],
        remote_id: str,
        send_signal: SendSignal,
        media: LocalMediaSession,
        surface: RenderingSurface,
        on_chat: Callable[[ChatMessage], None],
        ice_servers: Optional[Sequence[Dict[str, str]]] = None,
        pc_factory: Callable[..., RTCPeerConnection] = RTCPeerConnection,
        on_closed: Optional[Callable[["PeerLink"], None]] = None,
        config: ConnectionConfig = connection_config,
    ):
        self.local_id = local_id
        self.remote_id = remote_id
        self.send_signal = send_signal
        self.media = media
        self.surface = surface
        self.ice_servers = list(ice_servers) if ice_servers is not None else ice_config.ice_servers()
        self.pc_factory = pc_factory
        self.on_closed = on_closed
        self.config = config

        self.state = LinkState.IDLE
        self.role: Optional[LinkRole] = None
        self.pc: Optional[RTCPeerConnection] = None
        self.chat = ChatChannel(remote_id, on_chat)
        self.pending_candidates: List[IceCandidate] = []
        self.remote_description_applied = False

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"PeerLink(remote={self.remote_id}, state={self.state.value}, role={self.role})"

    @property
    def is_active(self) -> bool:
        return self.state in (LinkState.NEGOTIATING, LinkState.CONNECTED)

    @property
    def designated_initiator(self) -> bool:
        return is_designated_initiator(self.local_id, self.remote_id)

    # ------------------------------------------------------------
    # Entry points (시그널 수신 측에서 동기적으로 호출)
    # ------------------------------------------------------------

    def initiate(self) -> None:
        """initiator로 협상을 시작합니다. Idle 상태가 아니면 무시합니다."""
        if self.state != LinkState.IDLE:
            logger.debug(f"[WebRTC] {self.remote_id} 협상 시작 무시 (상태: {self.state.value})")
            return
        self.role = LinkRole.INITIATOR
        self.state = LinkState.NEGOTIATING
        logger.info(f"[WebRTC] {self.remote_id}에게 offer 준비 (initiator)")
        self._submit(self._send_offer)

    def receive_offer(self, description: SessionDescription) -> None:
        """원격 offer를 처리합니다.

        initiator로 협상 중에 offer를 받으면 glare입니다. 지정된 initiator는
        상대 offer를 버리고, 그렇지 않은 쪽은 responder로 다시 시작합니다.
        """
        if self.state == LinkState.CLOSED:
            return

        if self.role == LinkRole.INITIATOR and self.state == LinkState.NEGOTIATING:
            if self.designated_initiator:
                logger.info(f"[WebRTC] glare: {self.remote_id}의 offer 무시 (로컬이 initiator)")
                return
            logger.info(f"[WebRTC] glare: {self.remote_id}에게 양보, responder로 재시작")
            self._submit(self._restart_as_responder, description)
            return

        if self.role is None:
            self.role = LinkRole.RESPONDER
        if self.state == LinkState.IDLE:
            self.state = LinkState.NEGOTIATING
        self._submit(self._answer_offer, description)

    def receive_answer(self, description: SessionDescription) -> None:
        if self.state == LinkState.CLOSED:
            return
        if self.role != LinkRole.INITIATOR:
            logger.warning(f"[WebRTC] {self.remote_id}의 answer 무시 (로컬이 initiator 아님)")
            return
        self._submit(self._apply_answer, description)

    def receive_candidate(self, candidate: Optional[IceCandidate]) -> None:
        if self.state == LinkState.CLOSED:
            return
        self._submit(self._add_candidate, candidate)

    async def wait_idle(self) -> None:
        """큐에 들어간 협상 단계가 모두 처리될 때까지 기다립니다."""
        await self._inbox.join()

    # ------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------

    def _submit(self, step: Callable[..., Awaitable[None]], *args) -> None:
        self._inbox.put_nowait((step, args))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        while True:
            step, args = await self._inbox.get()
            try:
                if self.state != LinkState.CLOSED:
                    await step(*args)
            except NegotiationFailure as e:
                logger.warning(f"[WebRTC] {e}")
                await self.close()
            except Exception as e:
                logger.error(f"[WebRTC] {self.remote_id} 협상 단계 {step.__name__} 실패: {e}", exc_info=True)
                await self.close()
            finally:
                self._inbox.task_done()
            if self.state == LinkState.CLOSED:
                break

    # ------------------------------------------------------------
    # Negotiation steps
    # ------------------------------------------------------------

    async def _send_offer(self) -> None:
        pc = self._create_pc()
        channel = pc.createDataChannel(self.config.CHAT_LABEL, ordered=self.config.CHAT_ORDERED)
        self.chat.bind(channel)

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        await self._send({"type": "offer", "sdp": self._local_description()})
        logger.info(f"[WebRTC] {self.remote_id}에게 offer 전송")

    async def _answer_offer(self, description: SessionDescription) -> None:
        if self.pc is None:
            self._create_pc()
        pc = self.pc
        await self._apply_remote(description)

        answer = await pc.createAnswer()
        await pc.setLocalDescription(answer)
        await self._send({"type": "answer", "sdp": self._local_description()})
        logger.info(f"[WebRTC] {self.remote_id}에게 answer 전송")

    async def _apply_answer(self, description: SessionDescription) -> None:
        if self.pc is None or self.pc.signalingState != "have-local-offer":
            state = self.pc.signalingState if self.pc is not None else "no connection"
            logger.debug(f"[WebRTC] {self.remote_id}의 answer 무시 (signaling: {state})")
            return
        await self._apply_remote(description)
        logger.info(f"[WebRTC] {self.remote_id}의 answer 적용")

    async def _restart_as_responder(self, description: SessionDescription) -> None:
        old_pc, self.pc = self.pc, None
        self.chat.close()
        self.media.release(self.remote_id)
        if old_pc is not None:
            await old_pc.close()

        self.role = LinkRole.RESPONDER
        self.remote_description_applied = False
        await self._answer_offer(description)

    async def _apply_remote(self, description: SessionDescription) -> None:
        try:
            await self.pc.setRemoteDescription(
                RTCSessionDescription(sdp=description.sdp, type=description.type)
            )
        except Exception as e:
            raise NegotiationFailure(self.remote_id, f"{description.type} rejected: {e}") from e
        self.remote_description_applied = True
        await self._flush_candidates()

    async def _add_candidate(self, candidate: Optional[IceCandidate]) -> None:
        if candidate is None or not candidate.candidate:
            # end-of-candidates
            return
        if not self.remote_description_applied:
            self.pending_candidates.append(candidate)
            logger.debug(f"[WebRTC] {self.remote_id} ICE 후보 버퍼링 ({len(self.pending_candidates)}개)")
            return
        await self._apply_candidate(candidate)

    async def _flush_candidates(self) -> None:
        pending, self.pending_candidates = self.pending_candidates, []
        if pending:
            logger.debug(f"[WebRTC] {self.remote_id} 버퍼된 ICE 후보 {len(pending)}개 적용")
        for candidate in pending:
            await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: IceCandidate) -> None:
        sdp = candidate.candidate
        if sdp.startswith("candidate:"):
            sdp = sdp[len("candidate:"):]
        try:
            ice = candidate_from_sdp(sdp)
        except (ValueError, IndexError) as e:
            logger.warning(f"[WebRTC] {self.remote_id} ICE 후보 파싱 실패: {e}")
            return
        ice.sdpMid = candidate.sdpMid
        ice.sdpMLineIndex = candidate.sdpMLineIndex
        await self.pc.addIceCandidate(ice)

    # ------------------------------------------------------------
    # Peer connection
    # ------------------------------------------------------------

    def _create_pc(self) -> RTCPeerConnection:
        pc = self.pc_factory(configuration=build_rtc_configuration(self.ice_servers))
        self.pc = pc
        for track in self.media.acquire(self.remote_id):
            pc.addTrack(track)

        @pc.on("connectionstatechange")
        async def on_connectionstatechange():
            if pc is not self.pc:
                return
            logger.info(f"[WebRTC] {self.remote_id} 연결 상태: {pc.connectionState}")
            if pc.connectionState == "connected" and self.state == LinkState.NEGOTIATING:
                self.state = LinkState.CONNECTED
            elif pc.connectionState == "failed":
                await self.close()

        @pc.on("track")
        def on_track(track):
            if pc is not self.pc:
                return
            logger.info(f"[WebRTC] {self.remote_id} {track.kind} 트랙 수신")
            self.surface.attach(self.remote_id, track)

        @pc.on("datachannel")
        def on_datachannel(channel):
            if pc is self.pc and channel.label == self.config.CHAT_LABEL:
                self.chat.bind(channel)

        return pc

    def _local_description(self) -> Dict[str, str]:
        description = self.pc.localDescription
        return {"type": description.type, "sdp": description.sdp}

    async def _send(self, payload: Dict[str, Any]) -> None:
        await self.send_signal(self.remote_id, payload)

    # ------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------

    async def close(self) -> None:
        """링크를 닫고 모든 자원을 해제합니다. 여러 번 호출해도 안전합니다.

        Cleanup Steps:
            1. 상태를 Closed로 변경하고 대기 중인 협상 단계 폐기
            2. 버퍼된 ICE 후보와 채팅 채널 정리
            3. 로컬 미디어 구독 반납, 렌더링 표면에서 원격 스트림 제거
            4. RTCPeerConnection 종료 (CLOSE_TIMEOUT 초 대기)

        1~3단계는 await 없이 끝나므로, 4단계 도중 같은 참가자의 새 링크가
        생겨도 새 링크의 미디어와 렌더링에는 영향이 없습니다.
        """
        if self.state == LinkState.CLOSED:
            return
        await self._close_transport(self._release())

    def close_soon(self) -> Optional[asyncio.Future]:
        """자원을 즉시 해제하고 RTCPeerConnection 종료는 백그라운드 태스크로 넘깁니다.

        Returns:
            Optional[asyncio.Future]: 종료 태스크 (이미 닫혀 있으면 None)
        """
        if self.state == LinkState.CLOSED:
            return None
        return asyncio.ensure_future(self._close_transport(self._release()))

    def _release(self) -> Optional[RTCPeerConnection]:
        self.state = LinkState.CLOSED

        worker = self._worker
        if worker is not None and worker is not asyncio.current_task() and not worker.done():
            worker.cancel()
        while not self._inbox.empty():
            self._inbox.get_nowait()
            self._inbox.task_done()

        self.pending_candidates.clear()
        self.chat.close()
        self.media.release(self.remote_id)
        self.surface.detach(self.remote_id)

        pc, self.pc = self.pc, None
        return pc

    async def _close_transport(self, pc: Optional[RTCPeerConnection]) -> None:
        if pc is not None:
            try:
                await asyncio.wait_for(pc.close(), timeout=self.config.CLOSE_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning(f"[WebRTC] {self.remote_id} 연결 종료 시간 초과")
        logger.info(f"[WebRTC] {self.remote_id} 링크 종료")

        if self.on_closed is not None:
            self.on_closed(self)
