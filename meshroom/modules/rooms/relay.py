"""시그널 릴레이 모듈.

룸 멤버십 이벤트를 팬아웃하고 두 참가자 간 협상 payload를 그대로 전달하는
상태 없는 라우터입니다. 릴레이는 미디어나 채팅 내용을 보지 않으며,
signal payload는 해석하지 않고 전달만 합니다.

메시지 흐름:
    1. 전송 연결 → connect(): 참가자 ID 할당, ``connected`` 전송
    2. join-room → on_join(): 레지스트리 입장, ``joined-room`` 응답, ``peer-joined`` 팬아웃
    3. signal → on_signal(): ``from``을 서버가 검증한 송신자 ID로 덮어쓰고 전달
    4. leave-room / 연결 끊김 → on_leave()/on_disconnect(): ``peer-left`` 팬아웃

모든 송신은 참가자별 outbox 큐에 넣기만 합니다. 실제 전송은 연결마다 하나뿐인
writer 태스크가 담당하므로 송신자→수신자 순서가 보장되고, join 처리의
직렬화 지점(멤버십 변경 + 스냅샷 + 큐잉)이 await 없이 끝납니다.

Examples:
    >>> relay = SignalRelay(RoomRegistry())
    >>> alice = relay.connect(participant_id="A1")
    >>> relay.dispatch("A1", {"type": "join-room", "data": {"room": "R1", "userName": "Alice"}})
"""
import logging
import uuid
from typing import Any, Dict, Iterable, Optional, Union

from pydantic import BaseModel

from .registry import JoinResult, Participant, RoomRegistry
from ..shared.errors import InvalidRequest, MeshError, UnknownDestination
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


class SignalRelay:
    """참가자 간 시그널링 메시지를 중계하는 릴레이.

    Attributes:
        registry (RoomRegistry): 룸 멤버십 레지스트리

    Note:
        - 릴레이 자체는 요청 간 상태를 갖지 않음 (레지스트리 제외)
        - 클라이언트가 보낸 ``from``은 절대 신뢰하지 않음
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    # ------------------------------------------------------------
    # Transport lifecycle
    # ------------------------------------------------------------

    def connect(self, connection: Any = None, participant_id: Optional[str] = None) -> Participant:
        """새 전송 연결에 참가자 ID를 할당하고 등록합니다.

        Args:
            connection: 전송 계층 연결 핸들
            participant_id: 지정할 ID (기본값: uuid4)

        Returns:
            Participant: 등록된 참가자. outbox에는 ``connected`` 이벤트가 들어있음
        """
        participant_id = participant_id or str(uuid.uuid4())
        participant = self.registry.connect(participant_id, connection)
        self._send(participant_id, CONNECTED, Connected(id=participant_id))
        logger.info(f"[Relay] 참가자 {participant_id} 연결됨")
        return participant

    def on_disconnect(self, participant_id: str) -> None:
        """전송 연결 종료 처리.

        명시적 leave 없이 끊긴 경우에도 참가 중이던 모든 룸에
        ``peer-left``를 팬아웃합니다.
        """
        with self.registry.lock:
            left = self.registry.disconnect(participant_id)
            for room_id, remaining in left.items():
                self._broadcast(remaining, PEER_LEFT, PeerLeft(id=participant_id))
                logger.info(f"[Relay] 참가자 {participant_id} 연결 끊김 → 룸 '{room_id}'에 peer-left 전송")
        logger.info(f"[Relay] 참가자 {participant_id} 정리 완료")

    def close_all(self) -> None:
        """연결된 모든 참가자를 정리합니다 (서버 종료 시)."""
        for participant_id in list(self.registry.participants.keys()):
            self.on_disconnect(participant_id)

    # ------------------------------------------------------------
    # Wire dispatch
    # ------------------------------------------------------------

    def dispatch(self, participant_id: str, message: Any) -> None:
        """수신한 와이어 메시지를 타입별 핸들러로 전달합니다.

        잘못된 요청은 상태를 변경하지 않고 드롭하며, 송신자에게 ``error``
        이벤트를 보냅니다. 어떤 경우에도 예외를 밖으로 던지지 않습니다.

        Args:
            participant_id: 메시지를 보낸 참가자 (전송 계층이 보증한 ID)
            message: 디코딩된 JSON 객체
        """
        try:
            event_type, data = split_event(message)

            if event_type == JOIN_ROOM:
                request = parse_model(JoinRoom, data)
                self.on_join(participant_id, request.room, request.userName)

            elif event_type == LEAVE_ROOM:
                request = parse_model(LeaveRoom, data)
                self.on_leave(participant_id, request.room)

            elif event_type == SIGNAL:
                self.on_signal(participant_id, parse_model(SignalEnvelope, data))

            else:
                raise InvalidRequest(f"unknown message type: {event_type}")

        except UnknownDestination as e:
            logger.debug(f"[Relay] 대상 없음, signal 드롭: {e.participant_id}")
        except InvalidRequest as e:
            self.reject(participant_id, str(e))
        except MeshError as e:
            logger.error(f"[Relay] 참가자 {participant_id} 메시지 처리 중 오류: {e}")

    def reject(self, participant_id: str, reason: str) -> None:
        """잘못된 요청을 로그에 남기고 송신자에게 error 이벤트를 보냅니다."""
        logger.warning(f"[Relay] 참가자 {participant_id} 요청 거부: {reason}")
        self._send(participant_id, ERROR, ErrorEvent(message=reason))

    # ------------------------------------------------------------
    # Room events
    # ------------------------------------------------------------

    def on_join(self, participant_id: str, room_id: str, display_name: str = "Anon") -> JoinResult:
        """룸 입장 처리.

        레지스트리 변경, 스냅샷 계산, ``joined-room`` 응답과 ``peer-joined``
        팬아웃을 하나의 lock 구간에서 수행합니다. 따라서 입장자는 자신보다
        나중에 들어온 참가자에 대한 ``peer-joined``보다 ``joined-room``을
        항상 먼저 받습니다.

        Raises:
            InvalidRequest: 레지스트리가 입장을 거부한 경우 (상태 변경 없음)
        """
        with self.registry.lock:
            result = self.registry.join(participant_id, room_id, display_name)

            for previous_room, remaining in result.left_rooms.items():
                logger.info(f"[Relay] 참가자 {participant_id} 룸 '{previous_room}' → '{room_id}' 전환")
                self._broadcast(remaining, PEER_LEFT, PeerLeft(id=participant_id))

            names = {}
            for member_id in result.existing_members:
                member = self.registry.get_participant(member_id)
                if member is not None:
                    names[member_id] = member.display_name

            self._send(
                participant_id,
                JOINED_ROOM,
                JoinedRoom(you=participant_id, peers=result.existing_members, names=names),
            )

            if result.is_new:
                self._broadcast(
                    result.existing_members,
                    PEER_JOINED,
                    PeerJoined(id=participant_id, userName=display_name),
                )
            return result

    def on_leave(self, participant_id: str, room_id: str) -> None:
        """룸 퇴장 처리. 참가하지 않은 룸이면 아무것도 보내지 않습니다."""
        with self.registry.lock:
            was_member = room_id in self.registry.get_participant_rooms(participant_id)
            remaining = self.registry.leave(participant_id, room_id)
            if was_member:
                self._broadcast(remaining, PEER_LEFT, PeerLeft(id=participant_id))
                logger.info(f"[Relay] 참가자 {participant_id} 룸 '{room_id}' 퇴장")

    # ------------------------------------------------------------
    # Signal forwarding
    # ------------------------------------------------------------

    def on_signal(self, sender_id: str, envelope: SignalEnvelope) -> None:
        """협상 payload를 대상 참가자에게 그대로 전달합니다.

        ``from``은 항상 전송 계층이 보증한 송신자 ID로 설정됩니다.
        클라이언트가 다른 값을 보냈다면 경고 로그를 남기고 무시합니다.

        Raises:
            InvalidRequest: 자기 자신에게 보내는 signal
            UnknownDestination: 대상 참가자가 이미 연결을 끊은 경우
        """
        if envelope.from_ is not None and envelope.from_ != sender_id:
            logger.warning(f"[Relay] 참가자 {sender_id}가 보낸 from={envelope.from_} 무시")
        if envelope.to == sender_id:
            raise InvalidRequest("cannot signal yourself")

        # payload is forwarded as received, None values included
        forwarded = {"to": envelope.to, "from": sender_id, "payload": envelope.payload}
        if not self._send(envelope.to, SIGNAL, forwarded):
            raise UnknownDestination(envelope.to)
        logger.debug(f"[Relay] signal 전달: {sender_id} → {envelope.to} "
                     f"({envelope.payload.get('type', '?')})")

    # ------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------

    def _send(self, participant_id: str, event_type: str,
              data: Union[BaseModel, Dict[str, Any], None]) -> bool:
        """참가자의 outbox에 이벤트를 넣습니다. 참가자가 없으면 False."""
        participant = self.registry.get_participant(participant_id)
        if participant is None:
            return False
        participant.outbox.put_nowait(make_event(event_type, data))
        return True

    def _broadcast(self, participant_ids: Iterable[str], event_type: str,
                   data: Union[BaseModel, Dict[str, Any], None]) -> None:
        for participant_id in participant_ids:
            self._send(participant_id, event_type, data)
