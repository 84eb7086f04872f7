"""시그널링 와이어 메시지 모델.

릴레이와 클라이언트가 WebSocket으로 주고받는 모든 프레임은
``{"type": <event>, "data": {...}}`` 형태의 JSON 객체입니다.
이 모듈은 이벤트 이름 상수와 각 이벤트 data의 Pydantic 모델,
그리고 클라이언트 측에서만 해석하는 signal payload 모델을 정의합니다.

릴레이는 signal payload를 해석하지 않습니다. payload 모델은
Peer Connection Manager가 offer/answer/ice를 구분할 때만 사용됩니다.

Examples:
    >>> make_event(JOIN_ROOM, JoinRoom(room="R1", userName="Alice"))
    {'type': 'join-room', 'data': {'room': 'R1', 'userName': 'Alice'}}
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import InvalidRequest

# Client -> Relay
JOIN_ROOM = "join-room"
LEAVE_ROOM = "leave-room"
SIGNAL = "signal"

# Relay -> Client
CONNECTED = "connected"
JOINED_ROOM = "joined-room"
PEER_JOINED = "peer-joined"
PEER_LEFT = "peer-left"
ERROR = "error"


class JoinRoom(BaseModel):
    """join-room 요청."""

    room: str = Field(..., description="참가할 룸 ID")
    userName: str = Field(default="Anon", description="표시 이름 (검증하지 않음)")


class LeaveRoom(BaseModel):
    """leave-room 요청."""

    room: str = Field(..., description="퇴장할 룸 ID")


class SignalEnvelope(BaseModel):
    """signal 봉투.

    클라이언트가 보낸 ``from`` 값은 릴레이에서 무시되고
    서버가 할당한 송신자 ID로 덮어씁니다.
    """

    model_config = ConfigDict(populate_by_name=True)

    to: str = Field(..., description="수신 참가자 ID")
    from_: Optional[str] = Field(default=None, alias="from", description="송신 참가자 ID")
    payload: Dict[str, Any] = Field(..., description="불투명 협상 payload")


class Connected(BaseModel):
    """전송 연결 직후 할당된 참가자 ID."""

    id: str


class JoinedRoom(BaseModel):
    """참가자 본인에게 보내는 입장 확인."""

    you: str
    peers: List[str] = Field(default_factory=list)
    names: Dict[str, str] = Field(default_factory=dict)


class PeerJoined(BaseModel):
    id: str
    userName: str = "Anon"


class PeerLeft(BaseModel):
    id: str


class ErrorEvent(BaseModel):
    message: str


# ============================================================
# Signal payload (클라이언트 전용)
# ============================================================

class SessionDescription(BaseModel):
    """RTCSessionDescription JSON 표현."""

    type: Literal["offer", "answer"]
    sdp: str


class IceCandidate(BaseModel):
    """RTCIceCandidate JSON 표현.

    candidate가 빈 문자열이면 end-of-candidates 표시입니다.
    """

    candidate: str = ""
    sdpMid: Optional[str] = None
    sdpMLineIndex: Optional[int] = None


class OfferPayload(BaseModel):
    type: Literal["offer"]
    # 브라우저 클라이언트는 {type, sdp} 객체를, 일부 구현은 SDP 문자열만 보냄
    sdp: Union[SessionDescription, str]

    def description(self) -> SessionDescription:
        if isinstance(self.sdp, str):
            return SessionDescription(type="offer", sdp=self.sdp)
        return self.sdp


class AnswerPayload(BaseModel):
    type: Literal["answer"]
    sdp: Union[SessionDescription, str]

    def description(self) -> SessionDescription:
        if isinstance(self.sdp, str):
            return SessionDescription(type="answer", sdp=self.sdp)
        return self.sdp


class IcePayload(BaseModel):
    type: Literal["ice"]
    candidate: Optional[IceCandidate] = None


SignalPayload = Annotated[
    Union[OfferPayload, AnswerPayload, IcePayload],
    Field(discriminator="type"),
]

_payload_adapter = TypeAdapter(SignalPayload)


def parse_payload(payload: Dict[str, Any]) -> Union[OfferPayload, AnswerPayload, IcePayload]:
    """signal payload를 offer/answer/ice 모델로 변환합니다.

    Raises:
        InvalidRequest: payload 형식이 잘못된 경우
    """
    try:
        return _payload_adapter.validate_python(payload)
    except ValidationError as e:
        raise InvalidRequest(f"invalid signal payload: {e.error_count()} error(s)") from e


def parse_model(model: type, data: Any):
    """이벤트 data를 모델로 검증합니다. 실패 시 InvalidRequest."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidRequest(f"invalid {model.__name__} data: {e.error_count()} error(s)") from e


def make_event(event_type: str, data: Union[BaseModel, Dict[str, Any], None] = None) -> Dict[str, Any]:
    """와이어 프레임 딕셔너리를 생성합니다."""
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True, exclude_none=True)
    return {"type": event_type, "data": data or {}}


def split_event(message: Any) -> Tuple[str, Dict[str, Any]]:
    """와이어 프레임을 (type, data)로 분리합니다.

    Raises:
        InvalidRequest: 객체가 아니거나 type이 없는 경우
    """
    if not isinstance(message, dict):
        raise InvalidRequest("message must be a JSON object")
    event_type = message.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidRequest("message type is required")
    data = message.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidRequest("message data must be a JSON object")
    return event_type, data
