"""공유 모듈.

릴레이와 클라이언트가 함께 사용하는 와이어 메시지 모델과 예외 분류입니다.
"""

from .errors import (
    MeshError,
    InvalidRequest,
    UnknownDestination,
    MediaError,
    MediaAccessDenied,
    MediaDeviceUnavailable,
    NegotiationFailure,
    ChannelUnavailable,
)
from .messages import (
    JOIN_ROOM,
    LEAVE_ROOM,
    SIGNAL,
    CONNECTED,
    JOINED_ROOM,
    PEER_JOINED,
    PEER_LEFT,
    ERROR,
    JoinRoom,
    LeaveRoom,
    SignalEnvelope,
    Connected,
    JoinedRoom,
    PeerJoined,
    PeerLeft,
    ErrorEvent,
    SessionDescription,
    IceCandidate,
    OfferPayload,
    AnswerPayload,
    IcePayload,
    parse_payload,
    parse_model,
    make_event,
    split_event,
)

__all__ = [
    # Errors
    "MeshError",
    "InvalidRequest",
    "UnknownDestination",
    "MediaError",
    "MediaAccessDenied",
    "MediaDeviceUnavailable",
    "NegotiationFailure",
    "ChannelUnavailable",
    # Event names
    "JOIN_ROOM",
    "LEAVE_ROOM",
    "SIGNAL",
    "CONNECTED",
    "JOINED_ROOM",
    "PEER_JOINED",
    "PEER_LEFT",
    "ERROR",
    # Models
    "JoinRoom",
    "LeaveRoom",
    "SignalEnvelope",
    "Connected",
    "JoinedRoom",
    "PeerJoined",
    "PeerLeft",
    "ErrorEvent",
    "SessionDescription",
    "IceCandidate",
    "OfferPayload",
    "AnswerPayload",
    "IcePayload",
    # Helpers
    "parse_payload",
    "parse_model",
    "make_event",
    "split_event",
]
